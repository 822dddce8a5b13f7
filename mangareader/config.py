from __future__ import annotations

import logging
import os
import pathlib
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from typing import Optional

from dotenv import load_dotenv

from .http import DEFAULT_RETRIES, DEFAULT_TIMEOUT_MS

BASE_DIR = pathlib.Path.cwd()
LOG_NAME = "mangareader.log"


def _resolve_path(env_key: str, default_name: str, base: pathlib.Path = BASE_DIR) -> pathlib.Path:
    candidate = os.getenv(env_key, "").strip()
    if candidate:
        path = pathlib.Path(candidate).expanduser()
        if not path.is_absolute():
            path = base / path
        return path
    return base / default_name


def _env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None


def _env_bool(key: str, default: bool = False) -> bool:
    raw = os.getenv(key, "").strip().lower()
    if not raw:
        return default
    return raw not in ("0", "false", "no", "off")


@dataclass
class Settings:
    db_path: pathlib.Path
    output_dir: pathlib.Path
    log_dir: pathlib.Path
    data_saver: bool = False
    max_fetches: Optional[int] = None
    http_timeout_ms: int = DEFAULT_TIMEOUT_MS
    http_retries: int = DEFAULT_RETRIES


def load_settings(env_path: Optional[pathlib.Path] = None, base: pathlib.Path = BASE_DIR) -> Settings:
    # Values already in the environment win over the .env file.
    env_path = env_path or base / ".env"
    if env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()

    max_fetches = _env_int("MAX_FETCHES", 0)
    return Settings(
        db_path=_resolve_path("MANGAREADER_DB", "mangareader.db", base),
        output_dir=pathlib.Path(os.getenv("OUTPUT_DIR", "./capitulos_pdf")).expanduser(),
        log_dir=_resolve_path("LOG_DIR", "logs", base),
        data_saver=_env_bool("DATA_SAVER"),
        max_fetches=max_fetches if max_fetches > 0 else None,
        http_timeout_ms=max(1, _env_int("HTTP_TIMEOUT_MS", DEFAULT_TIMEOUT_MS)),
        http_retries=max(0, _env_int("HTTP_RETRIES", DEFAULT_RETRIES)),
    )


def setup_logging(log_dir: pathlib.Path, verbose: bool = False) -> None:
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_NAME

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    for noisy in ("asyncio", "PIL", "img2pdf"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger("mangareader").setLevel(logging.DEBUG)

    # Console handler
    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        ch = logging.StreamHandler()
        ch.setLevel(logging.DEBUG if verbose else logging.INFO)
        ch.setFormatter(fmt)
        root.addHandler(ch)

    # Rotating file handler
    file_handler: Optional[RotatingFileHandler] = None
    for handler in root.handlers:
        if isinstance(handler, RotatingFileHandler) and getattr(handler, "baseFilename", None) == str(log_path):
            file_handler = handler
            break
    if file_handler is None:
        file_handler = RotatingFileHandler(log_path, maxBytes=2*1024*1024, backupCount=5, encoding="utf-8")
        root.addHandler(file_handler)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(fmt)
    file_handler.filters.clear()
    file_handler.addFilter(logging.Filter("mangareader"))
