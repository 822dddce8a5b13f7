"""Shared fixtures."""

import logging
import os
from typing import List

import pytest

from mangareader.directory import ChapterStore
from mangareader.models import ChapterRef
from tests.fakes import FakeDelegate, StaticDirectory, make_chapter

ENV_KEYS = (
    "MANGAREADER_DB",
    "OUTPUT_DIR",
    "LOG_DIR",
    "DATA_SAVER",
    "MAX_FETCHES",
    "HTTP_TIMEOUT_MS",
    "HTTP_RETRIES",
)


@pytest.fixture
def delegate() -> FakeDelegate:
    return FakeDelegate({"c1": 23, "c2": 12, "c3": 5})


@pytest.fixture
def chapters() -> List[ChapterRef]:
    return [make_chapter("c1", 1), make_chapter("c2", 2, title="Second"), make_chapter("c3", 3)]


@pytest.fixture
def directory(chapters) -> StaticDirectory:
    return StaticDirectory(chapters)


@pytest.fixture
def store(tmp_path) -> ChapterStore:
    return ChapterStore(tmp_path / "chapters.db")


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    package = logging.getLogger("mangareader")
    handlers, level, package_level = list(root.handlers), root.level, package.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    package.setLevel(package_level)


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    yield
    for key in ENV_KEYS:
        os.environ.pop(key, None)
