from __future__ import annotations

import io
import logging
import pathlib
import re
import shutil
import tempfile
from typing import Iterable, List, Optional, Tuple

import img2pdf
from PIL import Image, UnidentifiedImageError

from .errors import DatasourceError
from .models import ChapterRef, Page

LOG = logging.getLogger("mangareader.export")

PDF_MIN_SIZE_BYTES = 1_000
PDF_MIN_PAGE_BYTES = 1_000
IMG_EXT_RE = re.compile(r"\.(jpg|jpeg|png|webp|avif|gif)(?:\?|$)", re.I)
PAGE_TYPE_RE = re.compile(rb"/Type\s*/Page(?![A-Za-z])")

_PIL_EXT = {"JPEG": "jpg", "PNG": "png", "WEBP": "webp", "GIF": "gif", "AVIF": "avif"}


def infer_ext(data: bytes, url: str = "") -> str:
    try:
        with Image.open(io.BytesIO(data)) as im:
            fmt = (im.format or "").upper()
    except (UnidentifiedImageError, OSError):
        fmt = ""
    if fmt in _PIL_EXT:
        return _PIL_EXT[fmt]
    m = IMG_EXT_RE.search(url or "")
    if m:
        ext = m.group(1).lower()
        return "jpg" if ext == "jpeg" else ext
    return "jpg"


def sanitize_filename(s: str) -> str:
    return re.sub(r'[\\/*?:"<>|]+', "_", s).strip() or "File"


def save_page(page: Page, dest_dir: pathlib.Path, stem: Optional[str] = None) -> pathlib.Path:
    """Write a loaded page to ``dest_dir`` and return the file path."""
    if not page.is_remote or page.data is None:
        raise DatasourceError.other("Page is not loaded")
    dest_dir.mkdir(parents=True, exist_ok=True)
    name = sanitize_filename(stem or f"{page.position + 1:03d}")
    path = dest_dir / f"{name}.{infer_ext(page.data, page.url)}"
    path.write_bytes(page.data)
    return path


def normalize_to_pdf_ready(paths: List[pathlib.Path]) -> Tuple[List[pathlib.Path], pathlib.Path]:
    tmpdir = pathlib.Path(tempfile.mkdtemp(prefix="manga_pdf_"))
    out: List[pathlib.Path] = []
    for i, p in enumerate(paths, start=1):
        try:
            with Image.open(p) as src:
                im = src.convert("RGB")
            outp = tmpdir / f"{i:03d}.jpg"
            im.save(outp, "JPEG", quality=95, optimize=True)
            out.append(outp)
        except (UnidentifiedImageError, OSError) as e:
            LOG.warning("Skipped %s in PDF: %s", p.name, e)
    return out, tmpdir


def build_pdf(image_paths: List[pathlib.Path], out_pdf: pathlib.Path):
    if not image_paths:
        raise RuntimeError("No images available for PDF.")
    out_pdf.parent.mkdir(parents=True, exist_ok=True)
    with open(out_pdf, "wb") as f:
        f.write(img2pdf.convert([str(p) for p in image_paths]))


def pdf_page_count(pdf_path: pathlib.Path) -> int:
    try:
        data = pdf_path.read_bytes()
    except OSError:
        return 0
    return len(PAGE_TYPE_RE.findall(data))


def validate_pdf(
    pdf_path: pathlib.Path,
    expected_pages: Optional[int] = None,
    min_page_bytes: int = PDF_MIN_PAGE_BYTES,
) -> Tuple[bool, int, int]:
    """Return ``(ok, pages, size)`` for a written PDF.

    A PDF is rejected when it has no pages, is smaller than
    ``min_page_bytes`` per page, or holds fewer than half of
    ``expected_pages``.
    """
    try:
        size = pdf_path.stat().st_size
    except OSError:
        return False, 0, 0
    pages = pdf_page_count(pdf_path)
    if pages <= 0:
        return False, pages, size
    if size < max(PDF_MIN_SIZE_BYTES if min_page_bytes else 0, pages * min_page_bytes):
        return False, pages, size
    if expected_pages:
        min_pages = max(1, expected_pages // 2)
        if pages < min_pages:
            return False, pages, size
    return True, pages, size


def chapter_pdf_path(chapter: ChapterRef, out_root: pathlib.Path) -> pathlib.Path:
    return out_root / sanitize_filename(chapter.manga_id) / f"{sanitize_filename(chapter.description)}.pdf"


def export_chapter_pdf(
    chapter: ChapterRef,
    pages: Iterable[Page],
    out_root: pathlib.Path,
) -> pathlib.Path:
    """Build a PDF from the loaded pages of a chapter.

    Pages that are not Remote are left out and logged.
    """
    pages = list(pages)
    loaded = [p for p in pages if p.is_remote and p.data is not None]
    if not loaded:
        raise DatasourceError.other("No loaded pages to export")
    skipped = len(pages) - len(loaded)
    if skipped:
        LOG.warning("Chapter %s: %d page(s) not loaded, left out of the PDF", chapter.id, skipped)

    raw_dir = pathlib.Path(tempfile.mkdtemp(prefix="manga_raw_"))
    pdf_dir: Optional[pathlib.Path] = None
    try:
        raw = [save_page(p, raw_dir) for p in sorted(loaded, key=lambda p: p.position)]
        ready, pdf_dir = normalize_to_pdf_ready(raw)
        out_pdf = chapter_pdf_path(chapter, out_root)
        build_pdf(ready, out_pdf)
    finally:
        shutil.rmtree(raw_dir, ignore_errors=True)
        if pdf_dir is not None:
            shutil.rmtree(pdf_dir, ignore_errors=True)

    ok, count, size = validate_pdf(out_pdf, expected_pages=len(loaded), min_page_bytes=0)
    if not ok:
        LOG.warning("PDF %s looks incomplete (pages=%d, size=%d)", out_pdf, count, size)
    else:
        LOG.info("PDF written: %s (%d pages)", out_pdf, count)
    return out_pdf
