"""Continuous manga reading with block-wise page loading."""

from .errors import DatasourceError, ErrorKind
from .models import ChapterRef, DownloadInfo, Page, PageState, ReaderEntry, TransitionPage
from .pages import BLOCK_SIZE, PagesDatasource
from .reader import ChapterReader, Direction

__version__ = "0.1.0"

__all__ = [
    "BLOCK_SIZE",
    "ChapterReader",
    "ChapterRef",
    "DatasourceError",
    "Direction",
    "DownloadInfo",
    "ErrorKind",
    "Page",
    "PageState",
    "PagesDatasource",
    "ReaderEntry",
    "TransitionPage",
]
