from __future__ import annotations

import abc
from typing import TYPE_CHECKING
from urllib.parse import urljoin

from ..errors import DatasourceError
from ..models import ChapterRef, DownloadInfo

if TYPE_CHECKING:
    from ..http import HttpClient


class PagesDelegate(abc.ABC):
    """What the page engine needs from a source.

    Implementations hold no per-call state, so the engine may call them
    concurrently for many pages of one or several chapters.
    """

    name = "source"

    def __init__(self, http: "HttpClient"):
        self.http = http

    @abc.abstractmethod
    async def fetch_download_info(self, chapter: ChapterRef, save_data: bool) -> DownloadInfo:
        ...

    @abc.abstractmethod
    async def fetch_page(self, index: int, info: DownloadInfo) -> bytes:
        ...

    @abc.abstractmethod
    async def fetch_page_url(self, url: str, info: DownloadInfo) -> bytes:
        ...

    @abc.abstractmethod
    def build_page_url(self, index: int, info: DownloadInfo) -> str:
        ...


def page_entry(info: DownloadInfo, index: int) -> str:
    if not 0 <= index < len(info.pages):
        raise DatasourceError.other("Page index out of bounds")
    return info.pages[index]


def abs_url(u: str, base: str) -> str:
    if not u:
        return ""
    u = u.strip()
    if u.startswith("//"):
        return "https:" + u
    if u.startswith("http"):
        return u
    return urljoin(base, u)
