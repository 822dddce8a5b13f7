from __future__ import annotations

import logging

from ..errors import ParserError
from ..models import ChapterRef, DownloadInfo
from .base import PagesDelegate, page_entry

LOG = logging.getLogger("mangareader.sources.mangadex")

AT_HOME_URL = "https://api.mangadex.org/at-home/server/{chapter_id}"


def parse_at_home(payload: dict, save_data: bool) -> DownloadInfo:
    base_url = payload.get("baseUrl")
    chapter = payload.get("chapter")
    if not isinstance(base_url, str) or not isinstance(chapter, dict):
        raise ParserError("Error while parsing response")
    chapter_hash = chapter.get("hash")
    pages = chapter.get("dataSaver" if save_data else "data")
    if not isinstance(chapter_hash, str) or not isinstance(pages, list):
        raise ParserError("Error while parsing response")
    quality = "data-saver" if save_data else "data"
    return DownloadInfo(
        download_url=f"{base_url.rstrip('/')}/{quality}/{chapter_hash}",
        pages=[str(p) for p in pages],
    )


class MangadexPagesDelegate(PagesDelegate):
    name = "mangadex"

    async def fetch_download_info(self, chapter: ChapterRef, save_data: bool) -> DownloadInfo:
        # download_info holds the MangaDex chapter uuid.
        payload = await self.http.get_json(AT_HOME_URL.format(chapter_id=chapter.download_info))
        info = parse_at_home(payload, save_data)
        LOG.debug("MangaDex chapter %s served from %s", chapter.id, info.download_url)
        return info

    async def fetch_page(self, index: int, info: DownloadInfo) -> bytes:
        return await self.http.get_bytes(self.build_page_url(index, info))

    async def fetch_page_url(self, url: str, info: DownloadInfo) -> bytes:
        return await self.http.get_bytes(url)

    def build_page_url(self, index: int, info: DownloadInfo) -> str:
        return f"{info.download_url}/{page_entry(info, index)}"
