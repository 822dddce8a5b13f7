from __future__ import annotations

import logging
from typing import List

from bs4 import BeautifulSoup

from ..errors import ParserError
from ..models import ChapterRef, DownloadInfo
from .base import PagesDelegate, abs_url, page_entry

LOG = logging.getLogger("mangareader.sources.manganelo")

SITE_ROOT = "https://chapmanganelo.com/"
READER_SELECTOR = "div.container-chapter-reader"
IMAGE_SELECTOR = "img.reader-content"


def parse_reader_images(html: str, base_url: str) -> List[str]:
    soup = BeautifulSoup(html, "html.parser")
    container = soup.select_one(READER_SELECTOR)
    if container is None:
        raise ParserError.parameter_not_found(READER_SELECTOR)
    urls: List[str] = []
    for img in container.select(IMAGE_SELECTOR):
        src = img.get("src") or img.get("data-src") or ""
        url = abs_url(src, base_url)
        if url:
            urls.append(url)
        else:
            LOG.debug("Skipping reader image without src in %s", base_url)
    return urls


class ManganeloPagesDelegate(PagesDelegate):
    name = "manganelo"

    async def fetch_download_info(self, chapter: ChapterRef, save_data: bool) -> DownloadInfo:
        # download_info holds the chapter page url; there is no reduced quality variant.
        url = chapter.download_info
        referer = f"{SITE_ROOT}manga-{chapter.manga_id}"
        html = await self.http.get_text(url, referer=referer)
        return DownloadInfo(download_url=url, pages=parse_reader_images(html, url))

    async def fetch_page(self, index: int, info: DownloadInfo) -> bytes:
        return await self.http.get_bytes(page_entry(info, index), referer=SITE_ROOT)

    async def fetch_page_url(self, url: str, info: DownloadInfo) -> bytes:
        return await self.http.get_bytes(url, referer=SITE_ROOT)

    def build_page_url(self, index: int, info: DownloadInfo) -> str:
        return page_entry(info, index)
