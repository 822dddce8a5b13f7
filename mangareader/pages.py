"""Lazy, block-wise delivery of one chapter's pages.

A chapter's page slots are split into fixed-size pagination blocks. A
block is fetched the first time one of its pages becomes visible (plus
one block of look-ahead when the last page of a block shows up). Every
fetch result is merged into the page list as soon as it lands, using
``merge_page`` so a late result never drives a finished page back.

All state lives on the event loop that drives the engine; fetches are
plain tasks whose results come back to that loop before being merged.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import math
import uuid
from typing import Callable, Dict, Iterable, List, Optional, Set

from .errors import DatasourceError, catch_error
from .models import ChapterRef, DownloadInfo, Page, PageState, PaginationBlock
from .sources.base import PagesDelegate

LOG = logging.getLogger("mangareader.pages")

BLOCK_SIZE = 10

Listener = Callable[["PagesDatasource"], None]


class DatasourceState(enum.Enum):
    STARTING = "starting"
    LOADING = "loading"
    NORMAL = "normal"

    @property
    def is_loading(self) -> bool:
        return self is not DatasourceState.NORMAL


def merge_page(existing: Page, incoming: Page) -> Page:
    """Resolve a result landing on a slot that already has a state."""
    if existing.state is PageState.NOT_FOUND:
        return incoming
    if existing.state is PageState.LOADING:
        return existing if incoming.state is PageState.LOADING else incoming
    if incoming.state is PageState.REMOTE:
        return incoming
    return existing


class PagesDatasource:
    def __init__(
        self,
        chapter: ChapterRef,
        delegate: PagesDelegate,
        save_data: bool = False,
        block_size: int = BLOCK_SIZE,
        max_fetches: Optional[int] = None,
    ):
        if block_size <= 0:
            raise ValueError("block_size must be positive")
        self.chapter = chapter
        self.delegate = delegate
        self.save_data = save_data
        self.block_size = block_size
        self.state = DatasourceState.STARTING
        self.error: Optional[DatasourceError] = None

        self._semaphore = asyncio.Semaphore(max_fetches) if max_fetches else None
        self._info: Optional[DownloadInfo] = None
        self._info_lock = asyncio.Lock()
        self._pagination: Dict[int, PaginationBlock] = {}
        self._pages: Dict[str, Page] = {}
        self._ordered: List[Page] = []
        self._placeholders: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[Listener] = []
        self._discarded = False

    def __repr__(self) -> str:
        return f"PagesDatasource({self.chapter.id!r}, pages={len(self._ordered)})"

    # ----- observation -----

    @property
    def pages(self) -> List[Page]:
        return list(self._ordered)

    @property
    def page_count(self) -> int:
        return len(self._ordered)

    @property
    def blocks(self) -> Dict[int, PaginationBlock]:
        return {
            index: PaginationBlock(pages=list(block.pages), loaded=block.loaded)
            for index, block in self._pagination.items()
        }

    @property
    def is_prepared(self) -> bool:
        return self._info is not None

    @property
    def discarded(self) -> bool:
        return self._discarded

    def get_page(self, page_id: str) -> Optional[Page]:
        return self._pages.get(page_id)

    def __contains__(self, page_id: object) -> bool:
        return page_id in self._pages

    def page_index(self, page_id: str) -> Optional[int]:
        for index, page in enumerate(self._ordered):
            if page.id == page_id:
                return index
        return None

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                LOG.exception("Page listener failed for chapter %s", self.chapter.id)

    # ----- actions -----

    async def prepare(self) -> None:
        if self._discarded:
            return
        self.state = DatasourceState.LOADING
        error: Optional[DatasourceError] = None
        try:
            await self._get_download_info()
        except asyncio.CancelledError:
            LOG.debug("Preparing chapter %s cancelled", self.chapter.id)
            raise
        except Exception as exc:
            LOG.warning("Could not fetch download info for %s: %s", self.chapter.id, exc)
            error = catch_error(exc)
        if self._discarded:
            return
        self.error = error
        self.state = DatasourceState.NORMAL
        self._notify()

    async def load_start(self) -> None:
        LOG.debug("Loading first page block of %s", self.chapter.id)
        if not self.is_prepared:
            await self.prepare()
        if self._pagination:
            await self._load_blocks([0])

    async def load_end(self) -> None:
        LOG.debug("Loading last page block of %s", self.chapter.id)
        if not self.is_prepared:
            await self.prepare()
        if self._pagination:
            await self._load_blocks([len(self._pagination) - 1])

    async def load_pages_if_needed(self, page_id: str) -> None:
        blocks = self._blocks_needing_load(page_id)
        if not blocks:
            return
        LOG.debug("Loading blocks %s of %s for page %s", blocks, self.chapter.id, page_id)
        await self._load_blocks(blocks)

    async def reload_pages(self, pages: Iterable[Page]) -> None:
        if self._discarded:
            return
        targets = []
        for page in pages:
            if page.url not in self._pages:
                self._set_error(DatasourceError.other("Page not found"))
                continue
            targets.append((page.url, page.position))
        if not targets:
            return
        self._update_or_append([Page.loading(url, position) for url, position in targets])
        try:
            info = await self._get_download_info()
        except asyncio.CancelledError:
            LOG.debug("Reload for %s cancelled", self.chapter.id)
            raise
        except Exception as exc:
            self._update_or_append(
                [Page.not_found(url, position) for url, position in targets],
                error=catch_error(exc),
            )
            return
        LOG.info("Reloading %d page(s) of %s", len(targets), self.chapter.id)
        tasks = [
            self._spawn(self._fetch_page(url, position, info, by_url=True))
            for url, position in targets
        ]
        await asyncio.gather(*tasks, return_exceptions=True)

    async def drain(self) -> None:
        """Wait until every dispatched fetch has landed."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def discard(self) -> None:
        """Stop observing: pending fetches are cancelled and late writes are dropped."""
        if self._discarded:
            return
        self._discarded = True
        self._listeners.clear()
        for task in list(self._tasks):
            task.cancel()
        LOG.debug("Discarded page engine for %s", self.chapter.id)

    # ----- internals -----

    async def _get_download_info(self) -> DownloadInfo:
        if self._info is not None:
            return self._info
        async with self._info_lock:
            if self._info is None:
                info = await self.delegate.fetch_download_info(self.chapter, self.save_data)
                if not self._discarded:
                    self._setup_pagination(info)
                self._info = info
        return self._info

    def _setup_pagination(self, info: DownloadInfo) -> None:
        count = info.number_of_pages
        urls: List[str] = []
        seen: Set[str] = set()
        for index in range(count):
            url = self._page_id(index, info)
            if url in seen:
                url = self._placeholder(index, "duplicated url")
            seen.add(url)
            urls.append(url)

        self._pagination = {}
        for block in range(math.ceil(count / self.block_size)):
            start = block * self.block_size
            end = min(start + self.block_size, count)
            self._pagination[block] = PaginationBlock(pages=urls[start:end])

        self._pages = {url: Page.loading(url, index) for index, url in enumerate(urls)}
        self._ordered = list(self._pages.values())
        LOG.info(
            "Chapter %s has %d page(s) in %d block(s)",
            self.chapter.id,
            count,
            len(self._pagination),
        )

    def _page_id(self, index: int, info: DownloadInfo) -> str:
        try:
            url = self.delegate.build_page_url(index, info)
        except Exception as exc:
            return self._placeholder(index, str(exc))
        return url or self._placeholder(index, "empty url")

    def _placeholder(self, index: int, reason: str) -> str:
        placeholder = uuid.uuid4().hex
        self._placeholders.add(placeholder)
        LOG.warning("Page %d of %s has no url (%s); using %s", index, self.chapter.id, reason, placeholder)
        return placeholder

    def _blocks_needing_load(self, page_id: str) -> List[int]:
        found = None
        for index, block in self._pagination.items():
            if page_id in block.pages:
                found = index
                break
        if found is None:
            return []

        block = self._pagination[found]
        result = []
        if not block.loaded:
            result.append(found)
        following = self._pagination.get(found + 1)
        if page_id == block.pages[-1] and following is not None and not following.loaded:
            result.append(found + 1)
        return result

    async def _load_blocks(self, indices: List[int]) -> None:
        if self._discarded:
            return
        claimed = []
        for index in indices:
            block = self._pagination.get(index)
            if block is None:
                continue
            # Claimed before the first await so repeated visibility events do not dispatch twice.
            block.loaded = True
            claimed.append(index)
        if not claimed:
            return
        try:
            info = await self._get_download_info()
        except asyncio.CancelledError:
            LOG.debug("Block load for %s cancelled", self.chapter.id)
            raise
        except Exception as exc:
            failed = [
                Page.not_found(url, index * self.block_size + offset)
                for index in claimed
                for offset, url in enumerate(self._pagination[index].pages)
            ]
            self._update_or_append(failed, error=catch_error(exc))
            return
        for index in claimed:
            block = self._pagination[index]
            for offset, url in enumerate(block.pages):
                position = index * self.block_size + offset
                self._spawn(self._fetch_page(url, position, info, by_url=False))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _slot(self):
        if self._semaphore is None:
            return contextlib.nullcontext()
        return self._semaphore

    async def _fetch_page(self, url: str, position: int, info: DownloadInfo, by_url: bool) -> None:
        try:
            async with self._slot():
                if by_url and url not in self._placeholders:
                    data = await self.delegate.fetch_page_url(url, info)
                else:
                    data = await self.delegate.fetch_page(position, info)
        except asyncio.CancelledError:
            LOG.debug("Fetch of page %d of %s cancelled", position, self.chapter.id)
            return
        except Exception as exc:
            LOG.warning("Page %d of %s failed download: %s", position, self.chapter.id, exc)
            self._update_or_append([Page.not_found(url, position)], error=catch_error(exc))
            return
        self._update_or_append([Page.remote(url, position, data)])

    def _set_error(self, error: Optional[DatasourceError]) -> None:
        if self._discarded or error is None:
            return
        self.error = error
        self._notify()

    def _update_or_append(self, pages: List[Page], error: Optional[DatasourceError] = None) -> None:
        if self._discarded:
            LOG.debug("Dropping %d late page result(s) for %s", len(pages), self.chapter.id)
            return
        changed = False
        for page in pages:
            existing = self._pages.get(page.url)
            merged = page if existing is None else merge_page(existing, page)
            if merged is not existing:
                self._pages[page.url] = merged
                changed = True
        if changed:
            self._ordered = sorted(self._pages.values(), key=lambda p: p.position)
        if error is not None:
            self.error = error
            changed = True
        if changed:
            self._notify()
