"""Continuous reading across chapter boundaries.

``ChapterReader`` owns the page engine of the chapter being read and,
at most, one more engine for the neighbouring chapter. The displayed
sequence is::

    [previous chapter pages] start-sentinel [current pages] end-sentinel [next chapter pages]

When the end (or start) sentinel becomes visible a transition engine is
created for the neighbour and its first (or last) block is loaded. The
reader only switches chapters once the user actually sees the first
page of the next group (or the last page of the previous group).
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from typing import Callable, List, Optional

from .directory import ChapterDirectory, ReadingProgress
from .errors import DatasourceError
from .models import ChapterRef, EntryGroup, Page, ReaderEntry, TransitionPage
from .pages import BLOCK_SIZE, DatasourceState, PagesDatasource
from .sources.base import PagesDelegate

LOG = logging.getLogger("mangareader.reader")

Listener = Callable[["ChapterReader"], None]


class Direction(enum.Enum):
    NEXT = "next"
    PREVIOUS = "previous"


class ChapterReader:
    def __init__(
        self,
        chapter: ChapterRef,
        delegate: PagesDelegate,
        directory: ChapterDirectory,
        progress: Optional[ReadingProgress] = None,
        save_data: bool = False,
        block_size: int = BLOCK_SIZE,
        max_fetches: Optional[int] = None,
    ):
        self.chapter = chapter
        self.delegate = delegate
        self.directory = directory
        self.progress = progress
        self.save_data = save_data
        self.block_size = block_size
        self.max_fetches = max_fetches

        self.next_chapter: Optional[ChapterRef] = None
        self.previous_chapter: Optional[ChapterRef] = None
        self.entries: List[ReaderEntry] = []
        self.initial_page_id: Optional[str] = None
        self.error: Optional[DatasourceError] = None

        self._datasource = self._make_datasource(chapter)
        self._transition: Optional[PagesDatasource] = None
        self._direction: Optional[Direction] = None
        self._listeners: List[Listener] = []
        self._closed = False
        self._rebuild()

    # ----- observation -----

    @property
    def datasource(self) -> PagesDatasource:
        return self._datasource

    @property
    def transition_datasource(self) -> Optional[PagesDatasource]:
        return self._transition

    @property
    def transition_direction(self) -> Optional[Direction]:
        return self._direction

    @property
    def start_transition(self) -> TransitionPage:
        return TransitionPage.start_of(self.chapter, self.previous_chapter)

    @property
    def end_transition(self) -> TransitionPage:
        return TransitionPage.end_of(self.chapter, self.next_chapter)

    @property
    def is_loading(self) -> bool:
        return self._datasource.state.is_loading

    @property
    def pages_count(self) -> int:
        return self._datasource.page_count

    def page_number(self, entry_id: str) -> int:
        """1-based page number of an entry inside the current chapter."""
        if entry_id == self.start_transition.id:
            return 1
        if entry_id == self.end_transition.id:
            return self.pages_count
        index = self._datasource.page_index(entry_id)
        return 0 if index is None else index + 1

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return remove

    def clear_error(self) -> None:
        self.error = None
        self._datasource.error = None
        if self._transition is not None:
            self._transition.error = None

    # ----- actions -----

    async def start(self, at_end: bool = False) -> None:
        await self._fetch_adjacent_chapters()
        await self._datasource.prepare()
        if not self._datasource.is_prepared:
            return
        if at_end:
            await self._datasource.load_end()
        else:
            await self._datasource.load_start()

        pages = self._datasource.pages
        if not pages:
            return
        initial = pages[-1] if at_end else pages[0]
        resume_at = self.chapter.last_page_read
        if not at_end and not self.chapter.is_read and resume_at is not None and 0 <= resume_at < len(pages):
            initial = pages[resume_at]
            await self._datasource.load_pages_if_needed(initial.id)
        self.initial_page_id = initial.id

    async def on_page_visible(self, entry_id: str) -> None:
        if self._closed:
            return

        if entry_id == self.end_transition.id:
            if self.next_chapter is not None:
                await self._enter(Direction.NEXT)
            return
        if entry_id == self.start_transition.id:
            if self.previous_chapter is not None:
                await self._enter(Direction.PREVIOUS)
            return

        transition = self._transition
        if transition is not None and entry_id in transition:
            if self._is_commit_trigger(transition, entry_id):
                await self._commit()
                await self._on_current_page(entry_id)
            else:
                await transition.load_pages_if_needed(entry_id)
            return

        if entry_id in self._datasource:
            await self._on_current_page(entry_id)

    async def reload_pages(self, starting_at: Page) -> None:
        engine = self._owner_of(starting_at.id)
        if engine is None:
            return
        pages = engine.pages
        index = engine.page_index(starting_at.id)
        if index is None:
            return
        targets = [page for page in pages[index:index + self.block_size] if page.is_not_found]
        if targets:
            await engine.reload_pages(targets)

    async def drain(self) -> None:
        await self._datasource.drain()
        if self._transition is not None:
            await self._transition.drain()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._datasource.discard()
        if self._transition is not None:
            self._transition.discard()
        self._listeners.clear()

    # ----- state machine -----

    async def _enter(self, direction: Direction) -> None:
        transition = self._transition
        if transition is not None:
            if self._direction is direction:
                if not transition.is_prepared and transition.state is DatasourceState.NORMAL:
                    LOG.info("Retrying %s chapter %s", direction.value, transition.chapter.id)
                    await self._prepare_transition(transition, direction)
                return
            LOG.debug("Dropping %s chapter %s", self._direction.value, transition.chapter.id)
            transition.discard()

        chapter = self.next_chapter if direction is Direction.NEXT else self.previous_chapter
        assert chapter is not None
        LOG.info("Approaching %s chapter: %s", direction.value, chapter.description)
        engine = self._make_datasource(chapter)
        self._transition = engine
        self._direction = direction
        self._rebuild()
        await self._prepare_transition(engine, direction)

    async def _prepare_transition(self, engine: PagesDatasource, direction: Direction) -> None:
        await engine.prepare()
        if engine is not self._transition or not engine.is_prepared:
            return
        if direction is Direction.NEXT:
            await engine.load_start()
        else:
            await engine.load_end()

    def _is_commit_trigger(self, transition: PagesDatasource, entry_id: str) -> bool:
        pages = transition.pages
        if not pages:
            return False
        if self._direction is Direction.NEXT:
            return pages[0].id == entry_id
        return pages[-1].id == entry_id

    async def _commit(self) -> None:
        new = self._transition
        direction = self._direction
        assert new is not None and direction is not None
        old = self._datasource
        old_chapter = self.chapter

        LOG.info("Moving to the %s chapter: %s", direction.value, new.chapter.description)
        self._datasource = new
        self.chapter = new.chapter
        self._transition = old
        if direction is Direction.NEXT:
            self._direction = Direction.PREVIOUS
            self.previous_chapter = old_chapter
            self.next_chapter = None
        else:
            self._direction = Direction.NEXT
            self.next_chapter = old_chapter
            self.previous_chapter = None
        self._rebuild()

        far_side = await self._lookup(direction)
        if self._datasource is not new:
            return
        if direction is Direction.NEXT:
            self.next_chapter = far_side
        else:
            self.previous_chapter = far_side
        self._rebuild()

    async def _on_current_page(self, page_id: str) -> None:
        await asyncio.gather(
            self._datasource.load_pages_if_needed(page_id),
            self._record_progress(page_id),
        )

    async def _record_progress(self, page_id: str) -> None:
        index = self._datasource.page_index(page_id)
        if index is None:
            return
        is_read = index >= self.pages_count - 1
        chapter = self.chapter
        self.chapter = chapter.with_progress(index, is_read)
        if self.progress is None:
            return
        try:
            await self.progress.update_last_page_read(chapter.id, index, is_read)
        except Exception as exc:
            LOG.warning("Could not save progress of %s: %s", chapter.id, exc)

    async def _fetch_adjacent_chapters(self) -> None:
        self.next_chapter = await self._lookup(Direction.NEXT)
        self.previous_chapter = await self._lookup(Direction.PREVIOUS)
        self._rebuild()

    async def _lookup(self, direction: Direction) -> Optional[ChapterRef]:
        chapter = self.chapter
        try:
            if direction is Direction.NEXT:
                return await self.directory.find_next_chapter(chapter.id, chapter.manga_id)
            return await self.directory.find_previous_chapter(chapter.id, chapter.manga_id)
        except Exception as exc:
            LOG.warning("Could not look up %s chapter of %s: %s", direction.value, chapter.id, exc)
            return None

    # ----- helpers -----

    def _make_datasource(self, chapter: ChapterRef) -> PagesDatasource:
        engine = PagesDatasource(
            chapter,
            self.delegate,
            save_data=self.save_data,
            block_size=self.block_size,
            max_fetches=self.max_fetches,
        )
        engine.add_listener(self._on_engine_change)
        return engine

    def _on_engine_change(self, engine: PagesDatasource) -> None:
        if engine.error is not None:
            self.error = engine.error
        self._rebuild()

    def _owner_of(self, page_id: str) -> Optional[PagesDatasource]:
        if page_id in self._datasource:
            return self._datasource
        if self._transition is not None and page_id in self._transition:
            return self._transition
        return None

    def _rebuild(self) -> None:
        transition = self._transition
        entries: List[ReaderEntry] = []
        if transition is not None and self._direction is Direction.PREVIOUS:
            entries.extend(ReaderEntry(EntryGroup.PREVIOUS, page=page) for page in transition.pages)
        entries.append(ReaderEntry(EntryGroup.CURRENT, transition=self.start_transition))
        entries.extend(ReaderEntry(EntryGroup.CURRENT, page=page) for page in self._datasource.pages)
        entries.append(ReaderEntry(EntryGroup.CURRENT, transition=self.end_transition))
        if transition is not None and self._direction is Direction.NEXT:
            entries.extend(ReaderEntry(EntryGroup.NEXT, page=page) for page in transition.pages)
        self.entries = entries

        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                LOG.exception("Reader listener failed")
