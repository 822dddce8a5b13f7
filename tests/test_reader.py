"""Tests for continuous reading across chapter boundaries."""

import asyncio

import pytest

from mangareader.errors import ErrorKind
from mangareader.models import EntryGroup, TransitionKind
from mangareader.reader import ChapterReader, Direction
from tests.fakes import RecordingProgress, make_chapter, page_url


async def open_reader(chapter, delegate, directory, **kwargs) -> ChapterReader:
    reader = ChapterReader(chapter, delegate, directory, **kwargs)
    await reader.start()
    await reader.drain()
    return reader


def chapter_by_id(chapters, chapter_id):
    return next(c for c in chapters if c.id == chapter_id)


class TestStart:
    """Tests for ChapterReader.start."""

    @pytest.mark.asyncio
    async def test_sentinels_wrap_current_pages(self, delegate, directory, chapters):
        reader = ChapterReader(chapter_by_id(chapters, "c2"), delegate, directory)
        assert reader.is_loading

        await reader.start()
        await reader.drain()

        ids = [entry.id for entry in reader.entries]
        assert ids[0] == "transition-page-c1-c2"
        assert ids[-1] == "transition-page-c2-c3"
        assert ids[1:-1] == [page_url("c2", i) for i in range(12)]
        assert all(entry.group is EntryGroup.CURRENT for entry in reader.entries)
        assert not reader.is_loading
        assert reader.initial_page_id == page_url("c2", 0)
        assert delegate.fetched("c2") == list(range(10))

    @pytest.mark.asyncio
    async def test_first_and_last_chapters_have_no_neighbour(self, delegate, directory, chapters):
        first = await open_reader(chapter_by_id(chapters, "c1"), delegate, directory)
        last = await open_reader(chapter_by_id(chapters, "c3"), delegate, directory)

        assert first.start_transition.kind is TransitionKind.NO_PREVIOUS
        assert first.start_transition.id == "no-previous-chapter-c1"
        assert last.end_transition.kind is TransitionKind.NO_NEXT
        assert last.end_transition.id == "no-next-chapter-c3"

    @pytest.mark.asyncio
    async def test_start_at_end(self, delegate, directory, chapters):
        reader = ChapterReader(chapter_by_id(chapters, "c1"), delegate, directory)
        await reader.start(at_end=True)
        await reader.drain()

        assert reader.initial_page_id == page_url("c1", 22)
        assert delegate.fetched("c1") == [20, 21, 22]

    @pytest.mark.asyncio
    async def test_resumes_at_last_page_read(self, delegate, directory):
        chapter = make_chapter("c1", 1, last_page_read=14)
        reader = await open_reader(chapter, delegate, directory)

        assert reader.initial_page_id == page_url("c1", 14)
        assert delegate.fetched("c1") == list(range(20))

    @pytest.mark.asyncio
    async def test_read_chapter_starts_from_first_page(self, delegate, directory):
        chapter = make_chapter("c1", 1, last_page_read=14, is_read=True)
        reader = await open_reader(chapter, delegate, directory)

        assert reader.initial_page_id == page_url("c1", 0)

    @pytest.mark.asyncio
    async def test_directory_failure_means_no_neighbours(self, delegate, directory, chapters):
        directory.fail = True
        reader = await open_reader(chapter_by_id(chapters, "c2"), delegate, directory)

        assert reader.next_chapter is None
        assert reader.previous_chapter is None
        assert reader.end_transition.id == "no-next-chapter-c2"

    @pytest.mark.asyncio
    async def test_page_numbers(self, delegate, directory, chapters):
        reader = await open_reader(chapter_by_id(chapters, "c1"), delegate, directory)

        assert reader.page_number(reader.start_transition.id) == 1
        assert reader.page_number(page_url("c1", 4)) == 5
        assert reader.page_number(reader.end_transition.id) == 23


class TestBoundaryEntry:
    """Tests for approaching a chapter boundary."""

    @pytest.mark.asyncio
    async def test_end_sentinel_opens_next_chapter(self, delegate, directory, chapters):
        reader = await open_reader(chapter_by_id(chapters, "c1"), delegate, directory)

        await reader.on_page_visible(reader.end_transition.id)
        await reader.drain()

        assert reader.transition_direction is Direction.NEXT
        assert reader.transition_datasource.chapter.id == "c2"
        assert reader.chapter.id == "c1"
        assert delegate.fetched("c2") == list(range(10))
        tail = reader.entries[-12:]
        assert [e.id for e in tail] == [page_url("c2", i) for i in range(12)]
        assert all(e.group is EntryGroup.NEXT for e in tail)

    @pytest.mark.asyncio
    async def test_repeated_sentinel_creates_one_engine(self, delegate, directory, chapters):
        reader = await open_reader(chapter_by_id(chapters, "c1"), delegate, directory)
        end_id = reader.end_transition.id

        await asyncio.gather(reader.on_page_visible(end_id), reader.on_page_visible(end_id))
        engine = reader.transition_datasource
        await reader.on_page_visible(end_id)
        await reader.drain()

        assert reader.transition_datasource is engine
        assert delegate.info_calls.count("c2") == 1
        assert delegate.fetched("c2") == list(range(10))

    @pytest.mark.asyncio
    async def test_no_next_chapter_never_transitions(self, delegate, directory, chapters):
        reader = await open_reader(chapter_by_id(chapters, "c3"), delegate, directory)

        await reader.on_page_visible("no-next-chapter-c3")
        await reader.drain()

        assert reader.transition_datasource is None
        assert reader.end_transition.kind is TransitionKind.NO_NEXT
        assert delegate.info_calls == ["c3"]

    @pytest.mark.asyncio
    async def test_start_sentinel_loads_end_of_previous(self, delegate, directory, chapters):
        reader = await open_reader(chapter_by_id(chapters, "c2"), delegate, directory)

        await reader.on_page_visible(reader.start_transition.id)
        await reader.drain()

        assert reader.transition_direction is Direction.PREVIOUS
        assert delegate.fetched("c1") == [20, 21, 22]
        head = reader.entries[:23]
        assert all(e.group is EntryGroup.PREVIOUS for e in head)
        assert reader.entries[23].id == "transition-page-c1-c2"

    @pytest.mark.asyncio
    async def test_opposite_boundary_discards_transition(self, delegate, directory, chapters):
        reader = await open_reader(chapter_by_id(chapters, "c2"), delegate, directory)
        await reader.on_page_visible(reader.end_transition.id)
        await reader.drain()
        next_engine = reader.transition_datasource

        await reader.on_page_visible(reader.start_transition.id)
        await reader.drain()

        assert next_engine.discarded
        assert reader.transition_direction is Direction.PREVIOUS
        assert reader.transition_datasource.chapter.id == "c1"
        assert not any(e.group is EntryGroup.NEXT for e in reader.entries)

    @pytest.mark.asyncio
    async def test_failed_transition_is_retried(self, delegate, directory, chapters):
        reader = await open_reader(chapter_by_id(chapters, "c1"), delegate, directory)
        delegate.info_failures = 1

        await reader.on_page_visible(reader.end_transition.id)
        await reader.drain()

        assert reader.error.kind is ErrorKind.NETWORK
        assert reader.transition_datasource.pages == []

        await reader.on_page_visible(reader.end_transition.id)
        await reader.drain()

        assert delegate.info_calls.count("c2") == 2
        assert reader.transition_datasource.page_count == 12
        assert delegate.fetched("c2") == list(range(10))

    @pytest.mark.asyncio
    async def test_transition_pages_load_lazily(self, delegate, directory, chapters):
        reader = await open_reader(chapter_by_id(chapters, "c1"), delegate, directory)
        await reader.on_page_visible(reader.end_transition.id)
        await reader.drain()
        pages = reader.transition_datasource.pages

        await reader.on_page_visible(pages[5].id)
        await reader.on_page_visible(pages[9].id)
        await reader.drain()

        assert reader.chapter.id == "c1"
        assert delegate.fetched("c2") == list(range(12))


class TestCommit:
    """Tests for crossing into the neighbouring chapter."""

    @pytest.mark.asyncio
    async def test_commit_into_next_chapter(self, delegate, directory, chapters):
        progress = RecordingProgress()
        reader = await open_reader(chapter_by_id(chapters, "c1"), delegate, directory, progress=progress)
        await reader.on_page_visible(reader.end_transition.id)
        await reader.drain()
        old_engine = reader.datasource
        first = reader.transition_datasource.pages[0].id
        directory.lookups.clear()

        await reader.on_page_visible(first)
        await reader.drain()

        assert reader.chapter.id == "c2"
        assert reader.previous_chapter.id == "c1"
        assert reader.next_chapter.id == "c3"
        assert directory.lookups == [("next", "c2")]
        assert reader.transition_datasource is old_engine
        assert reader.transition_direction is Direction.PREVIOUS
        assert progress.calls == [("c2", 0, False)]

        ids = [e.id for e in reader.entries]
        assert ids[23] == "transition-page-c1-c2"
        assert ids[-1] == "transition-page-c2-c3"
        assert all(e.group is EntryGroup.PREVIOUS for e in reader.entries[:23])

    @pytest.mark.asyncio
    async def test_commit_into_previous_chapter(self, delegate, directory, chapters):
        reader = await open_reader(chapter_by_id(chapters, "c2"), delegate, directory)
        await reader.on_page_visible(reader.start_transition.id)
        await reader.drain()
        last = reader.transition_datasource.pages[-1].id
        directory.lookups.clear()

        await reader.on_page_visible(last)
        await reader.drain()

        assert reader.chapter.id == "c1"
        assert reader.next_chapter.id == "c2"
        assert reader.previous_chapter is None
        assert directory.lookups == [("previous", "c1")]
        assert reader.start_transition.id == "no-previous-chapter-c1"
        assert reader.end_transition.id == "transition-page-c1-c2"
        assert reader.transition_direction is Direction.NEXT
        assert all(e.group is EntryGroup.NEXT for e in reader.entries[-12:])

    @pytest.mark.asyncio
    async def test_can_cross_back(self, delegate, directory, chapters):
        reader = await open_reader(chapter_by_id(chapters, "c1"), delegate, directory)
        await reader.on_page_visible(reader.end_transition.id)
        await reader.drain()
        await reader.on_page_visible(reader.transition_datasource.pages[0].id)
        await reader.drain()

        await reader.on_page_visible(reader.transition_datasource.pages[-1].id)
        await reader.drain()

        assert reader.chapter.id == "c1"
        assert reader.next_chapter.id == "c2"
        assert reader.transition_datasource.chapter.id == "c2"


class TestProgressAndRetry:
    """Tests for progress recording and retries."""

    @pytest.mark.asyncio
    async def test_visible_pages_record_progress(self, delegate, directory, chapters):
        progress = RecordingProgress()
        reader = await open_reader(chapter_by_id(chapters, "c1"), delegate, directory, progress=progress)

        await reader.on_page_visible(page_url("c1", 4))
        assert reader.chapter.last_page_read == 4
        assert not reader.chapter.is_read

        await reader.on_page_visible(page_url("c1", 22))
        await reader.drain()

        assert progress.calls == [("c1", 4, False), ("c1", 22, True)]
        assert reader.chapter.is_read
        assert delegate.fetched("c1") == list(range(10)) + [20, 21, 22]

    @pytest.mark.asyncio
    async def test_reload_collects_one_block_of_failed_pages(self, delegate, directory, chapters):
        delegate.failing.update({("c1", 1), ("c1", 3), ("c1", 12)})
        reader = await open_reader(chapter_by_id(chapters, "c1"), delegate, directory)
        await reader.on_page_visible(page_url("c1", 9))
        await reader.drain()
        assert reader.error.kind is ErrorKind.NETWORK

        delegate.failing.clear()
        await reader.reload_pages(reader.datasource.pages[1])

        assert sorted(delegate.url_fetches) == [page_url("c1", 1), page_url("c1", 3)]
        pages = reader.datasource.pages
        assert pages[1].is_remote and pages[3].is_remote
        assert pages[12].is_not_found

    @pytest.mark.asyncio
    async def test_clear_error(self, delegate, directory, chapters):
        delegate.failing.add(("c1", 0))
        reader = await open_reader(chapter_by_id(chapters, "c1"), delegate, directory)
        assert reader.error is not None

        reader.clear_error()

        assert reader.error is None
        assert reader.datasource.error is None

    @pytest.mark.asyncio
    async def test_close_discards_engines(self, delegate, directory, chapters):
        reader = await open_reader(chapter_by_id(chapters, "c1"), delegate, directory)
        await reader.on_page_visible(reader.end_transition.id)
        await reader.drain()
        current, transition = reader.datasource, reader.transition_datasource

        reader.close()
        await reader.on_page_visible(reader.end_transition.id)

        assert current.discarded and transition.discarded
        assert delegate.info_calls.count("c2") == 1

    @pytest.mark.asyncio
    async def test_listeners_follow_rebuilds(self, delegate, directory, chapters):
        reader = ChapterReader(chapter_by_id(chapters, "c1"), delegate, directory)
        seen = []
        reader.add_listener(lambda r: seen.append(len(r.entries)))

        await reader.start()
        await reader.drain()

        assert seen
        assert seen[-1] == 25
