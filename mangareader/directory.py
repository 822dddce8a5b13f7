"""Chapter lookups and reading progress backed by SQLite.

The reader only needs two things from persistence: the chapters right
before and after the one being read (ordered by chapter number) and a
place to record how far the user got. ``ChapterDirectory`` and
``ReadingProgress`` describe those seams; ``ChapterStore`` implements
both on a small SQLite file so the CLI can keep a local catalogue.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import pathlib
import sqlite3
import time
from typing import List, Optional, Tuple

from .errors import StoreError
from .models import ChapterRef

LOG = logging.getLogger("mangareader.directory")


class ChapterDirectory(abc.ABC):
    @abc.abstractmethod
    async def find_next_chapter(self, chapter_id: str, manga_id: str) -> Optional[ChapterRef]:
        ...

    @abc.abstractmethod
    async def find_previous_chapter(self, chapter_id: str, manga_id: str) -> Optional[ChapterRef]:
        ...


class ReadingProgress(abc.ABC):
    @abc.abstractmethod
    async def update_last_page_read(self, chapter_id: str, last_page_read: int, is_read: bool) -> None:
        ...


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS chapters (
            id TEXT PRIMARY KEY,
            manga_id TEXT NOT NULL,
            number REAL,
            title TEXT,
            download_info TEXT NOT NULL,
            number_of_pages INTEGER NOT NULL DEFAULT 0,
            is_read INTEGER NOT NULL DEFAULT 0,
            last_page_read INTEGER,
            added_at INTEGER NOT NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS chapters_by_manga ON chapters(manga_id)")
    conn.commit()


_COLUMNS = "id, manga_id, number, title, download_info, number_of_pages, is_read, last_page_read"

Row = Tuple[str, str, Optional[float], Optional[str], str, int, int, Optional[int]]


def _row_to_chapter(row: Row) -> ChapterRef:
    chapter_id, manga_id, number, title, download_info, pages, is_read, last_page = row
    return ChapterRef(
        id=chapter_id,
        manga_id=manga_id,
        download_info=download_info,
        number=number,
        title=title,
        number_of_pages=int(pages or 0),
        is_read=bool(is_read),
        last_page_read=last_page,
    )


def chapter_sort_key(chapter: ChapterRef) -> tuple:
    return (chapter.number is None, chapter.number or 0.0, chapter.id)


class ChapterStore(ChapterDirectory, ReadingProgress):
    def __init__(self, db_path: pathlib.Path):
        self.db_path = pathlib.Path(db_path)

    def _connect(self) -> sqlite3.Connection:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path))
            _ensure_schema(conn)
        except (OSError, sqlite3.Error) as exc:
            raise StoreError(f"Could not open chapter store {self.db_path}: {exc}") from exc
        return conn

    def upsert_chapter(self, chapter: ChapterRef) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO chapters(id, manga_id, number, title, download_info,
                                     number_of_pages, is_read, last_page_read, added_at)
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    manga_id = excluded.manga_id,
                    number = excluded.number,
                    title = excluded.title,
                    download_info = excluded.download_info,
                    number_of_pages = excluded.number_of_pages
                """,
                (
                    chapter.id,
                    chapter.manga_id,
                    chapter.number,
                    chapter.title,
                    chapter.download_info,
                    chapter.number_of_pages,
                    int(chapter.is_read),
                    chapter.last_page_read,
                    int(time.time()),
                ),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not save chapter {chapter.id}: {exc}") from exc
        finally:
            conn.close()

    def get_chapter(self, chapter_id: str) -> Optional[ChapterRef]:
        conn = self._connect()
        try:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM chapters WHERE id = ?", (chapter_id,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not read chapter {chapter_id}: {exc}") from exc
        finally:
            conn.close()
        return _row_to_chapter(row) if row else None

    def list_chapters(self, manga_id: str) -> List[ChapterRef]:
        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM chapters WHERE manga_id = ?", (manga_id,)
            ).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not list chapters of {manga_id}: {exc}") from exc
        finally:
            conn.close()
        return sorted((_row_to_chapter(row) for row in rows), key=chapter_sort_key)

    def neighbour(self, chapter_id: str, manga_id: str, step: int) -> Optional[ChapterRef]:
        chapters = self.list_chapters(manga_id)
        for index, chapter in enumerate(chapters):
            if chapter.id == chapter_id:
                target = index + step
                if 0 <= target < len(chapters):
                    return chapters[target]
                return None
        return None

    async def find_next_chapter(self, chapter_id: str, manga_id: str) -> Optional[ChapterRef]:
        return await asyncio.to_thread(self.neighbour, chapter_id, manga_id, 1)

    async def find_previous_chapter(self, chapter_id: str, manga_id: str) -> Optional[ChapterRef]:
        return await asyncio.to_thread(self.neighbour, chapter_id, manga_id, -1)

    def set_last_page_read(self, chapter_id: str, last_page_read: int, is_read: bool) -> None:
        conn = self._connect()
        try:
            cur = conn.execute(
                "UPDATE chapters SET last_page_read = ?, is_read = ? WHERE id = ?",
                (last_page_read, int(is_read), chapter_id),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not update chapter {chapter_id}: {exc}") from exc
        finally:
            conn.close()
        if cur.rowcount == 0:
            LOG.debug("No stored chapter %s to update progress for", chapter_id)

    async def update_last_page_read(self, chapter_id: str, last_page_read: int, is_read: bool) -> None:
        await asyncio.to_thread(self.set_last_page_read, chapter_id, last_page_read, is_read)
