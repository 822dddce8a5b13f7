from __future__ import annotations

import argparse
import asyncio
import logging
import pathlib
from typing import List, Optional, Sequence

from tqdm import tqdm

from .config import Settings, load_settings, setup_logging
from .directory import ChapterStore
from .errors import DatasourceError, StoreError
from .export import export_chapter_pdf
from .http import open_http_client
from .models import ChapterRef
from .reader import ChapterReader
from .sources import SOURCES, build_delegate

LOG = logging.getLogger("mangareader.cli")


def _cmd_chapters_add(args: argparse.Namespace, store: ChapterStore) -> int:
    chapter = ChapterRef(
        id=args.chapter_id,
        manga_id=args.manga_id,
        download_info=args.info,
        number=args.number,
        title=args.title,
    )
    store.upsert_chapter(chapter)
    print(f"Saved {chapter.description} ({chapter.id})")
    return 0


def _cmd_chapters_list(args: argparse.Namespace, store: ChapterStore) -> int:
    chapters = store.list_chapters(args.manga_id)
    if not chapters:
        print(f"No chapters stored for {args.manga_id}")
        return 0
    for chapter in chapters:
        if chapter.is_read:
            progress = "read"
        elif chapter.last_page_read is not None:
            progress = f"page {chapter.last_page_read + 1}"
        else:
            progress = "-"
        print(f"{chapter.id}\t{chapter.description}\t{progress}")
    return 0


async def _read_chapter(reader: ChapterReader, start_id: Optional[str]) -> List[str]:
    """Walk the current chapter page by page; return ids still missing."""
    engine = reader.datasource
    pages = engine.pages
    start = engine.page_index(start_id) if start_id else 0
    missing: List[str] = []
    bar = tqdm(total=len(pages), initial=start or 0, ncols=80, desc=reader.chapter.description)
    try:
        for page in pages[start or 0:]:
            await reader.on_page_visible(page.id)
            await reader.drain()
            current = engine.get_page(page.id)
            if current is not None and current.is_not_found:
                LOG.info("Retrying page %d of %s", current.position + 1, reader.chapter.id)
                await reader.reload_pages(current)
                await reader.drain()
                current = engine.get_page(page.id)
            if current is None or not current.is_remote:
                missing.append(page.id)
            bar.update(1)
    finally:
        bar.close()
    return missing


async def _cross_to_next(reader: ChapterReader) -> Optional[str]:
    await reader.on_page_visible(reader.end_transition.id)
    await reader.drain()
    transition = reader.transition_datasource
    if transition is None or not transition.pages:
        return None
    first_id = transition.pages[0].id
    await reader.on_page_visible(first_id)
    return first_id


async def _read_session(args: argparse.Namespace, settings: Settings, store: ChapterStore) -> int:
    chapter = store.get_chapter(args.chapter_id)
    if chapter is None or chapter.manga_id != args.manga_id:
        print(f"Unknown chapter {args.chapter_id} for manga {args.manga_id}; add it with 'chapters add'.")
        return 1

    out_root = pathlib.Path(args.out).expanduser() if args.out else settings.output_dir
    save_data = args.data_saver or settings.data_saver
    failures = 0

    async with open_http_client(settings.http_timeout_ms, settings.http_retries) as http:
        delegate = build_delegate(args.source, http)
        reader = ChapterReader(
            chapter,
            delegate,
            store,
            progress=store,
            save_data=save_data,
            max_fetches=settings.max_fetches,
        )
        try:
            await reader.start()
            if reader.error is not None and not reader.datasource.pages:
                print(f"Could not open {chapter.description}: {reader.error.description}")
                return 1

            start_id = reader.initial_page_id
            for done in range(1, args.chapters + 1):
                current = reader.chapter
                missing = await _read_chapter(reader, start_id)
                if missing:
                    failures += 1
                    LOG.warning("%s: %d page(s) could not be loaded", current.description, len(missing))
                try:
                    pdf = export_chapter_pdf(current, reader.datasource.pages, out_root)
                    print(f"Saved {pdf}")
                except DatasourceError as exc:
                    failures += 1
                    print(f"Nothing to export for {current.description}: {exc.description}")

                if done == args.chapters:
                    break
                if reader.next_chapter is None:
                    print("No next chapter.")
                    break
                start_id = await _cross_to_next(reader)
                if start_id is None or reader.chapter.id == current.id:
                    error = reader.error.description if reader.error else "no pages"
                    print(f"Could not open the next chapter: {error}")
                    failures += 1
                    break
        finally:
            reader.close()
    return 1 if failures else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mangareader", description="Read manga chapters continuously.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to the console.")
    sub = parser.add_subparsers(dest="command", required=True)

    chapters = sub.add_parser("chapters", help="Manage the local chapter list.")
    chapters_sub = chapters.add_subparsers(dest="chapters_command", required=True)

    add = chapters_sub.add_parser("add", help="Add or update a chapter.")
    add.add_argument("manga_id")
    add.add_argument("chapter_id")
    add.add_argument("--number", type=float, required=True, help="Chapter number used for ordering.")
    add.add_argument("--title", default=None)
    add.add_argument(
        "--info",
        required=True,
        help="Source handle: MangaDex chapter uuid or Manganelo chapter url.",
    )

    listing = chapters_sub.add_parser("list", help="List the chapters of a manga.")
    listing.add_argument("manga_id")

    read = sub.add_parser("read", help="Read chapters and export them to PDF.")
    read.add_argument("source", choices=sorted(SOURCES))
    read.add_argument("manga_id")
    read.add_argument("chapter_id")
    read.add_argument("--chapters", type=int, default=1, help="How many chapters to read in a row.")
    read.add_argument("--out", default=None, help="Output directory (defaults to OUTPUT_DIR).")
    read.add_argument("--data-saver", action="store_true", help="Ask the source for reduced-size pages.")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "read" and args.chapters < 1:
        parser.error("--chapters must be at least 1")

    settings = load_settings()
    setup_logging(settings.log_dir, verbose=args.verbose)
    store = ChapterStore(settings.db_path)

    try:
        if args.command == "chapters":
            if args.chapters_command == "add":
                return _cmd_chapters_add(args, store)
            return _cmd_chapters_list(args, store)
        return asyncio.run(_read_session(args, settings, store))
    except StoreError as exc:
        print(f"Database error: {exc}")
        return 1
    except KeyboardInterrupt:
        print("Interrupted.")
        return 130


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
