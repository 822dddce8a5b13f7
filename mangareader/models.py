from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import List, Optional


@dataclass(frozen=True)
class ChapterRef:
    id: str
    manga_id: str
    download_info: str
    number: Optional[float] = None
    title: Optional[str] = None
    number_of_pages: int = 0
    is_read: bool = False
    last_page_read: Optional[int] = None

    @property
    def description(self) -> str:
        if self.number is None:
            identifier = "N/A"
        elif float(self.number).is_integer():
            identifier = f"{self.number:.0f}"
        else:
            identifier = f"{self.number:.2f}".rstrip("0")
        if self.title:
            return f"Chapter {identifier} - {self.title}"
        return f"Chapter {identifier}"

    def with_progress(self, last_page_read: int, is_read: bool) -> "ChapterRef":
        return replace(self, last_page_read=last_page_read, is_read=is_read)


@dataclass(frozen=True)
class DownloadInfo:
    """Per chapter token handed out by a source delegate.

    ``pages`` holds whatever the delegate needs to address each page
    (file names, absolute urls...); only the delegate interprets it.
    """

    download_url: str
    pages: List[str] = field(default_factory=list)

    @property
    def number_of_pages(self) -> int:
        return len(self.pages)


class PageState(enum.Enum):
    LOADING = "loading"
    REMOTE = "remote"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Page:
    url: str
    position: int
    state: PageState = PageState.LOADING
    data: Optional[bytes] = field(default=None, repr=False)

    @property
    def id(self) -> str:
        return self.url

    @classmethod
    def loading(cls, url: str, position: int) -> "Page":
        return cls(url, position, PageState.LOADING)

    @classmethod
    def remote(cls, url: str, position: int, data: bytes) -> "Page":
        return cls(url, position, PageState.REMOTE, data)

    @classmethod
    def not_found(cls, url: str, position: int) -> "Page":
        return cls(url, position, PageState.NOT_FOUND)

    @property
    def is_loading(self) -> bool:
        return self.state is PageState.LOADING

    @property
    def is_remote(self) -> bool:
        return self.state is PageState.REMOTE

    @property
    def is_not_found(self) -> bool:
        return self.state is PageState.NOT_FOUND


@dataclass
class PaginationBlock:
    pages: List[str]
    loaded: bool = False


class TransitionKind(enum.Enum):
    TO_PREVIOUS = "to_previous"
    TO_NEXT = "to_next"
    NO_PREVIOUS = "no_previous"
    NO_NEXT = "no_next"


@dataclass(frozen=True)
class TransitionPage:
    kind: TransitionKind
    current_id: str
    current_label: str
    other_id: Optional[str] = None
    other_label: Optional[str] = None

    @classmethod
    def start_of(cls, current: ChapterRef, previous: Optional[ChapterRef]) -> "TransitionPage":
        if previous is None:
            return cls(TransitionKind.NO_PREVIOUS, current.id, current.description)
        return cls(
            TransitionKind.TO_PREVIOUS,
            current.id,
            current.description,
            previous.id,
            previous.description,
        )

    @classmethod
    def end_of(cls, current: ChapterRef, following: Optional[ChapterRef]) -> "TransitionPage":
        if following is None:
            return cls(TransitionKind.NO_NEXT, current.id, current.description)
        return cls(
            TransitionKind.TO_NEXT,
            current.id,
            current.description,
            following.id,
            following.description,
        )

    @property
    def id(self) -> str:
        # Same boundary, same id: "A -> B" seen from A equals "B <- A" seen from B.
        if self.kind is TransitionKind.TO_PREVIOUS:
            return f"transition-page-{self.other_id}-{self.current_id}"
        if self.kind is TransitionKind.TO_NEXT:
            return f"transition-page-{self.current_id}-{self.other_id}"
        if self.kind is TransitionKind.NO_NEXT:
            return f"no-next-chapter-{self.current_id}"
        return f"no-previous-chapter-{self.current_id}"

    @property
    def is_start(self) -> bool:
        return self.kind in (TransitionKind.TO_PREVIOUS, TransitionKind.NO_PREVIOUS)

    @property
    def has_neighbour(self) -> bool:
        return self.kind in (TransitionKind.TO_PREVIOUS, TransitionKind.TO_NEXT)


class EntryGroup(enum.Enum):
    PREVIOUS = "previous"
    CURRENT = "current"
    NEXT = "next"


@dataclass(frozen=True)
class ReaderEntry:
    """One slot of the displayed sequence: a page or a chapter boundary."""

    group: EntryGroup
    page: Optional[Page] = None
    transition: Optional[TransitionPage] = None

    @property
    def id(self) -> str:
        if self.page is not None:
            return self.page.id
        assert self.transition is not None
        return self.transition.id

    @property
    def is_transition(self) -> bool:
        return self.transition is not None
