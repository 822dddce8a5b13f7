from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Type

from .base import PagesDelegate
from .mangadex import MangadexPagesDelegate
from .manganelo import ManganeloPagesDelegate

if TYPE_CHECKING:
    from ..http import HttpClient

SOURCES: Dict[str, Type[PagesDelegate]] = {
    MangadexPagesDelegate.name: MangadexPagesDelegate,
    ManganeloPagesDelegate.name: ManganeloPagesDelegate,
}


def build_delegate(name: str, http: "HttpClient") -> PagesDelegate:
    try:
        delegate_type = SOURCES[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown source {name!r} (known: {', '.join(sorted(SOURCES))})") from None
    return delegate_type(http)


__all__ = [
    "SOURCES",
    "PagesDelegate",
    "MangadexPagesDelegate",
    "ManganeloPagesDelegate",
    "build_delegate",
]
