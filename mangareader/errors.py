"""Error kinds surfaced by the page engine and its collaborators."""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Optional

LOG = logging.getLogger("mangareader.errors")


class HttpError(Exception):
    """Transport failure or a non-OK response."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    @classmethod
    def response_not_ok(cls, status: int) -> "HttpError":
        return cls(
            f"Got response code {status}. You may need to wait before trying again",
            status=status,
        )


class ParserError(Exception):
    """A source answered with something we could not parse."""

    @classmethod
    def parameter_not_found(cls, name: str) -> "ParserError":
        return cls(f"The parameter {name} not found")


class StoreError(Exception):
    pass


class ErrorKind(enum.Enum):
    NETWORK = "network"
    PARSING = "parsing"
    DATABASE = "database"
    UNEXPECTED = "unexpected"
    OTHER = "other"


_PREFIXES = {
    ErrorKind.NETWORK: "Error during network request",
    ErrorKind.PARSING: "Error while parsing the request response",
    ErrorKind.DATABASE: "Error during database operations",
    ErrorKind.UNEXPECTED: "Unexpected error",
}


class DatasourceError(Exception):
    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    @classmethod
    def network(cls, message: str) -> "DatasourceError":
        return cls(ErrorKind.NETWORK, message)

    @classmethod
    def parsing(cls, message: str) -> "DatasourceError":
        return cls(ErrorKind.PARSING, message)

    @classmethod
    def unexpected(cls, message: str) -> "DatasourceError":
        return cls(ErrorKind.UNEXPECTED, message)

    @classmethod
    def other(cls, message: str) -> "DatasourceError":
        return cls(ErrorKind.OTHER, message)

    @property
    def description(self) -> str:
        prefix = _PREFIXES.get(self.kind)
        if prefix is None:
            return self.message
        return f"{prefix}\n{self.message}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DatasourceError):
            return NotImplemented
        return self.kind == other.kind and self.message == other.message

    def __hash__(self) -> int:
        return hash((self.kind, self.message))

    def __repr__(self) -> str:
        return f"DatasourceError({self.kind.value}, {self.message!r})"


def catch_error(exc: BaseException) -> Optional[DatasourceError]:
    """Map any exception to the error kind shown to the reader.

    Cancellation is not an error: it is logged and ``None`` is returned.
    """
    if isinstance(exc, asyncio.CancelledError):
        LOG.debug("Task cancelled")
        return None
    if isinstance(exc, DatasourceError):
        return exc
    if isinstance(exc, HttpError):
        return DatasourceError.network(str(exc))
    if isinstance(exc, ParserError):
        return DatasourceError.parsing(str(exc))
    if isinstance(exc, StoreError):
        return DatasourceError(ErrorKind.DATABASE, str(exc))
    return DatasourceError.unexpected(str(exc) or exc.__class__.__name__)
