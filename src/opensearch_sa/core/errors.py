"""
Error taxonomy for the security analytics client and controllers.

Every failure raised below the host layer is an `SaError` carrying an
`ErrorKind`. Callers branch on the kind (or the subclass), never on the
message text:

- URL_BUILD  : a path could not be built from identifier/category values
- TRANSPORT  : network failure (status 0) or a non-2xx HTTP response
- DECODE     : a response body was not the JSON we expected
- NOT_FOUND  : a search-by-id returned zero hits
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    URL_BUILD = "url_build"
    TRANSPORT = "transport"
    DECODE = "decode"
    NOT_FOUND = "not_found"


class SaError(Exception):
    """Base error for everything raised by the client and controllers."""

    kind: ErrorKind = ErrorKind.TRANSPORT


class UrlBuildError(SaError):
    """Raised when an identifier or category cannot be placed in a path."""

    kind = ErrorKind.URL_BUILD


@dataclass
class TransportError(SaError):
    """HTTP/transport error with context."""

    status: int
    url: str
    body: str = ""
    message: str = ""

    kind = ErrorKind.TRANSPORT

    def __str__(self) -> str:
        base = f"TransportError(status={self.status}, url={self.url})"
        if self.message:
            base += f": {self.message}"
        if self.body:
            base += f" body={self.body[:200]}"
        return base


@dataclass
class DecodeError(SaError):
    """A response could not be decoded; `body` holds the offending payload."""

    what: str
    body: str
    message: str = ""

    kind = ErrorKind.DECODE

    def __str__(self) -> str:
        return f"error unmarshalling {self.what}: {self.message}: {self.body[:500]}"


@dataclass
class NotFoundError(SaError):
    """No search results for the given entity id."""

    entity_id: str

    kind = ErrorKind.NOT_FOUND

    def __str__(self) -> str:
        return f"no search results found for ID: {self.entity_id}"


def is_not_found(err: BaseException) -> bool:
    return isinstance(err, SaError) and err.kind is ErrorKind.NOT_FOUND
