"""Low-level helpers shared by the CardDAV engine and dispatcher."""

from __future__ import annotations

from enum import IntEnum
from http import HTTPStatus


class Depth(IntEnum):
    """Depth indicates whether a request applies to the resource's members.

    Defined in RFC 4918 section 10.2.
    """

    ZERO = 0  # Request applies only to the resource
    ONE = 1  # Request applies to resource and its internal members only
    INFINITY = -1  # Request applies to resource and all of its members


def parse_depth(s: str) -> Depth:
    """Parse a Depth header."""
    value = s.strip().lower()
    if value == "0":
        return Depth.ZERO
    elif value == "1":
        return Depth.ONE
    elif value == "infinity":
        return Depth.INFINITY
    else:
        raise HTTPError(400, Exception(f"carddav: invalid Depth value {s!r}"))


class HTTPError(Exception):
    """HTTP error with status code."""

    def __init__(self, code: int, err: Exception | None = None):
        self.code = code
        self.err = err
        super().__init__(str(self))

    @property
    def phrase(self) -> str:
        try:
            return HTTPStatus(self.code).phrase
        except ValueError:
            return "Unknown"

    def __str__(self) -> str:
        s = f"{self.code} {self.phrase}"
        if self.err:
            return f"{s}: {self.err}"
        return s


class UpstreamError(Exception):
    """The external data store could not be reached or answered garbage."""
