"""Exception types raised while resolving the latest release.

Exceptions are used inside the package to signal failures. The resolver
catches them at its boundary and turns them into outcome objects, see
:mod:`ghlatest.resolver`.
"""

from __future__ import annotations

import enum


class GhLatestError(Exception):
    """Base class for all errors raised by ghlatest"""


class ParseError(GhLatestError, ValueError):
    """A tag or constraint is not a recognizable version expression"""

    def __init__(self, value: str, reason: str) -> None:
        self.value = value
        self.reason = reason
        super().__init__(f"{value!r}: {reason}")


class ApiErrorKind(enum.StrEnum):
    NOT_FOUND = "not-found"
    RATE_LIMITED = "rate-limited"
    TRANSPORT = "transport"
    UNAUTHORIZED = "unauthorized"
    # other client errors and unusable response bodies, never retried
    HTTP = "http"

    @property
    def retryable(self) -> bool:
        return self in (ApiErrorKind.RATE_LIMITED, ApiErrorKind.TRANSPORT)


class ApiError(GhLatestError):
    """The release listing API call failed"""

    def __init__(
        self,
        kind: ApiErrorKind,
        message: str,
        *,
        url: str | None = None,
        status: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        self.kind = kind
        self.message = message
        self.url = url
        self.status = status
        self.retry_after = retry_after
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def __str__(self) -> str:
        if self.status:
            return f"{self.kind}: HTTP {self.status}: {self.message}"
        return f"{self.kind}: {self.message}"


class NotFoundError(GhLatestError):
    """No release survived filtering

    This is not a transport failure. The repository exists but nothing in
    it satisfies the query.
    """


class ResolutionCancelled(GhLatestError):
    """The caller cancelled the resolution or its deadline passed"""
