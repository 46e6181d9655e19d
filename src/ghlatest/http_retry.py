"""HTTP session and backoff utilities for the release listing API.

The session built here never retries on its own. Retrying belongs to the
resolver, which decides per failure kind whether to back off, serve a stale
cache entry or give up. This module provides the pieces it needs:

- the set of transport exceptions that are worth retrying
- exponential backoff with jitter that honors a server provided delay
- parsing of ``Retry-After`` and ``X-RateLimit-Reset`` headers
"""

from __future__ import annotations

import logging
import random
import time
import typing

import requests
from requests.adapters import HTTPAdapter
from requests.exceptions import (
    ChunkedEncodingError,
    ConnectionError,
    Timeout,
)
from urllib3.exceptions import IncompleteRead, ProtocolError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_BACKOFF_FACTOR = 1.0
DEFAULT_MAX_BACKOFF = 60.0

# Exceptions that should trigger a retry
RETRYABLE_EXCEPTIONS = (
    ConnectionError,
    Timeout,
    ChunkedEncodingError,
    IncompleteRead,
    ProtocolError,
    requests.exceptions.RetryError,
    requests.exceptions.ConnectTimeout,
    requests.exceptions.ReadTimeout,
)


class TimeoutHTTPAdapter(HTTPAdapter):
    """HTTP adapter that applies a default timeout to every request."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, **kwargs: typing.Any):
        self.timeout = timeout
        super().__init__(**kwargs)

    def send(
        self,
        request: requests.PreparedRequest,
        stream: bool = False,
        timeout: float | tuple[float, float] | tuple[float, None] | None = None,
        verify: bool | str = True,
        cert: bytes | str | tuple[bytes | str, bytes | str] | None = None,
        proxies: typing.Mapping[str, str] | None = None,
    ) -> requests.Response:
        if timeout is None:
            timeout = self.timeout
        return super().send(
            request,
            stream=stream,
            timeout=timeout,
            verify=verify,
            cert=cert,
            proxies=proxies,
        )


def create_session(
    timeout: float = DEFAULT_TIMEOUT,
    user_agent: str | None = None,
) -> requests.Session:
    """Create a requests Session with a default timeout and no automatic retries.

    Args:
        timeout: Default timeout for requests in seconds.
        user_agent: Value for the User-Agent header, requests' default if None.

    Returns:
        A configured requests.Session.
    """
    session = requests.Session()
    adapter = TimeoutHTTPAdapter(timeout=timeout)

    session.mount("http://", adapter)
    session.mount("https://", adapter)
    if user_agent:
        session.headers["User-Agent"] = user_agent

    return session


def backoff_delay(
    attempt: int,
    *,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    retry_after: float | None = None,
    jitter: typing.Callable[[float, float], float] = random.uniform,
) -> float:
    """Seconds to wait before retry number *attempt* (0-based).

    Args:
        attempt: Number of failed attempts so far minus one.
        backoff_factor: Factor for exponential backoff.
        max_backoff: Maximum exponential backoff time in seconds.
        retry_after: Delay requested by the server. It is never shortened,
            even when it is longer than max_backoff.
        jitter: Source of random jitter, replaced in tests.

    Returns:
        The delay in seconds.
    """
    wait_time = min(
        backoff_factor * (2**attempt) + jitter(0, 1),
        max_backoff,
    )
    if retry_after is not None and retry_after > wait_time:
        return retry_after
    return wait_time


def parse_retry_after(
    headers: typing.Mapping[str, str],
    clock: typing.Callable[[], float] = time.time,
) -> float | None:
    """Delay requested by a rate limited response, in seconds.

    ``Retry-After`` (seconds) wins over ``X-RateLimit-Reset`` (epoch seconds).
    Returns None when neither header is usable.
    """
    retry_after = headers.get("Retry-After")
    if retry_after:
        try:
            return max(float(retry_after), 0.0)
        except (TypeError, ValueError):
            logger.debug("Could not parse Retry-After header %r", retry_after)

    reset_time = headers.get("X-RateLimit-Reset")
    if reset_time:
        try:
            return max(float(int(reset_time)) - clock(), 0.0)
        except (TypeError, ValueError):
            logger.debug("Could not parse rate limit reset time %r", reset_time)

    return None
