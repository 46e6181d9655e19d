"""Client for the GitHub release listing API

One call of :meth:`GitHubClient.list_releases` fetches one page. The client
never retries; failures are reported as :class:`~ghlatest.errors.ApiError`
with a kind the resolver uses to pick its retry policy.
"""

from __future__ import annotations

import dataclasses
import datetime
import logging
import typing
from collections.abc import Callable, Iterator

import requests

from .candidate import ReleaseSource, RepositoryIdentity
from .errors import ApiError, ApiErrorKind
from .http_retry import RETRYABLE_EXCEPTIONS, create_session, parse_retry_after
from .ratelimit import RateLimitState

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
DEFAULT_PER_PAGE = 30
MAX_PER_PAGE = 100


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class RawRelease:
    """Release or tag as reported by the API"""

    tag: str
    is_draft: bool = False
    is_prerelease: bool = False
    published_at: datetime.datetime | None = None
    url: str | None = None
    name: str | None = None


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class ReleasePage:
    items: tuple[RawRelease, ...] = ()
    next_page_token: str | None = None
    # conditional request answered with "not modified"
    unchanged: bool = False
    revalidation_token: str | None = None


def _parse_timestamp(value: str | None) -> datetime.datetime | None:
    if not value:
        return None
    return datetime.datetime.fromisoformat(value).astimezone(datetime.UTC)


def _is_rate_limited(resp: requests.Response) -> bool:
    if resp.status_code == 429:
        return True
    if resp.status_code != 403:
        return False
    if resp.headers.get("X-RateLimit-Remaining") == "0":
        return True
    if "Retry-After" in resp.headers:
        return True
    return "rate limit" in resp.text.lower()


def _string_field(
    entry: dict[str, typing.Any], key: str, *, required: bool = False
) -> typing.Any:
    value = entry[key] if required else entry.get(key)
    if value is None and not required:
        return None
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string, got {type(value).__name__}")
    return value


def _error_message(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason or "unknown error"
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return resp.reason or "unknown error"


class GitHubClient:
    """Paginated, authenticated access to releases and tags

    The token is passed through as-is in the ``Authorization`` header.
    """

    def __init__(
        self,
        token: str | None = None,
        *,
        api_url: str = GITHUB_API_URL,
        per_page: int = DEFAULT_PER_PAGE,
        session: requests.Session | None = None,
        rate_limit: RateLimitState | None = None,
    ) -> None:
        if not 1 <= per_page <= MAX_PER_PAGE:
            raise ValueError(f"per_page must be between 1 and {MAX_PER_PAGE}")
        self.api_url = api_url.rstrip("/")
        self.per_page = per_page
        self.session = session if session is not None else create_session()
        self.rate_limit = rate_limit if rate_limit is not None else RateLimitState()
        self._token = token

    def __repr__(self) -> str:
        # never show the token
        return f"<GitHubClient {self.api_url}>"

    def first_page_url(
        self,
        identity: RepositoryIdentity,
        source: ReleaseSource = ReleaseSource.RELEASES,
    ) -> str:
        return (
            f"{self.api_url}/repos/{identity.owner}/{identity.name}/{source.value}"
            f"?per_page={self.per_page}"
        )

    def _headers(self, revalidation_token: str | None) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        if revalidation_token:
            headers["If-None-Match"] = revalidation_token
        return headers

    def list_releases(
        self,
        identity: RepositoryIdentity,
        page_token: str | None = None,
        *,
        revalidation_token: str | None = None,
        source: ReleaseSource = ReleaseSource.RELEASES,
    ) -> ReleasePage:
        """Fetch one page of releases, newest first

        *page_token* is the opaque token of a previous page, None for the
        first page. With a *revalidation_token* the server may answer "not
        modified", reported as an empty page with ``unchanged=True``.
        """
        url = page_token or self.first_page_url(identity, source)
        logger.debug("fetching %s", url)
        try:
            resp = self.session.get(url, headers=self._headers(revalidation_token))
        except (*RETRYABLE_EXCEPTIONS, requests.RequestException) as err:
            raise ApiError(ApiErrorKind.TRANSPORT, str(err), url=url) from err

        self.rate_limit.update(resp.headers)

        if resp.status_code == 304:
            logger.debug("%s: not modified", url)
            return ReleasePage(
                unchanged=True,
                revalidation_token=resp.headers.get("ETag", revalidation_token),
            )
        self._raise_for_status(resp, identity, url)

        try:
            data = resp.json()
        except ValueError as err:
            raise ApiError(
                ApiErrorKind.HTTP,
                f"response is not JSON: {err}",
                url=url,
                status=resp.status_code,
            ) from err
        if not isinstance(data, list):
            raise ApiError(
                ApiErrorKind.HTTP,
                f"expected a list, got {type(data).__name__}",
                url=url,
                status=resp.status_code,
            )

        try:
            items = tuple(self._parse_entry(entry, source) for entry in data)
        except (KeyError, TypeError, ValueError) as err:
            raise ApiError(
                ApiErrorKind.HTTP,
                f"malformed release entry: {err!r}",
                url=url,
                status=resp.status_code,
            ) from err

        # pagination links
        nexturl = resp.links.get("next", {}).get("url")
        return ReleasePage(
            items=items,
            next_page_token=nexturl,
            revalidation_token=resp.headers.get("ETag"),
        )

    def _raise_for_status(
        self, resp: requests.Response, identity: RepositoryIdentity, url: str
    ) -> None:
        status = resp.status_code
        if status < 400:
            return
        if _is_rate_limited(resp):
            retry_after = parse_retry_after(resp.headers)
            raise ApiError(
                ApiErrorKind.RATE_LIMITED,
                _error_message(resp),
                url=url,
                status=status,
                retry_after=retry_after,
            )
        if status == 401:
            raise ApiError(
                ApiErrorKind.UNAUTHORIZED, _error_message(resp), url=url, status=status
            )
        if status == 404:
            raise ApiError(
                ApiErrorKind.NOT_FOUND,
                f"repository {identity} not found",
                url=url,
                status=status,
            )
        if status >= 500:
            raise ApiError(
                ApiErrorKind.TRANSPORT, _error_message(resp), url=url, status=status
            )
        raise ApiError(ApiErrorKind.HTTP, _error_message(resp), url=url, status=status)

    def _parse_entry(
        self, entry: dict[str, typing.Any], source: ReleaseSource
    ) -> RawRelease:
        if source == ReleaseSource.TAGS:
            # the tag API endpoint does not include dates or release flags
            return RawRelease(
                tag=_string_field(entry, "name", required=True),
                url=_string_field(entry, "tarball_url"),
            )
        return RawRelease(
            tag=_string_field(entry, "tag_name", required=True),
            is_draft=bool(entry.get("draft", False)),
            is_prerelease=bool(entry.get("prerelease", False)),
            # drafts have no publish date yet
            published_at=_parse_timestamp(
                entry.get("published_at") or entry.get("created_at")
            ),
            url=_string_field(entry, "html_url"),
            name=_string_field(entry, "name"),
        )


class Pages:
    """Restartable, bounded sequence of release pages

    Every iteration starts again from the first page. Iteration stops after
    the last page, after an "unchanged" page or after *max_pages* pages,
    whichever comes first.
    """

    def __init__(
        self,
        fetch: Callable[[str | None], ReleasePage],
        max_pages: int,
    ) -> None:
        if max_pages < 1:
            raise ValueError(f"max_pages must be at least 1, got {max_pages}")
        self._fetch = fetch
        self.max_pages = max_pages

    def __iter__(self) -> Iterator[ReleasePage]:
        token: str | None = None
        seen: set[str] = set()
        for number in range(1, self.max_pages + 1):
            page = self._fetch(token)
            yield page
            if page.unchanged or not page.next_page_token:
                return
            if page.next_page_token in seen:
                logger.warning(
                    "page %d links back to an earlier page, stopping", number
                )
                return
            seen.add(page.next_page_token)
            token = page.next_page_token
        logger.debug("stopped after %d pages", self.max_pages)
