"""Resolve the latest release of a repository

The resolver ties the API client, the cache and the version model together:

1. A fresh cache entry is returned without any network call.
2. A stale entry is revalidated with a conditional request; "not modified"
   restarts its TTL.
3. Otherwise pages are fetched, newest first, until pagination ends, the
   page limit is reached or a page only holds releases older than the best
   match found so far.
4. Candidates are filtered (drafts, pre-releases, version constraint) and
   the highest version wins. Ties go to the later publish date, then to the
   greater tag string.
5. Rate limited and transport failures are retried with exponential
   backoff. A rate limited lookup with a stale cache entry serves that entry
   instead.

Resolutions of the same repository are serialized so concurrent callers
trigger at most one upstream scan; the later callers are served from the
cache entry the first one stores.
"""

from __future__ import annotations

import dataclasses
import datetime
import functools
import logging
import re
import threading
import time
import typing
from collections.abc import Callable, Iterable

from . import http_retry, settings, versions
from .cache import CacheEntry, ReleaseCache, utcnow
from .candidate import (
    DEFAULT_MAX_PAGES,
    ReleaseCandidate,
    ReleaseSource,
    RepositoryIdentity,
    ResolutionQuery,
)
from .errors import (
    ApiError,
    ApiErrorKind,
    NotFoundError,
    ParseError,
    ResolutionCancelled,
)
from .github import GitHubClient, Pages, RawRelease, ReleasePage
from .log import repo_ctxvar_context
from .threading_utils import KeyedLock

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 4
DEFAULT_MAX_RATE_LIMIT_WAIT = 300.0

_EPOCH = datetime.datetime.min.replace(tzinfo=datetime.UTC)


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class Resolved:
    query: ResolutionQuery
    candidate: ReleaseCandidate
    from_cache: bool = False
    # served past its TTL because the API could not be asked
    stale: bool = False
    warning: str | None = None


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class NoMatch:
    """The repository exists but no release satisfies the query"""

    query: ResolutionQuery
    message: str
    from_cache: bool = False
    stale: bool = False
    warning: str | None = None


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class Failed:
    query: ResolutionQuery
    error: ApiError


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class Cancelled:
    query: ResolutionQuery
    reason: str


Outcome = Resolved | NoMatch | Failed | Cancelled


def parse_tag(
    tag: str, tag_pattern: re.Pattern[str] | None = None
) -> versions.SemVer | None:
    """Parse the version of a tag, None if it is not a version

    With *tag_pattern* the version text is taken from the first group of
    the match (or the whole match if the pattern has no groups).
    """
    text = tag
    if tag_pattern is not None:
        mo = tag_pattern.match(tag)
        if mo is None:
            logger.debug("tag %s does not match pattern %s", tag, tag_pattern.pattern)
            return None
        text = mo.group(1) if tag_pattern.groups else mo.group(0)
    try:
        return versions.parse(text)
    except ParseError as err:
        logger.debug("could not parse version from %s: %s", tag, err)
        return None


def to_candidate(
    raw: RawRelease, tag_pattern: re.Pattern[str] | None = None
) -> ReleaseCandidate:
    version = parse_tag(raw.tag, tag_pattern)
    return ReleaseCandidate(
        tag=raw.tag,
        version=version,
        is_draft=raw.is_draft,
        # a pre-release label counts even if the release is not flagged
        is_prerelease=raw.is_prerelease
        or (version is not None and version.is_prerelease),
        published_at=raw.published_at,
        url=raw.url,
        name=raw.name,
    )


def _precedence(candidate: ReleaseCandidate) -> tuple[typing.Any, ...]:
    return (candidate.version, candidate.published_at or _EPOCH, candidate.tag)


def _recency(candidate: ReleaseCandidate) -> tuple[datetime.datetime, str]:
    return (candidate.published_at or _EPOCH, candidate.tag)


def _passes_flags(candidate: ReleaseCandidate, query: ResolutionQuery) -> bool:
    if candidate.is_draft and not query.include_draft:
        return False
    if candidate.is_prerelease and not query.include_prerelease:
        return False
    return True


def filter_candidates(
    candidates: Iterable[ReleaseCandidate], query: ResolutionQuery
) -> list[ReleaseCandidate]:
    """Return the versioned candidates that pass the query's filters"""
    result: list[ReleaseCandidate] = []
    for candidate in candidates:
        if candidate.version is None or not _passes_flags(candidate, query):
            continue
        constraint = query.version_constraint
        if constraint is not None and not constraint.contains(candidate.version):
            logger.debug(
                "skipping %s because it does not match %s", candidate.tag, constraint
            )
            continue
        result.append(candidate)
    return result


def _no_match_message(
    candidates: list[ReleaseCandidate], query: ResolutionQuery
) -> str:
    constraint = query.version_constraint or "any version"
    prerelease_info = "including" if query.include_prerelease else "ignoring"
    draft_info = "including" if query.include_draft else "ignoring"
    return (
        f"found no release of {query.identity} matching {constraint}, "
        f"{prerelease_info} pre-releases, {draft_info} drafts "
        f"({len(candidates)} candidates checked)"
    )


def select_latest(
    candidates: Iterable[ReleaseCandidate], query: ResolutionQuery
) -> ReleaseCandidate:
    """Pick the latest release among *candidates*

    Raises :class:`~ghlatest.errors.NotFoundError` if nothing matches.
    """
    candidates = list(candidates)
    matching = filter_candidates(candidates, query)
    if matching:
        return max(matching, key=_precedence)

    if query.fallback_to_published:
        eligible = [c for c in candidates if _passes_flags(c, query)]
        if eligible and not any(c.parseable for c in eligible):
            winner = max(eligible, key=_recency)
            logger.info(
                "no tag is a version, falling back to most recently published %s",
                winner.tag,
            )
            return winner

    raise NotFoundError(_no_match_message(candidates, query))


def _all_older(page: list[ReleaseCandidate], best: ReleaseCandidate) -> bool:
    if best.published_at is None:
        return False
    return all(
        c.published_at is not None and c.published_at < best.published_at
        for c in page
    )


@dataclasses.dataclass
class _Scan:
    candidates: list[ReleaseCandidate] = dataclasses.field(default_factory=list)
    revalidation_token: str | None = None
    unchanged: bool = False
    pages: int = 0


@dataclasses.dataclass(frozen=True, slots=True)
class _Flight:
    """Outcome of a completed upstream fetch, shared with its waiters"""

    seq: int
    query_key: str
    outcome: Outcome


class Resolver:
    """Resolve queries against a :class:`~ghlatest.github.GitHubClient`

    *clock* feeds cache freshness checks, *sleep* replaces backoff waits in
    tests and *monotonic* measures deadlines.
    """

    def __init__(
        self,
        client: GitHubClient,
        cache: ReleaseCache | None = None,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_factor: float = http_retry.DEFAULT_BACKOFF_FACTOR,
        max_backoff: float = http_retry.DEFAULT_MAX_BACKOFF,
        max_rate_limit_wait: float = DEFAULT_MAX_RATE_LIMIT_WAIT,
        clock: Callable[[], datetime.datetime] = utcnow,
        sleep: Callable[[float], None] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.client = client
        self.cache = cache if cache is not None else ReleaseCache(clock=clock)
        self.rate_limit = client.rate_limit
        self.max_attempts = max_attempts
        self.backoff_factor = backoff_factor
        self.max_backoff = max_backoff
        self.max_rate_limit_wait = max_rate_limit_wait
        self._clock = clock
        self._sleep = sleep
        self._monotonic = monotonic
        self._locks = KeyedLock()
        self._flights_lock = threading.Lock()
        self._flight_seq = 0
        self._flights: dict[RepositoryIdentity, _Flight] = {}

    @classmethod
    def from_settings(
        cls, active_settings: settings.Settings, token: str | None = None
    ) -> Resolver:
        session = http_retry.create_session(
            timeout=active_settings.http_timeout,
            user_agent=active_settings.user_agent,
        )
        client = GitHubClient(
            token,
            api_url=str(active_settings.api_url),
            per_page=active_settings.per_page,
            session=session,
        )
        cache = ReleaseCache(
            ttl=active_settings.cache_ttl_delta,
            path=active_settings.cache_file,
        )
        return cls(
            client,
            cache,
            max_attempts=active_settings.max_attempts,
            backoff_factor=active_settings.backoff_factor,
            max_backoff=active_settings.max_backoff,
            max_rate_limit_wait=active_settings.max_rate_limit_wait,
        )

    def resolve(
        self,
        query: ResolutionQuery,
        *,
        cancel: threading.Event | None = None,
        timeout: float | None = None,
    ) -> Outcome:
        """Resolve *query*, never raises for API or lookup failures

        *cancel* aborts backoff waits and waits for a concurrent resolution
        of the same repository; *timeout* bounds the whole call. A
        cancelled resolution leaves the cache untouched.
        """
        deadline = None if timeout is None else self._monotonic() + timeout
        with repo_ctxvar_context(query.identity):
            try:
                return self._resolve(query, cancel, deadline)
            except ResolutionCancelled as err:
                logger.info("resolution cancelled: %s", err)
                return Cancelled(query=query, reason=str(err))
            except ApiError as err:
                logger.error("could not list releases: %s", err)
                return Failed(query=query, error=err)

    def _resolve(
        self,
        query: ResolutionQuery,
        cancel: threading.Event | None,
        deadline: float | None,
    ) -> Outcome:
        self._check_cancelled(cancel, deadline)
        entry = self._lookup(query)
        if entry is not None and entry.is_fresh(self._clock()):
            logger.debug("cache hit, fresh until %s", entry.expires_at.isoformat())
            return self._from_entry(query, entry)

        with self._flights_lock:
            arrived = self._flight_seq
        with self._locks.hold(
            query.identity,
            cancel=cancel,
            deadline=deadline,
            monotonic=self._monotonic,
        ) as waited:
            # a concurrent resolution may have stored a fresh entry meanwhile
            entry = self._lookup(query)
            if entry is not None and entry.is_fresh(self._clock()):
                if waited:
                    logger.debug("using result of concurrent resolution")
                return self._from_entry(query, entry)
            if waited:
                shared = self._joined_flight(query, arrived)
                if shared is not None:
                    logger.debug("using outcome of concurrent resolution")
                    return dataclasses.replace(shared.outcome, query=query)
            try:
                outcome = self._fetch(query, entry, cancel, deadline)
            except ApiError as err:
                self._finish_flight(query, Failed(query=query, error=err))
                raise
            self._finish_flight(query, outcome)
            return outcome

    def _joined_flight(self, query: ResolutionQuery, arrived: int) -> _Flight | None:
        """Return the fetch for the same filters that completed while waiting"""
        with self._flights_lock:
            flight = self._flights.get(query.identity)
        if flight is None or flight.seq <= arrived:
            return None
        if flight.query_key != query.cache_key:
            return None
        return flight

    def _finish_flight(self, query: ResolutionQuery, outcome: Outcome) -> None:
        with self._flights_lock:
            self._flight_seq += 1
            self._flights[query.identity] = _Flight(
                seq=self._flight_seq, query_key=query.cache_key, outcome=outcome
            )

    def _lookup(self, query: ResolutionQuery) -> CacheEntry | None:
        entry = self.cache.lookup(query.identity)
        if entry is not None and entry.query_key != query.cache_key:
            logger.debug("cache entry was computed for different filters, ignoring it")
            return None
        return entry

    def _from_entry(
        self,
        query: ResolutionQuery,
        entry: CacheEntry,
        *,
        stale: bool = False,
        warning: str | None = None,
    ) -> Outcome:
        if entry.result is None:
            return NoMatch(
                query=query,
                message=f"no release of {query.identity} matched (cached)",
                from_cache=True,
                stale=stale,
                warning=warning,
            )
        return Resolved(
            query=query,
            candidate=entry.result,
            from_cache=True,
            stale=stale,
            warning=warning,
        )

    def _fetch(
        self,
        query: ResolutionQuery,
        stale: CacheEntry | None,
        cancel: threading.Event | None,
        deadline: float | None,
    ) -> Outcome:
        identity = query.identity
        fetch = functools.partial(
            self._fetch_page,
            query,
            revalidation_token=stale.revalidation_token if stale else None,
            # with a stale entry to fall back on, do not wait for the reset
            retry_rate_limit=stale is None,
            cancel=cancel,
            deadline=deadline,
        )
        try:
            scan = self._scan(query, Pages(fetch, query.max_pages))
        except ApiError as err:
            if err.kind == ApiErrorKind.NOT_FOUND:
                self.cache.invalidate(identity)
                raise
            if stale is not None and err.retryable:
                warning = (
                    f"serving stale result cached at {stale.fetched_at.isoformat()} "
                    f"({err})"
                )
                logger.warning("%s", warning)
                return self._from_entry(query, stale, stale=True, warning=warning)
            raise

        if scan.unchanged and stale is not None:
            logger.debug("release list unchanged, extending cached result")
            refreshed = self.cache.refresh(
                identity, revalidation_token=scan.revalidation_token
            )
            return self._from_entry(query, refreshed or stale)

        logger.debug(
            "scanned %d candidates on %d pages", len(scan.candidates), scan.pages
        )
        try:
            winner = select_latest(scan.candidates, query)
        except NotFoundError as err:
            logger.info("%s", err)
            self.cache.store(
                identity,
                None,
                revalidation_token=scan.revalidation_token,
                query_key=query.cache_key,
            )
            return NoMatch(query=query, message=str(err))

        logger.info("latest release is %s", winner.tag)
        self.cache.store(
            identity,
            winner,
            revalidation_token=scan.revalidation_token,
            query_key=query.cache_key,
        )
        return Resolved(query=query, candidate=winner)

    def _scan(self, query: ResolutionQuery, pages: Pages) -> _Scan:
        scan = _Scan()
        best: ReleaseCandidate | None = None
        for number, page in enumerate(pages, start=1):
            if number == 1 or page.unchanged:
                scan.revalidation_token = page.revalidation_token
            if page.unchanged:
                scan.unchanged = True
                break
            scan.pages = number
            page_candidates = [to_candidate(raw, query.tag_pattern) for raw in page.items]
            scan.candidates.extend(page_candidates)

            previous_best = best
            for candidate in filter_candidates(page_candidates, query):
                if best is None or _precedence(candidate) > _precedence(best):
                    best = candidate

            # releases arrive newest first, later pages cannot be more recent
            if (
                query.early_exit
                and previous_best is not None
                and _all_older(page_candidates, previous_best)
            ):
                logger.debug(
                    "page %d only has releases older than %s, stopping",
                    number,
                    previous_best.tag,
                )
                break
        return scan

    def _fetch_page(
        self,
        query: ResolutionQuery,
        page_token: str | None,
        *,
        revalidation_token: str | None,
        retry_rate_limit: bool,
        cancel: threading.Event | None,
        deadline: float | None,
    ) -> ReleasePage:
        attempt = 0
        while True:
            self._check_cancelled(cancel, deadline)
            try:
                self._respect_rate_limit()
                return self.client.list_releases(
                    query.identity,
                    page_token,
                    # only the first page is revalidated
                    revalidation_token=revalidation_token if page_token is None else None,
                    source=query.source,
                )
            except ApiError as err:
                attempt += 1
                if not err.retryable:
                    raise
                if err.kind == ApiErrorKind.RATE_LIMITED and not retry_rate_limit:
                    raise
                if attempt >= self.max_attempts:
                    logger.error("giving up after %d attempts: %s", attempt, err)
                    raise
                if (
                    err.retry_after is not None
                    and err.retry_after > self.max_rate_limit_wait
                ):
                    logger.error(
                        "rate limit resets in %.0f seconds, not waiting longer than %.0f",
                        err.retry_after,
                        self.max_rate_limit_wait,
                    )
                    raise
                delay = http_retry.backoff_delay(
                    attempt - 1,
                    backoff_factor=self.backoff_factor,
                    max_backoff=self.max_backoff,
                    retry_after=err.retry_after,
                )
                logger.warning(
                    "%s. Retrying in %.1f seconds (attempt %d/%d)",
                    err,
                    delay,
                    attempt,
                    self.max_attempts,
                )
                self._wait(delay, cancel, deadline)

    def _respect_rate_limit(self) -> None:
        wait_time = self.rate_limit.wait_time()
        if wait_time is not None:
            raise ApiError(
                ApiErrorKind.RATE_LIMITED,
                "rate limit budget exhausted until reset",
                retry_after=wait_time,
            )

    def _check_cancelled(
        self, cancel: threading.Event | None, deadline: float | None
    ) -> None:
        if cancel is not None and cancel.is_set():
            raise ResolutionCancelled("cancelled by caller")
        if deadline is not None and self._monotonic() >= deadline:
            raise ResolutionCancelled("deadline exceeded")

    def _wait(
        self,
        seconds: float,
        cancel: threading.Event | None,
        deadline: float | None,
    ) -> None:
        if deadline is not None and self._monotonic() + seconds > deadline:
            raise ResolutionCancelled(
                f"deadline passes before the next attempt in {seconds:.1f} seconds"
            )
        if self._sleep is not None:
            self._sleep(seconds)
            cancelled = cancel is not None and cancel.is_set()
        else:
            event = cancel if cancel is not None else threading.Event()
            cancelled = event.wait(seconds)
        if cancelled:
            raise ResolutionCancelled("cancelled during backoff")


@dataclasses.dataclass(frozen=True, kw_only=True)
class ResolveOptions:
    """Caller options of :func:`resolve_latest`"""

    include_prerelease: bool = False
    include_draft: bool = False
    version_constraint: str | versions.VersionConstraint | None = None
    max_pages: int = DEFAULT_MAX_PAGES
    fallback_to_published: bool = False
    early_exit: bool = True
    source: ReleaseSource = ReleaseSource.RELEASES
    tag_pattern: str | re.Pattern[str] | None = None

    def to_query(self, identity: RepositoryIdentity) -> ResolutionQuery:
        """Build a query, raises ValueError for bad expressions"""
        constraint = self.version_constraint
        if isinstance(constraint, str):
            constraint = versions.VersionConstraint(constraint) if constraint else None
        pattern = self.tag_pattern
        if isinstance(pattern, str):
            try:
                pattern = re.compile(pattern) if pattern else None
            except re.error as err:
                raise ValueError(f"invalid tag pattern {pattern!r}: {err}") from err
        return ResolutionQuery(
            identity=identity,
            include_prerelease=self.include_prerelease,
            include_draft=self.include_draft,
            version_constraint=constraint,
            max_pages=self.max_pages,
            fallback_to_published=self.fallback_to_published,
            early_exit=self.early_exit,
            source=ReleaseSource(self.source),
            tag_pattern=pattern,
        )


@functools.cache
def default_resolver() -> Resolver:
    """Process-wide resolver built from default settings and the environment"""
    return Resolver.from_settings(settings.Settings(), token=settings.token_from_env())


def resolve_latest(
    owner: str,
    name: str,
    options: ResolveOptions | None = None,
    *,
    resolver: Resolver | None = None,
    cancel: threading.Event | None = None,
    timeout: float | None = None,
) -> Outcome:
    """Resolve the latest release of ``owner/name``

    Invalid repository names, constraints or tag patterns raise
    ``ValueError`` (``ParseError`` is one); every lookup failure is
    returned as an outcome.
    """
    identity = RepositoryIdentity(owner=owner, name=name)
    query = (options or ResolveOptions()).to_query(identity)
    if resolver is None:
        resolver = default_resolver()
    return resolver.resolve(query, cancel=cancel, timeout=timeout)
