"""Cache of resolution results keyed by repository

Entries carry the time they were fetched, a TTL and the revalidation token
(ETag) of the listing they were computed from. An entry is fresh while
``fetched_at + ttl >= now``; a stale entry is kept so the resolver can
revalidate it or serve it when the API is rate limited.

The cache optionally persists to a JSON file. Unreadable files and entries
are logged and treated as misses.
"""

from __future__ import annotations

import dataclasses
import datetime
import json
import logging
import os
import pathlib
import tempfile
import threading
import typing

import pydantic

from . import versions
from .candidate import ReleaseCandidate, RepositoryIdentity
from .errors import ParseError

logger = logging.getLogger(__name__)

DEFAULT_TTL = datetime.timedelta(minutes=5)
CACHE_FORMAT_VERSION = 1

Clock = typing.Callable[[], datetime.datetime]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class CacheEntry:
    identity: RepositoryIdentity
    # None records that no release matched the query
    result: ReleaseCandidate | None
    fetched_at: datetime.datetime
    ttl: datetime.timedelta
    revalidation_token: str | None = None
    # fingerprint of the query filters the result was computed for
    query_key: str = ""

    @property
    def expires_at(self) -> datetime.datetime:
        return self.fetched_at + self.ttl

    @property
    def not_found(self) -> bool:
        return self.result is None

    def is_fresh(self, now: datetime.datetime) -> bool:
        return self.fetched_at + self.ttl >= now


# on-disk representation

_MODEL_CONFIG = pydantic.ConfigDict(extra="forbid", frozen=True)


class _StoredCandidate(pydantic.BaseModel):
    model_config = _MODEL_CONFIG

    tag: str
    version: str | None = None
    is_draft: bool = False
    is_prerelease: bool = False
    published_at: datetime.datetime | None = None
    url: str | None = None
    name: str | None = None


class _StoredEntry(pydantic.BaseModel):
    model_config = _MODEL_CONFIG

    owner: str
    name: str
    result: _StoredCandidate | None = None
    fetched_at: datetime.datetime
    ttl_seconds: float = pydantic.Field(ge=0)
    revalidation_token: str | None = None
    query_key: str = ""


def _to_stored(entry: CacheEntry) -> _StoredEntry:
    result: _StoredCandidate | None = None
    if entry.result is not None:
        c = entry.result
        result = _StoredCandidate(
            tag=c.tag,
            version=str(c.version) if c.version is not None else None,
            is_draft=c.is_draft,
            is_prerelease=c.is_prerelease,
            published_at=c.published_at,
            url=c.url,
            name=c.name,
        )
    return _StoredEntry(
        owner=entry.identity.owner,
        name=entry.identity.name,
        result=result,
        fetched_at=entry.fetched_at,
        ttl_seconds=entry.ttl.total_seconds(),
        revalidation_token=entry.revalidation_token,
        query_key=entry.query_key,
    )


def _from_stored(stored: _StoredEntry) -> CacheEntry:
    result: ReleaseCandidate | None = None
    if stored.result is not None:
        s = stored.result
        result = ReleaseCandidate(
            tag=s.tag,
            version=versions.parse(s.version) if s.version is not None else None,
            is_draft=s.is_draft,
            is_prerelease=s.is_prerelease,
            published_at=s.published_at,
            url=s.url,
            name=s.name,
        )
    fetched_at = stored.fetched_at
    if fetched_at.tzinfo is None:
        fetched_at = fetched_at.replace(tzinfo=datetime.UTC)
    return CacheEntry(
        identity=RepositoryIdentity(owner=stored.owner, name=stored.name),
        result=result,
        fetched_at=fetched_at,
        ttl=datetime.timedelta(seconds=stored.ttl_seconds),
        revalidation_token=stored.revalidation_token,
        query_key=stored.query_key,
    )


class ReleaseCache:
    """Thread-safe map of repository to :class:`CacheEntry`

    The resolver serializes writes per repository; the internal lock only
    protects the map itself.
    """

    def __init__(
        self,
        ttl: datetime.timedelta = DEFAULT_TTL,
        *,
        path: pathlib.Path | None = None,
        clock: Clock = utcnow,
    ) -> None:
        if ttl < datetime.timedelta(0):
            raise ValueError(f"ttl must not be negative, got {ttl}")
        self.ttl = ttl
        self.path = path
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, CacheEntry] = {}
        if path is not None:
            self._entries.update(self._load(path))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, identity: RepositoryIdentity) -> bool:
        with self._lock:
            return identity.cache_key in self._entries

    def entries(self) -> list[CacheEntry]:
        with self._lock:
            return sorted(self._entries.values(), key=lambda e: e.identity)

    def lookup(self, identity: RepositoryIdentity) -> CacheEntry | None:
        """Return the entry for *identity*, fresh or stale"""
        with self._lock:
            return self._entries.get(identity.cache_key)

    def store(
        self,
        identity: RepositoryIdentity,
        result: ReleaseCandidate | None,
        *,
        ttl: datetime.timedelta | None = None,
        revalidation_token: str | None = None,
        query_key: str = "",
    ) -> CacheEntry:
        entry = CacheEntry(
            identity=identity,
            result=result,
            fetched_at=self._clock(),
            ttl=self.ttl if ttl is None else ttl,
            revalidation_token=revalidation_token,
            query_key=query_key,
        )
        with self._lock:
            self._entries[identity.cache_key] = entry
            self._save()
        logger.debug(
            "%s: cached %s until %s",
            identity,
            result.tag if result is not None else "no match",
            entry.expires_at.isoformat(),
        )
        return entry

    def refresh(
        self,
        identity: RepositoryIdentity,
        *,
        revalidation_token: str | None = None,
    ) -> CacheEntry | None:
        """Restart the TTL of an existing entry after successful revalidation"""
        with self._lock:
            entry = self._entries.get(identity.cache_key)
            if entry is None:
                return None
            entry = dataclasses.replace(
                entry,
                fetched_at=self._clock(),
                revalidation_token=revalidation_token or entry.revalidation_token,
            )
            self._entries[identity.cache_key] = entry
            self._save()
        logger.debug("%s: refreshed cache entry", identity)
        return entry

    def invalidate(self, identity: RepositoryIdentity) -> bool:
        """Drop the entry for *identity*, return True if there was one"""
        with self._lock:
            removed = self._entries.pop(identity.cache_key, None) is not None
            if removed:
                self._save()
        if removed:
            logger.debug("%s: invalidated cache entry", identity)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._save()

    def _load(self, path: pathlib.Path) -> dict[str, CacheEntry]:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as err:
            logger.warning("ignoring unreadable cache file %s: %s", path, err)
            return {}
        if not isinstance(raw, dict) or raw.get("version") != CACHE_FORMAT_VERSION:
            logger.warning("ignoring cache file %s with unknown format", path)
            return {}
        stored_entries = raw.get("entries")
        if not isinstance(stored_entries, dict):
            logger.warning("ignoring cache file %s without entries", path)
            return {}

        entries: dict[str, CacheEntry] = {}
        for key, value in stored_entries.items():
            try:
                entry = _from_stored(_StoredEntry.model_validate(value))
            except (pydantic.ValidationError, ParseError, ValueError) as err:
                logger.warning("ignoring malformed cache entry %r: %s", key, err)
                continue
            if entry.identity.cache_key != key:
                logger.warning("ignoring cache entry %r stored under wrong key", key)
                continue
            entries[key] = entry
        logger.debug("loaded %d cache entries from %s", len(entries), path)
        return entries

    def _save(self) -> None:
        # caller holds self._lock
        if self.path is None:
            return
        data = {
            "version": CACHE_FORMAT_VERSION,
            "entries": {
                key: _to_stored(entry).model_dump(mode="json")
                for key, entry in sorted(self._entries.items())
            },
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmpname = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
        except OSError as err:
            logger.warning("could not write cache file %s: %s", self.path, err)
            return
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmpname, self.path)
        except OSError as err:
            # the in-memory cache stays usable
            logger.warning("could not write cache file %s: %s", self.path, err)
            pathlib.Path(tmpname).unlink(missing_ok=True)
