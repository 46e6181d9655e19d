import dataclasses
import datetime
import enum
import re
import typing
from urllib.parse import urlparse

from .versions import SemVer, VersionConstraint

DEFAULT_MAX_PAGES = 10

_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class ReleaseSource(enum.StrEnum):
    """API listing used to discover candidates"""

    RELEASES = "releases"
    TAGS = "tags"


@dataclasses.dataclass(frozen=True, order=True, slots=True)
class RepositoryIdentity:
    owner: str
    name: str

    def __post_init__(self) -> None:
        for field, value in (("owner", self.owner), ("name", self.name)):
            if not value or not _NAME_RE.match(value):
                raise ValueError(f"invalid repository {field} {value!r}")

    def __str__(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def cache_key(self) -> str:
        return str(self)

    @classmethod
    def parse(cls, value: str) -> "RepositoryIdentity":
        """Parse ``owner/name`` or a repository URL

        ``https://github.com/owner/name`` and ``.git`` suffixes are accepted.
        """
        text = value.strip()
        if "://" in text:
            text = urlparse(text).path
        parts = [p for p in text.split("/") if p]
        if len(parts) != 2:
            raise ValueError(f"expected 'owner/name', got {value!r}")
        owner, name = parts
        return cls(owner=owner, name=name.removesuffix(".git"))


@dataclasses.dataclass(frozen=True, slots=True, repr=False, kw_only=True)
class ReleaseCandidate:
    tag: str
    version: SemVer | None
    is_draft: bool = False
    is_prerelease: bool = False
    published_at: datetime.datetime | None = None
    url: str | None = dataclasses.field(default=None, compare=False)
    name: str | None = dataclasses.field(default=None, compare=False)

    def __repr__(self) -> str:
        return f"<{self.tag} ({self.version or 'unparsed'})>"

    @property
    def parseable(self) -> bool:
        return self.version is not None


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class ResolutionQuery:
    identity: RepositoryIdentity
    include_prerelease: bool = False
    include_draft: bool = False
    version_constraint: VersionConstraint | None = None
    max_pages: int = DEFAULT_MAX_PAGES
    # return the most recently published release when no tag is a version
    fallback_to_published: bool = False
    early_exit: bool = True
    source: ReleaseSource = ReleaseSource.RELEASES
    # first group extracts the version text from a tag
    tag_pattern: re.Pattern[str] | None = None

    def __post_init__(self) -> None:
        if self.max_pages < 1:
            raise ValueError(f"max_pages must be at least 1, got {self.max_pages}")

    @property
    def cache_key(self) -> str:
        """Fingerprint of everything besides the identity that shapes the result"""
        parts: list[tuple[str, typing.Any]] = [
            ("source", self.source.value),
            ("pre", int(self.include_prerelease)),
            ("draft", int(self.include_draft)),
            ("constraint", self.version_constraint or ""),
            ("pages", self.max_pages),
            ("fallback", int(self.fallback_to_published)),
            ("match", self.tag_pattern.pattern if self.tag_pattern else ""),
        ]
        return ";".join(f"{k}={v}" for k, v in parts)
