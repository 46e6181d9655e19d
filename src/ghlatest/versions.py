"""Semantic versions extracted from release tags

Tags are parsed leniently: an optional non-numeric prefix such as ``v`` or
``release-`` is stripped, missing minor and patch fields default to 0, and
pre-release labels may follow a hyphen (``1.2.0-rc.1``), an underscore
(``1.2.0_rc1``) or directly follow the numbers (``1.2.0rc1``). Numeric
fields past the patch (``1.2.3.4``) are kept and compared after the patch.
Ordering follows semantic version precedence.

Version constraints use the familiar PEP 440 specifier syntax
(``>=1.2,<2``, ``==1.4.*``, ``~=1.4``) but are evaluated with semantic
version precedence, so ``1.3.0-beta`` sorts before ``1.3.0``.
"""

from __future__ import annotations

import dataclasses
import functools
import re
import typing

from packaging.specifiers import InvalidSpecifier, Specifier, SpecifierSet

from .errors import ParseError

__all__ = ("SemVer", "VersionConstraint", "compare", "parse", "satisfies")

_VERSION_RE = re.compile(
    r"""
    ^
    (?P<prefix>[^0-9]*?)
    (?P<major>[0-9]+)
    (?:\.(?P<minor>[0-9]+))?
    (?:\.(?P<patch>[0-9]+))?
    (?P<extra>(?:\.[0-9]+)*)
    (?:
        [-_](?P<prerelease>[0-9A-Za-z.-]+)
        |
        \.?(?P<label>[A-Za-z][0-9A-Za-z.-]*)
    )?
    (?:\+(?P<build>[0-9A-Za-z.-]+))?
    $
    """,
    re.VERBOSE,
)

_NUMERIC_PREFIX_RE = re.compile(r"^[^0-9]*?(?P<release>[0-9]+(?:\.[0-9]+)*)")

# sort key of a single pre-release identifier; numeric identifiers always
# sort before alphanumeric ones
IdentifierKey = tuple[int, int, str]


def _identifier_key(identifier: str) -> IdentifierKey:
    if identifier.isdigit():
        return (0, int(identifier), "")
    return (1, 0, identifier)


@functools.total_ordering
@dataclasses.dataclass(frozen=True, slots=True, eq=False)
class SemVer:
    major: int
    minor: int = 0
    patch: int = 0
    prerelease: str | None = None
    # ignored for precedence
    build: str | None = None
    # numeric fields after the patch, as in 1.2.3.4
    extra: tuple[int, ...] = ()

    @property
    def release(self) -> tuple[int, ...]:
        return (self.major, self.minor, self.patch, *self.extra)

    @property
    def is_prerelease(self) -> bool:
        return self.prerelease is not None

    @property
    def prerelease_identifiers(self) -> tuple[str, ...]:
        if self.prerelease is None:
            return ()
        return tuple(self.prerelease.split("."))

    def _precedence_key(self) -> tuple[typing.Any, ...]:
        if self.prerelease is None:
            # a release sorts after all of its pre-releases
            label: tuple[typing.Any, ...] = (1,)
        else:
            label = (
                0,
                tuple(_identifier_key(i) for i in self.prerelease_identifiers),
            )
        release = list(self.release)
        # 1.2.3.0 and 1.2.3 are the same version
        while len(release) > 3 and release[-1] == 0:
            release.pop()
        return (tuple(release), label)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self._precedence_key() == other._precedence_key()

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self._precedence_key() < other._precedence_key()

    def __hash__(self) -> int:
        return hash(self._precedence_key())

    def __str__(self) -> str:
        text = ".".join(str(n) for n in self.release)
        if self.prerelease is not None:
            text += f"-{self.prerelease}"
        if self.build is not None:
            text += f"+{self.build}"
        return text

    def __repr__(self) -> str:
        return f"<SemVer {self}>"


def parse(tag: str) -> SemVer:
    """Parse a tag or release name into a semantic version

    Raises :class:`~ghlatest.errors.ParseError` when the tag has no
    recognizable numeric version component.
    """
    mo = _VERSION_RE.match(tag.strip())
    if mo is None:
        raise ParseError(tag, "no recognizable version")
    prerelease = mo.group("prerelease") or mo.group("label")
    if prerelease is not None and "" in prerelease.split("."):
        raise ParseError(tag, "empty pre-release identifier")
    build = mo.group("build")
    if build is not None and "" in build.split("."):
        raise ParseError(tag, "empty build metadata identifier")
    return SemVer(
        major=int(mo.group("major")),
        minor=int(mo.group("minor") or 0),
        patch=int(mo.group("patch") or 0),
        prerelease=prerelease,
        build=build,
        extra=tuple(int(n) for n in mo.group("extra").split(".")[1:]),
    )


def compare(a: SemVer, b: SemVer) -> int:
    """Return -1, 0 or 1 when *a* is less than, equal to or greater than *b*"""
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def _release_prefix(text: str) -> tuple[int, ...]:
    mo = _NUMERIC_PREFIX_RE.match(text)
    if mo is None:
        raise ParseError(text, "no recognizable version")
    return tuple(int(part) for part in mo.group("release").split("."))


def _matches(spec: Specifier, version: SemVer) -> bool:
    op = spec.operator
    text = spec.version

    if op == "===":
        return str(version) == text

    if text.endswith(".*"):
        prefix = _release_prefix(text[:-2])
        matched = version.release[: len(prefix)] == prefix
        return matched if op == "==" else not matched

    target = parse(text)
    order = compare(version, target)
    match op:
        case "==":
            return order == 0
        case "!=":
            return order != 0
        case "<":
            return order < 0
        case "<=":
            return order <= 0
        case ">":
            return order > 0
        case ">=":
            return order >= 0
        case "~=":
            # ~=1.4.2 means >=1.4.2 and ==1.4.*
            prefix = _release_prefix(text)[:-1]
            return order >= 0 and version.release[: len(prefix)] == prefix
        case _:
            raise ParseError(str(spec), f"unsupported operator {op!r}")


class VersionConstraint:
    """A range of acceptable versions

    ::

        >>> c = VersionConstraint(">=1.2,<2")
        >>> c.contains(parse("v1.4.0"))
        True
    """

    def __init__(self, expression: str) -> None:
        try:
            self._specifiers = SpecifierSet(expression)
        except InvalidSpecifier as err:
            raise ParseError(expression, f"invalid version constraint: {err}") from err
        # validate the operands up front, contains() must not fail later on
        for spec in self._specifiers:
            operand = spec.version
            if operand.endswith(".*"):
                _release_prefix(operand[:-2])
            elif spec.operator != "===":
                parse(operand)
        self.expression = expression

    def contains(self, version: SemVer) -> bool:
        return all(_matches(spec, version) for spec in self._specifiers)

    def __contains__(self, version: SemVer) -> bool:
        return self.contains(version)

    def __str__(self) -> str:
        return str(self._specifiers)

    def __repr__(self) -> str:
        return f"<VersionConstraint {self.expression!r}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VersionConstraint):
            return NotImplemented
        return self._specifiers == other._specifiers

    def __hash__(self) -> int:
        return hash(self._specifiers)


def satisfies(version: SemVer, constraint: VersionConstraint | str | None) -> bool:
    """Return True if *version* is inside *constraint*

    A missing constraint accepts every version.
    """
    if constraint is None:
        return True
    if isinstance(constraint, str):
        constraint = VersionConstraint(constraint)
    return constraint.contains(version)
