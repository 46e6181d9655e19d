import pytest

from ghlatest import versions
from ghlatest.errors import ParseError


@pytest.mark.parametrize(
    "tag,expected",
    [
        ("1.2.3", versions.SemVer(1, 2, 3)),
        ("v1.2.3", versions.SemVer(1, 2, 3)),
        ("release-1.2.3", versions.SemVer(1, 2, 3)),
        ("v2", versions.SemVer(2, 0, 0)),
        ("v2.1", versions.SemVer(2, 1, 0)),
        ("1.0.0-rc.1", versions.SemVer(1, 0, 0, "rc.1")),
        ("1.0.0rc1", versions.SemVer(1, 0, 0, "rc1")),
        ("1.0.0.beta2", versions.SemVer(1, 0, 0, "beta2")),
        ("1.0.0+build.5", versions.SemVer(1, 0, 0, build="build.5")),
        ("v1.2.3.4", versions.SemVer(1, 2, 3, extra=(4,))),
        ("1.2.3.4", versions.SemVer(1, 2, 3, extra=(4,))),
        ("2024.1.0.17-beta", versions.SemVer(2024, 1, 0, "beta", extra=(17,))),
        ("v2.0.0_rc1", versions.SemVer(2, 0, 0, "rc1")),
    ],
)
def test_parse(tag: str, expected: versions.SemVer) -> None:
    assert versions.parse(tag) == expected


@pytest.mark.parametrize(
    "tag",
    ["", "latest", "nightly", "v", "1.0.0-", "1.0.0-rc..1", "1.0.0+"],
)
def test_parse_error(tag: str) -> None:
    with pytest.raises(ParseError) as exc_info:
        versions.parse(tag)
    assert exc_info.value.value == tag
    # ParseError is a ValueError for callers
    assert isinstance(exc_info.value, ValueError)


def test_parse_keeps_fields() -> None:
    v = versions.parse("v1.2.3-alpha.1+sha.abc")
    assert v.release == (1, 2, 3)
    assert v.prerelease == "alpha.1"
    assert v.build == "sha.abc"
    assert v.is_prerelease
    assert v.prerelease_identifiers == ("alpha", "1")
    assert str(v) == "1.2.3-alpha.1+sha.abc"
    assert repr(v) == "<SemVer 1.2.3-alpha.1+sha.abc>"


# semver.org precedence example, ascending
ORDERED = [
    "1.0.0-alpha",
    "1.0.0-alpha.1",
    "1.0.0-alpha.beta",
    "1.0.0-beta",
    "1.0.0-beta.2",
    "1.0.0-beta.11",
    "1.0.0-rc.1",
    "1.0.0",
    "1.0.1",
    "1.1.0",
    "2.0.0",
]


def test_precedence() -> None:
    parsed = [versions.parse(t) for t in ORDERED]
    for lower, higher in zip(parsed, parsed[1:], strict=False):
        assert lower < higher
        assert versions.compare(lower, higher) == -1
        assert versions.compare(higher, lower) == 1
    assert sorted(reversed(parsed)) == parsed


def test_numeric_identifiers_sort_numerically() -> None:
    assert versions.parse("1.0.0-rc.2") < versions.parse("1.0.0-rc.10")
    assert versions.parse("1.0.0-2") < versions.parse("1.0.0-alpha")


def test_release_after_prerelease() -> None:
    assert versions.parse("1.3.0-beta") < versions.parse("1.3.0")
    assert versions.parse("1.3.0") > versions.parse("1.3.0-rc.9")


def test_build_metadata_ignored() -> None:
    a = versions.parse("1.0.0+build.1")
    b = versions.parse("1.0.0+build.2")
    assert a == b
    assert hash(a) == hash(b)
    assert versions.compare(a, b) == 0


def test_prefix_ignored() -> None:
    assert versions.parse("v1.0.0") == versions.parse("1.0.0")
    assert len({versions.parse("v1.0.0"), versions.parse("1.0.0")}) == 1


def test_compare_total_order() -> None:
    parsed = [versions.parse(t) for t in ORDERED]
    for a in parsed:
        for b in parsed:
            assert versions.compare(a, b) == -versions.compare(b, a)
            assert (versions.compare(a, b) == 0) == (a == b)


def test_str_parses_back() -> None:
    for v in (versions.SemVer(0, 0, 1), versions.SemVer(1, 2, 3), versions.SemVer(10)):
        assert versions.parse(str(v)) == v
        assert versions.parse(str(v)).release == v.release


def test_not_comparable_with_strings() -> None:
    assert versions.parse("1.0.0") != "1.0.0"
    with pytest.raises(TypeError):
        versions.parse("1.0.0") < "2.0.0"  # noqa: B015


@pytest.mark.parametrize(
    "constraint,tag,expected",
    [
        (">=1.2,<2", "1.4.0", True),
        (">=1.2,<2", "2.0.0", False),
        (">=1.2,<2", "1.1.9", False),
        ("<2", "2.0.0-rc.1", True),
        ("<1.3.0", "1.3.0-beta", True),
        (">1.3.0-beta", "1.3.0", True),
        ("==1.4.*", "1.4.7", True),
        ("==1.4.*", "1.5.0", False),
        ("!=1.4.*", "1.5.0", True),
        ("~=1.4", "1.9.0", True),
        ("~=1.4", "2.0.0", False),
        ("~=1.4.2", "1.4.5", True),
        ("~=1.4.2", "1.5.0", False),
        ("==1.0", "1.0.0", True),
        ("!=1.0.0", "1.0.0", False),
        ("<=1.0.0", "1.0.0", True),
        ("===1.0.0-rc.1", "1.0.0-rc.1", True),
        ("", "0.0.1", True),
    ],
)
def test_constraint(constraint: str, tag: str, expected: bool) -> None:
    c = versions.VersionConstraint(constraint)
    assert c.contains(versions.parse(tag)) is expected
    assert (versions.parse(tag) in c) is expected


@pytest.mark.parametrize("constraint", [">>1", "1.0", ">=", ">=banana"])
def test_constraint_invalid(constraint: str) -> None:
    with pytest.raises(ParseError):
        versions.VersionConstraint(constraint)


def test_constraint_equality() -> None:
    a = versions.VersionConstraint(">=1.2,<2")
    b = versions.VersionConstraint("<2, >=1.2")
    assert a == b
    assert hash(a) == hash(b)
    assert repr(a) == "<VersionConstraint '>=1.2,<2'>"


def test_satisfies() -> None:
    v = versions.parse("v1.5.0")
    assert versions.satisfies(v, None)
    assert versions.satisfies(v, ">=1")
    assert not versions.satisfies(v, versions.VersionConstraint("<1.5"))


def test_extra_numeric_fields() -> None:
    v = versions.parse("v1.2.3.4")
    assert v.release == (1, 2, 3, 4)
    assert str(v) == "1.2.3.4"
    assert versions.parse("1.2.3") < v < versions.parse("1.2.4")
    assert versions.parse("1.2.3.4-rc.1") < v
    # trailing zero fields do not change the version
    assert versions.parse("1.2.3.0") == versions.parse("1.2.3")
    assert hash(versions.parse("1.2.3.0")) == hash(versions.parse("1.2.3"))
    assert versions.satisfies(v, "==1.2.3.*")
    assert versions.satisfies(v, ">1.2.3,<1.2.3.5")
