import datetime
import json

import pytest

from ghlatest import reporting, resolver, versions
from ghlatest.candidate import ReleaseCandidate, RepositoryIdentity, ResolutionQuery
from ghlatest.errors import ApiError, ApiErrorKind

QUERY = ResolutionQuery(
    identity=RepositoryIdentity(owner="octo", name="widget"),
    version_constraint=versions.VersionConstraint("<2"),
)
WINNER = ReleaseCandidate(
    tag="v1.2.0",
    version=versions.parse("v1.2.0"),
    published_at=datetime.datetime(2024, 5, 1, tzinfo=datetime.UTC),
    url="https://github.com/octo/widget/releases/tag/v1.2.0",
    name="Widget 1.2",
)


def test_resolved() -> None:
    outcome = resolver.Resolved(query=QUERY, candidate=WINNER)
    payload = reporting.format_outcome(outcome)
    assert payload["status"] == "resolved"
    assert payload["repository"] == "octo/widget"
    assert payload["release"] == {
        "tag": "v1.2.0",
        "version": "1.2.0",
        "name": "Widget 1.2",
        "draft": False,
        "prerelease": False,
        "published_at": "2024-05-01T00:00:00+00:00",
        "url": "https://github.com/octo/widget/releases/tag/v1.2.0",
    }
    assert payload["query"]["version_constraint"] == "<2"
    assert payload["cached"] is False
    assert payload["stale"] is False
    assert reporting.exit_code(outcome) == 0
    assert reporting.format_text(outcome) == "v1.2.0"


def test_resolved_stale() -> None:
    outcome = resolver.Resolved(
        query=QUERY,
        candidate=WINNER,
        from_cache=True,
        stale=True,
        warning="serving stale result",
    )
    payload = reporting.format_outcome(outcome)
    assert payload["stale"] is True
    assert payload["cached"] is True
    assert payload["warning"] == "serving stale result"
    assert reporting.format_text(outcome) == "v1.2.0 (stale)"


def test_no_match() -> None:
    outcome = resolver.NoMatch(query=QUERY, message="found no release")
    payload = reporting.format_outcome(outcome)
    assert payload["status"] == "no-match"
    assert payload["message"] == "found no release"
    assert "release" not in payload
    assert reporting.exit_code(outcome) == 1


def test_failed() -> None:
    err = ApiError(
        ApiErrorKind.RATE_LIMITED,
        "API rate limit exceeded",
        url="https://api.github.com/repos/octo/widget/releases",
        status=429,
        retry_after=30.0,
    )
    outcome = resolver.Failed(query=QUERY, error=err)
    payload = reporting.format_outcome(outcome)
    assert payload["status"] == "error"
    assert payload["error"] == {
        "kind": "rate-limited",
        "message": "API rate limit exceeded",
        "status": 429,
        "retry_after": 30.0,
    }
    assert reporting.exit_code(outcome) == 2
    assert reporting.format_text(outcome) == (
        "error: rate-limited: HTTP 429: API rate limit exceeded"
    )


def test_cancelled() -> None:
    outcome = resolver.Cancelled(query=QUERY, reason="deadline exceeded")
    assert reporting.format_outcome(outcome)["status"] == "cancelled"
    assert reporting.exit_code(outcome) == 3
    assert reporting.format_text(outcome) == "cancelled: deadline exceeded"


def test_to_json() -> None:
    outcome = resolver.Resolved(query=QUERY, candidate=WINNER)
    assert json.loads(reporting.to_json(outcome)) == reporting.format_outcome(outcome)
    assert "\n" not in reporting.to_json(outcome, indent=None)


def test_unknown_outcome() -> None:
    with pytest.raises(TypeError):
        reporting.format_text(object())  # type: ignore[arg-type]
