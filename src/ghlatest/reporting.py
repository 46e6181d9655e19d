"""Map resolution outcomes to stable payloads

The ``status`` key tells callers which kind of outcome they got, they never
have to look at message text:

- ``resolved``: ``release`` holds the winning release
- ``no-match``: the repository exists but nothing satisfied the filters
- ``error``: the lookup failed, ``error.kind`` names the failure
- ``cancelled``: the caller cancelled or the deadline passed
"""

import json
import typing

from .candidate import ReleaseCandidate, ResolutionQuery
from .resolver import Cancelled, Failed, NoMatch, Outcome, Resolved

__all__ = ("exit_code", "format_outcome", "format_text", "to_json")

STATUS_RESOLVED = "resolved"
STATUS_NO_MATCH = "no-match"
STATUS_ERROR = "error"
STATUS_CANCELLED = "cancelled"

EXIT_CODES = {
    STATUS_RESOLVED: 0,
    STATUS_NO_MATCH: 1,
    STATUS_ERROR: 2,
    STATUS_CANCELLED: 3,
}


def _release(candidate: ReleaseCandidate) -> dict[str, typing.Any]:
    return {
        "tag": candidate.tag,
        "version": str(candidate.version) if candidate.version is not None else None,
        "name": candidate.name,
        "draft": candidate.is_draft,
        "prerelease": candidate.is_prerelease,
        "published_at": (
            candidate.published_at.isoformat() if candidate.published_at else None
        ),
        "url": candidate.url,
    }


def _query(query: ResolutionQuery) -> dict[str, typing.Any]:
    return {
        "include_prerelease": query.include_prerelease,
        "include_draft": query.include_draft,
        "version_constraint": (
            str(query.version_constraint) if query.version_constraint else None
        ),
        "max_pages": query.max_pages,
        "source": query.source.value,
    }


def format_outcome(outcome: Outcome) -> dict[str, typing.Any]:
    """Return a JSON serializable payload describing *outcome*"""
    payload: dict[str, typing.Any] = {
        "repository": str(outcome.query.identity),
        "query": _query(outcome.query),
    }
    match outcome:
        case Resolved():
            payload["status"] = STATUS_RESOLVED
            payload["release"] = _release(outcome.candidate)
            payload["cached"] = outcome.from_cache
            payload["stale"] = outcome.stale
            payload["warning"] = outcome.warning
        case NoMatch():
            payload["status"] = STATUS_NO_MATCH
            payload["message"] = outcome.message
            payload["cached"] = outcome.from_cache
            payload["stale"] = outcome.stale
            payload["warning"] = outcome.warning
        case Failed():
            err = outcome.error
            payload["status"] = STATUS_ERROR
            payload["error"] = {
                "kind": err.kind.value,
                "message": err.message,
                "status": err.status,
                "retry_after": err.retry_after,
            }
        case Cancelled():
            payload["status"] = STATUS_CANCELLED
            payload["message"] = outcome.reason
        case _:
            raise TypeError(f"unknown outcome {outcome!r}")
    return payload


def to_json(outcome: Outcome, indent: int | None = 2) -> str:
    return json.dumps(format_outcome(outcome), indent=indent, sort_keys=True)


def format_text(outcome: Outcome) -> str:
    """One line summary for terminals"""
    match outcome:
        case Resolved():
            text = outcome.candidate.tag
            if outcome.stale:
                text += " (stale)"
            return text
        case NoMatch():
            return outcome.message
        case Failed():
            return f"error: {outcome.error}"
        case Cancelled():
            return f"cancelled: {outcome.reason}"
        case _:
            raise TypeError(f"unknown outcome {outcome!r}")


def exit_code(outcome: Outcome) -> int:
    return EXIT_CODES[format_outcome(outcome)["status"]]
