"""
Strict parsing of GitHub JSON payloads into canonical records.

Payloads are loosely typed; anything that does not match the expected shape
raises MalformedResponseError here instead of leaking dicts into the engine.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from pydantic import ValidationError

from commitstreak.services.commits.models import CommitRecord, Repository
from commitstreak.services.github.exceptions import MalformedResponseError


def _require(payload: Any, key: str, kind: type | tuple[type, ...]) -> Any:
    if not isinstance(payload, dict):
        raise MalformedResponseError(f"Expected an object, got {type(payload).__name__}")
    value = payload.get(key)
    if not isinstance(value, kind):
        raise MalformedResponseError(
            f"Field '{key}' missing or not {kind}: {value!r}"
        )
    return value


def parse_timestamp(value: Any) -> datetime:
    if not isinstance(value, str):
        raise MalformedResponseError(f"Timestamp is not a string: {value!r}")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise MalformedResponseError(f"Invalid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_repository(payload: Dict[str, Any]) -> Repository:
    """Parse an item of GET /user/repos."""
    try:
        return Repository(
            name=_require(payload, "name", str),
            full_name=_require(payload, "full_name", str),
            url=_require(payload, "html_url", str),
            is_private=bool(payload.get("private", False)),
        )
    except ValidationError as exc:
        raise MalformedResponseError(str(exc)) from exc


def parse_commit(repository: Repository, payload: Dict[str, Any]) -> CommitRecord:
    """
    Parse an item of GET /repos/{full_name}/commits or a single-commit payload.

    additions/deletions are only present on the single-commit endpoint
    (under "stats"); list items default to 0 until enriched.
    """
    sha = _require(payload, "sha", str)
    commit = _require(payload, "commit", dict)
    author = _require(commit, "author", dict)
    stats = payload.get("stats") or {}
    if not isinstance(stats, dict):
        raise MalformedResponseError(f"Field 'stats' is not an object for {sha}")

    try:
        return CommitRecord(
            repository=repository,
            message=_require(commit, "message", str),
            url=_require(payload, "html_url", str),
            authored_at=parse_timestamp(author.get("date")),
            additions=int(stats.get("additions", 0) or 0),
            deletions=int(stats.get("deletions", 0) or 0),
            source_id=sha,
        )
    except (ValidationError, TypeError, ValueError) as exc:
        raise MalformedResponseError(f"Invalid commit {sha}: {exc}") from exc


def with_stats(record: CommitRecord, payload: Dict[str, Any]) -> CommitRecord:
    """Copy additions/deletions from a single-commit payload onto a record."""
    stats = _require(payload, "stats", dict)
    try:
        additions = int(stats.get("additions", 0) or 0)
        deletions = int(stats.get("deletions", 0) or 0)
    except (TypeError, ValueError) as exc:
        raise MalformedResponseError(f"Invalid stats for {record.source_id}") from exc
    if additions < 0 or deletions < 0:
        raise MalformedResponseError(f"Negative stats for {record.source_id}")
    return record.model_copy(update={"additions": additions, "deletions": deletions})
