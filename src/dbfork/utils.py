from __future__ import annotations

from datetime import UTC, datetime

RESPONSE_EXCERPT_LIMIT = 500


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def parse_iso8601(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z`` for UTC."""
    normalized = value.strip().replace("Z", "+00:00")
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def truncate(text: str, limit: int = RESPONSE_EXCERPT_LIMIT) -> str:
    return text[:limit]


def blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None
