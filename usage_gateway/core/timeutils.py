"""
ISO-8601 helpers shared by the usage and event pipelines.
"""

from datetime import datetime, timezone
from typing import Optional


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Render a datetime as UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: object) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware datetime.

    Naive values are taken as UTC. Returns None for anything unparseable,
    including non-strings.
    """
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_iso_or_none(value: object) -> Optional[str]:
    parsed = parse_iso(value)
    return to_iso(parsed) if parsed else None
