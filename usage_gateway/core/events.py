"""
Client event validation.

Each event in a batch is checked on its own; a bad event is recorded by index
and never aborts the rest of the batch.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .timeutils import now_utc, parse_iso, to_iso
from ..storage.models import EventRow

UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}$"
)

REASON_NOT_OBJECT = "Event must be an object."
REASON_BAD_EVENT_ID = "event_id must be a valid UUID."
REASON_MISSING_NAME = "event_name is required."
REASON_BAD_OCCURRED_AT = "occurred_at must be a valid ISO date string."


@dataclass(frozen=True)
class EventValidationError:
    """Why the event at ``index`` was rejected."""
    index: int
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "reason": self.reason}


def extract_events(payload: Any) -> Optional[List[Any]]:
    """Accept ``{"events": [...]}`` or a bare list; anything else is None."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping) and isinstance(payload.get("events"), list):
        return payload["events"]
    return None


def _optional_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _occurred_at(value: Any, now: datetime) -> Optional[str]:
    """Normalise ``occurred_at``; numbers are epoch milliseconds."""
    if value is None or value == "" or value == 0:
        return to_iso(now)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return to_iso(datetime.fromtimestamp(value / 1000, tz=timezone.utc))
        except (OverflowError, OSError, ValueError):
            return None
    parsed = parse_iso(value)
    return to_iso(parsed) if parsed else None


def validate_event(event: Any, tenant_id: str, now: datetime) -> Tuple[Optional[EventRow], Optional[str]]:
    """Validate one event.

    Returns:
        ``(row, None)`` when accepted, ``(None, reason)`` when rejected
    """
    if isinstance(event, list):
        # Arrays pass the object check but carry no event_id.
        return None, REASON_BAD_EVENT_ID
    if not isinstance(event, Mapping):
        return None, REASON_NOT_OBJECT

    event_id = event.get("event_id")
    if not isinstance(event_id, str) or not UUID_PATTERN.match(event_id):
        return None, REASON_BAD_EVENT_ID

    event_name = event.get("event_name")
    if not isinstance(event_name, str) or not event_name.strip():
        return None, REASON_MISSING_NAME

    occurred_at = _occurred_at(event.get("occurred_at"), now)
    if occurred_at is None:
        return None, REASON_BAD_OCCURRED_AT

    properties = event.get("properties")
    return EventRow(
        event_id=event_id,
        tenant_id=tenant_id,
        event_name=event_name.strip(),
        occurred_at=occurred_at,
        project_id=_optional_text(event.get("project_id")),
        user_id=_optional_text(event.get("user_id")),
        session_id=_optional_text(event.get("session_id")),
        properties=dict(properties) if isinstance(properties, Mapping) else {},
    ), None


def validate_events(
    events: List[Any],
    tenant_id: str,
    now: Optional[datetime] = None,
) -> Tuple[List[EventRow], List[EventValidationError]]:
    """Split a batch into accepted rows and per-index rejections.

    Args:
        events: Raw events as submitted
        tenant_id: Tenant that owns the write token
        now: Timestamp used for events without ``occurred_at``

    Returns:
        Accepted rows in submission order, and rejections by index
    """
    now = now or now_utc()
    accepted: List[EventRow] = []
    errors: List[EventValidationError] = []

    for index, event in enumerate(events):
        row, reason = validate_event(event, tenant_id, now)
        if row is None:
            errors.append(EventValidationError(index=index, reason=reason))
        else:
            accepted.append(row)

    return accepted, errors
