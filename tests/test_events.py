"""
Unit tests for event validation and the event store.
"""

from datetime import datetime, timezone

from usage_gateway.core.events import (
    REASON_BAD_EVENT_ID,
    REASON_BAD_OCCURRED_AT,
    REASON_MISSING_NAME,
    REASON_NOT_OBJECT,
    extract_events,
    validate_events,
)
from usage_gateway.storage.directory import TenantDirectory
from usage_gateway.storage.events import EventStore

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
EVENT_ID = "3f2b8c1e-9d4a-4b6f-8e2a-1c5d7f9b0a12"


def _event(**overrides):
    event = {"event_id": EVENT_ID, "event_name": "widget_opened"}
    event.update(overrides)
    return event


class TestExtractEvents:
    """Test body shapes accepted for ingestion."""

    def test_wrapped_and_bare_lists(self):
        assert extract_events({"events": [1]}) == [1]
        assert extract_events([1, 2]) == [1, 2]

    def test_other_shapes_rejected(self):
        assert extract_events(None) is None
        assert extract_events({"events": "nope"}) is None
        assert extract_events("text") is None


class TestValidateEvents:
    """Test per-event validation rules."""

    def test_valid_event_defaults(self):
        rows, errors = validate_events([_event()], "t1", NOW)

        assert errors == []
        row = rows[0]
        assert row.tenant_id == "t1"
        assert row.occurred_at == "2024-03-15T12:00:00.000Z"
        assert row.properties == {}
        assert row.project_id is None

    def test_optional_fields_trimmed(self):
        rows, _ = validate_events([_event(
            project_id=" p1 ", user_id="", session_id="  s1",
            properties={"plan": "pro"}, occurred_at="2024-03-01T10:00:00+02:00",
        )], "t1", NOW)

        row = rows[0]
        assert row.project_id == "p1"
        assert row.user_id is None
        assert row.session_id == "s1"
        assert row.properties == {"plan": "pro"}
        assert row.occurred_at == "2024-03-01T08:00:00.000Z"

    def test_non_object_properties_replaced(self):
        rows, _ = validate_events([_event(properties=["a"])], "t1", NOW)
        assert rows[0].properties == {}

    def test_rejections_are_recorded_by_index(self):
        events = [
            _event(),
            "not an object",
            _event(event_id="not-a-uuid"),
            _event(event_id="3f2b8c1e-9d4a-4b6f-8e2a-1c5d7f9b0a13", event_name="  "),
            _event(event_id="3f2b8c1e-9d4a-4b6f-8e2a-1c5d7f9b0a14", occurred_at="soon"),
        ]

        rows, errors = validate_events(events, "t1", NOW)

        assert len(rows) == 1
        assert [error.to_dict() for error in errors] == [
            {"index": 1, "reason": REASON_NOT_OBJECT},
            {"index": 2, "reason": REASON_BAD_EVENT_ID},
            {"index": 3, "reason": REASON_MISSING_NAME},
            {"index": 4, "reason": REASON_BAD_OCCURRED_AT},
        ]

    def test_uuid_variant_is_checked(self):
        _, errors = validate_events([_event(event_id="3f2b8c1e-9d4a-4b6f-0e2a-1c5d7f9b0a12")], "t1", NOW)
        assert errors[0].reason == REASON_BAD_EVENT_ID

    def test_numeric_occurred_at_is_epoch_millis(self):
        rows, errors = validate_events([_event(occurred_at=1711886400000)], "t1", NOW)

        assert errors == []
        assert rows[0].occurred_at == "2024-03-31T12:00:00.000Z"

    def test_zero_occurred_at_uses_receive_time(self):
        rows, _ = validate_events([_event(occurred_at=0)], "t1", NOW)
        assert rows[0].occurred_at == "2024-03-15T12:00:00.000Z"

    def test_out_of_range_epoch_rejected(self):
        _, errors = validate_events([_event(occurred_at=10 ** 20)], "t1", NOW)
        assert errors[0].reason == REASON_BAD_OCCURRED_AT

    def test_array_event_fails_event_id_check(self):
        _, errors = validate_events([["x"], []], "t1", NOW)
        assert [error.to_dict() for error in errors] == [
            {"index": 0, "reason": REASON_BAD_EVENT_ID},
            {"index": 1, "reason": REASON_BAD_EVENT_ID},
        ]


class TestEventStore:
    """Test write tokens, origins and the event ledger."""

    def _tenant(self, db_path):
        return TenantDirectory(db_path).add_tenant("acme", "Acme", "k1")

    def test_token_lifecycle(self, db_path):
        tenant = self._tenant(db_path)
        store = EventStore(db_path)
        token = store.issue_write_token(tenant.id)

        resolved = store.get_tenant_for_write_token(token.token)
        assert resolved.tenant == tenant
        assert resolved.token.active is True

        assert store.revoke_write_token(token.token) is True
        assert store.get_tenant_for_write_token(token.token) is None
        assert store.get_tenant_for_write_token("unknown") is None

    def test_duplicate_events_ignored(self, db_path):
        tenant = self._tenant(db_path)
        store = EventStore(db_path)
        rows, _ = validate_events([_event(properties={"n": 1})], tenant.id, NOW)

        assert store.insert_events(rows) == 1
        assert store.insert_events(rows) == 0

        stored = store.fetch_events(tenant.id)
        assert len(stored) == 1
        assert stored[0].properties == {"n": 1}

    def test_allowed_origins_normalized(self, db_path):
        tenant = self._tenant(db_path)
        store = EventStore(db_path)
        store.add_allowed_origin(tenant.id, "https://app.example.com/")
        store.add_allowed_origin(tenant.id, "https://app.example.com")

        assert store.list_allowed_origins(tenant.id) == ["https://app.example.com"]
