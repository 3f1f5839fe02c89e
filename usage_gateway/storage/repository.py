"""
Repository pattern for data access.

Creates the gateway schema and records usage pulls: flattened usage rows
(upserted) and the append-only pull log.
"""

import json
import traceback
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import PullRecord, UsageRow
from ..core.timeutils import now_utc, to_iso, to_iso_or_none

STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS tenants (
        id TEXT PRIMARY KEY,
        slug TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS credentials (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL REFERENCES tenants(id),
        api_key_encrypted TEXT NOT NULL,
        environment_id TEXT,
        active INTEGER NOT NULL DEFAULT 1,
        rotated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS projects (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL REFERENCES tenants(id),
        project_id TEXT NOT NULL,
        display_name TEXT,
        active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        UNIQUE (tenant_id, project_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS usage_rows (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id TEXT NOT NULL,
        project_id TEXT NOT NULL,
        metric TEXT NOT NULL,
        period TEXT,
        data TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    # NULL periods must still collide, hence COALESCE.
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_usage_rows
    ON usage_rows (tenant_id, project_id, metric, COALESCE(period, ''), data)
    """,
    """
    CREATE TABLE IF NOT EXISTS pull_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id TEXT NOT NULL,
        project_id TEXT NOT NULL,
        metric TEXT NOT NULL,
        window_start TEXT NOT NULL,
        window_end TEXT NOT NULL,
        cursor TEXT,
        status TEXT NOT NULL CHECK (status IN ('succeeded', 'failed')),
        error_json TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS events_raw (
        event_id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        project_id TEXT,
        event_name TEXT NOT NULL,
        occurred_at TEXT NOT NULL,
        user_id TEXT,
        session_id TEXT,
        properties TEXT NOT NULL,
        received_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS event_write_tokens (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL REFERENCES tenants(id),
        token TEXT NOT NULL UNIQUE,
        active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS allowed_origins (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id TEXT NOT NULL REFERENCES tenants(id),
        origin TEXT NOT NULL,
        UNIQUE (tenant_id, origin)
    )
    """,
]


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create every gateway table if it doesn't exist.

    ``usage_rows``, ``pull_log`` and ``events_raw`` are append-only ledgers.
    No UPDATE or DELETE operations should ever be performed on them.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        for statement in _SCHEMA:
            conn.execute(statement)
        conn.commit()
    finally:
        conn.close()


def canonical_json(value: Any) -> str:
    """Serialise deterministically so identical payloads hit the same unique key."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def normalize_data(value: Any) -> Dict[str, Any]:
    if isinstance(value, Mapping):
        return dict(value)
    return {"value": value}


def normalize_error(error: Any) -> Dict[str, Any]:
    """Turn a failure into a JSON-friendly error payload.

    Exceptions keep their message, class name and stack (plus any structured
    fields they expose through ``to_dict``); mappings are stored verbatim and
    anything else as its string form.
    """
    if isinstance(error, BaseException):
        payload: Dict[str, Any] = {
            "message": str(error),
            "name": type(error).__name__,
            "stack": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
        }
        to_dict = getattr(error, "to_dict", None)
        if callable(to_dict):
            payload.update(to_dict())
        return payload

    if isinstance(error, Mapping):
        return dict(error)

    return {"message": str(error)}


def extract_cursor(result: Any) -> Any:
    """Return the pagination cursor carried in ``result.cursor``, if any."""
    if isinstance(result, Mapping):
        payload = result.get("result")
        if isinstance(payload, Mapping):
            return payload.get("cursor")
    return None


def build_usage_rows(tenant_id: str, project_id: str, metric: str, result: Any) -> List[UsageRow]:
    """Flatten an upstream payload into usage rows.

    ``result.items`` yields one row per item (period from the item),
    ``result.intents`` one row per intent; any other shape is stored whole
    as a single row.
    """
    payload = result.get("result") if isinstance(result, Mapping) else None

    if isinstance(payload, Mapping) and isinstance(payload.get("items"), list):
        return [
            UsageRow(
                tenant_id=tenant_id,
                project_id=project_id,
                metric=metric,
                period=to_iso_or_none(item.get("period") if isinstance(item, Mapping) else None),
                data=normalize_data(item),
            )
            for item in payload["items"]
        ]

    if isinstance(payload, Mapping) and isinstance(payload.get("intents"), list):
        return [
            UsageRow(
                tenant_id=tenant_id,
                project_id=project_id,
                metric=metric,
                period=None,
                data=normalize_data(intent),
            )
            for intent in payload["intents"]
        ]

    return [
        UsageRow(
            tenant_id=tenant_id,
            project_id=project_id,
            metric=metric,
            period=None,
            data=normalize_data(payload if payload is not None else result),
        )
    ]


class UsageRepository:
    """Repository for recording and reading usage pulls.

    Every method opens and closes its own connection, so concurrent tasks can
    call it from worker threads.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def record_success(
        self,
        tenant_id: str,
        project_id: str,
        metric: str,
        window_start: str,
        window_end: str,
        result: Any,
    ) -> int:
        """Upsert the payload's usage rows and append a ``succeeded`` pull record.

        Args:
            tenant_id: Owning tenant id
            project_id: Analytics project id
            metric: Metric name
            window_start: Window start as ISO-8601
            window_end: Window end as ISO-8601
            result: Raw upstream payload

        Returns:
            Number of usage rows newly stored (duplicates are ignored)
        """
        rows = build_usage_rows(tenant_id, project_id, metric, result)
        created_at = to_iso(now_utc())

        conn = get_connection(self.db_path)
        try:
            inserted = 0
            for row in rows:
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO usage_rows
                    (tenant_id, project_id, metric, period, data, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (row.tenant_id, row.project_id, row.metric, row.period,
                     canonical_json(row.data), created_at),
                )
                inserted += cursor.rowcount
            self._append_pull(
                conn,
                PullRecord(
                    tenant_id=tenant_id,
                    project_id=project_id,
                    metric=metric,
                    window_start=window_start,
                    window_end=window_end,
                    status=STATUS_SUCCEEDED,
                    cursor=extract_cursor(result),
                ),
                created_at,
            )
            conn.commit()
            return inserted
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def record_failure(
        self,
        tenant_id: str,
        project_id: str,
        metric: str,
        window_start: str,
        window_end: str,
        error: Any,
    ) -> None:
        """Append a ``failed`` pull record carrying a structured error payload.

        Args:
            tenant_id: Owning tenant id
            project_id: Analytics project id
            metric: Metric name
            window_start: Window start as ISO-8601
            window_end: Window end as ISO-8601
            error: Exception, mapping or other value describing the failure
        """
        conn = get_connection(self.db_path)
        try:
            self._append_pull(
                conn,
                PullRecord(
                    tenant_id=tenant_id,
                    project_id=project_id,
                    metric=metric,
                    window_start=window_start,
                    window_end=window_end,
                    status=STATUS_FAILED,
                    error=normalize_error(error),
                ),
                to_iso(now_utc()),
            )
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _append_pull(conn, record: PullRecord, created_at: str) -> None:
        conn.execute(
            """
            INSERT INTO pull_log
            (tenant_id, project_id, metric, window_start, window_end,
             cursor, status, error_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.tenant_id,
                record.project_id,
                record.metric,
                record.window_start,
                record.window_end,
                None if record.cursor is None else json.dumps(record.cursor),
                record.status,
                None if record.error is None else json.dumps(record.error, default=str),
                created_at,
            ),
        )

    def fetch_usage_rows(
        self,
        tenant_id: Optional[str] = None,
        project_id: Optional[str] = None,
        metric: Optional[str] = None,
        limit: int = 1000,
    ) -> List[UsageRow]:
        """Get stored usage rows with optional filtering, oldest first."""
        query = "SELECT tenant_id, project_id, metric, period, data FROM usage_rows"
        conditions, params = self._filters(tenant_id=tenant_id, project_id=project_id, metric=metric)
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY id ASC LIMIT ?"
        params.append(limit)

        conn = get_connection(self.db_path)
        try:
            return [
                UsageRow(
                    tenant_id=row[0],
                    project_id=row[1],
                    metric=row[2],
                    period=row[3],
                    data=json.loads(row[4]),
                )
                for row in conn.execute(query, params).fetchall()
            ]
        finally:
            conn.close()

    def fetch_pull_records(
        self,
        tenant_id: Optional[str] = None,
        project_id: Optional[str] = None,
        metric: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 1000,
    ) -> List[PullRecord]:
        """Get pull log entries with optional filtering, oldest first."""
        query = """
            SELECT tenant_id, project_id, metric, window_start, window_end,
                   cursor, status, error_json, created_at
            FROM pull_log
        """
        conditions, params = self._filters(
            tenant_id=tenant_id, project_id=project_id, metric=metric, status=status
        )
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY id ASC LIMIT ?"
        params.append(limit)

        conn = get_connection(self.db_path)
        try:
            return [
                PullRecord(
                    tenant_id=row[0],
                    project_id=row[1],
                    metric=row[2],
                    window_start=row[3],
                    window_end=row[4],
                    cursor=None if row[5] is None else json.loads(row[5]),
                    status=row[6],
                    error=None if row[7] is None else json.loads(row[7]),
                    created_at=row[8],
                )
                for row in conn.execute(query, params).fetchall()
            ]
        finally:
            conn.close()

    def count_ledger(self) -> Dict[str, int]:
        """Row counts of the ledgers, for status reporting."""
        conn = get_connection(self.db_path)
        try:
            return {
                "usage_rows": conn.execute("SELECT COUNT(*) FROM usage_rows").fetchone()[0],
                "pulls_succeeded": conn.execute(
                    "SELECT COUNT(*) FROM pull_log WHERE status = ?", (STATUS_SUCCEEDED,)
                ).fetchone()[0],
                "pulls_failed": conn.execute(
                    "SELECT COUNT(*) FROM pull_log WHERE status = ?", (STATUS_FAILED,)
                ).fetchone()[0],
                "events": conn.execute("SELECT COUNT(*) FROM events_raw").fetchone()[0],
            }
        finally:
            conn.close()

    @staticmethod
    def _filters(**columns: Optional[str]):
        conditions = []
        params: List[Any] = []
        for column, value in columns.items():
            if value:
                conditions.append(f"{column} = ?")
                params.append(value)
        return conditions, params


# Global repository instance
_default_repository: Optional[UsageRepository] = None


def get_repository(db_path: str = DEFAULT_DB_PATH) -> UsageRepository:
    """Get a repository instance.

    Returns a process-wide UsageRepository, replacing it when a different
    database path is requested.

    Args:
        db_path: Path to SQLite database file

    Returns:
        An instance of UsageRepository
    """
    global _default_repository
    if _default_repository is None or _default_repository.db_path != db_path:
        _default_repository = UsageRepository(db_path)
    return _default_repository
