"""
Event ingestion storage.

Write-token lookup, allowed origins and the idempotent raw event ledger.
"""

import json
import secrets
import sqlite3
import uuid
from typing import List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .directory import DirectoryError
from .models import EventRow, Tenant, TenantWithToken, WriteToken
from ..core.timeutils import now_utc, to_iso


class EventStore:
    """SQLite-backed store for client-submitted events."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get_tenant_for_write_token(self, token: str) -> Optional[TenantWithToken]:
        """Resolve an active write token to its tenant.

        Args:
            token: Raw bearer token

        Returns:
            Tenant and token record, or None when the token is unknown or inactive

        Raises:
            DirectoryError: If the store cannot be queried
        """
        try:
            conn = get_connection(self.db_path)
            try:
                row = conn.execute(
                    """
                    SELECT w.id, w.tenant_id, w.token, w.active, w.created_at,
                           t.id, t.slug, t.name
                    FROM event_write_tokens w
                    JOIN tenants t ON t.id = w.tenant_id
                    WHERE w.token = ? AND w.active = 1
                    """,
                    (token,),
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise DirectoryError(f"Failed to validate event token: {e}") from e

        if row is None:
            return None
        return TenantWithToken(
            tenant=Tenant(id=row[5], slug=row[6], name=row[7]),
            token=WriteToken(
                id=row[0],
                tenant_id=row[1],
                token=row[2],
                active=bool(row[3]),
                created_at=row[4],
            ),
        )

    def issue_write_token(self, tenant_id: str) -> WriteToken:
        """Create a new active write token for a tenant."""
        token = WriteToken(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            token=secrets.token_urlsafe(32),
            active=True,
            created_at=to_iso(now_utc()),
        )
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO event_write_tokens (id, tenant_id, token, active, created_at)
                VALUES (?, ?, ?, 1, ?)
                """,
                (token.id, token.tenant_id, token.token, token.created_at),
            )
            conn.commit()
        finally:
            conn.close()
        return token

    def revoke_write_token(self, token: str) -> bool:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "UPDATE event_write_tokens SET active = 0 WHERE token = ? AND active = 1", (token,)
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def add_allowed_origin(self, tenant_id: str, origin: str) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT OR IGNORE INTO allowed_origins (tenant_id, origin) VALUES (?, ?)",
                (tenant_id, origin.strip().rstrip("/")),
            )
            conn.commit()
        finally:
            conn.close()

    def list_allowed_origins(self, tenant_id: str) -> List[str]:
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT origin FROM allowed_origins WHERE tenant_id = ? ORDER BY id ASC", (tenant_id,)
            ).fetchall()
        finally:
            conn.close()
        return [row[0] for row in rows]

    def insert_events(self, rows: List[EventRow]) -> int:
        """Insert events atomically, ignoring ids that are already stored.

        Re-delivering a batch is safe: duplicates keyed by ``event_id`` are
        silently skipped.

        Args:
            rows: Validated events

        Returns:
            Number of events newly stored
        """
        if not rows:
            return 0

        received_at = to_iso(now_utc())
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN TRANSACTION")
            inserted = 0
            for row in rows:
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO events_raw
                    (event_id, tenant_id, project_id, event_name, occurred_at,
                     user_id, session_id, properties, received_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        row.event_id,
                        row.tenant_id,
                        row.project_id,
                        row.event_name,
                        row.occurred_at,
                        row.user_id,
                        row.session_id,
                        json.dumps(row.properties, default=str),
                        received_at,
                    ),
                )
                inserted += cursor.rowcount
            conn.commit()
            return inserted
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def fetch_events(self, tenant_id: Optional[str] = None, limit: int = 1000) -> List[EventRow]:
        """Get stored events, oldest first."""
        query = """
            SELECT event_id, tenant_id, event_name, occurred_at, project_id,
                   user_id, session_id, properties
            FROM events_raw
        """
        params: list = []
        if tenant_id:
            query += " WHERE tenant_id = ?"
            params.append(tenant_id)
        query += " ORDER BY rowid ASC LIMIT ?"
        params.append(limit)

        conn = get_connection(self.db_path)
        try:
            return [
                EventRow(
                    event_id=row[0],
                    tenant_id=row[1],
                    event_name=row[2],
                    occurred_at=row[3],
                    project_id=row[4],
                    user_id=row[5],
                    session_id=row[6],
                    properties=json.loads(row[7]),
                )
                for row in conn.execute(query, params).fetchall()
            ]
        finally:
            conn.close()
