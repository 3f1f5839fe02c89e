"""
Tenant directory.

Resolves tenants, their active analytics credential and active projects.
"""

import sqlite3
import uuid
from typing import List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import Credential, Project, Tenant, TenantConfig, TenantProject
from ..core.timeutils import now_utc, to_iso

# One active credential per tenant; the most recently rotated wins.
_ACTIVE_CREDENTIAL = """
    SELECT id FROM credentials
    WHERE tenant_id = {tenant} AND active = 1
    ORDER BY COALESCE(rotated_at, '') DESC, rowid DESC
    LIMIT 1
"""

_CREDENTIAL_COLUMNS = "c.id, c.tenant_id, c.api_key_encrypted, c.environment_id, c.active, c.rotated_at"
_PROJECT_COLUMNS = "p.id, p.tenant_id, p.project_id, p.display_name, p.active"


class DirectoryError(RuntimeError):
    """Raised when the tenant directory cannot be read or written."""


def _credential(row) -> Credential:
    return Credential(
        id=row[0],
        tenant_id=row[1],
        api_key_encrypted=row[2],
        environment_id=row[3],
        active=bool(row[4]),
        rotated_at=row[5],
    )


def _project(row) -> Project:
    return Project(
        id=row[0],
        tenant_id=row[1],
        project_id=row[2],
        display_name=row[3],
        active=bool(row[4]),
    )


class TenantDirectory:
    """SQLite-backed tenant directory."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def list_active_tenant_projects(self) -> List[TenantProject]:
        """List every active project whose tenant has an active credential.

        Returns:
            Triples ordered by tenant, then project creation order

        Raises:
            DirectoryError: If the store cannot be queried
        """
        query = f"""
            SELECT t.id, t.slug, t.name, {_CREDENTIAL_COLUMNS}, {_PROJECT_COLUMNS}
            FROM projects p
            JOIN tenants t ON t.id = p.tenant_id
            JOIN credentials c ON c.id = ({_ACTIVE_CREDENTIAL.format(tenant='t.id')})
            WHERE p.active = 1
            ORDER BY t.id ASC, p.created_at ASC, p.rowid ASC
        """
        try:
            conn = get_connection(self.db_path)
            try:
                rows = conn.execute(query).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise DirectoryError(f"Failed to list tenant projects: {e}") from e

        return [
            TenantProject(
                tenant=Tenant(id=row[0], slug=row[1], name=row[2]),
                credential=_credential(row[3:9]),
                project=_project(row[9:14]),
            )
            for row in rows
        ]

    def fetch_tenant_config(self, slug: str) -> Optional[TenantConfig]:
        """Fetch a tenant with its active credential and active projects.

        Args:
            slug: Tenant slug (exact match)

        Returns:
            TenantConfig, or None when the tenant is unknown or lacks an
            active credential or any active project

        Raises:
            DirectoryError: If the store cannot be queried
        """
        try:
            conn = get_connection(self.db_path)
            try:
                tenant_row = conn.execute(
                    "SELECT id, slug, name FROM tenants WHERE slug = ?", (slug,)
                ).fetchone()
                if tenant_row is None:
                    return None
                tenant = Tenant(id=tenant_row[0], slug=tenant_row[1], name=tenant_row[2])

                credential_row = conn.execute(
                    f"SELECT {_CREDENTIAL_COLUMNS} FROM credentials c "
                    f"WHERE c.id = ({_ACTIVE_CREDENTIAL.format(tenant='?')})",
                    (tenant.id,),
                ).fetchone()
                project_rows = conn.execute(
                    f"SELECT {_PROJECT_COLUMNS} FROM projects p "
                    "WHERE p.tenant_id = ? AND p.active = 1 "
                    "ORDER BY p.created_at ASC, p.rowid ASC",
                    (tenant.id,),
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise DirectoryError(f"Failed to load tenant configuration: {e}") from e

        if credential_row is None or not project_rows:
            return None
        return TenantConfig(
            tenant=tenant,
            credential=_credential(credential_row),
            projects=[_project(row) for row in project_rows],
        )

    def get_tenant(self, slug: str) -> Optional[Tenant]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("SELECT id, slug, name FROM tenants WHERE slug = ?", (slug,)).fetchone()
        finally:
            conn.close()
        return Tenant(id=row[0], slug=row[1], name=row[2]) if row else None

    def add_tenant(
        self,
        slug: str,
        name: str,
        api_key: str,
        environment_id: Optional[str] = None,
    ) -> Tenant:
        """Create a tenant together with its first active credential.

        Args:
            slug: Unique tenant slug
            name: Display name
            api_key: Analytics API key as stored (may carry the ``encrypted:`` marker)
            environment_id: Default environment for this credential

        Returns:
            The created tenant

        Raises:
            ValueError: If slug, name or key is blank, or the slug is taken
        """
        if not slug or not slug.strip():
            raise ValueError("slug is required and cannot be empty")
        if not name or not name.strip():
            raise ValueError("name is required and cannot be empty")
        if not api_key or not api_key.strip():
            raise ValueError("api_key is required and cannot be empty")

        tenant = Tenant(id=str(uuid.uuid4()), slug=slug.strip(), name=name.strip())
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT INTO tenants (id, slug, name, created_at) VALUES (?, ?, ?, ?)",
                (tenant.id, tenant.slug, tenant.name, to_iso(now_utc())),
            )
            conn.execute(
                """
                INSERT INTO credentials (id, tenant_id, api_key_encrypted, environment_id, active)
                VALUES (?, ?, ?, ?, 1)
                """,
                (str(uuid.uuid4()), tenant.id, api_key.strip(), environment_id),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise ValueError(f"Tenant slug already exists: {tenant.slug}") from e
        finally:
            conn.close()
        return tenant

    def rotate_credential(self, slug: str, api_key: str, environment_id: Optional[str] = None) -> Credential:
        """Deactivate the tenant's credentials and store a new active one."""
        tenant = self._require_tenant(slug)
        credential = Credential(
            id=str(uuid.uuid4()),
            tenant_id=tenant.id,
            api_key_encrypted=api_key.strip(),
            environment_id=environment_id,
            active=True,
            rotated_at=to_iso(now_utc()),
        )
        conn = get_connection(self.db_path)
        try:
            conn.execute("UPDATE credentials SET active = 0 WHERE tenant_id = ?", (tenant.id,))
            conn.execute(
                """
                INSERT INTO credentials (id, tenant_id, api_key_encrypted, environment_id, active, rotated_at)
                VALUES (?, ?, ?, ?, 1, ?)
                """,
                (credential.id, credential.tenant_id, credential.api_key_encrypted,
                 credential.environment_id, credential.rotated_at),
            )
            conn.commit()
        finally:
            conn.close()
        return credential

    def add_project(self, slug: str, project_id: str, display_name: Optional[str] = None) -> Project:
        """Register an active analytics project for a tenant.

        Raises:
            ValueError: If the tenant is unknown or the project is already registered
        """
        if not project_id or not project_id.strip():
            raise ValueError("project_id is required and cannot be empty")
        tenant = self._require_tenant(slug)
        project = Project(
            id=str(uuid.uuid4()),
            tenant_id=tenant.id,
            project_id=project_id.strip(),
            display_name=display_name,
        )
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO projects (id, tenant_id, project_id, display_name, active, created_at)
                VALUES (?, ?, ?, ?, 1, ?)
                """,
                (project.id, project.tenant_id, project.project_id, project.display_name,
                 to_iso(now_utc())),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise ValueError(f"Project {project.project_id} already registered for {slug}") from e
        finally:
            conn.close()
        return project

    def count_entries(self) -> dict:
        conn = get_connection(self.db_path)
        try:
            return {
                "tenants": conn.execute("SELECT COUNT(*) FROM tenants").fetchone()[0],
                "active_projects": conn.execute(
                    "SELECT COUNT(*) FROM projects WHERE active = 1"
                ).fetchone()[0],
            }
        finally:
            conn.close()

    def _require_tenant(self, slug: str) -> Tenant:
        tenant = self.get_tenant(slug)
        if tenant is None:
            raise ValueError(f"Unknown tenant: {slug}")
        return tenant
