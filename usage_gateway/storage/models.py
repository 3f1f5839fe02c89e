"""
Data models for storage layer.

Defines directory entities and the rows written to the usage, pull and
event ledgers.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Tenant:
    """An isolated customer scope."""
    id: str
    slug: str
    name: str


@dataclass(frozen=True)
class Credential:
    """Analytics API credential owned by a tenant.

    The key is stored encrypted; callers decrypt it right before use.
    """
    id: str
    tenant_id: str
    api_key_encrypted: str
    environment_id: Optional[str] = None
    active: bool = True
    rotated_at: Optional[str] = None


@dataclass(frozen=True)
class Project:
    """Analytics project tracked for a tenant."""
    id: str
    tenant_id: str
    project_id: str
    display_name: Optional[str] = None
    active: bool = True


@dataclass(frozen=True)
class TenantProject:
    """One eligible (tenant, credential, project) triple."""
    tenant: Tenant
    credential: Credential
    project: Project


@dataclass(frozen=True)
class TenantConfig:
    """A tenant with its active credential and active projects."""
    tenant: Tenant
    credential: Credential
    projects: List[Project] = field(default_factory=list)


@dataclass(frozen=True)
class WriteToken:
    """Bearer token allowing a tenant to submit events."""
    id: str
    tenant_id: str
    token: str
    active: bool
    created_at: str


@dataclass(frozen=True)
class TenantWithToken:
    """Tenant resolved from an event write token."""
    tenant: Tenant
    token: WriteToken


@dataclass(frozen=True)
class UsageRow:
    """One flattened usage data point.

    Rows are upserted, so re-delivering the same payload never duplicates
    a (tenant, project, metric, period, data) tuple.
    """
    tenant_id: str
    project_id: str
    metric: str
    period: Optional[str]
    data: Dict[str, Any]


@dataclass(frozen=True)
class PullRecord:
    """Append-only audit record for one task execution."""
    tenant_id: str
    project_id: str
    metric: str
    window_start: str
    window_end: str
    status: str
    cursor: Any = None
    error: Optional[Dict[str, Any]] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class EventRow:
    """Validated client event ready for insertion."""
    event_id: str
    tenant_id: str
    event_name: str
    occurred_at: str
    project_id: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    properties: Dict[str, Any] = field(default_factory=dict)
