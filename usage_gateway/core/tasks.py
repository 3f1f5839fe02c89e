"""
Task resolution.

Turns the tenant directory plus caller filters into the ordered list of
upstream queries for one collection run.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from .metrics import Metric, resolve_metrics
from .timeutils import parse_iso, to_iso
from ..storage.models import Credential, Tenant, TenantProject

DEFAULT_LIMIT = 100


class NoMatchingProjectsError(LookupError):
    """Raised when the filters leave no (tenant, project) pair to query."""


class EmptyDirectoryError(LookupError):
    """Raised when the directory has no active tenant projects at all."""


class InvalidRequestError(ValueError):
    """Raised for malformed collection parameters other than metrics."""


@dataclass(frozen=True)
class UsageWindow:
    """Half-open query window ``[start_time, end_time)`` as ISO-8601 strings."""
    start_time: str
    end_time: str

    def to_dict(self) -> dict:
        return {"startTime": self.start_time, "endTime": self.end_time}


@dataclass(frozen=True)
class Task:
    """One upstream query: a tenant's project, one metric, one window.

    The credential travels with the task but is excluded from comparison
    and repr so it never leaks into logs.
    """
    tenant: Tenant
    project_id: str
    metric: Metric
    window: UsageWindow
    credential: Credential = field(repr=False, compare=False)
    limit: int = DEFAULT_LIMIT
    cursor: Optional[Union[str, int]] = None
    environment_id: Optional[str] = None


@dataclass(frozen=True)
class CollectionRequest:
    """Caller filters for a collection run. Empty tuples mean "no filter"."""
    tenant_slugs: Tuple[str, ...] = ()
    project_ids: Tuple[str, ...] = ()
    metrics: Tuple[str, ...] = ()
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    limit: int = DEFAULT_LIMIT
    cursor: Optional[Union[str, int]] = None
    environment_id: Optional[str] = None


@dataclass(frozen=True)
class TaskPlan:
    """Resolved run parameters and the tasks they produce."""
    tasks: List[Task]
    window: UsageWindow
    metrics: List[Metric]
    limit: int


def _reference_clock(now: Optional[datetime]) -> datetime:
    """Wall-clock reading whose midnights define the default window.

    Naive values, and fixed offsets matching the system zone at that instant,
    are read on the system local clock so each midnight gets its own UTC
    offset. Other aware values keep their own zone.
    """
    if now is None:
        return datetime.now()
    if now.tzinfo is None:
        return now
    if isinstance(now.tzinfo, timezone) and now.utcoffset() == now.astimezone().utcoffset():
        return now.astimezone().replace(tzinfo=None)
    return now


def _localize(value: datetime) -> datetime:
    return value.astimezone() if value.tzinfo is None else value


def compute_default_window(now: Optional[datetime] = None) -> UsageWindow:
    """Yesterday 00:00:00 through today 00:00:00 in the local clock.

    Both midnights are resolved separately, so a DST change between them
    shortens or lengthens the window to 23 or 25 hours.

    Args:
        now: Reference time; defaults to the current local time

    Returns:
        The window rendered in UTC
    """
    current = _reference_clock(now)
    today = current.replace(hour=0, minute=0, second=0, microsecond=0)
    yesterday = today - timedelta(days=1)
    return UsageWindow(start_time=to_iso(_localize(yesterday)), end_time=to_iso(_localize(today)))


def resolve_window(
    start_time: Optional[str],
    end_time: Optional[str],
    now: Optional[datetime] = None,
) -> UsageWindow:
    """Fill missing bounds from the default window and validate the result.

    Raises:
        InvalidRequestError: If a bound is not ISO-8601 or start is not before end
    """
    default = compute_default_window(now)
    start = parse_iso(start_time) if start_time else parse_iso(default.start_time)
    end = parse_iso(end_time) if end_time else parse_iso(default.end_time)

    if start is None:
        raise InvalidRequestError(f"startTime must be a valid ISO-8601 timestamp: {start_time}")
    if end is None:
        raise InvalidRequestError(f"endTime must be a valid ISO-8601 timestamp: {end_time}")
    if start >= end:
        raise InvalidRequestError("startTime must be before endTime")

    return UsageWindow(start_time=to_iso(start), end_time=to_iso(end))


def resolve_environment_id(
    override: Optional[str],
    credential: Optional[Credential],
    fallback: Optional[str] = None,
) -> Optional[str]:
    """Pick the environment: request override, then the credential's default, then ``fallback``."""
    if override:
        return override
    if credential is not None and credential.environment_id:
        return credential.environment_id
    return fallback or None


def filter_tenant_projects(
    triples: Sequence[TenantProject],
    tenant_slugs: Iterable[str] = (),
    project_ids: Iterable[str] = (),
) -> List[TenantProject]:
    """Keep triples matching the slug and project filters (exact, case-sensitive)."""
    slugs = set(tenant_slugs)
    projects = set(project_ids)
    return [
        triple
        for triple in triples
        if (not slugs or triple.tenant.slug in slugs)
        and (not projects or triple.project.project_id in projects)
    ]


def build_tasks(
    triples: Sequence[TenantProject],
    metrics: Sequence[Metric],
    window: UsageWindow,
    limit: int = DEFAULT_LIMIT,
    cursor: Optional[Union[str, int]] = None,
    environment_override: Optional[str] = None,
    environment_fallback: Optional[str] = None,
) -> List[Task]:
    """Cross triples with metrics: triples in the outer loop, metrics inner."""
    return [
        Task(
            tenant=triple.tenant,
            project_id=triple.project.project_id,
            metric=metric,
            window=window,
            credential=triple.credential,
            limit=limit,
            cursor=cursor,
            environment_id=resolve_environment_id(
                environment_override, triple.credential, environment_fallback
            ),
        )
        for triple in triples
        for metric in metrics
    ]


def plan_collection(
    triples: Sequence[TenantProject],
    request: CollectionRequest,
    now: Optional[datetime] = None,
    environment_fallback: Optional[str] = None,
) -> TaskPlan:
    """Resolve a collection request into a non-empty task plan.

    Inputs are validated before the directory is filtered so malformed
    requests fail the same way regardless of directory contents.

    Args:
        triples: Every eligible (tenant, credential, project) from the directory
        request: Caller filters
        now: Reference time for the default window
        environment_fallback: Environment used when neither request nor credential sets one

    Returns:
        TaskPlan with at least one task

    Raises:
        InvalidMetricsError: If any requested metric is unknown
        InvalidRequestError: If the window or limit is malformed
        EmptyDirectoryError: If the directory holds no active projects
        NoMatchingProjectsError: If the filters exclude every project
    """
    metrics = resolve_metrics(request.metrics)
    window = resolve_window(request.start_time, request.end_time, now)
    if request.limit <= 0:
        raise InvalidRequestError("limit must be a positive integer")

    if not triples:
        raise EmptyDirectoryError("No active tenant projects are configured.")

    selected = filter_tenant_projects(triples, request.tenant_slugs, request.project_ids)
    if not selected:
        raise NoMatchingProjectsError("No active projects match the requested tenant/project filters.")

    tasks = build_tasks(
        selected,
        metrics,
        window,
        limit=request.limit,
        cursor=request.cursor,
        environment_override=request.environment_id,
        environment_fallback=environment_fallback,
    )
    return TaskPlan(tasks=tasks, window=window, metrics=metrics, limit=request.limit)
