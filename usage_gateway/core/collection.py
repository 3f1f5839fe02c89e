"""
Usage collection entry points.

Glues the tenant directory, task resolution, the usage client and the
aggregator together for the HTTP handlers and the CLI.
"""

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Union

import httpx

from .aggregator import AggregatedReport, FanOutAggregator
from .crypto import decrypt_secret
from .metrics import parse_metric
from .tasks import (
    DEFAULT_LIMIT,
    CollectionRequest,
    InvalidRequestError,
    UsageWindow,
    plan_collection,
    resolve_environment_id,
)
from .timeutils import now_utc, parse_iso, to_iso
from ..config.loader import GatewayConfig
from ..sdk.usage_client import UsageClient
from ..storage.directory import TenantDirectory
from ..storage.repository import UsageRepository


class TenantNotFoundError(LookupError):
    """Raised when a tenant slug has no active credential and project."""


@dataclass(frozen=True)
class TenantQueryRequest:
    """Parameters for a single-tenant, single-metric usage query."""
    tenant: Optional[str] = None
    project_id: Optional[str] = None
    metric: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    limit: int = DEFAULT_LIMIT
    cursor: Optional[Union[str, int]] = None
    environment_id: Optional[str] = None


async def collect_usage(
    config: GatewayConfig,
    request: CollectionRequest,
    directory: Optional[TenantDirectory] = None,
    repository: Optional[UsageRepository] = None,
    http: Optional[httpx.AsyncClient] = None,
    now: Optional[datetime] = None,
) -> AggregatedReport:
    """Resolve, execute and persist one multi-tenant collection run.

    Args:
        config: Gateway configuration
        request: Caller filters; empty metrics fall back to configured defaults
        directory: Tenant directory (defaults to the configured database)
        repository: Persistence sink (defaults to the configured database)
        http: Shared HTTP client, mainly for tests
        now: Reference time for the default window

    Returns:
        AggregatedReport for the run

    Raises:
        InvalidMetricsError, InvalidRequestError: Malformed input
        EmptyDirectoryError, NoMatchingProjectsError: Nothing to query
        DirectoryError: The directory could not be read
    """
    directory = directory or TenantDirectory(config.database.path)
    repository = repository or UsageRepository(config.database.path)
    if not request.metrics and config.defaults.metrics:
        request = replace(request, metrics=config.defaults.metrics)

    triples = await asyncio.to_thread(directory.list_active_tenant_projects)
    plan = plan_collection(
        triples, request, now=now, environment_fallback=config.defaults.environment_id
    )

    async with UsageClient(config.upstream.usage_endpoint, http=http) as client:
        aggregator = FanOutAggregator(client, sink=repository)
        return await aggregator.run(
            plan.tasks, plan.window, plan.metrics, plan.limit, timezone=config.defaults.timezone
        )


def resolve_rolling_window(
    start_time: Optional[str],
    end_time: Optional[str],
    now: Optional[datetime] = None,
) -> UsageWindow:
    """Window for ad-hoc queries: defaults to the 24 hours ending now."""
    current = now or now_utc()
    start = parse_iso(start_time) if start_time else current - timedelta(days=1)
    end = parse_iso(end_time) if end_time else current

    if start is None:
        raise InvalidRequestError(f"startTime must be a valid ISO-8601 timestamp: {start_time}")
    if end is None:
        raise InvalidRequestError(f"endTime must be a valid ISO-8601 timestamp: {end_time}")
    if start >= end:
        raise InvalidRequestError("startTime must be before endTime")
    return UsageWindow(start_time=to_iso(start), end_time=to_iso(end))


async def query_tenant_usage(
    config: GatewayConfig,
    request: TenantQueryRequest,
    directory: Optional[TenantDirectory] = None,
    http: Optional[httpx.AsyncClient] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Run one usage query for one tenant and echo the resolved parameters.

    The tenant falls back to the configured default, the project to the
    tenant's first active project and the metric to ``interactions``.

    Raises:
        InvalidRequestError: Missing tenant or malformed window/limit
        InvalidMetricsError: Unknown metric
        TenantNotFoundError: Unknown tenant or one without credentials/projects
        UpstreamError, TransportError: The usage query failed
    """
    directory = directory or TenantDirectory(config.database.path)

    slug = request.tenant or config.defaults.tenant
    if not slug:
        raise InvalidRequestError("Missing tenant parameter or DEFAULT_TENANT fallback.")

    tenant_config = await asyncio.to_thread(directory.fetch_tenant_config, slug)
    if tenant_config is None:
        raise TenantNotFoundError(
            f"Tenant not found or missing active credentials/projects for slug: {slug}"
        )

    project_id = request.project_id or tenant_config.projects[0].project_id
    metric = parse_metric(request.metric)
    window = resolve_rolling_window(request.start_time, request.end_time, now)
    if request.limit <= 0:
        raise InvalidRequestError("limit must be a positive integer")
    environment_id = resolve_environment_id(
        request.environment_id, tenant_config.credential, config.defaults.environment_id
    )

    async with UsageClient(config.upstream.usage_endpoint, http=http) as client:
        result = await client.query_usage(
            api_key=decrypt_secret(tenant_config.credential.api_key_encrypted),
            project_id=project_id,
            metric=metric,
            start_time=window.start_time,
            end_time=window.end_time,
            limit=request.limit,
            environment_id=environment_id,
            cursor=request.cursor,
        )

    parameters: Dict[str, Any] = {
        "tenant": slug,
        "projectID": project_id,
        "startTime": window.start_time,
        "endTime": window.end_time,
        "limit": request.limit,
        "metric": metric.value,
    }
    if environment_id:
        parameters["environmentID"] = environment_id
    if request.cursor:
        parameters["cursor"] = request.cursor

    return {"queriedAt": to_iso(now or now_utc()), "parameters": parameters, "result": result}
