"""
Unit tests for the collection entry points.
"""

from datetime import datetime, timezone

import httpx
import pytest

from usage_gateway.config.loader import CollectionDefaults, DatabaseConfig, GatewayConfig
from usage_gateway.core.collection import (
    TenantNotFoundError,
    TenantQueryRequest,
    collect_usage,
    query_tenant_usage,
    resolve_rolling_window,
)
from usage_gateway.core.tasks import CollectionRequest, InvalidRequestError
from usage_gateway.storage.directory import TenantDirectory
from usage_gateway.storage.repository import UsageRepository

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def _http(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _config(db_path, **defaults) -> GatewayConfig:
    return GatewayConfig(database=DatabaseConfig(path=db_path), defaults=CollectionDefaults(**defaults))


class TestRollingWindow:
    """Test the ad-hoc query window."""

    def test_defaults_to_last_24_hours(self):
        window = resolve_rolling_window(None, None, NOW)
        assert window.start_time == "2024-03-14T12:00:00.000Z"
        assert window.end_time == "2024-03-15T12:00:00.000Z"

    def test_invalid_bound_rejected(self):
        with pytest.raises(InvalidRequestError):
            resolve_rolling_window("later", None, NOW)


class TestCollectUsage:
    """Test a full collection run against a temporary directory."""

    @pytest.mark.asyncio
    async def test_run_persists_rows(self, db_path):
        directory = TenantDirectory(db_path)
        directory.add_tenant("acme", "Acme", "encrypted:k1")
        directory.add_project("acme", "p1")

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"result": {"items": [{"period": "2024-03-14", "count": 2}]}})

        report = await collect_usage(
            _config(db_path, timezone="UTC", environment_id="fallback-env"),
            CollectionRequest(metrics=("interactions",)),
            http=_http(handler),
            now=NOW,
        )

        assert report.succeeded_count == 1
        assert report.timezone == "UTC"
        assert report.results[0].task.environment_id == "fallback-env"
        rows = UsageRepository(db_path).fetch_usage_rows()
        assert rows[0].period == "2024-03-14T00:00:00.000Z"


class TestQueryTenantUsage:
    """Test single-tenant queries."""

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, db_path):
        with pytest.raises(TenantNotFoundError, match="ghost"):
            await query_tenant_usage(_config(db_path), TenantQueryRequest(tenant="ghost"), now=NOW)

    @pytest.mark.asyncio
    async def test_missing_tenant(self, db_path):
        with pytest.raises(InvalidRequestError, match="DEFAULT_TENANT"):
            await query_tenant_usage(_config(db_path), TenantQueryRequest(), now=NOW)

    @pytest.mark.asyncio
    async def test_explicit_project_and_window(self, db_path):
        directory = TenantDirectory(db_path)
        directory.add_tenant("acme", "Acme", "k1")
        directory.add_project("acme", "p1")
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"result": {"total": 1}})

        payload = await query_tenant_usage(
            _config(db_path),
            TenantQueryRequest(
                tenant="acme", project_id="p9", metric="kb_documents",
                start_time="2024-03-01T00:00:00Z", end_time="2024-03-02T00:00:00Z", limit=3,
            ),
            http=_http(handler),
            now=NOW,
        )

        assert payload["queriedAt"] == "2024-03-15T12:00:00.000Z"
        assert payload["parameters"] == {
            "tenant": "acme",
            "projectID": "p9",
            "startTime": "2024-03-01T00:00:00.000Z",
            "endTime": "2024-03-02T00:00:00.000Z",
            "limit": 3,
            "metric": "kb_documents",
        }
        assert payload["result"] == {"result": {"total": 1}}
        assert seen[0].headers["authorization"] == "k1"
