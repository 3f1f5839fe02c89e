"""
HTTP surface for the usage gateway.

Endpoints:
- GET|POST /api/usage/collect: multi-tenant collection run
- GET|POST /api/usage/query: single-tenant, single-metric query
- POST /api/events: client event ingestion

Run (example):
  USAGE_GATEWAY_CONFIG=gateway.yaml \
  python -m uvicorn usage_gateway.api.app:create_app --factory --port 8080
"""

import asyncio
from typing import Any, Dict, List, Optional

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .params import (
    collection_request_from,
    extract_event_token,
    gather_params,
    read_json_body,
    tenant_query_request_from,
)
from ..config.loader import GatewayConfig, load_gateway_config_from_env
from ..core.collection import TenantNotFoundError, collect_usage, query_tenant_usage
from ..core.events import extract_events, validate_events
from ..core.metrics import InvalidMetricsError
from ..core.tasks import EmptyDirectoryError, InvalidRequestError, NoMatchingProjectsError
from ..logging_setup import configure_logging
from ..sdk.usage_client import TransportError, UpstreamError
from ..storage.directory import DirectoryError, TenantDirectory
from ..storage.events import EventStore
from ..storage.repository import UsageRepository

logger = structlog.get_logger(__name__)

COLLECT_PATH = "/api/usage/collect"
QUERY_PATH = "/api/usage/query"
EVENTS_PATH = "/api/events"

ALLOWED_METHODS: Dict[str, List[str]] = {
    COLLECT_PATH: ["GET", "POST"],
    QUERY_PATH: ["GET", "POST"],
    EVENTS_PATH: ["POST"],
}


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


async def _method_not_allowed(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code != 405:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    allowed = ALLOWED_METHODS.get(request.url.path)
    if allowed is None:
        header = (getattr(exc, "headers", None) or {}).get("Allow", "")
        allowed = [method.strip() for method in header.split(",") if method.strip()]
    return JSONResponse(
        status_code=405,
        content={"error": "Method Not Allowed", "allowedMethods": allowed},
        headers={"Allow": ", ".join(allowed)},
    )


def create_app(
    config: Optional[GatewayConfig] = None,
    http: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        config: Gateway configuration; read from the environment when omitted
        http: Shared upstream HTTP client, mainly for tests

    Returns:
        Configured FastAPI app
    """
    config = config or load_gateway_config_from_env()
    configure_logging(config.logging.level, config.logging.json)
    app = FastAPI(title="Tenant Usage Gateway", version="0.1.0")
    app.state.config = config
    app.state.http = http
    app.state.directory = TenantDirectory(config.database.path)
    app.state.repository = UsageRepository(config.database.path)
    app.state.event_store = EventStore(config.database.path)
    app.add_exception_handler(StarletteHTTPException, _method_not_allowed)

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.api_route(COLLECT_PATH, methods=ALLOWED_METHODS[COLLECT_PATH])
    async def collect(request: Request) -> JSONResponse:
        source = await gather_params(request)
        try:
            report = await collect_usage(
                app.state.config,
                collection_request_from(source),
                directory=app.state.directory,
                repository=app.state.repository,
                http=app.state.http,
            )
        except (InvalidMetricsError, InvalidRequestError) as e:
            return _error(400, str(e))
        except (EmptyDirectoryError, NoMatchingProjectsError) as e:
            return _error(404, str(e))
        except DirectoryError as e:
            logger.error("usage_collect_directory_failed", error=str(e))
            return _error(500, str(e))

        return JSONResponse(status_code=200, content=report.to_dict())

    @app.api_route(QUERY_PATH, methods=ALLOWED_METHODS[QUERY_PATH])
    async def query(request: Request) -> JSONResponse:
        source = await gather_params(request)
        try:
            payload = await query_tenant_usage(
                app.state.config,
                tenant_query_request_from(source),
                directory=app.state.directory,
                http=app.state.http,
            )
        except (InvalidMetricsError, InvalidRequestError) as e:
            return _error(400, str(e))
        except TenantNotFoundError as e:
            return _error(404, str(e))
        except DirectoryError as e:
            logger.error("usage_query_directory_failed", error=str(e))
            return _error(500, str(e))
        except UpstreamError as e:
            # A 2xx with an unreadable body is still a gateway failure.
            status_code = e.status if e.status and e.status >= 400 else 502
            return _error(status_code, str(e), detail=e.detail, status=e.status)
        except TransportError as e:
            return _error(502, "Failed to reach analytics API", detail=str(e))

        return JSONResponse(status_code=200, content=payload)

    @app.post(EVENTS_PATH)
    async def ingest_events(request: Request) -> JSONResponse:
        token = extract_event_token(request)
        if not token:
            return _error(401, "Missing event write token (Authorization or x-event-token).")

        store: EventStore = app.state.event_store
        try:
            resolved = await asyncio.to_thread(store.get_tenant_for_write_token, token)
        except DirectoryError as e:
            return _error(500, str(e))
        if resolved is None:
            return _error(403, "Invalid or inactive event write token.")

        events = extract_events(await read_json_body(request))
        if not events:
            return _error(400, 'Body must include an "events" array with at least one event.')

        rows, errors = validate_events(events, resolved.tenant.id)
        try:
            await asyncio.to_thread(store.insert_events, rows)
        except Exception as e:
            logger.error("events_insert_failed", tenant=resolved.tenant.slug, error=str(e))
            return _error(500, str(e) or "Failed to store events")

        logger.info(
            "events_ingested",
            tenant=resolved.tenant.slug,
            accepted=len(rows),
            rejected=len(errors),
        )

        headers = {}
        origin = request.headers.get("origin")
        if origin:
            allowed = await asyncio.to_thread(store.list_allowed_origins, resolved.tenant.id)
            if origin.rstrip("/") in allowed:
                headers["Access-Control-Allow-Origin"] = origin
                headers["Vary"] = "Origin"

        return JSONResponse(
            status_code=207 if errors else 200,
            content={
                "tenant": {"id": resolved.tenant.id, "slug": resolved.tenant.slug},
                "accepted": len(rows),
                "rejected": len(errors),
                "errors": [error.to_dict() for error in errors],
            },
            headers=headers,
        )

    return app
