"""
Request parameter parsing for the HTTP handlers.

Parameters may arrive in the query string or, for POST, in a JSON object
body; body values win over query values.
"""

import json
from typing import Any, Dict, List, Optional, Tuple, Union

from starlette.requests import Request

from ..core.collection import TenantQueryRequest
from ..core.tasks import DEFAULT_LIMIT, CollectionRequest

ParamSource = Dict[str, Any]


def split_list(value: Any) -> List[str]:
    """Split a comma-separated string (or list of them) into trimmed, non-blank items."""
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple)):
        items: List[str] = []
        for entry in value:
            items.extend(split_list(entry))
        return items
    return []


def first_text(source: ParamSource, *names: str) -> Optional[str]:
    """First non-blank string among ``names``; repeated query keys use their first value."""
    for name in names:
        value = source.get(name)
        if isinstance(value, list):
            value = value[0] if value else None
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def parse_limit(value: Any, fallback: int = DEFAULT_LIMIT) -> int:
    """Positive integer from an int or numeric string, else ``fallback``."""
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, bool):
        return fallback
    if isinstance(value, int):
        return value if value > 0 else fallback
    if isinstance(value, str):
        try:
            parsed = int(value.strip(), 10)
        except ValueError:
            return fallback
        return parsed if parsed > 0 else fallback
    return fallback


def parse_cursor(value: Any) -> Optional[Union[str, int]]:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _query_source(request: Request) -> ParamSource:
    source: ParamSource = {}
    for key in request.query_params.keys():
        values = request.query_params.getlist(key)
        source[key] = values if len(values) > 1 else values[0]
    return source


async def read_json_body(request: Request) -> Any:
    """Decode the request body as JSON; a JSON-encoded string is decoded once more.

    Returns None for an empty or undecodable body.
    """
    raw = await request.body()
    if not raw:
        return None
    try:
        payload = json.loads(raw)
        if isinstance(payload, str):
            payload = json.loads(payload)
    except ValueError:
        return None
    return payload


async def gather_params(request: Request) -> ParamSource:
    """Query parameters overlaid with the JSON object body of a POST."""
    source = _query_source(request)
    if request.method.upper() == "POST":
        body = await read_json_body(request)
        if isinstance(body, dict):
            source.update(body)
    return source


def _project_ids(source: ParamSource) -> Tuple[str, ...]:
    single = source.get("projectID")
    if isinstance(single, str) and single.strip():
        return (single.strip(),)
    for name in ("projectID", "projectIDs", "projectIds"):
        items = split_list(source.get(name))
        if items:
            return tuple(items)
    return ()


def collection_request_from(source: ParamSource) -> CollectionRequest:
    """Build a CollectionRequest from merged request parameters."""
    tenants = tuple(split_list(source.get("tenant")) or split_list(source.get("tenants")))
    return CollectionRequest(
        tenant_slugs=tenants,
        project_ids=_project_ids(source),
        metrics=tuple(
            split_list(source.get("metric"))
            or split_list(source.get("metrics"))
            or split_list(source.get("METRICS"))
        ),
        start_time=first_text(source, "startTime"),
        end_time=first_text(source, "endTime"),
        limit=parse_limit(source.get("limit")),
        cursor=parse_cursor(source.get("cursor")),
        environment_id=first_text(source, "environmentID"),
    )


def tenant_query_request_from(source: ParamSource) -> TenantQueryRequest:
    """Build a TenantQueryRequest from merged request parameters."""
    metric = source.get("metric")
    if isinstance(metric, list):
        metric = metric[0] if metric else None
    return TenantQueryRequest(
        tenant=first_text(source, "tenant"),
        project_id=first_text(source, "projectID"),
        metric=metric.strip() if isinstance(metric, str) else metric,
        start_time=first_text(source, "startTime"),
        end_time=first_text(source, "endTime"),
        limit=parse_limit(source.get("limit")),
        cursor=parse_cursor(source.get("cursor")),
        environment_id=first_text(source, "environmentID"),
    )


def extract_event_token(request: Request) -> Optional[str]:
    """Write token from ``Authorization: Bearer``, then ``x-event-token``, then ``?token=``."""
    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        token = auth_header[7:].strip()
        if token:
            return token

    header_token = request.headers.get("x-event-token")
    if header_token and header_token.strip():
        return header_token.strip()

    query_tokens = request.query_params.getlist("token")
    for token in query_tokens:
        if token.strip():
            return token.strip()
    return None
