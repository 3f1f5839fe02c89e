"""
Analytics usage API client.

Executes one usage query and classifies the response as success, upstream
error or transport error. Fire-once: no retries.
"""

from typing import Any, Dict, Optional, Union

import httpx

from ..config.loader import DEFAULT_USAGE_ENDPOINT
from ..core.metrics import Metric

UsagePayload = Dict[str, Any]


class UsageClientError(Exception):
    """Base class for classified usage query failures."""
    kind = "unexpected"
    status: Optional[int] = None
    detail: Any = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"message": str(self), "kind": self.kind}
        if self.status is not None:
            payload["status"] = self.status
        if self.detail is not None:
            payload["detail"] = self.detail
        return payload


class UpstreamError(UsageClientError):
    """The API answered with a non-success status."""
    kind = "upstream"

    def __init__(self, message: str, status: int, detail: Any = None):
        super().__init__(message)
        self.status = status
        self.detail = detail


class TransportError(UsageClientError):
    """No response was received."""
    kind = "transport"


def build_usage_payload(
    project_id: str,
    metric: Union[Metric, str],
    start_time: str,
    end_time: str,
    limit: int,
    environment_id: Optional[str] = None,
    cursor: Optional[Union[str, int]] = None,
) -> Dict[str, Any]:
    """Build the request body for one usage query."""
    resource: Dict[str, Any] = {"type": "project", "id": project_id}
    if environment_id:
        resource["environmentID"] = environment_id

    data: Dict[str, Any] = {
        "name": metric.value if isinstance(metric, Metric) else metric,
        "filter": {
            "startTime": start_time,
            "endTime": end_time,
            "limit": limit,
        },
    }
    if cursor:
        data["cursor"] = cursor

    return {"resources": [resource], "data": data}


def extract_error_detail(payload: Any) -> Any:
    """Prefer the payload's ``error`` string, then ``message``, else the payload itself."""
    if isinstance(payload, dict):
        if isinstance(payload.get("error"), str):
            return payload["error"]
        if isinstance(payload.get("message"), str):
            return payload["message"]
    return payload


class UsageClient:
    """Thin async client for the analytics usage endpoint.

    Pass an ``httpx.AsyncClient`` to share a connection pool across a run;
    otherwise the client owns one and must be closed.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_USAGE_ENDPOINT,
        http: Optional[httpx.AsyncClient] = None,
    ):
        if not endpoint or not endpoint.strip():
            raise ValueError("endpoint is required and cannot be empty")

        self.endpoint = endpoint
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient()

    async def __aenter__(self) -> "UsageClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def query_usage(
        self,
        api_key: str,
        project_id: str,
        metric: Union[Metric, str],
        start_time: str,
        end_time: str,
        limit: int,
        environment_id: Optional[str] = None,
        cursor: Optional[Union[str, int]] = None,
    ) -> UsagePayload:
        """Run one usage query.

        Args:
            api_key: Decrypted analytics API key
            project_id: Target project
            metric: Metric to query
            start_time: Window start (ISO-8601)
            end_time: Window end (ISO-8601)
            limit: Maximum items returned
            environment_id: Optional environment override
            cursor: Optional pagination cursor

        Returns:
            The decoded response body, verbatim

        Raises:
            TransportError: If no response was received
            UpstreamError: If the API returned a non-success status or a
                body that is not JSON
        """
        payload = build_usage_payload(
            project_id, metric, start_time, end_time, limit, environment_id, cursor
        )
        headers = {
            "accept": "application/json",
            "authorization": api_key,
            "content-type": "application/json",
        }

        try:
            response = await self._http.post(self.endpoint, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(str(e) or type(e).__name__) from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.is_success:
            detail = extract_error_detail(body if body is not None else response.text)
            raise UpstreamError("Analytics API request failed", response.status_code, detail)

        if body is None:
            raise UpstreamError(
                "Analytics API returned a non-JSON body", response.status_code, response.text
            )
        return body
