"""
Concurrent usage collection.

Runs every task of a collection plan at once, waits for all of them to
settle and assembles one report. A failing task never cancels or hides its
siblings, and report order always follows task order.

Execution order per task:
1. Decrypt the credential and query the usage API
2. Classify the result as TaskSuccess or TaskFailure
3. Hand the outcome to the persistence sink (best effort)
"""

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog

from .crypto import decrypt_secret
from .metrics import Metric
from .outcomes import Outcome, TaskFailure, TaskSuccess, failure_from_exception, outcome_to_dict
from .tasks import DEFAULT_LIMIT, Task, UsageWindow
from .timeutils import now_utc, to_iso
from ..sdk.usage_client import UsageClient
from ..storage.repository import UsageRepository

logger = structlog.get_logger(__name__)


@dataclass
class AggregatedReport:
    """Consolidated result of one collection run."""
    ran_at: str
    tenant_count: int
    project_count: int
    succeeded_count: int
    window: UsageWindow
    metrics: List[Metric]
    limit: int
    results: List[Outcome] = field(default_factory=list)
    timezone: Optional[str] = None

    @property
    def failed_count(self) -> int:
        return len(self.results) - self.succeeded_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ranAt": self.ran_at,
            "tenantCount": self.tenant_count,
            "projectCount": self.project_count,
            "succeededCount": self.succeeded_count,
            "window": self.window.to_dict(),
            "timezone": self.timezone,
            "limit": self.limit,
            "metrics": [metric.value for metric in self.metrics],
            "results": [outcome_to_dict(outcome) for outcome in self.results],
        }


def count_scope(tasks: Sequence[Task]) -> Dict[str, int]:
    """Distinct tenants and (tenant, project) pairs in the task list."""
    return {
        "tenants": len({task.tenant.id for task in tasks}),
        "projects": len({(task.tenant.id, task.project_id) for task in tasks}),
    }


def assemble_report(
    tasks: Sequence[Task],
    outcomes: List[Outcome],
    window: UsageWindow,
    metrics: Sequence[Metric],
    limit: int = DEFAULT_LIMIT,
    timezone: Optional[str] = None,
    ran_at: Optional[datetime] = None,
) -> AggregatedReport:
    """Build the report; counts come from the task list so they hold under total failure."""
    scope = count_scope(tasks)
    return AggregatedReport(
        ran_at=to_iso(ran_at or now_utc()),
        tenant_count=scope["tenants"],
        project_count=scope["projects"],
        succeeded_count=sum(1 for outcome in outcomes if outcome.succeeded),
        window=window,
        metrics=list(metrics),
        limit=limit,
        results=outcomes,
        timezone=timezone,
    )


class FanOutAggregator:
    """Settle-all executor for usage tasks.

    Args:
        client: Usage API client shared by every task of a run
        sink: Repository receiving each outcome; None disables persistence
        decrypt: Turns a stored credential secret into the API key
    """

    def __init__(
        self,
        client: UsageClient,
        sink: Optional[UsageRepository] = None,
        decrypt: Callable[[str], str] = decrypt_secret,
    ):
        self.client = client
        self.sink = sink
        self.decrypt = decrypt

    async def run(
        self,
        tasks: Sequence[Task],
        window: UsageWindow,
        metrics: Sequence[Metric],
        limit: int = DEFAULT_LIMIT,
        timezone: Optional[str] = None,
    ) -> AggregatedReport:
        """Execute every task concurrently and return the aggregated report.

        Args:
            tasks: Non-empty task list in construction order
            window: Window shared by the tasks
            metrics: Metrics the tasks were built from
            limit: Result limit used for the tasks
            timezone: Reporting timezone echoed in the report

        Returns:
            AggregatedReport whose results follow ``tasks`` order
        """
        if not tasks:
            raise ValueError("tasks is required and cannot be empty")

        outcomes = list(await asyncio.gather(*(self.execute(task) for task in tasks)))
        report = assemble_report(tasks, outcomes, window, metrics, limit, timezone)

        logger.info(
            "usage_run_completed",
            tasks=len(tasks),
            tenants=report.tenant_count,
            projects=report.project_count,
            succeeded=report.succeeded_count,
            failed=report.failed_count,
        )
        return report

    async def execute(self, task: Task) -> Outcome:
        """Run one task to a terminal outcome. Never raises for task errors."""
        try:
            result = await self.client.query_usage(
                api_key=self.decrypt(task.credential.api_key_encrypted),
                project_id=task.project_id,
                metric=task.metric,
                start_time=task.window.start_time,
                end_time=task.window.end_time,
                limit=task.limit,
                environment_id=task.environment_id,
                cursor=task.cursor,
            )
            outcome: Outcome = TaskSuccess(task=task, result=result)
        except Exception as e:
            outcome = failure_from_exception(task, e)
            logger.warning(
                "usage_task_failed",
                tenant=task.tenant.slug,
                project_id=task.project_id,
                metric=task.metric.value,
                kind=outcome.kind.value,
                status=outcome.status,
                error=outcome.message,
            )

        return await self._persist(outcome)

    async def _persist(self, outcome: Outcome) -> Outcome:
        """Record the outcome; a sink failure is attached to the outcome, never raised."""
        if self.sink is None:
            return outcome

        task = outcome.task
        key = (task.tenant.id, task.project_id, task.metric.value,
               task.window.start_time, task.window.end_time)
        try:
            if isinstance(outcome, TaskSuccess):
                await asyncio.to_thread(self.sink.record_success, *key, outcome.result)
            else:
                await asyncio.to_thread(self.sink.record_failure, *key, _failure_payload(outcome))
        except Exception as e:
            logger.error(
                "outcome_persist_failed",
                tenant=task.tenant.slug,
                project_id=task.project_id,
                metric=task.metric.value,
                error=str(e),
            )
            return replace(outcome, persistence_error=str(e) or type(e).__name__)
        return outcome


def _failure_payload(outcome: TaskFailure) -> Any:
    return outcome.cause if outcome.cause is not None else outcome.error_dict()
