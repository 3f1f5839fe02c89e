"""
Per-task outcomes.

Every task ends in exactly one TaskSuccess or TaskFailure. Failures are
values, not exceptions, so one task's error can never abort its siblings.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from .tasks import Task
from ..sdk.usage_client import UsageClientError

STATUS_FULFILLED = "fulfilled"
STATUS_REJECTED = "rejected"


class ErrorKind(Enum):
    """How a task failed."""
    UPSTREAM = "upstream"
    TRANSPORT = "transport"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class TaskSuccess:
    """The upstream call returned a payload."""
    task: Task
    result: Dict[str, Any]
    persistence_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return True


@dataclass(frozen=True)
class TaskFailure:
    """The upstream call failed; ``cause`` keeps the original exception for the audit log."""
    task: Task
    kind: ErrorKind
    message: str
    status: Optional[int] = None
    detail: Any = None
    cause: Optional[BaseException] = field(default=None, repr=False, compare=False)
    persistence_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return False

    def error_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"message": self.message, "kind": self.kind.value}
        if self.status is not None:
            payload["status"] = self.status
        if self.detail is not None:
            payload["detail"] = self.detail
        return payload


Outcome = Union[TaskSuccess, TaskFailure]


def failure_from_exception(task: Task, error: BaseException) -> TaskFailure:
    """Classify an exception raised while executing ``task``.

    Client errors keep their upstream/transport classification and HTTP
    details; anything else becomes an ``unexpected`` failure with only a
    message.
    """
    if isinstance(error, UsageClientError):
        return TaskFailure(
            task=task,
            kind=ErrorKind(error.kind),
            message=str(error),
            status=error.status,
            detail=error.detail,
            cause=error,
        )
    return TaskFailure(
        task=task,
        kind=ErrorKind.UNEXPECTED,
        message=str(error) or "Unknown error",
        cause=error,
    )


def outcome_to_dict(outcome: Outcome) -> Dict[str, Any]:
    """Render an outcome as a report ``results`` entry."""
    task = outcome.task
    entry: Dict[str, Any] = {
        "status": STATUS_FULFILLED if outcome.succeeded else STATUS_REJECTED,
        "tenant": {"id": task.tenant.id, "slug": task.tenant.slug, "name": task.tenant.name},
        "projectID": task.project_id,
        "metric": task.metric.value,
    }
    if task.environment_id:
        entry["environmentID"] = task.environment_id

    if isinstance(outcome, TaskSuccess):
        entry["result"] = outcome.result
    else:
        entry["error"] = outcome.error_dict()

    if outcome.persistence_error:
        entry["persistenceError"] = outcome.persistence_error
    return entry
