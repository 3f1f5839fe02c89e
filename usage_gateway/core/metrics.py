"""
Usage metrics known to the upstream analytics API.
"""

from enum import Enum
from typing import Iterable, List


class Metric(Enum):
    """Usage dimensions queryable from the analytics API."""
    INTERACTIONS = "interactions"
    TOP_INTENTS = "top_intents"
    UNIQUE_USERS = "unique_users"
    CREDIT_USAGE = "credit_usage"
    FUNCTION_USAGE = "function_usage"
    API_CALLS = "api_calls"
    KB_DOCUMENTS = "kb_documents"
    INTEGRATIONS = "integrations"


ALL_METRICS = tuple(Metric)
DEFAULT_METRIC = Metric.INTERACTIONS
SUPPORTED_METRIC_NAMES = ", ".join(metric.value for metric in ALL_METRICS)


class InvalidMetricsError(ValueError):
    """Raised when a request names one or more unknown metrics."""

    def __init__(self, invalid: List[str]):
        super().__init__(
            f"Invalid metrics: {', '.join(invalid)}. Supported metrics: {SUPPORTED_METRIC_NAMES}"
        )
        self.invalid = invalid


def parse_metrics(values: Iterable[str]) -> List[Metric]:
    """Parse caller-supplied metric names.

    Names are trimmed and matched case-insensitively; blanks are dropped and
    duplicates collapse onto their first occurrence. A single unknown name
    rejects the whole list.

    Args:
        values: Raw metric names

    Returns:
        Ordered, de-duplicated metrics. Empty when no non-blank names were given.

    Raises:
        InvalidMetricsError: Naming every unknown entry
    """
    normalized = [value.strip().lower() for value in values if value and value.strip()]
    unique = list(dict.fromkeys(normalized))

    known = {metric.value for metric in ALL_METRICS}
    invalid = [name for name in unique if name not in known]
    if invalid:
        raise InvalidMetricsError(invalid)

    return [Metric(name) for name in unique]


def resolve_metrics(values: Iterable[str]) -> List[Metric]:
    """Parse metric names, defaulting to every known metric when none are given."""
    return parse_metrics(values) or list(ALL_METRICS)


def parse_metric(value: object) -> Metric:
    """Parse a single metric name, defaulting to ``interactions`` when blank."""
    if value is None or value == "":
        return DEFAULT_METRIC
    if isinstance(value, str):
        normalized = value.strip().lower()
        for metric in ALL_METRICS:
            if metric.value == normalized:
                return metric
    raise InvalidMetricsError([str(value)])
