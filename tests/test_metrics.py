"""
Unit tests for metric parsing.
"""

import pytest

from usage_gateway.core.metrics import (
    ALL_METRICS,
    InvalidMetricsError,
    Metric,
    parse_metric,
    parse_metrics,
    resolve_metrics,
)


class TestParseMetrics:
    """Test parsing of caller-supplied metric lists."""

    def test_trims_lowercases_and_dedupes(self):
        """Test normalisation keeps first-occurrence order."""
        metrics = parse_metrics([" Interactions", "unique_users", "INTERACTIONS", "", "  "])
        assert metrics == [Metric.INTERACTIONS, Metric.UNIQUE_USERS]

    def test_single_invalid_metric_rejects_list(self):
        """Test that one unknown name rejects the whole list."""
        with pytest.raises(InvalidMetricsError) as exc_info:
            parse_metrics(["interactions", "bogus"])

        assert exc_info.value.invalid == ["bogus"]
        assert "Invalid metrics: bogus" in str(exc_info.value)
        assert "Supported metrics: interactions" in str(exc_info.value)

    def test_all_invalid_metrics_are_named(self):
        """Test that every unknown entry is reported."""
        with pytest.raises(InvalidMetricsError) as exc_info:
            parse_metrics(["foo", "interactions", "bar"])
        assert exc_info.value.invalid == ["foo", "bar"]

    def test_empty_list_resolves_to_all_metrics(self):
        """Test that an empty or blank-only list means every metric."""
        assert resolve_metrics([]) == list(ALL_METRICS)
        assert resolve_metrics([" ", ""]) == list(ALL_METRICS)
        assert len(ALL_METRICS) == 8


class TestParseMetric:
    """Test single metric parsing."""

    def test_blank_defaults_to_interactions(self):
        assert parse_metric(None) == Metric.INTERACTIONS
        assert parse_metric("") == Metric.INTERACTIONS

    def test_case_insensitive(self):
        assert parse_metric(" Top_Intents ") == Metric.TOP_INTENTS

    def test_unknown_metric_raises(self):
        with pytest.raises(InvalidMetricsError, match="Invalid metrics: sessions"):
            parse_metric("sessions")
