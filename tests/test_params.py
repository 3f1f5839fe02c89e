"""
Unit tests for HTTP request parameter parsing.
"""

from usage_gateway.api.params import (
    collection_request_from,
    first_text,
    parse_cursor,
    parse_limit,
    split_list,
    tenant_query_request_from,
)


class TestScalars:
    """Test scalar coercion helpers."""

    def test_split_list(self):
        assert split_list("a, b,,c ") == ["a", "b", "c"]
        assert split_list(["a,b", " c"]) == ["a", "b", "c"]
        assert split_list(None) == []

    def test_parse_limit(self):
        assert parse_limit("25") == 25
        assert parse_limit(7) == 7
        assert parse_limit("0") == 100
        assert parse_limit("-3") == 100
        assert parse_limit("ten") == 100
        assert parse_limit(True) == 100
        assert parse_limit(None) == 100

    def test_parse_cursor(self):
        assert parse_cursor(" abc ") == "abc"
        assert parse_cursor(12) == 12
        assert parse_cursor("") is None

    def test_first_text_uses_first_repeated_value(self):
        assert first_text({"tenant": ["a", "b"]}, "tenant") == "a"
        assert first_text({"tenant": "  "}, "tenant") is None


class TestCollectionRequest:
    """Test building collection requests from merged parameters."""

    def test_aliases(self):
        request = collection_request_from({
            "tenants": "acme,beta",
            "projectIds": ["p1", "p2"],
            "metrics": "interactions, api_calls",
            "limit": "5",
            "environmentID": "dev",
        })

        assert request.tenant_slugs == ("acme", "beta")
        assert request.project_ids == ("p1", "p2")
        assert request.metrics == ("interactions", "api_calls")
        assert request.limit == 5
        assert request.environment_id == "dev"

    def test_single_project_id(self):
        request = collection_request_from({"projectID": " p1 ", "projectIDs": "p2"})
        assert request.project_ids == ("p1",)

    def test_empty_source(self):
        request = collection_request_from({})
        assert request.tenant_slugs == ()
        assert request.metrics == ()
        assert request.start_time is None


class TestTenantQueryRequest:
    """Test building single-tenant query requests."""

    def test_fields(self):
        request = tenant_query_request_from({
            "tenant": "acme", "projectID": "p1", "metric": " unique_users ",
            "startTime": "2024-01-01T00:00:00Z", "cursor": 3,
        })

        assert request.tenant == "acme"
        assert request.project_id == "p1"
        assert request.metric == "unique_users"
        assert request.start_time == "2024-01-01T00:00:00Z"
        assert request.cursor == 3
