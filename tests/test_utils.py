"""Unit tests for utility functions, logging context and metrics."""

import json
from datetime import datetime, timezone

import pytest

from socialsync.logging import (
    clear_request_context,
    get_request_context,
    operation_context,
    redact_extra,
    serialize,
    set_request_context,
)
from socialsync.metrics import errors_total, generate_metrics_output
from socialsync.utils import (
    count_by,
    format_iso,
    index_by,
    parse_datetime,
    redact_token,
    truncate,
    unique,
    utc_now,
    utc_now_iso,
)


class TestDatetimeFunctions:
    """Tests for datetime utility functions."""

    def test_parse_datetime_valid_iso(self):
        result = parse_datetime("2024-01-15T10:30:00Z")
        assert result.year == 2024
        assert result.hour == 10
        assert result.tzinfo == timezone.utc

    def test_parse_datetime_with_offset(self):
        """Offsets are converted to UTC."""
        result = parse_datetime("2024-01-15T10:30:00+05:00")
        assert result.hour == 5
        assert result.tzinfo == timezone.utc

    def test_parse_backend_timestamp(self):
        """Microsecond timestamps as the backend returns them."""
        result = parse_datetime("2024-01-15T10:30:00.123456+00:00")
        assert result.microsecond == 123456

    def test_parse_naive_datetime(self):
        result = parse_datetime(datetime(2024, 1, 15, 10, 30))
        assert result.tzinfo == timezone.utc

    @pytest.mark.parametrize("value", [None, ""])
    def test_parse_empty(self, value):
        assert parse_datetime(value) is None

    def test_parse_datetime_invalid(self):
        with pytest.raises(ValueError):
            parse_datetime("not-a-date")

    def test_utc_now(self):
        assert utc_now().tzinfo == timezone.utc

    def test_utc_now_iso(self):
        assert utc_now_iso().endswith("Z")

    def test_format_iso(self):
        assert format_iso(datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)) == "2024-01-15T10:30:00Z"
        assert format_iso(None) is None


class TestCollections:
    def test_unique_keeps_order(self):
        assert unique(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]

    def test_count_by_skips_missing_keys(self):
        rows = [{"post_id": "p1"}, {"post_id": "p1"}, {"post_id": None}, {"post_id": "p2"}]
        assert count_by(rows, "post_id") == {"p1": 2, "p2": 1}

    def test_index_by_mappings_and_objects(self):
        class Row:
            def __init__(self, key):
                self.user_id = key

        assert index_by([{"user_id": "a"}], "user_id") == {"a": {"user_id": "a"}}
        rows = [Row("a"), Row("b")]
        assert index_by(rows, "user_id") == {"a": rows[0], "b": rows[1]}

    def test_truncate(self):
        assert truncate("hello world", 5) == "hello"
        assert truncate("hi", 5) == "hi"


class TestRedaction:
    def test_redact_long_token(self):
        assert redact_token("abcdefghijklmnop") == "abcdefgh...mnop"

    def test_redact_short_and_missing(self):
        assert redact_token("short") == "***"
        assert redact_token(None) == "None"


class TestLoggingContext:
    def test_set_and_clear(self):
        set_request_context(request_id="req-1", user_id="user-1", operation="feed.fetch_page")

        assert get_request_context() == {
            "request_id": "req-1",
            "user_id": "user-1",
            "operation": "feed.fetch_page",
        }

        clear_request_context()
        assert get_request_context() == {"request_id": None, "user_id": None, "operation": None}

    def test_serialize_includes_context(self):
        class Level:
            name = "INFO"

        record = {
            "time": datetime(2024, 1, 15, tzinfo=timezone.utc),
            "level": Level(),
            "message": "Fetched page",
            "module": "feed",
            "function": "fetch_page",
            "line": 10,
            "extra": {"page": 2},
            "exception": None,
        }
        set_request_context(operation="feed.fetch_page")
        try:
            data = json.loads(serialize(record))
        finally:
            clear_request_context()

        assert data["message"] == "Fetched page"
        assert data["operation"] == "feed.fetch_page"
        assert data["page"] == 2
        assert "request_id" not in data

    def test_operation_context_nests(self):
        with operation_context("feed.fetch_page"):
            with operation_context("backend.select"):
                assert get_request_context()["operation"] == "backend.select"
            assert get_request_context()["operation"] == "feed.fetch_page"

        assert get_request_context()["operation"] is None

    def test_redact_extra(self):
        extra = {"access_token": "eyJhbGciOiJIUzI1NiJ9.payload", "password": "hunter2", "page": 1}

        assert redact_extra(extra) == {"access_token": "eyJhbGci...load", "password": "***", "page": 1}


def test_metrics_output():
    errors_total.labels(error_type="BackendError", component="tests").inc()

    output = generate_metrics_output().decode()

    assert "errors_total" in output
    assert 'component="tests"' in output
