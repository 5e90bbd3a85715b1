"""Tests for monitoring: request timing headers and structured log formatting."""

import json
import logging

from app.middleware.logging_config import JSONFormatter, ReadableFormatter


def _record(**extra):
    record = logging.LogRecord(
        name="app.services.transition_monitor", level=logging.INFO, pathname=__file__,
        lineno=1, msg="Advanced process instance %s", args=("abc",), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ── Request timing ──────────────────────────────────────────────────────


class TestRequestTiming:
    """Request timing middleware tests."""

    def test_duration_header_present(self, client):
        """Every response should have X-Request-Duration-Ms header."""
        res = client.get("/api/v1/health")
        assert "X-Request-Duration-Ms" in res.headers
        assert float(res.headers["X-Request-Duration-Ms"]) >= 0

    def test_request_id_header(self, client):
        res = client.get("/api/v1/health")
        assert len(res.headers["X-Request-ID"]) > 0

    def test_custom_request_id_passthrough(self, client):
        """Client-provided X-Request-ID should be preserved."""
        res = client.get("/api/v1/health", headers={"X-Request-ID": "test-123"})
        assert res.headers["X-Request-ID"] == "test-123"

    def test_error_responses_timed(self, client):
        res = client.get("/api/v1/decision-instances/missing")
        assert res.status_code == 404
        assert "X-Request-Duration-Ms" in res.headers


# ── Log formatting ──────────────────────────────────────────────────────


class TestLogFormatters:
    def test_json_formatter_lifts_domain_context(self):
        line = JSONFormatter().format(_record(process_instance_id="abc", transition_id="t-1"))

        entry = json.loads(line)
        assert entry["message"] == "Advanced process instance abc"
        assert entry["process_instance_id"] == "abc"
        assert entry["transition_id"] == "t-1"
        assert "proposal_id" not in entry

    def test_readable_formatter_shows_instance(self):
        line = ReadableFormatter().format(_record(process_instance_id="abc", duration_ms=12.4))

        assert "(instance=abc)" in line
        assert "[12ms]" in line
