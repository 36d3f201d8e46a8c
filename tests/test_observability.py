"""Tests for structured logging and the metrics collector."""

import json
import logging

import pytest

from curalease.observability import MetricsCollector, StructuredFormatter, StructuredLogger


def test_measure_records_latency_and_errors():
    collector = MetricsCollector()
    with collector.measure("allocate"):
        pass
    with pytest.raises(RuntimeError):
        with collector.measure("allocate"):
            raise RuntimeError("boom")

    op = collector.get_summary()["operations"]["allocate"]
    assert op["count"] == 2
    assert op["errors"] == 1
    assert op["error_rate"] == 0.5


def test_counters_and_prometheus_export():
    collector = MetricsCollector()
    collector.incr("leases_acquired", 3)
    collector.incr("lease_conflicts")
    collector.set_gauge("live-leases", 7)
    text = collector.get_prometheus_metrics()
    assert "curalease_leases_acquired_total 3" in text
    assert "curalease_lease_conflicts_total 1" in text
    assert "curalease_live_leases 7" in text


def test_unknown_counter_rejected():
    with pytest.raises(AttributeError):
        MetricsCollector().incr("not_a_counter")


def test_structured_formatter_emits_json():
    record = logging.LogRecord("curalease.events", logging.INFO, __file__, 1, "Session finalized", None, None)
    record.structured_data = {"session_id": "s1", "action": "commit"}
    payload = json.loads(StructuredFormatter().format(record))
    assert payload["message"] == "Session finalized"
    assert payload["session_id"] == "s1"
    assert payload["level"] == "INFO"


def test_logger_context_binding(caplog):
    base = StructuredLogger("curalease.test-events")
    bound = base.with_context(curator_id="alice")
    with caplog.at_level(logging.INFO, logger="curalease.test-events"):
        bound.info("Session allocated", session_id="s1")
    record = caplog.records[-1]
    assert record.structured_data["curator_id"] == "alice"
    assert record.structured_data["session_id"] == "s1"
