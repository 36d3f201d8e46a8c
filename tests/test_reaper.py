"""Tests for the reaper sweep and its background thread."""

import time

from conftest import make_item
from curalease.configs.base import ReaperConfig
from curalease.core.reaper import Reaper
from curalease.exceptions import StoreUnavailableError
from curalease.observability import metrics


def test_sweep_on_quiet_store(service):
    result = service.reap()
    assert result == {
        "reaped_leases": [],
        "abandoned_sessions": [],
        "swept_at": result["swept_at"],
        "errors": [],
    }
    assert service.reaper.last_sweep is result


def test_failing_step_is_reported_not_raised(service, monkeypatch):
    monkeypatch.setattr("curalease.utils.retry.time.sleep", lambda _: None)

    def broken(now):
        raise StoreUnavailableError("database is locked")

    monkeypatch.setattr(service.leases, "reap_expired", broken)
    reaper = Reaper(service.leases, service.sessions, service.config.reaper)
    result = reaper.sweep()
    assert result["errors"][0]["step"] == "reap_expired_leases"
    assert result["abandoned_sessions"] == []
    assert metrics.get_summary()["operations"]["reap_expired_leases"]["errors"] == 1


def test_background_thread_start_stop(service, clock):
    service.register_items([make_item("A_1")])
    service.allocate("alice", batch_size=1)
    clock.advance(hours=3)

    reaper = Reaper(service.leases, service.sessions, ReaperConfig(interval_seconds=1), clock=clock)
    assert reaper.start() is True
    assert reaper.start() is False
    try:
        deadline = time.time() + 5
        while reaper.last_sweep is None and time.time() < deadline:
            time.sleep(0.01)
        assert reaper.last_sweep is not None
        assert service.store.list_leases() == []
    finally:
        reaper.stop()
    assert not reaper.running
