"""Tests for the Allocator: ranking, leasing, short batches and races."""

import threading

import pytest

from conftest import FakeClock, make_item
from curalease.configs.base import CurationConfig
from curalease.exceptions import NotEligibleError, StoreUnavailableError
from curalease.observability import metrics
from curalease.service import CurationService


@pytest.fixture
def three_items(service):
    service.register_items([
        make_item("A_1", confidence=0.95),
        make_item("B_1", confidence=0.85),
        make_item("C_1", confidence=0.99),
    ])
    return service


def test_allocate_returns_top_ranked(three_items):
    result = three_items.allocate("alice", batch_size=2)
    assert [i["item_id"] for i in result["items"]] == ["C_1", "A_1"]
    assert result["allocated"] == 2
    assert result["dropped_item_ids"] == []

    session = result["session"]
    assert session["status"] == "in_progress"
    assert session["assigned_item_ids"] == ["C_1", "A_1"]
    assert session["target_size"] == 2
    assert three_items.leases.owns(session["session_id"], "C_1")
    assert three_items.leases.owns(session["session_id"], "A_1")


def test_second_curator_gets_remaining_item(three_items):
    three_items.allocate("alice", batch_size=2)
    bob = three_items.allocate("bob", batch_size=2)
    assert [i["item_id"] for i in bob["items"]] == ["B_1"]
    assert bob["allocated"] == 1
    assert bob["requested"] == 2


def test_nothing_left_raises_not_eligible(three_items):
    three_items.allocate("alice", batch_size=3)
    with pytest.raises(NotEligibleError):
        three_items.allocate("bob", batch_size=1)


def test_curated_items_are_not_handed_out(three_items):
    first = three_items.allocate("alice", batch_size=1)
    sid = first["session"]["session_id"]
    three_items.record_decision(sid, "C_1", {"has_domain": True})
    three_items.finalize(sid, "commit")

    second = three_items.allocate("bob", batch_size=3)
    assert "C_1" not in [i["item_id"] for i in second["items"]]


def test_failed_session_insert_releases_leases(three_items, monkeypatch):
    def unavailable(session):
        raise StoreUnavailableError("Curation store unavailable: disk I/O error")

    monkeypatch.setattr(three_items.store, "insert_session", unavailable)
    with pytest.raises(StoreUnavailableError):
        three_items.allocate("alice", batch_size=2)
    assert three_items.store.list_leases() == []

    monkeypatch.undo()
    retry = three_items.allocate("alice", batch_size=2)
    assert [i["item_id"] for i in retry["items"]] == ["C_1", "A_1"]
    assert three_items.store.get_session(retry["session"]["session_id"]) is not None


def test_batch_size_is_clamped(clock):
    config = CurationConfig.in_memory(
        reaper={"enabled": False},
        allocation={"default_batch_size": 2, "max_batch_size": 3},
    )
    with CurationService(config, clock=clock) as svc:
        svc.register_items([make_item(f"P{i}_A") for i in range(6)])
        assert svc.allocate("alice")["requested"] == 2
        assert svc.allocate("bob", batch_size=50)["allocated"] == 3


def test_invalid_arguments(three_items):
    with pytest.raises(ValueError):
        three_items.allocate("", batch_size=2)
    with pytest.raises(ValueError):
        three_items.allocate("alice", batch_size=0)


def test_concurrent_allocations_never_share_items(db_path):
    clock = FakeClock()
    config = CurationConfig(reaper={"enabled": False}, store={"db_path": db_path})
    services = [CurationService(config, clock=clock) for _ in range(2)]
    services[0].register_items([
        make_item("A_1", confidence=0.95),
        make_item("B_1", confidence=0.85),
        make_item("C_1", confidence=0.99),
    ])
    barrier = threading.Barrier(2)
    results = {}
    errors = []

    def run(name, svc):
        barrier.wait()
        try:
            results[name] = svc.allocate(name, batch_size=2)
        except NotEligibleError as exc:
            errors.append(exc)

    threads = [
        threading.Thread(target=run, args=(name, svc))
        for name, svc in zip(("alice", "bob"), services)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    try:
        # A curator who loses every race gets NotEligibleError, never a shared item.
        assert len(results) + len(errors) == 2
        assert results
        won = [{i["item_id"] for i in r["items"]} for r in results.values()]
        if len(won) == 2:
            assert won[0].isdisjoint(won[1])
        for r in results.values():
            assert not set(r["dropped_item_ids"]) & {i["item_id"] for i in r["items"]}
        held = services[0].leases.leases_for_session
        for r in results.values():
            assert len(held(r["session"]["session_id"])) == r["allocated"]
    finally:
        for svc in services:
            svc.close()


def test_allocation_metrics(three_items):
    three_items.allocate("alice", batch_size=2)
    summary = metrics.get_summary()
    assert summary["curation"]["allocations"] == 1
    assert summary["operations"]["allocate"]["count"] == 1
