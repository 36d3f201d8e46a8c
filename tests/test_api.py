"""HTTP API tests via FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from conftest import make_item
from curalease.api import app as app_module


@pytest.fixture
def client(service):
    app_module.set_service(service)
    with TestClient(app_module.app) as test_client:
        yield test_client
    app_module.set_service(None)


@pytest.fixture
def seeded(client):
    response = client.post("/v1/items", json={"items": [
        make_item("A_1", confidence=0.95),
        make_item("B_1", confidence=0.85),
        make_item("C_1", confidence=0.99),
    ]})
    assert response.status_code == 200
    assert response.json() == {"registered": 3}
    return client


def test_health_and_version(client):
    assert client.get("/health").json()["status"] == "healthy"
    from curalease import __version__
    assert client.get("/v1/version").json()["version"] == __version__


def test_full_session_lifecycle(seeded):
    created = seeded.post("/v1/sessions", json={"curator_id": "alice", "batch_size": 2})
    assert created.status_code == 201
    body = created.json()
    sid = body["session"]["session_id"]
    assert [i["item_id"] for i in body["items"]] == ["C_1", "A_1"]

    decision = seeded.post(f"/v1/sessions/{sid}/decisions", json={
        "item_id": "C_1", "has_domain": True, "confidence_level": 4,
        "evidence": {"primary_evidence_type": "blast"},
    })
    assert decision.status_code == 200
    assert decision.json()["primary_evidence_type"] == "blast"

    saved = seeded.put(f"/v1/sessions/{sid}/checkpoint", json={
        "cursor_index": 1, "decisions": [{"item_id": "C_1", "completed": True}, None],
    })
    assert saved.status_code == 200
    assert saved.json()["session"]["reviewed_count"] == 1

    resumed = seeded.post(f"/v1/sessions/{sid}/resume")
    assert resumed.status_code == 200
    assert resumed.json()["resumed_from"] == "in_progress"

    summary = seeded.get(f"/v1/sessions/{sid}").json()
    assert summary["completion_percentage"] == 50.0

    final = seeded.post(f"/v1/sessions/{sid}/finalize", json={"action": "commit"})
    assert final.status_code == 200
    assert final.json()["committed_items"] == 1

    listing = seeded.get("/v1/sessions", params={"status": "committed"}).json()
    assert [s["session_id"] for s in listing["sessions"]] == [sid]

    stats = seeded.get("/v1/stats").json()
    assert stats["items_curated"] == 1


def test_error_mapping(seeded):
    missing = seeded.get("/v1/sessions/nope")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "session_not_found"

    sid = seeded.post("/v1/sessions", json={"curator_id": "alice", "batch_size": 3}).json()["session"]["session_id"]
    empty = seeded.post("/v1/sessions", json={"curator_id": "bob"})
    assert empty.status_code == 404
    assert empty.json()["error"]["code"] == "not_eligible"

    seeded.post(f"/v1/sessions/{sid}/finalize", json={"action": "discard"})
    again = seeded.post(f"/v1/sessions/{sid}/finalize", json={"action": "commit"})
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "session_not_active"


def test_request_validation(seeded):
    assert seeded.post("/v1/sessions", json={"curator_id": ""}).status_code == 422
    sid = seeded.post("/v1/sessions", json={"curator_id": "alice"}).json()["session"]["session_id"]
    assert seeded.post(f"/v1/sessions/{sid}/finalize", json={"action": "publish"}).status_code == 422
    bad_cursor = seeded.put(f"/v1/sessions/{sid}/checkpoint", json={"cursor_index": 99})
    assert bad_cursor.status_code == 400
    assert bad_cursor.json()["error"]["code"] == "invalid_request"


def test_lease_conflict_on_unassigned_item(seeded):
    sid = seeded.post("/v1/sessions", json={"curator_id": "alice", "batch_size": 1}).json()["session"]["session_id"]
    response = seeded.post(f"/v1/sessions/{sid}/decisions", json={"item_id": "B_1", "has_domain": True})
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "lease_conflict"


def test_sweep_and_metrics(seeded, clock):
    seeded.post("/v1/sessions", json={"curator_id": "alice", "batch_size": 1})
    clock.advance(hours=5)
    sweep = seeded.post("/v1/reaper/sweep").json()
    assert sweep["reaped_leases"] == ["C_1"]
    assert len(sweep["abandoned_sessions"]) == 1

    prom = seeded.get("/metrics")
    assert prom.status_code == 200
    assert "curalease_allocations_total 1" in prom.text
    assert seeded.get("/metrics/json").json()["curation"]["sessions_abandoned"] == 1
