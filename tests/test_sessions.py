"""Tests for the session state machine: checkpoint, resume, finalize, abandonment."""

import pytest

from conftest import make_item
from curalease.exceptions import (
    InvalidTransitionError,
    SessionNotActiveError,
    SessionNotFoundError,
)
from curalease.observability import metrics


@pytest.fixture
def session(service):
    service.register_items([
        make_item("X_1", confidence=0.97),
        make_item("Y_1", confidence=0.93),
    ])
    return service.allocate("alice", batch_size=2)["session"]


class TestCheckpoint:
    def test_checkpoint_saves_progress_and_renews(self, service, session, clock):
        sid = session["session_id"]
        before = service.leases.holder("X_1")["expires_at"]
        clock.advance(minutes=45)

        result = service.checkpoint(
            sid, 1, decisions=[{"item_id": "X_1", "completed": True}, None], notes="halfway",
        )
        assert result["leases_renewed"] == 2
        assert result["leases_missing"] == 0

        saved = result["session"]
        assert saved["cursor_index"] == 1
        assert saved["reviewed_count"] == 1
        assert saved["notes"] == "halfway"
        assert saved["checkpoint_blob"]["completed_count"] == 1
        assert saved["updated_at"] > session["updated_at"]
        assert service.leases.holder("X_1")["expires_at"] > before

    def test_cursor_out_of_range(self, service, session):
        with pytest.raises(ValueError):
            service.checkpoint(session["session_id"], 3)

    def test_checkpoint_unknown_session(self, service):
        with pytest.raises(SessionNotFoundError):
            service.checkpoint("missing", 0)

    def test_checkpoint_after_finalize_rejected(self, service, session):
        service.finalize(session["session_id"], "discard")
        with pytest.raises(SessionNotActiveError):
            service.checkpoint(session["session_id"], 1)

    def test_checkpoint_reports_reaped_leases(self, service, session, clock):
        clock.advance(hours=2, minutes=1)
        service.leases.reap_expired()
        result = service.checkpoint(session["session_id"], 0)
        assert result["leases_renewed"] == 0
        assert result["leases_missing"] == 2


class TestFinalize:
    def test_commit_folds_and_releases(self, service, session):
        sid = session["session_id"]
        service.record_decision(sid, "X_1", {"has_domain": True, "confidence_level": 4})
        service.record_decision(sid, "Y_1", {"has_domain": False, "is_fragment": True})

        result = service.finalize(sid, "commit", final_notes="looks good")
        assert result["session_status"] == "committed"
        assert result["committed_items"] == 2
        assert result["released_leases"] == 2
        assert result["statistics"]["total_decisions"] == 2

        stored = service.store.get_session(sid)
        assert stored["status"] == "committed"
        assert stored["folded_at"] is not None
        assert stored["ended_at"] is not None
        assert stored["notes"] == "looks good"
        assert service.curation_status("X_1")["curation_count"] == 1
        assert service.leases.live_count(sid) == 0

    def test_commit_retry_does_not_double_fold(self, service, session):
        sid = session["session_id"]
        service.record_decision(sid, "X_1", {"has_domain": True})
        service.finalize(sid, "commit")
        with pytest.raises(SessionNotActiveError):
            service.finalize(sid, "commit")
        assert service.curation_status("X_1")["curation_count"] == 1
        assert metrics.get_summary()["curation"]["sessions_committed"] == 1

    def test_commit_skips_items_leased_to_another_session(self, service, session, clock):
        sid = session["session_id"]
        service.record_decision(sid, "X_1", {"has_domain": True})
        clock.advance(hours=3)
        service.leases.reap_expired()
        bob = service.allocate("bob", batch_size=1)
        assert [i["item_id"] for i in bob["items"]] == ["X_1"]

        result = service.finalize(sid, "commit")
        assert result["session_status"] == "committed"
        assert result["committed_items"] == 0
        assert result["lost_item_ids"] == ["X_1"]
        assert service.curation_status("X_1") is None
        assert service.leases.owns(bob["session"]["session_id"], "X_1")

    def test_commit_after_resume_folds_only_reacquired_items(self, service, session, clock):
        sid = session["session_id"]
        service.record_decision(sid, "X_1", {"has_domain": True})
        service.record_decision(sid, "Y_1", {"has_domain": False})
        clock.advance(hours=3)
        service.leases.reap_expired()
        service.allocate("bob", batch_size=1)
        resumed = service.resume(sid)
        assert resumed["lost_item_ids"] == ["X_1"]

        result = service.finalize(sid, "commit")
        assert result["committed_items"] == 1
        assert result["lost_item_ids"] == ["X_1"]
        assert service.curation_status("Y_1")["last_session_id"] == sid
        assert service.curation_status("X_1") is None
        assert metrics.get_summary()["curation"]["items_folded"] == 1

    def test_discard_keeps_decisions_without_folding(self, service, session):
        sid = session["session_id"]
        service.record_decision(sid, "X_1", {"has_domain": True})
        result = service.finalize(sid, "discard")
        assert result["session_status"] == "discarded"
        assert result["committed_items"] == 0
        assert service.curation_status("X_1") is None
        assert len(service.ledger.decisions_for(sid)) == 1

    def test_revisit_completes(self, service, session):
        result = service.finalize(session["session_id"], "revisit")
        assert result["session_status"] == "completed"
        assert service.leases.live_count() == 0

    def test_unknown_action(self, service, session):
        with pytest.raises(InvalidTransitionError):
            service.finalize(session["session_id"], "publish")
        assert service.store.get_session(session["session_id"])["status"] == "in_progress"

    def test_final_notes_append_to_existing(self, service, session):
        sid = session["session_id"]
        service.checkpoint(sid, 0, notes="first pass")
        service.finalize(sid, "discard", final_notes="bad batch")
        assert service.store.get_session(sid)["notes"] == "first pass | bad batch"

    def test_released_items_are_allocatable(self, service, session):
        service.finalize(session["session_id"], "discard")
        again = service.allocate("bob", batch_size=2)
        assert [i["item_id"] for i in again["items"]] == ["X_1", "Y_1"]


class TestResume:
    def test_resume_in_progress_is_idempotent(self, service, session, clock):
        sid = session["session_id"]
        service.record_decision(sid, "X_1", {"has_domain": True})
        clock.advance(minutes=10)

        first = service.resume(sid)
        second = service.resume(sid)
        for result in (first, second):
            assert result["resumed_from"] == "in_progress"
            assert result["session"]["status"] == "in_progress"
            assert [i["item_id"] for i in result["items"]] == ["X_1", "Y_1"]
            assert [d["item_id"] for d in result["decisions"]] == ["X_1"]
            assert result["lost_item_ids"] == []
        assert second["session"]["updated_at"] == session["updated_at"]
        assert service.leases.live_count(sid) == 2

    def test_resume_terminal_session_rejected(self, service, session):
        service.finalize(session["session_id"], "commit")
        with pytest.raises(SessionNotActiveError):
            service.resume(session["session_id"])

    def test_resume_unknown_session(self, service):
        with pytest.raises(SessionNotFoundError):
            service.resume("missing")

    def test_resume_reacquires_reaped_leases(self, service, session, clock):
        sid = session["session_id"]
        clock.advance(hours=3)
        service.leases.reap_expired()

        result = service.resume(sid)
        assert sorted(result["reacquired_item_ids"]) == ["X_1", "Y_1"]
        assert result["lost_item_ids"] == []
        assert service.leases.live_count(sid) == 2

    def test_resume_reports_items_taken_by_others(self, service, session, clock):
        sid = session["session_id"]
        clock.advance(hours=3)
        service.leases.reap_expired()
        other = service.allocate("bob", batch_size=1)
        assert other["items"][0]["item_id"] == "X_1"

        result = service.resume(sid)
        assert result["lost_item_ids"] == ["X_1"]
        assert result["reacquired_item_ids"] == ["Y_1"]


class TestAbandonment:
    def test_crashed_session_is_abandoned_and_released(self, service, session, clock):
        sid = session["session_id"]
        service.checkpoint(sid, 1, decisions=[{"item_id": "X_1", "completed": True}])

        clock.advance(hours=4, minutes=1)
        sweep = service.reap()
        assert sid in sweep["abandoned_sessions"]
        assert sorted(sweep["reaped_leases"]) == ["X_1", "Y_1"]
        assert sweep["errors"] == []
        assert service.store.get_session(sid)["status"] == "abandoned"
        assert service.leases.leases_for_session(sid) == []

        bob = service.allocate("bob", batch_size=2)
        assert [i["item_id"] for i in bob["items"]] == ["X_1", "Y_1"]

    def test_active_session_not_abandoned(self, service, session, clock):
        sid = session["session_id"]
        clock.advance(hours=3)
        service.checkpoint(sid, 0)
        clock.advance(hours=3)
        assert service.sessions.abandon_stale() == []
        assert service.store.get_session(sid)["status"] == "in_progress"

    def test_abandoned_session_can_resume(self, service, session, clock):
        sid = session["session_id"]
        clock.advance(hours=5)
        service.reap()

        result = service.resume(sid)
        assert result["resumed_from"] == "abandoned"
        assert result["session"]["status"] == "in_progress"
        assert result["session"]["updated_at"] > session["updated_at"]
        assert sorted(result["reacquired_item_ids"]) == ["X_1", "Y_1"]
        assert metrics.get_summary()["curation"]["sessions_resumed"] == 1

        service.finalize(sid, "commit")
        assert service.store.get_session(sid)["status"] == "committed"

    def test_abandoned_session_cannot_checkpoint(self, service, session, clock):
        clock.advance(hours=5)
        service.reap()
        with pytest.raises(SessionNotActiveError):
            service.checkpoint(session["session_id"], 0)


class TestListing:
    def test_summary_and_listing(self, service, session):
        sid = session["session_id"]
        service.record_decision(sid, "X_1", {"has_domain": True, "flagged_for_review": True})
        service.checkpoint(sid, 1, decisions=[{"completed": True}])

        summary = service.get_session_summary(sid)
        assert summary["completion_percentage"] == 50.0
        assert summary["live_leases"] == 2
        assert summary["statistics"]["flagged_count"] == 1

        listing = service.list_sessions(curator_id="alice")
        assert listing["summary"]["total_sessions"] == 1
        assert listing["summary"]["active_sessions"] == 1
        row = listing["sessions"][0]
        assert row["session_id"] == sid
        assert row["total_decisions"] == 1
        assert row["domains_found"] == 1
        assert "checkpoint_blob" not in row

    def test_list_filters_by_status(self, service, session):
        assert service.list_sessions(status="committed")["sessions"] == []
        with pytest.raises(ValueError):
            service.list_sessions(status="paused")

    def test_summary_unknown_session(self, service):
        with pytest.raises(SessionNotFoundError):
            service.get_session_summary("missing")
