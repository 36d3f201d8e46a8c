"""Session coordinator: the curation session state machine.

States: in_progress (initial), abandoned, committed, discarded, completed.
Every transition is a compare-and-set on the current status, so two writers
racing on the same session cannot both succeed.

    checkpoint      in_progress            -> in_progress  (+ renew leases)
    resume          in_progress/abandoned  -> in_progress  (+ renew / re-acquire leases)
    finalize        in_progress            -> committed | discarded | completed
    abandon_stale   in_progress (idle)     -> abandoned
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from curalease.configs.base import ReaperConfig
from curalease.core.leases import LeaseManager
from curalease.core.ledger import DecisionLedger
from curalease.db.sqlite import CurationStore, to_iso
from curalease.exceptions import (
    InvalidTransitionError,
    SessionNotActiveError,
    SessionNotFoundError,
)
from curalease.models import RESUMABLE_STATUSES, FinalizeAction, SessionStatus
from curalease.observability import logger as event_logger, metrics

logger = logging.getLogger(__name__)

_FINALIZE_COUNTERS = {
    FinalizeAction.COMMIT: "sessions_committed",
    FinalizeAction.DISCARD: "sessions_discarded",
    FinalizeAction.REVISIT: "sessions_completed",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _completion_percentage(session: Dict[str, Any]) -> float:
    target = int(session.get("target_size") or 0)
    if target <= 0:
        return 0.0
    return round(int(session.get("reviewed_count") or 0) / target * 100, 1)


def _join_notes(existing: Optional[str], extra: Optional[str]) -> Optional[str]:
    extra = (extra or "").strip()
    if not extra:
        return existing
    if not existing:
        return extra
    return f"{existing} | {extra}"


class SessionCoordinator:
    """Owns session creation follow-up, checkpointing, resumption and finalization."""

    def __init__(
        self,
        store: CurationStore,
        leases: LeaseManager,
        ledger: DecisionLedger,
        *,
        reaper_config: Optional[ReaperConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.leases = leases
        self.ledger = ledger
        self.reaper_config = reaper_config or ReaperConfig()
        self._clock = clock

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def checkpoint(
        self,
        session_id: str,
        cursor_index: int,
        decisions: Optional[Sequence[Any]] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Durably save client progress and extend the session's leases.

        ``decisions`` is the client's per-item progress list; entries that are
        mappings with a truthy ``completed`` key count as reviewed.
        """
        decisions = list(decisions or [])
        reviewed = sum(1 for d in decisions if isinstance(d, dict) and d.get("completed"))
        now = self._clock()

        with self.store.transaction():
            session = self._require(session_id)
            if session["status"] != SessionStatus.IN_PROGRESS.value:
                raise SessionNotActiveError(session_id, session["status"])
            cursor_index = int(cursor_index)
            if cursor_index < 0 or cursor_index > len(session["assigned_item_ids"]):
                raise ValueError(
                    f"cursor_index {cursor_index} out of range for {len(session['assigned_item_ids'])} items"
                )
            blob = {
                "decisions": decisions,
                "saved_at": to_iso(now),
                "notes": notes,
                "completed_count": reviewed,
            }
            updated = self.store.update_session_if_status(
                session_id,
                [SessionStatus.IN_PROGRESS],
                cursor_index=cursor_index,
                reviewed_count=reviewed,
                checkpoint_blob=blob,
                notes=notes if notes is not None else session.get("notes"),
                updated_at=now,
            )
            if not updated:
                raise SessionNotActiveError(session_id)
            renewed = self.leases.renew(session_id)

        assigned = len(session["assigned_item_ids"])
        if renewed < assigned:
            logger.warning(
                "Checkpoint on %s renewed %d/%d leases; resume to reclaim reaped items",
                session_id, renewed, assigned,
            )
        return {
            "session": self.store.get_session(session_id),
            "leases_renewed": renewed,
            "leases_missing": max(0, assigned - renewed),
            "auto_saved_at": to_iso(now),
        }

    def resume(self, session_id: str) -> Dict[str, Any]:
        """Reload a session and re-establish its leases.

        On an in_progress session this only renews leases and returns current
        state, so client retries are harmless. On an abandoned session it
        moves the session back to in_progress first. Assigned items whose
        leases were reaped are re-acquired when still free; items another
        session took meanwhile are reported in ``lost_item_ids``.
        """
        now = self._clock()
        with self.store.transaction():
            session = self._require(session_id)
            previous = session["status"]
            if previous not in {s.value for s in RESUMABLE_STATUSES}:
                raise SessionNotActiveError(session_id, previous)

            if previous == SessionStatus.ABANDONED.value:
                reopened = self.store.update_session_if_status(
                    session_id,
                    [SessionStatus.ABANDONED],
                    status=SessionStatus.IN_PROGRESS,
                    updated_at=now,
                )
                if not reopened:
                    current = self._require(session_id)
                    if current["status"] != SessionStatus.IN_PROGRESS.value:
                        raise SessionNotActiveError(session_id, current["status"])
                metrics.incr("sessions_resumed")
                event_logger.info("Session reopened", session_id=session_id, curator_id=session["curator_id"])

            renewed = self.leases.renew(session_id)
            reacquired: List[str] = []
            lost: List[str] = []
            for item_id in session["assigned_item_ids"]:
                if self.leases.owns(session_id, item_id):
                    continue
                if self.leases.acquire(item_id, session["curator_id"], session_id):
                    reacquired.append(item_id)
                else:
                    lost.append(item_id)

        if lost:
            logger.warning("Session %s lost items to other sessions: %s", session_id, lost)
        current = self.store.get_session(session_id)
        return {
            "session": current,
            "items": self.store.get_work_items(current["assigned_item_ids"]),
            "decisions": self.ledger.decisions_for(session_id),
            "resumed_from": previous,
            "leases_renewed": renewed,
            "reacquired_item_ids": reacquired,
            "lost_item_ids": lost,
            "can_resume": True,
        }

    def finalize(
        self,
        session_id: str,
        action: Union[str, FinalizeAction],
        final_notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """End an in_progress session.

        commit folds decisions into curation status in the same transaction
        that moves the session to committed; a retried commit finds the
        session no longer in_progress and is rejected.
        """
        try:
            action = FinalizeAction(getattr(action, "value", action))
        except ValueError:
            raise InvalidTransitionError(
                f"Invalid finalize action {action!r}; expected one of {[a.value for a in FinalizeAction]}"
            ) from None

        now = self._clock()
        final_status = action.final_status
        with self.store.transaction():
            session = self._require(session_id)
            if session["status"] != SessionStatus.IN_PROGRESS.value:
                raise SessionNotActiveError(session_id, session["status"])

            fields: Dict[str, Any] = {
                "status": final_status,
                "ended_at": now,
                "updated_at": now,
                "notes": _join_notes(session.get("notes"), final_notes),
            }
            if action is FinalizeAction.COMMIT:
                fields["folded_at"] = now
            if not self.store.update_session_if_status(session_id, [SessionStatus.IN_PROGRESS], **fields):
                raise SessionNotActiveError(session_id)

            folded_ids: List[str] = []
            lost_ids: List[str] = []
            if action is FinalizeAction.COMMIT:
                folded_ids, lost_ids = self.ledger.fold_on_commit(session_id, session["curator_id"])
            released = self.leases.release(session_id)

        metrics.incr(_FINALIZE_COUNTERS[action])
        event_logger.info(
            "Session finalized",
            session_id=session_id,
            curator_id=session["curator_id"],
            action=action.value,
            status=final_status.value,
            committed_items=len(folded_ids),
            lost_items=len(lost_ids),
        )
        return {
            "session_id": session_id,
            "action": action.value,
            "session_status": final_status.value,
            "committed_items": len(folded_ids),
            "lost_item_ids": lost_ids,
            "released_leases": released,
            "statistics": self.ledger.statistics(session_id),
        }

    def abandon_stale(self, now: Optional[datetime] = None) -> List[str]:
        """Abandon in_progress sessions with no checkpoint inside the timeout window."""
        now = now or self._clock()
        cutoff = now - timedelta(seconds=self.reaper_config.abandon_after_seconds)
        abandoned: List[str] = []
        with self.store.transaction():
            for session in self.store.find_stale_sessions(cutoff):
                session_id = session["session_id"]
                if self.store.update_session_if_status(
                    session_id,
                    [SessionStatus.IN_PROGRESS],
                    status=SessionStatus.ABANDONED,
                ):
                    self.leases.release(session_id)
                    abandoned.append(session_id)
        if abandoned:
            metrics.incr("sessions_abandoned", len(abandoned))
            logger.info("Abandoned %d stale sessions: %s", len(abandoned), abandoned)
        return abandoned

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_session_summary(self, session_id: str) -> Dict[str, Any]:
        session = self._require(session_id)
        return {
            "session": session,
            "items": self.store.get_work_items(session["assigned_item_ids"]),
            "statistics": self.ledger.statistics(session_id),
            "live_leases": self.leases.live_count(session_id),
            "completion_percentage": _completion_percentage(session),
        }

    def list_sessions(
        self,
        *,
        curator_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 20,
    ) -> Dict[str, Any]:
        if status is not None:
            try:
                status = SessionStatus(getattr(status, "value", status)).value
            except ValueError:
                raise ValueError(f"Unknown session status {status!r}") from None
        limit = max(1, min(int(limit), 500))
        rows = self.store.list_sessions(curator_id=curator_id, status=status, limit=limit)
        for row in rows:
            row.pop("checkpoint_blob", None)
            row["avg_confidence"] = round(float(row.get("avg_confidence") or 0.0), 2)
            row["avg_review_time"] = round(float(row.get("avg_review_time") or 0.0), 1)
            row["completion_percentage"] = _completion_percentage(row)
        summary = self.store.session_counts(curator_id=curator_id, status=status)
        return {
            "sessions": rows,
            "summary": summary,
            "filters": {"curator_id": curator_id, "status": status, "limit": limit},
        }

    def _require(self, session_id: str) -> Dict[str, Any]:
        session = self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session
