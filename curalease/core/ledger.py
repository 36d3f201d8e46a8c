"""Decision ledger: per-session curation decisions and the commit fold."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from curalease.core.leases import LeaseManager
from curalease.db.sqlite import CurationStore
from curalease.exceptions import LeaseConflictError, SessionNotActiveError, SessionNotFoundError
from curalease.models import DecisionPayload, SessionStatus
from curalease.observability import metrics

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DecisionLedger:
    """Records one decision per (session, item) and folds them into curation status.

    ``fold_on_commit`` is the only code path that writes curation status.
    """

    def __init__(
        self,
        store: CurationStore,
        leases: LeaseManager,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.leases = leases
        self._clock = clock

    def record_decision(
        self,
        session_id: str,
        item_id: str,
        payload: Union[DecisionPayload, Mapping[str, Any]],
    ) -> Dict[str, Any]:
        """Upsert the decision for ``(session_id, item_id)``; last write wins."""
        if not isinstance(payload, DecisionPayload):
            payload = DecisionPayload.model_validate(dict(payload))

        with self.store.transaction():
            session = self.store.get_session(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            if session["status"] != SessionStatus.IN_PROGRESS.value:
                raise SessionNotActiveError(session_id, session["status"])
            if item_id not in session["assigned_item_ids"]:
                raise LeaseConflictError(f"Item {item_id} is not assigned to session {session_id}")
            if not self.leases.owns(session_id, item_id):
                raise LeaseConflictError(
                    f"Session {session_id} no longer holds the lease on {item_id}; resume the session first"
                )
            self.store.upsert_decision(session_id, item_id, payload.to_row(), self._clock())

        metrics.incr("decisions_recorded")
        return {"session_id": session_id, "item_id": item_id, **payload.to_row()}

    def decisions_for(self, session_id: str) -> List[Dict[str, Any]]:
        return self.store.get_decisions(session_id)

    def fold_on_commit(self, session_id: str, curator_id: str) -> Tuple[List[str], List[str]]:
        """Mark the session's decided items as curated, in one batch.

        Only items the session still holds a live lease on are folded.
        Returns ``(folded_item_ids, lost_item_ids)``.

        Must run inside the transaction that moves the session to committed
        and before its leases are released, so the fold happens at most once
        per session and no other session can take a lease mid-fold.
        """
        held = set(self.leases.held_items(session_id))
        folded_ids: List[str] = []
        lost_ids: List[str] = []
        for decision in self.store.get_decisions(session_id):
            item_id = decision["item_id"]
            (folded_ids if item_id in held else lost_ids).append(item_id)

        folded = self.store.fold_curation_status(
            folded_ids,
            curator_id=curator_id,
            session_id=session_id,
            now=self._clock(),
        )
        metrics.incr("items_folded", folded)
        logger.info("Folded %d decisions from session %s", folded, session_id)
        if lost_ids:
            logger.warning(
                "Session %s committed without leases on %s; those decisions were not folded",
                session_id,
                lost_ids,
            )
        return folded_ids, lost_ids

    def statistics(self, session_id: Optional[str] = None, since: Optional[datetime] = None) -> Dict[str, Any]:
        raw = self.store.decision_stats(session_id=session_id, since=since)
        return {
            "total_decisions": int(raw["total_decisions"] or 0),
            "has_domain_count": int(raw["has_domain_count"] or 0),
            "fragment_count": int(raw["fragment_count"] or 0),
            "repeat_count": int(raw["repeat_count"] or 0),
            "flagged_count": int(raw["flagged_count"] or 0),
            "avg_confidence": round(float(raw["avg_confidence"] or 0.0), 2),
            "avg_review_time": round(float(raw["avg_review_time"] or 0.0), 1),
        }

    def curation_status(self, item_id: str) -> Optional[Dict[str, Any]]:
        return self.store.get_curation_status(item_id)
