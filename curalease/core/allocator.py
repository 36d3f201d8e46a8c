"""Allocator: picks the best eligible work items for a new session."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from curalease.configs.base import AllocationConfig, EligibilityConfig
from curalease.core.leases import LeaseManager
from curalease.db.sqlite import CurationStore, to_iso
from curalease.exceptions import NotEligibleError
from curalease.models import SessionStatus
from curalease.observability import metrics

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AllocationResult:
    """Outcome of one Allocate call. A short batch is a success, not an error."""
    session: Dict[str, Any]
    items: List[Dict[str, Any]]
    requested: int
    dropped_item_ids: List[str] = field(default_factory=list)

    @property
    def session_id(self) -> str:
        return self.session["session_id"]

    @property
    def item_ids(self) -> List[str]:
        return [item["item_id"] for item in self.items]

    @property
    def is_short(self) -> bool:
        return len(self.items) < self.requested

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session": self.session,
            "items": self.items,
            "requested": self.requested,
            "allocated": len(self.items),
            "dropped_item_ids": list(self.dropped_item_ids),
        }


class Allocator:
    """Greedy best-evidence-first allocation with per-item leasing.

    Candidates are ranked by best evidence confidence, then evidence count,
    then item id. Each candidate is leased independently; items lost to a
    concurrent allocation are dropped without backfill.
    """

    def __init__(
        self,
        store: CurationStore,
        leases: LeaseManager,
        *,
        eligibility: Optional[EligibilityConfig] = None,
        allocation: Optional[AllocationConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.leases = leases
        self.eligibility = eligibility or EligibilityConfig()
        self.allocation = allocation or AllocationConfig()
        self._clock = clock

    def candidates(self, limit: int) -> List[Dict[str, Any]]:
        """Eligible items in rank order, without leasing them."""
        return self.store.scan_eligible_items(
            now=self._clock(),
            min_confidence=self.eligibility.min_confidence,
            min_length=self.eligibility.min_length,
            max_length=self.eligibility.max_length,
            representatives_only=self.eligibility.representatives_only,
            limit=limit,
        )

    def allocate(self, curator_id: str, batch_size: Optional[int] = None) -> AllocationResult:
        curator_id = str(curator_id or "").strip()
        if not curator_id:
            raise ValueError("curator_id is required")
        if batch_size is None:
            batch_size = self.allocation.default_batch_size
        batch_size = int(batch_size)
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        batch_size = min(batch_size, self.allocation.max_batch_size)

        ranked = self.candidates(batch_size)
        if not ranked:
            raise NotEligibleError(
                "No work items available for curation: all suitable items are curated, leased, or lack good evidence"
            )

        session_id = uuid.uuid4().hex
        won: List[Dict[str, Any]] = []
        dropped: List[str] = []
        # A failed session insert rolls back the leases taken for it.
        with self.store.transaction():
            for item in ranked:
                if self.leases.acquire(item["item_id"], curator_id, session_id):
                    won.append(item)
                else:
                    dropped.append(item["item_id"])

            if not won:
                logger.info(
                    "Allocation for %s lost every lease race (%d candidates)", curator_id, len(ranked)
                )
                raise NotEligibleError(
                    "No work items available for curation: every candidate was claimed by a concurrent session"
                )

            now_iso = to_iso(self._clock())
            session = {
                "session_id": session_id,
                "curator_id": curator_id,
                "status": SessionStatus.IN_PROGRESS.value,
                "target_size": batch_size,
                "assigned_item_ids": [item["item_id"] for item in won],
                "cursor_index": 0,
                "reviewed_count": 0,
                "checkpoint_blob": None,
                "notes": None,
                "created_at": now_iso,
                "updated_at": now_iso,
            }
            self.store.insert_session(session)
        metrics.incr("allocations")
        if dropped:
            logger.info(
                "Session %s for %s leased %d/%d items; dropped %s",
                session_id, curator_id, len(won), batch_size, dropped,
            )
        else:
            logger.info("Session %s for %s leased %d items", session_id, curator_id, len(won))

        stored = self.store.get_session(session_id) or session
        return AllocationResult(
            session=stored,
            items=won,
            requested=batch_size,
            dropped_item_ids=dropped,
        )
