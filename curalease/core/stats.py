"""Aggregate curation progress for dashboards and reports."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from curalease.configs.base import EligibilityConfig, StatsConfig
from curalease.core.leases import LeaseManager
from curalease.core.ledger import DecisionLedger
from curalease.db.sqlite import CurationStore, to_iso


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CurationStats:
    def __init__(
        self,
        store: CurationStore,
        leases: LeaseManager,
        ledger: DecisionLedger,
        *,
        eligibility: Optional[EligibilityConfig] = None,
        config: Optional[StatsConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.leases = leases
        self.ledger = ledger
        self.eligibility = eligibility or EligibilityConfig()
        self.config = config or StatsConfig()
        self._clock = clock

    def summary(self, window_days: Optional[int] = None) -> Dict[str, Any]:
        """Session and decision totals over a window plus overall progress."""
        window_days = int(window_days if window_days is not None else self.config.window_days)
        if window_days < 1:
            raise ValueError("window_days must be at least 1")
        now = self._clock()
        since = now - timedelta(days=window_days)

        sessions = self.store.session_counts(since=since)
        decisions = self.ledger.statistics(since=since)
        filters = {
            "min_confidence": self.eligibility.min_confidence,
            "min_length": self.eligibility.min_length,
            "max_length": self.eligibility.max_length,
            "representatives_only": self.eligibility.representatives_only,
        }
        curated = self.store.count_curated(**filters)
        curable = self.store.count_curable_items(**filters)
        completion = round(curated / curable * 100, 1) if curable else 0.0

        recent = self.store.list_sessions(limit=self.config.recent_activity_limit)
        recent_activity = [
            {
                "session_id": row["session_id"],
                "curator_id": row["curator_id"],
                "status": row["status"],
                "created_at": row["created_at"],
                "ended_at": row.get("ended_at"),
                "total_decisions": row.get("total_decisions", 0),
            }
            for row in recent
        ]

        return {
            "window_days": window_days,
            "generated_at": to_iso(now),
            "sessions": sessions,
            "decisions": decisions,
            "items_curated": curated,
            "total_curable_items": curable,
            "remaining_items": max(0, curable - curated),
            "completion_percentage": completion,
            "live_leases": self.leases.live_count(),
            "recent_activity": recent_activity,
        }
