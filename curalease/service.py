"""CurationService: the single entry point wiring store, leases, sessions and stats."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from curalease.configs.base import CurationConfig
from curalease.core.allocator import Allocator
from curalease.core.leases import LeaseManager
from curalease.core.ledger import DecisionLedger
from curalease.core.reaper import Reaper
from curalease.core.sessions import SessionCoordinator
from curalease.core.stats import CurationStats
from curalease.db.sqlite import CurationStore
from curalease.models import DecisionPayload, FinalizeAction
from curalease.observability import metrics

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CurationService:
    """curalease service - leased work allocation for concurrent human curators."""

    def __init__(
        self,
        config: Optional[CurationConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
        store: Optional[CurationStore] = None,
    ):
        self.config = config or CurationConfig()
        self._clock = clock
        self.store = store or CurationStore(
            self.config.store.db_path,
            busy_timeout_ms=self.config.store.busy_timeout_ms,
        )
        self.leases = LeaseManager(self.store, self.config.lease, clock=clock)
        self.ledger = DecisionLedger(self.store, self.leases, clock=clock)
        self.allocator = Allocator(
            self.store,
            self.leases,
            eligibility=self.config.eligibility,
            allocation=self.config.allocation,
            clock=clock,
        )
        self.sessions = SessionCoordinator(
            self.store,
            self.leases,
            self.ledger,
            reaper_config=self.config.reaper,
            clock=clock,
        )
        self.stats = CurationStats(
            self.store,
            self.leases,
            self.ledger,
            eligibility=self.config.eligibility,
            config=self.config.stats,
            clock=clock,
        )
        self.reaper = Reaper(self.leases, self.sessions, self.config.reaper, clock=clock)

    @classmethod
    def from_config(cls, config_dict: Dict[str, Any]) -> "CurationService":
        return cls(CurationConfig(**config_dict))

    # Work items

    def register_items(self, items: Iterable[Mapping[str, Any]]) -> int:
        with metrics.measure("register_items"):
            count = self.store.upsert_work_items(dict(item) for item in items)
        logger.info("Registered %d work items", count)
        return count

    def get_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        return self.store.get_work_item(item_id)

    # Sessions

    def allocate(self, curator_id: str, batch_size: Optional[int] = None) -> Dict[str, Any]:
        with metrics.measure("allocate"):
            return self.allocator.allocate(curator_id, batch_size).to_dict()

    def checkpoint(
        self,
        session_id: str,
        cursor_index: int,
        decisions: Optional[Sequence[Any]] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        with metrics.measure("checkpoint"):
            return self.sessions.checkpoint(session_id, cursor_index, decisions, notes)

    def resume(self, session_id: str) -> Dict[str, Any]:
        with metrics.measure("resume"):
            return self.sessions.resume(session_id)

    def finalize(
        self,
        session_id: str,
        action: Union[str, FinalizeAction],
        final_notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        with metrics.measure("finalize"):
            return self.sessions.finalize(session_id, action, final_notes)

    def record_decision(
        self,
        session_id: str,
        item_id: str,
        payload: Union[DecisionPayload, Mapping[str, Any]],
    ) -> Dict[str, Any]:
        with metrics.measure("record_decision"):
            return self.ledger.record_decision(session_id, item_id, payload)

    def get_session_summary(self, session_id: str) -> Dict[str, Any]:
        return self.sessions.get_session_summary(session_id)

    def list_sessions(
        self,
        curator_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 20,
    ) -> Dict[str, Any]:
        return self.sessions.list_sessions(curator_id=curator_id, status=status, limit=limit)

    def curation_status(self, item_id: str) -> Optional[Dict[str, Any]]:
        return self.ledger.curation_status(item_id)

    # Maintenance

    def statistics(self, window_days: Optional[int] = None) -> Dict[str, Any]:
        with metrics.measure("statistics"):
            return self.stats.summary(window_days)

    def reap(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        with metrics.measure("reap"):
            return self.reaper.sweep(now)

    def leases_for_session(self, session_id: str) -> List[Dict[str, Any]]:
        return self.leases.leases_for_session(session_id)

    def close(self) -> None:
        self.reaper.stop()
        self.store.close()

    def __enter__(self) -> "CurationService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
