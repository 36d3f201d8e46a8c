"""Lease manager: exclusive, time-bounded claims on work items."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from curalease.configs.base import LeaseConfig
from curalease.db.sqlite import CurationStore, to_iso
from curalease.observability import metrics

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeaseManager:
    """Owns the exclusivity contract over work items.

    At most one live lease exists per item. Acquisition is one atomic store
    statement; expiry is the only cancellation signal for crashed clients.
    """

    def __init__(
        self,
        store: CurationStore,
        config: Optional[LeaseConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.config = config or LeaseConfig()
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self.config.ttl_seconds)

    def acquire(self, item_id: str, curator_id: str, session_id: str) -> bool:
        """Claim ``item_id`` for ``session_id``. False if a live lease exists."""
        now = self._clock()
        won = self.store.insert_lease_if_absent(
            item_id=item_id,
            curator_id=curator_id,
            session_id=session_id,
            now=now,
            expires_at=now + self.ttl,
        )
        if won:
            metrics.incr("leases_acquired")
        else:
            metrics.incr("lease_conflicts")
            logger.debug("Lease conflict on %s for session %s", item_id, session_id)
        return won

    def renew(self, session_id: str, ttl: Optional[timedelta] = None) -> int:
        """Extend every lease of the session. Returns the number renewed.

        Expiry only moves forward; 0 means the session holds no leases
        (released or reaped).
        """
        expires_at = self._clock() + (ttl if ttl is not None else self.ttl)
        renewed = self.store.extend_leases(session_id, expires_at)
        if renewed:
            metrics.incr("lease_renewals", renewed)
        else:
            logger.info("Renew found no leases for session %s", session_id)
        return renewed

    def release(self, session_id: str) -> int:
        """Drop every lease of the session. Idempotent."""
        released = self.store.delete_leases_for_session(session_id)
        metrics.incr("leases_released", released)
        return released

    def reap_expired(self, now: Optional[datetime] = None) -> List[str]:
        """Delete leases whose expiry has passed. Background sweep only."""
        now = now or self._clock()
        reaped = self.store.delete_expired_leases(now)
        if reaped:
            metrics.incr("leases_reaped", len(reaped))
            logger.info(
                "Reaped %d expired leases (sessions: %s)",
                len(reaped),
                sorted({lease["session_id"] for lease in reaped}),
            )
        return [lease["item_id"] for lease in reaped]

    def leases_for_session(self, session_id: str) -> List[Dict[str, Any]]:
        return self.store.list_leases(session_id=session_id)

    def holder(self, item_id: str) -> Optional[Dict[str, Any]]:
        """Current live lease on the item, if any."""
        lease = self.store.get_lease(item_id)
        if lease is None:
            return None
        if lease["expires_at"] < to_iso(self._clock()):
            return None
        return lease

    def owns(self, session_id: str, item_id: str) -> bool:
        """True while the session holds a live lease on the item."""
        lease = self.holder(item_id)
        return bool(lease and lease["session_id"] == session_id)

    def held_items(self, session_id: str) -> List[str]:
        """Item ids the session currently holds live leases on."""
        now_iso = to_iso(self._clock())
        return [
            lease["item_id"]
            for lease in self.store.list_leases(session_id=session_id)
            if lease["expires_at"] >= now_iso
        ]

    def live_count(self, session_id: Optional[str] = None) -> int:
        return self.store.count_live_leases(self._clock(), session_id=session_id)
