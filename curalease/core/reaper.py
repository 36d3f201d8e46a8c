"""Background reaper: expired leases and stale sessions."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from curalease.configs.base import ReaperConfig
from curalease.core.leases import LeaseManager
from curalease.core.sessions import SessionCoordinator
from curalease.db.sqlite import to_iso
from curalease.observability import metrics
from curalease.utils.retry import retry_on_unavailable

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Reaper:
    """Deletes expired leases and abandons idle sessions.

    Runs on demand via ``sweep()`` or periodically on a daemon thread.
    A failing step is logged and retried on the next tick.
    """

    def __init__(
        self,
        leases: LeaseManager,
        sessions: SessionCoordinator,
        config: Optional[ReaperConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.leases = leases
        self.sessions = sessions
        self.config = config or ReaperConfig()
        self._clock = clock
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self.last_sweep: Optional[Dict[str, Any]] = None

    def sweep(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or self._clock()
        result: Dict[str, Any] = {
            "reaped_leases": [],
            "abandoned_sessions": [],
            "swept_at": to_iso(now),
            "errors": [],
        }
        steps = (
            ("reaped_leases", "reap_expired_leases", self.leases.reap_expired),
            ("abandoned_sessions", "abandon_stale_sessions", self.sessions.abandon_stale),
        )
        for key, operation, step in steps:
            start = time.perf_counter()
            try:
                result[key] = self._run_step(step, now)
            except Exception as e:
                logger.exception("Reaper step %s failed", operation)
                result["errors"].append({"step": operation, "error": str(e)})
                metrics.record_operation(operation, (time.perf_counter() - start) * 1000, error=True)
            else:
                metrics.record_operation(operation, (time.perf_counter() - start) * 1000)
        metrics.set_gauge("reaper_last_sweep_errors", len(result["errors"]))
        self.last_sweep = result
        return result

    @staticmethod
    @retry_on_unavailable(max_retries=2, delay=0.1)
    def _run_step(step: Callable[[datetime], List[str]], now: datetime) -> List[str]:
        return step(now)

    # ------------------------------------------------------------------
    # Background thread
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def _worker(self) -> None:
        while not self._stop.is_set():
            self.sweep()
            if self._stop.wait(self.config.interval_seconds):
                break

    def start(self) -> bool:
        """Start the periodic sweep thread. False if already running."""
        if self.running:
            return False
        self._stop.clear()
        self._thread = threading.Thread(target=self._worker, daemon=True, name="curalease-reaper")
        self._thread.start()
        logger.info("Started reaper (interval=%ss)", self.config.interval_seconds)
        return True

    def stop(self, timeout: float = 2.0) -> None:
        if self._thread and self._thread.is_alive():
            self._stop.set()
            self._thread.join(timeout=timeout)
            logger.info("Stopped reaper")
        self._thread = None
