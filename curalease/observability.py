"""curalease observability: structured logging and in-process metrics.

Usage:
    from curalease.observability import metrics, logger

    logger.info("Session allocated", session_id="s1", curator_id="alice")
    with metrics.measure("allocate"):
        ...
    print(metrics.get_summary())
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================================
# Structured Logger
# ============================================================================

class StructuredLogger:
    """JSON-structured logger for curation events."""

    def __init__(self, name: str = "curalease.events", level: int = logging.INFO):
        self._logger = logging.getLogger(name)
        self._logger.setLevel(level)
        self._context: Dict[str, Any] = {}

        if not self._logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(StructuredFormatter())
            self._logger.addHandler(handler)

    def with_context(self, **kwargs) -> "StructuredLogger":
        """Create a new logger with additional bound fields."""
        new_logger = StructuredLogger.__new__(StructuredLogger)
        new_logger._logger = self._logger
        new_logger._context = {**self._context, **kwargs}
        return new_logger

    def _log(self, level: int, message: str, **kwargs):
        extra = {
            "structured_data": {
                **self._context,
                **kwargs,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        }
        self._logger.log(level, message, extra=extra)

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, **kwargs)


class StructuredFormatter(logging.Formatter):
    """Format log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        if hasattr(record, "structured_data"):
            log_data.update(record.structured_data)
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


# ============================================================================
# Metrics Collector
# ============================================================================

@dataclass
class OperationMetrics:
    """Latency and error counts for one operation type."""
    count: int = 0
    total_latency_ms: float = 0.0
    min_latency_ms: float = float("inf")
    max_latency_ms: float = 0.0
    errors: int = 0
    last_operation: Optional[str] = None

    def record(self, latency_ms: float, error: bool = False):
        self.count += 1
        self.total_latency_ms += latency_ms
        self.min_latency_ms = min(self.min_latency_ms, latency_ms)
        self.max_latency_ms = max(self.max_latency_ms, latency_ms)
        if error:
            self.errors += 1
        self.last_operation = datetime.now(timezone.utc).isoformat()

    @property
    def avg_latency_ms(self) -> float:
        return self.total_latency_ms / self.count if self.count > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "avg_latency_ms": round(self.avg_latency_ms, 2),
            "min_latency_ms": round(self.min_latency_ms, 2) if self.count > 0 else 0,
            "max_latency_ms": round(self.max_latency_ms, 2),
            "errors": self.errors,
            "error_rate": round(self.errors / self.count, 4) if self.count > 0 else 0,
            "last_operation": self.last_operation,
        }


@dataclass
class CurationCounters:
    """Lifetime counters for leasing and session events."""
    allocations: int = 0
    leases_acquired: int = 0
    lease_conflicts: int = 0
    lease_renewals: int = 0
    leases_released: int = 0
    leases_reaped: int = 0
    sessions_abandoned: int = 0
    sessions_resumed: int = 0
    sessions_committed: int = 0
    sessions_discarded: int = 0
    sessions_completed: int = 0
    decisions_recorded: int = 0
    items_folded: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


class MetricsCollector:
    """Collects and exposes curation metrics."""

    def __init__(self):
        self._lock = threading.Lock()
        self._operations: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._counters = CurationCounters()
        self._start_time = datetime.now(timezone.utc)
        self._gauges: Dict[str, float] = {}

    def record_operation(self, operation: str, latency_ms: float, error: bool = False):
        with self._lock:
            self._operations[operation].record(latency_ms, error)

    def incr(self, counter: str, amount: int = 1):
        """Bump a named counter in CurationCounters."""
        with self._lock:
            current = getattr(self._counters, counter)
            setattr(self._counters, counter, current + max(0, int(amount)))

    def set_gauge(self, name: str, value: float):
        with self._lock:
            self._gauges[name] = value

    def reset(self):
        with self._lock:
            self._operations.clear()
            self._counters = CurationCounters()
            self._gauges.clear()

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()
            return {
                "uptime_seconds": round(uptime, 2),
                "operations": {op: m.to_dict() for op, m in self._operations.items()},
                "curation": self._counters.to_dict(),
                "gauges": dict(self._gauges),
            }

    def get_prometheus_metrics(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []
        summary = self.get_summary()

        for op, data in summary["operations"].items():
            lines.append(f'curalease_operation_count{{operation="{op}"}} {data["count"]}')
            lines.append(f'curalease_operation_latency_avg_ms{{operation="{op}"}} {data["avg_latency_ms"]}')
            lines.append(f'curalease_operation_errors{{operation="{op}"}} {data["errors"]}')

        for name, value in summary["curation"].items():
            lines.append(f"curalease_{name}_total {value}")

        for name, value in summary["gauges"].items():
            safe_name = name.replace(".", "_").replace("-", "_")
            lines.append(f"curalease_{safe_name} {value}")

        lines.append(f'curalease_uptime_seconds {summary["uptime_seconds"]}')
        return "\n".join(lines)

    @contextmanager
    def measure(self, operation: str):
        """Context manager to measure operation latency.

        Usage:
            with metrics.measure("checkpoint"):
                coordinator.checkpoint(...)
        """
        start = time.perf_counter()
        error = False
        try:
            yield
        except Exception:
            error = True
            raise
        finally:
            latency_ms = (time.perf_counter() - start) * 1000
            self.record_operation(operation, latency_ms, error=error)


# ============================================================================
# Global Instances
# ============================================================================

logger = StructuredLogger("curalease.events")

metrics = MetricsCollector()


# ============================================================================
# API Endpoints (for FastAPI integration)
# ============================================================================

def add_metrics_routes(app):
    """Add /metrics and /metrics/json endpoints to a FastAPI app."""
    from fastapi import Response

    @app.get("/metrics")
    async def prometheus_metrics():
        """Prometheus-compatible metrics endpoint."""
        return Response(
            content=metrics.get_prometheus_metrics(),
            media_type="text/plain",
        )

    @app.get("/metrics/json")
    async def json_metrics():
        return metrics.get_summary()
