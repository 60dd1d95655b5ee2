"""
Exchange Adapter - Metrics and Observability.

============================================================
PURPOSE
============================================================
Metrics collection for exchange adapter performance.

METRICS TRACKED:
- Request latency (by endpoint)
- Request success/failure counts
- Error counts by normalised error type
- Orders submitted / rejected

============================================================
"""

import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


@dataclass
class LatencyStats:
    """Latency statistics."""

    count: int = 0
    total_ms: float = 0.0
    min_ms: float = float("inf")
    max_ms: float = 0.0

    @property
    def avg_ms(self) -> float:
        """Average latency in ms."""
        return self.total_ms / self.count if self.count > 0 else 0.0

    def record(self, latency_ms: float) -> None:
        self.count += 1
        self.total_ms += latency_ms
        self.min_ms = min(self.min_ms, latency_ms)
        self.max_ms = max(self.max_ms, latency_ms)


class AdapterMetrics:
    """
    Metrics collector for one exchange adapter.

    Thread-safe metrics collection and reporting.
    """

    def __init__(self, exchange_id: str):
        self._exchange_id = exchange_id
        self._start_time = datetime.now(timezone.utc)
        self._lock = threading.Lock()

        self._latency: Dict[str, LatencyStats] = defaultdict(LatencyStats)
        self._successes = 0
        self._failures = 0
        self._errors: Dict[str, int] = defaultdict(int)
        self._orders_submitted = 0
        self._orders_rejected = 0

    def record_request(
        self,
        endpoint: str,
        latency_ms: float,
        success: bool,
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record a request.

        Args:
            endpoint: API endpoint path
            latency_ms: Request latency in ms
            success: Whether request succeeded
            error_type: Exception class name if failed
        """
        with self._lock:
            self._latency[endpoint].record(latency_ms)
            if success:
                self._successes += 1
            else:
                self._failures += 1
                if error_type:
                    self._errors[error_type] += 1

    def record_order(self, accepted: bool) -> None:
        with self._lock:
            if accepted:
                self._orders_submitted += 1
            else:
                self._orders_rejected += 1

    @property
    def error_rate(self) -> float:
        with self._lock:
            total = self._successes + self._failures
            return self._failures / total if total else 0.0

    def get_summary(self) -> Dict[str, Any]:
        """Snapshot of all metrics."""
        with self._lock:
            return {
                "exchange_id": self._exchange_id,
                "since": self._start_time.isoformat(),
                "requests": {"success": self._successes, "failure": self._failures},
                "errors": dict(self._errors),
                "orders": {
                    "submitted": self._orders_submitted,
                    "rejected": self._orders_rejected,
                },
                "latency": {
                    endpoint: {
                        "count": stats.count,
                        "avg_ms": round(stats.avg_ms, 2),
                        "max_ms": round(stats.max_ms, 2),
                    }
                    for endpoint, stats in self._latency.items()
                },
            }
