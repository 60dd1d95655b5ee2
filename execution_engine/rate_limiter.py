"""
Execution Engine - Rate Limiter.

============================================================
PURPOSE
============================================================
Per-(exchange, endpoint, minute-bucket) request counter.

- The 61st call in a bucket raises RateLimitError at once
- No queueing, no retry; the caller decides
- A new bucket key starts a fresh count

Each adapter instance owns its limiter. Increments happen
under a lock so concurrent tasks and threads never lose
updates.

============================================================
"""

import logging
import threading
from typing import Dict, Optional, Tuple

from core.clock import ClockProtocol, get_clock
from core.exceptions import RateLimitError

from .config import RateLimitConfig


logger = logging.getLogger(__name__)


BucketKey = Tuple[str, str, int]


class RateLimiter:
    """Fixed-window request counter."""

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._config = config or RateLimitConfig()
        self._clock = clock or get_clock()
        self._counts: Dict[BucketKey, int] = {}
        self._current_bucket: Dict[Tuple[str, str], int] = {}
        self._lock = threading.Lock()

    @property
    def max_requests(self) -> int:
        return self._config.max_requests

    def _bucket(self) -> int:
        return int(self._clock.timestamp() // self._config.window_seconds)

    def acquire(self, exchange_id: str, endpoint: str) -> int:
        """
        Count one request.

        Args:
            exchange_id: Exchange identifier
            endpoint: Endpoint path or operation name

        Returns:
            Number of requests used in the current bucket

        Raises:
            RateLimitError: If the bucket is already full
        """
        with self._lock:
            bucket = self._bucket()
            key = (exchange_id, endpoint, bucket)

            # Buckets only move forward
            previous = self._current_bucket.get((exchange_id, endpoint))
            if previous is not None and previous > bucket:
                bucket = previous
                key = (exchange_id, endpoint, bucket)
            elif previous is not None and previous < bucket:
                self._counts.pop((exchange_id, endpoint, previous), None)
            self._current_bucket[(exchange_id, endpoint)] = bucket

            used = self._counts.get(key, 0)
            if used >= self._config.max_requests:
                raise RateLimitError(
                    f"Rate limit exceeded for {exchange_id} {endpoint}: "
                    f"{self._config.max_requests} requests per {self._config.window_seconds}s",
                    exchange_id=exchange_id,
                    endpoint=endpoint,
                    limit=self._config.max_requests,
                )
            self._counts[key] = used + 1

        if used + 1 == self._config.max_requests:
            logger.warning(f"Rate limit reached for {exchange_id} {endpoint} in bucket {bucket}")

        return used + 1

    def remaining(self, exchange_id: str, endpoint: str) -> int:
        """Unused quota in the current bucket."""
        with self._lock:
            key = (exchange_id, endpoint, self._bucket())
            return max(0, self._config.max_requests - self._counts.get(key, 0))
