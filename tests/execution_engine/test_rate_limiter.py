"""
Rate Limiter Tests.

Fixed per-minute buckets per (exchange, endpoint).
"""

import asyncio
import threading

import pytest

from core.exceptions import RateLimitError
from execution_engine.config import RateLimitConfig
from execution_engine.rate_limiter import RateLimiter


# ============================================================
# BUCKETS
# ============================================================

class TestRateLimiter:
    """Tests for RateLimiter."""

    def test_sixty_calls_allowed_in_one_minute(self, clock):
        limiter = RateLimiter(clock=clock)

        for i in range(60):
            assert limiter.acquire("binance", "/api/v3/order") == i + 1

        assert limiter.remaining("binance", "/api/v3/order") == 0

    def test_sixty_first_call_raises(self, clock):
        limiter = RateLimiter(clock=clock)
        for _ in range(60):
            limiter.acquire("binance", "/api/v3/order")

        with pytest.raises(RateLimitError) as exc_info:
            limiter.acquire("binance", "/api/v3/order")

        assert exc_info.value.context["limit"] == 60

    def test_next_minute_starts_fresh(self, clock):
        limiter = RateLimiter(clock=clock)
        for _ in range(60):
            limiter.acquire("binance", "/api/v3/order")

        clock.advance(60)

        assert limiter.acquire("binance", "/api/v3/order") == 1
        assert limiter.remaining("binance", "/api/v3/order") == 59

    def test_late_in_the_same_minute_still_limited(self, clock):
        limiter = RateLimiter(clock=clock)
        for _ in range(60):
            limiter.acquire("binance", "/api/v3/order")

        clock.advance(59)

        with pytest.raises(RateLimitError):
            limiter.acquire("binance", "/api/v3/order")

    def test_endpoints_counted_separately(self, clock):
        limiter = RateLimiter(clock=clock)
        for _ in range(60):
            limiter.acquire("binance", "/api/v3/order")

        assert limiter.acquire("binance", "/api/v3/account") == 1
        assert limiter.acquire("kraken", "/api/v3/order") == 1

    def test_custom_limit(self, clock):
        limiter = RateLimiter(RateLimitConfig(max_requests=2), clock=clock)
        limiter.acquire("okx", "balance")
        limiter.acquire("okx", "balance")

        with pytest.raises(RateLimitError):
            limiter.acquire("okx", "balance")

    def test_threads_never_lose_updates(self, clock):
        limiter = RateLimiter(RateLimitConfig(max_requests=1000), clock=clock)

        def worker():
            for _ in range(100):
                limiter.acquire("bybit", "order")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert limiter.remaining("bybit", "order") == 200

    @pytest.mark.asyncio
    async def test_concurrent_tasks_admit_exactly_the_limit(self, clock):
        limiter = RateLimiter(clock=clock)

        async def attempt():
            try:
                limiter.acquire("kucoin", "order")
                return True
            except RateLimitError:
                return False

        results = await asyncio.gather(*(attempt() for _ in range(75)))

        assert results.count(True) == 60
        assert results.count(False) == 15


# ============================================================
# MINUTE BOUNDARY
# ============================================================

class LockAwareClock:
    """Records whether the limiter's lock was held on every read."""

    def __init__(self, clock):
        self.clock = clock
        self.limiter = None
        self.reads_under_lock = []

    def now(self):
        return self.clock.now()

    def timestamp(self):
        self.reads_under_lock.append(self.limiter._lock.locked())
        return self.clock.timestamp()


class TestMinuteBoundary:
    """Tests for bucket rollover."""

    def test_bucket_read_under_lock(self, clock):
        spy = LockAwareClock(clock)
        limiter = RateLimiter(clock=spy)
        spy.limiter = limiter

        limiter.acquire("binance", "order")
        limiter.remaining("binance", "order")

        assert spy.reads_under_lock == [True, True]

    def test_stale_bucket_never_resets_newer_count(self, clock):
        limiter = RateLimiter(RateLimitConfig(max_requests=2), clock=clock)
        clock.advance(60)
        limiter.acquire("binance", "order")
        limiter.acquire("binance", "order")

        # A caller still reading the previous minute
        clock.advance(-1)

        with pytest.raises(RateLimitError):
            limiter.acquire("binance", "order")
