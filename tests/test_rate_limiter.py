"""Tests for the token-bucket rate limiter."""

import threading
import time

import pytest

from repolens.errors import RateLimiterClosed, RateLimitTimeout
from repolens.rate_limiter import TokenBucket, estimate_tokens


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestEstimateTokens:
    def test_four_chars_per_token(self):
        assert estimate_tokens("x" * 400) == 100
        assert estimate_tokens(4000) == 1000

    def test_minimum_is_one(self):
        assert estimate_tokens("") == 1
        assert estimate_tokens(3) == 1


class TestTokenBucket:
    """Acquire, refill, and shutdown behaviour."""

    def test_full_capacity_available_up_front(self):
        bucket = TokenBucket(1000)
        start = time.monotonic()

        for _ in range(10):
            bucket.acquire(100, timeout=1)

        assert time.monotonic() - start < 0.5
        assert bucket.available < 100

    @pytest.mark.parametrize("capacity,parts", [(10, 3), (1, 7), (60_000, 9), (100, 10)])
    def test_equal_fractions_of_capacity_are_granted_at_once(self, capacity, parts):
        bucket = TokenBucket(capacity, clock=FakeClock())

        for _ in range(parts):
            assert bucket.acquire(capacity / parts, timeout=0.5) == pytest.approx(capacity / parts)

        assert bucket.available >= 0.0

    def test_oversized_request_is_capped(self):
        bucket = TokenBucket(50)

        assert bucket.acquire(10_000, timeout=1) == 50

    def test_refill_follows_clock(self):
        clock = FakeClock()
        bucket = TokenBucket(60, refill_per_second=1.0, clock=clock)
        bucket.acquire(60)

        assert bucket.available == 0
        clock.now = 10.0
        assert bucket.available == pytest.approx(10.0)
        clock.now = 500.0
        assert bucket.available == pytest.approx(60.0)

    def test_default_refill_is_capacity_per_minute(self):
        assert TokenBucket(120).refill_per_second == pytest.approx(2.0)

    def test_timeout(self):
        bucket = TokenBucket(10, refill_per_second=0.001)
        bucket.acquire(10)

        with pytest.raises(RateLimitTimeout):
            bucket.acquire(5, timeout=0.05)

    def test_waiter_is_granted_after_refill(self):
        bucket = TokenBucket(10, refill_per_second=200.0)
        bucket.acquire(10)

        assert bucket.acquire(5, timeout=2) == 5

    def test_close_wakes_waiters(self):
        bucket = TokenBucket(10, refill_per_second=0.001)
        bucket.acquire(10)
        errors = []

        def _wait():
            try:
                bucket.acquire(10)
            except RateLimiterClosed as exc:
                errors.append(exc)

        thread = threading.Thread(target=_wait)
        thread.start()
        time.sleep(0.05)
        bucket.close()
        thread.join(timeout=2)

        assert not thread.is_alive()
        assert len(errors) == 1
        assert bucket.closed

    def test_acquire_after_close_raises(self):
        bucket = TokenBucket(10)
        bucket.close()

        with pytest.raises(RateLimiterClosed):
            bucket.acquire(1)

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            TokenBucket(0)

    def test_concurrent_acquires_never_overdraw(self):
        bucket = TokenBucket(100, refill_per_second=0.001)
        granted = []
        lock = threading.Lock()

        def _take():
            try:
                bucket.acquire(10, timeout=0.2)
            except RateLimitTimeout:
                return
            with lock:
                granted.append(10)

        threads = [threading.Thread(target=_take) for _ in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(granted) == 100
