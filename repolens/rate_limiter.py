"""Token-bucket rate limiter shared by the evaluation workers."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from .errors import RateLimiterClosed, RateLimitTimeout

logger = logging.getLogger(__name__)

# Absorbs float drift when capacity is split into equal fractional requests.
TOKEN_EPSILON = 1e-9


def estimate_tokens(text_or_length) -> int:
    """Rough token estimate: four characters per token, at least one."""
    length = text_or_length if isinstance(text_or_length, int) else len(text_or_length)
    return max(1, length // 4)


class TokenBucket:
    """Continuously refilling bucket of estimated model tokens.

    ``capacity`` tokens are available up front and the bucket refills at
    ``refill_per_second`` (by default the full capacity once per minute).
    Requests larger than the capacity are capped so they can always be
    granted eventually.
    """

    def __init__(
        self,
        capacity: float,
        refill_per_second: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = float(capacity)
        self.refill_per_second = float(refill_per_second) if refill_per_second else self.capacity / 60.0
        self._clock = clock
        self._tokens = self.capacity
        self._last_refill = clock()
        self._closed = False
        self._cond = threading.Condition()

    @property
    def available(self) -> float:
        with self._cond:
            self._refill()
            return self._tokens

    @property
    def closed(self) -> bool:
        return self._closed

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_per_second)
            self._last_refill = now

    def acquire(self, tokens: float = 1, timeout: Optional[float] = None) -> float:
        """Block until ``tokens`` (capped at capacity) can be taken.

        Returns:
            The number of tokens actually taken.

        Raises:
            RateLimitTimeout: ``timeout`` seconds passed first.
            RateLimiterClosed: :meth:`close` was called.
        """
        wanted = min(max(float(tokens), 0.0), self.capacity)
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                if self._closed:
                    raise RateLimiterClosed("Rate limiter closed")
                self._refill()
                if self._tokens + TOKEN_EPSILON >= wanted:
                    self._tokens = max(0.0, self._tokens - wanted)
                    return wanted
                wait = (wanted - self._tokens) / self.refill_per_second
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise RateLimitTimeout(f"Timed out waiting for {wanted:.0f} tokens")
                    wait = min(wait, remaining)
                logger.debug("Waiting %.2fs for %.0f tokens", wait, wanted)
                self._cond.wait(wait)

    def close(self) -> None:
        """Wake every waiter; current and future acquires raise :class:`RateLimiterClosed`."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()
