"""
Process-wide request throttling.

The RateLimiter keeps a rolling log of permitted calls and enforces at most
``limit`` acquisitions in any window of ``window`` seconds. When the
brokerage rejects a call for exceeding its quota, the limiter enters a
backoff state that delays every subsequent ``acquire()`` by an exponentially
increasing, jittered interval until a call succeeds again.

Rate limiting never drops a request; it only delays it.
"""

import logging
import random
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional

from ..config import RateLimitConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Permit:
    """
    Permission to issue one request.

    Attributes:
        granted_at: Limiter clock reading when the permit was granted
        waited: Seconds the caller was delayed before the permit was granted
    """

    granted_at: float
    waited: float


@dataclass(frozen=True)
class RateBudget:
    """
    Snapshot of the limiter state.

    Attributes:
        window_start: Clock reading of the oldest call still in the window
        request_count: Calls counted in the current window
        limit: Maximum calls per window
        backoff_until: Clock reading before which no call is permitted
    """

    window_start: float
    request_count: int
    limit: int
    backoff_until: float


class RateLimiter:
    """
    Rolling-window rate limiter with exponential backoff.

    One instance is shared by every caller of a client. Only the budget
    bookkeeping is done under the lock; waiting happens outside it.

    Example:
        limiter = RateLimiter(RateLimitConfig(limit=10, window=1.0))
        limiter.acquire()
        ...
        if response.status_code == 429:
            limiter.record_rate_limited()
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize rate limiter.

        Args:
            config: Limit, window and backoff parameters
            clock: Monotonic clock (injectable for tests)
            sleep: Sleep function (injectable for tests)
            rng: Random source for backoff jitter
        """
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._calls: Deque[float] = deque()
        self._backoff_until = 0.0
        self._backoff_attempts = 0

    @property
    def limit(self) -> int:
        return self.config.limit

    @property
    def window(self) -> float:
        return self.config.window

    def _purge(self, now: float) -> None:
        """Drop calls that fell out of the rolling window."""
        while self._calls and self._calls[0] + self.config.window <= now:
            self._calls.popleft()

    def _wait_time(self, now: float) -> float:
        """Seconds until a call may be permitted (0 if it may go now)."""
        wait = self._backoff_until - now
        if len(self._calls) >= self.config.limit:
            wait = max(wait, self._calls[0] + self.config.window - now)
        return max(0.0, wait)

    def acquire(self) -> Permit:
        """
        Block until a request may be issued.

        Only the calling thread waits; the lock is released while sleeping.

        Returns:
            Permit describing when the call was permitted
        """
        start = self._clock()

        while True:
            with self._lock:
                now = self._clock()
                self._purge(now)
                wait = self._wait_time(now)
                if wait <= 0:
                    self._calls.append(now)
                    return Permit(granted_at=now, waited=now - start)

            logger.debug(f"Rate limiter delaying request by {wait:.3f}s")
            self._sleep(wait)

    def record_rate_limited(self, retry_after: Optional[float] = None) -> float:
        """
        Enter (or extend) the backoff state after a rate-limit rejection.

        Args:
            retry_after: Server-suggested delay in seconds, if any

        Returns:
            Backoff delay applied, always greater than zero
        """
        cfg = self.config

        with self._lock:
            self._backoff_attempts += 1
            exponent = min(self._backoff_attempts - 1, 32)
            delay = min(cfg.backoff_cap, cfg.backoff_base * 2 ** exponent)
            delay *= self._rng.uniform(1 - cfg.jitter, 1 + cfg.jitter)
            if retry_after is not None and retry_after > delay:
                delay = retry_after

            now = self._clock()
            self._backoff_until = max(self._backoff_until, now + delay)
            attempts = self._backoff_attempts

        logger.warning(
            f"Rate limit exceeded; backing off {delay:.2f}s (consecutive rejections: {attempts})"
        )
        return delay

    def record_success(self) -> None:
        """Reset the backoff exponent after a successful call."""
        with self._lock:
            if self._backoff_attempts:
                logger.debug("Rate limit backoff reset")
            self._backoff_attempts = 0

    def budget(self) -> RateBudget:
        """Snapshot of the current window and backoff state."""
        with self._lock:
            now = self._clock()
            self._purge(now)
            return RateBudget(
                window_start=self._calls[0] if self._calls else now,
                request_count=len(self._calls),
                limit=self.config.limit,
                backoff_until=self._backoff_until,
            )
