"""
Rate limiting - sliding window request logs keyed by caller identity.

Two backends share one interface:
- SlidingWindowRateLimiter keeps the logs in process memory.
- RedisRateLimiter keeps them in Redis sorted sets, for multi-process deployments.
"""

import logging
import math
import threading
import uuid
from collections import deque
from typing import Deque, Dict, List, Optional

from redis.asyncio.client import Redis

from pitrace.clock import Clock, SystemClock
from pitrace.errors import RateLimitExceededError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Allows at most max_requests per identity in any window_seconds span."""

    def __init__(self, max_requests: int, window_seconds: float, clock: Optional[Clock] = None):
        if max_requests < 1 or window_seconds <= 0:
            raise ValueError("Rate limit needs a positive budget and window")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock or SystemClock()

    async def check(self, identity: str) -> None:
        """Record a request for `identity` or raise RateLimitExceededError."""
        raise NotImplementedError

    def _rejected(self, identity: str, oldest: float, now: float) -> RateLimitExceededError:
        retry_after = max(1, math.ceil(oldest + self.window_seconds - now))
        logger.warning(f"Rate limit exceeded for {identity}", extra={"identity": identity})
        return RateLimitExceededError(retry_after=retry_after)


class _Stripe:
    __slots__ = ("lock", "windows")

    def __init__(self):
        self.lock = threading.Lock()
        self.windows: Dict[str, Deque[float]] = {}


class SlidingWindowRateLimiter(RateLimiter):
    """
    In-memory sliding window log.

    Identities are spread over lock stripes so unrelated callers rarely
    contend. Idle identities are dropped by an amortized sweep that runs on
    whichever call first notices sweep_interval has passed.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Optional[Clock] = None,
        stripes: int = 16,
        sweep_interval: float = 60.0,
    ):
        super().__init__(max_requests, window_seconds, clock)
        self._stripes: List[_Stripe] = [_Stripe() for _ in range(max(1, stripes))]
        self.sweep_interval = sweep_interval
        self._sweep_lock = threading.Lock()
        self._next_sweep = self.clock.timestamp() + sweep_interval

    def _stripe_for(self, identity: str) -> _Stripe:
        return self._stripes[hash(identity) % len(self._stripes)]

    def hit(self, identity: str) -> None:
        """Synchronous core of check(); safe to call from any thread."""
        now = self.clock.timestamp()
        cutoff = now - self.window_seconds
        stripe = self._stripe_for(identity)

        with stripe.lock:
            window = stripe.windows.get(identity)
            if window is None:
                window = stripe.windows[identity] = deque()
            while window and window[0] <= cutoff:
                window.popleft()
            if len(window) >= self.max_requests:
                raise self._rejected(identity, window[0], now)
            window.append(now)

        self._maybe_sweep(now)

    async def check(self, identity: str) -> None:
        self.hit(identity)

    def _maybe_sweep(self, now: float) -> None:
        if now < self._next_sweep:
            return
        # One sweeper at a time; everyone else carries on
        if not self._sweep_lock.acquire(blocking=False):
            return
        try:
            if now >= self._next_sweep:
                self._next_sweep = now + self.sweep_interval
                self.sweep(now)
        finally:
            self._sweep_lock.release()

    def sweep(self, now: Optional[float] = None) -> int:
        """Forget identities with no request inside the window. Returns how many."""
        now = self.clock.timestamp() if now is None else now
        cutoff = now - self.window_seconds
        removed = 0
        for stripe in self._stripes:
            with stripe.lock:
                idle = [key for key, window in stripe.windows.items() if not window or window[-1] <= cutoff]
                for key in idle:
                    del stripe.windows[key]
                removed += len(idle)
        if removed:
            logger.debug(f"Rate limiter dropped {removed} idle identities")
        return removed

    def tracked_identities(self) -> int:
        total = 0
        for stripe in self._stripes:
            with stripe.lock:
                total += len(stripe.windows)
        return total


# Trim, count, conditionally add, all in one atomic step on the server.
_SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
if redis.call('ZCARD', key) >= limit then
  local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
  return {0, oldest[2]}
end
redis.call('ZADD', key, now, ARGV[4])
redis.call('PEXPIRE', key, math.ceil(window * 1000))
return {1, ARGV[1]}
"""


class RedisRateLimiter(RateLimiter):
    """
    Sliding window log in a Redis sorted set per identity.
    Keys expire after one idle window, which reclaims memory server side.
    """

    def __init__(
        self,
        redis: Redis,
        max_requests: int,
        window_seconds: float,
        clock: Optional[Clock] = None,
        prefix: str = "pitrace:ratelimit",
    ):
        super().__init__(max_requests, window_seconds, clock)
        self.prefix = prefix
        self._script = redis.register_script(_SLIDING_WINDOW_SCRIPT)

    async def check(self, identity: str) -> None:
        now = self.clock.timestamp()
        allowed, oldest = await self._script(
            keys=[f"{self.prefix}:{identity}"],
            args=[now, self.window_seconds, self.max_requests, f"{now}:{uuid.uuid4().hex}"],
        )
        if not int(allowed):
            raise self._rejected(identity, float(oldest), now)
