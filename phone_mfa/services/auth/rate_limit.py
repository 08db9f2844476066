"""
Fixed-window rate limiting for verification code dispatch.

Each subject (a user id) gets MAX_ATTEMPTS_PER_WINDOW dispatches per window.
The window starts with the first counted attempt and is not sliding: the
count resets only once a request arrives after window_reset_at.
"""
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

from ...models.verification import RateLimitDecision, RateLimitRecord

logger = logging.getLogger(__name__)

MAX_ATTEMPTS_PER_WINDOW = 5
WINDOW_SECONDS = 3600


class RateLimiter(ABC):
    """Per-subject attempt counter shared by all verification flows."""

    def __init__(self, max_attempts: int = MAX_ATTEMPTS_PER_WINDOW, window_seconds: int = WINDOW_SECONDS):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds

    @abstractmethod
    async def check(self, subject_id: str) -> RateLimitDecision:
        """Report whether a new attempt would be allowed, without counting it."""

    @abstractmethod
    async def increment(self, subject_id: str) -> None:
        """Count one attempt, opening a fresh window if none is active."""

    @abstractmethod
    async def acquire(self, subject_id: str) -> RateLimitDecision:
        """check() and increment() as one atomic step. Counts only when allowed."""


class InMemoryRateLimiter(RateLimiter):
    """
    Process-local limiter for tests and single-instance dev servers.

    A threading lock guards every read-modify-write; it is never held across
    an await.
    """

    def __init__(
        self,
        max_attempts: int = MAX_ATTEMPTS_PER_WINDOW,
        window_seconds: int = WINDOW_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ):
        super().__init__(max_attempts, window_seconds)
        self._clock = clock or time.time
        self._records: Dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()
        self._cleanup_interval = 3600
        self._last_cleanup = self._clock()

    def _current(self, subject_id: str, now: float) -> Optional[RateLimitRecord]:
        record = self._records.get(subject_id)
        if record is not None and now > record.window_reset_at:
            del self._records[subject_id]
            return None
        return record

    def _decide(self, subject_id: str, now: float) -> RateLimitDecision:
        record = self._current(subject_id, now)
        if record is not None and record.attempt_count >= self.max_attempts:
            retry_after = max(math.ceil(record.window_reset_at - now), 1)
            return RateLimitDecision(allowed=False, retry_after=retry_after)
        return RateLimitDecision(allowed=True)

    def _count(self, subject_id: str, now: float) -> None:
        record = self._current(subject_id, now)
        if record is None:
            self._records[subject_id] = RateLimitRecord(
                subject_id=subject_id,
                attempt_count=1,
                window_reset_at=now + self.window_seconds,
            )
        else:
            record.attempt_count += 1

    async def check(self, subject_id: str) -> RateLimitDecision:
        with self._lock:
            self._maybe_cleanup()
            return self._decide(subject_id, self._clock())

    async def increment(self, subject_id: str) -> None:
        with self._lock:
            self._count(subject_id, self._clock())

    async def acquire(self, subject_id: str) -> RateLimitDecision:
        with self._lock:
            now = self._clock()
            decision = self._decide(subject_id, now)
            if decision.allowed:
                self._count(subject_id, now)
            return decision

    def get_record(self, subject_id: str) -> Optional[RateLimitRecord]:
        with self._lock:
            return self._current(subject_id, self._clock())

    def cleanup(self) -> int:
        """Drop records whose window has elapsed. Returns how many were removed."""
        with self._lock:
            return self._cleanup(self._clock())

    def _maybe_cleanup(self) -> None:
        now = self._clock()
        if now - self._last_cleanup >= self._cleanup_interval:
            self._cleanup(now)

    def _cleanup(self, now: float) -> int:
        expired = [key for key, record in self._records.items() if now > record.window_reset_at]
        for key in expired:
            del self._records[key]
        self._last_cleanup = now
        if expired:
            logger.debug(f"[RateLimit] Cleaned up {len(expired)} expired record(s)")
        return len(expired)


_ACQUIRE_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current >= tonumber(ARGV[1]) then
  return {0, redis.call('PTTL', KEYS[1])}
end
current = redis.call('INCR', KEYS[1])
if current == 1 then
  redis.call('PEXPIRE', KEYS[1], ARGV[2])
end
return {1, redis.call('PTTL', KEYS[1])}
"""

_INCREMENT_SCRIPT = """
local current = redis.call('INCR', KEYS[1])
if current == 1 then
  redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
return current
"""


class RedisRateLimiter(RateLimiter):
    """
    Shared limiter for multi-instance deployments.

    The counter lives in one key per subject whose TTL is the window; Redis
    expiry performs the reset. acquire() runs as a single Lua script so
    concurrent requests can not both observe a count below the limit.
    """

    def __init__(
        self,
        redis_client,
        max_attempts: int = MAX_ATTEMPTS_PER_WINDOW,
        window_seconds: int = WINDOW_SECONDS,
        prefix: str = "phone_mfa:rate_limit",
    ):
        super().__init__(max_attempts, window_seconds)
        self._redis = redis_client
        self.prefix = prefix
        self._acquire = redis_client.register_script(_ACQUIRE_SCRIPT)
        self._increment = redis_client.register_script(_INCREMENT_SCRIPT)

    def _key(self, subject_id: str) -> str:
        return f"{self.prefix}:{subject_id}"

    def _retry_after(self, pttl_ms: int) -> int:
        if pttl_ms is None or int(pttl_ms) < 0:
            return self.window_seconds
        return max(math.ceil(int(pttl_ms) / 1000), 1)

    async def check(self, subject_id: str) -> RateLimitDecision:
        key = self._key(subject_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.get(key)
            pipe.pttl(key)
            raw_count, pttl = await pipe.execute()
        count = int(raw_count or 0)
        if count >= self.max_attempts:
            return RateLimitDecision(allowed=False, retry_after=self._retry_after(pttl))
        return RateLimitDecision(allowed=True)

    async def increment(self, subject_id: str) -> None:
        await self._increment(keys=[self._key(subject_id)], args=[self.window_seconds * 1000])

    async def acquire(self, subject_id: str) -> RateLimitDecision:
        allowed, pttl = await self._acquire(
            keys=[self._key(subject_id)],
            args=[self.max_attempts, self.window_seconds * 1000],
        )
        if int(allowed) == 1:
            return RateLimitDecision(allowed=True)
        return RateLimitDecision(allowed=False, retry_after=self._retry_after(pttl))
