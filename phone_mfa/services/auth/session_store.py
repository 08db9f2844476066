"""
Verification session storage.

Sessions are keyed by their unguessable id and expire after their TTL. Expiry
is evaluated lazily: get() treats an expired session as missing and removes it.
replace_handle() and consume() are atomic with respect to each other so a
verify that raced a resend can tell it lost.
"""
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

from redis.exceptions import WatchError

from ...models.verification import ConsumeResult, session_from_json, session_to_json

logger = logging.getLogger(__name__)


class SessionStore(ABC):

    @abstractmethod
    async def create(self, session) -> str:
        """Store a new session and return its id."""

    @abstractmethod
    async def get(self, session_id: str):
        """Return the live session or None if unknown or expired."""

    @abstractmethod
    async def replace_handle(self, session_id: str, new_handle: Optional[str]) -> bool:
        """
        Swap in a new provider handle and mark the session dispatched.

        Returns False when the session is unknown, expired or already consumed.
        A None handle puts the session in fallback mode.
        """

    @abstractmethod
    async def consume(
        self,
        session_id: str,
        expected_handle: Optional[str],
        outcome_digest: Optional[str] = None,
    ) -> ConsumeResult:
        """
        Mark the session consumed if its handle still equals expected_handle.
        """

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        pass


def _consume_session(session, expected_handle, outcome_digest) -> ConsumeResult:
    if session.consumed:
        return ConsumeResult.ALREADY_CONSUMED
    if session.provider_handle != expected_handle:
        return ConsumeResult.SUPERSEDED
    session.consumed = True
    if outcome_digest is not None and hasattr(session, "outcome_digest"):
        session.outcome_digest = outcome_digest
    return ConsumeResult.CONSUMED


class InMemorySessionStore(SessionStore):
    """Lock-guarded dict store for tests and single-process dev servers."""

    def __init__(self, clock: Optional[Callable[[], float]] = None, cleanup_interval_seconds: int = 60):
        self._clock = clock or time.time
        self._sessions: Dict[str, object] = {}
        self._lock = threading.Lock()
        self._cleanup_interval = cleanup_interval_seconds
        self._last_cleanup = self._clock()

    def _live(self, session_id: str):
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if session.is_expired(self._clock()):
            del self._sessions[session_id]
            logger.debug(f"[PhoneMFA][Store] Dropped expired session {session_id[:8]}")
            return None
        return session

    async def create(self, session) -> str:
        with self._lock:
            self._maybe_cleanup()
            self._sessions[session.id] = session.model_copy()
        return session.id

    async def get(self, session_id: str):
        with self._lock:
            session = self._live(session_id)
            # Callers get a snapshot; mutations go through the store
            return session.model_copy() if session is not None else None

    async def replace_handle(self, session_id: str, new_handle: Optional[str]) -> bool:
        with self._lock:
            session = self._live(session_id)
            if session is None or session.consumed:
                return False
            session.provider_handle = new_handle
            session.dispatched = True
            return True

    async def consume(
        self,
        session_id: str,
        expected_handle: Optional[str],
        outcome_digest: Optional[str] = None,
    ) -> ConsumeResult:
        with self._lock:
            session = self._live(session_id)
            if session is None:
                return ConsumeResult.NOT_FOUND
            return _consume_session(session, expected_handle, outcome_digest)

    async def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def cleanup(self) -> int:
        """Drop every expired session. Returns how many were removed."""
        with self._lock:
            return self._cleanup(self._clock())

    def _maybe_cleanup(self) -> None:
        now = self._clock()
        if now - self._last_cleanup >= self._cleanup_interval:
            self._cleanup(now)

    def _cleanup(self, now: float) -> int:
        expired = [sid for sid, s in self._sessions.items() if s.is_expired(now)]
        for sid in expired:
            del self._sessions[sid]
        self._last_cleanup = now
        if expired:
            logger.debug(f"[PhoneMFA][Store] Cleaned up {len(expired)} expired session(s)")
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


class RedisSessionStore(SessionStore):
    """
    Shared store for multi-instance deployments.

    Each session is one JSON string whose Redis TTL matches expires_at, so
    expiry needs no sweeper. Mutations use WATCH/MULTI and retry when another
    writer touched the key in between.
    """

    MAX_RETRIES = 10

    def __init__(self, redis_client, prefix: str = "phone_mfa:session", clock: Optional[Callable[[], float]] = None):
        self._redis = redis_client
        self.prefix = prefix
        self._clock = clock or time.time

    def _key(self, session_id: str) -> str:
        return f"{self.prefix}:{session_id}"

    async def create(self, session) -> str:
        ttl_ms = int(session.remaining_ttl(self._clock()) * 1000)
        if ttl_ms <= 0:
            raise ValueError("Cannot store a session that has already expired")
        await self._redis.set(self._key(session.id), session_to_json(session), px=ttl_ms)
        return session.id

    async def get(self, session_id: str):
        key = self._key(session_id)
        raw = await self._redis.get(key)
        if raw is None:
            return None
        session = session_from_json(raw)
        if session.is_expired(self._clock()):
            await self._redis.delete(key)
            return None
        return session

    async def _mutate(self, session_id: str, apply, missing):
        """
        Run apply(session) inside a WATCH/MULTI transaction.

        apply returns (result, changed). missing is returned when the key is
        gone or the session has expired.
        """
        key = self._key(session_id)
        for _ in range(self.MAX_RETRIES):
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        await pipe.unwatch()
                        return missing
                    session = session_from_json(raw)
                    if session.is_expired(self._clock()):
                        await pipe.unwatch()
                        return missing
                    result, changed = apply(session)
                    if not changed:
                        await pipe.unwatch()
                        return result
                    pipe.multi()
                    pipe.set(key, session_to_json(session), keepttl=True)
                    await pipe.execute()
                    return result
                except WatchError:
                    logger.debug(f"[PhoneMFA][Store] Concurrent write on session {session_id[:8]}, retrying")
                    continue
        raise RuntimeError(f"Session {session_id[:8]} update kept conflicting")

    async def replace_handle(self, session_id: str, new_handle: Optional[str]) -> bool:
        def apply(session):
            if session.consumed:
                return False, False
            session.provider_handle = new_handle
            session.dispatched = True
            return True, True

        return await self._mutate(session_id, apply, missing=False)

    async def consume(
        self,
        session_id: str,
        expected_handle: Optional[str],
        outcome_digest: Optional[str] = None,
    ) -> ConsumeResult:
        def apply(session):
            result = _consume_session(session, expected_handle, outcome_digest)
            return result, result == ConsumeResult.CONSUMED

        return await self._mutate(session_id, apply, missing=ConsumeResult.NOT_FOUND)

    async def delete(self, session_id: str) -> None:
        await self._redis.delete(self._key(session_id))
