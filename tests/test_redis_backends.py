"""
Redis-backed session store and rate limiter.

Runs against REDIS_TEST_URL and skips when no server answers.
"""
import asyncio
import os
import time
import uuid

import pytest
import pytest_asyncio
import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError

from phone_mfa.models.verification import ConsumeResult, EnrollmentSession, PhoneLoginSession
from phone_mfa.services.auth.rate_limit import RedisRateLimiter
from phone_mfa.services.auth.session_store import RedisSessionStore

REDIS_TEST_URL = os.getenv("REDIS_TEST_URL", "redis://localhost:6379/15")

pytestmark = pytest.mark.redis


@pytest_asyncio.fixture
async def redis_client():
    client = redis.from_url(REDIS_TEST_URL, decode_responses=True)
    try:
        await client.ping()
    except (RedisConnectionError, OSError):
        await client.aclose()
        pytest.skip(f"Redis not reachable at {REDIS_TEST_URL}")
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def prefix(redis_client):
    value = f"phone_mfa_test:{uuid.uuid4().hex}"
    yield value
    keys = [key async for key in redis_client.scan_iter(match=f"{value}:*")]
    if keys:
        await redis_client.delete(*keys)


class _Clock:
    def __init__(self):
        self.now = time.time()

    def __call__(self):
        return self.now


def _session(cls=EnrollmentSession, now=None, ttl=600):
    now = now or time.time()
    return cls(
        id=uuid.uuid4().hex,
        subject_user_id="user-1",
        phone_number="+15550000000",
        created_at=now,
        expires_at=now + ttl,
    )


@pytest.mark.asyncio
async def test_limiter_allows_five_then_blocks(redis_client, prefix):
    limiter = RedisRateLimiter(redis_client, prefix=f"{prefix}:rl")

    for i in range(5):
        assert (await limiter.acquire("user-1")).allowed, f"Attempt {i+1} should be allowed"

    decision = await limiter.acquire("user-1")
    assert decision.allowed is False
    assert 3590 <= decision.retry_after <= 3600
    assert (await limiter.check("user-1")).allowed is False
    assert (await limiter.check("user-2")).allowed is True


@pytest.mark.asyncio
async def test_limiter_check_does_not_count(redis_client, prefix):
    limiter = RedisRateLimiter(redis_client, prefix=f"{prefix}:rl")

    for _ in range(10):
        assert (await limiter.check("user-1")).allowed
    await limiter.increment("user-1")

    assert await redis_client.get(f"{prefix}:rl:user-1") == "1"


@pytest.mark.asyncio
async def test_limiter_acquire_is_atomic(redis_client, prefix):
    limiter = RedisRateLimiter(redis_client, prefix=f"{prefix}:rl")

    decisions = await asyncio.gather(*[limiter.acquire("user-1") for _ in range(12)])

    assert sum(1 for d in decisions if d.allowed) == 5
    assert await redis_client.get(f"{prefix}:rl:user-1") == "5"


@pytest.mark.asyncio
async def test_limiter_window_expires(redis_client, prefix):
    limiter = RedisRateLimiter(redis_client, max_attempts=2, window_seconds=1, prefix=f"{prefix}:rl")

    await limiter.acquire("user-1")
    await limiter.acquire("user-1")
    assert (await limiter.acquire("user-1")).allowed is False

    await asyncio.sleep(1.2)
    assert (await limiter.acquire("user-1")).allowed is True


@pytest.mark.asyncio
async def test_store_roundtrip_keeps_flow_type(redis_client, prefix):
    store = RedisSessionStore(redis_client, prefix=f"{prefix}:session")
    session = _session(PhoneLoginSession)

    await store.create(session)
    restored = await store.get(session.id)

    assert isinstance(restored, PhoneLoginSession)
    assert restored.phone_number == "+15550000000"
    ttl = await redis_client.pttl(f"{prefix}:session:{session.id}")
    assert 0 < ttl <= 600_000


@pytest.mark.asyncio
async def test_store_replace_and_consume(redis_client, prefix):
    store = RedisSessionStore(redis_client, prefix=f"{prefix}:session")
    session = _session()
    await store.create(session)

    assert await store.replace_handle(session.id, "VE0001") is True
    assert await store.replace_handle(session.id, "VE0002") is True
    assert await store.consume(session.id, "VE0001") == ConsumeResult.SUPERSEDED
    assert await store.consume(session.id, "VE0002") == ConsumeResult.CONSUMED
    assert await store.consume(session.id, "VE0002") == ConsumeResult.ALREADY_CONSUMED
    assert await store.replace_handle(session.id, "VE0003") is False

    # Mutations keep the original expiry
    ttl = await redis_client.pttl(f"{prefix}:session:{session.id}")
    assert 0 < ttl <= 600_000


@pytest.mark.asyncio
async def test_store_missing_session(redis_client, prefix):
    store = RedisSessionStore(redis_client, prefix=f"{prefix}:session")

    assert await store.get("missing") is None
    assert await store.replace_handle("missing", "VE0001") is False
    assert await store.consume("missing", "VE0001") == ConsumeResult.NOT_FOUND


@pytest.mark.asyncio
async def test_store_expiry_by_clock(redis_client, prefix):
    clock = _Clock()
    store = RedisSessionStore(redis_client, prefix=f"{prefix}:session", clock=clock)
    session = _session(now=clock.now)
    await store.create(session)

    clock.now += 601
    assert await store.get(session.id) is None
    assert await redis_client.exists(f"{prefix}:session:{session.id}") == 0


@pytest.mark.asyncio
async def test_store_concurrent_consume_single_winner(redis_client, prefix):
    store = RedisSessionStore(redis_client, prefix=f"{prefix}:session")
    session = _session()
    await store.create(session)
    await store.replace_handle(session.id, "VE0001")

    results = await asyncio.gather(*[store.consume(session.id, "VE0001") for _ in range(5)])

    assert results.count(ConsumeResult.CONSUMED) == 1
    assert results.count(ConsumeResult.ALREADY_CONSUMED) == 4


@pytest.mark.asyncio
async def test_store_delete(redis_client, prefix):
    store = RedisSessionStore(redis_client, prefix=f"{prefix}:session")
    session = _session()
    await store.create(session)
    await store.delete(session.id)

    assert await store.get(session.id) is None
