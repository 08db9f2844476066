"""
Unit tests for the in-memory verification session store
"""
import pytest

from phone_mfa.models.verification import (
    ConsumeResult,
    EnrollmentSession,
    PhoneLoginSession,
    SessionState,
    session_from_json,
    session_to_json,
)
from phone_mfa.services.auth.session_store import InMemorySessionStore

T0 = 1_700_000_000.0  # FrozenClock start


def _enrollment(session_id="sess-1", created_at=T0):
    return EnrollmentSession(
        id=session_id,
        subject_user_id="user-1",
        phone_number="+15550000000",
        created_at=created_at,
        expires_at=created_at + 600,
    )


@pytest.mark.asyncio
async def test_create_and_get(store):
    session_id = await store.create(_enrollment())
    assert session_id == "sess-1"

    session = await store.get("sess-1")
    assert session.subject_user_id == "user-1"
    assert session.state(T0) == SessionState.CREATED


@pytest.mark.asyncio
async def test_get_returns_snapshot(store):
    await store.create(_enrollment())
    snapshot = await store.get("sess-1")
    snapshot.provider_handle = "tampered"

    assert (await store.get("sess-1")).provider_handle is None


@pytest.mark.asyncio
async def test_unknown_session_is_none(store):
    assert await store.get("missing") is None


@pytest.mark.asyncio
async def test_expired_session_is_not_found_and_removed(store, clock):
    await store.create(_enrollment())

    clock.advance(599)
    assert await store.get("sess-1") is not None

    clock.advance(1)
    assert await store.get("sess-1") is None
    assert len(store) == 0


@pytest.mark.asyncio
async def test_replace_handle_marks_dispatched(store):
    await store.create(_enrollment())

    assert await store.replace_handle("sess-1", "VE0001") is True
    session = await store.get("sess-1")
    assert session.provider_handle == "VE0001"
    assert session.dispatched is True
    assert session.state(T0) == SessionState.CODE_DISPATCHED

    assert await store.replace_handle("sess-1", "VE0002") is True
    assert (await store.get("sess-1")).provider_handle == "VE0002"


@pytest.mark.asyncio
async def test_replace_handle_with_none_enters_fallback(store):
    await store.create(_enrollment())
    await store.replace_handle("sess-1", None)

    session = await store.get("sess-1")
    assert session.in_fallback_mode is True


@pytest.mark.asyncio
async def test_replace_handle_on_missing_or_expired(store, clock):
    assert await store.replace_handle("missing", "VE0001") is False

    await store.create(_enrollment())
    clock.advance(601)
    assert await store.replace_handle("sess-1", "VE0001") is False


@pytest.mark.asyncio
async def test_consume_compare_and_swap(store):
    await store.create(_enrollment())
    await store.replace_handle("sess-1", "VE0001")
    await store.replace_handle("sess-1", "VE0002")

    assert await store.consume("sess-1", "VE0001") == ConsumeResult.SUPERSEDED
    assert await store.consume("sess-1", "VE0002") == ConsumeResult.CONSUMED
    assert await store.consume("sess-1", "VE0002") == ConsumeResult.ALREADY_CONSUMED
    assert await store.consume("missing", "VE0002") == ConsumeResult.NOT_FOUND

    session = await store.get("sess-1")
    assert session.consumed is True
    assert session.state(T0) == SessionState.VERIFIED


@pytest.mark.asyncio
async def test_consumed_session_rejects_new_handle(store):
    await store.create(_enrollment())
    await store.replace_handle("sess-1", "VE0001")
    await store.consume("sess-1", "VE0001")

    assert await store.replace_handle("sess-1", "VE0002") is False


@pytest.mark.asyncio
async def test_consume_records_outcome_digest(store):
    session = PhoneLoginSession(
        id="sess-2",
        subject_user_id="user-1",
        phone_number="+15550000000",
        created_at=T0,
        expires_at=T0 + 600,
    )
    await store.create(session)
    await store.replace_handle("sess-2", "VE0001")

    assert await store.consume("sess-2", "VE0001", outcome_digest="abc") == ConsumeResult.CONSUMED
    assert (await store.get("sess-2")).outcome_digest == "abc"


@pytest.mark.asyncio
async def test_delete(store):
    await store.create(_enrollment())
    await store.delete("sess-1")
    await store.delete("sess-1")

    assert await store.get("sess-1") is None


@pytest.mark.asyncio
async def test_cleanup(store, clock):
    await store.create(_enrollment("old"))
    clock.advance(300)
    await store.create(_enrollment("new", created_at=clock()))
    clock.advance(400)

    assert store.cleanup() == 1
    assert await store.get("new") is not None


@pytest.mark.asyncio
async def test_create_sweeps_expired_sessions(store, clock):
    for i in range(50):
        await store.create(_enrollment(f"old-{i}"))
    assert len(store) == 50

    clock.advance(601)
    await store.create(_enrollment("new", created_at=clock()))

    assert len(store) == 1
    assert await store.get("new") is not None


@pytest.mark.asyncio
async def test_create_sweep_is_interval_gated(clock):
    store = InMemorySessionStore(clock=clock, cleanup_interval_seconds=3600)
    await store.create(_enrollment("old"))

    clock.advance(601)
    await store.create(_enrollment("new", created_at=clock()))
    assert len(store) == 2

    clock.advance(3000)
    await store.create(_enrollment("newest", created_at=clock()))
    assert len(store) == 1


def test_session_json_keeps_flow_type():
    session = PhoneLoginSession(
        id="sess-3",
        subject_user_id="user-1",
        phone_number="+15550000000",
        created_at=T0,
        expires_at=T0 + 600,
        outcome_digest="abc",
    )
    restored = session_from_json(session_to_json(session).encode())

    assert isinstance(restored, PhoneLoginSession)
    assert restored.outcome_digest == "abc"
    assert restored.flow_type == "PHONE_LOGIN"
