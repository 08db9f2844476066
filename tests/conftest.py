"""
Pytest configuration and fixtures for phone MFA tests.

Every test gets its own in-memory SQLite database, an in-memory session store
and rate limiter sharing a controllable clock, and a fake verify provider
that records dispatched codes.
"""
import os

# Settings are read at import time; pin them before importing the app
os.environ.setdefault("ENV", "test")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("OTP_PROVIDER", "stub")
os.environ.setdefault("PHONE_MFA_STORE_BACKEND", "memory")
os.environ.setdefault("SKIP_DB_INIT", "true")

import asyncio  # noqa: E402
from typing import Dict, List, Optional, Tuple  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from phone_mfa.db import Base  # noqa: E402
from phone_mfa.models import User  # noqa: E402
from phone_mfa.services.auth.identity import LocalJwtTokenIssuer  # noqa: E402
from phone_mfa.services.auth.otp_provider import ProviderError, VerifyProvider  # noqa: E402
from phone_mfa.services.auth.rate_limit import InMemoryRateLimiter  # noqa: E402
from phone_mfa.services.auth.session_store import InMemorySessionStore  # noqa: E402
from phone_mfa.services.auth.user_store import SqlAlchemyUserDirectory  # noqa: E402
from phone_mfa.services.phone_mfa_service import PhoneMfaService  # noqa: E402
from phone_mfa.services.verification_engine import FallbackPolicy, VerificationFlowEngine  # noqa: E402

T0 = 1_700_000_000.0


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = T0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeVerifyProvider(VerifyProvider):
    """
    In-process provider: every send issues a new handle with its own code.

    Set fail_send / fail_check to simulate an outage, or hang_send /
    hang_check to simulate a provider that never answers.
    """

    def __init__(self):
        self.sent: List[Tuple[str, str, Optional[str]]] = []  # (phone, handle, anti_abuse_token)
        self.codes: Dict[str, str] = {}
        self.check_calls: List[Tuple[str, str]] = []
        self.fail_send = False
        self.fail_check = False
        self.hang_send = False
        self.hang_check = False
        self.on_check = None  # async callback run inside check_code

    async def send_code(self, phone: str, anti_abuse_token: Optional[str] = None) -> str:
        if self.hang_send:
            await asyncio.sleep(30)
        if self.fail_send:
            raise ProviderError("provider unavailable")
        n = len(self.sent) + 1
        handle = f"VE{n:04d}"
        self.codes[handle] = f"{123450 + n:06d}"
        self.sent.append((phone, handle, anti_abuse_token))
        return handle

    async def check_code(self, handle: str, code: str) -> bool:
        self.check_calls.append((handle, code))
        if self.on_check is not None:
            await self.on_check()
        if self.hang_check:
            await asyncio.sleep(30)
        if self.fail_check:
            raise ProviderError("provider unavailable")
        return self.codes.get(handle) == code

    @property
    def last_handle(self) -> str:
        return self.sent[-1][1]

    @property
    def last_code(self) -> str:
        return self.codes[self.last_handle]


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def db():
    """
    Fresh in-memory database per test.

    StaticPool keeps one connection so the TestClient's worker thread sees
    the same database as the test body.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def make_user(db):
    """Factory for users: make_user(phone_number="+15550000000", mfa_enabled=True, ...)."""

    def _make_user(**fields) -> User:
        fields.setdefault("email", f"user{db.query(User).count() + 1}@example.com")
        user = User(**fields)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def store(clock):
    return InMemorySessionStore(clock=clock)


@pytest.fixture
def limiter(clock):
    return InMemoryRateLimiter(max_attempts=5, window_seconds=3600, clock=clock)


@pytest.fixture
def provider():
    return FakeVerifyProvider()


@pytest.fixture
def users(db):
    return SqlAlchemyUserDirectory(db)


@pytest.fixture
def issuer():
    return LocalJwtTokenIssuer()


@pytest.fixture
def build_engine(store, limiter, provider, users, issuer, clock):
    """Engine factory; pass accept_any_code=True for the fallback policy."""

    def _build(accept_any_code: bool = False, provider_timeout_seconds: float = 5.0, **overrides):
        kwargs = dict(
            store=store,
            limiter=limiter,
            provider=provider,
            users=users,
            issuer=issuer,
            fallback_policy=FallbackPolicy(accept_any_code_on_provider_failure=accept_any_code),
            session_ttl_seconds=600,
            provider_timeout_seconds=provider_timeout_seconds,
            clock=clock,
        )
        kwargs.update(overrides)
        return VerificationFlowEngine(**kwargs)

    return _build


@pytest.fixture
def engine(build_engine):
    return build_engine()


@pytest.fixture
def service(engine):
    return PhoneMfaService(engine)


@pytest.fixture
def client(db, service, store, limiter, provider, issuer):
    """
    FastAPI TestClient wired to the per-test database, store and provider.
    """
    from fastapi.testclient import TestClient

    from phone_mfa.db import get_db
    from phone_mfa.dependencies.phone_mfa import (
        get_identity_issuer,
        get_phone_mfa_service,
        get_provider,
        get_rate_limiter,
        get_session_store,
    )
    from phone_mfa.main import app

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_session_store] = lambda: store
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_provider] = lambda: provider
    app.dependency_overrides[get_identity_issuer] = lambda: issuer
    # Built here so the engine shares the test clock
    app.dependency_overrides[get_phone_mfa_service] = lambda: service

    try:
        with TestClient(app, raise_server_exceptions=False) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Bearer header for a user id: auth_headers(user.id)."""
    from phone_mfa.core.security import create_access_token

    def _headers(user_id: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers
