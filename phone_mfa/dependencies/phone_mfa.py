"""
Composition root for the verification flows.

Shared state (session store, rate limiter, provider, token issuer) is built
once per process from settings. The service itself is built per request
because the user directory is bound to the request's database session.
"""
import logging
from functools import lru_cache

import redis.asyncio as redis
from fastapi import Depends
from sqlalchemy.orm import Session

from ..core.config import settings
from ..db import get_db
from ..services.auth.identity import CustomTokenExchangeIssuer, IdentityTokenIssuer, LocalJwtTokenIssuer
from ..services.auth.otp_factory import get_verify_provider
from ..services.auth.otp_provider import VerifyProvider
from ..services.auth.rate_limit import InMemoryRateLimiter, RateLimiter, RedisRateLimiter
from ..services.auth.session_store import InMemorySessionStore, RedisSessionStore, SessionStore
from ..services.auth.user_store import SqlAlchemyUserDirectory
from ..services.phone_mfa_service import PhoneMfaService
from ..services.verification_engine import FallbackPolicy, VerificationFlowEngine

logger = logging.getLogger(__name__)


def _use_redis() -> bool:
    return settings.PHONE_MFA_STORE_BACKEND.lower() == "redis"


@lru_cache(maxsize=1)
def get_redis_client():
    logger.info("[PhoneMFA] Using Redis for verification sessions and rate limits")
    return redis.from_url(settings.REDIS_URL, decode_responses=True)


@lru_cache(maxsize=1)
def get_session_store() -> SessionStore:
    if _use_redis():
        return RedisSessionStore(get_redis_client())
    return InMemorySessionStore()


@lru_cache(maxsize=1)
def get_rate_limiter() -> RateLimiter:
    max_attempts = settings.VERIFICATION_MAX_ATTEMPTS_PER_WINDOW
    window = settings.VERIFICATION_RATE_LIMIT_WINDOW_SECONDS
    if _use_redis():
        return RedisRateLimiter(get_redis_client(), max_attempts=max_attempts, window_seconds=window)
    return InMemoryRateLimiter(max_attempts=max_attempts, window_seconds=window)


@lru_cache(maxsize=1)
def get_identity_issuer() -> IdentityTokenIssuer:
    issuer_type = settings.IDENTITY_TOKEN_ISSUER.lower()
    if issuer_type == "exchange":
        return CustomTokenExchangeIssuer()
    if issuer_type == "local":
        return LocalJwtTokenIssuer()
    raise ValueError(f"Unknown identity token issuer: {issuer_type}. Must be one of: local, exchange")


def get_provider() -> VerifyProvider:
    return get_verify_provider()


def get_phone_mfa_service(
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
    limiter: RateLimiter = Depends(get_rate_limiter),
    provider: VerifyProvider = Depends(get_provider),
    issuer: IdentityTokenIssuer = Depends(get_identity_issuer),
) -> PhoneMfaService:
    engine = VerificationFlowEngine(
        store=store,
        limiter=limiter,
        provider=provider,
        users=SqlAlchemyUserDirectory(db),
        issuer=issuer,
        fallback_policy=FallbackPolicy.from_settings(),
    )
    return PhoneMfaService(engine)
