"""
Auth services package: code providers, rate limiting, session storage
"""
from .otp_provider import VerifyProvider, ProviderError
from .twilio_verify import TwilioVerifyProvider
from .stub_provider import StubVerifyProvider
from .rate_limit import RateLimiter, InMemoryRateLimiter, RedisRateLimiter
from .session_store import SessionStore, InMemorySessionStore, RedisSessionStore
from .identity import IdentityTokenIssuer, IdentityTokenError, LocalJwtTokenIssuer, CustomTokenExchangeIssuer
from .user_store import UserDirectory, SqlAlchemyUserDirectory
from .audit import AuditService
from .otp_factory import get_verify_provider

__all__ = [
    "VerifyProvider",
    "ProviderError",
    "TwilioVerifyProvider",
    "StubVerifyProvider",
    "RateLimiter",
    "InMemoryRateLimiter",
    "RedisRateLimiter",
    "SessionStore",
    "InMemorySessionStore",
    "RedisSessionStore",
    "IdentityTokenIssuer",
    "IdentityTokenError",
    "LocalJwtTokenIssuer",
    "CustomTokenExchangeIssuer",
    "UserDirectory",
    "SqlAlchemyUserDirectory",
    "AuditService",
    "get_verify_provider",
]
