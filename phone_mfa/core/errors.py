"""
Error taxonomy for phone verification and MFA flows.

Every error that crosses the PhoneMfaService boundary is a VerificationError
carrying one of the ErrorCode values below. The HTTP layer maps them to status
codes in exception_handlers.py.
"""
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    INTERNAL = "INTERNAL"


class VerificationError(Exception):
    """Base exception for verification flows."""

    code: ErrorCode = ErrorCode.INTERNAL
    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidInputError(VerificationError):
    code = ErrorCode.INVALID_INPUT
    status_code = 400


class DuplicateEntryError(VerificationError):
    code = ErrorCode.DUPLICATE_ENTRY
    status_code = 409


class SessionExpiredError(VerificationError):
    """Raised for both unknown and expired sessions, with the same message."""

    code = ErrorCode.SESSION_EXPIRED
    status_code = 400

    def __init__(self, message: str = "Invalid or expired session"):
        super().__init__(message)


class RateLimitExceededError(VerificationError):
    code = ErrorCode.RATE_LIMIT_EXCEEDED
    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = max(int(retry_after), 1)


class ProviderUnavailableError(VerificationError):
    code = ErrorCode.PROVIDER_UNAVAILABLE
    status_code = 503


class InternalVerificationError(VerificationError):
    code = ErrorCode.INTERNAL
    status_code = 500
