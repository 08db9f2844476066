from .user import User, generate_user_id
from .verification import (
    FlowType,
    SessionState,
    ConsumeResult,
    EnrollmentSession,
    LoginMfaSession,
    PhoneLoginSession,
    VerificationSession,
    RateLimitRecord,
    RateLimitDecision,
    session_to_json,
    session_from_json,
)

__all__ = [
    "User",
    "generate_user_id",
    "FlowType",
    "SessionState",
    "ConsumeResult",
    "EnrollmentSession",
    "LoginMfaSession",
    "PhoneLoginSession",
    "VerificationSession",
    "RateLimitRecord",
    "RateLimitDecision",
    "session_to_json",
    "session_from_json",
]
