"""
Verification session and rate limit records.

Sessions are a tagged union over flow_type so the stores can serialize them
to JSON and read them back without per-flow parsing.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class FlowType(str, Enum):
    ENROLLMENT = "ENROLLMENT"
    LOGIN_MFA = "LOGIN_MFA"
    PHONE_LOGIN = "PHONE_LOGIN"


class SessionState(str, Enum):
    CREATED = "CREATED"
    CODE_DISPATCHED = "CODE_DISPATCHED"
    VERIFIED = "VERIFIED"
    EXPIRED = "EXPIRED"


class ConsumeResult(str, Enum):
    CONSUMED = "CONSUMED"
    SUPERSEDED = "SUPERSEDED"  # handle changed since the caller read the session
    ALREADY_CONSUMED = "ALREADY_CONSUMED"
    NOT_FOUND = "NOT_FOUND"


class _SessionBase(BaseModel):
    id: str
    subject_user_id: str
    phone_number: str
    provider_handle: Optional[str] = None
    dispatched: bool = False
    created_at: float
    expires_at: float
    consumed: bool = False

    @property
    def in_fallback_mode(self) -> bool:
        """Dispatch was attempted but no provider handle is outstanding."""
        return self.dispatched and self.provider_handle is None

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def state(self, now: float) -> SessionState:
        if self.consumed:
            return SessionState.VERIFIED
        if self.is_expired(now):
            return SessionState.EXPIRED
        if self.dispatched:
            return SessionState.CODE_DISPATCHED
        return SessionState.CREATED

    def remaining_ttl(self, now: float) -> float:
        return max(self.expires_at - now, 0.0)


class EnrollmentSession(_SessionBase):
    flow_type: Literal["ENROLLMENT"] = "ENROLLMENT"
    country_code: str = "US"


class LoginMfaSession(_SessionBase):
    flow_type: Literal["LOGIN_MFA"] = "LOGIN_MFA"


class PhoneLoginSession(_SessionBase):
    flow_type: Literal["PHONE_LOGIN"] = "PHONE_LOGIN"
    country_code: str = "US"
    # Digest of the code accepted on first success; replays inside the TTL
    # with the same code are answered without re-verifying.
    outcome_digest: Optional[str] = None


VerificationSession = Annotated[
    Union[EnrollmentSession, LoginMfaSession, PhoneLoginSession],
    Field(discriminator="flow_type"),
]

_session_adapter: TypeAdapter = TypeAdapter(VerificationSession)


def session_to_json(session: _SessionBase) -> str:
    return session.model_dump_json()


def session_from_json(raw) -> _SessionBase:
    if isinstance(raw, bytes):
        raw = raw.decode()
    return _session_adapter.validate_json(raw)


@dataclass
class RateLimitRecord:
    subject_id: str
    attempt_count: int
    window_reset_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0
