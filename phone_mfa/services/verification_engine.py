"""
Verification flow engine for phone enrollment, login MFA and phone-only login.

Each flow follows the same lifecycle:

    challenge request -> rate limit -> session created -> code dispatched
    -> code submitted -> provider check (or fallback acceptance)
    -> flow side effect -> session retired

The engine owns no global state. The session store, rate limiter, provider,
user directory and token issuer are injected by the composition root.
"""
import asyncio
import hashlib
import hmac
import logging
import re
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..core.config import settings
from ..core.errors import (
    DuplicateEntryError,
    InternalVerificationError,
    InvalidInputError,
    ProviderUnavailableError,
    RateLimitExceededError,
    SessionExpiredError,
)
from ..models.verification import (
    ConsumeResult,
    EnrollmentSession,
    FlowType,
    LoginMfaSession,
    PhoneLoginSession,
)
from ..utils.phone import get_phone_last4, mask_phone, normalize_phone
from .auth.audit import AuditService
from .auth.identity import IdentityTokenError, IdentityTokenIssuer
from .auth.otp_provider import ProviderError, VerifyProvider
from .auth.rate_limit import RateLimiter
from .auth.session_store import SessionStore
from .auth.user_store import UserDirectory

logger = logging.getLogger(__name__)

_CODE_RE = re.compile(r"[0-9]{6}")

RATE_LIMIT_MESSAGE = "Too many verification attempts. Please try again later."


@dataclass(frozen=True)
class FallbackPolicy:
    """
    What to do when the provider fails or times out.

    When accept_any_code_on_provider_failure is set, a failed dispatch leaves
    the session in fallback mode (no handle) and any well-formed code verifies
    it; a failed check accepts the submitted code. Otherwise the caller gets
    PROVIDER_UNAVAILABLE.
    """

    accept_any_code_on_provider_failure: bool = False

    @classmethod
    def from_settings(cls) -> "FallbackPolicy":
        return cls(accept_any_code_on_provider_failure=settings.accept_any_code_on_provider_failure)


@dataclass(frozen=True)
class ChallengeResult:
    session_id: str
    masked_phone: str


@dataclass(frozen=True)
class EnrollmentResult:
    verified: bool
    phone: str


@dataclass(frozen=True)
class LoginMfaResult:
    subject: str


@dataclass(frozen=True)
class PhoneLoginResult:
    user: Any
    token: str


@dataclass(frozen=True)
class MfaStatus:
    enabled: bool
    masked_phone: Optional[str] = None


def is_well_formed_code(code) -> bool:
    """Exactly six ASCII digits."""
    return isinstance(code, str) and _CODE_RE.fullmatch(code) is not None


def outcome_digest(session_id: str, code: str) -> str:
    return hashlib.sha256(f"{session_id}:{code}".encode()).hexdigest()


class VerificationFlowEngine:
    def __init__(
        self,
        store: SessionStore,
        limiter: RateLimiter,
        provider: VerifyProvider,
        users: UserDirectory,
        issuer: IdentityTokenIssuer,
        fallback_policy: Optional[FallbackPolicy] = None,
        session_ttl_seconds: Optional[int] = None,
        provider_timeout_seconds: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.store = store
        self.limiter = limiter
        self.provider = provider
        self.users = users
        self.issuer = issuer
        self.fallback_policy = fallback_policy or FallbackPolicy.from_settings()
        self.session_ttl_seconds = session_ttl_seconds or settings.VERIFICATION_SESSION_TTL_SECONDS
        self.provider_timeout_seconds = provider_timeout_seconds or settings.PROVIDER_TIMEOUT_SECONDS
        self._clock = clock or time.time

    # ------------------------------------------------------------------
    # Shared plumbing
    # ------------------------------------------------------------------

    async def _check_rate_limit(self, flow: FlowType, subject_id: str) -> None:
        decision = await self.limiter.check(subject_id)
        if not decision.allowed:
            AuditService.log_rate_limited(flow.value, subject_id, decision.retry_after)
            raise RateLimitExceededError(RATE_LIMIT_MESSAGE, decision.retry_after)

    async def _acquire_attempt(self, flow: FlowType, subject_id: str) -> None:
        decision = await self.limiter.acquire(subject_id)
        if not decision.allowed:
            AuditService.log_rate_limited(flow.value, subject_id, decision.retry_after)
            raise RateLimitExceededError(RATE_LIMIT_MESSAGE, decision.retry_after)

    def _normalize(self, phone: str, country_code: Optional[str]) -> str:
        try:
            return normalize_phone(phone, country_code or "US")
        except ValueError as e:
            raise InvalidInputError(f"Invalid phone number: {e}") from e

    def _session_fields(self, subject_user_id: str, phone: str) -> dict:
        now = self._clock()
        return {
            "id": secrets.token_urlsafe(32),
            "subject_user_id": subject_user_id,
            "phone_number": phone,
            "created_at": now,
            "expires_at": now + self.session_ttl_seconds,
        }

    async def _send(self, flow: FlowType, session, anti_abuse_token: Optional[str]) -> Optional[str]:
        """
        Ask the provider for a new code.

        Returns the provider handle, or None when the provider failed and the
        fallback policy allows acceptance without one.
        """
        phone_last4 = get_phone_last4(session.phone_number)
        try:
            return await asyncio.wait_for(
                self.provider.send_code(session.phone_number, anti_abuse_token),
                timeout=self.provider_timeout_seconds,
            )
        except (ProviderError, asyncio.TimeoutError) as e:
            reason = str(e) or type(e).__name__
            if not self.fallback_policy.accept_any_code_on_provider_failure:
                logger.error(f"[PhoneMFA][Engine] {flow.value} dispatch to {phone_last4} failed: {reason}")
                raise ProviderUnavailableError("Unable to send verification code. Please try again later.") from e

            logger.warning(
                f"[PhoneMFA][Engine] {flow.value} dispatch to {phone_last4} failed, session "
                f"{session.id[:8]} in fallback mode: {reason}"
            )
            AuditService.log_fallback_engaged(
                flow.value, session.subject_user_id, session.phone_number, session.id, error=reason
            )
            return None

    async def _issue_challenge(self, flow: FlowType, session, anti_abuse_token: Optional[str]) -> ChallengeResult:
        await self._acquire_attempt(flow, session.subject_user_id)
        await self.store.create(session)

        try:
            handle = await self._send(flow, session, anti_abuse_token)
        except ProviderUnavailableError:
            await self.store.delete(session.id)
            raise

        if not await self.store.replace_handle(session.id, handle):
            raise SessionExpiredError()

        if handle is not None:
            AuditService.log_challenge_sent(flow.value, session.subject_user_id, session.phone_number, session.id)
        logger.info(
            f"[PhoneMFA][Engine] {flow.value} challenge issued for user {session.subject_user_id} "
            f"to {get_phone_last4(session.phone_number)}"
        )
        return ChallengeResult(session_id=session.id, masked_phone=mask_phone(session.phone_number))

    async def _check_code(self, flow: FlowType, session, code: str) -> bool:
        if session.in_fallback_mode:
            logger.warning(f"[PhoneMFA][Engine] Session {session.id[:8]} verified in fallback mode")
            return True

        try:
            return await asyncio.wait_for(
                self.provider.check_code(session.provider_handle, code),
                timeout=self.provider_timeout_seconds,
            )
        except (ProviderError, asyncio.TimeoutError) as e:
            reason = str(e) or type(e).__name__
            if not self.fallback_policy.accept_any_code_on_provider_failure:
                logger.error(f"[PhoneMFA][Engine] {flow.value} code check failed: {reason}")
                raise ProviderUnavailableError("Unable to verify code. Please try again later.") from e
            logger.warning(f"[PhoneMFA][Engine] {flow.value} code check failed, accepting code: {reason}")
            AuditService.log_fallback_engaged(
                flow.value, session.subject_user_id, session.phone_number, session.id, error=reason
            )
            return True

    def _is_replay(self, session, code: str) -> bool:
        digest = getattr(session, "outcome_digest", None)
        return digest is not None and hmac.compare_digest(digest, outcome_digest(session.id, code))

    async def _verify(self, flow: FlowType, session_id: str, code, subject_user_id: Optional[str] = None):
        """
        Validate and consume a session.

        Returns (session, replayed). replayed is True only for a phone-login
        session already consumed with the same code.
        """
        if not is_well_formed_code(code):
            raise InvalidInputError("Verification code must be 6 digits")

        session = await self.store.get(session_id) if session_id else None
        if session is None:
            AuditService.log_verify_fail(flow.value, session_id or "", "session_not_found")
            raise SessionExpiredError()

        if session.flow_type != flow:
            raise InvalidInputError("Invalid session type")

        # Another account's session behaves exactly like an unknown one
        if subject_user_id is not None and session.subject_user_id != subject_user_id:
            AuditService.log_verify_fail(flow.value, session.id, "subject_mismatch", user_id=subject_user_id)
            raise SessionExpiredError()

        if session.consumed:
            if flow == FlowType.PHONE_LOGIN and self._is_replay(session, code):
                return session, True
            raise SessionExpiredError()

        if not session.dispatched:
            raise InvalidInputError("No verification code has been sent for this session")

        if not await self._check_code(flow, session, code):
            AuditService.log_verify_fail(flow.value, session.id, "code_rejected", user_id=session.subject_user_id)
            raise InvalidInputError("Invalid verification code")

        digest = outcome_digest(session.id, code) if flow == FlowType.PHONE_LOGIN else None
        result = await self.store.consume(session.id, session.provider_handle, digest)

        if result == ConsumeResult.SUPERSEDED:
            AuditService.log_verify_fail(flow.value, session.id, "superseded", user_id=session.subject_user_id)
            raise InvalidInputError("A newer code was sent. Please use the latest code.")
        if result == ConsumeResult.ALREADY_CONSUMED:
            if flow == FlowType.PHONE_LOGIN:
                current = await self.store.get(session.id)
                if current is not None and self._is_replay(current, code):
                    return current, True
            raise SessionExpiredError()
        if result == ConsumeResult.NOT_FOUND:
            raise SessionExpiredError()

        AuditService.log_verify_success(
            flow.value, session.subject_user_id, session.id, fallback=session.in_fallback_mode
        )
        return session, False

    # ------------------------------------------------------------------
    # Enrollment
    # ------------------------------------------------------------------

    async def start_enrollment(
        self,
        user_id: str,
        phone: str,
        country_code: Optional[str] = "US",
        anti_abuse_token: Optional[str] = None,
    ) -> ChallengeResult:
        flow = FlowType.ENROLLMENT
        AuditService.log_challenge_requested(flow.value, user_id, None)

        await self._check_rate_limit(flow, user_id)
        e164 = self._normalize(phone, country_code)

        if self.users.find_by_id(user_id) is None:
            raise InvalidInputError("User not found", status_code=404)
        if self.users.is_phone_owned_by_other(e164, user_id):
            raise DuplicateEntryError("This phone number is already registered to another account")

        session = EnrollmentSession(country_code=(country_code or "US").upper(), **self._session_fields(user_id, e164))
        return await self._issue_challenge(flow, session, anti_abuse_token)

    async def verify_enrollment(self, session_id: str, code: str, user_id: Optional[str] = None) -> EnrollmentResult:
        session, _ = await self._verify(FlowType.ENROLLMENT, session_id, code, subject_user_id=user_id)

        try:
            if self.users.is_phone_owned_by_other(session.phone_number, session.subject_user_id):
                raise DuplicateEntryError("This phone number is already registered to another account")
            self.users.update_phone_verification(
                session.subject_user_id, session.phone_number, verified=True, mfa_enabled=True
            )
        finally:
            await self.store.delete(session.id)

        logger.info(f"[PhoneMFA][Engine] MFA enabled for user {session.subject_user_id}")
        return EnrollmentResult(verified=True, phone=session.phone_number)

    # ------------------------------------------------------------------
    # Login MFA
    # ------------------------------------------------------------------

    async def start_login_mfa(self, user_id: str, anti_abuse_token: Optional[str] = None) -> ChallengeResult:
        flow = FlowType.LOGIN_MFA
        user = self.users.find_by_id(user_id)
        if user is None or not user.mfa_enabled or not user.phone_verified or not user.phone_number:
            raise InvalidInputError("MFA is not enabled for this account")

        AuditService.log_challenge_requested(flow.value, user_id, user.phone_number)
        await self._check_rate_limit(flow, user_id)

        session = LoginMfaSession(**self._session_fields(user_id, user.phone_number))
        return await self._issue_challenge(flow, session, anti_abuse_token)

    async def verify_login_mfa(self, session_id: str, code: str) -> LoginMfaResult:
        session, _ = await self._verify(FlowType.LOGIN_MFA, session_id, code)
        await self.store.delete(session.id)
        return LoginMfaResult(subject=session.subject_user_id)

    # ------------------------------------------------------------------
    # Phone-only login
    # ------------------------------------------------------------------

    async def start_phone_login(
        self,
        phone: str,
        country_code: Optional[str] = "US",
        anti_abuse_token: Optional[str] = None,
    ) -> ChallengeResult:
        flow = FlowType.PHONE_LOGIN
        e164 = self._normalize(phone, country_code)

        user = self.users.find_by_phone(e164)
        if user is None:
            logger.info(f"[PhoneMFA][Engine] Phone login requested for unknown number {get_phone_last4(e164)}")
            raise InvalidInputError("No account found with this phone number", status_code=404)

        AuditService.log_challenge_requested(flow.value, user.id, e164)
        await self._check_rate_limit(flow, user.id)

        session = PhoneLoginSession(country_code=(country_code or "US").upper(), **self._session_fields(user.id, e164))
        return await self._issue_challenge(flow, session, anti_abuse_token)

    async def verify_phone_login(self, session_id: str, code: str) -> PhoneLoginResult:
        session, replayed = await self._verify(FlowType.PHONE_LOGIN, session_id, code)
        if replayed:
            logger.info(f"[PhoneMFA][Engine] Repeated phone login verify for session {session.id[:8]}")

        # Session is kept until its TTL so a retried verify gets the same answer
        user = self.users.find_by_id(session.subject_user_id)
        if user is None:
            raise InvalidInputError("No account found with this phone number", status_code=404)

        try:
            token = await self.issuer.mint_token(user.id)
        except IdentityTokenError as e:
            raise InternalVerificationError("Failed to create login token") from e

        return PhoneLoginResult(user=user, token=token)

    # ------------------------------------------------------------------
    # Resend
    # ------------------------------------------------------------------

    async def resend(
        self,
        session_id: str,
        *,
        flow: Optional[FlowType] = None,
        user_id: Optional[str] = None,
        phone_number: Optional[str] = None,
        country_code: Optional[str] = None,
        anti_abuse_token: Optional[str] = None,
    ) -> ChallengeResult:
        """
        Send a fresh code for an existing session and supersede the old one.

        The session id and expiry stay the same. For phone login, a caller
        whose session is gone may pass the phone number to start over.
        """
        session = await self.store.get(session_id) if session_id else None

        if session is None:
            if phone_number and flow in (None, FlowType.PHONE_LOGIN):
                logger.info("[PhoneMFA][Engine] Resend for missing session, starting new phone login")
                return await self.start_phone_login(phone_number, country_code or "US", anti_abuse_token)
            raise SessionExpiredError()

        session_flow = FlowType(session.flow_type)
        if flow is not None and session_flow != flow:
            raise InvalidInputError("Invalid session type")
        if user_id is not None and session.subject_user_id != user_id:
            raise SessionExpiredError()
        if session.consumed:
            raise SessionExpiredError()
        if not session.dispatched:
            raise InvalidInputError("No verification code has been sent for this session")

        await self._acquire_attempt(session_flow, session.subject_user_id)

        handle = await self._send(session_flow, session, anti_abuse_token)
        if not await self.store.replace_handle(session.id, handle):
            AuditService.log_resend(session_flow.value, session.subject_user_id, session.id, "expired")
            raise SessionExpiredError()

        AuditService.log_resend(
            session_flow.value, session.subject_user_id, session.id, "sent" if handle else "fallback"
        )
        return ChallengeResult(session_id=session.id, masked_phone=mask_phone(session.phone_number))

    # ------------------------------------------------------------------
    # Account MFA settings
    # ------------------------------------------------------------------

    async def disable_mfa(self, user_id: str) -> None:
        user = self.users.set_mfa_enabled(user_id, False)
        if user is None:
            logger.warning(f"[PhoneMFA][Engine] disable_mfa for unknown user {user_id}")
            return
        AuditService.log_mfa_disabled(user_id)
        logger.info(f"[PhoneMFA][Engine] MFA disabled for user {user_id}")

    async def mfa_status(self, user_id: str) -> MfaStatus:
        user = self.users.find_by_id(user_id)
        if user is None:
            return MfaStatus(enabled=False)
        masked = mask_phone(user.phone_number) if user.phone_verified and user.phone_number else None
        return MfaStatus(enabled=bool(user.mfa_enabled), masked_phone=masked)
