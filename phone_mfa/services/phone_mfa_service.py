"""
Phone MFA service: the named operations the HTTP layer calls.

Only VerificationError subclasses leave this class. Anything else raised by
the engine or its collaborators is logged and wrapped as INTERNAL.
"""
import logging
from typing import Optional

from ..core.errors import InternalVerificationError, VerificationError
from ..models.verification import FlowType
from .verification_engine import (
    ChallengeResult,
    EnrollmentResult,
    LoginMfaResult,
    MfaStatus,
    PhoneLoginResult,
    VerificationFlowEngine,
)

logger = logging.getLogger(__name__)


class PhoneMfaService:
    def __init__(self, engine: VerificationFlowEngine):
        self.engine = engine

    async def _run(self, operation: str, coro):
        try:
            return await coro
        except VerificationError:
            raise
        except Exception as e:
            logger.error(f"[PhoneMFA] {operation} failed: {type(e).__name__}: {e}", exc_info=True)
            raise InternalVerificationError("An unexpected error occurred. Please try again.") from e

    async def enroll(
        self,
        user_id: str,
        phone_number: str,
        country_code: Optional[str] = "US",
        anti_abuse_token: Optional[str] = None,
    ) -> ChallengeResult:
        return await self._run(
            "enroll", self.engine.start_enrollment(user_id, phone_number, country_code, anti_abuse_token)
        )

    async def verify_enrollment(self, session_id: str, code: str, user_id: Optional[str] = None) -> EnrollmentResult:
        return await self._run("verify_enrollment", self.engine.verify_enrollment(session_id, code, user_id=user_id))

    async def start_login_mfa(self, user_id: str, anti_abuse_token: Optional[str] = None) -> ChallengeResult:
        return await self._run("start_login_mfa", self.engine.start_login_mfa(user_id, anti_abuse_token))

    async def verify_login_mfa(self, session_id: str, code: str) -> LoginMfaResult:
        return await self._run("verify_login_mfa", self.engine.verify_login_mfa(session_id, code))

    async def start_phone_login(
        self,
        phone_number: str,
        country_code: Optional[str] = "US",
        anti_abuse_token: Optional[str] = None,
    ) -> ChallengeResult:
        return await self._run(
            "start_phone_login", self.engine.start_phone_login(phone_number, country_code, anti_abuse_token)
        )

    async def verify_phone_login(self, session_id: str, code: str) -> PhoneLoginResult:
        return await self._run("verify_phone_login", self.engine.verify_phone_login(session_id, code))

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
        return await self._run(
            "resend",
            self.engine.resend(
                session_id,
                flow=flow,
                user_id=user_id,
                phone_number=phone_number,
                country_code=country_code,
                anti_abuse_token=anti_abuse_token,
            ),
        )

    async def disable_mfa(self, user_id: str) -> None:
        return await self._run("disable_mfa", self.engine.disable_mfa(user_id))

    async def mfa_status(self, user_id: str) -> MfaStatus:
        return await self._run("mfa_status", self.engine.mfa_status(user_id))
