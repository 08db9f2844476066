"""
Stub provider for dev/staging environments
"""
import logging
import secrets
from typing import Dict, Optional

from ...core.config import settings
from ...core.env import PRODUCTION_ENVS
from ...utils.phone import get_phone_last4
from .otp_provider import VerifyProvider

logger = logging.getLogger(__name__)


class StubVerifyProvider(VerifyProvider):
    """
    Stub provider for development/staging.

    Generates a code per handle and logs it for dev convenience. The stub
    code '000000' is accepted for any live handle outside production.
    """

    STUB_CODE = "000000"
    MAX_TRACKED_PHONES = 10_000

    def __init__(self):
        self._codes: Dict[str, str] = {}
        self._phones: Dict[str, str] = {}

        env = settings.ENV.lower()
        if env in PRODUCTION_ENVS:
            logger.warning("[OTP][Stub] WARNING: Stub provider enabled in production! This should not happen.")
        else:
            logger.info(f"[OTP][Stub] Stub provider enabled for environment: {env}")

    async def send_code(self, phone: str, anti_abuse_token: Optional[str] = None) -> str:
        handle = f"stub_{secrets.token_hex(12)}"
        code = f"{secrets.randbelow(10**6):06d}"
        # One live handle per phone; a resend retires the previous one
        previous = self._phones.pop(phone, None)
        if previous is not None:
            self._codes.pop(previous, None)
        elif len(self._phones) >= self.MAX_TRACKED_PHONES:
            oldest = next(iter(self._phones))
            self._codes.pop(self._phones.pop(oldest), None)

        self._codes[handle] = code
        self._phones[phone] = handle
        logger.info(f"[OTP][Stub] Code for ***{get_phone_last4(phone)} (handle {handle}): {code}")
        return handle

    async def check_code(self, handle: str, code: str) -> bool:
        expected = self._codes.get(handle)
        if expected is None:
            logger.warning(f"[OTP][Stub] Unknown handle {handle}")
            return False

        is_valid = secrets.compare_digest(code, expected)
        if not is_valid and settings.ENV.lower() not in PRODUCTION_ENVS:
            is_valid = secrets.compare_digest(code, self.STUB_CODE)

        if is_valid:
            logger.info(f"[OTP][Stub] Verification successful for handle {handle}")
        else:
            logger.warning(f"[OTP][Stub] Verification failed for handle {handle}: code mismatch")
        return is_valid

    def code_for(self, handle: str) -> Optional[str]:
        """Code generated for a handle (dev tooling and tests)."""
        return self._codes.get(handle)

    def latest_handle_for(self, phone: str) -> Optional[str]:
        return self._phones.get(phone)
