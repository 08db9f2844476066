"""
Twilio Verify provider implementation
"""
import logging
import asyncio
from typing import Optional
from twilio.rest import Client
from twilio.http.http_client import TwilioHttpClient
from twilio.base.exceptions import TwilioException, TwilioRestException
from ...core.config import settings
from ...utils.phone import get_phone_last4
from .otp_provider import VerifyProvider, ProviderError

logger = logging.getLogger(__name__)


class TwilioVerifyProvider(VerifyProvider):
    """
    Twilio Verify provider.

    Twilio generates the code and tracks its TTL. The verification SID is the
    handle stored on the session; checks are made by SID so a superseded
    verification can not approve a newer session state.
    """

    def __init__(self, client: Optional[Client] = None):
        if client is None:
            if not settings.TWILIO_ACCOUNT_SID or not settings.TWILIO_AUTH_TOKEN:
                raise ValueError("Twilio credentials not configured")

            if not settings.TWILIO_VERIFY_SERVICE_SID:
                raise ValueError("TWILIO_VERIFY_SERVICE_SID not configured")

            # Custom HTTP client with explicit timeout to prevent hanging
            custom_http_client = TwilioHttpClient()
            custom_http_client.timeout = settings.TWILIO_TIMEOUT_SECONDS

            client = Client(
                settings.TWILIO_ACCOUNT_SID,
                settings.TWILIO_AUTH_TOKEN,
                http_client=custom_http_client
            )
        self.client = client
        self.service_sid = settings.TWILIO_VERIFY_SERVICE_SID
        self.timeout_seconds = settings.TWILIO_TIMEOUT_SECONDS

    async def send_code(self, phone: str, anti_abuse_token: Optional[str] = None) -> str:
        phone_last4 = get_phone_last4(phone)

        def _send_verification():
            """Synchronous Twilio API call - runs in executor thread"""
            return self.client.verify.v2.services(self.service_sid).verifications.create(
                to=phone,
                channel='sms'
            )

        if anti_abuse_token:
            # Twilio Verify runs its own fraud guard; client attestation is not forwarded
            logger.debug(f"[OTP][TwilioVerify] Ignoring anti-abuse token for {phone_last4}")

        try:
            verification = await asyncio.wait_for(
                asyncio.to_thread(_send_verification),
                timeout=self.timeout_seconds + 5  # Buffer for executor overhead
            )
        except asyncio.TimeoutError:
            logger.error(f"[OTP][TwilioVerify] Timeout sending verification to {phone_last4} (>{self.timeout_seconds}s)")
            raise ProviderError(f"Timeout: failed to send code within {self.timeout_seconds} seconds")
        except TwilioException as e:
            logger.error(f"[OTP][TwilioVerify] Twilio error sending to {phone_last4}: {type(e).__name__}: {e}")
            raise ProviderError(f"Failed to send code: {e}") from e

        if verification.status not in ('pending', 'approved'):
            logger.warning(f"[OTP][TwilioVerify] Unexpected status for {phone_last4}: {verification.status}")
            raise ProviderError(f"Verification not pending: {verification.status}")

        logger.info(f"[OTP][TwilioVerify] Verification sent to {phone_last4}, SID: {verification.sid}")
        return verification.sid

    async def check_code(self, handle: str, code: str) -> bool:
        def _verify_code():
            """Synchronous Twilio API call - runs in executor thread"""
            return self.client.verify.v2.services(self.service_sid).verification_checks.create(
                verification_sid=handle,
                code=code
            )

        try:
            verification_check = await asyncio.wait_for(
                asyncio.to_thread(_verify_code),
                timeout=self.timeout_seconds + 5
            )
        except asyncio.TimeoutError:
            logger.error(f"[OTP][TwilioVerify] Timeout checking verification {handle} (>{self.timeout_seconds}s)")
            raise ProviderError(f"Timeout: failed to check code within {self.timeout_seconds} seconds")
        except TwilioRestException as e:
            # 404: verification expired, already approved or superseded
            if e.status == 404:
                logger.warning(f"[OTP][TwilioVerify] Verification {handle} not found: {e}")
                return False
            logger.error(f"[OTP][TwilioVerify] Twilio error checking {handle}: {e}")
            raise ProviderError(f"Failed to check code: {e}") from e
        except TwilioException as e:
            logger.error(f"[OTP][TwilioVerify] Twilio error checking {handle}: {type(e).__name__}: {e}")
            raise ProviderError(f"Failed to check code: {e}") from e

        is_valid = verification_check.status == 'approved'
        if is_valid:
            logger.info(f"[OTP][TwilioVerify] Verification {handle} approved")
        else:
            logger.warning(f"[OTP][TwilioVerify] Verification {handle} rejected: {verification_check.status}")
        return is_valid
