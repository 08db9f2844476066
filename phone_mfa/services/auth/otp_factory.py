"""
Verify provider factory
"""
import logging
from typing import Optional

from ...core.config import settings
from .otp_provider import VerifyProvider
from .stub_provider import StubVerifyProvider
from .twilio_verify import TwilioVerifyProvider

logger = logging.getLogger(__name__)

_provider_instance: Optional[VerifyProvider] = None


def get_verify_provider() -> VerifyProvider:
    """
    Get the code dispatch provider selected by OTP_PROVIDER.

    Returns:
        VerifyProvider instance (shared for the process)
    """
    global _provider_instance

    provider_type = settings.OTP_PROVIDER.lower()

    if provider_type == "twilio_verify":
        if _provider_instance is None or not isinstance(_provider_instance, TwilioVerifyProvider):
            try:
                _provider_instance = TwilioVerifyProvider()
                logger.info("[OTP] Using Twilio Verify provider")
            except ValueError as e:
                logger.error(f"[OTP] Failed to initialize Twilio Verify: {e}")
                raise
        return _provider_instance

    elif provider_type == "stub":
        if _provider_instance is None or not isinstance(_provider_instance, StubVerifyProvider):
            _provider_instance = StubVerifyProvider()
            logger.info("[OTP] Using stub provider")
        return _provider_instance

    else:
        raise ValueError(f"Unknown OTP provider: {provider_type}. Must be one of: twilio_verify, stub")


def reset_verify_provider() -> None:
    """Forget the cached provider (tests switch OTP_PROVIDER between cases)."""
    global _provider_instance
    _provider_instance = None
