"""
Abstract code dispatch/verify provider interface
"""
from abc import ABC, abstractmethod
from typing import Optional


class ProviderError(Exception):
    """The provider could not be reached or refused the request."""


class VerifyProvider(ABC):
    """
    Abstract base class for code dispatch providers.

    A provider sends a one-time code to a phone and returns an opaque handle
    identifying that outstanding challenge. Codes are later checked against
    the handle, never against the phone number, so a superseded handle can
    not be verified by accident.
    """

    @abstractmethod
    async def send_code(self, phone: str, anti_abuse_token: Optional[str] = None) -> str:
        """
        Send a verification code.

        Args:
            phone: Normalized phone number in E.164 format
            anti_abuse_token: Optional client attestation (e.g. reCAPTCHA) forwarded to the provider

        Returns:
            Provider handle for the outstanding challenge

        Raises:
            ProviderError: If the code could not be dispatched
        """
        pass

    @abstractmethod
    async def check_code(self, handle: str, code: str) -> bool:
        """
        Check a code against an outstanding challenge.

        Returns:
            True if the provider approved the code, False if it rejected it

        Raises:
            ProviderError: If the provider could not be reached
        """
        pass
