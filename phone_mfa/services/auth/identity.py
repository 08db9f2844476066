"""
Identity token issuance after a successful phone-only login.

Two issuers:
- LocalJwtTokenIssuer signs an access token with the service's own JWT secret.
- CustomTokenExchangeIssuer mints a short-lived custom token and exchanges it
  with an external identity provider for an ID token.
"""
import logging
import time
import uuid
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from jose import jwt

from ...core.config import settings
from ...core.security import create_access_token

logger = logging.getLogger(__name__)

CUSTOM_TOKEN_LIFETIME_SECONDS = 3600


class IdentityTokenError(Exception):
    """Token minting or exchange failed."""


class IdentityTokenIssuer(ABC):

    @abstractmethod
    async def mint_token(self, user_id: str) -> str:
        pass


class LocalJwtTokenIssuer(IdentityTokenIssuer):
    async def mint_token(self, user_id: str) -> str:
        return create_access_token(user_id, auth_provider="phone")


class CustomTokenExchangeIssuer(IdentityTokenIssuer):
    """
    Custom token then exchange.

    The custom token is an HS256 JWT naming the user as uid/sub. The exchange
    endpoint answers {"idToken": ...}; any other answer is an error.
    """

    def __init__(
        self,
        exchange_url: Optional[str] = None,
        secret: Optional[str] = None,
        audience: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.exchange_url = exchange_url or settings.IDENTITY_TOKEN_EXCHANGE_URL
        self.secret = secret or settings.IDENTITY_CUSTOM_TOKEN_SECRET
        self.audience = audience or settings.IDENTITY_CUSTOM_TOKEN_AUDIENCE
        self.timeout_seconds = timeout_seconds or settings.IDENTITY_TOKEN_TIMEOUT_SECONDS
        self._http_client = http_client

        if not self.exchange_url or not self.secret:
            raise ValueError("Token exchange requires an exchange URL and a custom token secret")

    def create_custom_token(self, user_id: str) -> str:
        now = int(time.time())
        claims = {
            "uid": user_id,
            "sub": user_id,
            "iat": now,
            "exp": now + CUSTOM_TOKEN_LIFETIME_SECONDS,
            "jti": str(uuid.uuid4()),
        }
        if self.audience:
            claims["aud"] = self.audience
        return jwt.encode(claims, self.secret, algorithm="HS256")

    async def _post(self, payload: dict) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.post(self.exchange_url, json=payload, timeout=self.timeout_seconds)
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await client.post(self.exchange_url, json=payload)

    async def mint_token(self, user_id: str) -> str:
        custom_token = self.create_custom_token(user_id)
        try:
            response = await self._post({"token": custom_token, "returnSecureToken": True})
        except httpx.HTTPError as e:
            logger.error(f"[Identity][Exchange] Request failed for user {user_id}: {type(e).__name__}: {e}")
            raise IdentityTokenError("Token exchange request failed") from e

        if response.status_code >= 400:
            logger.error(f"[Identity][Exchange] Exchange rejected for user {user_id}: HTTP {response.status_code}")
            raise IdentityTokenError(f"Token exchange failed with status {response.status_code}")

        try:
            id_token = response.json().get("idToken")
        except ValueError as e:
            raise IdentityTokenError("Token exchange returned invalid JSON") from e

        if not id_token:
            logger.error(f"[Identity][Exchange] No idToken in exchange response for user {user_id}")
            raise IdentityTokenError("Token exchange response did not include an ID token")

        logger.info(f"[Identity][Exchange] Issued ID token for user {user_id}")
        return id_token
