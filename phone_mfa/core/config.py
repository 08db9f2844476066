from pydantic import BaseModel
import os
from typing import Optional

from .env import LOCAL_ENVS, PRODUCTION_ENVS


def _optional_bool(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    # Environment (dev, test, staging, prod)
    ENV: str = os.getenv("ENV", "dev")

    # JWT used for caller authentication and the local identity token issuer
    JWT_SECRET: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
    ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

    # User datastore
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./phone_mfa.db")

    # Shared state for sessions and rate limits
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    PHONE_MFA_STORE_BACKEND: str = os.getenv("PHONE_MFA_STORE_BACKEND", "memory")  # memory, redis

    # Phone OTP provider (Twilio Verify)
    OTP_PROVIDER: str = os.getenv("OTP_PROVIDER", "stub")  # twilio_verify, stub
    TWILIO_ACCOUNT_SID: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    TWILIO_AUTH_TOKEN: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    TWILIO_VERIFY_SERVICE_SID: str = os.getenv("TWILIO_VERIFY_SERVICE_SID", "")
    TWILIO_TIMEOUT_SECONDS: int = int(os.getenv("TWILIO_TIMEOUT_SECONDS", "10"))
    PROVIDER_TIMEOUT_SECONDS: float = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "15"))

    # Verification sessions and rate limiting
    VERIFICATION_SESSION_TTL_SECONDS: int = int(os.getenv("VERIFICATION_SESSION_TTL_SECONDS", "600"))
    VERIFICATION_MAX_ATTEMPTS_PER_WINDOW: int = int(os.getenv("VERIFICATION_MAX_ATTEMPTS_PER_WINDOW", "5"))
    VERIFICATION_RATE_LIMIT_WINDOW_SECONDS: int = int(os.getenv("VERIFICATION_RATE_LIMIT_WINDOW_SECONDS", "3600"))

    # None means "derive from ENV" (see accept_any_code_on_provider_failure)
    PHONE_MFA_ACCEPT_ANY_CODE_ON_PROVIDER_FAILURE: Optional[bool] = _optional_bool(
        "PHONE_MFA_ACCEPT_ANY_CODE_ON_PROVIDER_FAILURE"
    )

    # Identity token issuance after phone-only login
    IDENTITY_TOKEN_ISSUER: str = os.getenv("IDENTITY_TOKEN_ISSUER", "local")  # local, exchange
    IDENTITY_TOKEN_EXCHANGE_URL: str = os.getenv("IDENTITY_TOKEN_EXCHANGE_URL", "")
    IDENTITY_CUSTOM_TOKEN_SECRET: str = os.getenv("IDENTITY_CUSTOM_TOKEN_SECRET", "")
    IDENTITY_CUSTOM_TOKEN_AUDIENCE: str = os.getenv("IDENTITY_CUSTOM_TOKEN_AUDIENCE", "")
    IDENTITY_TOKEN_TIMEOUT_SECONDS: float = float(os.getenv("IDENTITY_TOKEN_TIMEOUT_SECONDS", "10"))

    # Error tracking
    SENTRY_DSN: str = os.getenv("SENTRY_DSN", "")

    @property
    def accept_any_code_on_provider_failure(self) -> bool:
        """
        Whether a failed or timed-out provider call downgrades the session to
        fallback acceptance (any well-formed code verifies).

        An explicit PHONE_MFA_ACCEPT_ANY_CODE_ON_PROVIDER_FAILURE wins. Otherwise
        it is on for local/dev/test and off everywhere else.
        """
        if self.PHONE_MFA_ACCEPT_ANY_CODE_ON_PROVIDER_FAILURE is not None:
            return self.PHONE_MFA_ACCEPT_ANY_CODE_ON_PROVIDER_FAILURE
        return self.ENV.lower() in LOCAL_ENVS

    @property
    def twilio_enabled(self) -> bool:
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN and self.TWILIO_VERIFY_SERVICE_SID)


settings = Settings()


def validate_config():
    """Validate configuration at startup. Raises ValueError if invalid."""
    import logging
    logger = logging.getLogger(__name__)

    env = settings.ENV.lower()
    if env in PRODUCTION_ENVS:
        if settings.JWT_SECRET == "dev-secret-change-me":
            raise ValueError("JWT_SECRET must be set in production")
        if settings.OTP_PROVIDER.lower() == "stub":
            raise ValueError("OTP_PROVIDER=stub is not allowed in production")
        if settings.PHONE_MFA_STORE_BACKEND.lower() != "redis":
            logger.warning(
                "[Config] PHONE_MFA_STORE_BACKEND=%s in production; sessions and rate limits "
                "will not be shared between instances",
                settings.PHONE_MFA_STORE_BACKEND,
            )
        if settings.accept_any_code_on_provider_failure:
            logger.warning(
                "[Config] Fallback code acceptance is ENABLED in production. "
                "Any 6-digit code will verify while the SMS provider is unreachable."
            )

    if settings.OTP_PROVIDER.lower() == "twilio_verify" and not settings.twilio_enabled:
        raise ValueError("OTP_PROVIDER=twilio_verify requires TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_VERIFY_SERVICE_SID")

    if settings.IDENTITY_TOKEN_ISSUER.lower() == "exchange":
        if not settings.IDENTITY_TOKEN_EXCHANGE_URL or not settings.IDENTITY_CUSTOM_TOKEN_SECRET:
            raise ValueError("IDENTITY_TOKEN_ISSUER=exchange requires IDENTITY_TOKEN_EXCHANGE_URL and IDENTITY_CUSTOM_TOKEN_SECRET")
