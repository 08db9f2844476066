"""
Configuration and fallback policy tests
"""
from unittest.mock import patch

import pytest

from phone_mfa.core.config import Settings, validate_config
from phone_mfa.core.env import get_env_name, is_local_env
from phone_mfa.services.verification_engine import FallbackPolicy


@pytest.mark.parametrize("env", ["local", "dev", "development", "test"])
def test_fallback_on_by_default_for_local_envs(env):
    settings = Settings(ENV=env, PHONE_MFA_ACCEPT_ANY_CODE_ON_PROVIDER_FAILURE=None)
    assert settings.accept_any_code_on_provider_failure is True


@pytest.mark.parametrize("env", ["staging", "prod", "production"])
def test_fallback_off_by_default_elsewhere(env):
    settings = Settings(ENV=env, PHONE_MFA_ACCEPT_ANY_CODE_ON_PROVIDER_FAILURE=None)
    assert settings.accept_any_code_on_provider_failure is False


@pytest.mark.parametrize("env", ["local", "dev", "development", "test", "staging", "prod"])
def test_local_env_detection_matches_fallback_default(env, monkeypatch):
    monkeypatch.setenv("ENV", env)
    get_env_name.cache_clear()
    is_local_env.cache_clear()
    try:
        settings = Settings(ENV=env, PHONE_MFA_ACCEPT_ANY_CODE_ON_PROVIDER_FAILURE=None)
        assert is_local_env() == settings.accept_any_code_on_provider_failure
    finally:
        get_env_name.cache_clear()
        is_local_env.cache_clear()


def test_explicit_fallback_setting_wins():
    assert Settings(ENV="prod", PHONE_MFA_ACCEPT_ANY_CODE_ON_PROVIDER_FAILURE=True).accept_any_code_on_provider_failure
    assert not Settings(ENV="dev", PHONE_MFA_ACCEPT_ANY_CODE_ON_PROVIDER_FAILURE=False).accept_any_code_on_provider_failure


def test_policy_from_settings():
    prod = Settings(ENV="prod", PHONE_MFA_ACCEPT_ANY_CODE_ON_PROVIDER_FAILURE=None)
    with patch("phone_mfa.services.verification_engine.settings", prod):
        assert FallbackPolicy.from_settings() == FallbackPolicy(accept_any_code_on_provider_failure=False)


def test_validate_config_rejects_stub_provider_in_production():
    prod = Settings(ENV="prod", JWT_SECRET="real-secret", OTP_PROVIDER="stub")
    with patch("phone_mfa.core.config.settings", prod):
        with pytest.raises(ValueError, match="OTP_PROVIDER=stub"):
            validate_config()


def test_validate_config_requires_twilio_credentials():
    settings = Settings(
        ENV="staging",
        OTP_PROVIDER="twilio_verify",
        TWILIO_ACCOUNT_SID="",
        TWILIO_AUTH_TOKEN="",
        TWILIO_VERIFY_SERVICE_SID="",
    )
    with patch("phone_mfa.core.config.settings", settings):
        with pytest.raises(ValueError, match="TWILIO"):
            validate_config()


def test_validate_config_passes_for_test_env():
    settings = Settings(ENV="test", OTP_PROVIDER="stub", IDENTITY_TOKEN_ISSUER="local")
    with patch("phone_mfa.core.config.settings", settings):
        validate_config()
