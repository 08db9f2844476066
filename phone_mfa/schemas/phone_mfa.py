"""
Request/response schemas for the phone MFA and phone login API.

JSON bodies use camelCase keys; Python attributes stay snake_case.
"""
from typing import Optional

from pydantic import BaseModel, Field


class _CamelModel(BaseModel):
    class Config:
        populate_by_name = True


class EnrollRequest(_CamelModel):
    phone_number: str = Field(..., alias="phoneNumber")
    country_code: str = Field("US", alias="countryCode")
    recaptcha_token: Optional[str] = Field(None, alias="recaptchaToken")


class VerifyCodeRequest(_CamelModel):
    session_id: str = Field(..., alias="sessionId")
    verification_code: str = Field(..., alias="verificationCode")


class SessionRequest(_CamelModel):
    session_id: str = Field(..., alias="sessionId")
    recaptcha_token: Optional[str] = Field(None, alias="recaptchaToken")


class SendLoginCodeRequest(_CamelModel):
    user_id: str = Field(..., alias="userId")
    recaptcha_token: Optional[str] = Field(None, alias="recaptchaToken")


class PhoneLoginRequest(_CamelModel):
    phone_number: str = Field(..., alias="phoneNumber")
    country_code: str = Field("US", alias="countryCode")
    recaptcha_token: Optional[str] = Field(None, alias="recaptchaToken")


class ResendPhoneLoginRequest(_CamelModel):
    """Either a live sessionId, or phoneNumber (+countryCode) to start over."""
    session_id: Optional[str] = Field(None, alias="sessionId")
    phone_number: Optional[str] = Field(None, alias="phoneNumber")
    country_code: Optional[str] = Field(None, alias="countryCode")
    recaptcha_token: Optional[str] = Field(None, alias="recaptchaToken")


class ChallengeData(_CamelModel):
    session_id: str = Field(..., alias="sessionId")
    masked_phone: str = Field(..., alias="maskedPhone")


class EnrollmentData(_CamelModel):
    verified: bool
    phone_number: str = Field(..., alias="phoneNumber")


class LoginMfaData(_CamelModel):
    user_id: str = Field(..., alias="userId")


class MfaStatusData(_CamelModel):
    mfa_enabled: bool = Field(..., alias="mfaEnabled")
    phone_number: Optional[str] = Field(None, alias="phoneNumber")  # masked


class UserProfile(_CamelModel):
    id: str
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = Field(None, alias="displayName")
    phone_number: Optional[str] = Field(None, alias="phoneNumber")
    phone_verified: bool = Field(False, alias="phoneVerified")
    mfa_enabled: bool = Field(False, alias="mfaEnabled")
    is_admin: bool = Field(False, alias="isAdmin")

    @classmethod
    def from_user(cls, user) -> "UserProfile":
        return cls(
            id=user.id,
            uid=user.id,
            email=user.email,
            display_name=user.display_name,
            phone_number=user.phone_number,
            phone_verified=bool(user.phone_verified),
            mfa_enabled=bool(user.mfa_enabled),
            is_admin=bool(user.is_admin),
        )
