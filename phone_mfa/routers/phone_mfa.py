"""
Phone MFA and phone login router

/api/mfa/*  enrollment, login MFA, disable and status
/api/auth/* phone-only login

Errors raised by PhoneMfaService are VerificationError subclasses; the
handlers in exception_handlers.py turn them into the error envelope.
"""
import logging

from fastapi import APIRouter, Depends

from ..dependencies.auth import get_current_user_id
from ..dependencies.phone_mfa import get_phone_mfa_service
from ..models.verification import FlowType
from ..schemas.phone_mfa import (
    ChallengeData,
    EnrollmentData,
    EnrollRequest,
    LoginMfaData,
    MfaStatusData,
    PhoneLoginRequest,
    ResendPhoneLoginRequest,
    SendLoginCodeRequest,
    SessionRequest,
    UserProfile,
    VerifyCodeRequest,
)
from ..services.phone_mfa_service import PhoneMfaService

logger = logging.getLogger(__name__)

mfa_router = APIRouter(prefix="/api/mfa", tags=["mfa"])
phone_login_router = APIRouter(prefix="/api/auth", tags=["phone-login"])


def _challenge(result) -> dict:
    data = ChallengeData(session_id=result.session_id, masked_phone=result.masked_phone)
    return data.model_dump(by_alias=True)


# ============================================
# Enrollment (authenticated)
# ============================================

@mfa_router.post("/enroll")
async def enroll(
    request: EnrollRequest,
    user_id: str = Depends(get_current_user_id),
    service: PhoneMfaService = Depends(get_phone_mfa_service),
):
    result = await service.enroll(user_id, request.phone_number, request.country_code, request.recaptcha_token)
    return {
        "success": True,
        "data": _challenge(result),
        "message": f"Verification code sent to {result.masked_phone}",
    }


@mfa_router.post("/verify")
async def verify_enrollment(
    request: VerifyCodeRequest,
    user_id: str = Depends(get_current_user_id),
    service: PhoneMfaService = Depends(get_phone_mfa_service),
):
    result = await service.verify_enrollment(request.session_id, request.verification_code, user_id=user_id)
    data = EnrollmentData(verified=result.verified, phone_number=result.phone)
    return {
        "success": True,
        "data": data.model_dump(by_alias=True),
        "message": "Phone number verified successfully",
    }


@mfa_router.post("/resend-enrollment-code")
async def resend_enrollment_code(
    request: SessionRequest,
    user_id: str = Depends(get_current_user_id),
    service: PhoneMfaService = Depends(get_phone_mfa_service),
):
    result = await service.resend(
        request.session_id,
        flow=FlowType.ENROLLMENT,
        user_id=user_id,
        anti_abuse_token=request.recaptcha_token,
    )
    return {"success": True, "data": _challenge(result)}


@mfa_router.post("/disable")
async def disable_mfa(
    user_id: str = Depends(get_current_user_id),
    service: PhoneMfaService = Depends(get_phone_mfa_service),
):
    await service.disable_mfa(user_id)
    return {"success": True, "message": "MFA disabled successfully"}


@mfa_router.get("/status")
async def mfa_status(
    user_id: str = Depends(get_current_user_id),
    service: PhoneMfaService = Depends(get_phone_mfa_service),
):
    status = await service.mfa_status(user_id)
    data = MfaStatusData(mfa_enabled=status.enabled, phone_number=status.masked_phone)
    return {"success": True, "data": data.model_dump(by_alias=True)}


# ============================================
# Login MFA (public, second factor)
# ============================================

@mfa_router.post("/send-login-code")
async def send_login_code(
    request: SendLoginCodeRequest,
    service: PhoneMfaService = Depends(get_phone_mfa_service),
):
    result = await service.start_login_mfa(request.user_id, request.recaptcha_token)
    return {"success": True, "data": _challenge(result)}


@mfa_router.post("/verify-login-code")
async def verify_login_code(
    request: VerifyCodeRequest,
    service: PhoneMfaService = Depends(get_phone_mfa_service),
):
    result = await service.verify_login_mfa(request.session_id, request.verification_code)
    return {
        "success": True,
        "data": LoginMfaData(user_id=result.subject).model_dump(by_alias=True),
        "message": "MFA verification successful",
    }


@mfa_router.post("/resend-login-code")
async def resend_login_code(
    request: SessionRequest,
    service: PhoneMfaService = Depends(get_phone_mfa_service),
):
    result = await service.resend(
        request.session_id,
        flow=FlowType.LOGIN_MFA,
        anti_abuse_token=request.recaptcha_token,
    )
    return {"success": True, "data": _challenge(result)}


# ============================================
# Phone-only login (public)
# ============================================

@phone_login_router.post("/phone-login")
async def phone_login(
    request: PhoneLoginRequest,
    service: PhoneMfaService = Depends(get_phone_mfa_service),
):
    result = await service.start_phone_login(request.phone_number, request.country_code, request.recaptcha_token)
    return {"success": True, "data": _challenge(result)}


@phone_login_router.post("/verify-phone-login")
async def verify_phone_login(
    request: VerifyCodeRequest,
    service: PhoneMfaService = Depends(get_phone_mfa_service),
):
    result = await service.verify_phone_login(request.session_id, request.verification_code)
    return {
        "success": True,
        "message": "Phone login successful",
        "user": UserProfile.from_user(result.user).model_dump(by_alias=True),
        "token": result.token,
    }


@phone_login_router.post("/resend-phone-login-code")
async def resend_phone_login_code(
    request: ResendPhoneLoginRequest,
    service: PhoneMfaService = Depends(get_phone_mfa_service),
):
    result = await service.resend(
        request.session_id or "",
        flow=FlowType.PHONE_LOGIN,
        phone_number=request.phone_number,
        country_code=request.country_code,
        anti_abuse_token=request.recaptcha_token,
    )
    return {"success": True, "data": _challenge(result)}
