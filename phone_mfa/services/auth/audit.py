"""
Structured audit logging for phone verification events
"""
import json
import logging
from datetime import datetime
from typing import Optional

from ...core.config import settings
from ...utils.phone import get_phone_last4

logger = logging.getLogger(__name__)


class AuditService:
    """
    Structured audit logging for verification challenges.

    Never logs codes or full phone numbers.
    """

    @staticmethod
    def _log_audit_event(
        event_type: str,
        flow: Optional[str] = None,
        user_id: Optional[str] = None,
        phone: Optional[str] = None,
        session_id: Optional[str] = None,
        outcome: Optional[str] = None,
        error: Optional[str] = None,
        **kwargs
    ):
        audit_data = {
            "event_type": event_type,
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "env": settings.ENV,
            "outcome": outcome,
        }

        if flow:
            audit_data["flow"] = flow
        if user_id:
            audit_data["user_id"] = user_id
        if phone:
            audit_data["phone_last4"] = get_phone_last4(phone)
        if session_id:
            # Session ids are bearer capabilities; only a prefix is logged
            audit_data["session"] = session_id[:8]
        if error:
            audit_data["error"] = error

        audit_data.update(kwargs)

        logger.info(f"[PhoneMFA][Audit] {json.dumps(audit_data)}")

    @staticmethod
    def log_challenge_requested(flow: str, user_id: Optional[str], phone: Optional[str]):
        AuditService._log_audit_event("challenge_requested", flow=flow, user_id=user_id, phone=phone, outcome="pending")

    @staticmethod
    def log_challenge_sent(flow: str, user_id: str, phone: str, session_id: str):
        AuditService._log_audit_event(
            "challenge_sent", flow=flow, user_id=user_id, phone=phone, session_id=session_id, outcome="success"
        )

    @staticmethod
    def log_fallback_engaged(flow: str, user_id: str, phone: str, session_id: str, error: Optional[str] = None):
        AuditService._log_audit_event(
            "fallback_engaged", flow=flow, user_id=user_id, phone=phone, session_id=session_id,
            outcome="fallback", error=error,
        )

    @staticmethod
    def log_rate_limited(flow: str, user_id: str, retry_after: int):
        AuditService._log_audit_event(
            "rate_limited", flow=flow, user_id=user_id, outcome="rate_limited", retry_after=retry_after
        )

    @staticmethod
    def log_verify_success(flow: str, user_id: str, session_id: str, fallback: bool = False):
        AuditService._log_audit_event(
            "verify_success", flow=flow, user_id=user_id, session_id=session_id, outcome="success", fallback=fallback
        )

    @staticmethod
    def log_verify_fail(flow: str, session_id: str, reason: str, user_id: Optional[str] = None):
        AuditService._log_audit_event(
            "verify_fail", flow=flow, user_id=user_id, session_id=session_id, outcome="fail", error=reason
        )

    @staticmethod
    def log_resend(flow: str, user_id: str, session_id: str, outcome: str):
        AuditService._log_audit_event("resend", flow=flow, user_id=user_id, session_id=session_id, outcome=outcome)

    @staticmethod
    def log_mfa_disabled(user_id: str):
        AuditService._log_audit_event("mfa_disabled", user_id=user_id, outcome="success")
