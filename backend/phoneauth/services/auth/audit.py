"""
Structured audit logging service for OTP authentication events
"""
import logging
import json
from dataclasses import dataclass
from typing import Optional

from ...core.config import settings
from ...utils.clock import utcnow
from ...utils.phone import get_phone_last4

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """Per-request metadata carried into the flows for logging and rate limiting."""
    ip: Optional[str] = None
    request_id: Optional[str] = None
    user_agent: Optional[str] = None


class AuditService:
    """
    Structured audit logging service for OTP events.

    Never logs codes or full phone numbers.
    """

    @staticmethod
    def _log_audit_event(
        event_type: str,
        ctx: Optional[RequestContext] = None,
        phone: Optional[str] = None,
        outcome: Optional[str] = None,
        error: Optional[str] = None,
        **kwargs
    ):
        audit_data = {
            "event_type": event_type,
            "timestamp": utcnow().isoformat() + "Z",
            "outcome": outcome,
            "env": settings.ENV,
        }

        if phone:
            audit_data["phone_last4"] = get_phone_last4(phone)
        if ctx is not None:
            if ctx.request_id:
                audit_data["request_id"] = ctx.request_id
            if ctx.ip:
                audit_data["ip"] = ctx.ip
            if ctx.user_agent:
                audit_data["user_agent"] = ctx.user_agent
        if error:
            audit_data["error"] = error

        audit_data.update({k: v for k, v in kwargs.items() if v is not None})

        logger.info(f"[Auth][Audit] {json.dumps(audit_data, default=str)}")

    @staticmethod
    def log_otp_request_received(ctx: RequestContext, phone: str, flow: str):
        AuditService._log_audit_event("otp_request_received", ctx, phone, outcome="requested", flow=flow)

    @staticmethod
    def log_otp_sent(ctx: RequestContext, phone: str, flow: str, challenge_id: str):
        AuditService._log_audit_event(
            "otp_sent", ctx, phone, outcome="success", flow=flow, challenge_id=challenge_id
        )

    @staticmethod
    def log_otp_request_blocked(ctx: RequestContext, phone: str, flow: str, reason: str):
        """Log an admission-gate rejection (rate limit, cooldown, lock, daily cap, captcha)"""
        AuditService._log_audit_event(
            "otp_request_blocked", ctx, phone, outcome="blocked", flow=flow, error=reason
        )

    @staticmethod
    def log_otp_send_failed(ctx: RequestContext, phone: str, flow: str, error: Optional[str] = None):
        AuditService._log_audit_event("otp_send_failed", ctx, phone, outcome="fail", flow=flow, error=error)

    @staticmethod
    def log_otp_verify_success(ctx: RequestContext, phone: str, purpose: str, challenge_id: str):
        AuditService._log_audit_event(
            "otp_verify_success", ctx, phone, outcome="success", purpose=purpose, challenge_id=challenge_id
        )

    @staticmethod
    def log_otp_verify_fail(
        ctx: RequestContext,
        phone: str,
        purpose: str,
        reason: str,
        attempts: Optional[int] = None,
    ):
        """Log failed verification. The reason stays server-side; clients only see INVALID_CODE."""
        AuditService._log_audit_event(
            "otp_verify_fail", ctx, phone, outcome="fail", purpose=purpose, error=reason, attempts=attempts
        )

    @staticmethod
    def log_otp_locked(ctx: RequestContext, phone: str, challenge_id: str, locked_until):
        AuditService._log_audit_event(
            "otp_locked", ctx, phone, outcome="locked", challenge_id=challenge_id, locked_until=locked_until
        )

    @staticmethod
    def log_signup_rollback(ctx: RequestContext, phone: str, user_id: int):
        """Log the compensating delete after a lost phone-binding race"""
        AuditService._log_audit_event(
            "signup_rollback", ctx, phone, outcome="compensated", user_id=user_id
        )

    @staticmethod
    def log_phone_bound(ctx: RequestContext, phone: str, user_id: int):
        AuditService._log_audit_event("phone_bound", ctx, phone, outcome="success", user_id=user_id)
