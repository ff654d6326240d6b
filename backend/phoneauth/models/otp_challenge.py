"""
OTP challenge and request-log models.

A challenge row is never deleted: expiring or consuming it sets
expires_at to the current time so it stays as an audit trail.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Index
from ..db import Base
from ..core.uuid_type import UUIDType, generate_uuid
from ..utils.clock import utcnow

PURPOSE_LOGIN = "login"
PURPOSE_SIGNUP = "signup"
PURPOSE_VERIFY_PHONE = "verify_phone"


class OTPChallenge(Base):
    __tablename__ = "otp_challenges"

    id = Column(UUIDType(), primary_key=True, default=generate_uuid)
    phone_e164 = Column(String(20), nullable=False, index=True)
    purpose = Column(String(32), nullable=False, default=PURPOSE_LOGIN)
    code_hash = Column(String(128), nullable=False)  # HMAC-SHA256 hex, never the raw code
    expires_at = Column(DateTime, nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    last_sent_at = Column(DateTime, nullable=False, default=utcnow)
    locked_until = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_otp_challenges_phone_purpose_created", "phone_e164", "purpose", "created_at"),
    )

    def is_active(self, now) -> bool:
        return self.expires_at > now

    def is_locked(self, now) -> bool:
        return self.locked_until is not None and self.locked_until > now


class OTPRequestLog(Base):
    """One row per OTP request, sent or not. Backs the rate-limit windows."""
    __tablename__ = "otp_request_logs"

    id = Column(UUIDType(), primary_key=True, default=generate_uuid)
    phone_e164 = Column(String(20), nullable=False)
    purpose = Column(String(32), nullable=False, default=PURPOSE_LOGIN)
    ip_address = Column(String(64), nullable=True)
    sent = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_otp_request_logs_phone_created", "phone_e164", "created_at"),
        Index("ix_otp_request_logs_ip_created", "ip_address", "created_at"),
    )
