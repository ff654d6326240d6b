"""
Authentication and flow dependencies
"""
import logging
from typing import Optional

from fastapi import Depends, Request
from jose import JWTError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.errors import UnauthorizedError
from ..core.security import decode_access_token
from ..db import get_db
from ..models import User
from ..services.auth.audit import RequestContext
from ..services.auth.rate_limit import RateLimitService, get_redis_client
from ..services.auth.sms_factory import get_sms_provider
from ..services.auth.sms_provider import SMSProvider
from ..services.auth.turnstile import TurnstileVerifier, get_turnstile_verifier
from ..services.identity import IdentityService
from ..services.otp_flows import RequestOtpFlow, VerifyOtpFlow

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> Optional[str]:
    """Client IP from X-Forwarded-For (first entry), then X-Real-IP, then the socket."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return request.client.host if request.client else None


def get_request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip=get_client_ip(request),
        request_id=getattr(request.state, "request_id", None),
        user_agent=request.headers.get("user-agent"),
    )


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization") or ""
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_optional_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    """
    Resolve the caller from a bearer token, best effort.

    A missing, invalid or expired token yields None rather than an error.
    """
    token = _bearer_token(request)
    if not token:
        return None
    try:
        payload = decode_access_token(token)
    except JWTError as e:
        logger.debug(f"[Auth] Ignoring invalid bearer token: {e}")
        return None
    subject = payload.get("sub")
    if not subject:
        return None
    user = IdentityService(db).get_by_public_id(subject)
    if user is None or not user.is_active:
        return None
    return user


def require_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if user is None:
        raise UnauthorizedError()
    return user


def get_sms_sender() -> SMSProvider:
    return get_sms_provider()


def get_captcha_verifier() -> TurnstileVerifier:
    return get_turnstile_verifier()


def get_rate_limiter(db: Session = Depends(get_db)) -> RateLimitService:
    return RateLimitService(db, settings.otp_policy(), redis_client=get_redis_client())


def get_request_otp_flow(
    db: Session = Depends(get_db),
    sms: SMSProvider = Depends(get_sms_sender),
    captcha: TurnstileVerifier = Depends(get_captcha_verifier),
    rate_limiter: RateLimitService = Depends(get_rate_limiter),
) -> RequestOtpFlow:
    return RequestOtpFlow(db, settings.otp_policy(), sms, captcha, rate_limiter)


def get_verify_otp_flow(db: Session = Depends(get_db)) -> VerifyOtpFlow:
    return VerifyOtpFlow(db, settings.otp_policy())
