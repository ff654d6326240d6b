"""
OTP request and verification flows.

RequestOtpFlow runs the admission pipeline and issues a challenge.
VerifyOtpFlow owns the challenge state machine; login, signup and
phone binding all go through VerifyOtpFlow.verify_challenge.

Disclosure policy: admission failures (captcha aside) are answered with
a plain ok on the login and verify_phone flows and with explicit 429/503
on signup. Every verification failure surfaces as INVALID_CODE.
"""
import asyncio
import enum
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..core.config import OTPPolicy
from ..core.errors import (
    EmailAlreadyExistsError,
    InvalidCodeError,
    InvalidPhoneError,
    OTPRateLimitedError,
    OTPSendFailedError,
    PhoneAlreadyBound,
    PhoneAlreadyExistsError,
    PhoneMismatchError,
    PhoneNotRegisteredError,
    SecurityCheckFailedError,
    SignupFailedError,
    ValidationFailedError,
)
from ..core.otp_codes import generate_otp_code, hash_otp_code, verify_otp_code
from ..core.sentry import capture_exception
from ..models import User
from ..models.otp_challenge import PURPOSE_LOGIN, PURPOSE_SIGNUP, PURPOSE_VERIFY_PHONE
from ..utils.clock import utcnow
from ..utils.phone import normalize_phone, get_phone_last4
from .auth.audit import AuditService, RequestContext
from .auth.challenge_store import ChallengeStore
from .auth.rate_limit import RateLimitService
from .auth.sms_provider import SMSProvider
from .auth.turnstile import TurnstileVerifier
from .identity import IdentityService
from .session_issuer import SessionIssuer, serialize_user

logger = logging.getLogger(__name__)

FLOW_LOGIN = "login"
FLOW_SIGNUP = "signup"
FLOW_VERIFY_PHONE = "verify_phone"

FLOW_PURPOSES = {
    FLOW_LOGIN: PURPOSE_LOGIN,
    FLOW_SIGNUP: PURPOSE_SIGNUP,
    FLOW_VERIFY_PHONE: PURPOSE_VERIFY_PHONE,
}


def purpose_for_flow(flow: str, policy: OTPPolicy) -> str:
    if not policy.scope_by_purpose:
        return PURPOSE_LOGIN
    return FLOW_PURPOSES[flow]


class ChallengeOutcome(str, enum.Enum):
    CONSUMED = "consumed"
    WRONG_CODE = "wrong_code"
    EXPIRED = "expired"
    LOCKED = "locked"
    NOT_FOUND = "not_found"


class RequestOtpFlow:
    def __init__(
        self,
        db: Session,
        policy: OTPPolicy,
        sms: SMSProvider,
        captcha: TurnstileVerifier,
        rate_limiter: Optional[RateLimitService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.policy = policy
        self.sms = sms
        self.captcha = captcha
        self.clock = clock
        self.store = ChallengeStore(db)
        self.identity = IdentityService(db)
        self.rate_limiter = rate_limiter or RateLimitService(db, policy, clock=clock)

    async def request(
        self,
        phone: str,
        flow: str = FLOW_LOGIN,
        email: Optional[str] = None,
        captcha_token: Optional[str] = None,
        caller: Optional[User] = None,
        ctx: Optional[RequestContext] = None,
    ) -> None:
        """
        Issue a code to a phone if every admission gate passes.

        Returns normally for the plain {ok: true} response, including the
        silent admission failures of the login and verify_phone flows.

        Raises:
            OTPError subclasses for the failures the flow discloses
        """
        ctx = ctx or RequestContext()
        flow = flow or FLOW_LOGIN

        try:
            phone_e164 = normalize_phone(phone)
        except ValueError:
            raise InvalidPhoneError()

        purpose = purpose_for_flow(flow, self.policy)
        AuditService.log_otp_request_received(ctx, phone_e164, flow)

        if flow == FLOW_LOGIN and caller is None:
            if not self.identity.phone_is_bound(phone_e164):
                raise PhoneNotRegisteredError()

        if flow == FLOW_SIGNUP:
            if not email:
                raise ValidationFailedError("email is required for signup flow")
            if self.identity.email_exists(email):
                raise EmailAlreadyExistsError()
            if self.identity.phone_is_bound(phone_e164):
                raise PhoneAlreadyExistsError()

        if self.policy.captcha_secret and caller is None:
            if not await self.captcha.verify(captcha_token, ctx.ip):
                AuditService.log_otp_request_blocked(ctx, phone_e164, flow, "captcha")
                raise SecurityCheckFailedError()

        ip_limited, phone_limited = await asyncio.gather(
            self.rate_limiter.is_ip_rate_limited(ctx.ip),
            self.rate_limiter.is_phone_rate_limited(phone_e164),
        )
        if ip_limited or phone_limited:
            return await self._deny(ctx, phone_e164, flow, purpose, "ip_rate" if ip_limited else "phone_rate")

        now = self.clock()
        latest = self.store.latest_for_phone(phone_e164)
        if latest is not None:
            if latest.is_locked(now):
                return await self._deny(ctx, phone_e164, flow, purpose, "locked")
            if now - latest.last_sent_at < self.policy.resend_cooldown:
                return await self._deny(ctx, phone_e164, flow, purpose, "cooldown")

        if await self.rate_limiter.is_phone_daily_cap_reached(phone_e164):
            return await self._deny(ctx, phone_e164, flow, purpose, "daily_cap")

        code = generate_otp_code()
        try:
            challenge = self.store.supersede_and_insert(
                phone_e164, purpose, hash_otp_code(code), now, self.policy.otp_ttl
            )
        except Exception as e:
            logger.error(f"[OTP] Failed to insert challenge for ***{get_phone_last4(phone_e164)}: {e}", exc_info=True)
            capture_exception(e, {"flow": flow})
            await self.rate_limiter.log_otp_request(phone_e164, ctx.ip, sent=False, purpose=purpose)
            if flow == FLOW_SIGNUP:
                raise OTPSendFailedError(status_code=500)
            return

        try:
            delivered = await self.sms.send_otp(phone_e164, code)
        except Exception as e:
            logger.error(f"[OTP] SMS provider raised for ***{get_phone_last4(phone_e164)}: {e}", exc_info=True)
            capture_exception(e, {"flow": flow})
            delivered = False

        await self.rate_limiter.log_otp_request(phone_e164, ctx.ip, sent=delivered, purpose=purpose)

        if not delivered:
            AuditService.log_otp_send_failed(ctx, phone_e164, flow)
            if flow == FLOW_SIGNUP:
                raise OTPSendFailedError()
            return

        AuditService.log_otp_sent(ctx, phone_e164, flow, challenge.id)

    async def _deny(self, ctx: RequestContext, phone: str, flow: str, purpose: str, reason: str) -> None:
        await self.rate_limiter.log_otp_request(phone, ctx.ip, sent=False, purpose=purpose)
        AuditService.log_otp_request_blocked(ctx, phone, flow, reason)
        if flow == FLOW_SIGNUP:
            raise OTPRateLimitedError()


class VerifyOtpFlow:
    def __init__(
        self,
        db: Session,
        policy: OTPPolicy,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.policy = policy
        self.clock = clock
        self.store = ChallengeStore(db)
        self.identity = IdentityService(db)
        self.sessions = SessionIssuer(db)

    def verify_challenge(
        self,
        phone_e164: str,
        code: str,
        purpose: str,
        ctx: Optional[RequestContext] = None,
        before_consume: Optional[Callable[[], None]] = None,
    ) -> ChallengeOutcome:
        """
        Run the challenge state machine for one submitted code.

        Checks, in order: challenge exists, not expired, not locked,
        attempts below the maximum, code matches. A wrong code bumps
        attempts and locks at the maximum; a request arriving at the
        maximum re-stamps the lock. before_consume runs after a matching
        code and may raise to leave the challenge unconsumed.
        """
        ctx = ctx or RequestContext()
        now = self.clock()
        challenge = self.store.latest_for_phone(phone_e164, purpose)

        if challenge is None:
            AuditService.log_otp_verify_fail(ctx, phone_e164, purpose, "not_found")
            return ChallengeOutcome.NOT_FOUND

        if challenge.expires_at <= now:
            AuditService.log_otp_verify_fail(ctx, phone_e164, purpose, "expired")
            return ChallengeOutcome.EXPIRED

        if challenge.is_locked(now):
            AuditService.log_otp_verify_fail(ctx, phone_e164, purpose, "locked", challenge.attempts)
            return ChallengeOutcome.LOCKED

        if challenge.attempts >= self.policy.max_attempts:
            locked_until = now + self.policy.lockout_duration
            self.store.relock(challenge.id, locked_until)
            AuditService.log_otp_locked(ctx, phone_e164, challenge.id, locked_until)
            return ChallengeOutcome.LOCKED

        if not verify_otp_code(code, challenge.code_hash):
            locked_until = now + self.policy.lockout_duration
            attempts = self.store.register_failed_attempt(
                challenge.id, self.policy.max_attempts, locked_until
            )
            AuditService.log_otp_verify_fail(ctx, phone_e164, purpose, "wrong_code", attempts)
            if attempts >= self.policy.max_attempts:
                AuditService.log_otp_locked(ctx, phone_e164, challenge.id, locked_until)
            return ChallengeOutcome.WRONG_CODE

        if before_consume is not None:
            before_consume()

        if not self.store.consume(challenge.id, now):
            AuditService.log_otp_verify_fail(ctx, phone_e164, purpose, "consumed_concurrently")
            return ChallengeOutcome.EXPIRED

        AuditService.log_otp_verify_success(ctx, phone_e164, purpose, challenge.id)
        return ChallengeOutcome.CONSUMED

    def _normalize_or_invalid(self, phone: str) -> str:
        try:
            return normalize_phone(phone)
        except ValueError:
            raise InvalidCodeError()

    def login(self, phone: str, code: str, ctx: Optional[RequestContext] = None) -> Dict[str, Any]:
        """Verify a login code and mint a session for the phone's owner."""
        phone_e164 = self._normalize_or_invalid(phone)
        purpose = purpose_for_flow(FLOW_LOGIN, self.policy)

        if self.verify_challenge(phone_e164, code, purpose, ctx) != ChallengeOutcome.CONSUMED:
            raise InvalidCodeError()

        try:
            user = self.identity.resolve_owner_by_phone(phone_e164)
            if user is None:
                logger.info(f"[OTP] Verified phone ***{get_phone_last4(phone_e164)} has no owner")
                raise InvalidCodeError()
            session = self.sessions.issue(user)
        except InvalidCodeError:
            raise
        except Exception as e:
            # Do not reveal that the code itself was correct
            logger.error(f"[OTP] Session issuance failed after verification: {e}", exc_info=True)
            capture_exception(e, {"flow": FLOW_LOGIN})
            raise InvalidCodeError()

        return {"ok": True, "user": serialize_user(user), "session": session, "phoneRequired": False}

    def signup(
        self,
        email: str,
        password: str,
        full_name: str,
        phone: str,
        code: str,
        ctx: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        """
        Verify a signup code, create the identity and bind the phone.

        If the bind loses a race on the phone unique constraint the new
        identity is deleted again and PHONE_ALREADY_EXISTS is raised.
        """
        ctx = ctx or RequestContext()
        phone_e164 = self._normalize_or_invalid(phone)
        purpose = purpose_for_flow(FLOW_SIGNUP, self.policy)

        if self.verify_challenge(phone_e164, code, purpose, ctx) != ChallengeOutcome.CONSUMED:
            raise InvalidCodeError()

        # Fast fail only; the unique constraint on bind is authoritative
        if self.identity.email_exists(email):
            raise EmailAlreadyExistsError()
        if self.identity.phone_is_bound(phone_e164):
            raise PhoneAlreadyExistsError()

        try:
            user = self.identity.create_identity(email, password, full_name)
        except Exception as e:
            logger.error(f"[OTP] Signup identity creation failed: {e}", exc_info=True)
            capture_exception(e, {"flow": FLOW_SIGNUP})
            raise SignupFailedError()

        try:
            self.identity.bind_phone(user, phone_e164, self.clock())
        except PhoneAlreadyBound:
            user_id = user.id
            self.identity.delete_identity(user)
            AuditService.log_signup_rollback(ctx, phone_e164, user_id)
            raise PhoneAlreadyExistsError()
        except Exception as e:
            logger.error(f"[OTP] Signup phone binding failed: {e}", exc_info=True)
            capture_exception(e, {"flow": FLOW_SIGNUP})
            raise SignupFailedError()

        AuditService.log_phone_bound(ctx, phone_e164, user.id)
        session = self.sessions.issue(user, auth_provider="password")
        return {"ok": True, "user": serialize_user(user), "session": session, "phoneRequired": False}

    def bind_phone(
        self,
        user: User,
        phone: str,
        code: str,
        ctx: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        """
        Verify a code and bind the phone to an authenticated user's profile.

        A user who already has a different phone gets PHONE_MISMATCH and
        the challenge stays unconsumed.
        """
        ctx = ctx or RequestContext()
        phone_e164 = self._normalize_or_invalid(phone)
        purpose = purpose_for_flow(FLOW_VERIFY_PHONE, self.policy)

        def ensure_no_mismatch():
            current = user.profile.phone_e164 if user.profile else None
            if current and current != phone_e164:
                raise PhoneMismatchError()

        if self.verify_challenge(phone_e164, code, purpose, ctx, before_consume=ensure_no_mismatch) != ChallengeOutcome.CONSUMED:
            raise InvalidCodeError()

        try:
            self.identity.bind_phone(user, phone_e164, self.clock())
        except PhoneAlreadyBound:
            raise PhoneAlreadyExistsError()

        AuditService.log_phone_bound(ctx, phone_e164, user.id)
        return {"ok": True, "phoneE164": phone_e164, "phoneRequired": False}
