"""
Phone OTP authentication router

Implements OTP request/verify, signup with OTP, phone status and
binding a verified phone to the current account.
"""
import logging
import re
from typing import Annotated, Literal, Optional

from email_validator import validate_email, EmailNotValidError
from fastapi import APIRouter, Depends
from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from ..core.errors import InvalidCodeError, OTPError, OTPSendFailedError, SignupFailedError
from ..core.sentry import capture_exception
from ..models import User
from ..services.auth.audit import RequestContext
from ..services.otp_flows import RequestOtpFlow, VerifyOtpFlow, FLOW_SIGNUP
from ..dependencies.auth import (
    get_optional_user,
    get_request_context,
    get_request_otp_flow,
    get_verify_otp_flow,
    require_user,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/auth", tags=["auth"])

OTP_CODE_PATTERN = re.compile(r"^[0-9]{6}$")


# ============================================
# Request/Response Models
# ============================================

def _require_phone(value: str) -> str:
    if not value or not value.strip():
        raise ValueError("phone is required")
    return value


def _require_code(value: str) -> str:
    if not OTP_CODE_PATTERN.match(value or ""):
        raise ValueError("code must be 6 digits")
    return value


def _require_email(value: str) -> str:
    try:
        return validate_email(value.strip(), check_deliverability=False).normalized
    except EmailNotValidError:
        raise ValueError("email is required")


def _require_password(value: str) -> str:
    if len(value) < 6:
        raise ValueError("password must be at least 6 chars")
    return value


def _require_full_name(value: str) -> str:
    value = value.strip()
    if len(value) < 2:
        raise ValueError("full_name is required")
    if len(value) > 120:
        raise ValueError("full_name must be at most 120 chars")
    return value


PhoneField = Annotated[str, AfterValidator(_require_phone)]
CodeField = Annotated[str, AfterValidator(_require_code)]
EmailField = Annotated[str, AfterValidator(_require_email)]


class OTPRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone: PhoneField
    turnstile_token: Optional[str] = Field(default=None, alias="turnstileToken")
    flow: Optional[Literal["login", "signup", "verify_phone"]] = None
    email: Optional[EmailField] = None


class OTPVerifyRequest(BaseModel):
    phone: PhoneField
    code: CodeField


class SignupWithOTPRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: EmailField
    password: Annotated[str, AfterValidator(_require_password)]
    full_name: Annotated[str, AfterValidator(_require_full_name)] = Field(alias="fullName")
    phone: PhoneField
    code: CodeField


class PhoneVerifyRequest(BaseModel):
    phone: PhoneField
    code: CodeField


class OKResponse(BaseModel):
    ok: bool = True


class PhoneStatusResponse(BaseModel):
    hasPhone: bool
    phoneE164: Optional[str] = None
    phoneRequired: bool


# ============================================
# Endpoints
# ============================================

@router.post("/otp/request", response_model=OKResponse)
async def otp_request(
    payload: OTPRequest,
    ctx: RequestContext = Depends(get_request_context),
    caller: Optional[User] = Depends(get_optional_user),
    flow: RequestOtpFlow = Depends(get_request_otp_flow),
):
    """
    Send an OTP code to a phone.

    Login and verify_phone callers get {ok: true} for every admission
    failure; signup callers get explicit 429/503 errors.
    """
    try:
        await flow.request(
            phone=payload.phone,
            flow=payload.flow or "login",
            email=payload.email,
            captcha_token=payload.turnstile_token,
            caller=caller,
            ctx=ctx,
        )
    except OTPError:
        raise
    except Exception as e:
        logger.error(f"[Auth][OTP] OTP request failed: {str(e)}", exc_info=True)
        capture_exception(e, {"endpoint": "otp_request"})
        if payload.flow == FLOW_SIGNUP:
            raise OTPSendFailedError(status_code=500)
    return OKResponse()


@router.post("/otp/verify")
async def otp_verify(
    payload: OTPVerifyRequest,
    ctx: RequestContext = Depends(get_request_context),
    flow: VerifyOtpFlow = Depends(get_verify_otp_flow),
):
    """Verify a login code and return a session for the phone's owner."""
    try:
        return flow.login(payload.phone, payload.code, ctx)
    except OTPError:
        raise
    except Exception as e:
        logger.error(f"[Auth][OTP] otp verify failed: {str(e)}", exc_info=True)
        capture_exception(e, {"endpoint": "otp_verify"})
        raise InvalidCodeError()


@router.post("/signup-with-otp")
async def signup_with_otp(
    payload: SignupWithOTPRequest,
    ctx: RequestContext = Depends(get_request_context),
    flow: VerifyOtpFlow = Depends(get_verify_otp_flow),
):
    """Create an account whose phone is proven by an OTP code."""
    try:
        return flow.signup(
            email=payload.email,
            password=payload.password,
            full_name=payload.full_name,
            phone=payload.phone,
            code=payload.code,
            ctx=ctx,
        )
    except OTPError:
        raise
    except Exception as e:
        logger.error(f"[Auth][OTP] signup-with-otp failed: {str(e)}", exc_info=True)
        capture_exception(e, {"endpoint": "signup_with_otp"})
        raise SignupFailedError()


@router.get("/phone-status", response_model=PhoneStatusResponse)
async def phone_status(user: User = Depends(require_user)):
    phone = user.profile.phone_e164 if user.profile else None
    return PhoneStatusResponse(hasPhone=bool(phone), phoneE164=phone, phoneRequired=not phone)


@router.post("/phone/verify")
async def verify_my_phone(
    payload: PhoneVerifyRequest,
    ctx: RequestContext = Depends(get_request_context),
    user: User = Depends(require_user),
    flow: VerifyOtpFlow = Depends(get_verify_otp_flow),
):
    """Bind a verified phone to the current account."""
    try:
        return flow.bind_phone(user, payload.phone, payload.code, ctx)
    except OTPError:
        raise
    except Exception as e:
        logger.error(f"[Auth][OTP] phone verify failed for user {user.id}: {str(e)}", exc_info=True)
        capture_exception(e, {"endpoint": "phone_verify"})
        raise InvalidCodeError()
