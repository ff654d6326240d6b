"""
Tests for the OTP request admission pipeline
"""
from dataclasses import replace
from datetime import timedelta
from unittest.mock import patch

import pytest

from phoneauth.core.errors import (
    EmailAlreadyExistsError,
    InvalidPhoneError,
    OTPRateLimitedError,
    OTPSendFailedError,
    PhoneAlreadyExistsError,
    PhoneNotRegisteredError,
    SecurityCheckFailedError,
    ValidationFailedError,
)
from phoneauth.core.otp_codes import verify_otp_code
from phoneauth.models import OTPChallenge, OTPRequestLog
from phoneauth.services.auth.audit import RequestContext
from phoneauth.services.otp_flows import RequestOtpFlow
from conftest import REGISTERED_PHONE, RecordingSMSProvider, make_user

NEW_PHONE = "+15559876543"
CTX = RequestContext(ip="198.51.100.4", request_id="req-1")


def _flow(db, policy, sms, captcha, clock):
    return RequestOtpFlow(db, policy, sms, captcha, clock=clock)


def _challenges(db, phone):
    return db.query(OTPChallenge).filter(OTPChallenge.phone_e164 == phone).all()


def _logs(db, phone):
    return db.query(OTPRequestLog).filter(OTPRequestLog.phone_e164 == phone).all()


@pytest.mark.asyncio
async def test_login_request_issues_challenge_and_sends_code(db, policy, sms, captcha, clock, registered_user):
    flow = _flow(db, policy, sms, captcha, clock)

    await flow.request("+1 555 123 4567", flow="login", ctx=CTX)

    challenges = _challenges(db, REGISTERED_PHONE)
    assert len(challenges) == 1
    assert challenges[0].purpose == "login"
    assert len(sms.sent) == 1
    phone, code = sms.sent[0]
    assert phone == REGISTERED_PHONE
    assert verify_otp_code(code, challenges[0].code_hash)

    logs = _logs(db, REGISTERED_PHONE)
    assert [log.sent for log in logs] == [True]
    assert logs[0].ip_address == CTX.ip


@pytest.mark.asyncio
async def test_invalid_phone(db, policy, sms, captcha, clock):
    with pytest.raises(InvalidPhoneError):
        await _flow(db, policy, sms, captcha, clock).request("not-a-phone", ctx=CTX)
    assert sms.sent == []


@pytest.mark.asyncio
async def test_login_for_unregistered_phone_is_disclosed(db, policy, sms, captcha, clock):
    with pytest.raises(PhoneNotRegisteredError):
        await _flow(db, policy, sms, captcha, clock).request(NEW_PHONE, flow="login", ctx=CTX)
    assert _challenges(db, NEW_PHONE) == []


@pytest.mark.asyncio
async def test_authenticated_caller_skips_registration_check_and_captcha(db, sms, captcha, clock, policy):
    caller = make_user(db, email="caller@example.com")
    captcha_policy = replace(policy, captcha_secret="turnstile-secret")
    flow = _flow(db, captcha_policy, sms, captcha, clock)

    await flow.request(NEW_PHONE, flow="login", caller=caller, ctx=CTX)

    captcha.verify.assert_not_called()
    assert len(sms.sent) == 1


@pytest.mark.asyncio
async def test_signup_requires_email(db, policy, sms, captcha, clock):
    with pytest.raises(ValidationFailedError) as exc_info:
        await _flow(db, policy, sms, captcha, clock).request(NEW_PHONE, flow="signup", ctx=CTX)
    assert exc_info.value.code == "email is required for signup flow"


@pytest.mark.asyncio
async def test_signup_rejects_existing_email(db, policy, sms, captcha, clock, registered_user):
    with pytest.raises(EmailAlreadyExistsError):
        await _flow(db, policy, sms, captcha, clock).request(
            NEW_PHONE, flow="signup", email="OWNER@example.com", ctx=CTX
        )


@pytest.mark.asyncio
async def test_signup_rejects_bound_phone(db, policy, sms, captcha, clock, registered_user):
    with pytest.raises(PhoneAlreadyExistsError):
        await _flow(db, policy, sms, captcha, clock).request(
            REGISTERED_PHONE, flow="signup", email="new@example.com", ctx=CTX
        )


@pytest.mark.asyncio
async def test_captcha_failure(db, policy, sms, captcha, clock, registered_user):
    captcha.verify.return_value = False
    flow = _flow(db, replace(policy, captcha_secret="turnstile-secret"), sms, captcha, clock)

    with pytest.raises(SecurityCheckFailedError):
        await flow.request(REGISTERED_PHONE, captcha_token="bad-token", ctx=CTX)

    captcha.verify.assert_awaited_once_with("bad-token", CTX.ip)
    assert sms.sent == []


@pytest.mark.asyncio
async def test_captcha_not_engaged_without_secret(db, policy, sms, captcha, clock, registered_user):
    await _flow(db, policy, sms, captcha, clock).request(REGISTERED_PHONE, ctx=CTX)
    captcha.verify.assert_not_called()


@pytest.mark.asyncio
async def test_cooldown_blocks_second_send(db, policy, sms, captcha, clock, registered_user):
    """Two requests within 60 seconds create one challenge and send one SMS"""
    flow = _flow(db, policy, sms, captcha, clock)

    await flow.request(REGISTERED_PHONE, ctx=CTX)
    clock.advance(seconds=59)
    await flow.request(REGISTERED_PHONE, ctx=CTX)

    assert len(_challenges(db, REGISTERED_PHONE)) == 1
    assert len(sms.sent) == 1
    assert sorted(log.sent for log in _logs(db, REGISTERED_PHONE)) == [False, True]

    clock.advance(seconds=2)
    await flow.request(REGISTERED_PHONE, ctx=CTX)
    assert len(_challenges(db, REGISTERED_PHONE)) == 2
    assert len(sms.sent) == 2


@pytest.mark.asyncio
async def test_sequential_requests_leave_one_active_challenge(db, policy, sms, captcha, clock, registered_user):
    flow = _flow(db, replace(policy, phone_limit=100), sms, captcha, clock)

    for _ in range(3):
        await flow.request(REGISTERED_PHONE, ctx=CTX)
        clock.advance(seconds=61)

    now = clock()
    challenges = _challenges(db, REGISTERED_PHONE)
    assert len(challenges) == 3
    assert len([c for c in challenges if c.expires_at > now - timedelta(seconds=61)]) == 1


@pytest.mark.asyncio
async def test_locked_challenge_blocks_new_request(db, policy, sms, captcha, clock, registered_user):
    flow = _flow(db, policy, sms, captcha, clock)
    await flow.request(REGISTERED_PHONE, ctx=CTX)
    challenge = _challenges(db, REGISTERED_PHONE)[0]
    challenge.locked_until = clock() + timedelta(minutes=15)
    db.commit()

    clock.advance(minutes=2)
    await flow.request(REGISTERED_PHONE, ctx=CTX)

    assert len(_challenges(db, REGISTERED_PHONE)) == 1
    assert len(sms.sent) == 1


@pytest.mark.asyncio
async def test_rate_limited_login_returns_quietly(db, policy, sms, captcha, clock, registered_user):
    flow = _flow(db, replace(policy, phone_limit=1), sms, captcha, clock)
    await flow.request(REGISTERED_PHONE, ctx=CTX)
    clock.advance(seconds=61)

    await flow.request(REGISTERED_PHONE, ctx=CTX)

    assert len(sms.sent) == 1
    assert len(_challenges(db, REGISTERED_PHONE)) == 1


@pytest.mark.asyncio
async def test_rate_limited_signup_is_explicit(db, policy, sms, captcha, clock):
    flow = _flow(db, replace(policy, phone_limit=1), sms, captcha, clock)
    await flow.request(NEW_PHONE, flow="signup", email="new@example.com", ctx=CTX)
    clock.advance(seconds=61)

    with pytest.raises(OTPRateLimitedError):
        await flow.request(NEW_PHONE, flow="signup", email="new@example.com", ctx=CTX)
    assert len(sms.sent) == 1


@pytest.mark.asyncio
async def test_ip_and_phone_predicates_are_both_consulted(db, policy, sms, captcha, clock, registered_user):
    flow = _flow(db, policy, sms, captcha, clock)
    with patch.object(flow.rate_limiter, "is_ip_rate_limited", return_value=True) as ip_check, \
            patch.object(flow.rate_limiter, "is_phone_rate_limited", return_value=False) as phone_check:
        await flow.request(REGISTERED_PHONE, ctx=CTX)

    ip_check.assert_awaited_once_with(CTX.ip)
    phone_check.assert_awaited_once_with(REGISTERED_PHONE)
    assert sms.sent == []
    assert [log.sent for log in _logs(db, REGISTERED_PHONE)] == [False]


@pytest.mark.asyncio
async def test_daily_cap(db, policy, sms, captcha, clock, registered_user):
    flow = _flow(db, replace(policy, daily_cap=2, phone_limit=100), sms, captcha, clock)

    for _ in range(3):
        await flow.request(REGISTERED_PHONE, ctx=CTX)
        clock.advance(seconds=61)

    assert len(sms.sent) == 2
    assert len(_challenges(db, REGISTERED_PHONE)) == 2


@pytest.mark.asyncio
async def test_sms_failure_on_login_still_returns_ok(db, policy, captcha, clock, registered_user):
    failing = RecordingSMSProvider(succeed=False)

    await _flow(db, policy, failing, captcha, clock).request(REGISTERED_PHONE, ctx=CTX)

    assert len(failing.sent) == 1
    assert len(_challenges(db, REGISTERED_PHONE)) == 1
    assert [log.sent for log in _logs(db, REGISTERED_PHONE)] == [False]


@pytest.mark.asyncio
async def test_sms_failure_on_signup_is_explicit(db, policy, captcha, clock):
    failing = RecordingSMSProvider(succeed=False)

    with pytest.raises(OTPSendFailedError) as exc_info:
        await _flow(db, policy, failing, captcha, clock).request(
            NEW_PHONE, flow="signup", email="new@example.com", ctx=CTX
        )

    assert exc_info.value.status_code == 503
    assert len(_challenges(db, NEW_PHONE)) == 1


@pytest.mark.asyncio
async def test_sms_provider_exception_is_treated_as_failure(db, policy, sms, captcha, clock, registered_user):
    flow = _flow(db, policy, sms, captcha, clock)
    with patch.object(sms, "send_otp", side_effect=RuntimeError("gateway exploded")):
        await flow.request(REGISTERED_PHONE, ctx=CTX)

    assert [log.sent for log in _logs(db, REGISTERED_PHONE)] == [False]


@pytest.mark.asyncio
async def test_challenge_insert_failure(db, policy, sms, captcha, clock, registered_user):
    flow = _flow(db, policy, sms, captcha, clock)
    with patch.object(flow.store, "supersede_and_insert", side_effect=RuntimeError("insert failed")):
        await flow.request(REGISTERED_PHONE, ctx=CTX)
        with pytest.raises(OTPSendFailedError) as exc_info:
            await flow.request(NEW_PHONE, flow="signup", email="new@example.com", ctx=CTX)

    assert exc_info.value.status_code == 500
    assert sms.sent == []


@pytest.mark.asyncio
async def test_purpose_follows_flow(db, policy, sms, captcha, clock):
    caller = make_user(db, email="caller@example.com")
    await _flow(db, policy, sms, captcha, clock).request(NEW_PHONE, flow="verify_phone", caller=caller, ctx=CTX)
    assert _challenges(db, NEW_PHONE)[0].purpose == "verify_phone"


@pytest.mark.asyncio
async def test_fixed_purpose_when_scoping_disabled(db, policy, sms, captcha, clock):
    caller = make_user(db, email="caller@example.com")
    flow = _flow(db, replace(policy, scope_by_purpose=False), sms, captcha, clock)
    await flow.request(NEW_PHONE, flow="verify_phone", caller=caller, ctx=CTX)
    assert _challenges(db, NEW_PHONE)[0].purpose == "login"
