"""
Tests for OTP admission gates (database log and Redis counters)
"""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
import redis

from phoneauth.models import OTPRequestLog
from phoneauth.services.auth.rate_limit import RateLimitService

PHONE = "+15551234567"
IP = "203.0.113.7"


def _log(db, clock, count, phone=PHONE, ip=IP, sent=False, age=timedelta(0)):
    for _ in range(count):
        db.add(OTPRequestLog(phone_e164=phone, ip_address=ip, sent=sent, purpose="login", created_at=clock() - age))
    db.commit()


@pytest.mark.asyncio
async def test_ip_limit(db, clock, policy):
    limiter = RateLimitService(db, policy, clock=clock)
    _log(db, clock, 9, phone="+15550000001")
    assert await limiter.is_ip_rate_limited(IP) is False

    _log(db, clock, 1, phone="+15550000002")
    assert await limiter.is_ip_rate_limited(IP) is True


@pytest.mark.asyncio
async def test_missing_ip_is_never_limited(db, clock, policy):
    limiter = RateLimitService(db, policy, clock=clock)
    _log(db, clock, 50, ip=None)
    assert await limiter.is_ip_rate_limited(None) is False
    assert await limiter.is_ip_rate_limited("") is False


@pytest.mark.asyncio
async def test_phone_limit_window(db, clock, policy):
    limiter = RateLimitService(db, policy, clock=clock)
    _log(db, clock, 3, age=timedelta(minutes=16))
    assert await limiter.is_phone_rate_limited(PHONE) is False

    _log(db, clock, 3)
    assert await limiter.is_phone_rate_limited(PHONE) is True

    clock.advance(minutes=16)
    assert await limiter.is_phone_rate_limited(PHONE) is False


@pytest.mark.asyncio
async def test_daily_cap_counts_only_sent(db, clock, policy):
    limiter = RateLimitService(db, policy, clock=clock)
    _log(db, clock, 20, sent=False, age=timedelta(hours=1))
    assert await limiter.is_phone_daily_cap_reached(PHONE) is False

    _log(db, clock, 9, sent=True, age=timedelta(hours=2))
    assert await limiter.is_phone_daily_cap_reached(PHONE) is False

    _log(db, clock, 1, sent=True, age=timedelta(hours=23))
    assert await limiter.is_phone_daily_cap_reached(PHONE) is True

    clock.advance(hours=2)
    assert await limiter.is_phone_daily_cap_reached(PHONE) is False


@pytest.mark.asyncio
async def test_log_otp_request_writes_row(db, clock, policy):
    limiter = RateLimitService(db, policy, clock=clock)
    await limiter.log_otp_request(PHONE, IP, sent=True, purpose="signup")

    row = db.query(OTPRequestLog).filter(OTPRequestLog.phone_e164 == PHONE).one()
    assert row.sent is True
    assert row.ip_address == IP
    assert row.purpose == "signup"
    assert row.created_at == clock()


@pytest.mark.asyncio
async def test_store_errors_degrade_to_not_limited(policy, clock):
    broken_db = MagicMock()
    broken_db.query.side_effect = RuntimeError("database down")
    limiter = RateLimitService(broken_db, policy, clock=clock)

    assert await limiter.is_ip_rate_limited(IP) is False
    assert await limiter.is_phone_rate_limited(PHONE) is False
    assert await limiter.is_phone_daily_cap_reached(PHONE) is False


class TestRedisCounters:
    def _limiter(self, db, policy, clock, counts=None):
        client = MagicMock()
        counts = counts or {}

        def fake_get(key):
            kind = key.split(":")[1]
            return counts.get(kind)

        client.get.side_effect = fake_get
        return RateLimitService(db, policy, redis_client=client, clock=clock), client

    @pytest.mark.asyncio
    async def test_reads_bucket_counts(self, db, policy, clock):
        limiter, _ = self._limiter(db, policy, clock, {"ip": "10", "phone": "2", "phone_sent": "10"})

        assert await limiter.is_ip_rate_limited(IP) is True
        assert await limiter.is_phone_rate_limited(PHONE) is False
        assert await limiter.is_phone_daily_cap_reached(PHONE) is True

    @pytest.mark.asyncio
    async def test_bucket_key_format(self, db, policy, clock):
        limiter, client = self._limiter(db, policy, clock)
        await limiter.is_phone_rate_limited(PHONE)

        key = client.get.call_args[0][0]
        prefix, kind, phone, bucket = key.split(":")
        assert (prefix, kind, phone) == ("otp", "phone", PHONE)
        assert bucket.isdigit()

    @pytest.mark.asyncio
    async def test_log_increments_buckets_with_padded_ttl(self, db, policy, clock):
        limiter, client = self._limiter(db, policy, clock)
        pipe = client.pipeline.return_value

        await limiter.log_otp_request(PHONE, IP, sent=True)

        incremented = [call[0][0].split(":")[1] for call in pipe.incr.call_args_list]
        assert incremented == ["ip", "phone", "phone_sent"]
        ttls = [call[0][1] for call in pipe.expire.call_args_list]
        assert ttls == [600 + 120, 900 + 120, 86400 + 120]
        # the database log is still written
        assert db.query(OTPRequestLog).filter(OTPRequestLog.phone_e164 == PHONE).count() == 1

    @pytest.mark.asyncio
    async def test_unsent_request_does_not_touch_daily_bucket(self, db, policy, clock):
        limiter, client = self._limiter(db, policy, clock)
        pipe = client.pipeline.return_value

        await limiter.log_otp_request(PHONE, None, sent=False)

        incremented = [call[0][0].split(":")[1] for call in pipe.incr.call_args_list]
        assert incremented == ["phone"]

    @pytest.mark.asyncio
    async def test_redis_errors_degrade_to_not_limited(self, db, policy, clock):
        limiter, client = self._limiter(db, policy, clock)
        client.get.side_effect = redis.ConnectionError("redis down")

        assert await limiter.is_phone_rate_limited(PHONE) is False
        assert await limiter.is_ip_rate_limited(IP) is False
