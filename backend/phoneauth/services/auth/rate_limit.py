"""
Admission gates for OTP requests.

Limits (defaults, see OTPPolicy):
- per IP: 10 requests / 10 min (requests without an IP are never limited)
- per phone: 3 requests / 15 min
- daily cap: 10 sent codes / 24 h per phone

Counts come from the otp_request_logs table. When a Redis client is
configured, fixed-window bucket counters are used instead so the hot
path does not scan the log table.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import redis
from sqlalchemy import func
from sqlalchemy.orm import Session

from ...core.config import settings, OTPPolicy
from ...models import OTPRequestLog
from ...models.otp_challenge import PURPOSE_LOGIN
from ...utils.clock import utcnow
from ...utils.phone import get_phone_last4

logger = logging.getLogger(__name__)

# Buckets outlive their window slightly so a late read still sees them
BUCKET_TTL_PADDING_SECONDS = 120


class RateLimitService:
    """
    Boolean predicates over the OTP request log.

    Backend errors are logged and treated as "not limited".
    """

    def __init__(
        self,
        db: Session,
        policy: OTPPolicy,
        redis_client: Optional["redis.Redis"] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.policy = policy
        self._redis = redis_client
        self._clock = clock

    # Redis bucket counters

    def _bucket_key(self, kind: str, key: str, window: timedelta, now: datetime) -> str:
        window_seconds = int(window.total_seconds())
        bucket = int(now.replace(tzinfo=timezone.utc).timestamp()) // window_seconds
        return f"otp:{kind}:{key}:{bucket}"

    def _redis_count(self, kind: str, key: str, window: timedelta, now: datetime) -> int:
        value = self._redis.get(self._bucket_key(kind, key, window, now))
        return int(value) if value else 0

    def _redis_increment(self, kind: str, key: str, window: timedelta, now: datetime):
        bucket_key = self._bucket_key(kind, key, window, now)
        pipe = self._redis.pipeline()
        pipe.incr(bucket_key)
        pipe.expire(bucket_key, int(window.total_seconds()) + BUCKET_TTL_PADDING_SECONDS)
        pipe.execute()

    # Database log counters

    def _db_count(self, window: timedelta, now: datetime, *criteria) -> int:
        return (
            self.db.query(func.count(OTPRequestLog.id))
            .filter(OTPRequestLog.created_at >= now - window, *criteria)
            .scalar()
            or 0
        )

    # Predicates

    async def is_ip_rate_limited(self, ip: Optional[str]) -> bool:
        if not ip:
            return False
        now = self._clock()
        try:
            if self._redis is not None:
                count = self._redis_count("ip", ip, self.policy.ip_window, now)
            else:
                count = self._db_count(self.policy.ip_window, now, OTPRequestLog.ip_address == ip)
        except Exception as e:
            logger.warning(f"[RateLimit] IP count failed, treating as not limited: {e}")
            return False
        return count >= self.policy.ip_limit

    async def is_phone_rate_limited(self, phone: str) -> bool:
        now = self._clock()
        try:
            if self._redis is not None:
                count = self._redis_count("phone", phone, self.policy.phone_window, now)
            else:
                count = self._db_count(self.policy.phone_window, now, OTPRequestLog.phone_e164 == phone)
        except Exception as e:
            logger.warning(
                f"[RateLimit] Phone count failed for ***{get_phone_last4(phone)}, treating as not limited: {e}"
            )
            return False
        return count >= self.policy.phone_limit

    async def is_phone_daily_cap_reached(self, phone: str) -> bool:
        """Only codes that were actually sent count toward the daily cap."""
        now = self._clock()
        try:
            if self._redis is not None:
                count = self._redis_count("phone_sent", phone, self.policy.daily_window, now)
            else:
                count = self._db_count(
                    self.policy.daily_window,
                    now,
                    OTPRequestLog.phone_e164 == phone,
                    OTPRequestLog.sent.is_(True),
                )
        except Exception as e:
            logger.warning(
                f"[RateLimit] Daily cap count failed for ***{get_phone_last4(phone)}, treating as not reached: {e}"
            )
            return False
        return count >= self.policy.daily_cap

    async def log_otp_request(
        self,
        phone: str,
        ip: Optional[str],
        sent: bool,
        purpose: str = PURPOSE_LOGIN,
    ) -> None:
        """Record one OTP request. Failures are logged, never raised."""
        now = self._clock()
        if self._redis is not None:
            try:
                if ip:
                    self._redis_increment("ip", ip, self.policy.ip_window, now)
                self._redis_increment("phone", phone, self.policy.phone_window, now)
                if sent:
                    self._redis_increment("phone_sent", phone, self.policy.daily_window, now)
            except Exception as e:
                logger.warning(f"[RateLimit] Redis increment failed: {e}")

        try:
            self.db.add(
                OTPRequestLog(
                    phone_e164=phone,
                    purpose=purpose,
                    ip_address=ip,
                    sent=sent,
                    created_at=now,
                )
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"[RateLimit] Failed to write OTP request log: {e}", exc_info=True)


_redis_client: Optional["redis.Redis"] = None


def get_redis_client() -> Optional["redis.Redis"]:
    """Shared Redis client for rate-limit counters, or None when REDIS_URL is unset."""
    global _redis_client
    if _redis_client is None and settings.REDIS_URL:
        try:
            client = redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
            )
            client.ping()
            _redis_client = client
            logger.info("[RateLimit] Redis counters enabled")
        except redis.RedisError as e:
            logger.warning(f"[RateLimit] Redis unavailable, using database log: {e}")
    return _redis_client
