from pydantic import BaseModel
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional


@dataclass(frozen=True)
class OTPPolicy:
    """
    Thresholds for the OTP challenge lifecycle and admission gates.

    Built once from Settings and passed into the flows, so every
    threshold can be pinned in tests without touching the environment.
    """
    otp_ttl: timedelta = timedelta(minutes=5)
    resend_cooldown: timedelta = timedelta(seconds=60)
    max_attempts: int = 5
    lockout_duration: timedelta = timedelta(minutes=15)
    daily_cap: int = 10
    captcha_secret: Optional[str] = None
    ip_limit: int = 10
    ip_window: timedelta = timedelta(minutes=10)
    phone_limit: int = 3
    phone_window: timedelta = timedelta(minutes=15)
    daily_window: timedelta = timedelta(hours=24)
    scope_by_purpose: bool = True


class Settings(BaseModel):
    ENV: str = os.getenv("ENV", "dev")  # dev, staging, prod
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./phoneauth.db")

    # JWT
    JWT_SECRET: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
    SECRET_KEY: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
    REFRESH_TOKEN_EXPIRE_DAYS: int = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "30"))

    # OTP challenge policy
    OTP_SECRET: str = os.getenv("OTP_SECRET", "")
    OTP_TTL_SECONDS: int = int(os.getenv("OTP_TTL_SECONDS", "300"))
    OTP_RESEND_COOLDOWN_SECONDS: int = int(os.getenv("OTP_RESEND_COOLDOWN_SECONDS", "60"))
    OTP_MAX_ATTEMPTS: int = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))
    OTP_LOCKOUT_SECONDS: int = int(os.getenv("OTP_LOCKOUT_SECONDS", "900"))
    OTP_DAILY_CAP: int = int(os.getenv("OTP_DAILY_CAP", "10"))
    OTP_IP_LIMIT: int = int(os.getenv("OTP_IP_LIMIT", "10"))
    OTP_IP_WINDOW_SECONDS: int = int(os.getenv("OTP_IP_WINDOW_SECONDS", "600"))
    OTP_PHONE_LIMIT: int = int(os.getenv("OTP_PHONE_LIMIT", "3"))
    OTP_PHONE_WINDOW_SECONDS: int = int(os.getenv("OTP_PHONE_WINDOW_SECONDS", "900"))
    # false stores every challenge under the "login" purpose
    OTP_SCOPE_BY_PURPOSE: bool = os.getenv("OTP_SCOPE_BY_PURPOSE", "true").lower() == "true"
    OTP_SMS_BRAND: str = os.getenv("OTP_SMS_BRAND", "Stockly")
    PHONE_DEFAULT_REGION: str = os.getenv("PHONE_DEFAULT_REGION", "IL")

    # Cloudflare Turnstile
    TURNSTILE_SECRET_KEY: str = os.getenv("TURNSTILE_SECRET_KEY", "")
    TURNSTILE_VERIFY_URL: str = os.getenv(
        "TURNSTILE_VERIFY_URL", "https://challenges.cloudflare.com/turnstile/v0/siteverify"
    )

    # SMS delivery
    SMS_PROVIDER: str = os.getenv("SMS_PROVIDER", "console")  # sms_to, twilio, console
    SMS_TO_API_KEY: str = os.getenv("SMS_TO_API_KEY", "")
    SMS_TO_API_BASE_URL: str = os.getenv("SMS_TO_API_BASE_URL", "https://api.sms.to")
    TWILIO_ACCOUNT_SID: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    TWILIO_AUTH_TOKEN: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    OTP_FROM_NUMBER: str = os.getenv("OTP_FROM_NUMBER", "")

    # Redis rate-limit counters (optional, database log is used otherwise)
    REDIS_URL: str = os.getenv("REDIS_URL", "")

    # Sentry
    SENTRY_DSN: str = os.getenv("SENTRY_DSN", "")
    SENTRY_ENVIRONMENT: str = os.getenv("SENTRY_ENVIRONMENT", os.getenv("ENV", "dev"))
    SENTRY_ENABLED: bool = os.getenv("SENTRY_ENABLED", "true").lower() == "true"
    SENTRY_TRACES_SAMPLE_RATE: float = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1"))
    SENTRY_RELEASE: str = os.getenv("SENTRY_RELEASE", "")

    @property
    def is_prod(self) -> bool:
        return self.ENV.lower() in ("prod", "production")

    def otp_policy(self) -> OTPPolicy:
        """Build the OTP policy from the current settings."""
        return OTPPolicy(
            otp_ttl=timedelta(seconds=self.OTP_TTL_SECONDS),
            resend_cooldown=timedelta(seconds=self.OTP_RESEND_COOLDOWN_SECONDS),
            max_attempts=self.OTP_MAX_ATTEMPTS,
            lockout_duration=timedelta(seconds=self.OTP_LOCKOUT_SECONDS),
            daily_cap=self.OTP_DAILY_CAP,
            captcha_secret=self.TURNSTILE_SECRET_KEY or None,
            ip_limit=self.OTP_IP_LIMIT,
            ip_window=timedelta(seconds=self.OTP_IP_WINDOW_SECONDS),
            phone_limit=self.OTP_PHONE_LIMIT,
            phone_window=timedelta(seconds=self.OTP_PHONE_WINDOW_SECONDS),
            scope_by_purpose=self.OTP_SCOPE_BY_PURPOSE,
        )


settings = Settings()


def validate_config(config: Optional[Settings] = None) -> None:
    """
    Refuse to start with unsafe settings in production.

    Raises:
        ValueError: listing every problem found
    """
    config = config or settings
    if not config.is_prod:
        return

    errors = []
    if len(config.OTP_SECRET) < 16:
        errors.append("OTP_SECRET must be set and at least 16 characters")
    if config.JWT_SECRET == "dev-secret-change-me":
        errors.append("JWT_SECRET must be changed from its development default")
    if config.SMS_PROVIDER == "console":
        errors.append("SMS_PROVIDER=console cannot be used in production")
    if config.SMS_PROVIDER == "sms_to" and not config.SMS_TO_API_KEY:
        errors.append("SMS_TO_API_KEY is required when SMS_PROVIDER=sms_to")
    if config.DATABASE_URL.startswith("sqlite"):
        errors.append("SQLite database is not supported in production")

    if errors:
        raise ValueError("Invalid production configuration: " + "; ".join(errors))
