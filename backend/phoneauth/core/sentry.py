"""Sentry error tracking integration"""
import logging
import re
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from .config import settings

logger = logging.getLogger(__name__)

_sentry_initialized = False

PHONE_PATTERN = re.compile(r"\+?\d{8,15}")
OTP_CODE_PATTERN = re.compile(r"\b\d{6}\b")
SENSITIVE_HEADERS = ("authorization", "cookie", "x-api-key", "x-auth-token")
SENSITIVE_BODY_FIELDS = ("code", "password", "turnstileToken", "phone")


def init_sentry() -> bool:
    """Initialize Sentry SDK. Returns True if initialized successfully."""
    global _sentry_initialized

    if not settings.SENTRY_ENABLED:
        logger.info("[Sentry] Disabled via SENTRY_ENABLED=false")
        return False

    if not settings.SENTRY_DSN:
        logger.info("[Sentry] No DSN configured, skipping initialization")
        return False

    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.SENTRY_ENVIRONMENT,
            release=settings.SENTRY_RELEASE or None,
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            before_send=scrub_sensitive_data,
            send_default_pii=False,
        )
    except Exception as e:
        logger.warning(f"[Sentry] Failed to initialize: {e}")
        return False

    _sentry_initialized = True
    logger.info(f"[Sentry] Initialized for environment={settings.SENTRY_ENVIRONMENT}")
    return True


def scrub_sensitive_data(event, hint):
    """Remove auth headers, phone numbers and codes from Sentry events."""
    request = event.get("request") or {}
    headers = request.get("headers")
    if headers:
        for header in list(headers):
            if header.lower() in SENSITIVE_HEADERS:
                headers[header] = "[REDACTED]"

    data = request.get("data")
    if isinstance(data, dict):
        for field in SENSITIVE_BODY_FIELDS:
            if field in data:
                data[field] = "[REDACTED]"

    for exc in (event.get("exception") or {}).get("values", []):
        if exc.get("value"):
            value = PHONE_PATTERN.sub("[PHONE_REDACTED]", str(exc["value"]))
            exc["value"] = OTP_CODE_PATTERN.sub("[CODE_REDACTED]", value)

    return event


def capture_exception(exc: Exception, extra: Optional[dict] = None):
    """Capture exception to Sentry if initialized."""
    if not _sentry_initialized:
        return

    try:
        with sentry_sdk.new_scope() as scope:
            for key, value in (extra or {}).items():
                scope.set_extra(key, value)
            sentry_sdk.capture_exception(exc)
    except Exception as e:
        # Sentry must never break the request path
        logger.debug(f"[Sentry] capture_exception failed: {e}")
