"""
Console SMS provider for local development
"""
import logging

from ...core.config import settings
from .sms_provider import SMSProvider

logger = logging.getLogger(__name__)


class ConsoleSMSProvider(SMSProvider):
    """Logs the code instead of sending it. Refused in production by validate_config()."""

    def __init__(self):
        if settings.is_prod:
            logger.warning("[SMS][Console] Console provider enabled in production! This should not happen.")

    async def send_otp(self, phone: str, code: str) -> bool:
        logger.info(f"[SMS][Console] Code for {phone}: {code}")
        return True
