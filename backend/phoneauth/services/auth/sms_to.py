"""
SMS.to provider
"""
import logging
from typing import Optional

import httpx

from ...core.config import settings
from ...utils.phone import get_phone_last4
from .sms_provider import SMSProvider, format_otp_message

logger = logging.getLogger(__name__)

SMS_TO_TIMEOUT = 15.0


class SmsToProvider(SMSProvider):
    """Sends codes through the SMS.to REST API."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        self.api_key = api_key or settings.SMS_TO_API_KEY
        if not self.api_key:
            raise ValueError("SMS_TO_API_KEY not configured")
        self.base_url = (base_url or settings.SMS_TO_API_BASE_URL).rstrip("/")

    async def send_otp(self, phone: str, code: str) -> bool:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {"to": phone, "message": format_otp_message(code)}

        try:
            async with httpx.AsyncClient(timeout=SMS_TO_TIMEOUT) as client:
                response = await client.post(f"{self.base_url}/sms/send", json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"[SMS][SmsTo] Send to ***{get_phone_last4(phone)} rejected: "
                f"status={e.response.status_code} body={e.response.text[:200]}"
            )
            return False
        except httpx.HTTPError as e:
            logger.error(f"[SMS][SmsTo] Send to ***{get_phone_last4(phone)} failed: {e}")
            return False

        logger.info(f"[SMS][SmsTo] Code sent to ***{get_phone_last4(phone)}")
        return True
