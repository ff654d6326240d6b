"""
Twilio SMS provider
"""
import logging
from typing import Optional

from twilio.rest import Client
from twilio.base.exceptions import TwilioException

from ...core.config import settings
from ...utils.phone import get_phone_last4
from .sms_provider import SMSProvider, format_otp_message

logger = logging.getLogger(__name__)


class TwilioSMSProvider(SMSProvider):
    """
    Twilio programmable SMS.

    Requires TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and OTP_FROM_NUMBER.
    """

    def __init__(self, client: Optional[Client] = None):
        if client is None:
            if not settings.TWILIO_ACCOUNT_SID or not settings.TWILIO_AUTH_TOKEN:
                raise ValueError("Twilio credentials not configured")
            client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
        if not settings.OTP_FROM_NUMBER:
            raise ValueError("OTP_FROM_NUMBER not configured for SMS provider")

        self.client = client
        self.from_number = settings.OTP_FROM_NUMBER

    async def send_otp(self, phone: str, code: str) -> bool:
        try:
            message = self.client.messages.create(
                body=format_otp_message(code),
                from_=self.from_number,
                to=phone,
            )
        except TwilioException as e:
            logger.error(f"[SMS][Twilio] Failed to send SMS to ***{get_phone_last4(phone)}: {e}")
            return False

        logger.info(f"[SMS][Twilio] SMS sent to ***{get_phone_last4(phone)}, SID: {message.sid}")
        return True
