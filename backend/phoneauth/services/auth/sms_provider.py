"""
Abstract SMS provider interface
"""
from abc import ABC, abstractmethod

from ...core.config import settings


def format_otp_message(code: str) -> str:
    return f"{settings.OTP_SMS_BRAND}: {code}"


class SMSProvider(ABC):
    """Delivers OTP codes out of band. Sends are attempted once and never retried."""

    @abstractmethod
    async def send_otp(self, phone: str, code: str) -> bool:
        """
        Send an OTP code to a phone number.

        Args:
            phone: Normalized phone number in E.164 format
            code: The raw 6-digit code

        Returns:
            True if the provider accepted the message
        """
        pass
