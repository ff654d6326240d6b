"""
SMS provider factory
"""
import logging
from typing import Optional

from ...core.config import settings
from .sms_provider import SMSProvider
from .sms_to import SmsToProvider
from .twilio_sms import TwilioSMSProvider
from .console_provider import ConsoleSMSProvider

logger = logging.getLogger(__name__)

_provider_instance: Optional[SMSProvider] = None

PROVIDERS = {
    "sms_to": SmsToProvider,
    "twilio": TwilioSMSProvider,
    "console": ConsoleSMSProvider,
}


def get_sms_provider() -> SMSProvider:
    """
    Get the SMS provider selected by SMS_PROVIDER.

    Raises:
        ValueError: If the provider is unknown or misconfigured
    """
    global _provider_instance

    provider_type = settings.SMS_PROVIDER.lower()
    provider_class = PROVIDERS.get(provider_type)
    if provider_class is None:
        raise ValueError(f"Unknown SMS provider: {provider_type}. Must be one of: {', '.join(PROVIDERS)}")

    if _provider_instance is None or not isinstance(_provider_instance, provider_class):
        try:
            _provider_instance = provider_class()
        except ValueError as e:
            logger.error(f"[SMS] Failed to initialize {provider_type} provider: {e}")
            raise
        logger.info(f"[SMS] Using {provider_type} provider")
    return _provider_instance
