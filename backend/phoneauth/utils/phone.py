"""
Phone number normalization utilities
"""
import re
import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberFormat

from ..core.config import settings

E164_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")
SEPARATORS = re.compile(r"[\s()\-.]")


def normalize_phone(phone: str, default_region: str = None) -> str:
    """
    Normalize free-form phone input to E.164.

    Accepts international numbers with a leading + or 00, local numbers
    with a trunk 0 (parsed in default_region), and bare 8-15 digit
    international numbers without the +.

    Args:
        phone: Phone number string (can be in various formats)
        default_region: Region for local numbers (default: PHONE_DEFAULT_REGION)

    Returns:
        Normalized phone number in E.164 format (e.g., +972501234567)

    Raises:
        ValueError: If phone number cannot be normalized
    """
    if not phone or not isinstance(phone, str):
        raise ValueError("Phone number is required")

    region = default_region or settings.PHONE_DEFAULT_REGION
    candidate = SEPARATORS.sub("", phone.strip())

    if candidate.startswith("00"):
        candidate = "+" + candidate[2:]
    elif candidate.isdigit() and not candidate.startswith("0") and 8 <= len(candidate) <= 15:
        candidate = "+" + candidate

    try:
        parsed = phonenumbers.parse(candidate, region)
    except NumberParseException as e:
        raise ValueError(f"Invalid phone number format: {str(e)}")

    if not phonenumbers.is_possible_number(parsed):
        raise ValueError("Invalid phone number")

    normalized = phonenumbers.format_number(parsed, PhoneNumberFormat.E164)
    if not E164_PATTERN.match(normalized):
        raise ValueError("Invalid phone number")
    return normalized


def validate_phone(phone: str, default_region: str = None) -> bool:
    """Validate phone number without raising exception."""
    try:
        normalize_phone(phone, default_region)
        return True
    except ValueError:
        return False


def get_phone_last4(phone: str) -> str:
    """
    Get last 4 digits of phone number for safe logging.

    Returns:
        Last 4 digits as string, or all digits if fewer than 4
    """
    digits = "".join(filter(str.isdigit, phone or ""))
    return digits[-4:]
