"""
OTP code generation, hashing and constant-time verification.

Codes are stored as HMAC-SHA256 digests keyed by OTP_SECRET, never raw.
"""
import hashlib
import hmac
import secrets
from typing import Optional

from .config import settings

OTP_LENGTH = 6
MIN_SECRET_LENGTH = 16


def generate_otp_code() -> str:
    """Generate a uniformly random 6-digit code, zero-padded."""
    return str(secrets.randbelow(10 ** OTP_LENGTH)).zfill(OTP_LENGTH)


def _get_secret(secret: Optional[str] = None) -> bytes:
    value = secret if secret is not None else settings.OTP_SECRET
    if not value or len(value) < MIN_SECRET_LENGTH:
        raise ValueError(f"OTP_SECRET must be at least {MIN_SECRET_LENGTH} characters")
    return value.encode("utf-8")


def hash_otp_code(code: str, secret: Optional[str] = None) -> str:
    """
    Hash a code for storage.

    Returns:
        Hex HMAC-SHA256 digest of the code

    Raises:
        ValueError: If OTP_SECRET is missing or too short
    """
    return hmac.new(_get_secret(secret), code.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_otp_code(code: str, code_hash: str, secret: Optional[str] = None) -> bool:
    """Compare a candidate code against a stored hash in constant time."""
    candidate = hash_otp_code(code, secret)
    if len(candidate) != len(code_hash or ""):
        return False
    try:
        expected_bytes = bytes.fromhex(code_hash)
    except ValueError:
        return False
    return hmac.compare_digest(bytes.fromhex(candidate), expected_bytes)
