from datetime import timedelta
from typing import Optional, Any, Dict
import secrets
import hashlib
from jose import jwt
from passlib.context import CryptContext
from .config import settings
from ..utils.clock import utcnow

# PBKDF2-SHA256 (no 72-byte limit like bcrypt)
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def create_access_token(subject: str, expires_delta: Optional[timedelta] = None, auth_provider: Optional[str] = None) -> str:
    """
    Create a JWT access token.

    Args:
        subject: User's public_id (UUID string) - used as JWT sub claim
        expires_delta: Optional expiration time delta
        auth_provider: Optional auth provider (phone, password) for debugging
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    now = utcnow()
    payload: Dict[str, Any] = {
        "sub": subject,
        "exp": now + expires_delta,
        "iat": now,
    }
    if auth_provider:
        payload["auth_provider"] = auth_provider
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate an access token.

    Raises:
        jose.JWTError: If the token is invalid or expired
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


def generate_refresh_token() -> str:
    """Generate a random 256-bit refresh token"""
    return secrets.token_urlsafe(32)


def hash_refresh_token(token: str) -> str:
    """Hash a refresh token for storage (deterministic so it can be looked up)"""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
