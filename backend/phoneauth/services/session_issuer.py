"""
Session issuance for verified identities
"""
from datetime import timedelta
from typing import Any, Dict

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.security import create_access_token, generate_refresh_token, hash_refresh_token
from ..models import RefreshToken, User
from ..utils.clock import utcnow


class SessionIssuer:
    """Mints an access token and a stored refresh token for a user."""

    def __init__(self, db: Session):
        self.db = db

    def issue(self, user: User, auth_provider: str = "phone") -> Dict[str, Any]:
        """
        Create session credentials for a user.

        Returns:
            Dict with access_token, refresh_token, token_type and expires_in
        """
        access_token = create_access_token(user.public_id, auth_provider=auth_provider)

        plain_refresh = generate_refresh_token()
        self.db.add(
            RefreshToken(
                user_id=user.id,
                token_hash=hash_refresh_token(plain_refresh),
                expires_at=utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
                revoked=False,
            )
        )
        self.db.commit()

        return {
            "access_token": access_token,
            "refresh_token": plain_refresh,
            "token_type": "bearer",
            "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        }


def serialize_user(user: User) -> Dict[str, Any]:
    profile = user.profile
    return {
        "id": user.public_id,
        "email": user.email,
        "fullName": profile.full_name if profile else None,
        "phoneE164": profile.phone_e164 if profile else None,
    }
