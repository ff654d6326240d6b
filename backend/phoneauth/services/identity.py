"""
Identity directory: users, their profiles and phone ownership.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.errors import PhoneAlreadyBound
from ..core.security import hash_password
from ..models import User, Profile, RefreshToken

logger = logging.getLogger(__name__)


class IdentityService:
    def __init__(self, db: Session):
        self.db = db

    def resolve_owner_by_phone(self, phone: str) -> Optional[User]:
        """Return the active user whose profile owns this phone, if any."""
        return (
            self.db.query(User)
            .join(Profile, Profile.user_id == User.id)
            .filter(Profile.phone_e164 == phone, User.is_active.is_(True))
            .first()
        )

    def phone_is_bound(self, phone: str) -> bool:
        return self.db.query(Profile.user_id).filter(Profile.phone_e164 == phone).first() is not None

    def email_exists(self, email: str) -> bool:
        return (
            self.db.query(User.id).filter(func.lower(User.email) == email.strip().lower()).first()
            is not None
        )

    def get_by_public_id(self, public_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.public_id == public_id).first()

    def create_identity(self, email: str, password: str, full_name: str) -> User:
        """Create a user with an empty profile. The phone is bound separately."""
        user = User(
            email=email.strip().lower(),
            password_hash=hash_password(password),
            is_active=True,
        )
        user.profile = Profile(full_name=full_name.strip())
        self.db.add(user)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(user)
        return user

    def bind_phone(self, user: User, phone: str, verified_at: datetime) -> Profile:
        """
        Record a verified phone on the user's profile.

        Raises:
            PhoneAlreadyBound: If another profile already owns the phone
        """
        profile = user.profile
        try:
            with self.db.begin_nested():
                if profile is None:
                    profile = Profile(user_id=user.id)
                    self.db.add(profile)
                profile.phone_e164 = phone
                profile.phone_verified_at = verified_at
                self.db.flush()
        except IntegrityError as e:
            logger.warning(f"[Identity] Phone bind rejected by unique constraint for user {user.id}: {e.orig}")
            raise PhoneAlreadyBound(phone) from e
        self.db.commit()
        return profile

    def delete_identity(self, user: User) -> None:
        """Remove a user and everything hanging off it."""
        user_id = user.id
        self.db.query(RefreshToken).filter(RefreshToken.user_id == user_id).delete(synchronize_session=False)
        self.db.query(Profile).filter(Profile.user_id == user_id).delete(synchronize_session=False)
        self.db.query(User).filter(User.id == user_id).delete(synchronize_session=False)
        self.db.commit()
        self.db.expire_all()
        logger.info(f"[Identity] Deleted user {user_id}")
