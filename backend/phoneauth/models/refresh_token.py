from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Integer
from ..db import Base
from ..core.uuid_type import UUIDType, generate_uuid
from ..utils.clock import utcnow


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    id = Column(UUIDType(), primary_key=True, default=generate_uuid)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(128), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime, nullable=False)
    revoked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
