"""Token blacklist model for the shared revocation backend."""

from uuid import uuid4
from sqlalchemy import Column, String, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base
from app.core.security import utcnow


class TokenBlacklist(Base):
    """Stores revoked JWTs by SHA-256 of the raw token string."""

    __tablename__ = "token_blacklist"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    blacklisted_at = Column(DateTime, default=utcnow)

    # Index for cleanup of expired tokens
    __table_args__ = (
        Index("ix_token_blacklist_expires_at", "expires_at"),
    )
