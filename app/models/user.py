import enum
import uuid

from sqlalchemy import Column, String, DateTime, Boolean, Integer, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.security import utcnow


class UserRole(str, enum.Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    IT_STAFF = "IT_STAFF"
    DEPARTMENT_INCHARGE = "DEPARTMENT_INCHARGE"


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True)  # stored lower-cased
    password_hash = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)
    role = Column(String(30), nullable=False)  # UserRole value
    department_id = Column(UUID(as_uuid=True), ForeignKey("departments.id", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login = Column(DateTime, nullable=True)

    # Lockout state, only mutated through the user repository
    login_attempts = Column(Integer, default=0, nullable=False)
    lock_until = Column(DateTime, nullable=True)

    # Tokens issued before this instant are rejected
    password_changed_at = Column(DateTime, default=utcnow, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    department = relationship("Department", back_populates="users")

    __table_args__ = (
        Index("ix_users_role", "role"),
        Index("ix_users_department_id", "department_id"),
        Index("ix_users_is_active", "is_active"),
    )

    def __repr__(self):
        return f"<User {self.email}>"
