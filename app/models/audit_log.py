"""Audit trail entries. Rows are append-only."""

import enum
import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, Index, JSON
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base
from app.core.security import utcnow


class AuditAction(str, enum.Enum):
    LOGIN = "LOGIN"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    TOKEN_REFRESH = "TOKEN_REFRESH"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    STATUS_CHANGE = "STATUS_CHANGE"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    entity_type = Column(String(30), nullable=False)  # 'User', 'Device', 'Assignment'
    entity_id = Column(String(64), nullable=False)
    action = Column(String(30), nullable=False)  # AuditAction value
    # Null when the actor is unknown, e.g. a failed login for a missing email
    performed_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    details = Column(JSON, nullable=True)  # old/new data, success flag, reason
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(1000), nullable=True)
    session_id = Column(String(200), nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_audit_logs_timestamp", "timestamp"),
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        Index("ix_audit_logs_performed_by", "performed_by"),
        Index("ix_audit_logs_action", "action"),
    )

    def __repr__(self):
        return f"<AuditLog {self.action} {self.entity_type}:{self.entity_id}>"
