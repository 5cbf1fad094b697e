import enum
import uuid

from sqlalchemy import Column, String, Text, DateTime, Integer, ForeignKey, Index, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.security import utcnow


class AssignmentStatus(str, enum.Enum):
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"
    MAINTENANCE = "MAINTENANCE"


class AssignmentReason(str, enum.Enum):
    INSTALLATION = "INSTALLATION"
    MAINTENANCE = "MAINTENANCE"
    REPLACEMENT_MALFUNCTION = "REPLACEMENT_MALFUNCTION"
    UPGRADE = "UPGRADE"
    NEW_REQUIREMENT = "NEW_REQUIREMENT"
    OTHER = "OTHER"


class Assignment(Base):
    __tablename__ = "assignments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    device_id = Column(UUID(as_uuid=True), ForeignKey("devices.id", ondelete="RESTRICT"), nullable=False)
    department_id = Column(UUID(as_uuid=True), ForeignKey("departments.id", ondelete="RESTRICT"), nullable=False)
    location_id = Column(UUID(as_uuid=True), ForeignKey("locations.id", ondelete="SET NULL"), nullable=True)
    requested_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    quantity = Column(Integer, nullable=False)
    reason = Column(String(30), nullable=False, default=AssignmentReason.OTHER.value)
    notes = Column(Text, nullable=True)
    remarks = Column(Text, nullable=True)  # rejection remarks
    status = Column(String(20), nullable=False, default=AssignmentStatus.REQUESTED.value)

    assigned_at = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    device = relationship("Device", back_populates="assignments")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_assignments_quantity_positive"),
        Index("ix_assignments_device_id", "device_id"),
        Index("ix_assignments_department_id", "department_id"),
        Index("ix_assignments_status", "status"),
        Index("ix_assignments_device_status", "device_id", "status"),
        Index("ix_assignments_created_at", "created_at"),
    )

    def __repr__(self):
        return f"<Assignment {self.id} device={self.device_id} {self.status}>"
