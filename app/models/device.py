import enum
import uuid

from sqlalchemy import Column, String, Text, DateTime, Float, Integer, ForeignKey, Index, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.security import utcnow


class DeviceStatus(str, enum.Enum):
    IN_STOCK = "IN_STOCK"
    ISSUED = "ISSUED"
    INSTALLED = "INSTALLED"
    MAINTENANCE = "MAINTENANCE"
    SCRAPPED = "SCRAPPED"


class Device(Base):
    __tablename__ = "devices"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    asset_tag = Column(String(50), nullable=False, unique=True)
    device_name = Column(String(200), nullable=False)
    category = Column(String(100), nullable=False)
    brand = Column(String(100), nullable=True)
    serial_number = Column(String(100), nullable=True, unique=True)
    cost = Column(Float, nullable=False, default=0)
    quantity = Column(Integer, nullable=False, default=1)

    # Units held by live assignments. Only changed through conditional
    # updates in the stock ledger, never read-modify-written.
    committed_quantity = Column(Integer, nullable=False, default=0)

    status = Column(String(20), nullable=False, default=DeviceStatus.IN_STOCK.value)
    department_id = Column(UUID(as_uuid=True), ForeignKey("departments.id", ondelete="SET NULL"), nullable=True)
    location_id = Column(UUID(as_uuid=True), ForeignKey("locations.id", ondelete="SET NULL"), nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    assignments = relationship("Assignment", back_populates="device")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_devices_quantity_positive"),
        CheckConstraint(
            "committed_quantity >= 0 AND committed_quantity <= quantity",
            name="ck_devices_committed_within_quantity",
        ),
        Index("ix_devices_status", "status"),
        Index("ix_devices_department_id", "department_id"),
        Index("ix_devices_location_id", "location_id"),
    )

    def __repr__(self):
        return f"<Device {self.asset_tag}>"
