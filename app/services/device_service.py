import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.exceptions import (
    AlreadyExistsError,
    NotFoundError,
    ValidationError,
)
from app.core.sanitization import (
    sanitize_asset_tag,
    sanitize_description,
    sanitize_name,
    sanitize_string,
    validate_asset_tag,
)
from app.models import Assignment, AuditAction, Device, DeviceStatus, User
from app.schemas.devices import DeviceCreateRequest, DeviceUpdateRequest
from app.services.assignment_state_machine import AssignmentStateMachine
from app.services.audit_service import AuditService, RequestContext
from app.services.stock_ledger import StockLedger

logger = logging.getLogger(__name__)


class DeviceService:
    """Service for device inventory records."""

    @staticmethod
    def get_device(db: Session, device_id: UUID) -> Device:
        device = db.query(Device).filter(Device.id == device_id).first()
        if not device:
            raise NotFoundError("Device")
        return device

    @staticmethod
    def list_devices(
        db: Session,
        status: Optional[str] = None,
        category: Optional[str] = None,
    ) -> List[Device]:
        query = db.query(Device)
        if status:
            query = query.filter(Device.status == status)
        if category:
            query = query.filter(Device.category == category)
        return query.order_by(Device.created_at.desc()).all()

    @staticmethod
    def create_device(
        db: Session,
        data: DeviceCreateRequest,
        user: User,
        context: Optional[RequestContext] = None,
    ) -> Device:
        asset_tag = sanitize_asset_tag(data.asset_tag)
        if not validate_asset_tag(asset_tag):
            raise ValidationError("Asset tag must contain letters or digits")
        if db.query(Device.id).filter(Device.asset_tag == asset_tag).first():
            raise AlreadyExistsError("Device", f"Asset tag {asset_tag} is already in use")
        serial_number = sanitize_string(data.serial_number, max_length=100) if data.serial_number else None
        if serial_number and db.query(Device.id).filter(Device.serial_number == serial_number).first():
            raise AlreadyExistsError("Device", f"Serial number {serial_number} is already in use")

        device = Device(
            asset_tag=asset_tag,
            device_name=sanitize_name(data.device_name),
            category=sanitize_name(data.category),
            brand=sanitize_name(data.brand) if data.brand else None,
            serial_number=serial_number,
            cost=data.cost,
            quantity=data.quantity,
            committed_quantity=0,
            status=DeviceStatus.IN_STOCK.value,
            notes=sanitize_description(data.notes) if data.notes else None,
            created_by=user.id,
        )
        db.add(device)
        db.flush()
        AuditService.record(
            db, "Device", device.id, AuditAction.CREATE,
            performed_by=user.id,
            details={"new": {"asset_tag": device.asset_tag, "quantity": device.quantity}},
            context=context,
            commit=False,
        )
        db.commit()
        db.refresh(device)
        return device

    @staticmethod
    def update_device(
        db: Session,
        device_id: UUID,
        data: DeviceUpdateRequest,
        user: User,
        context: Optional[RequestContext] = None,
    ) -> Device:
        device = DeviceService.get_device(db, device_id)
        old = {"quantity": device.quantity, "status": device.status}

        if data.quantity is not None and data.quantity != device.quantity:
            # Conditional so a concurrent reservation cannot slip under the new total
            updated = db.query(Device).filter(
                Device.id == device.id,
                Device.committed_quantity <= data.quantity,
            ).update({Device.quantity: data.quantity}, synchronize_session=False)
            committed = StockLedger.committed_quantity(db, device.id)
            if not updated or committed > data.quantity:
                db.rollback()
                raise ValidationError(
                    f"Quantity cannot be set to {data.quantity}: {committed} units are held by live assignments"
                )
            db.expire(device, ["quantity", "committed_quantity"])

        if data.device_name is not None:
            device.device_name = sanitize_name(data.device_name)
        if data.category is not None:
            device.category = sanitize_name(data.category)
        if data.brand is not None:
            device.brand = sanitize_name(data.brand)
        if data.cost is not None:
            device.cost = data.cost
        if data.notes is not None:
            device.notes = sanitize_description(data.notes)

        if data.status == DeviceStatus.SCRAPPED.value and device.status != DeviceStatus.SCRAPPED.value:
            if StockLedger.committed_quantity(db, device.id) > 0:
                raise ValidationError("Devices with live assignments cannot be scrapped")
            device.status = DeviceStatus.SCRAPPED.value
            device.department_id = None
            device.location_id = None
        elif data.status == DeviceStatus.IN_STOCK.value and device.status == DeviceStatus.SCRAPPED.value:
            device.status = DeviceStatus.IN_STOCK.value
            AssignmentStateMachine.sync_device_status(db, device)

        AuditService.record(
            db, "Device", device.id, AuditAction.UPDATE,
            performed_by=user.id,
            details={"old": old, "new": {"quantity": device.quantity, "status": device.status}},
            context=context,
            commit=False,
        )
        db.commit()
        db.refresh(device)
        return device

    @staticmethod
    def delete_device(
        db: Session,
        device_id: UUID,
        user: User,
        context: Optional[RequestContext] = None,
    ) -> None:
        device = DeviceService.get_device(db, device_id)
        if db.query(Assignment.id).filter(Assignment.device_id == device.id).first():
            raise ValidationError("Devices with assignment history cannot be deleted")

        asset_tag = device.asset_tag
        db.delete(device)
        AuditService.record(
            db, "Device", device_id, AuditAction.DELETE,
            performed_by=user.id,
            details={"old": {"asset_tag": asset_tag}},
            context=context,
            commit=False,
        )
        db.commit()
        logger.info(f"Device {asset_tag} deleted")
