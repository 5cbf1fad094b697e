import logging
import math
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.exceptions import InsufficientQuantityError, NotFoundError, ValidationError
from app.core.sanitization import sanitize_description, sanitize_remarks
from app.models import (
    Assignment,
    AssignmentStatus,
    AuditAction,
    Department,
    Device,
    DeviceStatus,
    Location,
    User,
    UserRole,
)
from app.schemas.assignments import AssignmentCreateRequest, AssignmentUpdateRequest
from app.services.assignment_state_machine import AssignmentStateMachine
from app.services.audit_service import AuditService, RequestContext
from app.services.stock_ledger import LIVE_STATUSES, StockLedger

logger = logging.getLogger(__name__)


def _snapshot(assignment: Assignment) -> dict:
    return {
        "device_id": str(assignment.device_id),
        "department_id": str(assignment.department_id),
        "location_id": str(assignment.location_id) if assignment.location_id else None,
        "quantity": assignment.quantity,
        "reason": assignment.reason,
        "status": assignment.status,
    }


class AssignmentService:
    """Service for device assignment requests."""

    @staticmethod
    def _get_device(db: Session, device_id: UUID) -> Device:
        device = db.query(Device).filter(Device.id == device_id).first()
        if not device:
            raise NotFoundError("Device")
        if device.status == DeviceStatus.SCRAPPED.value:
            raise ValidationError("Scrapped devices cannot be assigned")
        return device

    @staticmethod
    def _check_department(db: Session, department_id: UUID) -> None:
        if not db.query(Department.id).filter(Department.id == department_id).first():
            raise NotFoundError("Department")

    @staticmethod
    def _check_location(db: Session, location_id: Optional[UUID]) -> None:
        if location_id and not db.query(Location.id).filter(Location.id == location_id).first():
            raise NotFoundError("Location")

    @staticmethod
    def get_assignment(db: Session, assignment_id: UUID, user: Optional[User] = None) -> Assignment:
        """Get an assignment. Department in-charges only see their own department's."""
        query = db.query(Assignment).filter(Assignment.id == assignment_id)
        if user is not None and user.role == UserRole.DEPARTMENT_INCHARGE.value:
            query = query.filter(Assignment.department_id == user.department_id)
        assignment = query.first()
        if not assignment:
            raise NotFoundError("Assignment")
        return assignment

    @staticmethod
    def list_assignments(
        db: Session,
        user: User,
        status: Optional[AssignmentStatus] = None,
        device_id: Optional[UUID] = None,
        department_id: Optional[UUID] = None,
        requested_by: Optional[UUID] = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        query = db.query(Assignment)
        if user.role == UserRole.DEPARTMENT_INCHARGE.value:
            query = query.filter(Assignment.department_id == user.department_id)
        elif department_id:
            query = query.filter(Assignment.department_id == department_id)
        if status:
            query = query.filter(Assignment.status == AssignmentStatus(status).value)
        if device_id:
            query = query.filter(Assignment.device_id == device_id)
        if requested_by:
            query = query.filter(Assignment.requested_by == requested_by)

        total = query.count()
        assignments = query.order_by(Assignment.created_at.desc()).offset(
            (page - 1) * limit
        ).limit(limit).all()

        return {
            "assignments": assignments,
            "total": total,
            "page": page,
            "limit": limit,
            "pages": math.ceil(total / limit) if total else 0,
        }

    @staticmethod
    def get_stats(db: Session, user: User) -> dict:
        query = db.query(Assignment.status, func.count(Assignment.id), func.sum(Assignment.quantity))
        if user.role == UserRole.DEPARTMENT_INCHARGE.value:
            query = query.filter(Assignment.department_id == user.department_id)
        rows = query.group_by(Assignment.status).all()

        by_status = {s.value: 0 for s in AssignmentStatus}
        units_committed = 0
        for status, count, units in rows:
            by_status[status] = count
            if AssignmentStatus(status) in LIVE_STATUSES:
                units_committed += int(units or 0)

        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "units_committed": units_committed,
        }

    @staticmethod
    def create_assignment(
        db: Session,
        data: AssignmentCreateRequest,
        user: User,
        context: Optional[RequestContext] = None,
    ) -> Assignment:
        """Create a REQUESTED assignment, holding its units immediately."""
        if user.role == UserRole.DEPARTMENT_INCHARGE.value and data.department_id != user.department_id:
            raise ValidationError("You can only request devices for your own department")

        device = AssignmentService._get_device(db, data.device_id)
        AssignmentService._check_department(db, data.department_id)
        AssignmentService._check_location(db, data.location_id)

        StockLedger.assert_can_commit(db, device.id, data.quantity)
        StockLedger.reserve(db, device.id, data.quantity)

        assignment = Assignment(
            device_id=device.id,
            department_id=data.department_id,
            location_id=data.location_id,
            requested_by=user.id,
            quantity=data.quantity,
            reason=data.reason.value,
            notes=sanitize_description(data.notes) if data.notes else None,
            status=AssignmentStatus.REQUESTED.value,
        )
        db.add(assignment)
        db.flush()
        AssignmentStateMachine.sync_device_status(db, device)

        AuditService.record(
            db, "Assignment", assignment.id, AuditAction.CREATE,
            performed_by=user.id,
            details={"new": _snapshot(assignment)},
            context=context,
            commit=False,
        )
        db.commit()
        db.refresh(assignment)
        logger.info(f"Assignment {assignment.id} requested {assignment.quantity} of device {device.asset_tag}")
        return assignment

    @staticmethod
    def update_assignment(
        db: Session,
        assignment_id: UUID,
        data: AssignmentUpdateRequest,
        user: User,
        context: Optional[RequestContext] = None,
    ) -> Assignment:
        assignment = AssignmentService.get_assignment(db, assignment_id, user)
        status = AssignmentStatus(assignment.status)
        if status not in LIVE_STATUSES or status == AssignmentStatus.COMPLETED:
            raise ValidationError(f"{status.value} assignments cannot be edited")

        old = _snapshot(assignment)
        old_device_id = assignment.device_id
        new_quantity = data.quantity if data.quantity is not None else assignment.quantity

        if data.department_id is not None:
            if user.role == UserRole.DEPARTMENT_INCHARGE.value and data.department_id != user.department_id:
                raise ValidationError("You can only request devices for your own department")
            AssignmentService._check_department(db, data.department_id)
        AssignmentService._check_location(db, data.location_id)

        new_device_id = old_device_id
        if data.device_id is not None and data.device_id != old_device_id:
            if status != AssignmentStatus.REQUESTED:
                raise ValidationError("The device can only be changed while the assignment is REQUESTED")
            new_device_id = AssignmentService._get_device(db, data.device_id).id

        old_quantity = assignment.quantity
        claimed = AssignmentStateMachine.claim(
            db, assignment, {Assignment.quantity: new_quantity, Assignment.device_id: new_device_id}
        )
        if not claimed:
            AssignmentStateMachine.raise_stale(db, assignment_id)

        try:
            if new_device_id != old_device_id:
                StockLedger.assert_can_commit(
                    db, new_device_id, new_quantity, exclude_assignment_id=assignment_id
                )
                StockLedger.reserve(db, new_device_id, new_quantity)
                StockLedger.release(db, old_device_id, old_quantity)
            elif new_quantity > old_quantity:
                StockLedger.assert_can_commit(
                    db, old_device_id, new_quantity, exclude_assignment_id=assignment_id
                )
                StockLedger.reserve(db, old_device_id, new_quantity - old_quantity)
            elif new_quantity < old_quantity:
                StockLedger.release(db, old_device_id, old_quantity - new_quantity)
        except InsufficientQuantityError:
            db.rollback()
            raise
        assignment.device_id = new_device_id
        assignment.quantity = new_quantity

        if data.department_id is not None:
            assignment.department_id = data.department_id
        if data.location_id is not None:
            assignment.location_id = data.location_id
        if data.reason is not None:
            assignment.reason = data.reason.value
        if data.notes is not None:
            assignment.notes = sanitize_description(data.notes)

        db.flush()
        device = db.query(Device).filter(Device.id == assignment.device_id).first()
        if status in (AssignmentStatus.APPROVED, AssignmentStatus.MAINTENANCE):
            device.department_id = assignment.department_id
            device.location_id = assignment.location_id
        AssignmentStateMachine.sync_device_status(db, device)
        if old_device_id != assignment.device_id:
            old_device = db.query(Device).filter(Device.id == old_device_id).first()
            if old_device:
                AssignmentStateMachine.sync_device_status(db, old_device)

        AuditService.record(
            db, "Assignment", assignment.id, AuditAction.UPDATE,
            performed_by=user.id,
            details={"old": old, "new": _snapshot(assignment)},
            context=context,
            commit=False,
        )
        db.commit()
        db.refresh(assignment)
        return assignment

    @staticmethod
    def change_status(
        db: Session,
        assignment_id: UUID,
        target: AssignmentStatus,
        user: User,
        remarks: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> Assignment:
        assignment = AssignmentService.get_assignment(db, assignment_id)
        old_status = assignment.status

        if AssignmentStatus(target) == AssignmentStatus.REJECTED and not remarks:
            raise ValidationError("Remarks are required when rejecting an assignment")

        AssignmentStateMachine.transition(
            db,
            assignment,
            target,
            actor_id=user.id,
            remarks=sanitize_remarks(remarks) if remarks else None,
        )

        AuditService.record(
            db, "Assignment", assignment.id, AuditAction.STATUS_CHANGE,
            performed_by=user.id,
            details={"old": {"status": old_status}, "new": {"status": assignment.status}},
            context=context,
            commit=False,
        )
        db.commit()
        db.refresh(assignment)
        return assignment

    @staticmethod
    def approve(db: Session, assignment_id: UUID, user: User, context: Optional[RequestContext] = None) -> Assignment:
        return AssignmentService.change_status(
            db, assignment_id, AssignmentStatus.APPROVED, user, context=context
        )

    @staticmethod
    def reject(
        db: Session,
        assignment_id: UUID,
        remarks: str,
        user: User,
        context: Optional[RequestContext] = None,
    ) -> Assignment:
        return AssignmentService.change_status(
            db, assignment_id, AssignmentStatus.REJECTED, user, remarks=remarks, context=context
        )

    @staticmethod
    def complete(db: Session, assignment_id: UUID, user: User, context: Optional[RequestContext] = None) -> Assignment:
        return AssignmentService.change_status(
            db, assignment_id, AssignmentStatus.COMPLETED, user, context=context
        )

    @staticmethod
    def delete_assignment(
        db: Session,
        assignment_id: UUID,
        user: User,
        context: Optional[RequestContext] = None,
    ) -> None:
        """Delete an assignment, giving back any units it held."""
        assignment = AssignmentService.get_assignment(db, assignment_id)
        old = _snapshot(assignment)
        device_id = assignment.device_id

        AssignmentStateMachine.delete(db, assignment)
        db.flush()

        device = db.query(Device).filter(Device.id == device_id).first()
        if device:
            AssignmentStateMachine.sync_device_status(db, device)

        AuditService.record(
            db, "Assignment", assignment_id, AuditAction.DELETE,
            performed_by=user.id,
            details={"old": old},
            context=context,
            commit=False,
        )
        db.commit()
        logger.info(f"Assignment {assignment_id} deleted")
