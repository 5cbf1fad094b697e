import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Query, Session

from app.core.exceptions import (
    ConflictError,
    InsufficientQuantityError,
    InvalidStatusTransitionError,
    NotFoundError,
)
from app.core.security import utcnow
from app.models import Assignment, AssignmentStatus, Device, DeviceStatus
from app.services.stock_ledger import LIVE_STATUSES, StockLedger

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[AssignmentStatus, frozenset[AssignmentStatus]] = {
    AssignmentStatus.REQUESTED: frozenset({AssignmentStatus.APPROVED, AssignmentStatus.REJECTED}),
    AssignmentStatus.APPROVED: frozenset({AssignmentStatus.COMPLETED, AssignmentStatus.MAINTENANCE}),
    AssignmentStatus.MAINTENANCE: frozenset({AssignmentStatus.APPROVED, AssignmentStatus.COMPLETED}),
    AssignmentStatus.REJECTED: frozenset(),
    AssignmentStatus.COMPLETED: frozenset(),
}

# Device status implied by the strongest live assignment, in priority order
_DEVICE_STATUS_PRIORITY = (
    (AssignmentStatus.MAINTENANCE, DeviceStatus.MAINTENANCE),
    (AssignmentStatus.APPROVED, DeviceStatus.ISSUED),
    (AssignmentStatus.COMPLETED, DeviceStatus.INSTALLED),
)


def can_transition(current: AssignmentStatus, target: AssignmentStatus) -> bool:
    return AssignmentStatus(target) in ALLOWED_TRANSITIONS[AssignmentStatus(current)]


class AssignmentStateMachine:
    """
    Moves assignments between statuses and keeps device stock and device
    status consistent with the result.

    Every write that moves stock is conditional on the assignment still
    holding the status, quantity and device this session read. Only the
    request whose write matched the row reserves or releases units.
    """

    @staticmethod
    def _unchanged(db: Session, assignment: Assignment) -> Query:
        return db.query(Assignment).filter(
            Assignment.id == assignment.id,
            Assignment.status == assignment.status,
            Assignment.quantity == assignment.quantity,
            Assignment.device_id == assignment.device_id,
        )

    @staticmethod
    def claim(db: Session, assignment: Assignment, values: dict) -> bool:
        """
        Write `values` to the assignment row only if it is unchanged since
        it was loaded. Returns False when another request got there first.
        """
        updated = AssignmentStateMachine._unchanged(db, assignment).update(
            values, synchronize_session=False
        )
        return updated == 1

    @staticmethod
    def raise_stale(
        db: Session, assignment_id: UUID, target: Optional[AssignmentStatus] = None
    ) -> None:
        """Roll back and report an assignment that changed under this request."""
        current = db.query(Assignment.status).filter(Assignment.id == assignment_id).scalar()
        db.rollback()
        logger.warning(f"Assignment {assignment_id} changed concurrently, now {current}")
        if current is None:
            raise NotFoundError("Assignment")
        if target is not None and not can_transition(current, target):
            raise InvalidStatusTransitionError(current, AssignmentStatus(target).value)
        raise ConflictError("Assignment")

    @staticmethod
    def transition(
        db: Session,
        assignment: Assignment,
        target: AssignmentStatus,
        actor_id: Optional[UUID] = None,
        remarks: Optional[str] = None,
    ) -> Assignment:
        """
        Apply a status change. Does not commit; callers commit together with
        their audit entry.
        """
        current = AssignmentStatus(assignment.status)
        target = AssignmentStatus(target)
        if not can_transition(current, target):
            raise InvalidStatusTransitionError(current.value, target.value)

        assignment_id = assignment.id
        if not AssignmentStateMachine.claim(db, assignment, {Assignment.status: target.value}):
            AssignmentStateMachine.raise_stale(db, assignment_id, target)

        was_live = current in LIVE_STATUSES
        will_be_live = target in LIVE_STATUSES
        try:
            if will_be_live and not was_live:
                StockLedger.assert_can_commit(
                    db, assignment.device_id, assignment.quantity, exclude_assignment_id=assignment_id
                )
                StockLedger.reserve(db, assignment.device_id, assignment.quantity)
            elif was_live and not will_be_live:
                StockLedger.release(db, assignment.device_id, assignment.quantity)
        except InsufficientQuantityError:
            db.rollback()
            raise

        now = utcnow()
        assignment.status = target.value
        device = db.query(Device).filter(Device.id == assignment.device_id).first()
        if device is None:
            raise NotFoundError("Device")

        if target == AssignmentStatus.APPROVED:
            assignment.approved_at = assignment.approved_at or now
            assignment.assigned_at = assignment.assigned_at or now
            if actor_id and not assignment.approved_by:
                assignment.approved_by = actor_id
            device.department_id = assignment.department_id
            device.location_id = assignment.location_id
        elif target == AssignmentStatus.REJECTED:
            assignment.rejected_at = now
            assignment.remarks = remarks
        elif target == AssignmentStatus.COMPLETED:
            assignment.completed_at = now

        db.flush()
        AssignmentStateMachine.sync_device_status(db, device)
        logger.info(f"Assignment {assignment_id} moved {current.value} -> {target.value}")
        return assignment

    @staticmethod
    def sync_device_status(db: Session, device: Device) -> Device:
        """
        Derive the device status from its live assignments. Scrapped devices
        are left alone. With no issued units left the device returns to stock
        and loses its department and location.
        """
        if device.status == DeviceStatus.SCRAPPED.value:
            return device

        db.flush()
        statuses = {
            AssignmentStatus(row.status)
            for row in db.query(Assignment.status).filter(
                Assignment.device_id == device.id,
                Assignment.status.in_([s.value for s in LIVE_STATUSES]),
            ).distinct()
        }

        for assignment_status, device_status in _DEVICE_STATUS_PRIORITY:
            if assignment_status in statuses:
                device.status = device_status.value
                break
        else:
            device.status = DeviceStatus.IN_STOCK.value
            device.department_id = None
            device.location_id = None

        db.flush()
        return device

    @staticmethod
    def delete(db: Session, assignment: Assignment) -> None:
        """
        Delete the assignment and free any units it held. Does not commit.
        Fails if the row changed since it was loaded.
        """
        assignment_id = assignment.id
        device_id = assignment.device_id
        quantity = assignment.quantity
        was_live = AssignmentStatus(assignment.status) in LIVE_STATUSES

        deleted = AssignmentStateMachine._unchanged(db, assignment).delete(synchronize_session="fetch")
        if deleted != 1:
            AssignmentStateMachine.raise_stale(db, assignment_id)

        if was_live:
            StockLedger.release(db, device_id, quantity)
