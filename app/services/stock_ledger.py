"""
Stock ledger for device quantities.

Available units are always derived from live assignments:

    available = max(0, device.quantity - sum(quantity of live assignments))

Reservations are enforced by a conditional UPDATE on the device's
committed_quantity counter, so two concurrent requests cannot both take
the last units. The counter is a cache of the sum above and reconcile()
rebuilds it.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.core.exceptions import InsufficientQuantityError, NotFoundError
from app.models import Assignment, AssignmentStatus, Device

logger = logging.getLogger(__name__)


# Statuses that hold units. Only REJECTED gives them back.
LIVE_STATUSES = frozenset({
    AssignmentStatus.REQUESTED,
    AssignmentStatus.APPROVED,
    AssignmentStatus.MAINTENANCE,
    AssignmentStatus.COMPLETED,
})


def is_live(status) -> bool:
    return AssignmentStatus(status) in LIVE_STATUSES


class StockLedger:
    """Computes and reserves device stock."""

    @staticmethod
    def _get_device(db: Session, device_id: UUID) -> Device:
        device = db.query(Device).filter(Device.id == device_id).first()
        if not device:
            raise NotFoundError("Device")
        return device

    @staticmethod
    def committed_quantity(
        db: Session, device_id: UUID, exclude_assignment_id: Optional[UUID] = None
    ) -> int:
        """Sum of quantities over the device's live assignments."""
        query = db.query(func.coalesce(func.sum(Assignment.quantity), 0)).filter(
            Assignment.device_id == device_id,
            Assignment.status.in_([s.value for s in LIVE_STATUSES]),
        )
        if exclude_assignment_id is not None:
            query = query.filter(Assignment.id != exclude_assignment_id)
        return int(query.scalar() or 0)

    @staticmethod
    def available_quantity(
        db: Session, device_id: UUID, exclude_assignment_id: Optional[UUID] = None
    ) -> int:
        device = StockLedger._get_device(db, device_id)
        committed = StockLedger.committed_quantity(db, device_id, exclude_assignment_id)
        return max(0, device.quantity - committed)

    @staticmethod
    def availability(db: Session, device_id: UUID) -> dict:
        """Read-only stock summary for a device."""
        device = StockLedger._get_device(db, device_id)
        committed = StockLedger.committed_quantity(db, device_id)
        return {
            "device_id": device.id,
            "total": device.quantity,
            "assigned": committed,
            "available": max(0, device.quantity - committed),
        }

    @staticmethod
    def assert_can_commit(
        db: Session,
        device_id: UUID,
        requested: int,
        exclude_assignment_id: Optional[UUID] = None,
    ) -> None:
        """
        Raise InsufficientQuantityError if `requested` units cannot be held.

        Pass exclude_assignment_id when re-checking an assignment that
        already holds units, so its own quantity is not counted twice.
        """
        available = StockLedger.available_quantity(db, device_id, exclude_assignment_id)
        if requested > available:
            raise InsufficientQuantityError(available=available, requested=requested)

    @staticmethod
    def reserve(db: Session, device_id: UUID, units: int) -> None:
        """
        Atomically add units to the device's committed counter.
        Fails without side effects when the device lacks the free units.
        """
        if units <= 0:
            return

        updated = db.query(Device).filter(
            Device.id == device_id,
            Device.committed_quantity + units <= Device.quantity,
        ).update(
            {Device.committed_quantity: Device.committed_quantity + units},
            synchronize_session=False,
        )
        if not updated:
            row = db.query(Device.quantity, Device.committed_quantity).filter(
                Device.id == device_id
            ).first()
            if row is None:
                raise NotFoundError("Device")
            available = max(0, row.quantity - row.committed_quantity)
            logger.info(f"Reservation of {units} units refused for device {device_id}, {available} free")
            raise InsufficientQuantityError(available=available, requested=units)

        StockLedger._expire_counter(db, device_id)

    @staticmethod
    def release(db: Session, device_id: UUID, units: int) -> None:
        """Give units back to the device. The counter never goes below zero."""
        if units <= 0:
            return

        db.query(Device).filter(Device.id == device_id).update(
            {
                Device.committed_quantity: case(
                    (Device.committed_quantity >= units, Device.committed_quantity - units),
                    else_=0,
                )
            },
            synchronize_session=False,
        )
        StockLedger._expire_counter(db, device_id)

    @staticmethod
    def _expire_counter(db: Session, device_id: UUID) -> None:
        # Bulk updates bypass the identity map
        for obj in list(db.identity_map.values()):
            if isinstance(obj, Device) and obj.id == device_id:
                db.expire(obj, ["committed_quantity"])

    @staticmethod
    def reconcile(db: Session, device_id: Optional[UUID] = None) -> list[dict]:
        """
        Rebuild committed counters from live assignments.
        Returns one entry per device whose counter had drifted.
        """
        query = db.query(Device)
        if device_id is not None:
            query = query.filter(Device.id == device_id)

        drifted = []
        for device in query.all():
            actual = StockLedger.committed_quantity(db, device.id)
            if device.committed_quantity == actual:
                continue

            if actual > device.quantity:
                logger.error(
                    f"Device {device.asset_tag} is over-committed: "
                    f"{actual} live units for quantity {device.quantity}"
                )
            drifted.append({
                "device_id": device.id,
                "asset_tag": device.asset_tag,
                "recorded": device.committed_quantity,
                "actual": actual,
            })
            device.committed_quantity = min(actual, device.quantity)

        if drifted:
            db.commit()
            logger.warning(f"Reconciled committed quantity for {len(drifted)} devices")
        return drifted
