"""Tests for stock accounting against live assignments."""

import pytest

from app.core.exceptions import (
    ConflictError,
    InsufficientQuantityError,
    InvalidStatusTransitionError,
    NotFoundError,
)
from app.models import Assignment, AssignmentStatus, Device
from app.schemas.assignments import AssignmentCreateRequest, AssignmentUpdateRequest
from app.services.assignment_service import AssignmentService
from app.services.assignment_state_machine import (
    ALLOWED_TRANSITIONS,
    AssignmentStateMachine,
    can_transition,
)
from app.services.stock_ledger import LIVE_STATUSES, StockLedger, is_live


@pytest.fixture
def request_units(db_session, admin_user, device, department):
    """Create a REQUESTED assignment for `units` of the test device."""

    def _request(units: int, target_device=None) -> Assignment:
        return AssignmentService.create_assignment(
            db_session,
            AssignmentCreateRequest(
                device_id=(target_device or device).id,
                department_id=department.id,
                quantity=units,
            ),
            admin_user,
        )

    return _request


def assert_conserved(db_session, device):
    """The counter always matches the live sum and never exceeds the device quantity."""
    db_session.refresh(device)
    live = StockLedger.committed_quantity(db_session, device.id)
    assert device.committed_quantity == live
    assert live <= device.quantity
    assert StockLedger.available_quantity(db_session, device.id) == device.quantity - live


class TestLiveStatuses:
    def test_only_rejected_is_not_live(self):
        assert AssignmentStatus.REJECTED not in LIVE_STATUSES
        for status in AssignmentStatus:
            if status != AssignmentStatus.REJECTED:
                assert is_live(status)

    def test_terminal_statuses_have_no_transitions(self):
        assert ALLOWED_TRANSITIONS[AssignmentStatus.REJECTED] == frozenset()
        assert ALLOWED_TRANSITIONS[AssignmentStatus.COMPLETED] == frozenset()
        assert can_transition(AssignmentStatus.MAINTENANCE, AssignmentStatus.APPROVED)
        assert not can_transition(AssignmentStatus.REQUESTED, AssignmentStatus.COMPLETED)


class TestAvailability:
    """Availability is derived from live assignments."""

    def test_new_device_is_fully_available(self, db_session, device):
        assert StockLedger.availability(db_session, device.id) == {
            "device_id": device.id,
            "total": 5,
            "assigned": 0,
            "available": 5,
        }

    def test_request_holds_units(self, db_session, device, request_units):
        request_units(3)

        summary = StockLedger.availability(db_session, device.id)
        assert summary["assigned"] == 3
        assert summary["available"] == 2
        assert_conserved(db_session, device)

    def test_exclude_assignment_from_sum(self, db_session, device, request_units):
        assignment = request_units(3)

        assert StockLedger.available_quantity(db_session, device.id, exclude_assignment_id=assignment.id) == 5


class TestReservation:
    def test_full_quantity_then_nothing_left(self, db_session, device, request_units):
        request_units(5)

        with pytest.raises(InsufficientQuantityError) as exc_info:
            request_units(1)

        assert exc_info.value.available == 0
        assert exc_info.value.requested == 1
        assert db_session.query(Assignment).count() == 1
        assert_conserved(db_session, device)

    def test_over_request_fails_without_side_effects(self, db_session, device, request_units):
        request_units(2)

        with pytest.raises(InsufficientQuantityError) as exc_info:
            request_units(4)

        assert exc_info.value.available == 3
        assert_conserved(db_session, device)

    def test_reserve_is_guarded_by_counter(self, db_session, device):
        """The conditional update refuses even when the caller skipped the check."""
        StockLedger.reserve(db_session, device.id, 4)

        with pytest.raises(InsufficientQuantityError) as exc_info:
            StockLedger.reserve(db_session, device.id, 2)

        assert exc_info.value.available == 1
        db_session.refresh(device)
        assert device.committed_quantity == 4

    def test_release_never_goes_negative(self, db_session, device):
        StockLedger.reserve(db_session, device.id, 2)

        StockLedger.release(db_session, device.id, 5)

        db_session.refresh(device)
        assert device.committed_quantity == 0


class TestStatusChanges:
    """Stock follows the assignment lifecycle."""

    def test_reject_frees_units(self, db_session, admin_user, device, request_units):
        assignment = request_units(5)

        AssignmentService.reject(db_session, assignment.id, "Not needed", admin_user)

        assert StockLedger.available_quantity(db_session, device.id) == 5
        assert_conserved(db_session, device)
        request_units(1)

    def test_approve_keeps_units_held(self, db_session, admin_user, device, request_units):
        assignment = request_units(3)

        AssignmentService.approve(db_session, assignment.id, admin_user)

        assert StockLedger.available_quantity(db_session, device.id) == 2
        assert_conserved(db_session, device)

    def test_full_lifecycle_is_conserved(self, db_session, admin_user, device, request_units):
        assignment = request_units(2)
        for target in (
            AssignmentStatus.APPROVED,
            AssignmentStatus.MAINTENANCE,
            AssignmentStatus.APPROVED,
            AssignmentStatus.COMPLETED,
        ):
            AssignmentService.change_status(db_session, assignment.id, target, admin_user)
            assert StockLedger.available_quantity(db_session, device.id) == 3
            assert_conserved(db_session, device)

    def test_invalid_transition_changes_nothing(self, db_session, admin_user, device, request_units):
        assignment = request_units(2)
        AssignmentService.reject(db_session, assignment.id, "Not needed", admin_user)

        with pytest.raises(InvalidStatusTransitionError):
            AssignmentService.approve(db_session, assignment.id, admin_user)

        db_session.refresh(assignment)
        assert assignment.status == AssignmentStatus.REJECTED.value
        assert_conserved(db_session, device)

    def test_delete_live_assignment_releases_units(self, db_session, admin_user, device, request_units):
        assignment = request_units(4)
        AssignmentService.approve(db_session, assignment.id, admin_user)

        AssignmentService.delete_assignment(db_session, assignment.id, admin_user)

        assert StockLedger.available_quantity(db_session, device.id) == 5
        assert_conserved(db_session, device)

    def test_delete_rejected_assignment_releases_nothing(self, db_session, admin_user, device, request_units):
        kept = request_units(3)
        rejected = request_units(2)
        AssignmentService.reject(db_session, rejected.id, "Duplicate", admin_user)

        AssignmentService.delete_assignment(db_session, rejected.id, admin_user)

        assert StockLedger.available_quantity(db_session, device.id) == 2
        assert db_session.get(Assignment, kept.id) is not None
        assert_conserved(db_session, device)


class TestUpdates:
    def test_increase_quantity_within_stock(self, db_session, admin_user, device, request_units):
        assignment = request_units(2)

        AssignmentService.update_assignment(
            db_session, assignment.id, AssignmentUpdateRequest(quantity=5), admin_user
        )

        assert StockLedger.available_quantity(db_session, device.id) == 0
        assert_conserved(db_session, device)

    def test_increase_beyond_stock_fails(self, db_session, admin_user, device, request_units):
        assignment = request_units(2)
        request_units(2)

        with pytest.raises(InsufficientQuantityError) as exc_info:
            AssignmentService.update_assignment(
                db_session, assignment.id, AssignmentUpdateRequest(quantity=4), admin_user
            )

        assert exc_info.value.available == 3
        db_session.refresh(assignment)
        assert assignment.quantity == 2
        assert_conserved(db_session, device)

    def test_decrease_quantity_releases_units(self, db_session, admin_user, device, request_units):
        assignment = request_units(4)

        AssignmentService.update_assignment(
            db_session, assignment.id, AssignmentUpdateRequest(quantity=1), admin_user
        )

        assert StockLedger.available_quantity(db_session, device.id) == 4
        assert_conserved(db_session, device)

    def test_move_request_to_other_device(self, db_session, admin_user, device, request_units):
        other = Device(
            asset_tag="CS-PC-002",
            device_name="Laptop",
            category="Computer",
            quantity=3,
            committed_quantity=0,
        )
        db_session.add(other)
        db_session.commit()
        assignment = request_units(2)

        AssignmentService.update_assignment(
            db_session, assignment.id, AssignmentUpdateRequest(device_id=other.id), admin_user
        )

        assert StockLedger.available_quantity(db_session, device.id) == 5
        assert StockLedger.available_quantity(db_session, other.id) == 1
        assert_conserved(db_session, device)
        assert_conserved(db_session, other)


@pytest.fixture
def second_session(session_factory):
    """A second session on the same database, standing in for a concurrent request."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


class TestConcurrentWriters:
    """Two requests that both read before either writes."""

    def test_concurrent_reservations_take_last_units_once(self, db_session, second_session, device):
        StockLedger.assert_can_commit(db_session, device.id, 4)
        StockLedger.assert_can_commit(second_session, device.id, 4)

        StockLedger.reserve(db_session, device.id, 4)
        db_session.commit()
        with pytest.raises(InsufficientQuantityError) as exc_info:
            StockLedger.reserve(second_session, device.id, 4)
        second_session.rollback()

        assert exc_info.value.available == 1
        db_session.refresh(device)
        assert device.committed_quantity == 4

    def test_double_reject_releases_once(self, db_session, second_session, admin_user, device, request_units):
        first = request_units(3)
        request_units(2)
        stale = AssignmentService.get_assignment(second_session, first.id)
        assert stale.status == AssignmentStatus.REQUESTED.value

        AssignmentService.reject(db_session, first.id, "Not needed", admin_user)
        with pytest.raises(InvalidStatusTransitionError):
            AssignmentService.reject(second_session, first.id, "Not needed", admin_user)

        assert_conserved(db_session, device)
        assert StockLedger.available_quantity(db_session, device.id) == 3
        with pytest.raises(InsufficientQuantityError):
            StockLedger.reserve(db_session, device.id, 5)

    def test_double_delete_releases_once(self, db_session, second_session, admin_user, device, request_units):
        first = request_units(3)
        request_units(2)
        stale = AssignmentService.get_assignment(second_session, first.id)

        AssignmentService.delete_assignment(db_session, first.id, admin_user)
        with pytest.raises(NotFoundError):
            AssignmentStateMachine.delete(second_session, stale)

        assert_conserved(db_session, device)
        assert StockLedger.available_quantity(db_session, device.id) == 3

    def test_delete_after_concurrent_reject_releases_once(
        self, db_session, second_session, admin_user, device, request_units
    ):
        first = request_units(3)
        request_units(2)
        AssignmentService.get_assignment(second_session, first.id)

        AssignmentService.reject(db_session, first.id, "Not needed", admin_user)
        with pytest.raises(ConflictError):
            AssignmentService.delete_assignment(second_session, first.id, admin_user)

        assert db_session.get(Assignment, first.id) is not None
        assert_conserved(db_session, device)

    def test_concurrent_quantity_edits_apply_once(
        self, db_session, second_session, admin_user, device, request_units
    ):
        assignment = request_units(2)
        AssignmentService.get_assignment(second_session, assignment.id)

        AssignmentService.update_assignment(
            db_session, assignment.id, AssignmentUpdateRequest(quantity=4), admin_user
        )
        with pytest.raises(ConflictError):
            AssignmentService.update_assignment(
                second_session, assignment.id, AssignmentUpdateRequest(quantity=3), admin_user
            )

        db_session.refresh(assignment)
        assert assignment.quantity == 4
        assert_conserved(db_session, device)


class TestReconcile:
    def test_reconcile_repairs_drift(self, db_session, device, request_units):
        request_units(3)
        device.committed_quantity = 0
        db_session.commit()

        drift = StockLedger.reconcile(db_session)

        assert len(drift) == 1
        assert drift[0]["recorded"] == 0
        assert drift[0]["actual"] == 3
        assert_conserved(db_session, device)

    def test_reconcile_is_idempotent(self, db_session, device, request_units):
        request_units(3)

        assert StockLedger.reconcile(db_session) == []
        assert StockLedger.reconcile(db_session, device.id) == []
