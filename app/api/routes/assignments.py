from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_db, get_request_context, require_roles
from app.core.exceptions import InsufficientPermissionsError
from app.models import AssignmentStatus, User, UserRole
from app.schemas.assignments import (
    AssignmentCreateRequest,
    AssignmentListResponse,
    AssignmentRejectRequest,
    AssignmentResponse,
    AssignmentStatsResponse,
    AssignmentStatusRequest,
    AssignmentUpdateRequest,
)
from app.services.assignment_service import AssignmentService


router = APIRouter(prefix="/assignments", tags=["Assignments"])

require_super_admin = require_roles(UserRole.SUPER_ADMIN)
require_fulfilment_staff = require_roles(UserRole.SUPER_ADMIN, UserRole.IT_STAFF)

# Roles allowed to move an assignment into each status
STATUS_ROLES = {
    AssignmentStatus.APPROVED: (UserRole.SUPER_ADMIN.value, UserRole.IT_STAFF.value),
    AssignmentStatus.REJECTED: (UserRole.SUPER_ADMIN.value,),
    AssignmentStatus.COMPLETED: (UserRole.SUPER_ADMIN.value, UserRole.IT_STAFF.value),
    AssignmentStatus.MAINTENANCE: (UserRole.SUPER_ADMIN.value, UserRole.IT_STAFF.value),
}


@router.get("", response_model=AssignmentListResponse)
def list_assignments(
    status_filter: Optional[AssignmentStatus] = Query(None, alias="status"),
    device_id: Optional[UUID] = Query(None),
    department_id: Optional[UUID] = Query(None),
    requested_by: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List assignments. Department in-charges only see their own department."""
    result = AssignmentService.list_assignments(
        db,
        current_user,
        status=status_filter,
        device_id=device_id,
        department_id=department_id,
        requested_by=requested_by,
        page=page,
        limit=limit,
    )
    return AssignmentListResponse(
        assignments=[AssignmentResponse.model_validate(a) for a in result["assignments"]],
        total=result["total"],
        page=result["page"],
        limit=result["limit"],
        pages=result["pages"],
    )


@router.get("/stats", response_model=AssignmentStatsResponse)
def get_assignment_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return AssignmentService.get_stats(db, current_user)


@router.get("/{assignment_id}", response_model=AssignmentResponse)
def get_assignment(
    assignment_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return AssignmentResponse.model_validate(
        AssignmentService.get_assignment(db, assignment_id, current_user)
    )


@router.post("", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
def create_assignment(
    request: Request,
    data: AssignmentCreateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Request units of a device for a department.
    Fails with INSUFFICIENT_QUANTITY when the device lacks free units.
    """
    assignment = AssignmentService.create_assignment(
        db, data, current_user, context=get_request_context(request)
    )
    return AssignmentResponse.model_validate(assignment)


@router.patch("/{assignment_id}", response_model=AssignmentResponse)
def update_assignment(
    request: Request,
    assignment_id: UUID,
    data: AssignmentUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    assignment = AssignmentService.update_assignment(
        db, assignment_id, data, current_user, context=get_request_context(request)
    )
    return AssignmentResponse.model_validate(assignment)


@router.patch("/{assignment_id}/approve", response_model=AssignmentResponse)
def approve_assignment(
    request: Request,
    assignment_id: UUID,
    current_user: User = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    assignment = AssignmentService.approve(
        db, assignment_id, current_user, context=get_request_context(request)
    )
    return AssignmentResponse.model_validate(assignment)


@router.patch("/{assignment_id}/reject", response_model=AssignmentResponse)
def reject_assignment(
    request: Request,
    assignment_id: UUID,
    data: AssignmentRejectRequest,
    current_user: User = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    """Reject a request. Its units become available again."""
    assignment = AssignmentService.reject(
        db, assignment_id, data.remarks, current_user, context=get_request_context(request)
    )
    return AssignmentResponse.model_validate(assignment)


@router.patch("/{assignment_id}/complete", response_model=AssignmentResponse)
def complete_assignment(
    request: Request,
    assignment_id: UUID,
    current_user: User = Depends(require_fulfilment_staff),
    db: Session = Depends(get_db),
):
    assignment = AssignmentService.complete(
        db, assignment_id, current_user, context=get_request_context(request)
    )
    return AssignmentResponse.model_validate(assignment)


@router.patch("/{assignment_id}/status", response_model=AssignmentResponse)
def change_assignment_status(
    request: Request,
    assignment_id: UUID,
    data: AssignmentStatusRequest,
    current_user: User = Depends(require_fulfilment_staff),
    db: Session = Depends(get_db),
):
    """
    Move an assignment to any status its current status allows.
    Approving a new request and rejecting are reserved for super admins.
    """
    allowed = STATUS_ROLES.get(data.status, ())
    if data.status == AssignmentStatus.APPROVED:
        current = AssignmentService.get_assignment(db, assignment_id)
        if current.status == AssignmentStatus.REQUESTED.value:
            allowed = (UserRole.SUPER_ADMIN.value,)
    if current_user.role not in allowed:
        raise InsufficientPermissionsError(allowed)

    assignment = AssignmentService.change_status(
        db,
        assignment_id,
        data.status,
        current_user,
        remarks=data.remarks,
        context=get_request_context(request),
    )
    return AssignmentResponse.model_validate(assignment)


@router.delete("/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_assignment(
    request: Request,
    assignment_id: UUID,
    current_user: User = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    """Delete an assignment and give back any units it held."""
    AssignmentService.delete_assignment(
        db, assignment_id, current_user, context=get_request_context(request)
    )
