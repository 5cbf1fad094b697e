from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.models import AssignmentReason, AssignmentStatus


class AssignmentCreateRequest(BaseModel):
    device_id: UUID
    department_id: UUID
    location_id: Optional[UUID] = None
    quantity: int = Field(1, ge=1, description="Units of the device to assign")
    reason: AssignmentReason = AssignmentReason.OTHER
    notes: Optional[str] = Field(None, max_length=2000)


class AssignmentUpdateRequest(BaseModel):
    """Edit an open assignment. The device can only change while REQUESTED."""
    device_id: Optional[UUID] = None
    department_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    quantity: Optional[int] = Field(None, ge=1)
    reason: Optional[AssignmentReason] = None
    notes: Optional[str] = Field(None, max_length=2000)


class AssignmentRejectRequest(BaseModel):
    remarks: str = Field(..., min_length=5, max_length=500)


class AssignmentStatusRequest(BaseModel):
    status: AssignmentStatus
    remarks: Optional[str] = Field(None, min_length=5, max_length=500)


class AssignmentResponse(BaseModel):
    id: UUID
    device_id: UUID
    department_id: UUID
    location_id: Optional[UUID] = None
    requested_by: Optional[UUID] = None
    approved_by: Optional[UUID] = None
    quantity: int
    reason: str
    notes: Optional[str] = None
    remarks: Optional[str] = None
    status: str
    assigned_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AssignmentListResponse(BaseModel):
    assignments: List[AssignmentResponse]
    total: int
    page: int
    limit: int
    pages: int


class AssignmentStatsResponse(BaseModel):
    total: int
    by_status: dict[str, int]
    units_committed: int
