from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from app.schemas.auth import RoleType


class CreateUserRequest(BaseModel):
    """Request to create a user account (super admin only)."""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    name: str = Field(..., min_length=2, max_length=100)
    role: RoleType = "DEPARTMENT_INCHARGE"
    department_id: Optional[UUID] = Field(
        default=None,
        description="Required for every role except SUPER_ADMIN",
    )


class UpdateUserStatusRequest(BaseModel):
    is_active: bool
