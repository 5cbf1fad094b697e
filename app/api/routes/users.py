from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_request_context, require_roles
from app.models import User, UserRole
from app.schemas.auth import UserResponse
from app.schemas.users import CreateUserRequest, UpdateUserStatusRequest
from app.services.user_service import UserService


router = APIRouter(prefix="/users", tags=["Users"])

require_super_admin = require_roles(UserRole.SUPER_ADMIN)


@router.get("", response_model=List[UserResponse])
def list_users(
    admin: User = Depends(require_roles(UserRole.SUPER_ADMIN, UserRole.IT_STAFF)),
    db: Session = Depends(get_db),
):
    """List all users."""
    return [UserResponse.model_validate(u) for u in UserService.get_all_users(db)]


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    request: Request,
    data: CreateUserRequest,
    admin: User = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    """Create a user account. Super admin only."""
    user = UserService.create_user(db, data, created_by=admin, context=get_request_context(request))
    return UserResponse.model_validate(user)


@router.patch("/{user_id}/status", response_model=UserResponse)
def update_user_status(
    request: Request,
    user_id: UUID,
    data: UpdateUserStatusRequest,
    admin: User = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    """Activate or deactivate a user. Deactivated users fail authentication immediately."""
    user = UserService.set_active(db, user_id, data.is_active, admin, context=get_request_context(request))
    return UserResponse.model_validate(user)


@router.post("/{user_id}/unlock", response_model=UserResponse)
def unlock_user(
    request: Request,
    user_id: UUID,
    admin: User = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    """Clear a user's failed login attempts and lock."""
    user = UserService.unlock(db, user_id, admin, context=get_request_context(request))
    return UserResponse.model_validate(user)
