import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.exceptions import AlreadyExistsError, NotFoundError, ValidationError
from app.core.sanitization import sanitize_email, sanitize_name
from app.core.security import get_password_hash, utcnow
from app.models import AuditAction, Department, User, UserRole
from app.repositories import SqlAlchemyUserRepository
from app.schemas.users import CreateUserRequest
from app.services.audit_service import AuditService, RequestContext
from app.services.auth_service import validate_password_strength

logger = logging.getLogger(__name__)


class UserService:
    """Service for user management operations."""

    @staticmethod
    def get_all_users(db: Session) -> List[User]:
        return db.query(User).order_by(User.created_at.desc()).all()

    @staticmethod
    def get_user(db: Session, user_id: UUID) -> User:
        user = SqlAlchemyUserRepository(db).find_by_id(user_id)
        if not user:
            raise NotFoundError("User")
        return user

    @staticmethod
    def create_user(
        db: Session,
        data: CreateUserRequest,
        created_by: Optional[User] = None,
        context: Optional[RequestContext] = None,
    ) -> User:
        """Create a user. Every role except SUPER_ADMIN belongs to a department."""
        email = sanitize_email(data.email)
        if SqlAlchemyUserRepository(db).find_by_email(email):
            raise AlreadyExistsError("User", "A user with this email already exists")

        validate_password_strength(data.password)

        if data.role != UserRole.SUPER_ADMIN.value:
            if not data.department_id:
                raise ValidationError("Department is required for this role")
            if not db.query(Department.id).filter(Department.id == data.department_id).first():
                raise NotFoundError("Department")

        now = utcnow()
        user = User(
            email=email,
            password_hash=get_password_hash(data.password),
            name=sanitize_name(data.name),
            role=data.role,
            department_id=data.department_id,
            is_active=True,
            login_attempts=0,
            password_changed_at=now,
            created_at=now,
        )
        db.add(user)
        db.flush()
        AuditService.record(
            db, "User", user.id, AuditAction.CREATE,
            performed_by=created_by.id if created_by else None,
            details={"new": {"email": user.email, "role": user.role}},
            context=context,
            commit=False,
        )
        db.commit()
        db.refresh(user)
        logger.info(f"User {user.id} created with role {user.role}")
        return user

    @staticmethod
    def set_active(
        db: Session,
        user_id: UUID,
        is_active: bool,
        admin: User,
        context: Optional[RequestContext] = None,
    ) -> User:
        user = UserService.get_user(db, user_id)
        if user.id == admin.id and not is_active:
            raise ValidationError("You cannot deactivate your own account")

        old_status = user.is_active
        user.is_active = is_active
        AuditService.record(
            db, "User", user.id, AuditAction.STATUS_CHANGE,
            performed_by=admin.id,
            details={"old": {"is_active": old_status}, "new": {"is_active": is_active}},
            context=context,
            commit=False,
        )
        db.commit()
        db.refresh(user)
        return user

    @staticmethod
    def unlock(
        db: Session,
        user_id: UUID,
        admin: User,
        context: Optional[RequestContext] = None,
    ) -> User:
        """Clear failed attempts and any active lock."""
        user = UserService.get_user(db, user_id)
        SqlAlchemyUserRepository(db).reset_login_attempts(user)
        AuditService.record(
            db, "User", user.id, AuditAction.UPDATE,
            performed_by=admin.id,
            details={"unlocked": True},
            context=context,
        )
        logger.info(f"User {user.id} unlocked by {admin.id}")
        return user
