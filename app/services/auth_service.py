import logging
import secrets
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    AccountDeactivatedError,
    AccountLockedError,
    InvalidCredentialsError,
    InvalidRefreshTokenError,
    MalformedTokenError,
    NoTokenError,
    PasswordChangedError,
    PasswordUnchangedError,
    TokenBlacklistedError,
    TokenExpiredError,
    TokenVerificationError,
    UserNotFoundError,
    ValidationError,
)
from app.core.revocation import RevocationRegistry
from app.core.sanitization import sanitize_email, sanitize_name
from app.core.security import (
    TOKEN_TYPE_ACCESS,
    TOKEN_TYPE_REFRESH,
    dummy_verify_password,
    get_password_hash,
    issue_token_pair,
    parse_duration,
    to_timestamp,
    utcnow,
    verify_password,
    verify_token,
)
from app.models import AuditAction, User
from app.repositories import SqlAlchemyUserRepository
from app.schemas.auth import TokenClaims, TokenPair
from app.services.audit_service import AuditService, RequestContext
from app.services.lockout import LockoutTracker

logger = logging.getLogger(__name__)


MIN_PASSWORD_LENGTH = 8


def validate_password_strength(password: str) -> None:
    """Validate password meets minimum requirements. Raises ValidationError if weak."""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not any(c.isupper() for c in password):
        raise ValidationError("Password must contain at least one uppercase letter")
    if not any(c.islower() for c in password):
        raise ValidationError("Password must contain at least one lowercase letter")
    if not any(c.isdigit() for c in password):
        raise ValidationError("Password must contain at least one number")


def token_lifetimes(remember_me: bool) -> tuple[str, str]:
    """Access and refresh lifetimes for a session."""
    if remember_me:
        return settings.ACCESS_TOKEN_REMEMBER_EXPIRES_IN, settings.REFRESH_TOKEN_REMEMBER_EXPIRES_IN
    return settings.ACCESS_TOKEN_EXPIRES_IN, settings.REFRESH_TOKEN_EXPIRES_IN


def password_changed_after(user: User, issued_at: float) -> bool:
    """True when the password changed after a token with this iat was issued."""
    if user.password_changed_at is None:
        return False
    return to_timestamp(user.password_changed_at) > issued_at


class AuthService:
    """Service for handling authentication business logic."""

    @staticmethod
    def login(
        db: Session,
        email: str,
        password: str,
        remember_me: bool = False,
        context: Optional[RequestContext] = None,
    ) -> tuple[User, TokenPair, str]:
        """
        Authenticate by email and password.
        Returns the user, a fresh token pair and a new session id.
        """
        users = SqlAlchemyUserRepository(db)
        lockout = LockoutTracker(users)
        email = sanitize_email(email)

        user = users.find_by_email(email)
        if not user:
            dummy_verify_password()
            logger.warning("Login failed for unknown email")
            AuditService.record(
                db, "User", email, AuditAction.LOGIN_FAILED,
                details={"success": False, "reason": "unknown_email"},
                context=context,
            )
            raise InvalidCredentialsError()

        if lockout.is_locked(user):
            logger.info(f"Login refused for locked account {user.id}")
            AuditService.record(
                db, "User", user.id, AuditAction.LOGIN_FAILED,
                performed_by=user.id,
                details={"success": False, "reason": "account_locked"},
                context=context,
            )
            raise AccountLockedError()

        if not user.is_active:
            AuditService.record(
                db, "User", user.id, AuditAction.LOGIN_FAILED,
                performed_by=user.id,
                details={"success": False, "reason": "account_deactivated"},
                context=context,
            )
            raise AccountDeactivatedError()

        if not verify_password(password, user.password_hash):
            lockout.record_failure(user)
            logger.warning(f"Login failed for {user.id}, attempts={user.login_attempts}")
            AuditService.record(
                db, "User", user.id, AuditAction.LOGIN_FAILED,
                performed_by=user.id,
                details={
                    "success": False,
                    "reason": "invalid_password",
                    "login_attempts": user.login_attempts,
                },
                context=context,
            )
            raise InvalidCredentialsError()

        lockout.record_success(user)
        user.last_login = utcnow()
        users.save(user)

        access_expires_in, refresh_expires_in = token_lifetimes(remember_me)
        pair = issue_token_pair(str(user.id), access_expires_in, refresh_expires_in)
        session_id = secrets.token_urlsafe(32)

        login_context = RequestContext(
            ip_address=context.ip_address if context else None,
            user_agent=context.user_agent if context else None,
            session_id=session_id,
        )
        AuditService.record(
            db, "User", user.id, AuditAction.LOGIN,
            performed_by=user.id,
            details={"success": True, "remember_me": remember_me},
            context=login_context,
        )
        logger.info(f"User {user.id} logged in")

        return user, pair, session_id

    @staticmethod
    def authenticate(
        db: Session,
        token: Optional[str],
        registry: RevocationRegistry,
        context: Optional[RequestContext] = None,
    ) -> tuple[User, TokenClaims]:
        """
        Resolve an access token to its user.

        Tokens that fail verification are revoked before the error is
        raised, so a rejected token can never succeed later.
        """
        if not token:
            raise NoTokenError()

        if registry.is_revoked(token):
            logger.warning("Revoked access token presented")
            AuditService.record(
                db, "Token", "access", AuditAction.LOGIN_FAILED,
                details={"success": False, "reason": "revoked_token_reused"},
                context=context,
            )
            raise TokenBlacklistedError()

        try:
            claims = verify_token(token, TOKEN_TYPE_ACCESS)
        except TokenVerificationError as e:
            registry.revoke(token)
            logger.info(f"Access token rejected: {e.error_code}")
            raise

        try:
            user_id = UUID(claims.sub)
        except ValueError:
            registry.revoke(token)
            raise MalformedTokenError()

        users = SqlAlchemyUserRepository(db)
        user = users.find_by_id(user_id)
        if user is None:
            raise UserNotFoundError()
        if not user.is_active:
            raise AccountDeactivatedError()
        if LockoutTracker.is_locked(user):
            raise AccountLockedError()

        if password_changed_after(user, claims.iat):
            registry.revoke(token)
            raise PasswordChangedError()

        # exp is enforced by the JWT decode; re-checked against our clock
        if claims.exp <= to_timestamp(utcnow()):
            registry.revoke(token)
            raise TokenExpiredError()

        return user, claims

    @staticmethod
    def refresh_tokens(
        db: Session,
        refresh_token: Optional[str],
        registry: RevocationRegistry,
        context: Optional[RequestContext] = None,
    ) -> tuple[User, TokenPair]:
        """
        Exchange a refresh token for a new pair. The presented token is
        claimed in the revocation registry before anything is minted, so a
        token can be exchanged at most once.
        """
        if not refresh_token:
            raise InvalidRefreshTokenError("Refresh token required")

        if registry.is_revoked(refresh_token):
            logger.warning("Revoked refresh token presented")
            AuditService.record(
                db, "Token", "refresh", AuditAction.TOKEN_REFRESH,
                details={"success": False, "reason": "revoked_token_reused"},
                context=context,
            )
            raise InvalidRefreshTokenError()

        try:
            claims = verify_token(refresh_token, TOKEN_TYPE_REFRESH)
            user_id = UUID(claims.sub)
        except (TokenVerificationError, ValueError) as e:
            registry.revoke(refresh_token)
            logger.info(f"Refresh token rejected: {getattr(e, 'error_code', 'MALFORMED_TOKEN')}")
            raise InvalidRefreshTokenError()

        user = SqlAlchemyUserRepository(db).find_by_id(user_id)
        if user is None or not user.is_active or LockoutTracker.is_locked(user):
            registry.revoke(refresh_token)
            raise InvalidRefreshTokenError()

        if password_changed_after(user, claims.iat):
            registry.revoke(refresh_token)
            raise PasswordChangedError()

        if not registry.revoke(refresh_token):
            # Another exchange claimed this token first
            logger.warning(f"Concurrent reuse of refresh token for user {user.id}")
            AuditService.record(
                db, "User", user.id, AuditAction.TOKEN_REFRESH,
                performed_by=user.id,
                details={"success": False, "reason": "revoked_token_reused"},
                context=context,
            )
            raise InvalidRefreshTokenError()

        # Keep remember-me sessions on their longer lifetimes
        lifetime = claims.exp - claims.iat
        remember_me = lifetime > parse_duration(settings.REFRESH_TOKEN_EXPIRES_IN).total_seconds()
        access_expires_in, refresh_expires_in = token_lifetimes(remember_me)
        pair = issue_token_pair(str(user.id), access_expires_in, refresh_expires_in)

        AuditService.record(
            db, "User", user.id, AuditAction.TOKEN_REFRESH,
            performed_by=user.id,
            details={"success": True},
            context=context,
        )
        return user, pair

    @staticmethod
    def logout(
        db: Session,
        user: User,
        access_token: str,
        registry: RevocationRegistry,
        refresh_token: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> None:
        """Revoke the presented access token and, if sent, the session's refresh token."""
        registry.revoke(access_token)
        if refresh_token:
            registry.revoke(refresh_token)

        AuditService.record(
            db, "User", user.id, AuditAction.LOGOUT,
            performed_by=user.id,
            details={"success": True},
            context=context,
        )
        logger.info(f"User {user.id} logged out")

    @staticmethod
    def change_password(
        db: Session,
        user: User,
        current_password: str,
        new_password: str,
        context: Optional[RequestContext] = None,
    ) -> None:
        """
        Change the user's password. Every token issued before the change is
        rejected afterwards, including the one used for this request.
        """
        if not verify_password(current_password, user.password_hash):
            AuditService.record(
                db, "User", user.id, AuditAction.PASSWORD_CHANGE,
                performed_by=user.id,
                details={"success": False, "reason": "invalid_current_password"},
                context=context,
            )
            raise InvalidCredentialsError("Current password is incorrect")

        if new_password == current_password:
            raise PasswordUnchangedError()

        validate_password_strength(new_password)

        user.password_hash = get_password_hash(new_password)
        user.password_changed_at = utcnow()
        AuditService.record(
            db, "User", user.id, AuditAction.PASSWORD_CHANGE,
            performed_by=user.id,
            details={"success": True},
            context=context,
            commit=False,
        )
        db.commit()
        db.refresh(user)
        logger.info(f"Password changed for user {user.id}")

    @staticmethod
    def update_profile(
        db: Session,
        user: User,
        name: str,
        context: Optional[RequestContext] = None,
    ) -> User:
        old_name = user.name
        user.name = sanitize_name(name)
        AuditService.record(
            db, "User", user.id, AuditAction.UPDATE,
            performed_by=user.id,
            details={"old": {"name": old_name}, "new": {"name": user.name}},
            context=context,
            commit=False,
        )
        db.commit()
        db.refresh(user)
        return user
