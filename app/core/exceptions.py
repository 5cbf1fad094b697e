"""Custom exceptions and error handling for the Asset Guardian API."""

from typing import Iterable

from fastapi import HTTPException, status


class AssetGuardianException(HTTPException):
    """Base exception for the Asset Guardian API."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: str | None = None,
        headers: dict | None = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code

    def extra(self) -> dict:
        """Additional machine-readable fields rendered next to detail/error_code."""
        return {}


# Authentication Errors (401, 423)
class AuthenticationError(AssetGuardianException):
    """Base class for 401 responses carrying a Bearer challenge."""

    def __init__(self, detail: str, error_code: str, status_code: int = status.HTTP_401_UNAUTHORIZED):
        super().__init__(
            status_code=status_code,
            detail=detail,
            error_code=error_code,
            headers={"WWW-Authenticate": "Bearer"},
        )


class InvalidCredentialsError(AuthenticationError):
    """Raised when login credentials are invalid. Never reveals whether the email exists."""

    def __init__(self, detail: str = "Invalid email or password"):
        super().__init__(detail=detail, error_code="INVALID_CREDENTIALS")


class AccountLockedError(AuthenticationError):
    """Raised when the account is inside a lockout window."""

    def __init__(
        self,
        detail: str = "Account is temporarily locked due to multiple failed login attempts",
    ):
        super().__init__(
            detail=detail,
            error_code="ACCOUNT_LOCKED",
            status_code=status.HTTP_423_LOCKED,
        )


class AccountDeactivatedError(AuthenticationError):
    def __init__(self, detail: str = "Your account has been deactivated. Please contact an administrator."):
        super().__init__(detail=detail, error_code="ACCOUNT_DEACTIVATED")


class NoTokenError(AuthenticationError):
    def __init__(self, detail: str = "Access denied. No token provided."):
        super().__init__(detail=detail, error_code="NO_TOKEN")


class TokenBlacklistedError(AuthenticationError):
    def __init__(self, detail: str = "Token has been revoked"):
        super().__init__(detail=detail, error_code="TOKEN_BLACKLISTED")


class UserNotFoundError(AuthenticationError):
    def __init__(self, detail: str = "User for this token no longer exists"):
        super().__init__(detail=detail, error_code="USER_NOT_FOUND")


class PasswordChangedError(AuthenticationError):
    def __init__(self, detail: str = "Password was recently changed. Please log in again."):
        super().__init__(detail=detail, error_code="PASSWORD_CHANGED")


class InvalidRefreshTokenError(AuthenticationError):
    def __init__(self, detail: str = "Invalid or expired refresh token"):
        super().__init__(detail=detail, error_code="INVALID_REFRESH_TOKEN")


# Token verification errors share a base so callers can collapse them
class TokenVerificationError(AuthenticationError):
    """Raised when a JWT fails signature, expiry, type or format checks."""


class InvalidTokenError(TokenVerificationError):
    """Raised when JWT token is invalid."""

    def __init__(self, detail: str = "Invalid token"):
        super().__init__(detail=detail, error_code="INVALID_TOKEN")


class TokenExpiredError(TokenVerificationError):
    """Raised when JWT token has expired."""

    def __init__(self, detail: str = "Token has expired"):
        super().__init__(detail=detail, error_code="TOKEN_EXPIRED")


class MalformedTokenError(TokenVerificationError):
    def __init__(self, detail: str = "Malformed token"):
        super().__init__(detail=detail, error_code="MALFORMED_TOKEN")


class TokenNotActiveError(TokenVerificationError):
    def __init__(self, detail: str = "Token is not active yet"):
        super().__init__(detail=detail, error_code="TOKEN_NOT_ACTIVE")


class WrongTokenTypeError(TokenVerificationError):
    def __init__(self, expected_type: str):
        super().__init__(
            detail=f"Token type not accepted here, expected {expected_type} token",
            error_code="WRONG_TOKEN_TYPE",
        )


# Authorization Errors (403)
class InsufficientPermissionsError(AssetGuardianException):
    """Raised when a valid principal lacks the required role."""

    def __init__(self, required_roles: Iterable[str]):
        self.required_roles = list(required_roles)
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Insufficient permissions.",
            error_code="INSUFFICIENT_PERMISSIONS",
        )

    def extra(self) -> dict:
        return {"required_roles": self.required_roles}


# Resource Errors (404, 409)
class NotFoundError(AssetGuardianException):
    """Raised when a resource is not found."""

    def __init__(self, resource: str = "Resource", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail or f"{resource} not found",
            error_code="NOT_FOUND",
        )


class AlreadyExistsError(AssetGuardianException):
    """Raised when trying to create a resource that already exists."""

    def __init__(self, resource: str = "Resource", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail or f"{resource} already exists",
            error_code="ALREADY_EXISTS",
        )


class ConflictError(AssetGuardianException):
    """Raised when a record changed between being read and being written."""

    def __init__(self, resource: str = "Resource", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail or f"{resource} was modified by another request. Reload and try again.",
            error_code="CONFLICT",
        )


# Validation Errors (400)
class ValidationError(AssetGuardianException):
    """Raised when input validation fails."""

    def __init__(self, detail: str = "Invalid input"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="VALIDATION_ERROR",
        )


class PasswordUnchangedError(AssetGuardianException):
    def __init__(self, detail: str = "New password must be different from the current password"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="PASSWORD_UNCHANGED",
        )


class InsufficientQuantityError(AssetGuardianException):
    """Raised when a device does not have enough free units for a request."""

    def __init__(self, available: int, requested: int):
        self.available = available
        self.requested = requested
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Insufficient quantity. Available: {available}, Requested: {requested}",
            error_code="INSUFFICIENT_QUANTITY",
        )

    def extra(self) -> dict:
        return {"available": self.available, "requested": self.requested}


class InvalidStatusTransitionError(AssetGuardianException):
    def __init__(self, current: str, target: str):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot move assignment from {current} to {target}",
            error_code="INVALID_STATUS_TRANSITION",
        )
