from typing import Optional

from fastapi import APIRouter, Body, Depends, Request, Response
from sqlalchemy.orm import Session

from app.api.deps import (
    REFRESH_COOKIE,
    SESSION_COOKIE,
    get_bearer_token,
    get_current_user,
    get_db,
    get_registry,
    get_request_context,
)
from app.core.config import settings
from app.core.rate_limit import (
    LOGIN_LIMIT,
    PASSWORD_CHANGE_LIMIT,
    REFRESH_LIMIT,
    limiter,
    public_limiter,
)
from app.core.revocation import RevocationRegistry
from app.models import User
from app.schemas.auth import (
    AuthResponse,
    ChangePasswordRequest,
    LoginRequest,
    MessageResponse,
    RefreshTokenRequest,
    RefreshTokenResponse,
    UpdateProfileRequest,
    UserResponse,
)
from app.services.auth_service import AuthService


router = APIRouter(prefix="/auth", tags=["Authentication"])

# Cookies only travel to the auth endpoints
COOKIE_PATH = "/api/auth"


def _set_session_cookies(
    response: Response,
    refresh_token: str,
    max_age: int,
    session_id: Optional[str] = None,
) -> None:
    response.set_cookie(
        REFRESH_COOKIE,
        refresh_token,
        max_age=max_age,
        path=COOKIE_PATH,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite=settings.COOKIE_SAMESITE,
    )
    if session_id:
        response.set_cookie(
            SESSION_COOKIE,
            session_id,
            max_age=max_age,
            path="/",
            httponly=True,
            secure=settings.COOKIE_SECURE,
            samesite=settings.COOKIE_SAMESITE,
        )


def _clear_session_cookies(response: Response) -> None:
    response.delete_cookie(
        REFRESH_COOKIE, path=COOKIE_PATH, secure=settings.COOKIE_SECURE,
        httponly=True, samesite=settings.COOKIE_SAMESITE,
    )
    response.delete_cookie(
        SESSION_COOKIE, path="/", secure=settings.COOKIE_SECURE,
        httponly=True, samesite=settings.COOKIE_SAMESITE,
    )


@router.post("/login", response_model=AuthResponse)
@public_limiter.limit(LOGIN_LIMIT)
def login(
    request: Request,
    response: Response,
    data: LoginRequest,
    db: Session = Depends(get_db),
):
    """
    Authenticate with email and password.
    Sets http-only refresh and session cookies alongside the JSON body.
    """
    user, pair, session_id = AuthService.login(
        db,
        data.email,
        data.password,
        remember_me=data.remember_me,
        context=get_request_context(request),
    )
    _set_session_cookies(response, pair.refresh_token, pair.refresh_expires_in, session_id)

    return AuthResponse(
        access_token=pair.access_token,
        session_id=session_id,
        expires_in=pair.access_expires_in,
        refresh_token=pair.refresh_token,
        user=UserResponse.model_validate(user),
    )


@router.post("/refresh-token", response_model=RefreshTokenResponse)
@public_limiter.limit(REFRESH_LIMIT)
def refresh_token(
    request: Request,
    response: Response,
    data: Optional[RefreshTokenRequest] = Body(None),
    db: Session = Depends(get_db),
    registry: RevocationRegistry = Depends(get_registry),
):
    """
    Exchange a refresh token for a new pair. The cookie is used when the
    body does not carry one. The presented token cannot be used again.
    """
    token = (data.refresh_token if data else None) or request.cookies.get(REFRESH_COOKIE)
    user, pair = AuthService.refresh_tokens(
        db, token, registry, context=get_request_context(request)
    )
    _set_session_cookies(response, pair.refresh_token, pair.refresh_expires_in)

    return RefreshTokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.access_expires_in,
        user=UserResponse.model_validate(user),
    )


@router.post("/logout", response_model=MessageResponse)
def logout(
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
    token: Optional[str] = Depends(get_bearer_token),
    db: Session = Depends(get_db),
    registry: RevocationRegistry = Depends(get_registry),
):
    """Revoke the current access token and clear the session cookies."""
    AuthService.logout(
        db,
        current_user,
        token,
        registry,
        refresh_token=request.cookies.get(REFRESH_COOKIE),
        context=get_request_context(request),
    )
    _clear_session_cookies(response)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserResponse)
def get_me(current_user: User = Depends(get_current_user)):
    """Get current user information."""
    return UserResponse.model_validate(current_user)


@router.patch("/profile", response_model=UserResponse)
def update_profile(
    request: Request,
    data: UpdateProfileRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Update the current user's display name."""
    user = AuthService.update_profile(
        db, current_user, data.name, context=get_request_context(request)
    )
    return UserResponse.model_validate(user)


@router.patch("/change-password", response_model=MessageResponse)
@limiter.limit(PASSWORD_CHANGE_LIMIT)
def change_password(
    request: Request,
    response: Response,
    data: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Change the current user's password.
    All existing tokens stop working; the client must log in again.
    """
    AuthService.change_password(
        db,
        current_user,
        data.current_password,
        data.new_password,
        context=get_request_context(request),
    )
    _clear_session_cookies(response)
    return MessageResponse(message="Password changed successfully. Please log in again.")
