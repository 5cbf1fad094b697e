import ipaddress
from typing import Callable, Generator, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.database import SessionLocal
from app.core.exceptions import InsufficientPermissionsError
from app.core.revocation import RevocationRegistry, get_revocation_registry
from app.models import User
from app.services.audit_service import RequestContext
from app.services.auth_service import AuthService


# HTTP Bearer token scheme; missing tokens are reported as NO_TOKEN by the auth service
security = HTTPBearer(auto_error=False)

SESSION_COOKIE = "session_id"
REFRESH_COOKIE = "refresh_token"


def get_db() -> Generator:
    """Database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_registry() -> RevocationRegistry:
    return get_revocation_registry()


def get_client_ip(request: Request) -> Optional[str]:
    """First X-Forwarded-For hop, else the peer address. Anything that is not an IP is dropped."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        candidate = forwarded.split(",")[0].strip()
    else:
        candidate = request.client.host if request.client else None
    try:
        return str(ipaddress.ip_address(candidate)) if candidate else None
    except ValueError:
        return None


def get_request_context(request: Request) -> RequestContext:
    """Client details for audit entries written while serving this request."""
    return RequestContext(
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        session_id=request.cookies.get(SESSION_COOKIE) or request.headers.get("x-session-id"),
    )


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[str]:
    return credentials.credentials if credentials else None


def get_current_user(
    request: Request,
    token: Optional[str] = Depends(get_bearer_token),
    db: Session = Depends(get_db),
    registry: RevocationRegistry = Depends(get_registry),
) -> User:
    """
    Dependency to get the current authenticated user from the access token.
    The user is also attached to request.state for rate limiting and handlers.
    """
    user, _ = AuthService.authenticate(db, token, registry, get_request_context(request))
    request.state.user = user
    return user


def require_roles(*roles: str) -> Callable[..., User]:
    """
    Dependency factory restricting a route to the given roles.

        @router.post("/", dependencies=[Depends(require_roles("SUPER_ADMIN"))])
    """
    allowed = [getattr(role, "value", role) for role in roles]

    def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed:
            raise InsufficientPermissionsError(allowed)
        return current_user

    return checker
