"""Rate limiting configuration using slowapi."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address


def get_user_identifier(request: Request) -> str:
    """
    Get identifier for rate limiting.
    Uses user ID if authenticated, otherwise IP address.
    """
    # Set by the get_current_user dependency
    user = getattr(request.state, "user", None)
    if user and hasattr(user, "id"):
        return f"user:{user.id}"

    return get_remote_address(request)


def get_ip_address(request: Request) -> str:
    """Get IP address for rate limiting public routes."""
    return get_remote_address(request)


# Authenticated routes
limiter = Limiter(
    key_func=get_user_identifier,
    default_limits=["1000/minute"],
)

# Login and refresh, keyed by client IP
public_limiter = Limiter(
    key_func=get_ip_address,
    default_limits=["100/minute"],
)

LOGIN_LIMIT = "10/minute"
REFRESH_LIMIT = "30/minute"

# Per authenticated user
PASSWORD_CHANGE_LIMIT = "5/minute"
