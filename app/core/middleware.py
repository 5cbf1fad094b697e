"""HTTP hardening middleware for the Asset Guardian API."""

import json
import logging
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings

logger = logging.getLogger(__name__)


def _error_response(status_code: int, detail: str, error_code: str) -> Response:
    return Response(
        content=json.dumps({"detail": detail, "error_code": error_code}),
        status_code=status_code,
        media_type="application/json",
    )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none'; base-uri 'none'"
        )
        response.headers["Permissions-Policy"] = "camera=(), geolocation=(), microphone=(), usb=()"

        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        # Responses may carry tokens
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store"
            response.headers["Pragma"] = "no-cache"

        return response


class RequestValidationMiddleware(BaseHTTPMiddleware):
    """Reject oversized bodies and non-JSON writes before routing."""

    # JSON API only; no uploads
    MAX_BODY_SIZE = 1024 * 1024

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        content_length = request.headers.get("content-length")
        if content_length:
            try:
                size = int(content_length)
            except ValueError:
                return _error_response(400, "Invalid Content-Length header", "VALIDATION_ERROR")
            if size > self.MAX_BODY_SIZE:
                logger.warning(f"Rejected {size} byte body on {request.url.path}")
                return _error_response(413, "Request body too large", "VALIDATION_ERROR")

        if request.method in ("POST", "PUT", "PATCH"):
            content_type = request.headers.get("content-type", "")
            if content_type and "application/json" not in content_type:
                return _error_response(415, "Unsupported content type", "VALIDATION_ERROR")

        return await call_next(request)
