from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
from slowapi.errors import RateLimitExceeded
import logging

from app.core.config import settings
from app.core.database import engine
from app.core.exceptions import AssetGuardianException
from app.core.rate_limit import limiter
from app.core.security import utcnow
from app.core.middleware import (
    SecurityHeadersMiddleware,
    RequestValidationMiddleware,
)
from app.api.routes.auth import router as auth_router
from app.api.routes.users import router as users_router
from app.api.routes.devices import router as devices_router
from app.api.routes.assignments import router as assignments_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def run_migrations():
    """Run database migrations on startup."""
    try:
        from alembic.config import Config
        from alembic import command

        logger.info("Running database migrations...")
        alembic_cfg = Config("alembic.ini")
        command.upgrade(alembic_cfg, "head")
        logger.info("Database migrations completed successfully")
    except Exception as e:
        # Startup continues; the schema may already be current
        logger.error(f"Failed to run migrations: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting Asset Guardian API...")

    config_errors = settings.validate_required_secrets()
    for error in config_errors:
        logger.error(f"Configuration error: {error}")
    if config_errors and settings.is_production:
        raise RuntimeError("Refusing to start with invalid configuration")

    if settings.is_production:
        run_migrations()

    from app.core.scheduler import start_scheduler, shutdown_scheduler
    if settings.SCHEDULER_ENABLED:
        start_scheduler()

    logger.info("Asset Guardian API started successfully")
    yield
    shutdown_scheduler()
    logger.info("Shutting down Asset Guardian API...")


app = FastAPI(
    title="Asset Guardian API",
    description="IT asset inventory: authentication, devices and stock-checked assignments",
    version="1.0.0",
    lifespan=lifespan,
    # Disable docs in production
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
)

# Add rate limiting
app.state.limiter = limiter


# Exception handlers
@app.exception_handler(AssetGuardianException)
async def asset_guardian_exception_handler(request: Request, exc: AssetGuardianException):
    """Render domain errors as {detail, error_code} plus any structured extras."""
    content = {
        "detail": exc.detail,
        "error_code": exc.error_code,
    }
    content.update(exc.extra())
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=exc.headers,
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit exceeded on {request.url.path}")
    return JSONResponse(
        status_code=429,
        content={
            "detail": f"Rate limit exceeded: {exc.detail}",
            "error_code": "RATE_LIMIT_EXCEEDED",
        },
    )


@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
    """Handle database errors."""
    logger.error(f"Database error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "A database error occurred",
            "error_code": "DATABASE_ERROR",
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "An unexpected error occurred",
            "error_code": "INTERNAL_ERROR",
        },
    )

# Security middleware (order matters - first added = last executed)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestValidationMiddleware)

# Configure CORS; credentials are needed for the refresh cookie
allowed_origins = [settings.FRONTEND_URL]
if not settings.is_production:
    allowed_origins.extend([
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "Accept",
        "Origin",
        "X-Requested-With",
        "X-Session-Id",
    ],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
    max_age=600,  # Cache preflight requests for 10 minutes
)

# Include routers
app.include_router(auth_router, prefix="/api")
app.include_router(users_router, prefix="/api")
app.include_router(devices_router, prefix="/api")
app.include_router(assignments_router, prefix="/api")


@app.get("/")
def root():
    return {"message": "Welcome to Asset Guardian API"}


@app.get("/health")
def health_check():
    """Health check endpoint for load balancers and monitoring."""
    health_status = {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "version": "1.0.0",
    }

    # Check database connectivity
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["status"] = "unhealthy"
        health_status["database"] = "disconnected"

    return health_status
