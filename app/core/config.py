from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"

    # Database
    DATABASE_URL: str

    # JWT - access and refresh tokens are signed with separate secrets
    SECRET_KEY: str
    REFRESH_SECRET_KEY: str
    ALGORITHM: str = "HS256"
    BCRYPT_ROUNDS: int = 12
    ACCESS_TOKEN_EXPIRES_IN: str = "24h"
    ACCESS_TOKEN_REMEMBER_EXPIRES_IN: str = "30d"
    REFRESH_TOKEN_EXPIRES_IN: str = "7d"
    REFRESH_TOKEN_REMEMBER_EXPIRES_IN: str = "60d"

    # Account lockout
    MAX_LOGIN_ATTEMPTS: int = 5
    LOCK_DURATION_MINUTES: int = 120

    # Token revocation: "memory" (single process) or "database" (shared)
    REVOCATION_BACKEND: str = "memory"
    REVOCATION_PRUNE_INTERVAL_MINUTES: int = 15

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    STOCK_RECONCILE_INTERVAL_MINUTES: int = 60

    # Auth cookies
    COOKIE_SECURE: bool = True
    COOKIE_SAMESITE: str = "strict"

    # CORS
    FRONTEND_URL: str = "http://localhost:8080"

    def validate_required_secrets(self) -> list[str]:
        """Validate that critical secrets are set. Returns list of errors."""
        errors = []
        if not self.SECRET_KEY or len(self.SECRET_KEY) < 16:
            errors.append("SECRET_KEY must be set and at least 16 characters")
        if not self.REFRESH_SECRET_KEY or len(self.REFRESH_SECRET_KEY) < 16:
            errors.append("REFRESH_SECRET_KEY must be set and at least 16 characters")
        if self.SECRET_KEY and self.SECRET_KEY == self.REFRESH_SECRET_KEY:
            errors.append("REFRESH_SECRET_KEY must differ from SECRET_KEY")
        if not self.DATABASE_URL:
            errors.append("DATABASE_URL must be set")
        if self.REVOCATION_BACKEND not in ("memory", "database"):
            errors.append("REVOCATION_BACKEND must be 'memory' or 'database'")
        return errors

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
