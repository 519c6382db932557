"""
Application Configuration
"""
from pydantic_settings import BaseSettings
from typing import List, Optional
import warnings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "CondoHub Backend API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./condohub.db"

    # Security
    SECRET_KEY: str = "your-super-secret-key-change-in-production-min-32-chars"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440  # 24 hours

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Scheduling
    TIMEZONE: str = "America/Sao_Paulo"
    SCHEDULER_ENABLED: bool = True
    JOB_DEADLINE_SECONDS: float = 1800.0

    # Late fees (percent values)
    LATE_FEE_BASE_PERCENT: float = 2.0
    LATE_FEE_DAILY_PERCENT: float = 0.1
    LATE_FEE_CAP_PERCENT: Optional[float] = None  # None keeps fees uncapped

    # Maintenance / financial integration
    MAINTENANCE_PAYMENT_TERM_DAYS: int = 30
    UPCOMING_DUE_DAYS_AHEAD: int = 3
    PAYMENT_SYNC_WINDOW_HOURS: int = 6
    PAYMENT_SYNC_BATCH_LIMIT: int = 50
    AUDIT_RETENTION_DAYS: int = 180  # ~6 months
    EMERGENCY_PAUSE_SECONDS: float = 1.0
    AUTO_BILLING_LEAD_DAYS: int = 10

    # Dashboard
    DASHBOARD_UPCOMING_DAYS: int = 7
    DASHBOARD_UPCOMING_LIMIT: int = 10
    DASHBOARD_PENDING_APPROVAL_LIMIT: int = 5

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def database_url(self) -> str:
        """Get properly formatted database URL"""
        url = self.DATABASE_URL
        if url.startswith("file:"):
            path = url[5:]
            return f"sqlite:///{path}"
        return url

    @property
    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.ENVIRONMENT.lower() == "production"

    def validate_security_settings(self):
        """Validate security settings and warn about insecure defaults"""
        default_keys = [
            "your-super-secret-key-change-in-production-min-32-chars",
            "dev-secret-key-change-in-production",
            "secret-key",
            "change-me",
        ]

        if self.SECRET_KEY in default_keys:
            if self.is_production:
                raise ValueError(
                    "CRITICAL: Default SECRET_KEY detected in production! "
                    "Set the SECRET_KEY environment variable to a secure random value."
                )
            else:
                warnings.warn(
                    "WARNING: Using default SECRET_KEY. "
                    "Set SECRET_KEY environment variable for production.",
                    UserWarning
                )

        if len(self.SECRET_KEY) < 32:
            if self.is_production:
                raise ValueError(
                    "CRITICAL: SECRET_KEY is too short for production! "
                    "Use at least 32 characters."
                )
            else:
                warnings.warn(
                    "WARNING: SECRET_KEY should be at least 32 characters.",
                    UserWarning
                )

        if self.is_production and self.DEBUG:
            raise ValueError(
                "CRITICAL: DEBUG mode is enabled in production! "
                "Set DEBUG=False for production environment."
            )

        if self.LATE_FEE_CAP_PERCENT is not None and self.LATE_FEE_CAP_PERCENT < 0:
            raise ValueError("LATE_FEE_CAP_PERCENT must be positive when set")

        return True

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()

# Validate on import (but don't crash in development)
try:
    settings.validate_security_settings()
except ValueError as e:
    if settings.is_production:
        raise
    else:
        warnings.warn(str(e), UserWarning)
