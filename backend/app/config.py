"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    APP_NAME: str = "CRM Workflow Engine"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./workflows.db"
    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Redis Settings (Celery broker, distributed locks, event bus)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Poller: advances due executions by one step per tick
    POLLER_ENABLED: bool = True
    POLLER_INTERVAL_SECONDS: int = 60
    POLLER_CONCURRENCY: int = 10

    # Safety valves for stuck executions (0 disables the age check)
    MAX_STEP_ATTEMPTS: int = 3
    MAX_EXECUTION_AGE_DAYS: int = 180

    # Per-execution locking: "memory" (single process) or "redis"
    LOCK_BACKEND: str = "memory"
    LOCK_TIMEOUT_SECONDS: int = 300

    # Email delivery for the send_email action
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    EMAIL_FROM_ADDRESS: str = "noreply@localhost"

    # Entity change events (Redis pub/sub)
    EVENT_BUS_ENABLED: bool = False
    EVENT_BUS_CHANNEL: str = "crm.entity_events"

    # CORS Settings
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:8080"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse ALLOWED_ORIGINS string into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def email_configured(self) -> bool:
        return bool(self.SMTP_HOST)

    def validate_settings(self) -> None:
        """Validate settings that would otherwise fail late at runtime.

        Raises:
            RuntimeError: If the lock backend is unknown, or the in-memory lock
                backend is used in production
        """
        if self.LOCK_BACKEND not in ("memory", "redis"):
            raise RuntimeError(
                f"CRITICAL: LOCK_BACKEND must be 'memory' or 'redis', got '{self.LOCK_BACKEND}'"
            )
        if self.is_production and self.LOCK_BACKEND == "memory":
            raise RuntimeError(
                "CRITICAL: LOCK_BACKEND=memory only protects a single process. "
                "Use LOCK_BACKEND=redis in production."
            )

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
