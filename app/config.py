"""Application configuration."""

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogLevel(str, Enum):
    """Valid log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "tenant-deletion"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = False
    log_level: LogLevel = LogLevel.INFO
    json_logs: bool = True  # Enable JSON structured logging

    # Multi-tenancy
    tenant_header_name: str = "X-Tenant-ID"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_prefix: str = "/api/v1"

    # Security
    secret_key: str = Field(..., min_length=32)
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 60

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "tenants"
    postgres_password: str = Field(..., min_length=8)
    postgres_db: str = "tenants"
    database_url: str | None = None  # Any SQLAlchemy async URL; overrides postgres_* parts

    @property
    def db_url(self) -> str:
        """Get database URL."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: str | None = None
    redis_url: str | None = None

    @property
    def redis_connection_url(self) -> str:
        """Get Redis URL."""
        if self.redis_url:
            return self.redis_url
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # Celery
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None

    @property
    def celery_broker(self) -> str:
        """Get Celery broker URL."""
        return self.celery_broker_url or self.redis_connection_url

    @property
    def celery_backend(self) -> str:
        """Get Celery result backend URL."""
        return self.celery_result_backend or self.redis_connection_url

    # Deletion pipeline
    deletion_max_retries: int = Field(3, ge=0)  # Attempts per step after the first
    deletion_backoff_base_seconds: float = Field(1.0, ge=0)
    deletion_backoff_max_seconds: float = Field(30.0, ge=0)
    deletion_poll_interval_seconds: float = Field(5.0, gt=0)
    deletion_worker_count: int = Field(2, ge=1)
    deletion_heartbeat_timeout_seconds: int = Field(300, ge=1)
    deletion_grace_period_days: int = Field(0, ge=0)  # Delay between approval and execution
    deletion_min_root_users: int = Field(2, ge=1)  # Requester plus an independent approver
    deletion_seconds_per_row_estimate: float = 0.001
    deletion_webhook_timeout_seconds: float = 5.0


# Global settings instance
settings = Settings()
