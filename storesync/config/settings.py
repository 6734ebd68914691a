"""
Storefront Sync Engine
Centralized Configuration Management

Pydantic settings with environment variable support, validation and type
safety. Each subsystem reads its own env prefix; ``Settings`` aggregates them.
"""

from functools import lru_cache
from typing import Optional, List
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """PostgreSQL Database Configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_", populate_by_name=True)

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="storesync", alias="database", description="Database name")
    user: str = Field(default="storesync", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    create_tables: bool = Field(default=True, description="Create missing tables on startup")
    url: Optional[str] = Field(default=None, alias="DATABASE_URL", description="Database URL (overrides host/port)")

    @property
    def async_url(self) -> str:
        """Async database URL - uses DATABASE_URL if set, otherwise asyncpg from host/port"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class ShopifySettings(BaseSettings):
    """Storefront Platform (Shopify Admin REST API) Configuration"""

    model_config = SettingsConfigDict(env_prefix="SHOPIFY_")

    api_version: str = Field(default="2023-10", description="Admin API version")
    page_size: int = Field(default=250, ge=1, le=250, description="Records per page")
    request_timeout: float = Field(default=30.0, description="Per-request timeout in seconds")

    # Retry policy for transient failures
    max_attempts: int = Field(default=3, ge=1, description="Attempts per page fetch")
    backoff_base_seconds: float = Field(default=1.0, description="Initial backoff delay")
    backoff_max_seconds: float = Field(default=30.0, description="Backoff delay cap")


class SyncSettings(BaseSettings):
    """Fleet Scheduler and Orchestrator Configuration"""

    model_config = SettingsConfigDict(env_prefix="SYNC_")

    interval_seconds: int = Field(default=3600, ge=1, description="Scheduled sync period")
    scheduler_enabled: bool = Field(default=True, description="Run the fleet scheduler in this process")
    shutdown_grace_seconds: float = Field(default=30.0, description="Wait for in-flight runs on shutdown")
    history_limit: int = Field(default=20, description="Default number of runs returned by history queries")


class SecuritySettings(BaseSettings):
    """Webhook Authentication and CORS Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    webhook_secret: Optional[SecretStr] = Field(
        default=None,
        alias="WEBHOOK_SECRET",
        description="Fallback HMAC secret for tenants without their own",
    )
    require_webhook_signature: bool = Field(
        default=True,
        alias="REQUIRE_WEBHOOK_SIGNATURE",
        description="Reject webhooks when no secret is configured",
    )

    # CORS
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )


class MonitoringSettings(BaseSettings):
    """Monitoring and Observability Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")

    # Metrics
    metrics_enabled: bool = Field(default=True, alias="METRICS_ENABLED", description="Expose /metrics")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="storesync", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API host")
    api_port: int = Field(default=8000, alias="API_PORT", description="API port")
    api_workers: int = Field(default=1, alias="API_WORKERS", description="API workers")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    shopify: ShopifySettings = Field(default_factory=ShopifySettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
