"""Application configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_EXPIRATION_INTERVAL_MINUTES = 15
MIN_EXPIRATION_INTERVAL_MINUTES = 1


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="order-engine", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins",
    )

    # Storage
    storage_backend: Literal["supabase", "memory"] = Field(
        default="supabase",
        description="Document store backend. 'memory' is for local development and tests only.",
    )
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_secret_key: str = Field(default="", description="Supabase secret key for backend operations")

    # Mercado Pago
    mercadopago_access_token: str = Field(default="", description="Mercado Pago access token")
    mercadopago_webhook_secret: str = Field(
        default="",
        description="Secret used to verify the x-signature header of webhook notifications",
    )
    payment_provider_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Upper bound for a single payment provider call"
    )

    # Public URLs
    api_url: str = Field(default="http://localhost:8080", description="Public base URL of this API")
    frontend_url: str = Field(default="http://localhost:3000", description="Storefront URL for payment redirects")

    # Orders
    reservation_days: int = Field(default=3, ge=1, description="Days a pending order keeps its stock reserved")
    order_expiration_job_enabled: bool = Field(default=True, description="Run the expiration sweeper")
    order_expiration_job_interval_minutes: float = Field(
        default=DEFAULT_EXPIRATION_INTERVAL_MINUTES,
        description="Minutes between expiration sweeps",
    )

    # Admin
    admin_api_key: str = Field(default="", description="Shared key required by admin order endpoints")

    @field_validator("order_expiration_job_interval_minutes", mode="before")
    @classmethod
    def fallback_interval(cls, value: object) -> float:
        """Fall back to the default interval when the value is unusable or below the minimum."""
        try:
            minutes = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return DEFAULT_EXPIRATION_INTERVAL_MINUTES
        if minutes != minutes or minutes < MIN_EXPIRATION_INTERVAL_MINUTES:
            return DEFAULT_EXPIRATION_INTERVAL_MINUTES
        return minutes

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_mercadopago_test_mode(self) -> bool:
        """Check if using Mercado Pago sandbox credentials."""
        return self.mercadopago_access_token.startswith("TEST-")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
