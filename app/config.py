# =============================================================================
# app/config.py - Application Settings
# =============================================================================
# This module loads configuration from environment variables using pydantic-settings.
# It provides a single Settings class with all configuration values.
#
# Usage:
#   from app.config import settings
#   print(settings.SUPABASE_URL)
#
# Environment variables are loaded from:
# 1. System environment variables
# 2. .env file in project root (if exists)
#
# The Settings class validates all values at startup, catching configuration
# errors early rather than at runtime.
# =============================================================================

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses pydantic-settings to:
    - Automatically load from .env file
    - Validate types and constraints
    - Provide sensible defaults for development

    All settings are accessed via the global `settings` instance.
    """

    # -------------------------------------------------------------------------
    # Supabase Configuration
    # -------------------------------------------------------------------------
    # These are required - app won't start without them

    SUPABASE_URL: str = Field(
        ...,  # ... means required (no default)
        description="Supabase project URL (e.g., https://xxx.supabase.co)"
    )

    SUPABASE_ANON_KEY: str = Field(
        ...,
        description="Supabase anon/public API key"
    )

    SUPABASE_SERVICE_KEY: str = Field(
        ...,
        description="Supabase service_role key (bypasses RLS)"
    )

    SUPABASE_JWT_SECRET: str = Field(
        default="",
        description="Legacy HS256 JWT secret used to verify Supabase access tokens"
    )

    # -------------------------------------------------------------------------
    # Redis Configuration (for Celery)
    # -------------------------------------------------------------------------

    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for Celery broker"
    )

    # -------------------------------------------------------------------------
    # Identity Verification (Veriff)
    # -------------------------------------------------------------------------

    VERIFF_BASE_URL: str = Field(
        default="https://api.veriff.me/v1",
        description="Veriff public API base URL"
    )

    VERIFF_API_KEY: str = Field(
        default="",
        description="Veriff API key (sent as X-AUTH-CLIENT)"
    )

    VERIFF_API_SECRET: str = Field(
        default="",
        description="Veriff shared secret used to sign API requests"
    )

    VERIFF_WEBHOOK_SECRET: str = Field(
        default="",
        description="Secret used to validate incoming webhook signatures"
    )

    VERIFF_CALLBACK_URL: str = Field(
        default="http://localhost:3000/verification/complete",
        description="Where Veriff redirects the user after the flow"
    )

    VERIFF_MAX_RETRIES: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries for transient Veriff API failures"
    )

    VERIFF_RETRY_BASE_DELAY: float = Field(
        default=1.0,
        ge=0.0,
        description="Initial backoff delay in seconds"
    )

    VERIFF_RETRY_MAX_DELAY: float = Field(
        default=10.0,
        ge=0.0,
        description="Upper bound for a single backoff delay in seconds"
    )

    # -------------------------------------------------------------------------
    # Webhook Monitoring
    # -------------------------------------------------------------------------

    WEBHOOK_MAX_RETRIES: int = Field(
        default=3,
        ge=0,
        description="Stored webhook events are retried until retrycount reaches this"
    )

    WEBHOOK_ALERT_FAILURE_RATE: float = Field(
        default=20.0,
        ge=0.0,
        le=100.0,
        description="Failure percentage over the last hour that raises an alert"
    )

    # -------------------------------------------------------------------------
    # Billing
    # -------------------------------------------------------------------------

    VAT_PERCENTAGE: float = Field(
        default=21.0,
        ge=0.0,
        le=100.0,
        description="VAT rate applied to hour package orders"
    )

    PRICES_INCLUDE_VAT: bool = Field(
        default=True,
        description="Whether package prices already include VAT"
    )

    DEFAULT_CURRENCY: str = Field(
        default="EUR",
        description="Currency hour package templates are priced in"
    )

    INVOICE_CURRENCY: str = Field(
        default="RON",
        description="Currency invoices are issued in"
    )

    BNR_RATES_URL: str = Field(
        default="https://www.bnr.ro/nbrfxrates.xml",
        description="National Bank of Romania daily reference rates feed"
    )

    EXCHANGE_RATE_TTL_HOURS: int = Field(
        default=24,
        ge=1,
        description="How long a fetched exchange rate is reused"
    )

    PROFORMA_SERIES: str = Field(
        default="PRO",
        description="Invoice series used for proforma invoices"
    )

    PROFORMA_DUE_DAYS: int = Field(
        default=15,
        ge=0,
        description="Days between issue and due date of a proforma invoice"
    )

    COMPANY_VAT_CODE: str = Field(
        default="",
        description="The school's own VAT code, never taken as a client's on imported invoices"
    )

    COMPANY_EMAIL: str = Field(
        default="",
        description="The school's own email, never taken as a client's on imported invoices"
    )

    PPL_COURSE_HOURS: int = Field(
        default=45,
        ge=1,
        description="Flight hours included in a full PPL course"
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------

    APP_VERSION: str = Field(
        default="1.0.0",
        description="Version reported by the health endpoint and OpenAPI docs"
    )

    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Current environment"
    )

    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (verbose logging, auto-reload)"
    )

    API_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the API server to"
    )

    API_PORT: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Port for the API server"
    )

    # CORS origins (comma-separated string that gets parsed)
    CORS_ORIGINS: str = Field(
        default="http://localhost:3000",
        description="Allowed CORS origins (comma-separated)"
    )

    # -------------------------------------------------------------------------
    # File Upload Settings
    # -------------------------------------------------------------------------

    MAX_UPLOAD_SIZE_MB: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum flight log import size in MB"
    )

    # -------------------------------------------------------------------------
    # Pydantic Settings Configuration
    # -------------------------------------------------------------------------

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        # Don't fail if .env doesn't exist (production sets env vars directly)
        env_ignore_empty=True,
        case_sensitive=True,
    )

    # -------------------------------------------------------------------------
    # Computed Properties
    # -------------------------------------------------------------------------

    @property
    def cors_origins_list(self) -> list[str]:
        """
        Parse CORS_ORIGINS string into a list.

        Example: "http://localhost:3000, https://ops.example.com" -> ["http://localhost:3000", "https://ops.example.com"]
        """
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def max_upload_size_bytes(self) -> int:
        """Convert MB to bytes for file size validation."""
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached Settings instance.

    Using lru_cache ensures we only parse .env and validate once,
    not on every access.

    Returns:
        Settings: The application settings instance
    """
    return Settings()


# Global settings instance for easy importing
# Usage: from app.config import settings
settings = get_settings()
