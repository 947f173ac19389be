"""Application settings using Pydantic for environment-based configuration."""
from decimal import Decimal
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Stripe Configuration
    stripe_secret_key: str = Field(..., description="Stripe secret API key (sk_test_...)")
    stripe_publishable_key: str = Field(default="", description="Stripe publishable key")
    stripe_webhook_secret: str = Field(..., description="Stripe webhook signing secret")
    stripe_api_version: str = Field(default="2024-11-20.acacia", description="Stripe API version")

    # PayPal Configuration
    paypal_client_id: str = Field(default="", description="PayPal REST client id")
    paypal_client_secret: str = Field(default="", description="PayPal REST client secret")
    paypal_webhook_id: str = Field(default="", description="PayPal webhook id")
    paypal_mode: str = Field(default="sandbox", description="PayPal mode (sandbox/live)")
    paypal_timeout_seconds: float = Field(default=10.0, description="PayPal HTTP timeout")

    # Database Configuration
    database_url: str = Field(..., description="Database connection URL")
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Redis Configuration
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    webhook_dedup_ttl_seconds: int = Field(
        default=86400 * 7, description="How long processed webhook ids are remembered"
    )

    # Backend auth tokens
    auth_jwt_secret: str = Field(..., description="Secret used to sign backend access tokens")
    auth_jwt_audience: str = Field(default="authenticated", description="Expected token audience")
    auth_jwt_algorithm: str = Field(default="HS256", description="Token signing algorithm")

    # Application Configuration
    app_name: str = Field(default="producers-avenue", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    app_url: str = Field(default="http://localhost:3000", description="Public web app URL")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="CORS allowed origins (comma-separated)"
    )

    # Security
    api_key_header: str = Field(default="X-API-Key", description="API key header name")
    admin_api_key: str = Field(default="", description="API key for admin routes")

    # Marketplace rules
    currency: str = Field(default="USD", description="Settlement currency")
    min_payout_amount: Decimal = Field(
        default=Decimal("10.00"), description="Smallest payout a seller may request"
    )
    platform_fee_rate: Decimal = Field(
        default=Decimal("0.05"), description="Platform commission taken from each sale"
    )
    min_service_price: Decimal = Field(
        default=Decimal("5.00"), description="Smallest starting price for a service listing"
    )
    pending_earnings_window_days: int = Field(
        default=7, description="Days a sale counts as pending earnings"
    )
    max_downloads: int = Field(default=5, description="Downloads granted per purchased product")
    download_expiry_days: int = Field(
        default=30, description="Days a download entitlement stays valid"
    )
    download_link_ttl_seconds: int = Field(
        default=3600, description="Lifetime of a signed file download link"
    )
    files_base_url: str = Field(
        default="http://localhost:8000/files", description="Base URL product files are served from"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("stripe_secret_key")
    @classmethod
    def validate_stripe_key(cls, v: str) -> str:
        """Validate that Stripe secret key has a known prefix."""
        if not v.startswith("sk_test_") and not v.startswith("sk_live_"):
            raise ValueError(
                "Invalid Stripe secret key format. Must start with 'sk_test_' or 'sk_live_'"
            )
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("paypal_mode")
    @classmethod
    def validate_paypal_mode(cls, v: str) -> str:
        if v.lower() not in ("sandbox", "live"):
            raise ValueError("PayPal mode must be 'sandbox' or 'live'")
        return v.lower()

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def paypal_api_base(self) -> str:
        if self.paypal_mode == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def is_test_mode(self) -> bool:
        """Check if using Stripe test mode."""
        return self.stripe_secret_key.startswith("sk_test_")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
