"""
app/core/config.py

Purpose: Application configuration

- Loads environment variables
- Centralizes config values (DB URI, Paystack keys, referral defaults)
- Validates configuration on startup
- Environment-specific settings
"""

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, Literal


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Validates all required configs on startup.
    """

    # Environment
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"

    # MongoDB
    MONGODB_URL: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URI"
    )
    MONGODB_DB_NAME: str = Field(
        default="storefront",
        description="MongoDB database name"
    )
    MONGODB_USE_TRANSACTIONS: bool = Field(
        default=True,
        description="Wrap payment/referral mutations in a transaction (needs a replica set)"
    )

    # Paystack
    PAYSTACK_SECRET_KEY: Optional[str] = Field(
        default=None,
        description="Paystack secret key (bearer token and webhook HMAC secret)"
    )
    PAYSTACK_BASE_URL: str = Field(
        default="https://api.paystack.co",
        description="Paystack API base URL"
    )
    PAYSTACK_TIMEOUT: float = Field(
        default=30.0,
        description="Paystack request timeout in seconds"
    )
    CURRENCY: str = Field(
        default="NGN",
        description="Currency used for transfer recipients"
    )
    PAYMENT_AMOUNT_TOLERANCE: float = Field(
        default=0.01,
        description="Maximum allowed difference between paid and expected amount"
    )

    # Referral program defaults (used when the settings document is created)
    DEFAULT_MIN_PAYOUT_AMOUNT: float = Field(
        default=5000,
        description="Default minimum payout amount"
    )
    DEFAULT_REFERRAL_PERCENTAGE: float = Field(
        default=1.5,
        description="Default referral bonus percentage"
    )

    APP_URL: str = Field(
        default="http://localhost:3000",
        description="Public storefront URL (for referral links)"
    )

    # Application
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    API_PREFIX: str = Field(
        default="/api/v1",
        description="API route prefix"
    )
    CORS_ORIGINS: list = Field(
        default=["*"],
        description="Allowed CORS origins"
    )

    # Security
    SECRET_KEY: str = Field(
        default="change-me-in-production",
        description="Application secret key"
    )
    ADMIN_API_KEY: Optional[str] = Field(
        default=None,
        description="Shared key required in the X-Admin-Key header for admin routes"
    )

    @field_validator("SECRET_KEY")
    @classmethod
    def validate_secret_key(cls, v, info: ValidationInfo):
        """Ensure secret key is changed in production."""
        if info.data.get("ENVIRONMENT") == "production" and v == "change-me-in-production":
            raise ValueError("SECRET_KEY must be changed in production environment")
        return v

    @field_validator("PAYSTACK_SECRET_KEY")
    @classmethod
    def validate_paystack_key(cls, v, info: ValidationInfo):
        """Ensure Paystack key is set in production."""
        if info.data.get("ENVIRONMENT") == "production" and not v:
            raise ValueError("PAYSTACK_SECRET_KEY is required in production environment")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        env_file_encoding="utf-8",
    )


# Global settings instance
settings = Settings()


def validate_settings():
    """
    Validates critical settings on application startup.
    Raises ValueError if any required setting is missing or invalid.
    """
    errors = []

    if not settings.MONGODB_URL:
        errors.append("MONGODB_URL is required")

    if not settings.PAYSTACK_BASE_URL:
        errors.append("PAYSTACK_BASE_URL is required")

    if settings.DEFAULT_MIN_PAYOUT_AMOUNT < 1000:
        errors.append("DEFAULT_MIN_PAYOUT_AMOUNT must be at least 1000")

    if not 0 <= settings.DEFAULT_REFERRAL_PERCENTAGE <= 100:
        errors.append("DEFAULT_REFERRAL_PERCENTAGE must be between 0 and 100")

    # Production-specific validations
    if settings.is_production:
        if not settings.PAYSTACK_SECRET_KEY:
            errors.append("PAYSTACK_SECRET_KEY is required in production")
        if not settings.ADMIN_API_KEY:
            errors.append("ADMIN_API_KEY is required in production")

    if errors:
        raise ValueError(f"Configuration validation failed: {', '.join(errors)}")

    return True
