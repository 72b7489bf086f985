"""
Configuration settings for the credential and subscription services
"""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,  # Allow both field name and alias
        extra="ignore",
    )

    # Token signing and lifetimes
    jwt_secret_key: Optional[str] = Field(default=None, alias="JWT_SECRET_KEY")
    jwt_expires_in: str = Field(default="1h", alias="JWT_EXPIRES_IN")
    refresh_token_expires_in: str = Field(default="30d", alias="REFRESH_TOKEN_EXPIRES_IN")
    verification_token_ttl_seconds: int = Field(default=24 * 60 * 60, alias="VERIFICATION_TOKEN_TTL_SECONDS")
    password_reset_token_ttl_seconds: int = Field(default=60 * 60, alias="PASSWORD_RESET_TOKEN_TTL_SECONDS")

    # Account policy
    password_min_length: int = Field(default=8, alias="PASSWORD_MIN_LENGTH")
    require_email_verification: bool = Field(default=False, alias="REQUIRE_EMAIL_VERIFICATION")

    # Links embedded in verification / reset emails
    base_url: str = Field(default="http://localhost:5173", alias="BASE_URL")

    # Subscription configuration
    trial_days: int = Field(default=14, alias="TRIAL_DAYS")
    plans_file: Optional[str] = Field(default=None, alias="PLANS_FILE")

    # Stripe billing configuration
    stripe_secret_key: Optional[str] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: Optional[str] = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_webhook_tolerance: int = Field(default=300, alias="STRIPE_WEBHOOK_TOLERANCE")

    # Infrastructure configuration
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./sql_app.db", alias="DATABASE_URL")

    # Environment configuration
    env: Optional[str] = Field(default=None, alias="ENV")


# Instantiate settings object
settings = Settings()

# Determine if we're in production mode
IS_PRODUCTION = bool(settings.env and settings.env.lower() == "production")
