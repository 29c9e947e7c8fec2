"""Application configuration via pydantic-settings."""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "RentalPay Settlement"
    app_version: str = "1.0.0"
    environment: Literal["development", "staging", "production", "test"] = "development"
    debug: bool = False
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = ["http://localhost:3000"]

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    workers: int = 4

    # Database
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "rentalpay"
    postgres_password: str = Field(default="rentalpay_secret")
    postgres_db: str = "rentalpay"
    db_pool_size: int = 20
    db_max_overflow: int = 10
    database_url_override: Optional[str] = None

    @computed_field
    @property
    def database_url(self) -> str:
        """Async database connection URL."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @computed_field
    @property
    def sync_database_url(self) -> str:
        """Sync PostgreSQL connection URL for Alembic."""
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Redis (Celery broker)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0

    @computed_field
    @property
    def redis_url(self) -> str:
        """Redis connection URL."""
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # Payment gateway
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    currency: str = "USD"

    # Email (SendGrid)
    sendgrid_api_key: Optional[str] = None
    email_from_address: str = "billing@rentalpay.example"
    email_from_name: str = "RentalPay"

    # Trip charge rates (major currency units)
    included_miles_per_day: int = 200
    per_mile_rate: Decimal = Decimal("0.45")
    full_tank_cost: Decimal = Decimal("300")
    late_fee_per_hour: Decimal = Decimal("50")
    max_trip_miles: int = 5000

    # Settlement
    max_charge_retries: int = 2
    charge_approval_threshold: Decimal = Decimal("500")  # totals above need staff approval
    charge_review_hold_hours: int = 24

    # Rate Limiting
    rate_limit_per_minute: int = 100


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
