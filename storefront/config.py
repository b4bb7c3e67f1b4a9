"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys
from decimal import Decimal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = True

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "AMK Store API"
    api_version: str = "0.1.0"
    api_description: str = "Game code storefront: orders, inventory and credit top-ups"

    # Identity provider tokens (HS256 JWTs, sub = account id)
    auth_jwt_secret: str = ""
    auth_jwt_audience: str | None = "authenticated"

    # Game code encryption at rest
    code_encryption_key: str = ""  # exactly 32 characters
    code_encryption_salt: str = "amk-store-game-codes"
    code_key_iterations: int = 100_000

    # Order placement
    order_max_quantity_per_line: int = 10
    order_max_lines: int = 20
    order_lock_timeout_seconds: float = 10.0
    order_transaction_timeout_seconds: float = 15.0
    order_list_max_limit: int = 50

    # Inventory uploads
    code_upload_max_batch: int = 1000
    code_min_length: int = 3

    # Credit top-up requests
    credit_request_min_amount: Decimal = Decimal("5.00")
    credit_request_max_amount: Decimal = Decimal("1000.00")

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "amk-store-api"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if not self.auth_jwt_secret:
            errors.append("AUTH_JWT_SECRET is required but empty or missing")

        if len(self.code_encryption_key) != 32:
            errors.append("CODE_ENCRYPTION_KEY must be exactly 32 characters long")

        if self.order_transaction_timeout_seconds < self.order_lock_timeout_seconds:
            errors.append("ORDER_TRANSACTION_TIMEOUT_SECONDS must be >= ORDER_LOCK_TIMEOUT_SECONDS")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
