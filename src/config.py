"""
Application configuration management using Pydantic settings.
Loads configuration from environment variables with validation.
"""

from decimal import Decimal
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    All sensitive values should be set via environment variables,
    not hardcoded in this file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "trade-engine"
    debug: bool = False
    secret_key: str

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        """
        Validates that secret_key is long enough to sign session tokens.
        Requires minimum 32 characters (256 bits).
        """
        if len(v) < 32:
            raise ValueError(
                "SECRET_KEY must be at least 32 characters. "
                "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )
        weak_keys = ["changeme", "secret", "password", "12345678"]
        if any(weak in v.lower() for weak in weak_keys):
            import logging
            logging.getLogger(__name__).warning(
                "SECRET_KEY appears to contain a weak pattern. "
                "Use a cryptographically random value in production."
            )
        return v

    # Database
    database_url: str

    # Identity tokens (issued by the session service, verified here)
    jwt_algorithm: str = "HS256"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS Configuration
    cors_allowed_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    cors_allow_credentials: bool = True
    cors_allow_methods: str = "GET,POST,OPTIONS"
    cors_allow_headers: str = "Authorization,Content-Type,X-Correlation-ID"

    @property
    def cors_origins_list(self) -> list[str]:
        """
        Parses comma-separated CORS origins into a list.
        Returns ["*"] if cors_allowed_origins is set to "*".
        """
        if self.cors_allowed_origins.strip() == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_allowed_origins.split(",") if origin.strip()]

    @property
    def cors_methods_list(self) -> list[str]:
        """Parses comma-separated CORS methods into a list."""
        if self.cors_allow_methods.strip() == "*":
            return ["*"]
        return [method.strip() for method in self.cors_allow_methods.split(",") if method.strip()]

    @property
    def cors_headers_list(self) -> list[str]:
        """Parses comma-separated CORS headers into a list."""
        if self.cors_allow_headers.strip() == "*":
            return ["*"]
        return [header.strip() for header in self.cors_allow_headers.split(",") if header.strip()]

    # Trade negotiation
    trade_response_deadline_hours: int = 72
    trade_cash_commission_rate: Decimal = Decimal("0.05")
    trade_imbalance_flag_threshold: Decimal = Decimal("500.00")

    @field_validator("trade_response_deadline_hours")
    @classmethod
    def validate_response_deadline_hours(cls, v: int) -> int:
        """Response window must be at least one hour."""
        if v < 1:
            raise ValueError("TRADE_RESPONSE_DEADLINE_HOURS must be >= 1")
        return v

    @field_validator("trade_cash_commission_rate")
    @classmethod
    def validate_commission_rate(cls, v: Decimal) -> Decimal:
        """Commission is a fraction between 0 and 1."""
        if v < 0 or v >= 1:
            raise ValueError("TRADE_CASH_COMMISSION_RATE must be in [0, 1)")
        return v

    # Expiry sweeper
    sweeper_enabled: bool = True
    sweeper_interval_seconds: int = 60
    sweeper_batch_size: int = 100

    # Notification service webhook (optional; events are only logged when unset)
    notification_webhook_url: str | None = None
    notification_timeout_seconds: float = 10.0

    @property
    def async_database_url(self) -> str:
        """
        Ensures the database URL uses the async driver.
        Converts postgresql:// to postgresql+asyncpg:// and
        sqlite:// to sqlite+aiosqlite:// if needed.
        """
        url = self.database_url
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("sqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url


@lru_cache
def get_settings() -> Settings:
    """
    Returns cached settings instance.
    Uses lru_cache to avoid reading .env file on every call.
    """
    return Settings()
