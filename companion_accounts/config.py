"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

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
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Companion Accounts API"
    api_version: str = "1.0.0"
    api_description: str = "Trial metering, magic-link linking and subscriptions for companion characters"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability
    metrics_enabled: bool = True
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "companion-accounts"

    # Payment Provider - Stripe
    stripe_api_key: str = ""  # sk_test_... or sk_live_...
    stripe_webhook_secret: str = ""  # whsec_...
    stripe_webhook_tolerance_seconds: int = 300

    # Email - Resend
    resend_api_key: str = ""
    email_from_domain: str = "topfivefriends.com"
    magic_link_base_url: str = "https://topfivefriends.com/magic"

    # Checkout
    checkout_success_url: str = "https://topfivefriends.com/welcome?session_id={CHECKOUT_SESSION_ID}"
    checkout_cancel_url: str = "https://topfivefriends.com/pricing"
    currency: str = "usd"

    # Trial and magic link lifecycle
    trial_message_allowance: int = 25
    trial_bump_messages: int = 10
    trial_bump_after_hours: int = 24
    pending_link_ttl_hours: int = 24

    # Outbound calls (email, Telegram, character backends)
    outbound_timeout_seconds: float = 10.0

    # Character backends (callback base URLs)
    sadie_url: str | None = None
    cole_url: str | None = None
    nora_url: str | None = None
    elliott_url: str | None = None
    clara_url: str | None = None
    sean_url: str | None = None

    # Character Telegram bot tokens (used by the trial bump job)
    sadie_bot_token: str | None = None
    cole_bot_token: str | None = None
    nora_bot_token: str | None = None
    elliott_bot_token: str | None = None
    clara_bot_token: str | None = None
    sean_bot_token: str | None = None

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

        if self.trial_message_allowance <= 0:
            errors.append("TRIAL_MESSAGE_ALLOWANCE must be positive")
        if self.trial_bump_messages <= 0:
            errors.append("TRIAL_BUMP_MESSAGES must be positive")
        if self.pending_link_ttl_hours <= 0:
            errors.append("PENDING_LINK_TTL_HOURS must be positive")

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
