"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Telegram
    # ======================
    telegram_bot_token: str = Field(default="", description="Telegram bot token from BotFather")
    mini_app_url: Optional[str] = Field(
        default=None, description="Base URL of the listing/search mini app"
    )

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/escrowbot.db",
        description="Database connection URL",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=3001, description="API server port")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")

    # ======================
    # Admin
    # ======================
    admin_user_ids: str = Field(
        default="", description="Comma-separated list of admin Telegram user IDs"
    )
    admin_token: str = Field(default="", description="Admin API token for protected endpoints")

    # ======================
    # Escrow
    # ======================
    escrow_receivers: str = Field(
        default="Kaleb Mate,KALEB MATE MEGANE",
        description="Comma-separated account holder names that may receive buyer payments",
    )
    reservation_timeout_seconds: float = Field(
        default=600, description="How long a reservation holds an account without an order"
    )
    teardown_delay_seconds: float = Field(
        default=5, description="Grace delay before a sold account and its orders are deleted"
    )
    min_withdrawal_amount: int = Field(
        default=100, description="Minimum balance (smallest unit) for a seller payout"
    )
    currency: str = Field(default="ETB", description="Currency label used in messages")

    # ======================
    # Payment verifiers
    # ======================
    verifier_provider: str = Field(
        default="dryrun", description="Payment verifier backend: live or dryrun"
    )
    telebirr_verifier_url: str = Field(
        default="http://localhost:3002", description="Telebirr receipt verifier base URL"
    )
    cbe_verifier_url: str = Field(
        default="http://localhost:3003", description="CBE receipt screenshot verifier base URL"
    )
    verifier_timeout_seconds: float = Field(
        default=30.0, description="HTTP timeout for verifier calls"
    )

    # ======================
    # Receipt image hosting
    # ======================
    receipt_store: str = Field(
        default="dryrun", description="Receipt image host: cloudinary or dryrun"
    )
    cloudinary_cloud_name: str = Field(default="", description="Cloudinary cloud name")
    cloudinary_api_key: str = Field(default="", description="Cloudinary API key")
    cloudinary_api_secret: str = Field(default="", description="Cloudinary API secret")

    @property
    def admin_ids(self) -> list[int]:
        """Parse admin user IDs into a list of integers."""
        if not self.admin_user_ids:
            return []
        return [int(uid.strip()) for uid in self.admin_user_ids.split(",") if uid.strip()]

    @property
    def escrow_receiver_names(self) -> list[str]:
        """Parse the escrow receiver allow-list."""
        return [name.strip() for name in self.escrow_receivers.split(",") if name.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "telegram_bot_token": "***" if self.telegram_bot_token else "(not set)",
            "admin_user_ids": self.admin_user_ids or "(none)",
            "escrow": {
                "receivers": self.escrow_receiver_names,
                "reservation_timeout_seconds": self.reservation_timeout_seconds,
                "teardown_delay_seconds": self.teardown_delay_seconds,
                "min_withdrawal_amount": self.min_withdrawal_amount,
                "currency": self.currency,
            },
            "verifiers": {
                "provider": self.verifier_provider,
                "telebirr": self.telebirr_verifier_url,
                "cbe": self.cbe_verifier_url,
            },
            "receipt_store": {
                "backend": self.receipt_store,
                "cloudinary_cloud_name": self.cloudinary_cloud_name or "(not set)",
                "cloudinary_api_secret": "***" if self.cloudinary_api_secret else "(not set)",
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
