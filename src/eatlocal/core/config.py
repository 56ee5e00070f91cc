"""Service configuration from environment variables."""

from __future__ import annotations

import os


def _flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Settings:
    """Core settings, read from environment variables with defaults."""

    def __init__(self) -> None:
        self.database_url: str = os.getenv(
            "DATABASE_URL", "sqlite+aiosqlite:///eatlocal.db"
        )
        self.auto_create_tables: bool = _flag("EATLOCAL_AUTO_CREATE_TABLES", "true")
        self.host: str = os.getenv("EATLOCAL_HOST", "0.0.0.0")
        self.port: int = int(os.getenv("EATLOCAL_PORT", "8000"))
        self.cors_origins: list[str] = [
            origin.strip()
            for origin in os.getenv("EATLOCAL_CORS_ORIGINS", "*").split(",")
            if origin.strip()
        ]
        self.log_level: str = os.getenv("EATLOCAL_LOG_LEVEL", "INFO").upper()
        self.debug: bool = _flag("EATLOCAL_DEBUG")
        # Bearer secret identifying internal service callers
        self.service_key: str | None = os.getenv("EATLOCAL_SERVICE_KEY")

        # Rate limiter
        self.rate_limit_timeout: float = float(
            os.getenv("EATLOCAL_RATE_LIMIT_TIMEOUT", "2.0")
        )

        # Notification queue
        self.queue_batch_size: int = int(os.getenv("EATLOCAL_QUEUE_BATCH_SIZE", "50"))
        self.queue_max_batch_size: int = int(
            os.getenv("EATLOCAL_QUEUE_MAX_BATCH_SIZE", "100")
        )
        self.queue_base_retry_delay: float = float(
            os.getenv("EATLOCAL_QUEUE_BASE_RETRY_DELAY", "60")
        )
        self.queue_claim_timeout: float = float(
            os.getenv("EATLOCAL_QUEUE_CLAIM_TIMEOUT", "600")
        )
        # Seconds between in-process queue runs; 0 leaves triggering to an
        # external scheduler.
        self.queue_autorun_interval: float = float(
            os.getenv("EATLOCAL_QUEUE_AUTORUN_INTERVAL", "0")
        )

        # Outbound providers
        self.dispatch_timeout: float = float(
            os.getenv("EATLOCAL_DISPATCH_TIMEOUT", "30.0")
        )
        self.resend_api_key: str | None = os.getenv("RESEND_API_KEY")
        self.resend_api_url: str = os.getenv("RESEND_API_URL", "https://api.resend.com")
        self.from_email: str = os.getenv(
            "FROM_EMAIL", "EatLocal <noreply@eatlocal.co.za>"
        )
        self.twilio_account_sid: str | None = os.getenv("TWILIO_ACCOUNT_SID")
        self.twilio_auth_token: str | None = os.getenv("TWILIO_AUTH_TOKEN")
        self.twilio_from_number: str | None = os.getenv("TWILIO_FROM_NUMBER")
        self.twilio_api_url: str = os.getenv("TWILIO_API_URL", "https://api.twilio.com")
