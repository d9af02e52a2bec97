"""Environment configuration for the notification delivery service."""

import os
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self) -> None:
        self.DATABASE_URL: str = os.getenv("DATABASE_URL", "")
        self.FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")
        self.APP_URL: str = os.getenv("APP_URL", "http://localhost:3000")

        # Trigger/device endpoint auth
        self.JWT_SECRET: str = os.getenv("JWT_SECRET", "")
        self.JWT_ALGORITHM: str = "HS256"
        self.SERVICE_ROLE: str = os.getenv("SERVICE_ROLE", "service_role")

        # Email transport (Resend)
        self.RESEND_API_KEY: str = os.getenv("RESEND_API_KEY", "")
        self.RESEND_API_URL: str = os.getenv("RESEND_API_URL", "https://api.resend.com")
        self.EMAIL_FROM: str = os.getenv(
            "EMAIL_FROM", "Notifications <notifications@example.com>"
        )

        # Web push transport
        self.VAPID_PUBLIC_KEY: str = os.getenv("VAPID_PUBLIC_KEY", "")
        self.VAPID_PRIVATE_KEY: str = os.getenv("VAPID_PRIVATE_KEY", "")
        self.VAPID_EMAIL: str = os.getenv("VAPID_EMAIL", "mailto:notifications@example.com")
        self.PUSH_TTL_SECONDS: int = int(os.getenv("PUSH_TTL_SECONDS", "86400"))

        # Queue workers
        self.WORKER_BATCH_SIZE: int = int(os.getenv("WORKER_BATCH_SIZE", "10"))
        self.WORKER_MAX_RETRIES: int = int(os.getenv("WORKER_MAX_RETRIES", "3"))
        self.WORKER_RETRY_DELAY_SECONDS: int = int(
            os.getenv("WORKER_RETRY_DELAY_SECONDS", "60")
        )
        self.WORKER_POLL_INTERVAL_SECONDS: int = int(
            os.getenv("WORKER_POLL_INTERVAL_SECONDS", "30")
        )
        self.WORKER_CONCURRENCY: int = int(os.getenv("WORKER_CONCURRENCY", "4"))
        self.SEND_TIMEOUT_SECONDS: float = float(os.getenv("SEND_TIMEOUT_SECONDS", "10"))
        self.STALE_CLAIM_SECONDS: int = int(os.getenv("STALE_CLAIM_SECONDS", "900"))

        # Queue retention for terminal rows
        self.EMAIL_RETENTION_DAYS: int = int(os.getenv("EMAIL_RETENTION_DAYS", "30"))
        self.PUSH_RETENTION_DAYS: int = int(os.getenv("PUSH_RETENTION_DAYS", "7"))

    def validate(self) -> None:
        """Validate that required environment variables are set."""
        if not self.DATABASE_URL:
            raise ValueError("DATABASE_URL environment variable is required")
        if not self.JWT_SECRET:
            raise ValueError("JWT_SECRET environment variable is required")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    return settings
