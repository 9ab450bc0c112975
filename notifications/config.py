"""Shared configuration for the notification service."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_BATCH_SIZE_LIMIT = 5
DEFAULT_SWEEP_MINUTES = 30
DEFAULT_EMAIL_SUBJECT = "Notification"

VALID_PROVIDERS = {"gmail", "mailgun"}

ACTIVE_KEYS_SET = "active_hashes"
BATCH_KEY_PREFIX = "notification:"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


@dataclass(slots=True, frozen=True)
class Settings:
    """Explicit configuration handed to the store, router and scheduler."""

    email_provider: str = "gmail"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None
    batch_size_limit: int = DEFAULT_BATCH_SIZE_LIMIT
    sweep_minutes: int = DEFAULT_SWEEP_MINUTES
    email_subject: str = DEFAULT_EMAIL_SUBJECT
    from_email: Optional[str] = None
    gmail_address: Optional[str] = None
    gmail_app_password: Optional[str] = None
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    mailgun_api_key: Optional[str] = None
    mailgun_domain: Optional[str] = None
    mailgun_api_url: str = "https://api.mailgun.net"
    database_url: str = "sqlite:///notifications.db"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            email_provider=os.getenv("EMAIL_PROVIDER", "gmail").strip().lower(),
            redis_host=os.getenv("REDIS_HOST", "localhost"),
            redis_port=_env_int("REDIS_PORT", 6379),
            redis_db=_env_int("REDIS_DB", 0),
            redis_password=os.getenv("REDIS_PASSWORD") or None,
            batch_size_limit=_env_int("BATCH_SIZE_LIMIT", DEFAULT_BATCH_SIZE_LIMIT),
            sweep_minutes=_env_int("BATCH_SWEEP_MINUTES", DEFAULT_SWEEP_MINUTES),
            email_subject=os.getenv("NOTIFY_EMAIL_SUBJECT", DEFAULT_EMAIL_SUBJECT),
            from_email=os.getenv("NOTIFY_FROM_EMAIL") or None,
            gmail_address=os.getenv("GMAIL_ADDRESS") or None,
            gmail_app_password=os.getenv("GMAIL_APP_PASSWORD") or None,
            smtp_host=os.getenv("SMTP_HOST", "smtp.gmail.com"),
            smtp_port=_env_int("SMTP_PORT", 587),
            mailgun_api_key=os.getenv("MAILGUN_API_KEY") or None,
            mailgun_domain=os.getenv("MAILGUN_DOMAIN") or None,
            mailgun_api_url=os.getenv("MAILGUN_API_URL", "https://api.mailgun.net").rstrip("/"),
            database_url=os.getenv("DATABASE_URL", "sqlite:///notifications.db"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def redis_url(self) -> str:
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
