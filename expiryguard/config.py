"""
Centralized configuration for ExpiryGuard.

All configuration is loaded from environment variables with sensible defaults.

Usage:
    from expiryguard.config import get_config
    cfg = get_config()
    print(cfg.lookahead_days)          # 30
    print(cfg.scheduler.cron)          # "0 9 * * *"
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import UTC, date, datetime

# Notification ladder, most urgent first.
DEFAULT_THRESHOLDS: tuple[int, ...] = (3, 7, 30)

_TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUTHY


def today() -> date:
    """Current calendar date in UTC."""
    return datetime.now(UTC).date()


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL connection parameters."""

    host: str = ""  # empty = Unix socket
    port: int = 5432
    name: str = "expiryguard"
    user: str = "expiryguard"
    password: str = ""

    @property
    def dsn(self) -> str:
        """Return a psycopg2-compatible DSN string."""
        parts = [f"dbname={self.name}"]
        if self.host:
            parts.append(f"host={self.host}")
        parts.append(f"port={self.port}")
        if self.user:
            parts.append(f"user={self.user}")
        if self.password:
            parts.append(f"password={self.password}")
        return " ".join(parts)

    @property
    def dict(self) -> dict[str, str | int]:
        """Return a psycopg2.connect() kwargs dict."""
        d: dict[str, str | int] = {
            "dbname": self.name,
            "port": self.port,
        }
        if self.host:
            d["host"] = self.host
        if self.user:
            d["user"] = self.user
        if self.password:
            d["password"] = self.password
        return d


@dataclass(frozen=True)
class SMTPConfig:
    """Outbound email settings. An empty host means dev mode (log only)."""

    host: str = ""
    port: int = 587
    user: str = ""
    password: str = ""
    from_email: str = "expiryguard@localhost"
    enabled: bool = True
    timeout: int = 20


@dataclass(frozen=True)
class WebhookConfig:
    """Chat and generic webhook targets. A blank URL disables that channel."""

    enabled: bool = True
    slack_url: str = ""
    discord_url: str = ""
    generic_url: str = ""
    timeout: float = 10.0

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.slack_url or self.discord_url or self.generic_url)


@dataclass(frozen=True)
class SchedulerConfig:
    """Cron schedule for reconciliation runs."""

    enabled: bool = True
    cron: str = "0 9 * * *"
    timezone: str = "UTC"
    max_concurrency: int = 4


@dataclass(frozen=True)
class Config:
    """Top-level ExpiryGuard configuration."""

    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    smtp: SMTPConfig = field(default_factory=SMTPConfig)
    webhooks: WebhookConfig = field(default_factory=WebhookConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)

    lookahead_days: int = 30
    thresholds: tuple[int, ...] = DEFAULT_THRESHOLDS

    health_host: str = "127.0.0.1"
    health_port: int = 18810


# Singleton
_config: Config | None = None


def get_config() -> Config:
    """Get or create the singleton config from environment variables."""
    global _config
    if _config is not None:
        return _config
    _config = _load_from_env()
    return _config


def _load_from_env() -> Config:
    """Load configuration from environment variables."""
    db = DatabaseConfig(
        host=os.environ.get("EXPIRYGUARD_DB_HOST", ""),
        port=int(os.environ.get("EXPIRYGUARD_DB_PORT", "5432")),
        name=os.environ.get("EXPIRYGUARD_DB_NAME", "expiryguard"),
        user=os.environ.get("EXPIRYGUARD_DB_USER", os.environ.get("USER", "expiryguard")),
        password=os.environ.get("EXPIRYGUARD_DB_PASSWORD", ""),
    )

    smtp = SMTPConfig(
        host=os.environ.get("EXPIRYGUARD_SMTP_HOST", ""),
        port=int(os.environ.get("EXPIRYGUARD_SMTP_PORT", "587")),
        user=os.environ.get("EXPIRYGUARD_SMTP_USER", ""),
        password=os.environ.get("EXPIRYGUARD_SMTP_PASSWORD", ""),
        from_email=os.environ.get("EXPIRYGUARD_SMTP_FROM", "expiryguard@localhost"),
        enabled=_env_bool("EXPIRYGUARD_EMAIL_ENABLED", True),
    )

    webhooks = WebhookConfig(
        enabled=_env_bool("EXPIRYGUARD_WEBHOOK_ENABLED", True),
        slack_url=os.environ.get("EXPIRYGUARD_SLACK_WEBHOOK_URL", "").strip(),
        discord_url=os.environ.get("EXPIRYGUARD_DISCORD_WEBHOOK_URL", "").strip(),
        generic_url=os.environ.get("EXPIRYGUARD_GENERIC_WEBHOOK_URL", "").strip(),
        timeout=float(os.environ.get("EXPIRYGUARD_WEBHOOK_TIMEOUT", "10")),
    )

    scheduler = SchedulerConfig(
        enabled=_env_bool("EXPIRYGUARD_SCHEDULER_ENABLED", True),
        cron=os.environ.get("EXPIRYGUARD_SCHEDULER_CRON", "0 9 * * *"),
        timezone=os.environ.get("EXPIRYGUARD_SCHEDULER_TIMEZONE", "UTC"),
        max_concurrency=int(os.environ.get("EXPIRYGUARD_MAX_CONCURRENCY", "4")),
    )

    return Config(
        db=db,
        smtp=smtp,
        webhooks=webhooks,
        scheduler=scheduler,
        lookahead_days=int(os.environ.get("EXPIRYGUARD_LOOKAHEAD_DAYS", "30")),
        health_host=os.environ.get("EXPIRYGUARD_HEALTH_HOST", "127.0.0.1"),
        health_port=int(os.environ.get("EXPIRYGUARD_HEALTH_PORT", "18810")),
    )


def reset_config() -> None:
    """Reset the singleton config (for testing)."""
    global _config
    _config = None
