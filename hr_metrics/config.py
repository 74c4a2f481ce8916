from functools import lru_cache
from typing import ClassVar

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # Durable summary store and the HR database metrics are computed against
    metrics_db_path: str = "data/hr_metrics.db"
    hr_db_path: str = "data/hr.db"

    # Ephemeral cache (optional Redis; empty string means file-backed cache)
    redis_url: str = ""
    file_cache_dir: str = "cache"
    cache_ttl_seconds: int = 3600
    freshness_max_age_seconds: int = 3600

    # Automation (optional: empty cron means the in-process timer is disabled)
    automation_schedule_cron: str = ""  # e.g. "0 * * * *" (hourly)
    automation_max_workers: int = 4
    retention_days: int = 365
    # Comma-separated metric ids preloaded into the ephemeral cache at startup
    hot_metrics: str = ""

    # Metrics HTTP sinks (optional: empty URL means the target is not configured)
    dashboard_sink_url: str = ""
    dashboard_sink_token: str = ""
    finance_sink_url: str = ""
    finance_sink_token: str = ""
    sink_timeout_seconds: float = 30.0

    # SMTP / Email for alert notifications (optional: empty = log-only alerts)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    alert_recipient_email: str = ""

    export_dir: str = "exports"

    # HTTP API served by `hr-metrics serve`
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings. Fails at first call, not at import time."""
    return Settings()
