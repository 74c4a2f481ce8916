"""Shared pytest configuration and fixtures."""

import sqlite3
import threading
from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from hr_metrics.alerts.engine import AlertEngine
from hr_metrics.alerts.notify import LogNotifier
from hr_metrics.automation.runner import MetricsAutomation
from hr_metrics.bootstrap import Services
from hr_metrics.cache.backends import FileCache
from hr_metrics.cache.layer import MetricCache
from hr_metrics.config import Settings, get_settings
from hr_metrics.export.exporters import MetricsExporter
from hr_metrics.export.push import MetricsPusher, SinkConfig
from hr_metrics.metrics.datasource import SQLiteDataSource
from hr_metrics.metrics.engine import MetricEngine
from hr_metrics.metrics.registry import MetricRegistry
from hr_metrics.metrics.service import MetricsService
from hr_metrics.storage.store import MetricStore, get_initialized_connection
from tests.factories import HR_SCHEMA, FakeClock, make_definitions


@pytest.fixture(autouse=True)
def _no_dotenv() -> Generator[None]:
    """Block .env loading so tests never pick up a developer's local configuration."""
    get_settings.cache_clear()
    original = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    try:
        yield
    finally:
        Settings.model_config["env_file"] = original
        get_settings.cache_clear()


@pytest.fixture
def mock_settings(tmp_path: Path) -> Generator[Any]:
    """Provide fake settings so tests don't need a .env file.

    Patches get_settings at every import site so cached references are overridden.
    """
    fake_settings = type(
        "FakeSettings",
        (),
        {
            "metrics_db_path": str(tmp_path / "metrics.db"),
            "hr_db_path": str(tmp_path / "hr.db"),
            "redis_url": "",
            "file_cache_dir": str(tmp_path / "cache"),
            "cache_ttl_seconds": 3600,
            "freshness_max_age_seconds": 3600,
            "automation_schedule_cron": "",
            "automation_max_workers": 2,
            "retention_days": 365,
            "hot_metrics": "",
            # Sinks
            "dashboard_sink_url": "http://dashboard.test/api/metrics",
            "dashboard_sink_token": "dash-token",
            "finance_sink_url": "http://finance.test/api/hr-metrics",
            "finance_sink_token": "fin-token",
            "sink_timeout_seconds": 5.0,
            # SMTP / Email
            "smtp_host": "smtp.test.com",
            "smtp_port": 587,
            "smtp_username": "test@test.com",
            "smtp_password": "test-password",
            "alert_recipient_email": "recipient@test.com",
            "export_dir": str(tmp_path / "exports"),
            "api_host": "127.0.0.1",
            "api_port": 8000,
        },
    )()
    with (
        patch("hr_metrics.config.get_settings", return_value=fake_settings),
        patch("hr_metrics.storage.store.get_settings", return_value=fake_settings),
        patch("hr_metrics.alerts.notify.get_settings", return_value=fake_settings),
        patch("hr_metrics.automation.scheduler.get_settings", return_value=fake_settings),
        patch("hr_metrics.bootstrap.get_settings", return_value=fake_settings),
        patch("hr_metrics.cli.get_settings", return_value=fake_settings),
    ):
        yield fake_settings


# ---------------------------------------------------------------------------
# HR database and a small registry over it
# ---------------------------------------------------------------------------


@pytest.fixture
def hr_db(tmp_path: Path) -> str:
    path = str(tmp_path / "hr.db")
    conn = sqlite3.connect(path)
    conn.executescript(HR_SCHEMA)
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> MetricRegistry:
    return MetricRegistry(make_definitions())


@pytest.fixture
def store() -> Generator[MetricStore]:
    metric_store = MetricStore(get_initialized_connection(":memory:"))
    yield metric_store
    metric_store.close()


@pytest.fixture
def file_cache(tmp_path: Path, clock: FakeClock) -> FileCache:
    return FileCache(str(tmp_path / "cache"), clock=clock)


@pytest.fixture
def cache(store: MetricStore, file_cache: FileCache, clock: FakeClock) -> MetricCache:
    return MetricCache(store, file_cache, ttl_seconds=3600, clock=clock)


@pytest.fixture
def engine(registry: MetricRegistry, hr_db: str, clock: FakeClock) -> MetricEngine:
    return MetricEngine(registry, SQLiteDataSource(hr_db), clock=clock)


@pytest.fixture
def service(engine: MetricEngine, cache: MetricCache) -> MetricsService:
    return MetricsService(engine, cache, max_age_seconds=3600)


@pytest.fixture
def automation(service: MetricsService, store: MetricStore, clock: FakeClock) -> MetricsAutomation:
    return MetricsAutomation(
        service,
        store,
        max_workers=2,
        max_age_seconds=3600,
        hot_metrics=("employee_demographics.headcount", "payroll_compensation.total_salary"),
        clock=clock,
        sweep_lock=threading.Lock(),
    )


@pytest.fixture
def services(
    service: MetricsService,
    store: MetricStore,
    automation: MetricsAutomation,
    hr_db: str,
    clock: FakeClock,
) -> Services:
    """Fully wired services over the test registry; only the dashboard sink is configured."""
    return Services(
        store=store,
        data_source=SQLiteDataSource(hr_db),
        metrics=service,
        automation=automation,
        alerts=AlertEngine(service, store, notifier=LogNotifier(), clock=clock),
        exporter=MetricsExporter(store, clock=clock),
        pusher=MetricsPusher({"dashboard": SinkConfig("http://dashboard.test/api/metrics", "dash-token")}, store, clock=clock),
    )
