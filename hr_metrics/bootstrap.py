"""Wire the process-scoped services together from settings."""

import logging
import os
from dataclasses import dataclass

from hr_metrics.alerts.engine import AlertEngine
from hr_metrics.alerts.notify import build_notifier
from hr_metrics.automation.runner import MetricsAutomation
from hr_metrics.cache.backends import create_ephemeral_cache
from hr_metrics.cache.layer import MetricCache
from hr_metrics.config import Settings, get_settings
from hr_metrics.export.exporters import MetricsExporter
from hr_metrics.export.push import MetricsPusher
from hr_metrics.metrics.catalog import DEFAULT_HOT_METRICS
from hr_metrics.metrics.datasource import SQLiteDataSource
from hr_metrics.metrics.engine import MetricEngine
from hr_metrics.metrics.registry import default_registry
from hr_metrics.metrics.service import MetricsService
from hr_metrics.storage.store import MetricStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: MetricStore
    data_source: SQLiteDataSource
    metrics: MetricsService
    automation: MetricsAutomation
    alerts: AlertEngine
    exporter: MetricsExporter
    pusher: MetricsPusher

    def close(self) -> None:
        self.store.close()


def hot_metric_ids(settings: Settings) -> tuple[str, ...]:
    configured = tuple(m.strip() for m in settings.hot_metrics.split(",") if m.strip())
    return configured or DEFAULT_HOT_METRICS


def build_services(settings: Settings | None = None) -> Services:
    settings = settings or get_settings()
    db_dir = os.path.dirname(settings.metrics_db_path)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)

    store = MetricStore.open(settings.metrics_db_path)
    data_source = SQLiteDataSource(settings.hr_db_path)
    engine = MetricEngine(default_registry(), data_source)
    cache = MetricCache(store, create_ephemeral_cache(settings), ttl_seconds=settings.cache_ttl_seconds)
    service = MetricsService(engine, cache, max_age_seconds=settings.freshness_max_age_seconds)
    alerts = AlertEngine(service, store, build_notifier(settings))
    automation = MetricsAutomation(
        service,
        store,
        max_workers=settings.automation_max_workers,
        max_age_seconds=settings.freshness_max_age_seconds,
        hot_metrics=hot_metric_ids(settings),
        alert_engine=alerts,
    )
    logger.info("Services ready (%d metrics, cache backend: %s)", len(engine.registry), cache.backend_name)
    return Services(
        store=store,
        data_source=data_source,
        metrics=service,
        automation=automation,
        alerts=alerts,
        exporter=MetricsExporter(store),
        pusher=MetricsPusher.from_settings(settings, store),
    )
