"""Unit tests for the Prometheus self-instrumentation."""

from unittest.mock import MagicMock, patch

import pytest
from prometheus_client import REGISTRY

from hr_metrics.alerts.engine import AlertEngine
from hr_metrics.automation.runner import MetricsAutomation
from hr_metrics.errors import ComputationError, ExportError
from hr_metrics.export.exporters import MetricsExporter
from hr_metrics.metrics.engine import MetricEngine
from hr_metrics.metrics.models import MetricFilters
from hr_metrics.metrics.service import MetricsService
from hr_metrics.observability.metrics import (
    ALERTS_FIRED_TOTAL,
    BATCH_DURATION,
    BATCH_RUNS_TOTAL,
    CACHE_LOOKUPS_TOTAL,
    COMPONENT_HEALTHY,
    METRIC_COMPUTATIONS_TOTAL,
    METRIC_COMPUTE_DURATION,
    METRIC_STALENESS,
    REQUEST_DURATION,
    REQUESTS_TOTAL,
)
from hr_metrics.storage.store import MetricStore
from tests.factories import FakeClock

HEADCOUNT = "employee_demographics.headcount"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _sample(metric_name: str, labels: dict[str, str] | None = None) -> float:
    """Read current value from the default registry, 0.0 if never observed."""
    return REGISTRY.get_sample_value(metric_name, labels or {}) or 0.0


# ---------------------------------------------------------------------------
# Metric definition tests
# ---------------------------------------------------------------------------


class TestMetricDefinitions:
    def test_computations_total_is_counter(self) -> None:
        assert METRIC_COMPUTATIONS_TOTAL._type == "counter"

    def test_compute_duration_is_histogram(self) -> None:
        assert METRIC_COMPUTE_DURATION._type == "histogram"

    def test_cache_lookups_total_is_counter(self) -> None:
        assert CACHE_LOOKUPS_TOTAL._type == "counter"

    def test_staleness_is_gauge(self) -> None:
        assert METRIC_STALENESS._type == "gauge"

    def test_batch_metrics(self) -> None:
        assert BATCH_RUNS_TOTAL._type == "counter"
        assert BATCH_DURATION._type == "histogram"

    def test_alerts_fired_is_counter(self) -> None:
        assert ALERTS_FIRED_TOTAL._type == "counter"

    def test_request_metrics(self) -> None:
        assert REQUEST_DURATION._type == "histogram"
        assert REQUESTS_TOTAL._type == "counter"

    def test_component_healthy_is_gauge(self) -> None:
        assert COMPONENT_HEALTHY._type == "gauge"


# ---------------------------------------------------------------------------
# Instrumentation tests
# ---------------------------------------------------------------------------


class TestComputationInstrumentation:
    def test_success_increments_counter(self, engine: MetricEngine) -> None:
        labels = {"category": "employee_demographics", "status": "success"}
        before = _sample("hr_metrics_computations_total", labels)
        engine.compute("employee_demographics", "headcount")
        assert _sample("hr_metrics_computations_total", labels) - before == 1.0

    def test_failure_increments_error_counter(self, engine: MetricEngine) -> None:
        labels = {"category": "payroll_compensation", "status": "error"}
        before = _sample("hr_metrics_computations_total", labels)
        with (
            patch.object(engine._data_source, "execute", side_effect=RuntimeError("boom")),
            pytest.raises(ComputationError),
        ):
            engine.compute("payroll_compensation", "total_salary")
        assert _sample("hr_metrics_computations_total", labels) - before == 1.0

    def test_duration_observed(self, engine: MetricEngine) -> None:
        labels = {"category": "employee_demographics"}
        before = _sample("hr_metrics_compute_duration_seconds_count", labels)
        engine.compute("employee_demographics", "active_rate")
        assert _sample("hr_metrics_compute_duration_seconds_count", labels) - before == 1.0


class TestCacheInstrumentation:
    def test_miss_then_ephemeral_hit(self, service: MetricsService) -> None:
        miss = {"tier": "ephemeral", "result": "miss"}
        hit = {"tier": "ephemeral", "result": "hit"}
        misses, hits = _sample("hr_metrics_cache_lookups_total", miss), _sample("hr_metrics_cache_lookups_total", hit)

        service.get("employee_demographics", "headcount")
        service.get("employee_demographics", "headcount")

        assert _sample("hr_metrics_cache_lookups_total", miss) - misses == 1.0
        assert _sample("hr_metrics_cache_lookups_total", hit) - hits == 1.0

    def test_store_resets_staleness(self, service: MetricsService, clock: FakeClock) -> None:
        service.get("employee_demographics", "headcount")
        clock.advance(seconds=120)
        service.cache.staleness(HEADCOUNT)
        assert _sample("hr_metrics_metric_staleness_seconds", {"metric_id": HEADCOUNT}) == 120.0

        service.refresh("employee_demographics", "headcount", MetricFilters())
        assert _sample("hr_metrics_metric_staleness_seconds", {"metric_id": HEADCOUNT}) == 0.0


class TestAutomationInstrumentation:
    async def test_batch_run_counted(self, automation: MetricsAutomation) -> None:
        before = _sample("hr_metrics_batch_runs_total", {"status": "success"})
        await automation.process_batch()
        assert _sample("hr_metrics_batch_runs_total", {"status": "success"}) - before == 1.0

    def test_alert_fired_counted(self, service: MetricsService, store: MetricStore, clock: FakeClock) -> None:
        alerts = AlertEngine(service, store, notifier=MagicMock(), clock=clock)
        alerts.create_rule("Any staff", HEADCOUNT, ">", 0, severity="info")
        before = _sample("hr_metrics_alerts_fired_total", {"severity": "info"})
        alerts.process_alerts()
        assert _sample("hr_metrics_alerts_fired_total", {"severity": "info"}) - before == 1.0


class TestExportInstrumentation:
    def test_success_and_unknown_format(self, service: MetricsService, clock: FakeClock) -> None:
        exporter = MetricsExporter(clock=clock)
        ok = {"format": "json", "status": "success"}
        bad = {"format": "unknown", "status": "error"}
        ok_before, bad_before = _sample("hr_metrics_exports_total", ok), _sample("hr_metrics_exports_total", bad)

        exporter.export(service.collect([HEADCOUNT]), "json")
        with pytest.raises(ExportError):
            exporter.export([], "docx")

        assert _sample("hr_metrics_exports_total", ok) - ok_before == 1.0
        assert _sample("hr_metrics_exports_total", bad) - bad_before == 1.0
