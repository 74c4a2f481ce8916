"""Tests for batch and scheduled sweeps, warm-up, cleanup, and the automation cycle."""

import sqlite3
import threading
from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from hr_metrics.automation.runner import BATCH_METRIC_ID, MetricsAutomation, is_due
from hr_metrics.cache.backends import FileCache
from hr_metrics.cache.layer import MetricCache, StoreOutcome
from hr_metrics.errors import ComputationError, DefinitionNotFound, PersistenceError
from hr_metrics.metrics.datasource import SQLiteDataSource
from hr_metrics.metrics.engine import MetricEngine
from hr_metrics.metrics.models import MetricFilters, scalar_value
from hr_metrics.metrics.registry import MetricRegistry
from hr_metrics.metrics.service import MetricsService
from hr_metrics.storage import store as db
from hr_metrics.storage.models import CalculationLogRecord, ScheduleRecord
from hr_metrics.storage.store import MetricStore, iso
from tests.factories import BROKEN_DEFINITION, START_TIME, FakeClock, make_definitions

HEADCOUNT = "employee_demographics.headcount"


def _logs(store: MetricStore, **kwargs: object) -> list[CalculationLogRecord]:
    with store.session() as conn:
        return db.get_calculation_logs(conn, **kwargs)  # type: ignore[arg-type]


def _with_broken(hr_db: str, cache: MetricCache, store: MetricStore, clock: FakeClock) -> MetricsAutomation:
    registry = MetricRegistry([*make_definitions(), BROKEN_DEFINITION])
    service = MetricsService(MetricEngine(registry, SQLiteDataSource(hr_db), clock=clock), cache)
    return MetricsAutomation(service, store, max_workers=2, clock=clock, sweep_lock=threading.Lock())


def _schedule(cadence: str, last_generated_at: str | None) -> ScheduleRecord:
    return ScheduleRecord(
        id=1,
        metric_id=HEADCOUNT,
        category="employee_demographics",
        metric_name="headcount",
        cadence=cadence,
        last_generated_at=last_generated_at,
        next_generated_at=None,
        created_at=iso(START_TIME),
    )


# ---------------------------------------------------------------------------
# Batch sweep
# ---------------------------------------------------------------------------


class TestProcessBatch:
    async def test_first_sweep_computes_everything(self, automation: MetricsAutomation, store: MetricStore) -> None:
        outcome = await automation.process_batch()

        assert outcome.status == "success"
        assert outcome.total == 6
        assert outcome.recomputed == 6
        per_metric = _logs(store, calculation_type="scheduled")
        assert len(per_metric) == 6
        assert {r["status"] for r in per_metric} == {"success"}
        (aggregate,) = _logs(store, metric_id=BATCH_METRIC_ID)
        assert aggregate["calculation_type"] == "batch"
        assert aggregate["status"] == "success"
        assert aggregate["records_processed"] == 6

    async def test_fresh_metrics_are_reused(self, automation: MetricsAutomation, store: MetricStore) -> None:
        await automation.process_batch()
        second = await automation.process_batch()

        assert second.status == "success"
        assert second.reused == 6
        assert second.recomputed == 0
        statuses = [r["status"] for r in _logs(store, calculation_type="scheduled")]
        assert statuses.count("success") == 6
        assert statuses.count("reused") == 6

    async def test_unwritable_file_cache_does_not_abort_sweep(
        self, tmp_path: Path, hr_db: str, store: MetricStore, clock: FakeClock
    ) -> None:
        directory = tmp_path / "ephemeral"
        cache = MetricCache(store, FileCache(str(directory), clock=clock), clock=clock)
        service = MetricsService(MetricEngine(MetricRegistry(make_definitions()), SQLiteDataSource(hr_db), clock=clock), cache)
        automation = MetricsAutomation(service, store, max_workers=2, clock=clock, sweep_lock=threading.Lock())
        directory.rmdir()

        outcome = await automation.process_batch()

        assert outcome.status == "success"
        assert outcome.recomputed == 6
        assert len(_logs(store, calculation_type="scheduled")) == 6
        assert len(_logs(store, metric_id=BATCH_METRIC_ID)) == 1
        assert cache.is_fresh(HEADCOUNT, 3600) is True

    async def test_stale_metrics_are_recomputed(
        self, automation: MetricsAutomation, clock: FakeClock
    ) -> None:
        await automation.process_batch()
        clock.advance(3600)
        outcome = await automation.process_batch()
        assert outcome.recomputed == 6

    async def test_records_processed_per_shape(self, automation: MetricsAutomation, store: MetricStore) -> None:
        await automation.process_batch()
        counts = {r["metric_id"]: r["records_processed"] for r in _logs(store, calculation_type="scheduled")}
        assert counts[HEADCOUNT] == 1
        assert counts["employee_demographics.roster"] == 4
        assert counts["employee_demographics.by_department"] == 2

    async def test_concurrent_sweep_is_rejected(self, service: MetricsService, store: MetricStore) -> None:
        lock = threading.Lock()
        automation = MetricsAutomation(service, store, sweep_lock=lock)
        lock.acquire()
        try:
            assert automation.is_running is True
            outcome = await automation.process_batch()
        finally:
            lock.release()

        assert outcome.status == "already_running"
        assert _logs(store) == []

    async def test_one_failure_makes_sweep_partial(
        self, hr_db: str, cache: MetricCache, store: MetricStore, clock: FakeClock
    ) -> None:
        automation = _with_broken(hr_db, cache, store, clock)
        outcome = await automation.process_batch()

        assert outcome.status == "partial"
        assert outcome.failed == 1
        assert outcome.recomputed == 6
        errors = outcome.as_dict()["errors"]
        assert list(errors) == ["compliance_audit.broken"]
        (failed,) = [r for r in _logs(store, calculation_type="scheduled") if r["status"] == "error"]
        assert "missing_table" in (failed["error_message"] or "")
        (aggregate,) = _logs(store, metric_id=BATCH_METRIC_ID)
        assert aggregate["status"] == "partial"

    async def test_failure_keeps_previous_value(
        self, automation: MetricsAutomation, service: MetricsService, clock: FakeClock
    ) -> None:
        await automation.process_batch()
        before = service.cache.latest(HEADCOUNT)

        clock.advance(7200)
        failure = ComputationError(HEADCOUNT, sqlite3.OperationalError("database is locked"))
        with patch.object(MetricEngine, "compute", side_effect=failure):
            outcome = await automation.process_batch()

        assert outcome.failed == 6
        assert service.cache.latest(HEADCOUNT) == before
        assert automation.is_running is False

    async def test_persistence_failure_is_an_error_run(self, automation: MetricsAutomation, service: MetricsService) -> None:
        failed = StoreOutcome(HEADCOUNT, persisted=False, error=PersistenceError("disk I/O error"))
        with patch.object(service.cache, "store", return_value=failed):
            outcome = await automation.process_batch()

        assert outcome.status == "partial"
        assert outcome.failed == 6
        assert all(r.error == "disk I/O error" for r in outcome.runs)

    async def test_log_write_failure_is_structural(self, automation: MetricsAutomation) -> None:
        with patch(
            "hr_metrics.automation.runner.db.append_calculation_logs",
            side_effect=sqlite3.OperationalError("database is locked"),
        ):
            outcome = await automation.process_batch()

        assert outcome.status == "error"
        assert outcome.error == "database is locked"
        assert automation.is_running is False


# ---------------------------------------------------------------------------
# Explicit schedules
# ---------------------------------------------------------------------------


class TestIsDue:
    def test_never_generated_is_due(self) -> None:
        assert is_due(_schedule("daily", None), START_TIME) is True

    def test_due_after_full_cadence(self) -> None:
        schedule = _schedule("hourly", iso(START_TIME))
        assert is_due(schedule, START_TIME + timedelta(minutes=59)) is False
        assert is_due(schedule, START_TIME + timedelta(hours=1)) is True

    def test_monthly_is_thirty_days(self) -> None:
        schedule = _schedule("monthly", iso(START_TIME))
        assert is_due(schedule, START_TIME + timedelta(days=29)) is False
        assert is_due(schedule, START_TIME + timedelta(days=30)) is True

    def test_unknown_cadence_never_due(self) -> None:
        assert is_due(_schedule("fortnightly", iso(START_TIME)), START_TIME + timedelta(days=365)) is False


class TestProcessScheduled:
    def test_schedule_metric(self, automation: MetricsAutomation) -> None:
        record = automation.schedule_metric("employee_demographics", "headcount", "hourly")
        assert record["metric_id"] == HEADCOUNT
        assert record["cadence"] == "hourly"
        assert record["last_generated_at"] is None

        automation.schedule_metric("employee_demographics", "headcount", "weekly")
        (only,) = automation.list_schedules()
        assert only["cadence"] == "weekly"

    def test_schedule_invalid_cadence(self, automation: MetricsAutomation) -> None:
        with pytest.raises(ValueError, match="Unknown cadence"):
            automation.schedule_metric("employee_demographics", "headcount", "yearly")

    def test_schedule_unknown_metric(self, automation: MetricsAutomation) -> None:
        with pytest.raises(DefinitionNotFound):
            automation.schedule_metric("employee_demographics", "nope", "daily")

    async def test_due_schedule_recomputes_and_advances(
        self, automation: MetricsAutomation, store: MetricStore, clock: FakeClock
    ) -> None:
        automation.schedule_metric("employee_demographics", "headcount", "hourly")

        outcome = await automation.process_scheduled()

        assert outcome.status == "success"
        assert [r.metric_id for r in outcome.runs] == [HEADCOUNT]
        (schedule,) = automation.list_schedules()
        assert schedule["last_generated_at"] == iso(START_TIME)
        assert schedule["next_generated_at"] == iso(START_TIME + timedelta(hours=1))

    async def test_not_due_schedule_is_skipped(self, automation: MetricsAutomation, clock: FakeClock) -> None:
        automation.schedule_metric("employee_demographics", "headcount", "hourly")
        await automation.process_scheduled()

        clock.advance(1800)
        assert (await automation.process_scheduled()).total == 0
        clock.advance(1800)
        assert (await automation.process_scheduled()).total == 1

    async def test_due_schedule_is_forced_even_when_fresh(
        self, automation: MetricsAutomation, service: MetricsService
    ) -> None:
        service.get("employee_demographics", "headcount")
        automation.schedule_metric("employee_demographics", "headcount", "daily")
        outcome = await automation.process_scheduled()
        assert [r.status for r in outcome.runs] == ["success"]

    async def test_failed_schedule_stays_due(
        self, hr_db: str, cache: MetricCache, store: MetricStore, clock: FakeClock
    ) -> None:
        automation = _with_broken(hr_db, cache, store, clock)
        automation.schedule_metric("compliance_audit", "broken", "daily")

        outcome = await automation.process_scheduled()

        assert outcome.status == "partial"
        (schedule,) = automation.list_schedules()
        assert schedule["last_generated_at"] is None


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


class TestMaintenance:
    def test_warm_up_computes_missing_then_loads(self, automation: MetricsAutomation, service: MetricsService) -> None:
        first = automation.warm_up_cache()
        assert first["loaded"] == []
        assert first["computed"] == [HEADCOUNT, "payroll_compensation.total_salary"]

        service.cache.clear()
        second = automation.warm_up_cache()
        assert second["loaded"] == [HEADCOUNT, "payroll_compensation.total_salary"]
        assert second["computed"] == []

    def test_warm_up_without_compute(self, automation: MetricsAutomation) -> None:
        report = automation.warm_up_cache(compute_missing=False)
        assert report == {"loaded": [], "computed": [], "errors": {}}

    def test_warm_up_collects_errors(self, automation: MetricsAutomation) -> None:
        report = automation.warm_up_cache(["nope.missing"])
        assert list(report["errors"]) == ["nope.missing"]

    def test_cleanup_boundary_is_strict(
        self, automation: MetricsAutomation, service: MetricsService, clock: FakeClock
    ) -> None:
        service.refresh("employee_demographics", "headcount")

        clock.advance(365 * 86400)
        assert automation.cleanup(365)["metrics_summary"] == 0

        clock.advance(1)
        assert automation.cleanup(365)["metrics_summary"] == 1
        assert service.cache.latest(HEADCOUNT) is None

    async def test_cleanup_removes_old_logs(self, automation: MetricsAutomation, clock: FakeClock) -> None:
        await automation.process_batch()
        clock.advance(400 * 86400)
        deleted = automation.cleanup(365)
        assert deleted["metrics_calculation_log"] == 7

    async def test_status(self, automation: MetricsAutomation) -> None:
        await automation.process_batch()
        status = automation.status()
        assert status["running"] is False
        assert status["calculations_24h"]["total_calculations"] == 6
        assert status["calculations_24h"]["successful_calculations"] == 6
        assert status["last_batch"]["status"] == "success"
        assert status["schedules"] == 0
        assert status["cache"]["cache_backend"] == "file"


class TestRunCycle:
    async def test_monday_cycle_runs_every_stage(self, automation: MetricsAutomation) -> None:
        report = await automation.run_cycle(retention_days=365)
        assert list(report) == ["batch", "scheduled", "warm_up", "cleanup", "status"]
        assert report["batch"]["status"] == "success"
        assert report["warm_up"]["loaded"] == [HEADCOUNT, "payroll_compensation.total_salary"]

    async def test_cleanup_only_on_mondays(self, service: MetricsService, store: MetricStore) -> None:
        tuesday = FakeClock(START_TIME + timedelta(days=1))
        automation = MetricsAutomation(service, store, clock=tuesday, sweep_lock=threading.Lock())
        report = await automation.run_cycle()
        assert "cleanup" not in report

    async def test_alerts_stage(self, service: MetricsService, store: MetricStore, clock: FakeClock) -> None:
        alert_engine = MagicMock()
        alert_engine.process_alerts.return_value.as_dict.return_value = {"evaluated": 2, "fired": []}
        automation = MetricsAutomation(
            service, store, alert_engine=alert_engine, clock=clock, sweep_lock=threading.Lock()
        )
        report = await automation.run_cycle()
        assert report["alerts"] == {"evaluated": 2, "fired": []}
        alert_engine.process_alerts.assert_called_once()

    async def test_cycle_stops_when_sweep_in_flight(self, service: MetricsService, store: MetricStore) -> None:
        lock = threading.Lock()
        automation = MetricsAutomation(service, store, sweep_lock=lock)
        with lock:
            report = await automation.run_cycle()
        assert list(report) == ["batch"]
        assert report["batch"]["status"] == "already_running"

    async def test_filtered_values_are_not_swept(self, automation: MetricsAutomation, service: MetricsService) -> None:
        service.get("employee_demographics", "headcount", {"department": "1"})
        await automation.process_batch()
        filtered = service.cache.latest(HEADCOUNT, MetricFilters(department="1"))
        assert filtered is not None
        assert scalar_value(filtered) == 2
