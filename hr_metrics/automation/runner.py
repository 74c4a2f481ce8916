"""Automation sweeps: batch recomputation, explicit schedules, warm-up, cleanup.

Per-metric work runs on a bounded pool (``asyncio.Semaphore`` around
``asyncio.to_thread``) so the HR database never sees more than
``automation_max_workers`` concurrent queries.  Each metric's outcome is
captured individually; only a failure to write the calculation log itself
aborts a sweep.
"""

import asyncio
import logging
import sqlite3
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Literal

from hr_metrics.errors import MetricsError
from hr_metrics.metrics.catalog import DEFAULT_HOT_METRICS
from hr_metrics.metrics.engine import utcnow
from hr_metrics.metrics.models import GaugeResult, MetricResult, ScalarResult
from hr_metrics.metrics.service import MetricsService
from hr_metrics.observability.metrics import BATCH_DURATION, BATCH_RUNS_TOTAL
from hr_metrics.storage import store as db
from hr_metrics.storage.models import ScheduleRecord
from hr_metrics.storage.store import MetricStore, iso, parse_iso

if TYPE_CHECKING:
    from hr_metrics.alerts.engine import AlertEngine

logger = logging.getLogger(__name__)

BATCH_METRIC_ID = "batch_calculation"

CADENCES: dict[str, timedelta] = {
    "hourly": timedelta(hours=1),
    "daily": timedelta(days=1),
    "weekly": timedelta(weeks=1),
    "monthly": timedelta(days=30),
}

# Process-wide: at most one sweep in flight.
_SWEEP_LOCK = threading.Lock()

RunStatus = Literal["success", "reused", "error"]
SweepStatus = Literal["success", "partial", "error", "already_running"]


@dataclass
class MetricRun:
    """Outcome of one metric within a sweep."""

    metric_id: str
    status: RunStatus
    execution_time_ms: float
    records_processed: int | None = None
    error: str | None = None


@dataclass
class BatchOutcome:
    status: SweepStatus
    runs: list[MetricRun] = field(default_factory=list)
    execution_time_ms: float = 0.0
    error: str | None = None

    @property
    def total(self) -> int:
        return len(self.runs)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.runs if r.status == "error")

    @property
    def recomputed(self) -> int:
        return sum(1 for r in self.runs if r.status == "success")

    @property
    def reused(self) -> int:
        return sum(1 for r in self.runs if r.status == "reused")

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "total": self.total,
            "recomputed": self.recomputed,
            "reused": self.reused,
            "failed": self.failed,
            "execution_time_ms": round(self.execution_time_ms, 2),
            "error": self.error,
            "errors": {r.metric_id: r.error for r in self.runs if r.error},
        }


def records_processed(result: MetricResult) -> int:
    match result:
        case ScalarResult() | GaugeResult():
            return 1
        case _:
            return len(result.data)


def is_due(schedule: ScheduleRecord, now: datetime) -> bool:
    """Due when never generated, or when a full cadence has elapsed since."""
    if schedule["last_generated_at"] is None:
        return True
    interval = CADENCES.get(schedule["cadence"])
    if interval is None:
        logger.warning("Schedule for %s has unknown cadence '%s'", schedule["metric_id"], schedule["cadence"])
        return False
    return now - parse_iso(schedule["last_generated_at"]) >= interval


class MetricsAutomation:
    def __init__(
        self,
        service: MetricsService,
        store: MetricStore,
        *,
        max_workers: int = 4,
        max_age_seconds: float = 3600,
        hot_metrics: Sequence[str] = DEFAULT_HOT_METRICS,
        alert_engine: "AlertEngine | None" = None,
        clock: Callable[[], datetime] = utcnow,
        sweep_lock: threading.Lock = _SWEEP_LOCK,
    ) -> None:
        self._service = service
        self._store = store
        self._max_workers = max(1, max_workers)
        self._max_age = max_age_seconds
        self._hot_metrics = tuple(hot_metrics)
        self._alert_engine = alert_engine
        self._clock = clock
        self._lock = sweep_lock

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    async def process_batch(self) -> BatchOutcome:
        """Recompute every stale metric in the registry; reuse fresh ones.

        Appends one log entry per metric plus one aggregate ``batch`` entry.
        A concurrent call returns ``already_running`` without touching the log.
        """
        if not self._lock.acquire(blocking=False):
            logger.info("Batch sweep already running; skipping")
            BATCH_RUNS_TOTAL.labels(status="already_running").inc()
            return BatchOutcome(status="already_running")

        start = time.monotonic()
        try:
            targets = [(d.category, d.name) for d in self._service.registry.list_all()]
            runs = await self._run_pool(targets, force=False)
            elapsed_ms = (time.monotonic() - start) * 1000
            status: SweepStatus = "partial" if any(r.status == "error" for r in runs) else "success"
            outcome = BatchOutcome(status=status, runs=runs, execution_time_ms=elapsed_ms)
            try:
                self._write_logs(runs, "scheduled", aggregate=outcome)
            except sqlite3.Error as exc:
                logger.exception("Batch sweep aborted: calculation log unavailable")
                outcome = BatchOutcome(status="error", runs=runs, execution_time_ms=elapsed_ms, error=str(exc))
        finally:
            self._lock.release()
            BATCH_DURATION.observe(time.monotonic() - start)

        BATCH_RUNS_TOTAL.labels(status=outcome.status).inc()
        logger.info(
            "Batch sweep %s: %d metrics, %d recomputed, %d reused, %d failed in %.0f ms",
            outcome.status,
            outcome.total,
            outcome.recomputed,
            outcome.reused,
            outcome.failed,
            outcome.execution_time_ms,
        )
        return outcome

    async def process_scheduled(self) -> BatchOutcome:
        """Recompute the metrics whose explicit schedule is due.

        Schedule timestamps advance only for metrics that recomputed
        successfully, so a failed metric stays due for the next sweep.
        """
        if not self._lock.acquire(blocking=False):
            logger.info("Sweep already running; skipping scheduled metrics")
            return BatchOutcome(status="already_running")

        start = time.monotonic()
        try:
            now = self._clock()
            with self._store.session() as conn:
                schedules = db.list_schedules(conn)
            due = [s for s in schedules if is_due(s, now)]
            runs = await self._run_pool([(s["category"], s["metric_name"]) for s in due], force=True)
            elapsed_ms = (time.monotonic() - start) * 1000
            status: SweepStatus = "partial" if any(r.status == "error" for r in runs) else "success"
            outcome = BatchOutcome(status=status, runs=runs, execution_time_ms=elapsed_ms)
            try:
                self._write_logs(runs, "scheduled")
                for schedule, run in zip(due, runs, strict=True):
                    if run.status != "success":
                        continue
                    with self._store.session() as conn:
                        db.mark_schedule_generated(
                            conn,
                            schedule["id"],
                            last_generated_at=iso(now),
                            next_generated_at=iso(now + CADENCES.get(schedule["cadence"], CADENCES["daily"])),
                        )
            except sqlite3.Error as exc:
                logger.exception("Scheduled sweep aborted: store unavailable")
                outcome = BatchOutcome(status="error", runs=runs, execution_time_ms=elapsed_ms, error=str(exc))
        finally:
            self._lock.release()

        logger.info("Scheduled sweep %s: %d due, %d failed", outcome.status, outcome.total, outcome.failed)
        return outcome

    async def _run_pool(self, targets: Iterable[tuple[str, str]], *, force: bool) -> list[MetricRun]:
        semaphore = asyncio.Semaphore(self._max_workers)

        async def bounded(category: str, name: str) -> MetricRun:
            async with semaphore:
                return await asyncio.to_thread(self._run_metric, category, name, force)

        return list(await asyncio.gather(*(bounded(c, n) for c, n in targets)))

    def _run_metric(self, category: str, name: str, force: bool) -> MetricRun:
        metric_id = f"{category}.{name}"
        start = time.monotonic()
        if not force and self._service.cache.is_fresh(metric_id, self._max_age):
            return MetricRun(metric_id, "reused", (time.monotonic() - start) * 1000)
        try:
            refreshed = self._service.refresh(category, name)
        except MetricsError as exc:
            return MetricRun(metric_id, "error", (time.monotonic() - start) * 1000, error=str(exc))

        elapsed_ms = (time.monotonic() - start) * 1000
        count = records_processed(refreshed.result)
        if refreshed.stored.error is not None:
            return MetricRun(metric_id, "error", elapsed_ms, count, error=str(refreshed.stored.error))
        return MetricRun(metric_id, "success", elapsed_ms, count)

    def _write_logs(
        self,
        runs: Sequence[MetricRun],
        calculation_type: str,
        aggregate: BatchOutcome | None = None,
    ) -> None:
        calculated_at = iso(self._clock())
        entries: list[dict[str, Any]] = [
            {
                "metric_id": run.metric_id,
                "calculation_type": calculation_type,
                "status": run.status,
                "execution_time_ms": run.execution_time_ms,
                "records_processed": run.records_processed,
                "error_message": run.error,
                "calculated_at": calculated_at,
            }
            for run in runs
        ]
        if aggregate is not None:
            entries.append(
                {
                    "metric_id": BATCH_METRIC_ID,
                    "calculation_type": "batch",
                    "status": aggregate.status,
                    "execution_time_ms": aggregate.execution_time_ms,
                    "records_processed": aggregate.total,
                    "error_message": f"{aggregate.failed} metric(s) failed" if aggregate.failed else None,
                    "calculated_at": calculated_at,
                }
            )
        if not entries:
            return
        with self._store.session() as conn:
            db.append_calculation_logs(conn, entries)

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    def schedule_metric(self, category: str, name: str, cadence: str) -> ScheduleRecord:
        """Create or re-cadence the explicit schedule of a metric.

        Raises:
            DefinitionNotFound: the metric is not cataloged.
            ValueError: the cadence is not one of hourly, daily, weekly, monthly.
        """
        definition = self._service.registry.get(category, name)
        if cadence not in CADENCES:
            msg = f"Unknown cadence '{cadence}' (expected one of {', '.join(CADENCES)})"
            raise ValueError(msg)
        with self._store.session() as conn:
            db.upsert_schedule(
                conn,
                metric_id=definition.metric_id,
                category=category,
                metric_name=name,
                cadence=cadence,
                created_at=iso(self._clock()),
            )
            schedules = db.list_schedules(conn)
        return next(s for s in schedules if s["metric_id"] == definition.metric_id)

    def list_schedules(self) -> list[ScheduleRecord]:
        with self._store.session() as conn:
            return db.list_schedules(conn)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def warm_up_cache(self, metric_ids: Sequence[str] | None = None, *, compute_missing: bool = True) -> dict[str, Any]:
        """Preload hot metrics into the ephemeral tier.

        Fresh durable records are loaded as-is.  With ``compute_missing`` the
        remaining ids are computed and stored; failures are collected.
        """
        ids = list(metric_ids) if metric_ids is not None else list(self._hot_metrics)
        loaded = self._service.cache.warm_up(ids, self._max_age)
        computed: list[str] = []
        errors: dict[str, str] = {}
        if compute_missing:
            for metric_id in ids:
                if metric_id in loaded:
                    continue
                try:
                    self._service.get_by_id(metric_id)
                except MetricsError as exc:
                    errors[metric_id] = str(exc)
                    continue
                computed.append(metric_id)
        if errors:
            logger.warning("Cache warm-up failed for %d metric(s): %s", len(errors), ", ".join(errors))
        return {"loaded": loaded, "computed": computed, "errors": errors}

    def cleanup(self, retention_days: int) -> dict[str, int]:
        """Delete summaries and logs strictly older than ``now - retention_days``."""
        cutoff = iso(self._clock() - timedelta(days=retention_days))
        with self._store.session() as conn:
            deleted = {"metrics_summary": db.delete_summaries_older_than(conn, cutoff)}
            deleted.update(db.delete_logs_older_than(conn, cutoff))
        logger.info("Cleanup before %s removed %s", cutoff, deleted)
        return deleted

    def status(self) -> dict[str, Any]:
        """Last-24h calculation stats merged with cache performance stats."""
        since = iso(self._clock() - timedelta(hours=24))
        with self._store.session() as conn:
            stats = db.get_calculation_stats(conn, since)
            last_batch = db.get_calculation_logs(conn, metric_id=BATCH_METRIC_ID, limit=1)
            schedules = db.list_schedules(conn)
        return {
            "running": self.is_running,
            "calculations_24h": stats,
            "last_batch": last_batch[0] if last_batch else None,
            "schedules": len(schedules),
            "cache": self._service.cache.performance_stats(),
        }

    async def run_cycle(self, retention_days: int = 365) -> dict[str, Any]:
        """Full automation cycle: batch, schedules, alerts, warm-up, weekly cleanup."""
        report: dict[str, Any] = {}
        batch = await self.process_batch()
        report["batch"] = batch.as_dict()
        if batch.status == "already_running":
            return report

        report["scheduled"] = (await self.process_scheduled()).as_dict()
        if self._alert_engine is not None:
            report["alerts"] = (await asyncio.to_thread(self._alert_engine.process_alerts)).as_dict()
        report["warm_up"] = await asyncio.to_thread(self.warm_up_cache)
        if self._clock().weekday() == 0:
            report["cleanup"] = await asyncio.to_thread(self.cleanup, retention_days)
        report["status"] = await asyncio.to_thread(self.status)
        return report
