"""Two-tier metric cache: ephemeral TTL entries in front of durable summaries.

Read order is (a) an unexpired ephemeral entry, then (b) the durable summary
if it is still fresh, repopulating the ephemeral tier on the way out.
Anything else is a miss and the caller recomputes.  Invalidation is purely
pull-based (TTL and freshness); nothing pushes invalidations on data change.
"""

import hashlib
import json
import logging
import sqlite3
import threading
from collections import defaultdict
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from hr_metrics.cache.backends import EphemeralCache
from hr_metrics.errors import CacheUnavailable, PersistenceError
from hr_metrics.metrics.engine import utcnow
from hr_metrics.metrics.models import MetricFilters, MetricResult, dump_result, load_result
from hr_metrics.observability.metrics import (
    CACHE_LOOKUPS_TOTAL,
    METRIC_STALENESS,
    PERSISTENCE_FAILURES_TOTAL,
)
from hr_metrics.storage import store as db
from hr_metrics.storage.models import SummaryRecord
from hr_metrics.storage.store import MetricStore, iso, parse_iso

logger = logging.getLogger(__name__)

KEY_PREFIX = "hr_metrics:"


def cache_key(metric_id: str, filters: MetricFilters) -> str:
    """Ephemeral key for a metric under a filter set."""
    raw = f"{metric_id}.{json.dumps(filters.as_dict(), sort_keys=True)}"
    return KEY_PREFIX + hashlib.md5(raw.encode("utf-8"), usedforsecurity=False).hexdigest()


@dataclass
class StoreOutcome:
    """Result of writing a computed value through both tiers."""

    metric_id: str
    persisted: bool
    error: PersistenceError | None = None


class MetricCache:
    def __init__(
        self,
        store: MetricStore,
        ephemeral: EphemeralCache,
        *,
        ttl_seconds: int = 3600,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._ephemeral = ephemeral
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._key_locks: defaultdict[str, threading.Lock] = defaultdict(threading.Lock)
        self._key_locks_guard = threading.Lock()

    @property
    def backend_name(self) -> str:
        return self._ephemeral.name

    @contextmanager
    def _locked(self, key: str) -> Iterator[None]:
        with self._key_locks_guard:
            lock = self._key_locks[key]
        with lock:
            yield

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, metric_id: str, filters: MetricFilters, max_age: float) -> MetricResult | None:
        """Cached result for the metric, or None when both tiers miss or are stale."""
        key = cache_key(metric_id, filters)
        cached = self._ephemeral_get(key)
        if cached is not None:
            CACHE_LOOKUPS_TOTAL.labels(tier="ephemeral", result="hit").inc()
            return cached
        CACHE_LOOKUPS_TOTAL.labels(tier="ephemeral", result="miss").inc()

        with self._locked(key):
            record = self._latest_record(metric_id, filters)
            if record is None or not self._record_is_fresh(record, max_age):
                CACHE_LOOKUPS_TOTAL.labels(tier="durable", result="miss").inc()
                return None
            result = self._decode(record)
            if result is None:
                CACHE_LOOKUPS_TOTAL.labels(tier="durable", result="miss").inc()
                return None
            CACHE_LOOKUPS_TOTAL.labels(tier="durable", result="hit").inc()
            self._ephemeral_set(key, result, self._remaining_ttl(record, max_age))
        return result

    def is_fresh(self, metric_id: str, max_age: float, filters: MetricFilters | None = None) -> bool:
        """True iff ``now - last_updated < max_age`` for the latest durable record."""
        record = self._latest_record(metric_id, filters or MetricFilters())
        return record is not None and self._record_is_fresh(record, max_age)

    def latest(self, metric_id: str, filters: MetricFilters | None = None) -> MetricResult | None:
        """Latest durable value regardless of freshness."""
        record = self._latest_record(metric_id, filters or MetricFilters())
        return self._decode(record) if record is not None else None

    def history(
        self,
        metric_id: str,
        periods: int = 12,
        filters: MetricFilters | None = None,
    ) -> list[MetricResult]:
        """The most recent N periods of a metric, oldest first."""
        accepted = filters or MetricFilters()
        with self._store.session() as conn:
            records = db.get_recent_summaries(conn, metric_id, limit=periods, filters_hash=accepted.filters_hash)
        results = [self._decode(r) for r in reversed(records)]
        return [r for r in results if r is not None]

    def summary(self, category: str | None = None, period: str | None = None) -> list[MetricResult]:
        with self._store.session() as conn:
            records = db.list_summaries(conn, category=category, period=period)
        results = [self._decode(r) for r in records]
        return [r for r in results if r is not None]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def store(self, result: MetricResult, filters: MetricFilters) -> StoreOutcome:
        """Upsert the durable summary and refresh the ephemeral TTL.

        A durable write failure is returned, never raised.  The ephemeral
        entry is dropped in that case so the next read recomputes.
        """
        metric_id = result.metric_id
        key = cache_key(metric_id, filters)
        with self._locked(key):
            try:
                with self._store.session() as conn:
                    db.upsert_summary(
                        conn,
                        metric_id=metric_id,
                        category=result.category,
                        metric_name=result.name,
                        period=result.period,
                        filters_hash=filters.filters_hash,
                        filters=json.dumps(filters.as_dict(), sort_keys=True),
                        value=dump_result(result),
                        last_updated=iso(result.computed_at),
                    )
            except sqlite3.Error as exc:
                PERSISTENCE_FAILURES_TOTAL.inc()
                logger.warning("Failed to persist summary for %s: %s", metric_id, exc)
                self._ephemeral_delete(key)
                return StoreOutcome(metric_id, persisted=False, error=PersistenceError(str(exc)))

            self._ephemeral_set(key, result, self._ttl_seconds)
        METRIC_STALENESS.labels(metric_id=metric_id).set(0)
        return StoreOutcome(metric_id, persisted=True)

    def warm_up(self, metric_ids: Iterable[str], max_age: float) -> list[str]:
        """Preload fresh unfiltered durable records into the ephemeral tier.

        Returns the ids that were loaded.  Stale or missing records are skipped.
        """
        loaded: list[str] = []
        unfiltered = MetricFilters()
        for metric_id in metric_ids:
            key = cache_key(metric_id, unfiltered)
            with self._locked(key):
                record = self._latest_record(metric_id, unfiltered)
                if record is None or not self._record_is_fresh(record, max_age):
                    continue
                result = self._decode(record)
                if result is None:
                    continue
                if self._ephemeral_set(key, result, self._remaining_ttl(record, max_age)):
                    loaded.append(metric_id)
        logger.info("Cache warm-up loaded %d metric(s)", len(loaded))
        return loaded

    def clear(self, pattern: str = "*") -> int:
        """Delete ephemeral entries whose key matches ``hr_metrics:<pattern>``."""
        try:
            removed = self._ephemeral.delete_pattern(KEY_PREFIX + pattern)
        except CacheUnavailable as exc:
            logger.warning("Cache clear skipped: %s", exc)
            return 0
        logger.info("Cleared %d cache entries", removed)
        return removed

    # ------------------------------------------------------------------
    # Operator views
    # ------------------------------------------------------------------

    def staleness(self, metric_id: str) -> float | None:
        """Seconds since the last successful computation of a metric, any filter set."""
        with self._store.session() as conn:
            record = db.get_summary(conn, metric_id)
        if record is None:
            return None
        age = (self._clock() - parse_iso(record["last_updated"])).total_seconds()
        METRIC_STALENESS.labels(metric_id=metric_id).set(age)
        return age

    def performance_stats(self) -> dict[str, Any]:
        with self._store.session() as conn:
            stats = db.get_summary_stats(conn)
            records = db.list_summaries(conn)
        now = self._clock()
        ages = [(now - parse_iso(r["last_updated"])).total_seconds() / 3600 for r in records]
        stats["avg_age_hours"] = round(sum(ages) / len(ages), 2) if ages else None
        stats["cache_backend"] = self._ephemeral.name
        return stats

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _latest_record(self, metric_id: str, filters: MetricFilters) -> SummaryRecord | None:
        with self._store.session() as conn:
            return db.get_summary(conn, metric_id, filters_hash=filters.filters_hash)

    def _record_is_fresh(self, record: SummaryRecord, max_age: float) -> bool:
        age = self._clock() - parse_iso(record["last_updated"])
        return age < timedelta(seconds=max_age)

    def _remaining_ttl(self, record: SummaryRecord, max_age: float) -> int:
        age = (self._clock() - parse_iso(record["last_updated"])).total_seconds()
        return max(1, min(self._ttl_seconds, int(max_age - age)))

    def _decode(self, record: SummaryRecord) -> MetricResult | None:
        try:
            return load_result(record["value"])
        except ValidationError:
            logger.warning("Discarding undecodable summary for %s", record["metric_id"])
            return None

    def _ephemeral_get(self, key: str) -> MetricResult | None:
        try:
            raw = self._ephemeral.get(key)
        except CacheUnavailable as exc:
            CACHE_LOOKUPS_TOTAL.labels(tier="ephemeral", result="unavailable").inc()
            logger.warning("Ephemeral cache unavailable, reading durable store only: %s", exc)
            return None
        if raw is None:
            return None
        try:
            return load_result(raw)
        except ValidationError:
            logger.warning("Discarding undecodable cache entry %s", key)
            return None

    def _ephemeral_set(self, key: str, result: MetricResult, ttl_seconds: int) -> bool:
        try:
            self._ephemeral.set(key, dump_result(result), ttl_seconds)
        except CacheUnavailable as exc:
            logger.warning("Ephemeral cache write skipped: %s", exc)
            return False
        return True

    def _ephemeral_delete(self, key: str) -> None:
        try:
            self._ephemeral.delete(key)
        except CacheUnavailable as exc:
            logger.warning("Ephemeral cache delete skipped: %s", exc)
