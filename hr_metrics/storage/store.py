"""SQLite-based durable store: connection management, schema init, and CRUD.

All database operations use parameterized queries.  Timestamps are stored as
ISO 8601 UTC strings with microsecond precision so lexical order equals
chronological order.  The schema is auto-created via CREATE TABLE IF NOT
EXISTS (idempotent).
"""

import contextlib
import logging
import sqlite3
import threading
from collections.abc import Iterator, Sequence
from datetime import UTC, datetime
from typing import Any

from hr_metrics.config import get_settings
from hr_metrics.storage.models import (
    AlertRuleRecord,
    CalculationLogRecord,
    ExportLogRecord,
    IntegrationLogRecord,
    ScheduleRecord,
    SummaryRecord,
)

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS metrics_summary (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    metric_id     TEXT NOT NULL,
    category      TEXT NOT NULL,
    metric_name   TEXT NOT NULL,
    period        TEXT NOT NULL,
    filters_hash  TEXT NOT NULL,
    filters       TEXT DEFAULT '{}',
    value         TEXT NOT NULL,
    last_updated  TEXT NOT NULL,
    UNIQUE (metric_id, period, filters_hash)
);
CREATE INDEX IF NOT EXISTS idx_summary_updated ON metrics_summary(last_updated);
CREATE INDEX IF NOT EXISTS idx_summary_category ON metrics_summary(category, period);

CREATE TABLE IF NOT EXISTS metrics_calculation_log (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    metric_id         TEXT NOT NULL,
    calculation_type  TEXT NOT NULL,
    status            TEXT NOT NULL,
    execution_time_ms REAL,
    records_processed INTEGER,
    error_message     TEXT,
    calculated_at     TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_calclog_metric ON metrics_calculation_log(metric_id, calculated_at);
CREATE INDEX IF NOT EXISTS idx_calclog_calculated ON metrics_calculation_log(calculated_at);

CREATE TABLE IF NOT EXISTS metrics_alerts (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    alert_name        TEXT NOT NULL,
    metric_id         TEXT NOT NULL,
    operator          TEXT NOT NULL,
    threshold         REAL NOT NULL,
    severity          TEXT DEFAULT 'warning',
    is_active         INTEGER DEFAULT 1,
    last_triggered_at TEXT,
    created_at        TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_alerts_active ON metrics_alerts(is_active);

CREATE TABLE IF NOT EXISTS metrics_schedules (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    metric_id         TEXT NOT NULL UNIQUE,
    category          TEXT NOT NULL,
    metric_name       TEXT NOT NULL,
    cadence           TEXT NOT NULL,
    last_generated_at TEXT,
    next_generated_at TEXT,
    created_at        TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS metrics_integration_log (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    system            TEXT NOT NULL,
    status            TEXT NOT NULL,
    data_sent         TEXT NOT NULL,
    response_status   INTEGER,
    response_received TEXT,
    timestamp         TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_integration_system ON metrics_integration_log(system, timestamp);

CREATE TABLE IF NOT EXISTS metrics_export_log (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    format      TEXT NOT NULL,
    metric_ids  TEXT NOT NULL,
    filters     TEXT DEFAULT '{}',
    size_bytes  INTEGER DEFAULT 0,
    exported_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_export_exported ON metrics_export_log(exported_at);
"""


def iso(dt: datetime) -> str:
    """Canonical stored form of a timestamp."""
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def get_connection(db_path: str | None = None) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode for concurrent reads.

    Args:
        db_path: Explicit path to the database file. If None, reads from settings.
                 Pass ":memory:" for in-memory databases (tests).

    Raises:
        ValueError: If the store is not configured (empty db path).
    """
    if db_path is None:
        db_path = get_settings().metrics_db_path
    if not db_path:
        msg = "Metrics store not configured (METRICS_DB_PATH is empty)"
        raise ValueError(msg)

    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Create tables and indexes if they don't exist (idempotent)."""
    conn.executescript(_SCHEMA_SQL)


def get_initialized_connection(db_path: str | None = None) -> sqlite3.Connection:
    """Get a connection with schema already initialized. Convenience wrapper."""
    conn = get_connection(db_path)
    init_schema(conn)
    return conn


class MetricStore:
    """Owns the durable store connection shared by every service.

    One connection is shared across worker threads; ``session()`` serializes
    access so each CRUD call runs and commits without interleaving.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.RLock()

    @classmethod
    def open(cls, db_path: str | None = None) -> "MetricStore":
        return cls(get_initialized_connection(db_path))

    @contextlib.contextmanager
    def session(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            yield self._conn

    def ping(self) -> bool:
        try:
            with self.session() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            return False

    def close(self) -> None:
        with self._lock:
            self._conn.close()


# ---------------------------------------------------------------------------
# Summary records
# ---------------------------------------------------------------------------


def upsert_summary(
    conn: sqlite3.Connection,
    *,
    metric_id: str,
    category: str,
    metric_name: str,
    period: str,
    filters_hash: str,
    filters: str,
    value: str,
    last_updated: str,
) -> None:
    """Insert or replace the summary for (metric_id, period, filters_hash). Last writer wins."""
    conn.execute(
        """INSERT INTO metrics_summary
           (metric_id, category, metric_name, period, filters_hash, filters, value, last_updated)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT (metric_id, period, filters_hash) DO UPDATE SET
               value = excluded.value,
               filters = excluded.filters,
               last_updated = excluded.last_updated""",
        (metric_id, category, metric_name, period, filters_hash, filters, value, last_updated),
    )
    conn.commit()


def get_summary(
    conn: sqlite3.Connection,
    metric_id: str,
    *,
    period: str | None = None,
    filters_hash: str | None = None,
) -> SummaryRecord | None:
    """Most recently updated summary for a metric, optionally narrowed by period and filters."""
    conditions = ["metric_id = ?"]
    params: list[object] = [metric_id]
    if period:
        conditions.append("period = ?")
        params.append(period)
    if filters_hash:
        conditions.append("filters_hash = ?")
        params.append(filters_hash)
    row = conn.execute(
        f"SELECT * FROM metrics_summary WHERE {' AND '.join(conditions)} ORDER BY last_updated DESC LIMIT 1",
        params,
    ).fetchone()
    if row is None:
        return None
    return _row_to_summary(row)


def get_recent_summaries(
    conn: sqlite3.Connection,
    metric_id: str,
    *,
    limit: int = 12,
    filters_hash: str | None = None,
) -> list[SummaryRecord]:
    """The most recent N periods of a metric, newest period first."""
    if filters_hash:
        rows = conn.execute(
            "SELECT * FROM metrics_summary WHERE metric_id = ? AND filters_hash = ? ORDER BY period DESC LIMIT ?",
            (metric_id, filters_hash, limit),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM metrics_summary WHERE metric_id = ? ORDER BY period DESC, last_updated DESC LIMIT ?",
            (metric_id, limit),
        ).fetchall()
    return [_row_to_summary(r) for r in rows]


def list_summaries(
    conn: sqlite3.Connection,
    *,
    category: str | None = None,
    period: str | None = None,
) -> list[SummaryRecord]:
    conditions: list[str] = []
    params: list[object] = []
    if category:
        conditions.append("category = ?")
        params.append(category)
    if period:
        conditions.append("period = ?")
        params.append(period)
    where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
    rows = conn.execute(f"SELECT * FROM metrics_summary{where} ORDER BY category, metric_name", params).fetchall()
    return [_row_to_summary(r) for r in rows]


def delete_summaries_older_than(conn: sqlite3.Connection, cutoff: str) -> int:
    """Delete summaries last updated strictly before the cutoff. Returns rows deleted."""
    cursor = conn.execute("DELETE FROM metrics_summary WHERE last_updated < ?", (cutoff,))
    conn.commit()
    return cursor.rowcount


def get_summary_stats(conn: sqlite3.Connection) -> dict[str, Any]:
    row = conn.execute(
        """SELECT COUNT(*) AS total_metrics,
                  COUNT(DISTINCT category) AS categories,
                  COUNT(DISTINCT metric_id) AS unique_metrics,
                  MIN(last_updated) AS oldest_data,
                  MAX(last_updated) AS newest_data
           FROM metrics_summary"""
    ).fetchone()
    return dict(row)


def _row_to_summary(row: sqlite3.Row) -> SummaryRecord:
    return SummaryRecord(
        id=row["id"],
        metric_id=row["metric_id"],
        category=row["category"],
        metric_name=row["metric_name"],
        period=row["period"],
        filters_hash=row["filters_hash"],
        filters=row["filters"],
        value=row["value"],
        last_updated=row["last_updated"],
    )


# ---------------------------------------------------------------------------
# Calculation log (append-only)
# ---------------------------------------------------------------------------


def append_calculation_logs(conn: sqlite3.Connection, entries: Sequence[dict[str, Any]]) -> None:
    """Append log entries in a single transaction.

    Each entry needs metric_id, calculation_type, status and calculated_at;
    execution_time_ms, records_processed and error_message are optional.
    """
    conn.executemany(
        """INSERT INTO metrics_calculation_log
           (metric_id, calculation_type, status, execution_time_ms,
            records_processed, error_message, calculated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        [
            (
                e["metric_id"],
                e["calculation_type"],
                e["status"],
                e.get("execution_time_ms"),
                e.get("records_processed"),
                e.get("error_message"),
                e["calculated_at"],
            )
            for e in entries
        ],
    )
    conn.commit()


def get_calculation_logs(
    conn: sqlite3.Connection,
    *,
    metric_id: str | None = None,
    calculation_type: str | None = None,
    limit: int = 100,
) -> list[CalculationLogRecord]:
    """Recent log entries, newest first."""
    conditions: list[str] = []
    params: list[object] = []
    if metric_id:
        conditions.append("metric_id = ?")
        params.append(metric_id)
    if calculation_type:
        conditions.append("calculation_type = ?")
        params.append(calculation_type)
    where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
    params.append(limit)
    rows = conn.execute(
        f"SELECT * FROM metrics_calculation_log{where} ORDER BY calculated_at DESC, id DESC LIMIT ?",
        params,
    ).fetchall()
    return [_row_to_calculation_log(r) for r in rows]


def get_calculation_stats(conn: sqlite3.Connection, since: str) -> dict[str, Any]:
    """Aggregate per-metric calculation outcomes logged since a timestamp."""
    row = conn.execute(
        """SELECT COUNT(*) AS total_calculations,
                  COUNT(CASE WHEN status = 'success' THEN 1 END) AS successful_calculations,
                  COUNT(CASE WHEN status = 'reused' THEN 1 END) AS reused_calculations,
                  COUNT(CASE WHEN status = 'error' THEN 1 END) AS failed_calculations,
                  AVG(execution_time_ms) AS avg_execution_time,
                  MAX(calculated_at) AS last_calculation
           FROM metrics_calculation_log
           WHERE calculated_at >= ? AND calculation_type != 'batch'""",
        (since,),
    ).fetchone()
    return dict(row)


def _row_to_calculation_log(row: sqlite3.Row) -> CalculationLogRecord:
    return CalculationLogRecord(
        id=row["id"],
        metric_id=row["metric_id"],
        calculation_type=row["calculation_type"],
        status=row["status"],
        execution_time_ms=row["execution_time_ms"],
        records_processed=row["records_processed"],
        error_message=row["error_message"],
        calculated_at=row["calculated_at"],
    )


# ---------------------------------------------------------------------------
# Alert rules
# ---------------------------------------------------------------------------


def create_alert_rule(
    conn: sqlite3.Connection,
    *,
    alert_name: str,
    metric_id: str,
    operator: str,
    threshold: float,
    severity: str = "warning",
    is_active: bool = True,
    created_at: str,
) -> int:
    """Create an alert rule. Returns the new row ID."""
    cursor = conn.execute(
        """INSERT INTO metrics_alerts
           (alert_name, metric_id, operator, threshold, severity, is_active, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (alert_name, metric_id, operator, threshold, severity, int(is_active), created_at),
    )
    conn.commit()
    return cursor.lastrowid or 0


def update_alert_rule(conn: sqlite3.Connection, rule_id: int, **fields: Any) -> bool:
    """Update the given columns of an alert rule. Returns False if the rule does not exist."""
    allowed = ("alert_name", "metric_id", "operator", "threshold", "severity", "is_active")
    updates: list[str] = []
    params: list[object] = []
    for column in allowed:
        if fields.get(column) is not None:
            updates.append(f"{column} = ?")
            value = fields[column]
            params.append(int(value) if column == "is_active" else value)
    if not updates:
        return get_alert_rule(conn, rule_id) is not None
    params.append(rule_id)
    cursor = conn.execute(f"UPDATE metrics_alerts SET {', '.join(updates)} WHERE id = ?", params)
    conn.commit()
    return cursor.rowcount > 0


def delete_alert_rule(conn: sqlite3.Connection, rule_id: int) -> bool:
    cursor = conn.execute("DELETE FROM metrics_alerts WHERE id = ?", (rule_id,))
    conn.commit()
    return cursor.rowcount > 0


def get_alert_rule(conn: sqlite3.Connection, rule_id: int) -> AlertRuleRecord | None:
    row = conn.execute("SELECT * FROM metrics_alerts WHERE id = ?", (rule_id,)).fetchone()
    if row is None:
        return None
    return _row_to_alert_rule(row)


def list_alert_rules(conn: sqlite3.Connection, *, active_only: bool = False) -> list[AlertRuleRecord]:
    where = " WHERE is_active = 1" if active_only else ""
    rows = conn.execute(f"SELECT * FROM metrics_alerts{where} ORDER BY id").fetchall()
    return [_row_to_alert_rule(r) for r in rows]


def mark_alert_triggered(conn: sqlite3.Connection, rule_id: int, triggered_at: str) -> None:
    conn.execute("UPDATE metrics_alerts SET last_triggered_at = ? WHERE id = ?", (triggered_at, rule_id))
    conn.commit()


def _row_to_alert_rule(row: sqlite3.Row) -> AlertRuleRecord:
    return AlertRuleRecord(
        id=row["id"],
        alert_name=row["alert_name"],
        metric_id=row["metric_id"],
        operator=row["operator"],
        threshold=row["threshold"],
        severity=row["severity"],
        is_active=bool(row["is_active"]),
        last_triggered_at=row["last_triggered_at"],
        created_at=row["created_at"],
    )


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


def upsert_schedule(
    conn: sqlite3.Connection,
    *,
    metric_id: str,
    category: str,
    metric_name: str,
    cadence: str,
    created_at: str,
) -> None:
    """Create a schedule entry, or change the cadence of an existing one."""
    conn.execute(
        """INSERT INTO metrics_schedules (metric_id, category, metric_name, cadence, created_at)
           VALUES (?, ?, ?, ?, ?)
           ON CONFLICT (metric_id) DO UPDATE SET cadence = excluded.cadence""",
        (metric_id, category, metric_name, cadence, created_at),
    )
    conn.commit()


def list_schedules(conn: sqlite3.Connection) -> list[ScheduleRecord]:
    rows = conn.execute("SELECT * FROM metrics_schedules ORDER BY id").fetchall()
    return [_row_to_schedule(r) for r in rows]


def mark_schedule_generated(
    conn: sqlite3.Connection,
    schedule_id: int,
    *,
    last_generated_at: str,
    next_generated_at: str,
) -> None:
    conn.execute(
        "UPDATE metrics_schedules SET last_generated_at = ?, next_generated_at = ? WHERE id = ?",
        (last_generated_at, next_generated_at, schedule_id),
    )
    conn.commit()


def _row_to_schedule(row: sqlite3.Row) -> ScheduleRecord:
    return ScheduleRecord(
        id=row["id"],
        metric_id=row["metric_id"],
        category=row["category"],
        metric_name=row["metric_name"],
        cadence=row["cadence"],
        last_generated_at=row["last_generated_at"],
        next_generated_at=row["next_generated_at"],
        created_at=row["created_at"],
    )


# ---------------------------------------------------------------------------
# Integration and export logs
# ---------------------------------------------------------------------------


def save_integration_log(
    conn: sqlite3.Connection,
    *,
    system: str,
    status: str,
    data_sent: str,
    response_status: int | None,
    response_received: str | None,
    timestamp: str,
) -> int:
    cursor = conn.execute(
        """INSERT INTO metrics_integration_log
           (system, status, data_sent, response_status, response_received, timestamp)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (system, status, data_sent, response_status, response_received, timestamp),
    )
    conn.commit()
    return cursor.lastrowid or 0


def get_integration_logs(
    conn: sqlite3.Connection,
    *,
    system: str | None = None,
    limit: int = 50,
) -> list[IntegrationLogRecord]:
    """Recent push attempts, newest first."""
    if system:
        rows = conn.execute(
            "SELECT * FROM metrics_integration_log WHERE system = ? ORDER BY timestamp DESC LIMIT ?",
            (system, limit),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM metrics_integration_log ORDER BY timestamp DESC LIMIT ?",
            (limit,),
        ).fetchall()
    return [
        IntegrationLogRecord(
            id=r["id"],
            system=r["system"],
            status=r["status"],
            data_sent=r["data_sent"],
            response_status=r["response_status"],
            response_received=r["response_received"],
            timestamp=r["timestamp"],
        )
        for r in rows
    ]


def save_export_log(
    conn: sqlite3.Connection,
    *,
    format: str,  # noqa: A002
    metric_ids: str,
    filters: str,
    size_bytes: int,
    exported_at: str,
) -> int:
    cursor = conn.execute(
        "INSERT INTO metrics_export_log (format, metric_ids, filters, size_bytes, exported_at) VALUES (?, ?, ?, ?, ?)",
        (format, metric_ids, filters, size_bytes, exported_at),
    )
    conn.commit()
    return cursor.lastrowid or 0


def get_export_logs(conn: sqlite3.Connection, *, limit: int = 50) -> list[ExportLogRecord]:
    """Recent exports, newest first."""
    rows = conn.execute(
        "SELECT * FROM metrics_export_log ORDER BY exported_at DESC, id DESC LIMIT ?",
        (limit,),
    ).fetchall()
    return [
        ExportLogRecord(
            id=r["id"],
            format=r["format"],
            metric_ids=r["metric_ids"],
            filters=r["filters"],
            size_bytes=r["size_bytes"],
            exported_at=r["exported_at"],
        )
        for r in rows
    ]


def delete_logs_older_than(conn: sqlite3.Connection, cutoff: str) -> dict[str, int]:
    """Delete calculation, integration and export log rows strictly before the cutoff."""
    deleted: dict[str, int] = {}
    for table, column in (
        ("metrics_calculation_log", "calculated_at"),
        ("metrics_integration_log", "timestamp"),
        ("metrics_export_log", "exported_at"),
    ):
        cursor = conn.execute(f"DELETE FROM {table} WHERE {column} < ?", (cutoff,))
        deleted[table] = cursor.rowcount
    conn.commit()
    return deleted
