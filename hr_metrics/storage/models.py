"""TypedDict models for durable store records."""

from typing import TypedDict


class SummaryRecord(TypedDict):
    id: int
    metric_id: str  # category.name
    category: str
    metric_name: str
    period: str  # YYYY-MM
    filters_hash: str
    filters: str  # JSON filter set
    value: str  # JSON-serialized MetricResult
    last_updated: str  # ISO 8601


class CalculationLogRecord(TypedDict):
    id: int
    metric_id: str
    calculation_type: str  # scheduled | triggered | batch
    status: str  # success | reused | error | partial
    execution_time_ms: float | None
    records_processed: int | None
    error_message: str | None
    calculated_at: str  # ISO 8601


class AlertRuleRecord(TypedDict):
    id: int
    alert_name: str
    metric_id: str
    operator: str  # > | < | >= | <= | = | !=
    threshold: float
    severity: str  # info | warning | critical
    is_active: bool
    last_triggered_at: str | None
    created_at: str


class ScheduleRecord(TypedDict):
    id: int
    metric_id: str
    category: str
    metric_name: str
    cadence: str  # hourly | daily | weekly | monthly
    last_generated_at: str | None
    next_generated_at: str | None
    created_at: str


class IntegrationLogRecord(TypedDict):
    id: int
    system: str
    status: str  # success | error
    data_sent: str  # JSON payload
    response_status: int | None
    response_received: str | None
    timestamp: str


class ExportLogRecord(TypedDict):
    id: int
    format: str
    metric_ids: str  # comma-separated
    filters: str  # JSON
    size_bytes: int
    exported_at: str
