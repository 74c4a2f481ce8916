"""Prometheus metric definitions for metrics-engine self-instrumentation.

All metrics are module-level singletons registered with the default
prometheus_client registry.  Import them wherever instrumentation is needed.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# ---------------------------------------------------------------------------
# Histogram bucket definitions
# ---------------------------------------------------------------------------

COMPUTE_DURATION_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0)
BATCH_DURATION_BUCKETS = (1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0)
REQUEST_DURATION_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0)

# ---------------------------------------------------------------------------
# Computation metrics
# ---------------------------------------------------------------------------

METRIC_COMPUTATIONS_TOTAL = Counter(
    "hr_metrics_computations_total",
    "Total number of metric computations against the data source",
    labelnames=["category", "status"],
)

METRIC_COMPUTE_DURATION = Histogram(
    "hr_metrics_compute_duration_seconds",
    "Duration of a single metric computation in seconds",
    labelnames=["category"],
    buckets=COMPUTE_DURATION_BUCKETS,
)

# ---------------------------------------------------------------------------
# Cache metrics
# ---------------------------------------------------------------------------

CACHE_LOOKUPS_TOTAL = Counter(
    "hr_metrics_cache_lookups_total",
    "Cache lookups by tier and result",
    labelnames=["tier", "result"],
)

PERSISTENCE_FAILURES_TOTAL = Counter(
    "hr_metrics_persistence_failures_total",
    "Durable summary writes that failed",
)

METRIC_STALENESS = Gauge(
    "hr_metrics_metric_staleness_seconds",
    "Seconds since the last successful computation of a metric",
    labelnames=["metric_id"],
)

# ---------------------------------------------------------------------------
# Automation metrics
# ---------------------------------------------------------------------------

BATCH_RUNS_TOTAL = Counter(
    "hr_metrics_batch_runs_total",
    "Total number of automation sweeps",
    labelnames=["status"],
)

BATCH_DURATION = Histogram(
    "hr_metrics_batch_duration_seconds",
    "Time taken by one automation sweep in seconds",
    buckets=BATCH_DURATION_BUCKETS,
)

ALERTS_FIRED_TOTAL = Counter(
    "hr_metrics_alerts_fired_total",
    "Total number of alert rules that fired",
    labelnames=["severity"],
)

# ---------------------------------------------------------------------------
# Export / integration metrics
# ---------------------------------------------------------------------------

EXPORTS_TOTAL = Counter(
    "hr_metrics_exports_total",
    "Total number of export artifacts requested",
    labelnames=["format", "status"],
)

SINK_PUSHES_TOTAL = Counter(
    "hr_metrics_sink_pushes_total",
    "Total number of pushes to external metrics sinks",
    labelnames=["target", "status"],
)

# ---------------------------------------------------------------------------
# Request-level metrics
# ---------------------------------------------------------------------------

REQUEST_DURATION = Histogram(
    "hr_metrics_request_duration_seconds",
    "End-to-end request duration in seconds",
    labelnames=["endpoint"],
    buckets=REQUEST_DURATION_BUCKETS,
)

REQUESTS_TOTAL = Counter(
    "hr_metrics_requests_total",
    "Total number of requests",
    labelnames=["endpoint", "status"],
)

# ---------------------------------------------------------------------------
# Health / info metrics
# ---------------------------------------------------------------------------

COMPONENT_HEALTHY = Gauge(
    "hr_metrics_component_healthy",
    "Whether a dependency component is healthy (1=healthy, 0=unhealthy)",
    labelnames=["component"],
)

APP_INFO = Info(
    "hr_metrics",
    "HR metrics engine build information",
)
