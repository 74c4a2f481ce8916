"""Exception hierarchy for the metrics engine.

Each class maps to one failure kind.  Ad-hoc callers (API, CLI) see them as
typed errors; background automation captures them per item and records them
in the calculation log instead of letting them escape.
"""


class MetricsError(Exception):
    """Base class for every metrics engine failure."""

    kind = "metrics_error"


class DefinitionNotFound(MetricsError):
    """Raised when a (category, name) pair is not in the registry."""

    kind = "definition_not_found"


class DuplicateDefinition(MetricsError):
    """Raised when registering a (category, name) pair twice."""

    kind = "duplicate_definition"


class ComputationError(MetricsError):
    """Raised when executing a metric query fails. Wraps the original cause."""

    kind = "computation_error"

    def __init__(self, metric_id: str, cause: BaseException) -> None:
        super().__init__(f"Error calculating metric {metric_id}: {cause}")
        self.metric_id = metric_id
        self.cause = cause


class CacheUnavailable(MetricsError):
    """Raised by an ephemeral cache backend that cannot be reached."""

    kind = "cache_unavailable"


class PersistenceError(MetricsError):
    """Raised when a durable write fails or cannot be read back."""

    kind = "persistence_error"


class AlertEvaluationError(MetricsError):
    """Raised when an alert rule cannot be evaluated against its metric."""

    kind = "alert_evaluation_error"


class ExportError(MetricsError):
    """Raised when an export artifact cannot be produced."""

    kind = "export_error"


class SinkDeliveryError(MetricsError):
    """Raised when a metrics sink rejects or never receives a push."""

    kind = "sink_delivery_error"
