"""Threshold alert rules evaluated against the latest metric values."""

import logging
import operator
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from hr_metrics.alerts.notify import LogNotifier, Notifier
from hr_metrics.errors import AlertEvaluationError, MetricsError, PersistenceError
from hr_metrics.metrics.engine import utcnow
from hr_metrics.metrics.formatting import format_value
from hr_metrics.metrics.models import scalar_value
from hr_metrics.metrics.service import MetricsService
from hr_metrics.observability.metrics import ALERTS_FIRED_TOTAL
from hr_metrics.storage import store as db
from hr_metrics.storage.models import AlertRuleRecord
from hr_metrics.storage.store import MetricStore, iso

logger = logging.getLogger(__name__)

OPERATORS: dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
    "=": operator.eq,
    "!=": operator.ne,
}
_OPERATOR_ALIASES = {"≠": "!=", "==": "=", "<>": "!="}

SEVERITIES = ("info", "warning", "critical")


def normalize_operator(op: str) -> str:
    """Canonical operator spelling. Raises ValueError for unsupported operators."""
    canonical = _OPERATOR_ALIASES.get(op.strip(), op.strip())
    if canonical not in OPERATORS:
        msg = f"Unsupported alert operator '{op}'"
        raise ValueError(msg)
    return canonical


def evaluate(op: str, value: float, threshold: float) -> bool:
    return OPERATORS[normalize_operator(op)](value, threshold)


@dataclass
class FiredAlert:
    rule_id: int
    alert_name: str
    metric_id: str
    value: float
    operator: str
    threshold: float
    severity: str
    triggered_at: str
    notified: bool


@dataclass
class AlertSweepOutcome:
    evaluated: int = 0
    fired: list[FiredAlert] = field(default_factory=list)
    skipped: dict[int, str] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "evaluated": self.evaluated,
            "fired": [f.alert_name for f in self.fired],
            "skipped": self.skipped,
        }


def alert_message(rule: AlertRuleRecord, value: float, triggered_at: datetime) -> str:
    return (
        f"HR Metrics Alert: {rule['alert_name']}\n"
        f"Metric: {rule['metric_id']}\n"
        f"Current Value: {format_value(value)}\n"
        f"Condition: {rule['operator']} {rule['threshold']}\n"
        f"Severity: {rule['severity']}\n"
        f"Time: {triggered_at.strftime('%Y-%m-%d %H:%M:%S')}"
    )


class AlertEngine:
    def __init__(
        self,
        service: MetricsService,
        store: MetricStore,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._service = service
        self._store = store
        self._notifier = notifier or LogNotifier()
        self._clock = clock

    def process_alerts(self) -> AlertSweepOutcome:
        """Evaluate every active rule; a failing rule never blocks the others."""
        with self._store.session() as conn:
            rules = db.list_alert_rules(conn, active_only=True)

        outcome = AlertSweepOutcome()
        for rule in rules:
            outcome.evaluated += 1
            try:
                value = self._current_value(rule)
            except AlertEvaluationError as exc:
                logger.warning("Skipping alert '%s': %s", rule["alert_name"], exc)
                outcome.skipped[rule["id"]] = str(exc)
                continue
            if evaluate(rule["operator"], value, rule["threshold"]):
                outcome.fired.append(self._fire(rule, value))
        if outcome.fired:
            logger.info("%d of %d alert rule(s) fired", len(outcome.fired), outcome.evaluated)
        return outcome

    def _current_value(self, rule: AlertRuleRecord) -> float:
        try:
            normalize_operator(rule["operator"])
            result = self._service.get_by_id(rule["metric_id"])
        except (MetricsError, ValueError) as exc:
            raise AlertEvaluationError(str(exc)) from exc

        value = scalar_value(result)
        if value is None:
            msg = f"Metric {rule['metric_id']} has no single value to compare"
            raise AlertEvaluationError(msg)
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            msg = f"Metric {rule['metric_id']} value {value!r} is not numeric"
            raise AlertEvaluationError(msg) from exc

    def _fire(self, rule: AlertRuleRecord, value: float) -> FiredAlert:
        now = self._clock()
        triggered_at = iso(now)
        with self._store.session() as conn:
            db.mark_alert_triggered(conn, rule["id"], triggered_at)
            db.append_calculation_logs(
                conn,
                [
                    {
                        "metric_id": rule["metric_id"],
                        "calculation_type": "triggered",
                        "status": "success",
                        "execution_time_ms": 0,
                        "records_processed": 1,
                        "error_message": f"Alert triggered: {rule['alert_name']} - Value: {value}",
                        "calculated_at": triggered_at,
                    }
                ],
            )
        ALERTS_FIRED_TOTAL.labels(severity=rule["severity"]).inc()
        notified = self._notifier.send(alert_message(rule, value, now), rule["severity"])
        return FiredAlert(
            rule_id=rule["id"],
            alert_name=rule["alert_name"],
            metric_id=rule["metric_id"],
            value=value,
            operator=rule["operator"],
            threshold=rule["threshold"],
            severity=rule["severity"],
            triggered_at=triggered_at,
            notified=notified,
        )

    # ------------------------------------------------------------------
    # Rule management
    # ------------------------------------------------------------------

    def create_rule(
        self,
        alert_name: str,
        metric_id: str,
        operator: str,
        threshold: float,
        severity: str = "warning",
        is_active: bool = True,
    ) -> AlertRuleRecord:
        """Create a rule.

        Raises:
            DefinitionNotFound: the target metric is not cataloged.
            ValueError: unsupported operator or severity.
            PersistenceError: the inserted row could not be read back.
        """
        self._service.registry.get_by_id(metric_id)
        _check_severity(severity)
        with self._store.session() as conn:
            rule_id = db.create_alert_rule(
                conn,
                alert_name=alert_name,
                metric_id=metric_id,
                operator=normalize_operator(operator),
                threshold=threshold,
                severity=severity,
                is_active=is_active,
                created_at=iso(self._clock()),
            )
            rule = db.get_alert_rule(conn, rule_id)
        if rule is None:
            raise PersistenceError(f"Alert rule {rule_id} was not readable after insert")
        return rule

    def update_rule(self, rule_id: int, **fields: Any) -> AlertRuleRecord | None:
        """Update the given fields. Returns None if the rule does not exist."""
        if fields.get("metric_id") is not None:
            self._service.registry.get_by_id(fields["metric_id"])
        if fields.get("operator") is not None:
            fields["operator"] = normalize_operator(fields["operator"])
        if fields.get("severity") is not None:
            _check_severity(fields["severity"])
        with self._store.session() as conn:
            if not db.update_alert_rule(conn, rule_id, **fields):
                return None
            return db.get_alert_rule(conn, rule_id)

    def delete_rule(self, rule_id: int) -> bool:
        with self._store.session() as conn:
            return db.delete_alert_rule(conn, rule_id)

    def list_rules(self, active_only: bool = False) -> list[AlertRuleRecord]:
        with self._store.session() as conn:
            return db.list_alert_rules(conn, active_only=active_only)


def _check_severity(severity: str) -> None:
    if severity not in SEVERITIES:
        msg = f"Unsupported severity '{severity}' (expected one of {', '.join(SEVERITIES)})"
        raise ValueError(msg)
