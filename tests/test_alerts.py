"""Tests for alert rule management, evaluation, and notification."""

import logging
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from hr_metrics.alerts.engine import AlertEngine, alert_message, evaluate, normalize_operator
from hr_metrics.alerts.notify import EmailNotifier, LogNotifier, build_notifier, is_email_configured
from hr_metrics.errors import DefinitionNotFound, PersistenceError
from hr_metrics.metrics.engine import shape_result
from hr_metrics.metrics.models import MetricFilters, MetricResult
from hr_metrics.metrics.service import MetricsService
from hr_metrics.storage import store as db
from hr_metrics.storage.store import MetricStore, iso
from tests.factories import START_TIME, FakeClock, make_definitions

HEADCOUNT = "employee_demographics.headcount"
ROSTER = "employee_demographics.roster"


def _scalar(value: Any) -> MetricResult:
    return shape_result(make_definitions()[0], [{"value": value}], MetricFilters().filters_hash, START_TIME)


@pytest.fixture
def notifier() -> MagicMock:
    mock = MagicMock()
    mock.send.return_value = True
    return mock


@pytest.fixture
def alerts(service: MetricsService, store: MetricStore, notifier: MagicMock, clock: FakeClock) -> AlertEngine:
    return AlertEngine(service, store, notifier=notifier, clock=clock)


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


class TestOperators:
    @pytest.mark.parametrize(
        ("op", "value", "threshold", "expected"),
        [
            (">", 85, 80, True),
            (">", 80, 80, False),
            ("<", 79, 80, True),
            (">=", 80, 80, True),
            ("<=", 81, 80, False),
            ("=", 80, 80, True),
            ("!=", 80, 80, False),
            ("≠", 81, 80, True),
        ],
    )
    def test_evaluate(self, op: str, value: float, threshold: float, expected: bool) -> None:
        assert evaluate(op, value, threshold) is expected

    def test_aliases(self) -> None:
        assert normalize_operator("≠") == "!="
        assert normalize_operator("==") == "="
        assert normalize_operator(" >= ") == ">="

    def test_unsupported(self) -> None:
        with pytest.raises(ValueError, match="Unsupported alert operator"):
            normalize_operator("~")


# ---------------------------------------------------------------------------
# Rule management
# ---------------------------------------------------------------------------


class TestRuleManagement:
    def test_create_normalizes_operator(self, alerts: AlertEngine) -> None:
        rule = alerts.create_rule("Not three", HEADCOUNT, "≠", 3, severity="info")
        assert rule["operator"] == "!="
        assert rule["threshold"] == 3.0
        assert rule["created_at"] == iso(START_TIME)

    def test_create_unknown_metric(self, alerts: AlertEngine) -> None:
        with pytest.raises(DefinitionNotFound):
            alerts.create_rule("Ghost", "nope.missing", ">", 1)

    def test_create_bad_severity(self, alerts: AlertEngine) -> None:
        with pytest.raises(ValueError, match="Unsupported severity"):
            alerts.create_rule("Loud", HEADCOUNT, ">", 1, severity="emergency")

    def test_create_unreadable_after_insert(self, alerts: AlertEngine) -> None:
        with (
            patch("hr_metrics.alerts.engine.db.get_alert_rule", return_value=None),
            pytest.raises(PersistenceError, match="not readable after insert"),
        ):
            alerts.create_rule("Big", HEADCOUNT, ">", 10)

    def test_update(self, alerts: AlertEngine) -> None:
        rule = alerts.create_rule("Big", HEADCOUNT, ">", 10)
        updated = alerts.update_rule(rule["id"], threshold=2.0, operator="==")
        assert updated is not None
        assert updated["threshold"] == 2.0
        assert updated["operator"] == "="

    def test_update_missing(self, alerts: AlertEngine) -> None:
        assert alerts.update_rule(404, threshold=1.0) is None

    def test_delete_and_list(self, alerts: AlertEngine) -> None:
        keep = alerts.create_rule("Keep", HEADCOUNT, ">", 1)
        drop = alerts.create_rule("Drop", HEADCOUNT, ">", 1, is_active=False)
        assert [r["alert_name"] for r in alerts.list_rules(active_only=True)] == ["Keep"]
        assert alerts.delete_rule(drop["id"]) is True
        assert alerts.delete_rule(drop["id"]) is False
        assert [r["id"] for r in alerts.list_rules()] == [keep["id"]]


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


class TestProcessAlerts:
    def test_fires_once_when_condition_holds(
        self, alerts: AlertEngine, service: MetricsService, store: MetricStore, notifier: MagicMock
    ) -> None:
        rule = alerts.create_rule("Headcount high", HEADCOUNT, ">", 80, severity="critical")

        with patch.object(service, "get_by_id", return_value=_scalar(85)):
            outcome = alerts.process_alerts()

        assert [f.alert_name for f in outcome.fired] == ["Headcount high"]
        assert outcome.fired[0].notified is True
        with store.session() as conn:
            stored = db.get_alert_rule(conn, rule["id"])
            logs = db.get_calculation_logs(conn, calculation_type="triggered")
        assert stored is not None
        assert stored["last_triggered_at"] == iso(START_TIME)
        assert len(logs) == 1
        assert logs[0]["metric_id"] == HEADCOUNT
        assert logs[0]["error_message"] == "Alert triggered: Headcount high - Value: 85.0"
        notifier.send.assert_called_once()
        assert notifier.send.call_args.args[1] == "critical"

    def test_boundary_does_not_fire(
        self, alerts: AlertEngine, service: MetricsService, store: MetricStore, notifier: MagicMock
    ) -> None:
        rule = alerts.create_rule("Headcount high", HEADCOUNT, ">", 80)

        with patch.object(service, "get_by_id", return_value=_scalar(80)):
            outcome = alerts.process_alerts()

        assert outcome.evaluated == 1
        assert outcome.fired == []
        with store.session() as conn:
            stored = db.get_alert_rule(conn, rule["id"])
        assert stored is not None
        assert stored["last_triggered_at"] is None
        notifier.send.assert_not_called()

    def test_real_metric_value(self, alerts: AlertEngine) -> None:
        alerts.create_rule("Three active", HEADCOUNT, "=", 3)
        alerts.create_rule("Payroll low", "payroll_compensation.total_salary", "<", 100000)
        outcome = alerts.process_alerts()
        assert [f.alert_name for f in outcome.fired] == ["Three active"]
        assert outcome.fired[0].value == 3.0

    def test_inactive_rules_are_ignored(self, alerts: AlertEngine, notifier: MagicMock) -> None:
        alerts.create_rule("Dormant", HEADCOUNT, ">", 0, is_active=False)
        outcome = alerts.process_alerts()
        assert outcome.evaluated == 0
        notifier.send.assert_not_called()

    def test_unevaluable_rule_does_not_block_others(
        self, alerts: AlertEngine, service: MetricsService, store: MetricStore
    ) -> None:
        # A rule can outlive its metric; insert one directly.
        with store.session() as conn:
            orphan_id = db.create_alert_rule(
                conn, alert_name="Orphan", metric_id="retired.metric", operator=">", threshold=0,
                created_at=iso(START_TIME),
            )
        alerts.create_rule("Roster", ROSTER, ">", 0)
        alerts.create_rule("Any staff", HEADCOUNT, ">", 0)

        outcome = alerts.process_alerts()

        assert outcome.evaluated == 3
        assert [f.alert_name for f in outcome.fired] == ["Any staff"]
        assert set(outcome.skipped) == {orphan_id, orphan_id + 1}
        assert "no single value" in outcome.skipped[orphan_id + 1]

    def test_non_numeric_value_is_skipped(self, alerts: AlertEngine, service: MetricsService) -> None:
        rule = alerts.create_rule("Text", HEADCOUNT, ">", 1)
        with patch.object(service, "get_by_id", return_value=_scalar("n/a")):
            outcome = alerts.process_alerts()
        assert "not numeric" in outcome.skipped[rule["id"]]

    def test_notification_failure_still_records_trigger(
        self, alerts: AlertEngine, store: MetricStore, notifier: MagicMock
    ) -> None:
        notifier.send.return_value = False
        alerts.create_rule("Any staff", HEADCOUNT, ">", 0)
        outcome = alerts.process_alerts()
        assert outcome.fired[0].notified is False
        with store.session() as conn:
            assert len(db.get_calculation_logs(conn, calculation_type="triggered")) == 1

    def test_as_dict(self, alerts: AlertEngine) -> None:
        alerts.create_rule("Any staff", HEADCOUNT, ">", 0)
        assert alerts.process_alerts().as_dict() == {"evaluated": 1, "fired": ["Any staff"], "skipped": {}}


class TestAlertMessage:
    def test_content(self, alerts: AlertEngine) -> None:
        rule = alerts.create_rule("Payroll spike", "payroll_compensation.total_salary", ">", 100000, severity="warning")
        message = alert_message(rule, 1_500_000, START_TIME)
        assert message.splitlines() == [
            "HR Metrics Alert: Payroll spike",
            "Metric: payroll_compensation.total_salary",
            "Current Value: 1.5M",
            "Condition: > 100000.0",
            "Severity: warning",
            "Time: 2026-03-02 10:00:00",
        ]


# ---------------------------------------------------------------------------
# Notifiers
# ---------------------------------------------------------------------------


class TestLogNotifier:
    def test_logs_at_severity_level(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="hr_metrics.alerts.notify"):
            assert LogNotifier().send("boom", "critical") is True
        assert caplog.records[-1].levelno == logging.CRITICAL
        assert caplog.records[-1].getMessage() == "boom"


class TestEmailNotifier:
    def test_send_success(self, mock_settings: Any) -> None:
        with patch("hr_metrics.alerts.notify.smtplib.SMTP") as mock_smtp_cls:
            mock_server = MagicMock()
            mock_smtp_cls.return_value.__enter__ = MagicMock(return_value=mock_server)
            mock_smtp_cls.return_value.__exit__ = MagicMock(return_value=False)

            result = EmailNotifier(mock_settings).send("HR Metrics Alert: x", "critical")

        assert result is True
        mock_smtp_cls.assert_called_once_with("smtp.test.com", 587, timeout=30)
        mock_server.starttls.assert_called_once()
        mock_server.login.assert_called_once_with("test@test.com", "test-password")
        sent = mock_server.send_message.call_args.args[0]
        assert sent["Subject"] == "[CRITICAL] HR Metrics Alert"
        assert sent["To"] == "recipient@test.com"

    def test_send_failure(self, mock_settings: Any) -> None:
        with patch("hr_metrics.alerts.notify.smtplib.SMTP") as mock_smtp_cls:
            mock_smtp_cls.return_value.__enter__ = MagicMock(side_effect=ConnectionError("SMTP down"))

            result = EmailNotifier(mock_settings).send("HR Metrics Alert: x", "warning")

        assert result is False


class TestBuildNotifier:
    def test_email_when_configured(self, mock_settings: Any) -> None:
        assert is_email_configured() is True
        assert isinstance(build_notifier(), EmailNotifier)

    def test_log_only_when_not_configured(self, mock_settings: Any) -> None:
        mock_settings.smtp_host = ""
        assert is_email_configured() is False
        assert isinstance(build_notifier(), LogNotifier)
