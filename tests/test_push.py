"""Tests for pushing metric sets to the dashboard and finance sinks."""

import json
from typing import Any

import httpx
import pytest
import respx

from hr_metrics.export.push import SOURCE_NAME, MetricsPusher, SinkConfig, build_envelope
from hr_metrics.metrics.models import MetricFilters
from hr_metrics.metrics.service import MetricsService
from hr_metrics.storage.store import MetricStore
from tests.factories import START_TIME, FakeClock

DASHBOARD_URL = "http://dashboard.test/api/metrics"
FINANCE_URL = "http://finance.test/api/hr-metrics"


@pytest.fixture
def pusher(store: MetricStore, clock: FakeClock) -> MetricsPusher:
    sinks = {
        "dashboard": SinkConfig(DASHBOARD_URL, "dash-token"),
        "finance": SinkConfig(FINANCE_URL, "fin-token"),
    }
    return MetricsPusher(sinks, store, timeout_seconds=5, clock=clock)


class TestBuildEnvelope:
    def test_dashboard_gets_everything(self, service: MetricsService) -> None:
        envelope = build_envelope(service.collect(), "dashboard", MetricFilters(department="1"), START_TIME)
        assert envelope["source"] == SOURCE_NAME
        assert envelope["version"] == "1.0"
        assert envelope["timestamp"] == START_TIME.isoformat()
        assert envelope["filters"] == {"department": "1"}
        assert len(envelope["metrics"]) == 6
        assert all("currency" not in m for m in envelope["metrics"])

    def test_structured_metrics_carry_rows(self, service: MetricsService) -> None:
        envelope = build_envelope(service.collect(), "dashboard", MetricFilters(), START_TIME)
        by_id = {m["id"]: m for m in envelope["metrics"]}
        roster = by_id["employee_demographics.roster"]
        assert roster["value"] == 4
        assert len(roster["data"]) == 4
        assert by_id["employee_demographics.headcount"]["data"] is None

    def test_metric_entry_keys_match_sink_contract(self, service: MetricsService) -> None:
        envelope = build_envelope(service.collect(), "dashboard", MetricFilters(), START_TIME)
        by_id = {m["id"]: m for m in envelope["metrics"]}
        entry = by_id["employee_demographics.active_rate"]
        assert set(entry) == {"id", "category", "name", "value", "description", "displayShape", "data"}
        assert entry["displayShape"] == "gauge"

    def test_finance_gets_financial_categories_with_currency(self, service: MetricsService) -> None:
        envelope = build_envelope(service.collect(), "finance", MetricFilters(), START_TIME)
        assert [m["id"] for m in envelope["metrics"]] == ["payroll_compensation.total_salary"]
        assert envelope["metrics"][0]["currency"] == "USD"
        assert envelope["metrics"][0]["value"] == 150000


class TestMetricsPusher:
    async def test_push_dashboard(self, pusher: MetricsPusher, service: MetricsService) -> None:
        with respx.mock:
            route = respx.post(DASHBOARD_URL).mock(return_value=httpx.Response(200, json={"accepted": True}))
            outcome = await pusher.push(service.collect(), "dashboard")

        assert outcome.success is True
        assert outcome.metrics_sent == 6
        assert outcome.response_status == 200
        assert outcome.message == "Metrics pushed to dashboard successfully"
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer dash-token"
        assert request.headers["X-Source"] == SOURCE_NAME
        assert request.headers["Content-Type"] == "application/json"
        assert len(json.loads(request.content)["metrics"]) == 6

    async def test_push_finance(self, pusher: MetricsPusher, service: MetricsService) -> None:
        with respx.mock:
            route = respx.post(FINANCE_URL).mock(return_value=httpx.Response(201))
            outcome = await pusher.push(service.collect(), "finance")

        assert outcome.success is True
        assert outcome.metrics_sent == 1
        body = json.loads(route.calls.last.request.content)
        assert body["metrics"][0]["currency"] == "USD"
        assert route.calls.last.request.headers["Authorization"] == "Bearer fin-token"

    async def test_non_2xx_is_soft_failure(self, pusher: MetricsPusher, service: MetricsService) -> None:
        with respx.mock:
            respx.post(DASHBOARD_URL).mock(return_value=httpx.Response(503, text="maintenance"))
            outcome = await pusher.push(service.collect(), "dashboard")

        assert outcome.success is False
        assert outcome.response_status == 503
        assert "HTTP 503" in outcome.message
        (log,) = pusher.integration_logs("dashboard")
        assert log["status"] == "error"
        assert log["response_status"] == 503
        assert log["response_received"] == "maintenance"

    async def test_transport_error_is_soft_failure(self, pusher: MetricsPusher, service: MetricsService) -> None:
        with respx.mock:
            respx.post(DASHBOARD_URL).mock(side_effect=httpx.ConnectError("Connection refused"))
            outcome = await pusher.push(service.collect(), "dashboard")

        assert outcome.success is False
        assert outcome.response_status is None
        assert "unreachable" in outcome.message
        (log,) = pusher.integration_logs()
        assert log["response_status"] is None

    async def test_successful_push_is_logged(self, pusher: MetricsPusher, service: MetricsService) -> None:
        with respx.mock:
            respx.post(DASHBOARD_URL).mock(return_value=httpx.Response(200, text="ok"))
            await pusher.push(service.collect(), "dashboard", MetricFilters(branch="1"))

        (log,) = pusher.integration_logs("dashboard")
        assert log["status"] == "success"
        assert json.loads(log["data_sent"])["filters"] == {"branch": "1"}
        assert pusher.integration_logs("finance") == []

    async def test_unconfigured_target(self, store: MetricStore) -> None:
        pusher = MetricsPusher({}, store)
        with pytest.raises(ValueError, match="not configured"):
            await pusher.push([], "finance")


class TestFromSettings:
    def test_only_configured_sinks(self, mock_settings: Any, store: MetricStore) -> None:
        assert MetricsPusher.from_settings(mock_settings, store).targets == ["dashboard", "finance"]
        mock_settings.finance_sink_url = ""
        assert MetricsPusher.from_settings(mock_settings, store).targets == ["dashboard"]
