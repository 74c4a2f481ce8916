"""Push metric sets to external HTTP sinks (dashboard and finance).

Each attempt is recorded in the integration log with the payload, the
response status and the outcome.  Non-2xx responses and transport errors are
soft failures: they are logged and returned in the ``PushOutcome``, never
raised and never retried here.
"""

import json
import logging
import sqlite3
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

import httpx

from hr_metrics.config import Settings
from hr_metrics.errors import SinkDeliveryError
from hr_metrics.export.formatting import is_structured, result_rows
from hr_metrics.metrics.catalog import FINANCIAL_CATEGORIES
from hr_metrics.metrics.engine import utcnow
from hr_metrics.metrics.models import GaugeResult, MetricFilters, ScalarResult
from hr_metrics.metrics.service import ExportItem
from hr_metrics.observability.metrics import SINK_PUSHES_TOTAL
from hr_metrics.storage import store as db
from hr_metrics.storage.models import IntegrationLogRecord
from hr_metrics.storage.store import MetricStore, iso

logger = logging.getLogger(__name__)

SOURCE_NAME = "HR-Analytics-System"
ENVELOPE_VERSION = "1.0"
DEFAULT_CURRENCY = "USD"
_MAX_LOGGED_RESPONSE = 2000

Target = Literal["dashboard", "finance"]


@dataclass
class SinkConfig:
    url: str
    token: str


@dataclass
class PushOutcome:
    target: str
    success: bool
    metrics_sent: int
    response_status: int | None = None
    error: SinkDeliveryError | None = None

    @property
    def message(self) -> str:
        if self.success:
            return f"Metrics pushed to {self.target} successfully"
        return f"Failed to push metrics to {self.target}: {self.error}"


def _metric_value(item: ExportItem) -> Any:
    match item.result:
        case ScalarResult() | GaugeResult():
            return item.result.value
        case _:
            return len(result_rows(item.result))


def build_envelope(
    items: Sequence[ExportItem],
    target: Target,
    filters: MetricFilters,
    timestamp: datetime,
) -> dict[str, Any]:
    """JSON body posted to a sink. Finance only receives financial categories."""
    metrics: list[dict[str, Any]] = []
    for item in items:
        definition = item.definition
        if target == "finance" and definition.category not in FINANCIAL_CATEGORIES:
            continue
        entry: dict[str, Any] = {
            "id": definition.metric_id,
            "category": definition.category,
            "name": definition.name,
            "value": _metric_value(item),
            "description": definition.description,
            "displayShape": str(definition.display_shape),
            "data": result_rows(item.result) if is_structured(item.result) else None,
        }
        if target == "finance":
            entry["currency"] = DEFAULT_CURRENCY
        metrics.append(entry)
    return {
        "timestamp": timestamp.isoformat(),
        "source": SOURCE_NAME,
        "version": ENVELOPE_VERSION,
        "filters": filters.as_dict(),
        "metrics": metrics,
    }


class MetricsPusher:
    def __init__(
        self,
        sinks: dict[str, SinkConfig],
        store: MetricStore,
        *,
        timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sinks = sinks
        self._store = store
        self._timeout = timeout_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, store: MetricStore) -> "MetricsPusher":
        sinks = {
            "dashboard": SinkConfig(settings.dashboard_sink_url, settings.dashboard_sink_token),
            "finance": SinkConfig(settings.finance_sink_url, settings.finance_sink_token),
        }
        return cls({k: v for k, v in sinks.items() if v.url}, store, timeout_seconds=settings.sink_timeout_seconds)

    @property
    def targets(self) -> list[str]:
        return list(self._sinks)

    async def push(
        self,
        items: Sequence[ExportItem],
        target: Target,
        filters: MetricFilters | None = None,
    ) -> PushOutcome:
        """POST the envelope to the target sink and log the attempt.

        Raises:
            ValueError: the target is not configured.
        """
        sink = self._sinks.get(target)
        if sink is None:
            msg = f"Metrics sink '{target}' is not configured"
            raise ValueError(msg)

        payload = build_envelope(items, target, filters or MetricFilters(), self._clock())
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {sink.token}",
            "X-Source": SOURCE_NAME,
        }
        response_status: int | None = None
        response_text: str | None = None
        error: SinkDeliveryError | None = None
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(sink.url, json=payload, headers=headers)
            response_status = response.status_code
            response_text = response.text[:_MAX_LOGGED_RESPONSE]
            if not response.is_success:
                error = SinkDeliveryError(f"{target} sink returned HTTP {response.status_code}")
        except httpx.HTTPError as exc:
            error = SinkDeliveryError(f"{target} sink unreachable: {exc}")

        outcome = PushOutcome(
            target=target,
            success=error is None,
            metrics_sent=len(payload["metrics"]),
            response_status=response_status,
            error=error,
        )
        SINK_PUSHES_TOTAL.labels(target=target, status="success" if outcome.success else "error").inc()
        if error is not None:
            logger.warning("Push to %s failed (soft): %s", target, error)
        else:
            logger.info("Pushed %d metric(s) to %s", outcome.metrics_sent, target)

        self._log_attempt(target, outcome, payload, response_text)
        return outcome

    def _log_attempt(
        self,
        target: str,
        outcome: PushOutcome,
        payload: dict[str, Any],
        response_text: str | None,
    ) -> None:
        try:
            with self._store.session() as conn:
                db.save_integration_log(
                    conn,
                    system=target,
                    status="success" if outcome.success else "error",
                    data_sent=json.dumps(payload, default=str),
                    response_status=outcome.response_status,
                    response_received=response_text,
                    timestamp=iso(self._clock()),
                )
        except sqlite3.Error:
            logger.exception("Failed to record integration log for %s", target)

    def integration_logs(self, system: str | None = None, limit: int = 50) -> list[IntegrationLogRecord]:
        with self._store.session() as conn:
            return db.get_integration_logs(conn, system=system, limit=limit)
