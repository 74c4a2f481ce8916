"""Computation engine: resolves a definition, runs it, shapes the rows.

The engine is stateless apart from its injected registry, data source and
clock.  It never touches the cache tiers: a failed computation therefore
cannot disturb a previously stored value.
"""

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from hr_metrics.errors import ComputationError, MetricsError
from hr_metrics.metrics.datasource import DataSource, build_predicates
from hr_metrics.metrics.formatting import format_value, gauge_status
from hr_metrics.metrics.models import (
    CategoricalResult,
    DisplayShape,
    GaugeResult,
    MetricDefinition,
    MetricFilters,
    MetricResult,
    ScalarResult,
    SeriesResult,
    TableResult,
)
from hr_metrics.metrics.registry import MetricRegistry
from hr_metrics.observability.metrics import METRIC_COMPUTATIONS_TOTAL, METRIC_COMPUTE_DURATION

logger = logging.getLogger(__name__)

FiltersInput = MetricFilters | Mapping[str, object] | None


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_filters(filters: FiltersInput) -> MetricFilters:
    if isinstance(filters, MetricFilters):
        return filters
    return MetricFilters.from_mapping(filters)


@dataclass
class MetricOutcome:
    """Per-metric result of a multi-metric computation: a value or an error."""

    metric_id: str
    result: MetricResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Shaping
# ---------------------------------------------------------------------------


def _first_value(rows: list[dict[str, Any]]) -> Any:
    if not rows:
        return 0
    first = rows[0]
    value = first["value"] if "value" in first else next(iter(first.values()), None)
    return 0 if value is None else value


def _label(row: dict[str, Any], preferred: str | None = None) -> Any:
    if preferred and preferred in row:
        return row[preferred]
    return next(iter(row.values()), None)


def shape_result(
    definition: MetricDefinition,
    rows: list[dict[str, Any]],
    filters_hash: str,
    computed_at: datetime,
) -> MetricResult:
    """Turn raw rows into the result variant dictated by the display shape."""
    common: dict[str, Any] = {
        "category": definition.category,
        "name": definition.name,
        "display_shape": definition.display_shape,
        "filters_hash": filters_hash,
        "period": computed_at.strftime("%Y-%m"),
        "computed_at": computed_at,
    }
    match definition.display_shape:
        case DisplayShape.SCALAR:
            value = _first_value(rows)
            return ScalarResult(value=value, formatted_value=format_value(value), **common)
        case DisplayShape.GAUGE | DisplayShape.INDICATOR_GAUGE:
            value = float(_first_value(rows))
            return GaugeResult(
                value=value,
                formatted_value=format_value(value),
                status=gauge_status(value),
                **common,
            )
        case DisplayShape.TIME_SERIES:
            return SeriesResult(
                data=rows,
                labels=[_label(row, "period") for row in rows],
                values=[row.get("value") for row in rows],
                **common,
            )
        case DisplayShape.CATEGORICAL:
            return CategoricalResult(
                data=rows,
                labels=[_label(row) for row in rows],
                values=[row.get("value") for row in rows],
                **common,
            )
        case DisplayShape.TABLE:
            return TableResult(data=rows, columns=list(rows[0].keys()) if rows else [], **common)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class MetricEngine:
    def __init__(
        self,
        registry: MetricRegistry,
        data_source: DataSource,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.registry = registry
        self._data_source = data_source
        self._clock = clock

    def compute(self, category: str, name: str, filters: FiltersInput = None) -> MetricResult:
        """Compute one metric.

        Raises:
            DefinitionNotFound: (category, name) is not cataloged.
            ComputationError: the query or shaping failed; wraps the cause.
        """
        definition = self.registry.get(category, name)
        accepted = as_filters(filters)
        predicates = build_predicates(definition.query, accepted)

        start = time.monotonic()
        try:
            rows = self._data_source.execute(definition.query, predicates)
            result = shape_result(definition, rows, accepted.filters_hash, self._clock())
        except Exception as exc:
            METRIC_COMPUTATIONS_TOTAL.labels(category=category, status="error").inc()
            logger.warning("Computation of %s failed: %s", definition.metric_id, exc)
            raise ComputationError(definition.metric_id, exc) from exc
        finally:
            METRIC_COMPUTE_DURATION.labels(category=category).observe(time.monotonic() - start)

        METRIC_COMPUTATIONS_TOTAL.labels(category=category, status="success").inc()
        return result

    def compute_category(self, category: str, filters: FiltersInput = None) -> list[MetricOutcome]:
        """Compute every metric of a category; one failure never hides the others."""
        return [self._outcome(d, filters) for d in self.registry.list_category(category)]

    def compute_all(self, filters: FiltersInput = None) -> list[MetricOutcome]:
        return [self._outcome(d, filters) for d in self.registry.list_all()]

    def _outcome(self, definition: MetricDefinition, filters: FiltersInput) -> MetricOutcome:
        try:
            result = self.compute(definition.category, definition.name, filters)
        except MetricsError as exc:
            return MetricOutcome(metric_id=definition.metric_id, error=str(exc))
        return MetricOutcome(metric_id=definition.metric_id, result=result)
