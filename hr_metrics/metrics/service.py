"""Read-through facade over the engine and the two-tier cache.

Every downstream consumer (API, automation, alerts, export) goes through
``MetricsService`` so that a computed value is always written back through
both cache tiers the same way.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from hr_metrics.cache.layer import MetricCache, StoreOutcome
from hr_metrics.errors import ComputationError
from hr_metrics.metrics.engine import FiltersInput, MetricEngine, as_filters
from hr_metrics.metrics.models import MetricDefinition, MetricResult
from hr_metrics.metrics.registry import MetricRegistry

logger = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    result: MetricResult
    stored: StoreOutcome


@dataclass
class ExportItem:
    """One entry of a metric set: the definition and its current value."""

    definition: MetricDefinition
    result: MetricResult


class MetricsService:
    def __init__(self, engine: MetricEngine, cache: MetricCache, *, max_age_seconds: float = 3600) -> None:
        self.engine = engine
        self.cache = cache
        self.max_age_seconds = max_age_seconds

    @property
    def registry(self) -> MetricRegistry:
        return self.engine.registry

    def get(
        self,
        category: str,
        name: str,
        filters: FiltersInput = None,
        max_age: float | None = None,
    ) -> MetricResult:
        """Cached value if fresh, otherwise compute and store.

        Raises:
            DefinitionNotFound: (category, name) is not cataloged.
            ComputationError: recomputation failed; stored values are untouched.
        """
        definition = self.registry.get(category, name)
        accepted = as_filters(filters)
        cached = self.cache.get(definition.metric_id, accepted, max_age if max_age is not None else self.max_age_seconds)
        if cached is not None:
            return cached
        return self.refresh(category, name, accepted).result

    def refresh(self, category: str, name: str, filters: FiltersInput = None) -> RefreshResult:
        """Compute unconditionally and write through both tiers."""
        accepted = as_filters(filters)
        result = self.engine.compute(category, name, accepted)
        stored = self.cache.store(result, accepted)
        return RefreshResult(result=result, stored=stored)

    def get_by_id(self, metric_id: str, filters: FiltersInput = None) -> MetricResult:
        definition = self.registry.get_by_id(metric_id)
        return self.get(definition.category, definition.name, filters)

    def collect(self, metric_ids: Iterable[str] | None = None, filters: FiltersInput = None) -> list[ExportItem]:
        """Build a metric set for export, in registry order when no ids are given.

        Metrics that fail to compute are left out and logged; unknown ids raise
        DefinitionNotFound.
        """
        if metric_ids is None:
            definitions = self.registry.list_all()
        else:
            definitions = [self.registry.get_by_id(metric_id) for metric_id in metric_ids]

        items: list[ExportItem] = []
        for definition in definitions:
            try:
                result = self.get(definition.category, definition.name, filters)
            except ComputationError as exc:
                logger.warning("Leaving %s out of metric set: %s", definition.metric_id, exc)
                continue
            items.append(ExportItem(definition=definition, result=result))
        return items
