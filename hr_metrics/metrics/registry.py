"""Metric registry: the static catalog keyed by (category, name)."""

import logging

from hr_metrics.errors import DefinitionNotFound, DuplicateDefinition
from hr_metrics.metrics.catalog import build_catalog
from hr_metrics.metrics.models import MetricDefinition, split_metric_id

logger = logging.getLogger(__name__)


class MetricRegistry:
    """Insertion-ordered catalog of metric definitions.

    Iteration order is registration order, which keeps batch sweeps and
    exports deterministic.
    """

    def __init__(self, definitions: list[MetricDefinition] | None = None) -> None:
        self._definitions: dict[tuple[str, str], MetricDefinition] = {}
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: MetricDefinition) -> None:
        key = (definition.category, definition.name)
        if key in self._definitions:
            msg = f"Metric {definition.metric_id} is already registered"
            raise DuplicateDefinition(msg)
        self._definitions[key] = definition

    def get(self, category: str, name: str) -> MetricDefinition:
        try:
            return self._definitions[(category, name)]
        except KeyError:
            msg = f"Metric {category}.{name} not found"
            raise DefinitionNotFound(msg) from None

    def get_by_id(self, metric_id: str) -> MetricDefinition:
        try:
            category, name = split_metric_id(metric_id)
        except ValueError as exc:
            raise DefinitionNotFound(str(exc)) from exc
        return self.get(category, name)

    def list_all(self) -> list[MetricDefinition]:
        return list(self._definitions.values())

    def categories(self) -> list[str]:
        """Distinct categories in first-registration order."""
        return list(dict.fromkeys(category for category, _ in self._definitions))

    def list_category(self, category: str) -> list[MetricDefinition]:
        definitions = [d for d in self._definitions.values() if d.category == category]
        if not definitions:
            msg = f"Category {category} not found"
            raise DefinitionNotFound(msg)
        return definitions

    def __contains__(self, key: object) -> bool:
        return key in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)


def default_registry() -> MetricRegistry:
    """Registry loaded from the built-in catalog."""
    registry = MetricRegistry(build_catalog())
    logger.debug("Loaded %d metric definitions", len(registry))
    return registry
