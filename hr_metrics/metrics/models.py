"""Metric definitions, filters, and the shaped result sum type.

Definitions and query templates are frozen dataclasses built once from the
static catalog.  Results are pydantic models forming a discriminated union on
``kind`` so they round-trip through the durable store and the ephemeral cache
as JSON without losing their shape.
"""

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class DisplayShape(StrEnum):
    SCALAR = "scalar"
    GAUGE = "gauge"
    TIME_SERIES = "time_series"
    CATEGORICAL = "categorical"
    TABLE = "table"
    INDICATOR_GAUGE = "indicator_gauge"


GaugeStatus = Literal["excellent", "good", "fair", "poor"]


# ---------------------------------------------------------------------------
# Query templates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QuerySpec:
    """Structured query template for one metric.

    Every string here comes from the catalog, never from a request.  Filter
    values are bound as parameters against the ``*_column`` slots; a slot set
    to None means the metric cannot be narrowed by that filter.
    """

    source: str
    select: tuple[str, ...]
    where: tuple[str, ...] = ()
    group_by: tuple[str, ...] = ()
    order_by: tuple[str, ...] = ()
    department_column: str | None = None
    branch_column: str | None = None
    date_column: str | None = None


@dataclass(frozen=True)
class Predicate:
    """One AND-conjoined filter condition: ``column op :param``."""

    column: str
    operator: Literal["=", ">=", "<="]
    param: str
    value: str


@dataclass(frozen=True)
class MetricDefinition:
    category: str
    name: str
    query: QuerySpec
    display_shape: DisplayShape
    description: str
    formula: str = ""

    @property
    def metric_id(self) -> str:
        return f"{self.category}.{self.name}"


def split_metric_id(metric_id: str) -> tuple[str, str]:
    """Split ``category.name`` into its parts. Raises ValueError if malformed."""
    category, sep, name = metric_id.partition(".")
    if not sep or not category or not name:
        msg = f"Invalid metric ID: {metric_id}"
        raise ValueError(msg)
    return category, name


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

FILTER_KEYS: tuple[str, ...] = ("department", "branch", "date_from", "date_to")

# Spellings used by older callers, mapped onto the canonical keys.
_FILTER_ALIASES: dict[str, str] = {
    "department_id": "department",
    "branch_id": "branch",
    "dateFrom": "date_from",
    "dateTo": "date_to",
}


class MetricFilters(BaseModel):
    """Allow-listed filter set. Unknown keys and empty values never get here."""

    model_config = ConfigDict(frozen=True)

    department: str | None = None
    branch: str | None = None
    date_from: str | None = None
    date_to: str | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, object] | None) -> "MetricFilters":
        """Build filters from arbitrary request input.

        Unrecognized keys are dropped; recognized keys with a falsy value are
        treated exactly as if they were absent.
        """
        accepted: dict[str, str] = {}
        for key, value in (raw or {}).items():
            canonical = _FILTER_ALIASES.get(key, key)
            if canonical not in FILTER_KEYS or not value:
                continue
            accepted[canonical] = str(value)
        return cls(**accepted)

    def as_dict(self) -> dict[str, str]:
        return {k: v for k, v in self.model_dump().items() if v}

    @property
    def filters_hash(self) -> str:
        canonical = json.dumps(self.as_dict(), sort_keys=True)
        return hashlib.md5(canonical.encode("utf-8"), usedforsecurity=False).hexdigest()


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class _ResultBase(BaseModel):
    category: str
    name: str
    display_shape: DisplayShape
    filters_hash: str
    period: str  # YYYY-MM
    computed_at: datetime

    @property
    def metric_id(self) -> str:
        return f"{self.category}.{self.name}"


class ScalarResult(_ResultBase):
    kind: Literal["scalar"] = "scalar"
    value: int | float | str | None
    formatted_value: str


class GaugeResult(_ResultBase):
    kind: Literal["gauge"] = "gauge"
    value: int | float
    formatted_value: str
    min_value: float = 0.0
    max_value: float = 100.0
    status: GaugeStatus


class SeriesResult(_ResultBase):
    kind: Literal["series"] = "series"
    data: list[dict[str, Any]]
    labels: list[Any]
    values: list[Any]


class CategoricalResult(_ResultBase):
    kind: Literal["categorical"] = "categorical"
    data: list[dict[str, Any]]
    labels: list[Any]
    values: list[Any]


class TableResult(_ResultBase):
    kind: Literal["table"] = "table"
    data: list[dict[str, Any]]
    columns: list[str]


MetricResult = Annotated[
    ScalarResult | GaugeResult | SeriesResult | CategoricalResult | TableResult,
    Field(discriminator="kind"),
]

_RESULT_ADAPTER: TypeAdapter[MetricResult] = TypeAdapter(MetricResult)


def dump_result(result: MetricResult) -> str:
    return result.model_dump_json()


def load_result(raw: str | bytes) -> MetricResult:
    return _RESULT_ADAPTER.validate_json(raw)


def scalar_value(result: MetricResult) -> int | float | str | None:
    """Return the single value of a scalar-like result, or None for structured ones."""
    match result:
        case ScalarResult() | GaugeResult():
            return result.value
        case SeriesResult() | CategoricalResult() | TableResult():
            return None
