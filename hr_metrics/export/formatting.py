"""Result-to-display helpers shared by every export format."""

from typing import Any

from hr_metrics.metrics.formatting import title_case
from hr_metrics.metrics.models import (
    CategoricalResult,
    GaugeResult,
    MetricResult,
    ScalarResult,
    SeriesResult,
    TableResult,
)
from hr_metrics.metrics.service import ExportItem


def display_value(result: MetricResult) -> str:
    """Single-cell rendering of a result: the formatted value or a record count."""
    match result:
        case ScalarResult() | GaugeResult():
            return result.formatted_value if result.value is not None else "N/A"
        case SeriesResult() | CategoricalResult() | TableResult():
            return f"{len(result.data)} records"


def is_structured(result: MetricResult) -> bool:
    return isinstance(result, SeriesResult | CategoricalResult | TableResult)


def result_columns(result: MetricResult) -> list[str]:
    """Column names of a structured result, in first-seen order."""
    match result:
        case TableResult():
            return list(result.columns)
        case SeriesResult() | CategoricalResult():
            columns: dict[str, None] = {}
            for row in result.data:
                columns.update(dict.fromkeys(row))
            return list(columns)
        case _:
            return []


def result_rows(result: MetricResult) -> list[dict[str, Any]]:
    match result:
        case SeriesResult() | CategoricalResult() | TableResult():
            return result.data
        case _:
            return []


def raw_value(result: MetricResult) -> Any:
    """JSON-friendly value of a result: the scalar itself or the row list."""
    match result:
        case ScalarResult() | GaugeResult():
            return result.value
        case SeriesResult() | CategoricalResult() | TableResult():
            return result.data


def summary_row(item: ExportItem, generated: str) -> list[str]:
    """[Category, Metric Name, Value, Description, Generated Date]."""
    return [
        title_case(item.definition.category),
        title_case(item.definition.name),
        display_value(item.result),
        item.definition.description,
        generated,
    ]
