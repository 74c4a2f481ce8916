"""Display formatting shared by result shaping and every export format."""

from typing import Any


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def format_value(value: Any) -> str:
    """Compact numeric display: 1.5M, 12.3K, or two decimals below a thousand.

    Non-numeric values are returned as text; None renders as "N/A".
    """
    if value is None:
        return "N/A"
    number = _as_number(value)
    if number is None:
        return str(value)
    if number >= 1_000_000:
        return f"{number / 1_000_000:,.1f}M"
    if number >= 1_000:
        return f"{number / 1_000:,.1f}K"
    return f"{number:,.2f}"


def title_case(identifier: str) -> str:
    """Turn a snake_case identifier into Title Case ("hmo_utilization_rate" -> "Hmo Utilization Rate")."""
    return " ".join(part[:1].upper() + part[1:] for part in identifier.split("_") if part)


def gauge_status(value: float) -> str:
    """Status tier for gauge-style metrics on a 0-100 scale."""
    if value >= 80:
        return "excellent"
    if value >= 60:
        return "good"
    if value >= 40:
        return "fair"
    return "poor"
