"""
Result Rows
===========

Helpers for reading the headline value out of generated-SQL result rows.
"""

from typing import Any

Row = dict[str, Any]

# Preferred result column names per canonical metric, most specific first
METRIC_COLUMNS: dict[str, tuple[str, ...]] = {
    "sales": (
        "total_sales",
        "totalsales",
        "total_revenue",
        "totalrevenue",
        "revenue",
        "sales",
        "ventas",
        "total",
        "amount",
        "sum",
    ),
    "averageTicket": (
        "average_ticket",
        "averageticket",
        "avg_ticket",
        "ticket_promedio",
        "average",
        "avg",
        "promedio",
    ),
    "orderCount": (
        "order_count",
        "ordercount",
        "total_orders",
        "orders",
        "ordenes",
        "count",
    ),
    "reviewStats": (
        "average_rating",
        "avg_rating",
        "rating",
        "calificacion",
    ),
}


def is_id_key(key: str) -> bool:
    """``id``, ``order_id`` and camelCase ``venueId`` style keys."""
    lowered = key.lower()
    return lowered == "id" or lowered.endswith("_id") or key.endswith("Id")


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def numeric_values(row: Row) -> list[float]:
    """Numeric, non-identifier values of a row in column order."""
    return [float(v) for k, v in row.items() if is_number(v) and not is_id_key(k)]


def numeric_columns(row: Row) -> dict[str, float]:
    """Numeric, non-identifier values keyed by lower-cased column name."""
    return {k.lower(): float(v) for k, v in row.items() if is_number(v) and not is_id_key(k)}


def leading_entity(row: Row) -> str | None:
    """First non-identifier string value, normalized for comparison."""
    for key, value in row.items():
        if isinstance(value, str) and not is_id_key(key):
            return value.strip().lower()
    return None


def metric_value(rows: list[Row], metric: str | None = None) -> float | None:
    """
    Headline numeric value of a result.

    Prefers a column named after the metric, then falls back to the first
    numeric, non-identifier value of the first row.
    """
    if not rows:
        return None
    row = rows[0]
    columns = {key.lower(): key for key in row}

    for preferred in METRIC_COLUMNS.get(metric or "", ()):
        key = columns.get(preferred)
        if key is not None and is_number(row[key]):
            return float(row[key])
    for preferred in METRIC_COLUMNS.get(metric or "", ()):
        for lowered, key in columns.items():
            if preferred in lowered and is_number(row[key]) and not is_id_key(key):
                return float(row[key])

    values = numeric_values(row)
    return values[0] if values else None
