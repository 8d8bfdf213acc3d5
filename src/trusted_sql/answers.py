"""
Answer Formatting
=================

Deterministic templates that turn results into the user-facing answer text,
and the confidence score attached to each route outcome.
"""

import re
from typing import Any

from trusted_sql.models import ConfidenceLevel, RouteTier
from trusted_sql.results import Row, leading_entity, metric_value
from trusted_sql.routing import normalize
from trusted_sql.trusted.gateway import ReviewStats, SalesSummary, TopProduct

PERIOD_LABELS = {
    "today": "today",
    "yesterday": "yesterday",
    "last7days": "in the last 7 days",
    "thisWeek": "this week",
    "last30days": "in the last 30 days",
    "thisMonth": "this month",
    "lastWeek": "last week",
    "lastMonth": "last month",
}

TIER_CONFIDENCE = {
    RouteTier.TRUSTED: 1.0,
    RouteTier.SINGLE: 0.8,
}

CONSENSUS_CONFIDENCE = {
    ConfidenceLevel.HIGH: 0.95,
    ConfidenceLevel.MEDIUM: 0.75,
    ConfidenceLevel.LOW: 0.4,
}

CROSS_CHECK_CAP = 0.7
PLAUSIBILITY_FAILED_CONFIDENCE = 0.1
NO_ANSWER_CONFIDENCE = 0.0

# Generated answers whose arithmetic is easy to get subtly wrong
PERCENTAGE_CAP = 0.7
DIVISION_CAP = 0.8
AVERAGE_CAP = 0.75

_PERCENTAGE_WORDS = re.compile(r"\b(porcentaje|percent|percentage)\b|%")
_AVERAGE_WORDS = re.compile(r"\b(promedio|average|avg)\b")
_CASE_KEYWORD = re.compile(r"\bcase\b", re.IGNORECASE)

FOLLOW_UPS = (
    ("sales", "How much did I sell last week?"),
    ("orderCount", "How many orders did I have in the last 7 days?"),
    ("topProducts", "What are my top products this month?"),
    ("averageTicket", "What is my average ticket this month?"),
    ("reviewStats", "What is my average rating this month?"),
)

# Questions the trusted path can always answer
FALLBACK_SUGGESTIONS = (
    "How much did I sell today?",
    "How many orders did I have yesterday?",
    "What are my top products this month?",
)


def money(value: float, currency: str = "USD") -> str:
    """``12500`` -> ``$12,500.00``; non-dollar currencies get a code suffix."""
    text = f"${value:,.2f}"
    return text if currency in ("USD", "MXN", "") else f"{text} {currency}"


def confidence_caps(question: str, sql: str | None) -> dict[str, float]:
    """
    Ceilings for generated answers involving percentages, averages or division.

    Division is only capped when the statement has no CASE guard against a
    zero denominator.
    """
    caps: dict[str, float] = {}
    normalized = normalize(question)
    if _PERCENTAGE_WORDS.search(normalized):
        caps["percentage"] = PERCENTAGE_CAP
    if sql and "/" in sql and not _CASE_KEYWORD.search(sql):
        caps["division"] = DIVISION_CAP
    if _AVERAGE_WORDS.search(normalized):
        caps["average"] = AVERAGE_CAP
    return caps


def confidence_score(
    tier: RouteTier,
    consensus: ConfidenceLevel | None = None,
    cross_check_warning: bool = False,
    caps: dict[str, float] | None = None,
) -> float:
    if tier == RouteTier.CONSENSUS:
        score = CONSENSUS_CONFIDENCE[consensus or ConfidenceLevel.LOW]
    else:
        score = TIER_CONFIDENCE[tier]
    if cross_check_warning:
        score = min(score, CROSS_CHECK_CAP)
    for cap in (caps or {}).values():
        score = min(score, cap)
    return score


def suggest_follow_ups(metric: str | None = None, failed: bool = False, limit: int = 3) -> list[str]:
    """Follow-up questions about other metrics; canonical questions after a failure."""
    if failed:
        return list(FALLBACK_SUGGESTIONS[:limit])
    return [text for other, text in FOLLOW_UPS if other != metric][:limit]


class AnswerFormatter:
    """Renders answer text from trusted values and generated rows."""

    NO_ANSWER = (
        "I could not determine an answer to your question. None of the generated "
        "queries produced a usable result; please try rephrasing it."
    )

    PLAUSIBILITY_REFUSAL = (
        "I could not verify this result against your sales history, so I won't "
        "report it as fact. Please rephrase the question or narrow the period."
    )

    LOW_CONFIDENCE_PREFIX = "Low confidence: the generated queries disagreed. "

    NO_DATA = "There is no data for that question in the selected period."

    def for_trusted(self, metric: str, value: Any, period: str | None) -> str:
        when = PERIOD_LABELS.get(period or "", "for the selected period")

        if isinstance(value, SalesSummary):
            if metric == "averageTicket":
                return f"Your average ticket {when} is {money(value.average_ticket, value.currency)}."
            if metric == "orderCount":
                return f"You had {value.order_count:,} completed orders {when}."
            return (
                f"You sold {money(value.total_revenue, value.currency)} {when} "
                f"across {value.order_count:,} orders."
            )
        if metric == "averageTicket" and isinstance(value, (int, float)):
            return f"Your average ticket {when} is {money(value)}."
        if metric == "orderCount" and isinstance(value, (int, float)):
            return f"You had {int(value):,} completed orders {when}."
        if isinstance(value, list):
            if not value:
                return f"No products were sold {when}."
            top = value[0]
            if isinstance(top, TopProduct):
                names = ", ".join(p.name for p in value[:3])
                return (
                    f"Your best-selling product {when} is {top.name} "
                    f"({top.quantity:,} sold, {money(top.revenue)}). Top sellers: {names}."
                )
        if isinstance(value, ReviewStats):
            if not value.total_reviews:
                return f"You received no reviews {when}."
            return (
                f"Your average rating {when} is {value.average_rating:.1f} from "
                f"{value.total_reviews:,} reviews; {value.unanswered_negative:,} negative "
                "reviews are still unanswered."
            )
        if isinstance(value, (int, float)):
            return f"The {metric} {when} is {money(value)}."
        return f"Here is your {metric} {when}."

    def for_rows(self, rows: list[Row], metric: str | None = None) -> str:
        if not rows or (len(rows) == 1 and all(value is None for value in rows[0].values())):
            # Aggregates over no matching rows come back as a single NULL row
            return self.NO_DATA

        first = rows[0]
        if len(rows) == 1 and len(first) == 1:
            (column, value), = first.items()
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                shown = money(value) if metric in ("sales", "averageTicket") else f"{value:,}"
                return f"The result is {shown} ({column})."
            return f"The result is {value} ({column})."

        entity = leading_entity(first)
        value = metric_value(rows, metric)
        if entity is not None:
            original = next(v for v in first.values() if isinstance(v, str) and v.strip().lower() == entity)
            detail = f" with {value:,.2f}" if value is not None else ""
            suffix = f" ({len(rows)} rows returned)" if len(rows) > 1 else ""
            return f"The top result is {original}{detail}{suffix}."
        if value is not None:
            return f"The result is {value:,.2f}."
        return f"The query returned {len(rows)} rows."

    def low_confidence(self, text: str) -> str:
        return self.LOW_CONFIDENCE_PREFIX + text
