"""
Plausibility Validator
======================

Blocking anti-fabrication checks run on the rows a generated query returned,
before any of it is shown to the user. A claimed "best day" must be a day with
orders; amounts, ratings and percentages must sit in a believable range.
"""

import re
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Callable
from zoneinfo import ZoneInfo

import structlog

from trusted_sql.audit import AuditEventType, AuditTrail
from trusted_sql.models import PlausibilityReport, VerificationResult, VerificationStatus
from trusted_sql.results import Row, is_id_key, is_number, metric_value
from trusted_sql.routing import claims_specific_day, detect_intent, detect_period
from trusted_sql.trusted.periods import utc_now
from trusted_sql.validators.base import ResultCheck, VerificationChain

logger = structlog.get_logger(__name__)

# Largest believable revenue for a single day when no history is available
ABSOLUTE_DAILY_CEILING = 100_000.0

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")

_MONETARY_COLUMN = re.compile(r"(total|amount|revenue|sales|ventas|monto|ingreso|tip|propina|ticket)")
_PERCENT_COLUMN = re.compile(r"(percent|pct|porcentaje)")
_RATING_COLUMN = re.compile(r"(rating|calificacion|stars|estrellas)")
_COUNT_COLUMN = re.compile(r"(count|total_reviews|cantidad|num)")

_MONETARY_METRICS = ("sales", "averageTicket")


class FactLookup(ABC):
    """Read-only access to facts about a tenant's real data."""

    @abstractmethod
    async def orders_on_date(self, tenant_id: str, day: date) -> int:
        """Number of completed orders on a local calendar day."""
        pass

    @abstractmethod
    async def historical_daily_max(self, tenant_id: str) -> float | None:
        """Largest single-day revenue on record, or None without history."""
        pass

    async def tip_percentage(self, tenant_id: str, period: str) -> float | None:
        """Tips as a percentage of completed sales over a period; None when unknown."""
        return None


def as_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and _ISO_DATE.match(value):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _columns(row: Row, pattern: re.Pattern, exclude: re.Pattern | None = None):
    for key, value in row.items():
        lowered = key.lower()
        if not is_number(value) or is_id_key(key) or not pattern.search(lowered):
            continue
        if exclude is not None and exclude.search(lowered):
            continue
        yield key, float(value)


class FutureDateCheck(ResultCheck):
    """No result row may reference a date after today."""

    @property
    def name(self) -> str:
        return "future_date"

    async def verify(self, rows: list[Row], context: dict) -> VerificationResult:
        today: date = context["today"]
        for row in rows:
            for key, value in row.items():
                day = as_date(value)
                if day is not None and day > today:
                    return self.failed(
                        f"Result references a future date: {day.isoformat()}",
                        column=key,
                        date=day.isoformat(),
                    )
        return self.passed("No future dates in result")


class NegativeAmountCheck(ResultCheck):
    """Sales amounts cannot be negative."""

    @property
    def name(self) -> str:
        return "negative_amount"

    async def verify(self, rows: list[Row], context: dict) -> VerificationResult:
        if context.get("metric") not in _MONETARY_METRICS:
            return self.skipped("Question is not about sales amounts")
        for row in rows:
            for key, value in _columns(row, _MONETARY_COLUMN):
                if value < 0:
                    return self.failed(f"Negative sales amount: {key} = {value:,.2f}", column=key)
        return self.passed("No negative amounts")


class PercentageRangeCheck(ResultCheck):
    """Percentages must be within 0-100."""

    @property
    def name(self) -> str:
        return "percentage_range"

    async def verify(self, rows: list[Row], context: dict) -> VerificationResult:
        for row in rows:
            for key, value in _columns(row, _PERCENT_COLUMN):
                if not 0 <= value <= 100:
                    return self.failed(
                        f"Percentage out of range: {key} = {value:g}", column=key
                    )
        return self.passed("Percentages within range")


class RatingRangeCheck(ResultCheck):
    """Ratings must be within the 1-5 scale."""

    @property
    def name(self) -> str:
        return "rating_range"

    async def verify(self, rows: list[Row], context: dict) -> VerificationResult:
        for row in rows:
            for key, value in _columns(row, _RATING_COLUMN, exclude=_COUNT_COLUMN):
                if not 1 <= value <= 5:
                    return self.failed(f"Rating out of range: {key} = {value:g}", column=key)
        return self.passed("Ratings within range")


class ClaimedDateExistsCheck(ResultCheck):
    """A claimed best/worst day must be a day with orders in the tenant's history."""

    @property
    def name(self) -> str:
        return "claimed_date_exists"

    async def verify(self, rows: list[Row], context: dict) -> VerificationResult:
        if not context.get("day_claim"):
            return self.skipped("Question does not claim a specific day")

        claimed = next(
            (day for day in (as_date(v) for v in rows[0].values()) if day is not None), None
        )
        if claimed is None:
            return self.failed("Result does not name the day it claims")

        lookup: FactLookup | None = context.get("fact_lookup")
        if lookup is None:
            return self.failed(
                f"Cannot verify claimed date {claimed.isoformat()}: no fact lookup configured"
            )
        try:
            orders = await lookup.orders_on_date(context["tenant_id"], claimed)
        except Exception as e:
            logger.warning("fact_lookup_failed", check=self.name, error=str(e))
            return self.failed(f"Cannot verify claimed date {claimed.isoformat()}: {e}")

        if orders == 0:
            return self.failed(
                f"Claimed date {claimed.isoformat()} has no orders in the tenant's history",
                date=claimed.isoformat(),
            )
        return self.passed(
            f"Claimed date {claimed.isoformat()} has {orders} orders",
            date=claimed.isoformat(),
            orders=orders,
        )


class MagnitudeCheck(ResultCheck):
    """A single day's revenue must be in line with the tenant's history."""

    def __init__(self, factor: float = 10.0) -> None:
        self.factor = factor

    @property
    def name(self) -> str:
        return "magnitude"

    async def verify(self, rows: list[Row], context: dict) -> VerificationResult:
        if context.get("metric") != "sales" or not context.get("day_scoped"):
            return self.skipped("Not a single-day revenue figure")

        value = metric_value(rows, "sales")
        if value is None:
            return self.skipped("No revenue value in result")

        ceiling = ABSOLUTE_DAILY_CEILING
        historical = None
        lookup: FactLookup | None = context.get("fact_lookup")
        if lookup is not None:
            try:
                historical = await lookup.historical_daily_max(context["tenant_id"])
            except Exception as e:
                logger.warning("fact_lookup_failed", check=self.name, error=str(e))
        if historical:
            ceiling = historical * self.factor

        if value > ceiling:
            return self.failed(
                f"Implausible daily amount ${value:,.2f} exceeds ceiling ${ceiling:,.2f}",
                value=value,
                ceiling=ceiling,
            )
        return self.passed("Daily amount within historical range", value=value, ceiling=ceiling)


class PlausibilityValidator:
    """Runs the plausibility chain and blocks results that fail any check."""

    def __init__(
        self,
        fact_lookup: FactLookup | None = None,
        checks: list[ResultCheck] | None = None,
        timezone: str = "UTC",
        max_amount_factor: float = 10.0,
        clock: Callable[[], datetime] | None = None,
        audit: AuditTrail | None = None,
    ) -> None:
        self.fact_lookup = fact_lookup
        self.timezone = timezone
        self.clock = clock or utc_now
        self.audit = audit or AuditTrail()
        self.chain = VerificationChain(
            checks
            or [
                FutureDateCheck(),
                NegativeAmountCheck(),
                PercentageRangeCheck(),
                RatingRangeCheck(),
                ClaimedDateExistsCheck(),
                MagnitudeCheck(max_amount_factor),
            ]
        )

    def build_context(self, question: str, tenant_id: str) -> dict:
        day_claim = claims_specific_day(question)
        return {
            "question": question,
            "tenant_id": tenant_id,
            "metric": detect_intent(question, allow_loose=True),
            "day_claim": day_claim,
            "day_scoped": day_claim or detect_period(question) in ("today", "yesterday"),
            "today": self.clock().astimezone(ZoneInfo(self.timezone)).date(),
            "fact_lookup": self.fact_lookup,
        }

    async def validate_plausibility(
        self,
        rows: list[Row],
        question: str,
        tenant_id: str,
        user_id: str | None = None,
    ) -> PlausibilityReport:
        """
        Check that the result only states facts present in the tenant's data.

        Empty results pass: there is no claim to verify.
        """
        if not rows:
            report = PlausibilityReport(passed=True)
        else:
            passed, results = await self.chain.run(rows, self.build_context(question, tenant_id))
            report = PlausibilityReport(
                passed=passed,
                failure_reasons=[r.message for r in results if r.status == VerificationStatus.FAILED],
                checks=results,
            )

        event = AuditEventType.PLAUSIBILITY_PASSED if report.passed else AuditEventType.PLAUSIBILITY_FAILED
        if not report.passed:
            logger.warning(
                "plausibility_failed", tenant_id=tenant_id, reasons=report.failure_reasons
            )
        self.audit.record(event, tenant_id, user_id, failure_reasons=report.failure_reasons)
        return report
