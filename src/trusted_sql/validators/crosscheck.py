"""
Cross-Check Validator
=====================

Compares a generated result with the trusted aggregation path. Advisory only:
a discrepancy adds a warning and lowers confidence but never blocks the
answer. Anything that makes the comparison meaningless (no canonical metric,
no explicit period, a narrower question, trusted value unavailable) skips it.

Tip percentages are recomputed from the tip and sales totals in the same row
when the result carries them, otherwise from the tenant's completed payments.
"""

import re

import structlog

from trusted_sql.audit import AuditEventType, AuditTrail
from trusted_sql.errors import TrustedValueUnavailable, UnsupportedMetricError
from trusted_sql.models import CrossCheckReport
from trusted_sql.results import Row, is_id_key, is_number, leading_entity, metric_value
from trusted_sql.routing import complexity_signals, detect_intent, detect_period, normalize
from trusted_sql.trusted.gateway import (
    TrustedAggregationGateway,
    TrustedMetric,
    leading_entity as trusted_leading_entity,
    primary_value,
)
from trusted_sql.validators.plausibility import FactLookup

logger = structlog.get_logger(__name__)


MONETARY_METRICS = ("sales", "averageTicket")

# Percentage points between a reported and a recomputed tip percentage
TIP_PERCENT_MISMATCH_POINTS = 2.0
TIP_PERCENT_MINOR_POINTS = 0.5

_TIP_WORDS = re.compile(r"\b(propina|propinas|tip|tips)\b")
_PERCENT_WORDS = re.compile(r"\b(porcentaje|percent|percentage)\b|%")

_PERCENT_COLUMN = re.compile(r"(percent|pct|porcentaje)")
_TIP_COLUMN = re.compile(r"(tip|propina)")
_SALES_COLUMN = re.compile(r"(sales|ventas|revenue|total|amount)")
_TIP_OR_PERCENT = re.compile(r"(tip|propina|percent|pct|porcentaje)")


def asks_tip_percentage(question: str) -> bool:
    normalized = normalize(question)
    return bool(_TIP_WORDS.search(normalized) and _PERCENT_WORDS.search(normalized))


def _first_column(row: Row, pattern: re.Pattern, exclude: re.Pattern | None = None) -> float | None:
    for key, value in row.items():
        lowered = key.lower()
        if not is_number(value) or is_id_key(key) or not pattern.search(lowered):
            continue
        if exclude is not None and exclude.search(lowered):
            continue
        return float(value)
    return None


def _format(metric: str, value: float) -> str:
    if metric in MONETARY_METRICS:
        return f"${value:,.2f}"
    return f"{value:,.2f}".rstrip("0").rstrip(".")


class CrossCheckValidator:
    """Non-blocking comparison against trusted metrics."""

    def __init__(
        self,
        gateway: TrustedAggregationGateway,
        tolerance: float = 0.01,
        audit: AuditTrail | None = None,
        fact_lookup: FactLookup | None = None,
        default_period: str = "thisMonth",
    ) -> None:
        """
        Args:
            gateway: Trusted aggregation gateway
            tolerance: Relative difference above which a mismatch is flagged
            audit: Audit trail for cross-check outcomes
            fact_lookup: Source of the independent tip percentage
            default_period: Period for tip percentages when the question names none
        """
        self.gateway = gateway
        self.tolerance = tolerance
        self.audit = audit or AuditTrail()
        self.fact_lookup = fact_lookup
        self.default_period = default_period

    @property
    def name(self) -> str:
        return "cross_check"

    async def cross_check(
        self,
        rows: list[Row],
        question: str,
        tenant_id: str,
        user_id: str | None = None,
    ) -> CrossCheckReport:
        """
        Compare ``rows`` with the trusted value for the question's metric.

        Returns:
            CrossCheckReport; ``is_valid`` is always True
        """
        report = await self._compare(rows, question, tenant_id)

        logger.info(
            "cross_check_completed",
            tenant_id=tenant_id,
            performed=report.performed,
            skipped_reason=report.skipped_reason,
            warnings=report.warnings,
        )
        self.audit.record(
            AuditEventType.CROSS_CHECK_COMPLETED,
            tenant_id,
            user_id,
            **report.to_dict(),
        )
        return report

    async def _compare(self, rows: list[Row], question: str, tenant_id: str) -> CrossCheckReport:
        if asks_tip_percentage(question):
            return await self._compare_tip_percentage(rows, question, tenant_id)

        metric = detect_intent(question, allow_loose=True)
        if metric is None:
            return CrossCheckReport.skipped("No trusted metric matches the question")

        narrowing = complexity_signals(question)
        if narrowing:
            return CrossCheckReport.skipped(
                f"Question narrows the data ({', '.join(narrowing)}); "
                "no comparable trusted metric"
            )

        period = detect_period(question)
        if period is None:
            return CrossCheckReport.skipped("No explicit period in the question")

        if not rows:
            return CrossCheckReport.skipped("Empty result set; nothing to contradict")

        try:
            trusted = await self.gateway.compute_trusted(metric, tenant_id, period)
        except (TrustedValueUnavailable, UnsupportedMetricError) as e:
            return CrossCheckReport.skipped(f"{e}; validation skipped")

        if metric == TrustedMetric.TOP_PRODUCTS.value:
            return self._compare_entities(rows, trusted)
        return self._compare_values(rows, metric, trusted)

    async def _compare_tip_percentage(
        self, rows: list[Row], question: str, tenant_id: str
    ) -> CrossCheckReport:
        if not rows:
            return CrossCheckReport.skipped("Empty result set; nothing to contradict")

        row = rows[0]
        reported = _first_column(row, _PERCENT_COLUMN)
        if reported is None:
            return CrossCheckReport.skipped("No percentage column in the result")

        tips = _first_column(row, _TIP_COLUMN, exclude=_PERCENT_COLUMN)
        sales = _first_column(row, _SALES_COLUMN, exclude=_TIP_OR_PERCENT)
        if tips is not None and sales:
            expected = tips / sales * 100
        else:
            expected = await self._trusted_tip_percentage(question, tenant_id)
            if expected is None:
                return CrossCheckReport.skipped("No independent tip percentage to compare")

        difference = abs(reported - expected)
        warnings = []
        if difference > TIP_PERCENT_MISMATCH_POINTS:
            warnings.append(
                f"Trusted-Generated mismatch detected: generated tip percentage {reported:.2f}% "
                f"vs recomputed {expected:.2f}%"
            )
        elif difference > TIP_PERCENT_MINOR_POINTS:
            warnings.append(f"Minor difference ({difference:.2f} points) in tip percentage")

        return CrossCheckReport(
            performed=True,
            is_valid=True,
            warnings=warnings,
            trusted_value=round(expected, 2),
            candidate_value=reported,
            difference_percent=round(difference, 2),
        )

    async def _trusted_tip_percentage(self, question: str, tenant_id: str) -> float | None:
        if self.fact_lookup is None or complexity_signals(question):
            return None
        period = detect_period(question) or self.default_period
        try:
            return await self.fact_lookup.tip_percentage(tenant_id, period)
        except Exception as e:
            logger.warning("tip_percentage_lookup_failed", tenant_id=tenant_id, error=str(e))
            return None

    def _compare_entities(self, rows: list[Row], trusted: object) -> CrossCheckReport:
        expected = trusted_leading_entity(TrustedMetric.TOP_PRODUCTS, trusted)
        actual = leading_entity(rows[0])
        if expected is None or actual is None:
            return CrossCheckReport.skipped("No leading product to compare")

        warnings = []
        if expected.strip().lower() != actual:
            warnings.append(
                f"Trusted-Generated mismatch detected: generated top product '{actual}' "
                f"differs from trusted '{expected}'"
            )
        return CrossCheckReport(performed=True, is_valid=True, warnings=warnings)

    def _compare_values(self, rows: list[Row], metric: str, trusted: object) -> CrossCheckReport:
        trusted_value = primary_value(metric, trusted)
        if trusted_value is None:
            return CrossCheckReport.skipped(f"Metric '{metric}' has no comparable value")

        candidate_value = metric_value(rows, metric)
        if candidate_value is None:
            return CrossCheckReport.skipped("Could not extract a numeric value from the result")

        if trusted_value == 0:
            relative = 0.0 if candidate_value == 0 else 1.0
        else:
            relative = abs(candidate_value - trusted_value) / abs(trusted_value)
        difference_percent = round(relative * 100, 2)

        warnings = []
        if relative > self.tolerance:
            warnings.append(
                f"Trusted-Generated mismatch detected: generated {_format(metric, candidate_value)} "
                f"vs trusted {_format(metric, trusted_value)} ({difference_percent:.2f}% difference)"
            )
        elif relative > 0:
            warnings.append(
                f"Minor difference ({difference_percent:.2f}%) "
                f"within {self.tolerance * 100:g}% tolerance"
            )

        return CrossCheckReport(
            performed=True,
            is_valid=True,
            warnings=warnings,
            trusted_value=trusted_value,
            candidate_value=candidate_value,
            difference_percent=difference_percent,
        )
