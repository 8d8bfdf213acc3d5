"""
Trusted Aggregation Gateway
===========================

Thin adapter over the trusted aggregation collaborator. Maps canonical metric
names onto collaborator calls and turns any collaborator failure into
``TrustedValueUnavailable``.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, is_dataclass
from enum import Enum
from typing import Any

import structlog

from trusted_sql.errors import TrustedValueUnavailable, UnsupportedMetricError
from trusted_sql.trusted.periods import DateRange

logger = structlog.get_logger(__name__)

PeriodLike = str | DateRange


class TrustedMetric(str, Enum):
    """Canonical metrics served by the trusted path."""

    SALES = "sales"
    AVERAGE_TICKET = "averageTicket"
    ORDER_COUNT = "orderCount"
    TOP_PRODUCTS = "topProducts"
    REVIEW_STATS = "reviewStats"


@dataclass
class SalesSummary:
    """Revenue and order volume for a period."""

    total_revenue: float
    order_count: int
    average_ticket: float
    payment_count: int = 0
    currency: str = "USD"
    period: str | None = None


@dataclass
class TopProduct:
    """One row of the product ranking."""

    name: str
    quantity: int
    revenue: float
    rank: int = 0


@dataclass
class ReviewStats:
    """Rating summary for a period."""

    average_rating: float
    total_reviews: int
    distribution: dict[int, int] = field(default_factory=dict)
    unanswered_negative: int = 0


class AggregationService(ABC):
    """Collaborator that computes canonical metrics directly from the store."""

    @abstractmethod
    async def get_metric(
        self, name: str, tenant_id: str, period: PeriodLike, **params: Any
    ) -> Any:
        """
        Compute one canonical metric.

        Args:
            name: Canonical metric name (see TrustedMetric)
            tenant_id: Tenant whose data is aggregated
            period: Relative period name or explicit DateRange
            **params: Metric-specific options (``limit`` for topProducts)

        Returns:
            SalesSummary, float, int, list[TopProduct] or ReviewStats
        """
        pass


class TrustedAggregationGateway:
    """Single entry point to trusted metrics for routing and cross-checks."""

    def __init__(self, service: AggregationService, timeout_s: float | None = None):
        self.service = service
        self.timeout_s = timeout_s

    async def compute_trusted(
        self,
        metric: TrustedMetric | str,
        tenant_id: str,
        period: PeriodLike,
        limit: int = 10,
    ) -> Any:
        """
        Fetch a trusted value.

        Raises:
            UnsupportedMetricError: For names outside TrustedMetric
            TrustedValueUnavailable: When the collaborator fails or times out
        """
        try:
            metric = TrustedMetric(metric)
        except ValueError:
            raise UnsupportedMetricError(f"Unknown trusted metric: {metric}") from None

        params: dict[str, Any] = {}
        if metric == TrustedMetric.TOP_PRODUCTS:
            params["limit"] = limit

        call = self.service.get_metric(metric.value, tenant_id, period, **params)
        try:
            if self.timeout_s is not None:
                value = await asyncio.wait_for(call, timeout=self.timeout_s)
            else:
                value = await call
        except asyncio.TimeoutError:
            logger.warning("trusted_metric_timeout", metric=metric.value, tenant_id=tenant_id)
            raise TrustedValueUnavailable(metric.value, "timed out") from None
        except Exception as e:
            logger.warning(
                "trusted_metric_failed", metric=metric.value, tenant_id=tenant_id, error=str(e)
            )
            raise TrustedValueUnavailable(metric.value, str(e)) from e

        if value is None:
            raise TrustedValueUnavailable(metric.value, "no value returned")
        return value


def primary_value(metric: TrustedMetric | str, value: Any) -> float | None:
    """
    Extract the comparable scalar from a trusted value.

    Returns None for metrics without a single numeric headline.
    """
    metric = TrustedMetric(metric)
    if metric == TrustedMetric.SALES:
        if isinstance(value, SalesSummary):
            return float(value.total_revenue)
        return _as_float(value)
    if metric == TrustedMetric.AVERAGE_TICKET:
        if isinstance(value, SalesSummary):
            return float(value.average_ticket)
        return _as_float(value)
    if metric == TrustedMetric.ORDER_COUNT:
        if isinstance(value, SalesSummary):
            return float(value.order_count)
        return _as_float(value)
    if metric == TrustedMetric.REVIEW_STATS and isinstance(value, ReviewStats):
        return float(value.average_rating)
    return None


def leading_entity(metric: TrustedMetric | str, value: Any) -> str | None:
    """Name of the first-ranked entity for ranking metrics."""
    if TrustedMetric(metric) != TrustedMetric.TOP_PRODUCTS or not value:
        return None
    first = value[0]
    return first.name if isinstance(first, TopProduct) else None


def to_jsonable(value: Any) -> Any:
    """Render a trusted value as plain JSON-compatible data."""
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, list):
        return [to_jsonable(v) for v in value]
    return value


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None
