"""
SQLite Aggregation Service
==========================

Trusted metrics computed with fixed, parameterized queries over the reference
schema. Also answers the fact lookups used by plausibility checks.
"""

import asyncio
import sqlite3
from contextlib import suppress
from datetime import date
from typing import Any

import structlog

from trusted_sql.datastore.sqlite import ConnectionPool
from trusted_sql.errors import UnsupportedMetricError
from trusted_sql.trusted.gateway import (
    AggregationService,
    PeriodLike,
    ReviewStats,
    SalesSummary,
    TopProduct,
    TrustedMetric,
)
from trusted_sql.trusted.periods import Clock, DateRange, local_day_range, resolve_period
from trusted_sql.validators.plausibility import FactLookup

logger = structlog.get_logger(__name__)

_REVENUE_SQL = """
SELECT COALESCE(SUM(amount), 0) AS revenue, COUNT(*) AS payments
FROM "Payment"
WHERE venueId = ? AND status = 'COMPLETED' AND createdAt >= ? AND createdAt < ?
"""

_ORDER_COUNT_SQL = """
SELECT COUNT(*) AS orders
FROM "Order"
WHERE venueId = ? AND status = 'COMPLETED' AND createdAt >= ? AND createdAt < ?
"""

_TOP_PRODUCTS_SQL = """
SELECT p.name AS name,
       SUM(oi.quantity) AS quantity,
       SUM(oi.quantity * oi.unitPrice) AS revenue
FROM "OrderItem" oi
JOIN "Order" o ON o.id = oi.orderId AND o.venueId = oi.venueId
JOIN "Product" p ON p.id = oi.productId AND p.venueId = oi.venueId
WHERE o.venueId = ? AND o.status = 'COMPLETED' AND o.createdAt >= ? AND o.createdAt < ?
GROUP BY p.name
ORDER BY revenue DESC, p.name ASC
LIMIT ?
"""

_REVIEW_SQL = """
SELECT overallRating AS rating,
       COUNT(*) AS reviews,
       SUM(CASE WHEN overallRating <= 3
                 AND (responseText IS NULL OR responseText = '') THEN 1 ELSE 0 END) AS unanswered
FROM "Review"
WHERE venueId = ? AND createdAt >= ? AND createdAt < ?
GROUP BY overallRating
"""

_DAILY_MAX_SQL = """
SELECT MAX(daily) AS daily_max FROM (
    SELECT substr(createdAt, 1, 10) AS day, SUM(amount) AS daily
    FROM "Payment"
    WHERE venueId = ? AND status = 'COMPLETED'
    GROUP BY day
)
"""

_TIPS_SQL = """
SELECT COALESCE(SUM(tipAmount), 0) AS tips, COALESCE(SUM(amount), 0) AS sales
FROM "Payment"
WHERE venueId = ? AND status = 'COMPLETED' AND createdAt >= ? AND createdAt < ?
"""

_VENUE_SQL = 'SELECT timezone, currency FROM "Venue" WHERE id = ?'


class SqliteAggregationService(AggregationService, FactLookup):
    """Trusted metrics and fact lookups over a pooled SQLite store."""

    def __init__(
        self,
        pool: ConnectionPool,
        clock: Clock | None = None,
        default_timezone: str = "UTC",
    ) -> None:
        self.pool = pool
        self.clock = clock
        self.default_timezone = default_timezone

    async def _query(self, sql: str, params: tuple) -> list[sqlite3.Row]:
        async with self.pool.acquire() as conn:
            task = asyncio.ensure_future(asyncio.to_thread(lambda: conn.execute(sql, params).fetchall()))
            try:
                return await asyncio.shield(task)
            except asyncio.CancelledError:
                # Stop the worker thread before the connection goes back to the pool
                conn.interrupt()
                with suppress(sqlite3.Error):
                    await task
                raise

    async def _venue(self, tenant_id: str) -> tuple[str, str]:
        rows = await self._query(_VENUE_SQL, (tenant_id,))
        if not rows:
            return self.default_timezone, "USD"
        return rows[0]["timezone"] or self.default_timezone, rows[0]["currency"] or "USD"

    async def _range(self, tenant_id: str, period: PeriodLike) -> DateRange:
        tz_name, _ = await self._venue(tenant_id)
        return resolve_period(period, tz_name, self.clock)

    async def get_metric(
        self, name: str, tenant_id: str, period: PeriodLike, **params: Any
    ) -> Any:
        try:
            metric = TrustedMetric(name)
        except ValueError:
            raise UnsupportedMetricError(f"Unknown trusted metric: {name}") from None

        logger.debug("computing_trusted_metric", metric=name, tenant_id=tenant_id)
        if metric == TrustedMetric.SALES:
            return await self.sales_for_period(tenant_id, period)
        if metric == TrustedMetric.AVERAGE_TICKET:
            return (await self.sales_for_period(tenant_id, period)).average_ticket
        if metric == TrustedMetric.ORDER_COUNT:
            return (await self.sales_for_period(tenant_id, period)).order_count
        if metric == TrustedMetric.TOP_PRODUCTS:
            return await self.top_products(tenant_id, period, params.get("limit", 10))
        return await self.review_stats(tenant_id, period)

    async def sales_for_period(self, tenant_id: str, period: PeriodLike) -> SalesSummary:
        """Revenue from completed payments and completed order count."""
        date_range = await self._range(tenant_id, period)
        start, end = date_range.iso_bounds()
        _, currency = await self._venue(tenant_id)

        revenue_rows = await self._query(_REVENUE_SQL, (tenant_id, start, end))
        order_rows = await self._query(_ORDER_COUNT_SQL, (tenant_id, start, end))
        revenue = float(revenue_rows[0]["revenue"] or 0)
        orders = int(order_rows[0]["orders"] or 0)

        return SalesSummary(
            total_revenue=round(revenue, 2),
            order_count=orders,
            average_ticket=round(revenue / orders, 2) if orders else 0.0,
            payment_count=int(revenue_rows[0]["payments"] or 0),
            currency=currency,
            period=period if isinstance(period, str) else None,
        )

    async def top_products(
        self, tenant_id: str, period: PeriodLike, limit: int = 10
    ) -> list[TopProduct]:
        date_range = await self._range(tenant_id, period)
        start, end = date_range.iso_bounds()
        rows = await self._query(_TOP_PRODUCTS_SQL, (tenant_id, start, end, limit))
        return [
            TopProduct(
                name=row["name"],
                quantity=int(row["quantity"] or 0),
                revenue=round(float(row["revenue"] or 0), 2),
                rank=rank,
            )
            for rank, row in enumerate(rows, start=1)
        ]

    async def review_stats(self, tenant_id: str, period: PeriodLike) -> ReviewStats:
        date_range = await self._range(tenant_id, period)
        start, end = date_range.iso_bounds()
        rows = await self._query(_REVIEW_SQL, (tenant_id, start, end))

        distribution = {rating: 0 for rating in range(1, 6)}
        total = 0
        weighted = 0
        unanswered = 0
        for row in rows:
            rating = int(row["rating"])
            count = int(row["reviews"])
            distribution[rating] = count
            total += count
            weighted += rating * count
            unanswered += int(row["unanswered"] or 0)

        return ReviewStats(
            average_rating=round(weighted / total, 2) if total else 0.0,
            total_reviews=total,
            distribution=distribution,
            unanswered_negative=unanswered,
        )

    async def orders_on_date(self, tenant_id: str, day: date) -> int:
        tz_name, _ = await self._venue(tenant_id)
        start, end = local_day_range(day, tz_name).iso_bounds()
        rows = await self._query(_ORDER_COUNT_SQL, (tenant_id, start, end))
        return int(rows[0]["orders"] or 0)

    async def historical_daily_max(self, tenant_id: str) -> float | None:
        rows = await self._query(_DAILY_MAX_SQL, (tenant_id,))
        value = rows[0]["daily_max"] if rows else None
        return float(value) if value is not None else None

    async def tip_percentage(self, tenant_id: str, period: PeriodLike) -> float | None:
        date_range = await self._range(tenant_id, period)
        start, end = date_range.iso_bounds()
        rows = await self._query(_TIPS_SQL, (tenant_id, start, end))
        sales = float(rows[0]["sales"] or 0)
        if not sales:
            return None
        return round(float(rows[0]["tips"] or 0) / sales * 100, 2)
