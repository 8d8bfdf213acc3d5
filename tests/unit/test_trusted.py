"""
Unit Tests for Trusted Aggregation
==================================

Tests for period resolution, the gateway and the SQLite aggregation service.
"""

import asyncio
import uuid
from datetime import date, datetime, timezone

import pytest

from trusted_sql.datastore import ConnectionPool, seed_demo_data
from trusted_sql.errors import TrustedValueUnavailable, UnsupportedMetricError
from trusted_sql.trusted.gateway import (
    ReviewStats,
    SalesSummary,
    TopProduct,
    TrustedAggregationGateway,
    TrustedMetric,
    leading_entity,
    primary_value,
    to_jsonable,
)
from trusted_sql.trusted.periods import DateRange, Period, resolve_period
from trusted_sql.trusted.sqlite_service import SqliteAggregationService

from conftest import FIXED_NOW, TENANT_A, TENANT_A_TODAY_SALES, TENANT_B, StubAggregationService

# Never terminates on its own; every step calls back into Python
ENDLESS_SQL = (
    "WITH RECURSIVE c(x) AS (SELECT 1 UNION ALL SELECT step(x) + 1 FROM c) "
    "SELECT COUNT(*) FROM c"
)


class TestPeriods:
    """Tests for resolve_period."""

    def test_today(self, clock) -> None:
        """Test that today is the current local day."""
        date_range = resolve_period("today", clock=clock)
        assert date_range.start == datetime(2024, 6, 15, tzinfo=timezone.utc)
        assert date_range.end == datetime(2024, 6, 16, tzinfo=timezone.utc)

    def test_last_week(self, clock) -> None:
        """Test that last week is the seven days before the current week."""
        date_range = resolve_period(Period.LAST_WEEK, clock=clock)
        assert date_range.start == datetime(2024, 6, 2, tzinfo=timezone.utc)
        assert date_range.end == datetime(2024, 6, 9, tzinfo=timezone.utc)
        assert date_range.days == 7

    def test_tenant_timezone(self, clock) -> None:
        """Test that local days are expressed in UTC."""
        date_range = resolve_period("today", "America/Mexico_City", clock=clock)
        # 23:00 UTC is 17:00 on the same day in Mexico City (UTC-6)
        assert date_range.start == datetime(2024, 6, 15, 6, tzinfo=timezone.utc)

    def test_explicit_range_passthrough(self) -> None:
        """Test that a DateRange is used as-is."""
        date_range = DateRange(FIXED_NOW, FIXED_NOW)
        assert resolve_period(date_range) is date_range

    def test_unknown_period(self) -> None:
        """Test that unknown names raise."""
        with pytest.raises(ValueError):
            resolve_period("fortnight")


class TestGateway:
    """Tests for TrustedAggregationGateway."""

    @pytest.mark.asyncio
    async def test_unknown_metric(self) -> None:
        """Test that metric names are validated before calling out."""
        service = StubAggregationService()
        with pytest.raises(UnsupportedMetricError):
            await TrustedAggregationGateway(service).compute_trusted("tips", TENANT_A, "today")
        assert service.calls == []

    @pytest.mark.asyncio
    async def test_collaborator_error(self) -> None:
        """Test that collaborator errors become TrustedValueUnavailable."""
        service = StubAggregationService(error=RuntimeError("db down"))
        with pytest.raises(TrustedValueUnavailable) as exc_info:
            await TrustedAggregationGateway(service).compute_trusted("sales", TENANT_A, "today")
        assert exc_info.value.metric == "sales"
        assert "db down" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_value(self) -> None:
        """Test that a None value is unavailable."""
        with pytest.raises(TrustedValueUnavailable):
            await TrustedAggregationGateway(StubAggregationService()).compute_trusted(
                "sales", TENANT_A, "today"
            )

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        """Test that a slow collaborator is abandoned."""
        service = StubAggregationService(values={"sales": 1.0}, delay_s=1.0)
        with pytest.raises(TrustedValueUnavailable):
            await TrustedAggregationGateway(service, timeout_s=0.05).compute_trusted(
                TrustedMetric.SALES, TENANT_A, "today"
            )

    def test_primary_value(self) -> None:
        """Test scalar extraction per metric."""
        summary = SalesSummary(total_revenue=1000.0, order_count=4, average_ticket=250.0)
        assert primary_value("sales", summary) == 1000.0
        assert primary_value("averageTicket", summary) == 250.0
        assert primary_value("orderCount", summary) == 4.0
        assert primary_value("orderCount", 12) == 12.0
        assert primary_value("reviewStats", ReviewStats(4.2, 10)) == 4.2
        assert primary_value("topProducts", [TopProduct("Limonada", 3, 120.0)]) is None

    def test_leading_entity(self) -> None:
        """Test the first-ranked product name."""
        assert leading_entity("topProducts", [TopProduct("Limonada", 3, 120.0)]) == "Limonada"
        assert leading_entity("topProducts", []) is None
        assert leading_entity("sales", 10.0) is None

    def test_to_jsonable(self) -> None:
        """Test dataclass rendering."""
        assert to_jsonable([TopProduct("Limonada", 3, 120.0, rank=1)]) == [
            {"name": "Limonada", "quantity": 3, "revenue": 120.0, "rank": 1}
        ]
        assert to_jsonable(5) == 5


class TestSqliteAggregationService:
    """Tests for trusted metrics over the seeded database."""

    @pytest.mark.asyncio
    async def test_sales_today(self, aggregation: SqliteAggregationService) -> None:
        """Test revenue and order count for today."""
        summary = await aggregation.get_metric("sales", TENANT_A, "today")
        assert summary.total_revenue == TENANT_A_TODAY_SALES
        assert summary.order_count == 3
        assert summary.average_ticket == 250.0
        assert summary.period == "today"

    @pytest.mark.asyncio
    async def test_tenants_are_separate(self, aggregation: SqliteAggregationService) -> None:
        """Test that each tenant's metric only counts its own rows."""
        a = await aggregation.get_metric("orderCount", TENANT_A, "today")
        b = await aggregation.get_metric("orderCount", TENANT_B, "today")
        assert (a, b) == (3, 4)

    @pytest.mark.asyncio
    async def test_average_ticket(self, aggregation: SqliteAggregationService) -> None:
        """Test the average ticket metric."""
        assert await aggregation.get_metric("averageTicket", TENANT_A, "today") == 250.0

    @pytest.mark.asyncio
    async def test_top_products(self, aggregation: SqliteAggregationService) -> None:
        """Test the product ranking."""
        products = await aggregation.get_metric("topProducts", TENANT_A, "today", limit=2)
        assert [p.name for p in products] == ["Pizza Margarita", "Tacos al Pastor"]
        assert products[0].rank == 1
        assert products[0].revenue == 360.0

    @pytest.mark.asyncio
    async def test_review_stats(self, aggregation: SqliteAggregationService) -> None:
        """Test the review summary."""
        stats = await aggregation.get_metric("reviewStats", TENANT_A, "last30days")
        assert stats.total_reviews == 10
        assert 1 <= stats.average_rating <= 5
        assert sum(stats.distribution.values()) == 10

    @pytest.mark.asyncio
    async def test_unknown_metric(self, aggregation: SqliteAggregationService) -> None:
        """Test that the service rejects unknown metrics."""
        with pytest.raises(UnsupportedMetricError):
            await aggregation.get_metric("tips", TENANT_A, "today")

    @pytest.mark.asyncio
    async def test_fact_lookups(self, aggregation: SqliteAggregationService) -> None:
        """Test the plausibility fact lookups."""
        assert await aggregation.orders_on_date(TENANT_A, date(2024, 6, 15)) == 3
        assert await aggregation.orders_on_date(TENANT_A, date(2023, 1, 1)) == 0
        assert await aggregation.historical_daily_max(TENANT_A) >= TENANT_A_TODAY_SALES
        assert await aggregation.historical_daily_max("venue-unknown") is None

    @pytest.mark.asyncio
    async def test_tip_percentage(self, aggregation: SqliteAggregationService) -> None:
        """Test tips as a share of completed payments."""
        assert await aggregation.tip_percentage(TENANT_A, "today") == pytest.approx(10.0, abs=0.05)
        assert await aggregation.tip_percentage("venue-unknown", "today") is None

    @pytest.mark.asyncio
    async def test_cancelled_query_stops_before_release(self, clock) -> None:
        """Test that a cancelled query is interrupted before its connection is reused."""
        pool = ConnectionPool.in_memory(f"test_{uuid.uuid4().hex}", size=1)
        with pool.writer() as conn:
            seed_demo_data(conn, venues=(TENANT_A,), days=1, now=FIXED_NOW)
        steps: list[int] = []
        async with pool.acquire() as conn:
            conn.create_function("step", 1, lambda x: steps.append(x) or x)
        service = SqliteAggregationService(pool, clock=clock)

        try:
            task = asyncio.ensure_future(service._query(ENDLESS_SQL, ()))
            while not steps:
                await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            settled = len(steps)
            await asyncio.sleep(0.05)
            assert len(steps) == settled
            assert pool.available == 1
            assert await service.orders_on_date(TENANT_A, date(2024, 6, 15)) == 3
        finally:
            pool.close()
