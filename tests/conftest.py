"""
Pytest Fixtures
===============

Shared fixtures for query-trust pipeline tests.
"""

import asyncio
import uuid
from datetime import date, datetime, timezone
from typing import Any

import pytest

from trusted_sql.audit import AuditTrail, InMemoryAuditSink
from trusted_sql.config import PipelineSettings
from trusted_sql.datastore import ConnectionPool, SqliteExecutor, seed_demo_data
from trusted_sql.llm.mock import MockLLM
from trusted_sql.models import VerificationStatus
from trusted_sql.pipeline import QueryPipeline
from trusted_sql.trusted.gateway import AggregationService, SalesSummary
from trusted_sql.trusted.sqlite_service import SqliteAggregationService
from trusted_sql.validators.plausibility import FactLookup
from trusted_sql.validators.tenant import TenantIsolationValidator

# Seeded data and every clock in the tests share this instant
FIXED_NOW = datetime(2024, 6, 15, 23, 0, tzinfo=timezone.utc)

TENANT_A = "venue-001"
TENANT_B = "venue-002"

# venue-001 sells 120 + 2 * 180 + 3 * 90 on 2024-06-15
TENANT_A_TODAY_SALES = 750.0

SALES_TODAY_SQL = (
    'SELECT SUM(amount) AS total_sales FROM "Payment" '
    "WHERE venueId = '{tenant_id}' AND status = 'COMPLETED' "
    "AND createdAt >= '2024-06-15T00:00:00'"
)


class StubAggregationService(AggregationService, FactLookup):
    """Trusted-metric and fact collaborator with canned answers."""

    def __init__(
        self,
        values: dict[str, Any] | None = None,
        error: Exception | None = None,
        orders_by_day: dict[date, int] | None = None,
        daily_max: float | None = None,
        delay_s: float = 0.0,
        tip_percent: float | None = None,
    ) -> None:
        self.values = values or {}
        self.error = error
        self.orders_by_day = orders_by_day or {}
        self.daily_max = daily_max
        self.delay_s = delay_s
        self.tip_percent = tip_percent
        self.calls: list[tuple[str, str, Any]] = []

    async def get_metric(self, name: str, tenant_id: str, period: Any, **params: Any) -> Any:
        self.calls.append((name, tenant_id, period))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return self.values.get(name)

    async def orders_on_date(self, tenant_id: str, day: date) -> int:
        return self.orders_by_day.get(day, 0)

    async def historical_daily_max(self, tenant_id: str) -> float | None:
        return self.daily_max

    async def tip_percentage(self, tenant_id: str, period: str) -> float | None:
        return self.tip_percent


def sales_summary(total: float, orders: int = 50) -> SalesSummary:
    """Build a SalesSummary with a consistent average ticket."""
    return SalesSummary(
        total_revenue=total,
        order_count=orders,
        average_ticket=round(total / orders, 2) if orders else 0.0,
    )


@pytest.fixture
def clock():
    """Clock frozen at FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def settings() -> PipelineSettings:
    """Pipeline settings with short deadlines for tests."""
    return PipelineSettings(
        candidate_timeout_s=2.0,
        consensus_deadline_s=3.0,
        single_deadline_s=3.0,
        trusted_deadline_s=1.0,
    )


@pytest.fixture
def tenant_validator() -> TenantIsolationValidator:
    """Create a TenantIsolationValidator with default settings."""
    return TenantIsolationValidator()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    """In-memory audit sink for assertions."""
    return InMemoryAuditSink()


@pytest.fixture
def audit_trail(audit_sink: InMemoryAuditSink) -> AuditTrail:
    """Audit trail writing to the in-memory sink."""
    return AuditTrail(audit_sink)


@pytest.fixture
def pool():
    """Seeded in-memory database with two tenants, private to the test."""
    pool = ConnectionPool.in_memory(f"test_{uuid.uuid4().hex}", size=4)
    with pool.writer() as conn:
        seed_demo_data(conn, venues=(TENANT_A, TENANT_B), days=30, now=FIXED_NOW)
    yield pool
    pool.close()


@pytest.fixture
def executor(pool: ConnectionPool) -> SqliteExecutor:
    """Read-only executor over the seeded pool."""
    return SqliteExecutor(pool)


@pytest.fixture
def aggregation(pool: ConnectionPool, clock) -> SqliteAggregationService:
    """Trusted aggregation over the seeded pool."""
    return SqliteAggregationService(pool, clock=clock)


@pytest.fixture
def mock_llm_simple() -> MockLLM:
    """Mock LLM answering sales questions with a tenant-scoped query."""
    return MockLLM(
        responses={
            "cash": [
                'SELECT SUM(amount) AS total_sales FROM "Payment" '
                "WHERE venueId = '{tenant_id}' AND method = 'CASH' AND status = 'COMPLETED'"
            ],
            "hoy": [SALES_TODAY_SQL],
            "today": [SALES_TODAY_SQL],
        }
    )


@pytest.fixture
def make_pipeline(settings: PipelineSettings, executor: SqliteExecutor, audit_sink, clock):
    """Factory building a QueryPipeline around the seeded database."""

    def _make(
        llm: MockLLM,
        aggregation: AggregationService | None = None,
        pipeline_settings: PipelineSettings | None = None,
        fact_lookup: FactLookup | None = None,
    ) -> QueryPipeline:
        return QueryPipeline(
            llm=llm,
            executor=executor,
            aggregation=aggregation or StubAggregationService(),
            settings=pipeline_settings or settings,
            audit_sink=audit_sink,
            fact_lookup=fact_lookup,
            clock=clock,
        )

    return _make


def assert_check_passed(result) -> None:
    """Helper assertion for result checks."""
    assert result.status == VerificationStatus.PASSED, f"Expected PASSED, got: {result.message}"


def assert_check_failed(result) -> None:
    """Helper assertion for result check failures."""
    assert result.status == VerificationStatus.FAILED, f"Expected FAILED, got: {result.message}"
