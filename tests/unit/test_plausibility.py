"""
Unit Tests for the Plausibility Validator
=========================================

Tests for the blocking anti-fabrication checks.
"""

from datetime import date

import pytest

from trusted_sql.audit import AuditEventType, AuditTrail, InMemoryAuditSink
from trusted_sql.trusted.sqlite_service import SqliteAggregationService
from trusted_sql.validators.plausibility import (
    ClaimedDateExistsCheck,
    MagnitudeCheck,
    PlausibilityValidator,
    as_date,
)

from conftest import (
    FIXED_NOW,
    TENANT_A,
    StubAggregationService,
    assert_check_failed,
    assert_check_passed,
)

BEST_DAY = "¿Cuál fue mi mejor día de ventas?"


@pytest.fixture
def facts() -> StubAggregationService:
    """Fact lookup with orders on 2024-06-01 and a $6,000 best day."""
    return StubAggregationService(orders_by_day={date(2024, 6, 1): 12}, daily_max=6000.0)


@pytest.fixture
def validator(facts: StubAggregationService, clock, audit_trail: AuditTrail) -> PlausibilityValidator:
    """Plausibility validator with a frozen clock."""
    return PlausibilityValidator(fact_lookup=facts, clock=clock, audit=audit_trail)


class TestClaimedDate:
    """Tests for claimed best/worst days."""

    @pytest.mark.asyncio
    async def test_fabricated_day_blocked(self, validator: PlausibilityValidator) -> None:
        """Test that a best day with no orders fails."""
        report = await validator.validate_plausibility(
            [{"day": "2024-05-02", "total_sales": 5000.0}], BEST_DAY, TENANT_A
        )
        assert not report.passed
        assert any("has no orders" in r for r in report.failure_reasons)

    @pytest.mark.asyncio
    async def test_real_day_passes(self, validator: PlausibilityValidator) -> None:
        """Test that a best day present in the tenant's history passes."""
        report = await validator.validate_plausibility(
            [{"day": "2024-06-01", "total_sales": 5000.0}], BEST_DAY, TENANT_A
        )
        assert report.passed, report.failure_reasons

    @pytest.mark.asyncio
    async def test_missing_date_fails_closed(self, validator: PlausibilityValidator) -> None:
        """Test that a day claim without a date in the result fails."""
        report = await validator.validate_plausibility([{"total_sales": 5000.0}], BEST_DAY, TENANT_A)
        assert not report.passed

    @pytest.mark.asyncio
    async def test_no_lookup_fails_closed(self) -> None:
        """Test that an unverifiable claim is blocked."""
        check = ClaimedDateExistsCheck()
        result = await check.verify(
            [{"day": "2024-06-01"}], {"day_claim": True, "tenant_id": TENANT_A}
        )
        assert_check_failed(result)

    @pytest.mark.asyncio
    async def test_against_seeded_history(self, aggregation: SqliteAggregationService, clock) -> None:
        """Test the claim against real seeded orders."""
        validator = PlausibilityValidator(fact_lookup=aggregation, clock=clock)
        report = await validator.validate_plausibility(
            [{"day": "2024-06-15", "total_sales": 750.0}], BEST_DAY, TENANT_A
        )
        assert report.passed, report.failure_reasons

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "question",
        [
            "What day did I sell the most this month?",
            "¿En cuál día vendí más este mes?",
            "¿En qué fecha tuve más ventas?",
        ],
    )
    async def test_other_day_wordings_blocked(
        self, validator: PlausibilityValidator, question: str
    ) -> None:
        """Test that any day word with a superlative triggers the date check."""
        report = await validator.validate_plausibility(
            [{"day": "2024-05-02", "total_sales": 5000.0}], question, TENANT_A
        )
        assert not report.passed
        assert any("has no orders" in r for r in report.failure_reasons)

    @pytest.mark.asyncio
    async def test_rolling_window_is_not_a_claim(self, validator: PlausibilityValidator) -> None:
        """Test that a "last 7 days" total does not need a date."""
        report = await validator.validate_plausibility(
            [{"product": "Limonada", "quantity": 40}],
            "¿Qué producto se vendió más en los últimos 7 días?",
            TENANT_A,
        )
        assert report.passed, report.failure_reasons


class TestRangeChecks:
    """Tests for value-range checks."""

    @pytest.mark.asyncio
    async def test_future_date(self, validator: PlausibilityValidator) -> None:
        """Test that dates after today are blocked."""
        report = await validator.validate_plausibility(
            [{"day": "2024-06-20", "orders": 3}], "orders per day", TENANT_A
        )
        assert not report.passed
        assert any("future date" in r for r in report.failure_reasons)

    @pytest.mark.asyncio
    async def test_negative_sales(self, validator: PlausibilityValidator) -> None:
        """Test that negative sales are blocked."""
        report = await validator.validate_plausibility(
            [{"total_sales": -50.0}], "¿Cuánto vendí ayer?", TENANT_A
        )
        assert not report.passed

    @pytest.mark.asyncio
    async def test_percentage_out_of_range(self, validator: PlausibilityValidator) -> None:
        """Test that percentages above 100 are blocked."""
        report = await validator.validate_plausibility(
            [{"cash_percent": 150.0}], "What percent of payments were cash?", TENANT_A
        )
        assert not report.passed

    @pytest.mark.asyncio
    async def test_rating_out_of_range(self, validator: PlausibilityValidator) -> None:
        """Test that ratings above 5 are blocked."""
        report = await validator.validate_plausibility(
            [{"average_rating": 7.2}], "average rating this week", TENANT_A
        )
        assert not report.passed

    @pytest.mark.asyncio
    async def test_rating_counts_not_ratings(self, validator: PlausibilityValidator) -> None:
        """Test that review counts are not range-checked as ratings."""
        report = await validator.validate_plausibility(
            [{"average_rating": 4.5, "rating_count": 120}], "average rating this week", TENANT_A
        )
        assert report.passed, report.failure_reasons

    @pytest.mark.asyncio
    async def test_empty_result_passes(self, validator: PlausibilityValidator) -> None:
        """Test that an empty result has nothing to verify."""
        report = await validator.validate_plausibility([], BEST_DAY, TENANT_A)
        assert report.passed


class TestMagnitude:
    """Tests for the historical magnitude check."""

    @pytest.mark.asyncio
    async def test_implausible_daily_amount(self, validator: PlausibilityValidator) -> None:
        """Test that a day far above the historical maximum is blocked."""
        report = await validator.validate_plausibility(
            [{"total_sales": 1_000_000.0}], "¿Cuánto vendí hoy?", TENANT_A
        )
        assert not report.passed
        assert any("Implausible" in r for r in report.failure_reasons)

    @pytest.mark.asyncio
    async def test_ordinary_daily_amount(self, validator: PlausibilityValidator) -> None:
        """Test that a normal day passes."""
        report = await validator.validate_plausibility(
            [{"total_sales": 5500.0}], "¿Cuánto vendí hoy?", TENANT_A
        )
        assert report.passed

    @pytest.mark.asyncio
    async def test_absolute_ceiling_without_history(self) -> None:
        """Test the fallback ceiling when the tenant has no history."""
        check = MagnitudeCheck()
        context = {"metric": "sales", "day_scoped": True, "tenant_id": TENANT_A, "fact_lookup": None}
        assert_check_failed(await check.verify([{"total_sales": 250_000.0}], context))
        assert_check_passed(await check.verify([{"total_sales": 2_500.0}], context))

    @pytest.mark.asyncio
    async def test_monthly_amount_not_checked(self, validator: PlausibilityValidator) -> None:
        """Test that multi-day figures are not compared to a daily maximum."""
        report = await validator.validate_plausibility(
            [{"total_sales": 150_000.0}], "total sales this month", TENANT_A
        )
        assert report.passed


@pytest.mark.asyncio
async def test_failures_are_audited(
    validator: PlausibilityValidator, audit_sink: InMemoryAuditSink
) -> None:
    """Test that blocked results are recorded."""
    await validator.validate_plausibility(
        [{"day": "2024-05-02", "total_sales": 5000.0}], BEST_DAY, TENANT_A, "u1"
    )
    records = audit_sink.of_type(AuditEventType.PLAUSIBILITY_FAILED)
    assert len(records) == 1
    assert records[0].details["failure_reasons"]


def test_as_date() -> None:
    """Test date extraction from result values."""
    assert as_date("2024-06-15T12:00:00") == date(2024, 6, 15)
    assert as_date(FIXED_NOW) == date(2024, 6, 15)
    assert as_date("2024-13-45") is None
    assert as_date("Pizza") is None
    assert as_date(20240615) is None
