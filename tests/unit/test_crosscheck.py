"""
Unit Tests for the Cross-Check Validator
========================================

Tests for the advisory comparison against trusted metrics.
"""

import pytest

from trusted_sql.audit import AuditEventType, AuditTrail, InMemoryAuditSink
from trusted_sql.trusted.gateway import TopProduct, TrustedAggregationGateway
from trusted_sql.validators.crosscheck import CrossCheckValidator

from conftest import TENANT_A, StubAggregationService, sales_summary

QUESTION = "¿Cuánto dinero ingresó hoy?"


def validator_for(service: StubAggregationService, audit: AuditTrail | None = None) -> CrossCheckValidator:
    """Build a validator over a stub collaborator."""
    return CrossCheckValidator(TrustedAggregationGateway(service, timeout_s=0.5), audit=audit)


@pytest.fixture
def trusted_12500() -> StubAggregationService:
    """Collaborator reporting $12,500 of sales."""
    return StubAggregationService(values={"sales": sales_summary(12500.0)})


class TestToleranceBoundaries:
    """Tests for the 1% tolerance."""

    @pytest.mark.asyncio
    async def test_exact_match(self, trusted_12500: StubAggregationService) -> None:
        """Test that an identical value produces no warning."""
        report = await validator_for(trusted_12500).cross_check(
            [{"total_sales": 12500.0}], QUESTION, TENANT_A
        )
        assert report.performed
        assert report.is_valid
        assert report.warnings == []
        assert report.difference_percent == 0.0

    @pytest.mark.asyncio
    async def test_two_percent_over_warns(self, trusted_12500: StubAggregationService) -> None:
        """Test that a 2% difference is flagged but still valid."""
        report = await validator_for(trusted_12500).cross_check(
            [{"total_sales": 12750.0}], QUESTION, TENANT_A
        )
        assert report.is_valid
        assert report.has_discrepancy
        assert report.warnings == [
            "Trusted-Generated mismatch detected: generated $12,750.00 vs trusted "
            "$12,500.00 (2.00% difference)"
        ]

    @pytest.mark.asyncio
    async def test_half_percent_within_tolerance(self, trusted_12500: StubAggregationService) -> None:
        """Test that a 0.5% difference is only noted as within tolerance."""
        report = await validator_for(trusted_12500).cross_check(
            [{"total_sales": 12562.50}], QUESTION, TENANT_A
        )
        assert report.is_valid
        assert not report.has_discrepancy
        assert all("within" in w for w in report.warnings)
        assert report.difference_percent == 0.5

    @pytest.mark.asyncio
    async def test_non_monetary_metric(self) -> None:
        """Test that order counts are compared without currency formatting."""
        service = StubAggregationService(values={"orderCount": 40})
        report = await validator_for(service).cross_check(
            [{"order_count": 50}], "How many orders did I have today?", TENANT_A
        )
        assert report.has_discrepancy
        assert "$" not in report.warnings[0]


class TestSkipRules:
    """Tests for the conditions under which no comparison is made."""

    @pytest.mark.asyncio
    async def test_unavailable_trusted_value(self) -> None:
        """Test that collaborator errors skip instead of failing."""
        service = StubAggregationService(error=ConnectionError("aggregation service down"))
        report = await validator_for(service).cross_check(
            [{"total_sales": 100.0}], QUESTION, TENANT_A
        )
        assert not report.performed
        assert report.is_valid
        assert "validation skipped" in report.skipped_reason

    @pytest.mark.asyncio
    async def test_trusted_timeout(self) -> None:
        """Test that a slow collaborator skips the cross-check."""
        service = StubAggregationService(values={"sales": sales_summary(1.0)}, delay_s=2.0)
        report = await validator_for(service).cross_check(
            [{"total_sales": 100.0}], QUESTION, TENANT_A
        )
        assert not report.performed
        assert "timed out" in report.skipped_reason

    @pytest.mark.asyncio
    async def test_no_metric(self, trusted_12500: StubAggregationService) -> None:
        """Test that questions without a canonical metric are skipped."""
        report = await validator_for(trusted_12500).cross_check(
            [{"tables": 4}], "How many tables are open today?", TENANT_A
        )
        assert not report.performed
        assert trusted_12500.calls == []

    @pytest.mark.asyncio
    async def test_narrowed_question(self, trusted_12500: StubAggregationService) -> None:
        """Test that a filtered question is not compared with the unfiltered metric."""
        report = await validator_for(trusted_12500).cross_check(
            [{"total_sales": 300.0}], "¿Cuánto vendí hoy en efectivo?", TENANT_A
        )
        assert not report.performed
        assert "filter" in report.skipped_reason

    @pytest.mark.asyncio
    async def test_no_period(self, trusted_12500: StubAggregationService) -> None:
        """Test that a question without a period is skipped."""
        report = await validator_for(trusted_12500).cross_check(
            [{"total_sales": 300.0}], "¿Cuánto dinero ingresó?", TENANT_A
        )
        assert not report.performed

    @pytest.mark.asyncio
    async def test_empty_result(self, trusted_12500: StubAggregationService) -> None:
        """Test that an empty result is valid by definition."""
        report = await validator_for(trusted_12500).cross_check([], QUESTION, TENANT_A)
        assert not report.performed
        assert report.is_valid


class TestEntityComparison:
    """Tests for ranking comparisons."""

    @pytest.mark.asyncio
    async def test_top_product_mismatch(self) -> None:
        """Test that a different leading product is flagged."""
        service = StubAggregationService(
            values={"topProducts": [TopProduct(name="Pizza Margarita", quantity=40, revenue=7200.0)]}
        )
        report = await validator_for(service).cross_check(
            [{"product_name": "Limonada", "quantity": 90}],
            "¿Cuáles son mis productos más vendidos este mes?",
            TENANT_A,
        )
        assert report.performed
        assert report.has_discrepancy

    @pytest.mark.asyncio
    async def test_top_product_match(self) -> None:
        """Test that the same leading product passes."""
        service = StubAggregationService(
            values={"topProducts": [TopProduct(name="Pizza Margarita", quantity=40, revenue=7200.0)]}
        )
        report = await validator_for(service).cross_check(
            [{"product_name": "pizza margarita", "quantity": 40}],
            "top products this month",
            TENANT_A,
        )
        assert report.performed
        assert report.warnings == []


@pytest.mark.asyncio
async def test_cross_check_is_audited(
    trusted_12500: StubAggregationService,
    audit_trail: AuditTrail,
    audit_sink: InMemoryAuditSink,
) -> None:
    """Test that every cross-check produces an audit record."""
    await validator_for(trusted_12500, audit_trail).cross_check(
        [{"total_sales": 12750.0}], QUESTION, TENANT_A, "u1"
    )
    records = audit_sink.of_type(AuditEventType.CROSS_CHECK_COMPLETED)
    assert len(records) == 1
    assert records[0].user_id == "u1"
    assert records[0].details["differencePercent"] == 2.0


class TestTipPercentage:
    """Tests for tip-percentage recomputation."""

    TIP_QUESTION = "¿Qué porcentaje de propinas tuve este mes?"

    @staticmethod
    def validator_with_facts(tip_percent: float | None) -> CrossCheckValidator:
        """Build a validator whose fact lookup reports ``tip_percent``."""
        service = StubAggregationService(tip_percent=tip_percent)
        return CrossCheckValidator(TrustedAggregationGateway(service), fact_lookup=service)

    @pytest.mark.asyncio
    async def test_inconsistent_row_flagged(self) -> None:
        """Test that a percentage contradicting its own totals is a mismatch."""
        rows = [{"total_tips": 150.0, "total_sales": 1500.0, "tip_percent": 15.0}]
        report = await self.validator_with_facts(None).cross_check(rows, self.TIP_QUESTION, TENANT_A)

        assert report.performed
        assert report.has_discrepancy
        assert report.trusted_value == 10.0
        assert report.candidate_value == 15.0

    @pytest.mark.asyncio
    async def test_consistent_row_passes(self) -> None:
        """Test that a percentage matching its own totals has no warning."""
        rows = [{"total_tips": 150.0, "total_sales": 1500.0, "tip_percent": 10.0}]
        report = await self.validator_with_facts(None).cross_check(rows, self.TIP_QUESTION, TENANT_A)
        assert report.performed
        assert report.warnings == []

    @pytest.mark.asyncio
    async def test_compared_with_fact_lookup(self) -> None:
        """Test that a bare percentage is compared with the tenant's payments."""
        validator = self.validator_with_facts(10.0)
        far = await validator.cross_check([{"tip_percent": 13.5}], self.TIP_QUESTION, TENANT_A)
        near = await validator.cross_check([{"tip_percent": 11.0}], self.TIP_QUESTION, TENANT_A)

        assert far.has_discrepancy
        assert not near.has_discrepancy
        assert near.warnings == ["Minor difference (1.00 points) in tip percentage"]

    @pytest.mark.asyncio
    async def test_no_independent_value(self) -> None:
        """Test that the check is skipped without totals or facts."""
        report = await self.validator_with_facts(None).cross_check(
            [{"tip_percent": 13.5}], self.TIP_QUESTION, TENANT_A
        )
        assert not report.performed
