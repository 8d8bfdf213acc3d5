"""
Unit Tests for Answer Formatting
================================

Tests for answer templates, confidence scores and follow-up suggestions.
"""

import pytest

from trusted_sql.answers import (
    AVERAGE_CAP,
    DIVISION_CAP,
    FALLBACK_SUGGESTIONS,
    PERCENTAGE_CAP,
    AnswerFormatter,
    confidence_caps,
    confidence_score,
    suggest_follow_ups,
)
from trusted_sql.models import ConfidenceLevel, RouteTier


@pytest.fixture
def formatter() -> AnswerFormatter:
    """Create an AnswerFormatter."""
    return AnswerFormatter()


class TestForRows:
    """Tests for AnswerFormatter.for_rows."""

    def test_null_aggregate_is_no_data(self, formatter: AnswerFormatter) -> None:
        """Test that a SUM over no rows is not reported as a value."""
        text = formatter.for_rows([{"total_sales": None}], "sales")
        assert text == AnswerFormatter.NO_DATA
        assert "None" not in text

    def test_all_null_columns_is_no_data(self, formatter: AnswerFormatter) -> None:
        """Test that a row of NULL aggregates is no data."""
        assert formatter.for_rows([{"total_sales": None, "avg_ticket": None}]) == AnswerFormatter.NO_DATA

    def test_empty_result_is_no_data(self, formatter: AnswerFormatter) -> None:
        """Test that an empty result set is no data."""
        assert formatter.for_rows([]) == AnswerFormatter.NO_DATA

    def test_single_value(self, formatter: AnswerFormatter) -> None:
        """Test a single monetary cell."""
        assert formatter.for_rows([{"total_sales": 750.0}], "sales") == "The result is $750.00 (total_sales)."

    def test_partial_nulls_still_answer(self, formatter: AnswerFormatter) -> None:
        """Test that a row with some values is still rendered."""
        text = formatter.for_rows([{"name": "Limonada", "revenue": None, "qty": 4}])
        assert text.startswith("The top result is Limonada")


class TestConfidenceCaps:
    """Tests for confidence_caps and confidence_score."""

    def test_percentage_question(self) -> None:
        """Test that percentage questions are capped."""
        assert confidence_caps("¿Qué porcentaje de mis ventas fue en efectivo?", "SELECT 1") == {
            "percentage": PERCENTAGE_CAP
        }
        assert "percentage" in confidence_caps("What % of payments were cash?", None)

    def test_average_question(self) -> None:
        """Test that average questions are capped."""
        assert confidence_caps("¿Cuál fue el promedio por mesa?", None) == {"average": AVERAGE_CAP}

    def test_unguarded_division(self) -> None:
        """Test that division is capped unless a CASE guards the denominator."""
        assert confidence_caps("tips vs sales", "SELECT SUM(tipAmount) / SUM(amount)") == {
            "division": DIVISION_CAP
        }
        guarded = "SELECT CASE WHEN SUM(amount) > 0 THEN SUM(tipAmount) / SUM(amount) END"
        assert confidence_caps("tips vs sales", guarded) == {}

    def test_plain_question_uncapped(self) -> None:
        """Test that ordinary questions have no caps."""
        assert confidence_caps("How much did I sell today?", "SELECT SUM(amount)") == {}

    @pytest.mark.parametrize(
        "tier,level,caps,expected",
        [
            (RouteTier.SINGLE, None, {"percentage": 0.7}, 0.7),
            (RouteTier.SINGLE, None, {"division": 0.8}, 0.8),
            (RouteTier.CONSENSUS, ConfidenceLevel.HIGH, {"average": 0.75}, 0.75),
            (RouteTier.CONSENSUS, ConfidenceLevel.HIGH, {"division": 0.8, "average": 0.75}, 0.75),
            (RouteTier.CONSENSUS, ConfidenceLevel.LOW, {"percentage": 0.7}, 0.4),
        ],
    )
    def test_caps_lower_score(self, tier, level, caps, expected) -> None:
        """Test that the lowest applicable cap wins and never raises a score."""
        assert confidence_score(tier, level, caps=caps) == expected


class TestSuggestions:
    """Tests for suggest_follow_ups."""

    def test_excludes_asked_metric(self) -> None:
        """Test that suggestions point at other metrics."""
        suggestions = suggest_follow_ups("topProducts")
        assert len(suggestions) == 3
        assert all("top products" not in s for s in suggestions)

    def test_failure_suggestions(self) -> None:
        """Test that failures suggest questions the trusted path answers."""
        assert suggest_follow_ups("sales", failed=True) == list(FALLBACK_SUGGESTIONS)

    def test_limit(self) -> None:
        """Test the suggestion limit."""
        assert len(suggest_follow_ups(None, limit=2)) == 2
