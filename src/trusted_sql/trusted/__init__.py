"""
Trusted Aggregation Module
==========================

Deterministic metric computation used as a fast path for simple questions and
as ground truth for cross-checking generated SQL.
"""

from trusted_sql.trusted.gateway import (
    AggregationService,
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

__all__ = [
    "AggregationService",
    "ReviewStats",
    "SalesSummary",
    "TopProduct",
    "TrustedAggregationGateway",
    "TrustedMetric",
    "leading_entity",
    "primary_value",
    "to_jsonable",
    "DateRange",
    "Period",
    "resolve_period",
]
