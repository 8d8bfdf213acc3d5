"""
Validators Module
=================

Tenant-isolation validation for generated SQL, plus the cross-check and
plausibility checks applied to its results.
"""

from trusted_sql.validators.base import ResultCheck, VerificationChain
from trusted_sql.validators.columns import extract_column_name
from trusted_sql.validators.crosscheck import CrossCheckValidator
from trusted_sql.validators.plausibility import FactLookup, PlausibilityValidator
from trusted_sql.validators.tenant import TenantIsolationValidator, validate_query

__all__ = [
    "ResultCheck",
    "VerificationChain",
    "extract_column_name",
    "CrossCheckValidator",
    "FactLookup",
    "PlausibilityValidator",
    "TenantIsolationValidator",
    "validate_query",
]
