"""
Base Verifier Classes
=====================

Abstract base class and verification chain for post-execution result checks.
"""

from abc import ABC, abstractmethod
from typing import Any

from trusted_sql.models import VerificationResult, VerificationStatus


class ResultCheck(ABC):
    """Base class for checks that inspect executed rows."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique name for this check."""
        pass

    @abstractmethod
    async def verify(self, rows: list[dict[str, Any]], context: dict) -> VerificationResult:
        """
        Verify the rows against this check's rules.

        Args:
            rows: Rows returned by the candidate query
            context: Question text, tenant id, clock and lookups

        Returns:
            VerificationResult indicating pass/fail/skip with details
        """
        pass

    def passed(self, message: str, **details: Any) -> VerificationResult:
        return VerificationResult(self.name, VerificationStatus.PASSED, message, details)

    def failed(self, message: str, **details: Any) -> VerificationResult:
        return VerificationResult(self.name, VerificationStatus.FAILED, message, details)

    def skipped(self, message: str, **details: Any) -> VerificationResult:
        return VerificationResult(self.name, VerificationStatus.SKIPPED, message, details)


class VerificationChain:
    """Runs every check in sequence, collecting all results."""

    def __init__(self, checks: list[ResultCheck]) -> None:
        self.checks = checks

    async def run(
        self, rows: list[dict[str, Any]], context: dict
    ) -> tuple[bool, list[VerificationResult]]:
        """
        Run all checks. Returns (all_passed, results).

        Unlike SQL validation, result checks do not stop at the first failure:
        every failure reason is reported.
        """
        results = []
        for check in self.checks:
            results.append(await check.verify(rows, context))

        all_passed = all(r.status != VerificationStatus.FAILED for r in results)
        return all_passed, results
