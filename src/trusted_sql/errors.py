"""
Errors
======

Exception taxonomy for the query-trust pipeline.

Candidate-level failures (generation, validation, execution, timeout) are
caught by the candidate runner and recorded on the candidate; they never reach
the caller of ``process_query``.
"""

from trusted_sql.models import ValidationOutcome


class TrustedSqlError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(TrustedSqlError):
    """Invalid pipeline settings."""


class SecurityValidationError(TrustedSqlError):
    """Generated SQL failed the tenant-isolation validator."""

    def __init__(self, outcome: ValidationOutcome) -> None:
        self.outcome = outcome
        super().__init__("; ".join(outcome.errors) or "SQL rejected by security validation")


class GenerationError(TrustedSqlError):
    """The text-generation provider failed or returned unusable output."""


class ExecutionError(TrustedSqlError):
    """The data store rejected an otherwise valid query."""


class CandidateTimeoutError(TrustedSqlError):
    """A candidate did not finish within its time budget."""

    def __init__(self, timeout_s: float) -> None:
        self.timeout_s = timeout_s
        super().__init__(f"Candidate exceeded {timeout_s:.1f}s timeout")


class TrustedValueUnavailable(TrustedSqlError):
    """The trusted aggregation collaborator could not produce a value."""

    def __init__(self, metric: str, reason: str | None = None) -> None:
        self.metric = metric
        self.reason = reason
        message = f"Trusted value unavailable for metric '{metric}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class UnsupportedMetricError(TrustedSqlError):
    """A metric name that the trusted gateway does not know."""

