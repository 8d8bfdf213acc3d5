"""
Data Models
===========

Core data structures for the query-trust pipeline.

Every entity here lives for the duration of one ``process_query`` call.
Metadata that leaves the pipeline is rendered with camelCase keys because
dashboard consumers already rely on those names.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class VerificationStatus(Enum):
    """Status of a verification check."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class VerificationResult:
    """Result of a single verification step."""

    verifier_name: str
    status: VerificationStatus
    message: str
    details: dict = field(default_factory=dict)


class RouteTier(Enum):
    """Execution strategy chosen for a question."""

    TRUSTED = "TrustedAggregation"
    SINGLE = "SingleGeneration"
    CONSENSUS = "ConsensusVoting"


class ConfidenceLevel(Enum):
    """Confidence tier derived from consensus agreement."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ViolationType(Enum):
    """Category of a tenant-isolation validation failure."""

    MISSING_TENANT_FILTER = "missing_tenant_filter"
    CROSS_TENANT_ACCESS = "cross_tenant_access"
    DANGEROUS_OPERATION = "dangerous_operation"
    UNAUTHORIZED_TABLE = "unauthorized_table"
    SQL_INJECTION_ATTEMPT = "sql_injection_attempt"


class CandidateStatus(Enum):
    """Terminal state of one generate -> validate -> execute attempt."""

    SUCCEEDED = "succeeded"
    GENERATION_FAILED = "generation_failed"
    VALIDATION_FAILED = "validation_failed"
    EXECUTION_FAILED = "execution_failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class Question:
    """A natural-language question asked by one user of one tenant."""

    text: str
    tenant_id: str
    user_id: str
    asked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class Classification:
    """Routing decision for a question."""

    tier: RouteTier
    matched_intent: str | None = None
    period: str | None = None
    complexity_signals: tuple[str, ...] = ()
    importance_signals: tuple[str, ...] = ()

    @property
    def is_complex(self) -> bool:
        return bool(self.complexity_signals)

    @property
    def is_important(self) -> bool:
        return bool(self.importance_signals)


@dataclass
class ValidationOutcome:
    """Result of the tenant-isolation validator for one SQL statement."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    has_tenant_filter: bool = False
    tenant_filter_value: str | None = None
    warnings: list[str] = field(default_factory=list)
    violation_type: ViolationType | None = None
    tables_accessed: list[str] = field(default_factory=list)
    has_subqueries: bool = False
    has_joins: bool = False
    suspicious_patterns: list[str] = field(default_factory=list)

    @classmethod
    def rejected(
        cls, error: str, violation_type: ViolationType | None = None
    ) -> "ValidationOutcome":
        """Build a failed outcome carrying a single error."""
        return cls(valid=False, errors=[error], violation_type=violation_type)


@dataclass
class ExecutionOutcome:
    """Rows (or an error) produced by running a validated statement."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class SqlCandidate:
    """One independently generated SQL statement and what happened to it."""

    sql_text: str
    generation_index: int
    validation: ValidationOutcome
    execution: ExecutionOutcome | None = None
    status: CandidateStatus = CandidateStatus.VALIDATION_FAILED
    error: str | None = None
    model: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == CandidateStatus.SUCCEEDED

    @property
    def rows(self) -> list[dict[str, Any]]:
        if self.execution is None:
            return []
        return self.execution.rows


@dataclass
class ConsensusReport:
    """Agreement summary across the consensus candidates."""

    total_generations: int
    successful_executions: int
    majority_group_size: int
    agreement_percent: int | None
    confidence: ConfidenceLevel
    failures: list[str] = field(default_factory=list)
    candidate_statuses: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalGenerations": self.total_generations,
            "successfulExecutions": self.successful_executions,
            "majorityGroupSize": self.majority_group_size,
            "agreementPercent": self.agreement_percent,
            "confidence": self.confidence.value,
            "failures": list(self.failures),
            "candidateStatuses": list(self.candidate_statuses),
        }


@dataclass
class CrossCheckReport:
    """Comparison of a generated result with the trusted aggregation path."""

    performed: bool
    is_valid: bool = True
    warnings: list[str] = field(default_factory=list)
    skipped_reason: str | None = None
    trusted_value: float | None = None
    candidate_value: float | None = None
    difference_percent: float | None = None

    @classmethod
    def skipped(cls, reason: str) -> "CrossCheckReport":
        return cls(performed=False, is_valid=True, skipped_reason=reason)

    @property
    def has_discrepancy(self) -> bool:
        return any("mismatch" in w for w in self.warnings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "performed": self.performed,
            "isValid": self.is_valid,
            "warnings": list(self.warnings),
            "skippedReason": self.skipped_reason,
            "trustedValue": self.trusted_value,
            "candidateValue": self.candidate_value,
            "differencePercent": self.difference_percent,
        }


@dataclass
class PlausibilityReport:
    """Outcome of the blocking anti-fabrication checks."""

    passed: bool
    failure_reasons: list[str] = field(default_factory=list)
    checks: list[VerificationResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "failureReasons": list(self.failure_reasons),
            "checks": [
                {"name": c.verifier_name, "status": c.status.value, "message": c.message}
                for c in self.checks
            ],
        }


@dataclass
class AnswerMetadata:
    """Metadata attached to every final answer."""

    routed_to: RouteTier
    consensus_voting: ConsensusReport | None = None
    cross_check: CrossCheckReport | None = None
    plausibility: PlausibilityReport | None = None
    result_validation_failed: bool = False
    matched_intent: str | None = None
    period: str | None = None
    fallback_from: RouteTier | None = None
    candidate_statuses: list[str] = field(default_factory=list)
    rows_returned: int | None = None
    processing_time_ms: float | None = None
    confidence_caps: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "routedTo": self.routed_to.value,
            "resultValidationFailed": self.result_validation_failed,
        }
        if self.consensus_voting is not None:
            data["consensusVoting"] = self.consensus_voting.to_dict()
        if self.cross_check is not None:
            data["crossCheck"] = self.cross_check.to_dict()
        if self.plausibility is not None:
            data["plausibility"] = self.plausibility.to_dict()
        if self.matched_intent is not None:
            data["matchedIntent"] = self.matched_intent
        if self.period is not None:
            data["period"] = self.period
        if self.fallback_from is not None:
            data["fallbackFrom"] = self.fallback_from.value
        if self.candidate_statuses:
            data["candidateStatuses"] = list(self.candidate_statuses)
        if self.rows_returned is not None:
            data["rowsReturned"] = self.rows_returned
        if self.processing_time_ms is not None:
            data["processingTimeMs"] = round(self.processing_time_ms, 2)
        if self.confidence_caps:
            data["confidenceCaps"] = list(self.confidence_caps)
        return data


@dataclass
class FinalAnswer:
    """Structured answer returned for every question, including failures."""

    text: str
    confidence_score: float
    query_result: Any
    metadata: AnswerMetadata
    sql_query: str | None = None
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "confidenceScore": self.confidence_score,
            "queryResult": self.query_result,
            "sqlQuery": self.sql_query,
            "metadata": self.metadata.to_dict(),
            "suggestions": list(self.suggestions),
        }


@dataclass
class LLMResponse:
    """Response from an LLM call."""

    content: str
    model: str
    tokens_used: int = 0


@dataclass(frozen=True)
class PromptContext:
    """Everything a text-generation provider needs for one SQL generation."""

    question: str
    tenant_id: str
    prompt: str
    system_prompt: str
    generation_index: int = 0
    temperature: float = 0.0
