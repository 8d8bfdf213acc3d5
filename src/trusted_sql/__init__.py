"""
Trusted SQL
===========

Query-trust pipeline for natural-language sales questions answered with
generated SQL: tenant-isolation validation, routing, consensus voting,
cross-checks against trusted aggregations and plausibility blocking.
"""

from trusted_sql.models import (
    AnswerMetadata,
    CandidateStatus,
    Classification,
    ConfidenceLevel,
    ConsensusReport,
    CrossCheckReport,
    ExecutionOutcome,
    FinalAnswer,
    LLMResponse,
    PlausibilityReport,
    PromptContext,
    Question,
    RouteTier,
    SqlCandidate,
    ValidationOutcome,
    VerificationResult,
    VerificationStatus,
    ViolationType,
)
from trusted_sql.config import PipelineSettings
from trusted_sql.audit import AuditEventType, AuditSink, AuditTrail, InMemoryAuditSink, StructlogAuditSink
from trusted_sql.routing import RoutingClassifier
from trusted_sql.candidate import CandidateRunner
from trusted_sql.consensus import ConsensusEngine
from trusted_sql.pipeline import QueryPipeline, process_query
from trusted_sql.validators import (
    CrossCheckValidator,
    FactLookup,
    PlausibilityValidator,
    TenantIsolationValidator,
    extract_column_name,
    validate_query,
)
from trusted_sql.trusted import AggregationService, TrustedAggregationGateway, TrustedMetric
from trusted_sql.llm import LLMInterface, MockLLM
from trusted_sql.datastore import DataExecutor, SqliteExecutor

__version__ = "0.1.0"

__all__ = [
    # Models
    "AnswerMetadata",
    "CandidateStatus",
    "Classification",
    "ConfidenceLevel",
    "ConsensusReport",
    "CrossCheckReport",
    "ExecutionOutcome",
    "FinalAnswer",
    "LLMResponse",
    "PlausibilityReport",
    "PromptContext",
    "Question",
    "RouteTier",
    "SqlCandidate",
    "ValidationOutcome",
    "VerificationResult",
    "VerificationStatus",
    "ViolationType",
    # Config and audit
    "PipelineSettings",
    "AuditEventType",
    "AuditSink",
    "AuditTrail",
    "InMemoryAuditSink",
    "StructlogAuditSink",
    # Pipeline
    "RoutingClassifier",
    "CandidateRunner",
    "ConsensusEngine",
    "QueryPipeline",
    "process_query",
    # Validators
    "CrossCheckValidator",
    "FactLookup",
    "PlausibilityValidator",
    "TenantIsolationValidator",
    "extract_column_name",
    "validate_query",
    # Collaborators
    "AggregationService",
    "TrustedAggregationGateway",
    "TrustedMetric",
    "LLMInterface",
    "MockLLM",
    "DataExecutor",
    "SqliteExecutor",
]
