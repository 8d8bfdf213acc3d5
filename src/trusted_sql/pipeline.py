"""
Query Pipeline
==============

Main entry point: answers a natural-language question with a FinalAnswer.

The pipeline:
1. Classifies the question (trusted / single / consensus)
2. Answers from trusted aggregation, or generates and validates SQL
3. Cross-checks generated results against the trusted path (advisory)
4. Blocks results that fail plausibility checks
5. Returns an answer with a confidence score and metadata, never an exception
   for candidate-level failures
"""

import asyncio
import time

import structlog
import structlog.contextvars
from opentelemetry import trace

from trusted_sql.answers import (
    NO_ANSWER_CONFIDENCE,
    PLAUSIBILITY_FAILED_CONFIDENCE,
    AnswerFormatter,
    confidence_caps,
    confidence_score,
    suggest_follow_ups,
)
from trusted_sql.audit import AuditEventType, AuditSink, AuditTrail
from trusted_sql.candidate import CandidateRunner
from trusted_sql.config import PipelineSettings
from trusted_sql.consensus import ConsensusEngine
from trusted_sql.datastore.base import DataExecutor
from trusted_sql.errors import TrustedValueUnavailable
from trusted_sql.llm.base import LLMInterface
from trusted_sql.models import (
    AnswerMetadata,
    CandidateStatus,
    ConfidenceLevel,
    ConsensusReport,
    FinalAnswer,
    Question,
    RouteTier,
    SqlCandidate,
)
from trusted_sql.routing import RoutingClassifier, detect_intent
from trusted_sql.trusted.gateway import AggregationService, TrustedAggregationGateway, to_jsonable
from trusted_sql.trusted.periods import Clock
from trusted_sql.validators.crosscheck import CrossCheckValidator
from trusted_sql.validators.plausibility import FactLookup, PlausibilityValidator
from trusted_sql.validators.tenant import TenantIsolationValidator

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


class QueryPipeline:
    """
    Orchestrates routing, generation, consensus and validation for one question.

    Holds no per-question state: ``process_query`` is safe to call
    concurrently for different tenants and users.
    """

    def __init__(
        self,
        llm: LLMInterface,
        executor: DataExecutor,
        aggregation: AggregationService,
        settings: PipelineSettings | None = None,
        audit_sink: AuditSink | None = None,
        fact_lookup: FactLookup | None = None,
        classifier: RoutingClassifier | None = None,
        clock: Clock | None = None,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            llm: LLM interface for SQL generation
            executor: Read-only data executor
            aggregation: Trusted aggregation service
            settings: Pipeline settings (defaults if omitted)
            audit_sink: Destination for audit events (structlog if omitted)
            fact_lookup: Facts for plausibility checks; the aggregation service
                         is used when it also implements FactLookup
            classifier: Routing classifier
            clock: Current-time source for period and date checks
        """
        self.settings = settings or PipelineSettings()
        self.audit = AuditTrail(audit_sink)
        self.classifier = classifier or RoutingClassifier(self.settings.default_period)
        self.formatter = AnswerFormatter()

        if fact_lookup is None and isinstance(aggregation, FactLookup):
            fact_lookup = aggregation

        self.gateway = TrustedAggregationGateway(aggregation, timeout_s=self.settings.trusted_deadline_s)
        self.validator = TenantIsolationValidator.from_settings(self.settings)
        self.runner = CandidateRunner(llm, executor, self.validator, self.settings, self.audit)
        self.consensus = ConsensusEngine(self.runner, self.settings, self.audit)
        self.cross_checker = CrossCheckValidator(
            self.gateway,
            self.settings.cross_check_tolerance,
            self.audit,
            fact_lookup=fact_lookup,
            default_period=self.settings.default_period,
        )
        self.plausibility = PlausibilityValidator(
            fact_lookup=fact_lookup,
            timezone=self.settings.timezone,
            max_amount_factor=self.settings.max_plausible_amount_factor,
            clock=clock,
            audit=self.audit,
        )

    async def process_query(self, question: Question) -> FinalAnswer:
        """
        Answer one question.

        Args:
            question: Question text scoped to a tenant and user

        Returns:
            FinalAnswer; failures degrade confidence instead of raising
        """
        started = time.perf_counter()
        with structlog.contextvars.bound_contextvars(
            tenant_id=question.tenant_id, user_id=question.user_id
        ), tracer.start_as_current_span("process_query") as span:
            span.set_attribute("tenant.id", question.tenant_id)
            answer = await self._process(question)
            span.set_attribute("route.tier", answer.metadata.routed_to.value)
            span.set_attribute("answer.confidence", answer.confidence_score)

        answer.metadata.processing_time_ms = (time.perf_counter() - started) * 1000
        self.audit.record(
            AuditEventType.QUERY_COMPLETED,
            question.tenant_id,
            question.user_id,
            routed_to=answer.metadata.routed_to.value,
            confidence_score=answer.confidence_score,
            result_validation_failed=answer.metadata.result_validation_failed,
        )
        logger.info(
            "query_completed",
            tenant_id=question.tenant_id,
            routed_to=answer.metadata.routed_to.value,
            confidence_score=answer.confidence_score,
            processing_time_ms=round(answer.metadata.processing_time_ms, 2),
        )
        return answer

    async def _process(self, question: Question) -> FinalAnswer:
        self.audit.record(
            AuditEventType.QUERY_RECEIVED, question.tenant_id, question.user_id, question=question.text
        )
        classification = self.classifier.classify(question)
        self.audit.record(
            AuditEventType.QUERY_ROUTED,
            question.tenant_id,
            question.user_id,
            tier=classification.tier.value,
            matched_intent=classification.matched_intent,
            complexity_signals=list(classification.complexity_signals),
            importance_signals=list(classification.importance_signals),
        )

        if classification.tier == RouteTier.TRUSTED:
            try:
                return await self._answer_trusted(question, classification.matched_intent, classification.period)
            except TrustedValueUnavailable as e:
                logger.warning(
                    "trusted_path_unavailable_falling_back",
                    tenant_id=question.tenant_id,
                    metric=classification.matched_intent,
                    error=str(e),
                )
                return await self._answer_single(question, fallback_from=RouteTier.TRUSTED)

        if classification.tier == RouteTier.CONSENSUS:
            return await self._answer_consensus(question)
        return await self._answer_single(question)

    async def _answer_trusted(self, question: Question, metric: str, period: str) -> FinalAnswer:
        value = await self.gateway.compute_trusted(metric, question.tenant_id, period)
        return FinalAnswer(
            text=self.formatter.for_trusted(metric, value, period),
            confidence_score=confidence_score(RouteTier.TRUSTED),
            query_result=to_jsonable(value),
            metadata=AnswerMetadata(
                routed_to=RouteTier.TRUSTED,
                matched_intent=metric,
                period=period,
            ),
            suggestions=suggest_follow_ups(metric),
        )

    async def _answer_single(
        self, question: Question, fallback_from: RouteTier | None = None
    ) -> FinalAnswer:
        try:
            candidate = await asyncio.wait_for(
                self.runner.run_candidate(
                    question.text, question.tenant_id, user_id=question.user_id
                ),
                timeout=self.settings.single_deadline_s,
            )
        except asyncio.TimeoutError:
            logger.warning("single_generation_deadline_exceeded", tenant_id=question.tenant_id)
            candidate = None

        metadata = AnswerMetadata(
            routed_to=RouteTier.SINGLE,
            fallback_from=fallback_from,
            candidate_statuses=[candidate.status.value if candidate else CandidateStatus.TIMED_OUT.value],
        )
        if candidate is None or not candidate.succeeded:
            return self._no_answer(metadata, candidate)
        return await self._finish(question, candidate, metadata, consensus=None)

    async def _answer_consensus(self, question: Question) -> FinalAnswer:
        report, winner = await self.consensus.run_consensus(
            question.text, question.tenant_id, question.user_id
        )
        metadata = AnswerMetadata(
            routed_to=RouteTier.CONSENSUS,
            consensus_voting=report,
            candidate_statuses=list(report.candidate_statuses),
        )
        if winner is None:
            return self._no_answer(metadata, None)
        return await self._finish(question, winner, metadata, consensus=report)

    async def _finish(
        self,
        question: Question,
        candidate: SqlCandidate,
        metadata: AnswerMetadata,
        consensus: ConsensusReport | None,
    ) -> FinalAnswer:
        rows = candidate.rows
        metadata.rows_returned = len(rows)

        cross_check = await self.cross_checker.cross_check(
            rows, question.text, question.tenant_id, question.user_id
        )
        plausibility = await self.plausibility.validate_plausibility(
            rows, question.text, question.tenant_id, question.user_id
        )
        metadata.cross_check = cross_check
        metadata.plausibility = plausibility

        if not plausibility.passed:
            metadata.result_validation_failed = True
            return FinalAnswer(
                text=self.formatter.PLAUSIBILITY_REFUSAL,
                confidence_score=PLAUSIBILITY_FAILED_CONFIDENCE,
                query_result=None,
                metadata=metadata,
                sql_query=candidate.sql_text,
                suggestions=suggest_follow_ups(failed=True),
            )

        metric = detect_intent(question.text, allow_loose=True)
        text = self.formatter.for_rows(rows, metric)
        level = consensus.confidence if consensus is not None else None
        if level == ConfidenceLevel.LOW:
            text = self.formatter.low_confidence(text)
        caps = confidence_caps(question.text, candidate.sql_text)
        metadata.confidence_caps = sorted(caps)

        return FinalAnswer(
            text=text,
            confidence_score=confidence_score(
                metadata.routed_to, level, cross_check_warning=cross_check.has_discrepancy, caps=caps
            ),
            query_result=rows,
            metadata=metadata,
            sql_query=candidate.sql_text,
            suggestions=suggest_follow_ups(metric),
        )

    def _no_answer(self, metadata: AnswerMetadata, candidate: SqlCandidate | None) -> FinalAnswer:
        logger.warning(
            "all_candidates_failed",
            routed_to=metadata.routed_to.value,
            error=candidate.error if candidate is not None else "deadline exceeded",
        )
        metadata.rows_returned = 0
        return FinalAnswer(
            text=self.formatter.NO_ANSWER,
            confidence_score=NO_ANSWER_CONFIDENCE,
            query_result=None,
            metadata=metadata,
            suggestions=suggest_follow_ups(failed=True),
        )


async def process_query(pipeline: QueryPipeline, text: str, tenant_id: str, user_id: str) -> FinalAnswer:
    """Convenience wrapper building the Question for ``pipeline``."""
    return await pipeline.process_query(Question(text=text, tenant_id=tenant_id, user_id=user_id))
