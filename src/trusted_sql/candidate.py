"""
Candidate Runner
================

One "generate SQL -> validate -> execute" attempt.

A candidate never raises: every failure is recorded on the returned
SqlCandidate so that sibling candidates and the caller keep going. Retry
policy belongs to the caller.
"""

import asyncio
import time

import structlog
from opentelemetry import trace

from trusted_sql.audit import AuditEventType, AuditTrail
from trusted_sql.config import PipelineSettings
from trusted_sql.datastore.base import DataExecutor
from trusted_sql.datastore.schema import SCHEMA_CONTEXT, TENANT_COLUMN
from trusted_sql.errors import CandidateTimeoutError, GenerationError, SecurityValidationError
from trusted_sql.llm.base import LLMInterface
from trusted_sql.models import (
    CandidateStatus,
    ExecutionOutcome,
    PromptContext,
    SqlCandidate,
    ValidationOutcome,
)
from trusted_sql.validators.tenant import TenantIsolationValidator

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


class CandidateRunner:
    """Produces SqlCandidates for one question at a time."""

    SYSTEM_PROMPT = """You are a SQL query generator for a restaurant sales analytics assistant.
Convert the user's question into a single SQLite SELECT query for this schema:

{schema}

Rules:
- Generate exactly one SELECT statement; never modify data
- Every table you read MUST be filtered with {tenant_column} = '{tenant_id}' in the
  WHERE clause, joined with AND (never inside an OR)
- Only count orders and payments with status = 'COMPLETED'
- Name result columns descriptively (total_sales, order_count, product_name, ...)
- Add ORDER BY and LIMIT when ranking or "top N" is requested

Return ONLY the SQL query, no explanations."""

    PROMPT_TEMPLATE = "Question: {question}"

    def __init__(
        self,
        llm: LLMInterface,
        executor: DataExecutor,
        validator: TenantIsolationValidator | None = None,
        settings: PipelineSettings | None = None,
        audit: AuditTrail | None = None,
    ) -> None:
        """
        Initialize the runner.

        Args:
            llm: LLM interface for SQL generation
            executor: Read-only data executor
            validator: Tenant-isolation validator (built from settings by default)
            settings: Pipeline settings
            audit: Audit trail for security events
        """
        self.settings = settings or PipelineSettings()
        self.llm = llm
        self.executor = executor
        self.validator = validator or TenantIsolationValidator.from_settings(self.settings)
        self.audit = audit or AuditTrail()

    def build_context(self, question: str, tenant_id: str, generation_index: int = 0) -> PromptContext:
        system_prompt = self.SYSTEM_PROMPT.format(
            schema=SCHEMA_CONTEXT,
            tenant_column=TENANT_COLUMN,
            tenant_id=tenant_id,
        )
        return PromptContext(
            question=question,
            tenant_id=tenant_id,
            prompt=self.PROMPT_TEMPLATE.format(question=question),
            system_prompt=system_prompt,
            generation_index=generation_index,
        )

    def _extract_sql(self, llm_output: str) -> str:
        """Extract SQL from LLM output, handling markdown code blocks."""
        sql = llm_output.strip()
        if sql.startswith("```"):
            lines = sql.split("\n")
            # Remove first and last lines (code block markers)
            sql = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])
        return sql.strip()

    async def run_candidate(
        self,
        question: str,
        tenant_id: str,
        generation_index: int = 0,
        user_id: str | None = None,
    ) -> SqlCandidate:
        """
        Generate, validate and (if valid) execute one SQL candidate.

        Args:
            question: Natural-language question
            tenant_id: Tenant the SQL must be scoped to
            generation_index: Position of this candidate within its run
            user_id: Asking user, for audit records

        Returns:
            SqlCandidate whose status records the terminal state
        """
        with tracer.start_as_current_span("run_candidate") as span:
            span.set_attribute("candidate.generation_index", generation_index)
            candidate = await self._run(question, tenant_id, generation_index, user_id)
            span.set_attribute("candidate.status", candidate.status.value)

        if not candidate.succeeded:
            logger.info(
                "candidate_failed",
                tenant_id=tenant_id,
                generation_index=generation_index,
                status=candidate.status.value,
                error=candidate.error,
            )
            if candidate.status != CandidateStatus.VALIDATION_FAILED:
                self.audit.record(
                    AuditEventType.CANDIDATE_FAILED,
                    tenant_id,
                    user_id,
                    generation_index=generation_index,
                    status=candidate.status.value,
                    error=candidate.error,
                )
        return candidate

    async def _run(
        self, question: str, tenant_id: str, generation_index: int, user_id: str | None
    ) -> SqlCandidate:
        timeout = self.settings.candidate_timeout_s
        started = time.monotonic()
        context = self.build_context(question, tenant_id, generation_index)

        # Generate
        try:
            response = await asyncio.wait_for(self.llm.generate(context), timeout=timeout)
            sql = self._extract_sql(response.content)
            if not sql:
                raise GenerationError("LLM returned no SQL")
        except asyncio.TimeoutError:
            return self._failed(
                "", generation_index, CandidateStatus.TIMED_OUT, str(CandidateTimeoutError(timeout))
            )
        except Exception as e:
            return self._failed("", generation_index, CandidateStatus.GENERATION_FAILED, str(e))

        # Validate
        validation = self.validator.validate(sql, tenant_id)
        if not validation.valid:
            logger.warning(
                "security_validation_failed",
                tenant_id=tenant_id,
                generation_index=generation_index,
                violation_type=validation.violation_type.value if validation.violation_type else None,
                errors=validation.errors,
            )
            self.audit.record(
                AuditEventType.SECURITY_VALIDATION_FAILED,
                tenant_id,
                user_id,
                generation_index=generation_index,
                sql=sql,
                errors=validation.errors,
                violation_type=validation.violation_type.value if validation.violation_type else None,
            )
            return SqlCandidate(
                sql_text=sql,
                generation_index=generation_index,
                validation=validation,
                status=CandidateStatus.VALIDATION_FAILED,
                error=str(SecurityValidationError(validation)),
                model=response.model,
            )

        # Execute
        remaining = max(timeout - (time.monotonic() - started), 0.001)
        exec_started = time.perf_counter()
        try:
            rows = await asyncio.wait_for(self.executor.execute(sql), timeout=remaining)
        except asyncio.TimeoutError:
            error = str(CandidateTimeoutError(timeout))
            return SqlCandidate(
                sql_text=sql,
                generation_index=generation_index,
                validation=validation,
                execution=ExecutionOutcome(error=error, duration_ms=_elapsed_ms(exec_started)),
                status=CandidateStatus.TIMED_OUT,
                error=error,
                model=response.model,
            )
        except Exception as e:
            return SqlCandidate(
                sql_text=sql,
                generation_index=generation_index,
                validation=validation,
                execution=ExecutionOutcome(error=str(e), duration_ms=_elapsed_ms(exec_started)),
                status=CandidateStatus.EXECUTION_FAILED,
                error=str(e),
                model=response.model,
            )

        return SqlCandidate(
            sql_text=sql,
            generation_index=generation_index,
            validation=validation,
            execution=ExecutionOutcome(rows=rows, duration_ms=_elapsed_ms(exec_started)),
            status=CandidateStatus.SUCCEEDED,
            model=response.model,
        )

    def _failed(
        self, sql: str, generation_index: int, status: CandidateStatus, error: str
    ) -> SqlCandidate:
        return SqlCandidate(
            sql_text=sql,
            generation_index=generation_index,
            validation=ValidationOutcome(valid=False, errors=["SQL was not generated"]),
            status=status,
            error=error,
        )


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)
