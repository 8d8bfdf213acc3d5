"""
Unit Tests for the Candidate Runner
===================================

Tests for one generate -> validate -> execute attempt.
"""

import pytest

from trusted_sql.audit import AuditEventType, AuditTrail, InMemoryAuditSink
from trusted_sql.candidate import CandidateRunner
from trusted_sql.config import PipelineSettings
from trusted_sql.datastore import SqliteExecutor
from trusted_sql.errors import GenerationError
from trusted_sql.llm.mock import MockLLM
from trusted_sql.models import CandidateStatus

from conftest import SALES_TODAY_SQL, TENANT_A, TENANT_A_TODAY_SALES, TENANT_B


class RecordingExecutor(SqliteExecutor):
    """Executor that remembers every statement it ran."""

    def __init__(self, pool) -> None:
        super().__init__(pool)
        self.executed: list[str] = []

    async def execute(self, sql: str):
        self.executed.append(sql)
        return await super().execute(sql)


@pytest.fixture
def recording_executor(pool) -> RecordingExecutor:
    """Executor recording executed SQL."""
    return RecordingExecutor(pool)


@pytest.fixture
def runner_for(settings: PipelineSettings, recording_executor: RecordingExecutor, audit_trail: AuditTrail):
    """Factory for a CandidateRunner around a mock LLM."""

    def _make(llm: MockLLM, runner_settings: PipelineSettings | None = None) -> CandidateRunner:
        return CandidateRunner(
            llm, recording_executor, settings=runner_settings or settings, audit=audit_trail
        )

    return _make


class TestCandidateRunner:
    """Tests for CandidateRunner.run_candidate."""

    @pytest.mark.asyncio
    async def test_success(self, runner_for) -> None:
        """Test that a scoped query executes and returns rows."""
        candidate = await runner_for(MockLLM(default_sql=SALES_TODAY_SQL)).run_candidate(
            "¿Cuánto vendí hoy?", TENANT_A
        )
        assert candidate.status == CandidateStatus.SUCCEEDED
        assert candidate.validation.valid
        assert candidate.rows == [{"total_sales": TENANT_A_TODAY_SALES}]
        assert candidate.model == "mock-llm-v1"

    @pytest.mark.asyncio
    async def test_tenant_substituted_per_request(self, runner_for) -> None:
        """Test that each tenant only sees its own data."""
        runner = runner_for(MockLLM(default_sql=SALES_TODAY_SQL))
        a = await runner.run_candidate("¿Cuánto vendí hoy?", TENANT_A)
        b = await runner.run_candidate("¿Cuánto vendí hoy?", TENANT_B)
        assert a.rows != b.rows

    @pytest.mark.asyncio
    async def test_invalid_sql_never_executes(
        self,
        runner_for,
        recording_executor: RecordingExecutor,
        audit_sink: InMemoryAuditSink,
    ) -> None:
        """Test that rejected SQL short-circuits before execution."""
        llm = MockLLM(default_sql=f"SELECT SUM(total) FROM \"Order\" WHERE venueId = '{TENANT_B}'")
        candidate = await runner_for(llm).run_candidate("ventas", TENANT_A, user_id="u1")

        assert candidate.status == CandidateStatus.VALIDATION_FAILED
        assert candidate.execution is None
        assert recording_executor.executed == []
        records = audit_sink.of_type(AuditEventType.SECURITY_VALIDATION_FAILED)
        assert len(records) == 1
        assert records[0].tenant_id == TENANT_A
        assert records[0].details["violation_type"] == "cross_tenant_access"

    @pytest.mark.asyncio
    async def test_generation_error(self, runner_for, audit_sink: InMemoryAuditSink) -> None:
        """Test that provider failures are recorded, not raised."""
        llm = MockLLM(responses={"ventas": [GenerationError("rate limited")]})
        candidate = await runner_for(llm).run_candidate("ventas", TENANT_A)

        assert candidate.status == CandidateStatus.GENERATION_FAILED
        assert "rate limited" in candidate.error
        assert len(audit_sink.of_type(AuditEventType.CANDIDATE_FAILED)) == 1

    @pytest.mark.asyncio
    async def test_execution_error(self, runner_for) -> None:
        """Test that store errors are recorded on the candidate."""
        llm = MockLLM(default_sql="SELECT missing_column FROM \"Order\" WHERE venueId = '{tenant_id}'")
        candidate = await runner_for(llm).run_candidate("ventas", TENANT_A)

        assert candidate.status == CandidateStatus.EXECUTION_FAILED
        assert candidate.execution is not None
        assert not candidate.execution.succeeded

    @pytest.mark.asyncio
    async def test_generation_timeout(self, runner_for) -> None:
        """Test that a slow provider times the candidate out."""
        llm = MockLLM(default_sql=SALES_TODAY_SQL, latency_s={0: 1.0})
        candidate = await runner_for(llm, PipelineSettings(candidate_timeout_s=0.1)).run_candidate(
            "ventas", TENANT_A
        )
        assert candidate.status == CandidateStatus.TIMED_OUT

    @pytest.mark.asyncio
    async def test_markdown_fences_stripped(self, runner_for) -> None:
        """Test that fenced SQL is unwrapped before validation."""
        llm = MockLLM(default_sql=f"```sql\n{SALES_TODAY_SQL}\n```")
        candidate = await runner_for(llm).run_candidate("ventas", TENANT_A)
        assert candidate.status == CandidateStatus.SUCCEEDED

    def test_prompt_is_tenant_scoped(self, runner_for) -> None:
        """Test that the system prompt names the tenant filter."""
        context = runner_for(MockLLM()).build_context("ventas", TENANT_A, generation_index=2)
        assert f"venueId = '{TENANT_A}'" in context.system_prompt
        assert context.prompt == "Question: ventas"
        assert context.generation_index == 2
