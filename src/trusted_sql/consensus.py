"""
Consensus Engine
================

Runs several independent candidates for the same question concurrently and
reconciles their results by majority vote.

Candidates still running when the question deadline elapses are cancelled and
counted as failed; candidates that already finished are still used.
"""

import asyncio
import math
from dataclasses import dataclass, field
from typing import Any

import structlog
from opentelemetry import trace

from trusted_sql.audit import AuditEventType, AuditTrail
from trusted_sql.candidate import CandidateRunner
from trusted_sql.config import PipelineSettings
from trusted_sql.models import (
    CandidateStatus,
    ConfidenceLevel,
    ConsensusReport,
    SqlCandidate,
    ValidationOutcome,
)
from trusted_sql.results import leading_entity, numeric_columns, numeric_values

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class ResultEquivalence:
    """
    Decides whether two candidate results report the same answer.

    Results agree when both are empty, or when the numeric values of their
    first rows match within ``max(abs_epsilon, rel_epsilon * max(|a|, |b|))``.
    Rows that carry a label (a product, a period) must name the same one, and
    numbers reported under the same column name must still match; a ranking
    whose measures are named differently agrees on its label alone.
    """

    rel_epsilon: float = 0.01
    abs_epsilon: float = 0.005

    def close(self, a: float, b: float) -> bool:
        return math.isclose(a, b, rel_tol=self.rel_epsilon, abs_tol=self.abs_epsilon)

    def equivalent(self, left: list[dict[str, Any]], right: list[dict[str, Any]]) -> bool:
        if not left or not right:
            return not left and not right

        first_left, first_right = left[0], right[0]
        entity_left = leading_entity(first_left)
        entity_right = leading_entity(first_right)
        if entity_left is not None and entity_right is not None:
            if entity_left != entity_right:
                return False
            # Same label: a measure both rows report under one name must also agree
            columns_left = numeric_columns(first_left)
            columns_right = numeric_columns(first_right)
            shared = columns_left.keys() & columns_right.keys()
            return all(self.close(columns_left[key], columns_right[key]) for key in shared)

        values_left = numeric_values(first_left)
        values_right = numeric_values(first_right)
        if not values_left or not values_right:
            return False
        if len(values_left) == len(values_right):
            return all(self.close(a, b) for a, b in zip(values_left, values_right))
        return self.close(values_left[0], values_right[0])


@dataclass
class AgreementGroup:
    """Candidates whose results are equivalent to the representative's."""

    representative: SqlCandidate
    members: list[SqlCandidate] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.members)


def group_candidates(
    candidates: list[SqlCandidate], equivalence: ResultEquivalence
) -> list[AgreementGroup]:
    """Greedy grouping in generation-index order; first match wins."""
    groups: list[AgreementGroup] = []
    for candidate in sorted(candidates, key=lambda c: c.generation_index):
        for group in groups:
            if equivalence.equivalent(group.representative.rows, candidate.rows):
                group.members.append(candidate)
                break
        else:
            groups.append(AgreementGroup(representative=candidate, members=[candidate]))
    return groups


def agreement_percent(majority_size: int, successful: int) -> int | None:
    """Share of successful candidates in the majority, truncated (2 of 3 is 66)."""
    if successful < 2:
        return None
    return int(100 * majority_size / successful)


def confidence_for(agreement: int | None, medium_for_two_of_three: bool = False) -> ConfidenceLevel:
    if agreement is None:
        return ConfidenceLevel.LOW
    if agreement == 100:
        return ConfidenceLevel.HIGH
    if agreement == 66:
        return ConfidenceLevel.MEDIUM if medium_for_two_of_three else ConfidenceLevel.HIGH
    return ConfidenceLevel.LOW


class ConsensusEngine:
    """Majority voting over concurrently generated SQL candidates."""

    def __init__(
        self,
        runner: CandidateRunner,
        settings: PipelineSettings | None = None,
        audit: AuditTrail | None = None,
    ) -> None:
        self.runner = runner
        self.settings = settings or runner.settings
        self.audit = audit or runner.audit
        self.equivalence = ResultEquivalence(
            rel_epsilon=self.settings.equivalence_epsilon,
            abs_epsilon=self.settings.equivalence_abs_epsilon,
        )

    async def run_consensus(
        self,
        question: str,
        tenant_id: str,
        user_id: str | None = None,
    ) -> tuple[ConsensusReport, SqlCandidate | None]:
        """
        Run N candidates concurrently and pick the majority result.

        Returns:
            (ConsensusReport, winning candidate or None when nothing succeeded)
        """
        total = self.settings.consensus_generations
        with tracer.start_as_current_span("run_consensus") as span:
            span.set_attribute("consensus.generations", total)
            candidates = await self._run_all(question, tenant_id, user_id, total)
            report, winner = self.reconcile(candidates, total)
            span.set_attribute("consensus.successful", report.successful_executions)
            if report.agreement_percent is not None:
                span.set_attribute("consensus.agreement_percent", report.agreement_percent)

        logger.info(
            "consensus_completed",
            tenant_id=tenant_id,
            total_generations=report.total_generations,
            successful_executions=report.successful_executions,
            agreement_percent=report.agreement_percent,
            confidence=report.confidence.value,
        )
        self.audit.record(
            AuditEventType.CONSENSUS_COMPLETED,
            tenant_id,
            user_id,
            **report.to_dict(),
            winning_generation=winner.generation_index if winner else None,
        )
        return report, winner

    async def _run_all(
        self, question: str, tenant_id: str, user_id: str | None, total: int
    ) -> list[SqlCandidate]:
        tasks = {
            asyncio.create_task(
                self.runner.run_candidate(question, tenant_id, index, user_id)
            ): index
            for index in range(total)
        }
        done, pending = await asyncio.wait(tasks, timeout=self.settings.consensus_deadline_s)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(
                "consensus_deadline_exceeded",
                tenant_id=tenant_id,
                pending=sorted(tasks[t] for t in pending),
            )

        candidates = []
        for task, index in tasks.items():
            if task in done and not task.cancelled() and task.exception() is None:
                candidates.append(task.result())
                continue
            error = (
                f"Candidate exceeded {self.settings.consensus_deadline_s:.1f}s consensus deadline"
                if task in pending
                else f"Candidate crashed: {task.exception()!r}"
            )
            candidates.append(
                SqlCandidate(
                    sql_text="",
                    generation_index=index,
                    validation=ValidationOutcome(valid=False, errors=[error]),
                    status=CandidateStatus.TIMED_OUT if task in pending else CandidateStatus.GENERATION_FAILED,
                    error=error,
                )
            )
        return sorted(candidates, key=lambda c: c.generation_index)

    def reconcile(
        self, candidates: list[SqlCandidate], total: int | None = None
    ) -> tuple[ConsensusReport, SqlCandidate | None]:
        """Group successful candidates and map agreement to confidence."""
        total = len(candidates) if total is None else total
        successful = [c for c in candidates if c.succeeded]
        statuses = [c.status.value for c in candidates]
        failures = [
            f"#{c.generation_index} {c.status.value}: {c.error}"
            for c in candidates
            if not c.succeeded
        ]

        if not successful:
            return (
                ConsensusReport(
                    total_generations=total,
                    successful_executions=0,
                    majority_group_size=0,
                    agreement_percent=None,
                    confidence=ConfidenceLevel.LOW,
                    failures=failures,
                    candidate_statuses=statuses,
                ),
                None,
            )

        groups = group_candidates(successful, self.equivalence)
        # max() keeps the first of equally large groups: lowest representative index
        majority = max(groups, key=lambda g: g.size)
        agreement = agreement_percent(majority.size, len(successful))
        report = ConsensusReport(
            total_generations=total,
            successful_executions=len(successful),
            majority_group_size=majority.size,
            agreement_percent=agreement,
            confidence=confidence_for(agreement, self.settings.medium_confidence_for_two_of_three),
            failures=failures,
            candidate_statuses=statuses,
        )
        return report, majority.representative
