"""
Mock LLM
========

Mock LLM implementation for testing and demonstration.
"""

import asyncio

from trusted_sql.errors import GenerationError
from trusted_sql.llm.base import LLMInterface
from trusted_sql.models import LLMResponse, PromptContext

MockEntry = str | BaseException

DEFAULT_SQL = 'SELECT COUNT(*) AS orders FROM "Order" WHERE venueId = \'{tenant_id}\''


class MockLLM(LLMInterface):
    """
    Mock LLM for demonstration and testing purposes.

    In production, replace with LangChainLLM or another provider.
    """

    def __init__(
        self,
        responses: dict[str, list[MockEntry]] | None = None,
        default_sql: str | None = DEFAULT_SQL,
        latency_s: dict[int, float] | None = None,
    ) -> None:
        """
        Initialize with canned responses.

        Args:
            responses: Dict mapping question substrings to one entry per
                       generation index. An entry is SQL text (``{tenant_id}``
                       is substituted) or an exception to raise.
            default_sql: Returned when no key matches; None raises GenerationError
            latency_s: Optional per-generation-index delay in seconds
        """
        self.responses = responses or {}
        self.default_sql = default_sql
        self.latency_s = latency_s or {}
        self.calls: list[PromptContext] = []

    async def generate(self, context: PromptContext) -> LLMResponse:
        """
        Generate a mock SQL response.

        The generation index selects which configured entry is returned, so
        concurrent consensus candidates get deterministic, distinct answers.
        """
        self.calls.append(context)

        delay = self.latency_s.get(context.generation_index)
        if delay:
            await asyncio.sleep(delay)

        question = context.question.lower()
        for key, entries in self.responses.items():
            if key.lower() in question and entries:
                entry = entries[min(context.generation_index, len(entries) - 1)]
                if isinstance(entry, BaseException):
                    raise entry
                return LLMResponse(
                    content=entry.replace("{tenant_id}", context.tenant_id),
                    model="mock-llm-v1",
                )

        if self.default_sql is None:
            raise GenerationError(f"No canned response for: {context.question}")
        return LLMResponse(
            content=self.default_sql.replace("{tenant_id}", context.tenant_id),
            model="mock-llm-v1",
        )

    def reset(self) -> None:
        """Reset recorded calls for fresh test runs."""
        self.calls = []
