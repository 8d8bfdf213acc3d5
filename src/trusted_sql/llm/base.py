"""
Base LLM Interface
==================

Abstract interface for SQL-generating LLM providers.
"""

from abc import ABC, abstractmethod

from trusted_sql.models import LLMResponse, PromptContext


class LLMInterface(ABC):
    """Abstract interface for LLM providers."""

    @abstractmethod
    async def generate(self, context: PromptContext) -> LLMResponse:
        """
        Generate SQL text for one candidate.

        Args:
            context: Question, tenant, prompts and generation index

        Returns:
            LLMResponse with generated content

        Raises:
            GenerationError: If the provider fails or returns nothing usable
        """
        pass
