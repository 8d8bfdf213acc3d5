"""
LLM Module
==========

Pluggable LLM interfaces for SQL generation.
"""

from trusted_sql.llm.base import LLMInterface
from trusted_sql.llm.mock import MockLLM

__all__ = [
    "LLMInterface",
    "MockLLM",
]
