"""
Base Executor Interface
=======================

Abstract interface for the relational data store.
"""

from abc import ABC, abstractmethod
from typing import Any


class DataExecutor(ABC):
    """Executes read-only SQL and returns rows as mappings."""

    @abstractmethod
    async def execute(self, sql: str) -> list[dict[str, Any]]:
        """
        Execute a validated, read-only query.

        Args:
            sql: SQL text that already passed tenant-isolation validation

        Returns:
            Rows as column -> value mappings

        Raises:
            ExecutionError: If the store rejects the query
        """
        pass
