"""
Data Store Module
=================

Read-only execution of validated SQL against the relational store.
"""

from trusted_sql.datastore.base import DataExecutor
from trusted_sql.datastore.sqlite import ConnectionPool, SqliteExecutor
from trusted_sql.datastore.schema import SCHEMA_CONTEXT, create_schema, seed_demo_data

__all__ = [
    "DataExecutor",
    "ConnectionPool",
    "SqliteExecutor",
    "SCHEMA_CONTEXT",
    "create_schema",
    "seed_demo_data",
]
