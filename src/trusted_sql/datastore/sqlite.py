"""
SQLite Executor
===============

Read-only SQLite execution with a bounded connection pool.

Queries run in a worker thread so the event loop stays free for sibling
candidates. A connection is held only while its query runs and is returned
to the pool on every exit path, including cancellation.
"""

import asyncio
import sqlite3
import time
from contextlib import asynccontextmanager, contextmanager, suppress
from typing import Any, AsyncIterator, Iterator

import structlog

from trusted_sql.datastore.base import DataExecutor
from trusted_sql.errors import ExecutionError

logger = structlog.get_logger(__name__)


class ConnectionPool:
    """Fixed-size pool of SQLite connections handed out one query at a time."""

    def __init__(self, database: str, size: int = 5, uri: bool = False) -> None:
        """
        Open ``size`` read-only connections.

        Args:
            database: Path or URI (``file:name?mode=memory&cache=shared``)
            size: Number of pooled connections
            uri: Interpret ``database`` as a URI
        """
        if size < 1:
            raise ValueError("Pool size must be at least 1")
        self.database = database
        self.uri = uri
        self.size = size
        self._idle: asyncio.Queue[sqlite3.Connection] = asyncio.Queue()
        self._connections = [self._connect(read_only=True) for _ in range(size)]
        for conn in self._connections:
            self._idle.put_nowait(conn)

    def _connect(self, read_only: bool) -> sqlite3.Connection:
        conn = sqlite3.connect(self.database, uri=self.uri, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        if read_only:
            conn.execute("PRAGMA query_only = ON")
        return conn

    @classmethod
    def in_memory(cls, name: str = "trusted_sql", size: int = 5) -> "ConnectionPool":
        """Pool over a named shared-cache in-memory database."""
        return cls(f"file:{name}?mode=memory&cache=shared", size=size, uri=True)

    @property
    def available(self) -> int:
        return self._idle.qsize()

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[sqlite3.Connection]:
        """Borrow a connection for the duration of one query."""
        conn = await self._idle.get()
        try:
            yield conn
        finally:
            self._idle.put_nowait(conn)

    @contextmanager
    def writer(self) -> Iterator[sqlite3.Connection]:
        """Separate writable connection for schema setup and seeding."""
        conn = self._connect(read_only=False)
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def close(self) -> None:
        for conn in self._connections:
            conn.close()


class SqliteExecutor(DataExecutor):
    """Runs validated SELECT statements against a pooled SQLite database."""

    def __init__(self, pool: ConnectionPool, max_rows: int = 1000) -> None:
        self.pool = pool
        self.max_rows = max_rows

    async def execute(self, sql: str) -> list[dict[str, Any]]:
        async with self.pool.acquire() as conn:
            start = time.perf_counter()
            task = asyncio.ensure_future(asyncio.to_thread(self._fetch, conn, sql))
            try:
                rows = await asyncio.shield(task)
            except asyncio.CancelledError:
                # Stop the worker thread before the connection goes back to the pool
                conn.interrupt()
                with suppress(sqlite3.Error, ExecutionError):
                    await task
                raise

        logger.debug(
            "sql_executed",
            rows=len(rows),
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return rows

    def _fetch(self, conn: sqlite3.Connection, sql: str) -> list[dict[str, Any]]:
        try:
            cursor = conn.execute(sql)
            try:
                rows = cursor.fetchmany(self.max_rows)
            finally:
                cursor.close()
        except sqlite3.Error as e:
            raise ExecutionError(f"Query execution failed: {e}") from e
        return [dict(row) for row in rows]
