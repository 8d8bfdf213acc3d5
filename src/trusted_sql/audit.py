"""
Audit Trail
===========

Structured audit events for security rejections and trust decisions.

The pipeline emits records through an ``AuditTrail``, which never lets a
failing sink interrupt query processing.
"""

import json
import logging
import queue
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import QueueListener
from pathlib import Path
from typing import Any
from uuid import uuid4

import structlog

logger = structlog.get_logger(__name__)


class AuditEventType(str, Enum):
    """Types of audit events."""

    QUERY_RECEIVED = "query_received"
    QUERY_ROUTED = "query_routed"
    SECURITY_VALIDATION_FAILED = "security_validation_failed"
    CANDIDATE_FAILED = "candidate_failed"
    CONSENSUS_COMPLETED = "consensus_completed"
    CROSS_CHECK_COMPLETED = "cross_check_completed"
    PLAUSIBILITY_FAILED = "plausibility_failed"
    PLAUSIBILITY_PASSED = "plausibility_passed"
    QUERY_COMPLETED = "query_completed"


@dataclass
class AuditRecord:
    """One audit event, scoped to a tenant and (when known) a user."""

    event_type: AuditEventType
    tenant_id: str
    details: dict[str, Any] = field(default_factory=dict)
    user_id: str | None = None
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = asdict(self)
        data["event_type"] = self.event_type.value
        return data


class AuditSink(ABC):
    """Write-only destination for audit records."""

    @abstractmethod
    def emit(self, record: AuditRecord) -> None:
        pass

    def close(self) -> None:
        """Flush pending records and release resources."""


class StructlogAuditSink(AuditSink):
    """Writes audit records to the structured application log."""

    def __init__(self, logger_name: str = "trusted_sql.audit") -> None:
        self._logger = structlog.get_logger(logger_name)

    def emit(self, record: AuditRecord) -> None:
        level = (
            "warning"
            if record.event_type
            in (AuditEventType.SECURITY_VALIDATION_FAILED, AuditEventType.PLAUSIBILITY_FAILED)
            else "info"
        )
        getattr(self._logger, level)(
            "audit_event",
            audit_event_type=record.event_type.value,
            audit_event_id=record.event_id,
            tenant_id=record.tenant_id,
            user_id=record.user_id,
            **record.details,
        )


class InMemoryAuditSink(AuditSink):
    """Keeps records in memory. Used by tests and the demo API."""

    def __init__(self) -> None:
        self.records: list[AuditRecord] = []
        self._lock = threading.Lock()

    def emit(self, record: AuditRecord) -> None:
        with self._lock:
            self.records.append(record)

    def of_type(self, event_type: AuditEventType) -> list[AuditRecord]:
        return [r for r in self.records if r.event_type == event_type]

    def for_tenant(self, tenant_id: str) -> list[AuditRecord]:
        return [r for r in self.records if r.tenant_id == tenant_id]

    def clear(self) -> None:
        with self._lock:
            self.records = []


class JsonlAuditSink(AuditSink):
    """
    Appends records to a JSON Lines file, one record per line.

    ``emit`` only serializes and enqueues; a ``QueueListener`` thread does the
    file I/O, so callers on the event loop never wait on disk. ``close``
    flushes pending records.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._queue: queue.SimpleQueue = queue.SimpleQueue()
        handler = logging.FileHandler(self.path, mode="a", encoding="utf-8", delay=True)
        handler.setFormatter(logging.Formatter("%(message)s"))
        self._listener = QueueListener(self._queue, handler)
        self._listener.start()
        self._closed = False

    def emit(self, record: AuditRecord) -> None:
        line = json.dumps(record.to_dict(), default=str)
        self._queue.put_nowait(
            logging.makeLogRecord({"msg": line, "levelno": logging.INFO, "levelname": "INFO"})
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._listener.stop()
        for handler in self._listener.handlers:
            handler.close()


class AuditTrail:
    """Fire-and-forget front end for an AuditSink."""

    def __init__(self, sink: AuditSink | None = None) -> None:
        self.sink = sink or StructlogAuditSink()

    def record(
        self,
        event_type: AuditEventType,
        tenant_id: str,
        user_id: str | None = None,
        **details: Any,
    ) -> None:
        record = AuditRecord(
            event_type=event_type,
            tenant_id=tenant_id,
            user_id=user_id,
            details=details,
        )
        try:
            self.sink.emit(record)
        except Exception as e:
            logger.error(
                "audit_sink_failed",
                audit_event_type=event_type.value,
                sink=type(self.sink).__name__,
                error=str(e),
            )
