"""
API Schemas
===========

Pydantic models for API request/response validation.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class QueryRequest(BaseModel):
    """Request body for answering a sales question."""

    question: str = Field(
        ...,
        min_length=1,
        max_length=1000,
        description="Natural language question about the tenant's sales",
        examples=["¿Cuánto vendí hoy?"],
    )
    tenant_id: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Tenant (venue) the question is scoped to",
        examples=["venue-001"],
    )
    user_id: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="User asking the question, recorded in the audit trail",
    )


class QueryResponse(BaseModel):
    """Structured answer for one question."""

    text: str = Field(..., description="Answer text shown to the user")
    confidence_score: float = Field(..., ge=0, le=1, description="Confidence in the answer")
    query_result: Any = Field(None, description="Rows or trusted value behind the answer")
    sql_query: str | None = Field(None, description="Generated SQL (generated routes only)")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Route, consensus, cross-check and plausibility metadata",
    )
    suggestions: list[str] = Field(default_factory=list, description="Follow-up questions to try next")
    request_id: str = Field(..., description="Unique request identifier")
    processing_time_ms: float = Field(..., description="Processing time in milliseconds")


class ValidateRequest(BaseModel):
    """Request body for standalone tenant-isolation validation."""

    sql: str = Field(..., min_length=1, max_length=10000, description="SQL to validate")
    required_tenant_id: str = Field(
        ...,
        min_length=1,
        description="Tenant the query must be scoped to",
    )


class ValidateResponse(BaseModel):
    """Tenant-isolation validation result."""

    valid: bool = Field(..., description="Whether the SQL may be executed for the tenant")
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    violation_type: str | None = Field(None, description="Category of the first violation")
    details: dict[str, Any] = Field(default_factory=dict)


class HealthStatus(str, Enum):
    """Health check status values."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Health check response."""

    status: HealthStatus = Field(..., description="Overall health status")
    version: str = Field(..., description="API version")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    checks: dict[str, bool] = Field(
        default_factory=dict,
        description="Individual component health checks",
    )


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool = Field(..., description="Whether the service is ready to handle requests")
    checks: dict[str, bool] = Field(
        default_factory=dict,
        description="Individual readiness checks",
    )


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    request_id: str | None = Field(None, description="Request ID if available")
    details: dict[str, Any] | None = Field(None, description="Additional error details")
