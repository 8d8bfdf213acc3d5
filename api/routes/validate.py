"""
Validation Routes
=================

Standalone tenant-isolation check for tooling and SQL review.
"""

from fastapi import APIRouter, Request

from api.schemas import ValidateRequest, ValidateResponse
from observability.tracing import get_tracer
from trusted_sql.validators.tenant import validate_query

router = APIRouter(prefix="/api/v1", tags=["Validation"])
tracer = get_tracer(__name__)


@router.post(
    "/validate",
    response_model=ValidateResponse,
    summary="Validate SQL tenant isolation",
    description="Checks that a SELECT is scoped to exactly the required tenant",
)
async def validate_sql(body: ValidateRequest, request: Request) -> ValidateResponse:
    """
    Run the tenant-isolation validator without executing anything.

    Returns:
        ValidateResponse; ``valid`` is False for any doubt
    """
    validator = request.app.state.pipeline.validator
    with tracer.start_as_current_span("validate_query") as span:
        result = validate_query(body.sql, body.required_tenant_id, validator)
        span.set_attribute("validation.valid", result["valid"])

    return ValidateResponse(
        valid=result["valid"],
        errors=result["errors"],
        warnings=result["warnings"],
        violation_type=result["violationType"],
        details=result["details"],
    )
