"""
Health Check Routes
===================

Probe endpoints for load balancers and Kubernetes.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from api import __version__
from api.schemas import HealthResponse, HealthStatus, ReadinessResponse
from observability.logging_config import get_logger

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


async def _datastore_reachable(request: Request) -> bool:
    pool = getattr(request.app.state, "pool", None)
    if pool is None:
        return False
    try:
        async with pool.acquire() as conn:
            conn.execute("SELECT 1").fetchone()
    except Exception as e:
        logger.warning("datastore_check_failed", error=str(e))
        return False
    return True


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Component status of the pipeline and its data store",
)
async def health_check(request: Request) -> HealthResponse:
    """
    Report pipeline and data store status.

    A missing component reports DEGRADED rather than failing the check.
    """
    checks = {
        "api": True,
        "pipeline": getattr(request.app.state, "pipeline", None) is not None,
        "datastore": await _datastore_reachable(request),
    }

    return HealthResponse(
        status=HealthStatus.HEALTHY if all(checks.values()) else HealthStatus.DEGRADED,
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    description="Whether the pipeline is built and settings were loaded",
)
async def readiness_check(request: Request) -> ReadinessResponse:
    state = request.app.state
    checks = {
        "pipeline_loaded": getattr(state, "pipeline", None) is not None,
        "configuration_valid": getattr(state, "settings", None) is not None,
    }
    return ReadinessResponse(ready=all(checks.values()), checks=checks)


@router.get("/live", summary="Liveness check")
async def liveness_check() -> dict:
    """Process is up."""
    return {"status": "ok"}
