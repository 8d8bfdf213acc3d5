"""
FastAPI Application
===================

Main FastAPI application for the trusted sales-question service.
"""

import os
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import __version__
from api.middleware.telemetry import TelemetryMiddleware
from api.routes.health import router as health_router
from api.routes.query import router as query_router
from api.routes.validate import router as validate_router
from api.schemas import ErrorResponse
from observability.logging_config import get_logger, setup_logging
from observability.metrics import metrics_endpoint, setup_metrics
from observability.tracing import setup_tracing
from trusted_sql.audit import AuditSink, JsonlAuditSink
from trusted_sql.config import PipelineSettings
from trusted_sql.datastore import ConnectionPool, SqliteExecutor, seed_demo_data
from trusted_sql.llm import LLMInterface, MockLLM
from trusted_sql.pipeline import QueryPipeline
from trusted_sql.trusted.sqlite_service import SqliteAggregationService

logger = get_logger(__name__)

# Canned SQL for the demo LLM, keyed by question substring
DEMO_RESPONSES = {
    "vs": [
        'SELECT SUM(CASE WHEN date(createdAt) = date(\'now\') THEN total ELSE 0 END) AS today_sales, '
        'SUM(CASE WHEN date(createdAt) = date(\'now\', \'-1 day\') THEN total ELSE 0 END) AS yesterday_sales '
        'FROM "Order" WHERE venueId = \'{tenant_id}\' AND status = \'COMPLETED\'',
    ],
    "mejor día": [
        'SELECT date(createdAt) AS day, SUM(total) AS total_sales FROM "Order" '
        'WHERE venueId = \'{tenant_id}\' AND status = \'COMPLETED\' '
        "GROUP BY day ORDER BY total_sales DESC LIMIT 1",
    ],
    "best day": [
        'SELECT date(createdAt) AS day, SUM(total) AS total_sales FROM "Order" '
        'WHERE venueId = \'{tenant_id}\' AND status = \'COMPLETED\' '
        "GROUP BY day ORDER BY total_sales DESC LIMIT 1",
    ],
    "efectivo": [
        'SELECT SUM(p.amount) AS total_sales FROM "Payment" p '
        'WHERE p.venueId = \'{tenant_id}\' AND p.method = \'CASH\' AND p.status = \'COMPLETED\'',
    ],
    "cash": [
        'SELECT SUM(p.amount) AS total_sales FROM "Payment" p '
        'WHERE p.venueId = \'{tenant_id}\' AND p.method = \'CASH\' AND p.status = \'COMPLETED\'',
    ],
}


def create_llm() -> LLMInterface:
    """LangChain/OpenAI when an API key is configured, the demo LLM otherwise."""
    if os.getenv("OPENAI_API_KEY"):
        from trusted_sql.llm.langchain import LangChainLLM

        return LangChainLLM(model_name=os.getenv("OPENAI_MODEL", "gpt-4o-mini"))
    return MockLLM(responses=DEMO_RESPONSES)


def create_pipeline(
    settings: PipelineSettings,
    llm: LLMInterface | None = None,
    database: str | None = None,
    audit_sink: AuditSink | None = None,
) -> tuple[QueryPipeline, ConnectionPool]:
    """
    Create the pipeline and its connection pool.

    Without ``TRUSTED_SQL_DATABASE`` the service runs on an in-memory demo
    database seeded with two venues. Audit records go to the application log
    unless ``TRUSTED_SQL_AUDIT_LOG`` names a JSON Lines file.
    """
    database = database or os.getenv("TRUSTED_SQL_DATABASE")
    if database:
        pool = ConnectionPool(database)
    else:
        pool = ConnectionPool.in_memory(f"trusted_sql_{uuid.uuid4().hex}")
        with pool.writer() as conn:
            seed_demo_data(conn)

    aggregation = SqliteAggregationService(pool, default_timezone=settings.timezone)
    pipeline = QueryPipeline(
        llm=llm or create_llm(),
        executor=SqliteExecutor(pool, max_rows=settings.max_rows),
        aggregation=aggregation,
        settings=settings,
        audit_sink=audit_sink,
    )
    return pipeline, pool


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan handler."""
    # Startup
    logger.info("Starting Trusted SQL API", version=__version__)

    settings = PipelineSettings.from_env()
    app.state.settings = settings
    audit_log = os.getenv("TRUSTED_SQL_AUDIT_LOG")
    audit_sink = JsonlAuditSink(audit_log) if audit_log else None
    app.state.pipeline, app.state.pool = create_pipeline(settings, audit_sink=audit_sink)

    yield

    # Shutdown
    logger.info("Shutting down Trusted SQL API")
    app.state.pool.close()
    if audit_sink is not None:
        audit_sink.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    setup_logging()

    app = FastAPI(
        title="Trusted SQL API",
        description=(
            "Answers natural-language sales questions with tenant-isolated, "
            "cross-checked and plausibility-validated SQL."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Add middleware
    app.add_middleware(TelemetryMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add routes
    app.include_router(health_router)
    app.include_router(query_router)
    app.include_router(validate_router)

    setup_tracing(app, version=__version__)
    setup_metrics(app, version=__version__, environment=os.getenv("ENVIRONMENT", "development"))
    app.add_route("/metrics", metrics_endpoint)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        request_id = getattr(request.state, "request_id", None)
        logger.exception("unhandled_exception", request_id=request_id, error=str(exc))
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="InternalServerError",
                message="An unexpected error occurred",
                request_id=request_id,
            ).model_dump(),
        )

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
