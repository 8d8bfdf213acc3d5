"""
Prometheus Metrics
==================

Application metrics for monitoring and alerting.
"""

import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    multiprocess,
)

from trusted_sql.models import CandidateStatus, FinalAnswer

# Create a custom registry for this application
REGISTRY = CollectorRegistry()

# Application info
APP_INFO = Info(
    "trusted_sql",
    "Trusted SQL application information",
    registry=REGISTRY,
)

# Query metrics
QUERIES_TOTAL = Counter(
    "trusted_sql_queries_total",
    "Total number of questions answered",
    ["route", "outcome"],  # outcome: answered, no_answer, blocked
    registry=REGISTRY,
)

QUERY_DURATION = Histogram(
    "trusted_sql_query_duration_seconds",
    "Question processing duration in seconds",
    ["route"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
    registry=REGISTRY,
)

TRUSTED_FALLBACKS = Counter(
    "trusted_sql_trusted_fallbacks_total",
    "Trusted-route questions answered by generation because the trusted value was unavailable",
    registry=REGISTRY,
)

# Candidate metrics
CANDIDATES_TOTAL = Counter(
    "trusted_sql_candidates_total",
    "SQL candidates by terminal status",
    ["status"],
    registry=REGISTRY,
)

SECURITY_REJECTIONS = Counter(
    "trusted_sql_security_rejections_total",
    "Generated SQL rejected by the tenant-isolation validator",
    registry=REGISTRY,
)

# Trust metrics
CONSENSUS_AGREEMENT = Histogram(
    "trusted_sql_consensus_agreement_percent",
    "Agreement percent of consensus runs",
    buckets=[33, 50, 66, 100],
    registry=REGISTRY,
)

CROSS_CHECKS_TOTAL = Counter(
    "trusted_sql_cross_checks_total",
    "Cross-check outcomes",
    ["result"],  # match, discrepancy, skipped
    registry=REGISTRY,
)

PLAUSIBILITY_FAILURES = Counter(
    "trusted_sql_plausibility_failures_total",
    "Answers blocked by plausibility checks",
    registry=REGISTRY,
)

# HTTP metrics
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)

# Active queries gauge
ACTIVE_QUERIES = Gauge(
    "trusted_sql_active_queries",
    "Number of questions currently being processed",
    registry=REGISTRY,
)


def _endpoint_label(request: Request) -> str:
    """Route template (``/api/v1/query``) rather than the raw path."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


def setup_metrics(app: FastAPI, version: str = "0.1.0", environment: str = "development") -> None:
    """
    Install the HTTP metrics middleware and publish application info.

    Args:
        app: FastAPI application instance
        version: Application version reported in trusted_sql_info
        environment: Deployment environment reported in trusted_sql_info
    """
    APP_INFO.info({"version": version, "environment": environment})

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next: Callable) -> Response:
        answering = request.url.path == "/api/v1/query"
        if answering:
            ACTIVE_QUERIES.inc()

        started = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            endpoint = _endpoint_label(request)
            HTTP_REQUESTS_TOTAL.labels(method=request.method, endpoint=endpoint, status=status).inc()
            HTTP_REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(
                time.perf_counter() - started
            )
            if answering:
                ACTIVE_QUERIES.dec()


def track_query_metrics(answer: FinalAnswer) -> None:
    """
    Track metrics for an answered question.

    Args:
        answer: Final answer whose metadata describes route, candidates and checks
    """
    metadata = answer.metadata
    route = metadata.routed_to.value

    if metadata.result_validation_failed:
        outcome = "blocked"
    elif answer.confidence_score == 0:
        outcome = "no_answer"
    else:
        outcome = "answered"
    QUERIES_TOTAL.labels(route=route, outcome=outcome).inc()

    if metadata.processing_time_ms is not None:
        QUERY_DURATION.labels(route=route).observe(metadata.processing_time_ms / 1000)
    if metadata.fallback_from is not None:
        TRUSTED_FALLBACKS.inc()

    for status in metadata.candidate_statuses:
        CANDIDATES_TOTAL.labels(status=status).inc()
        if status == CandidateStatus.VALIDATION_FAILED.value:
            SECURITY_REJECTIONS.inc()

    consensus = metadata.consensus_voting
    if consensus is not None and consensus.agreement_percent is not None:
        CONSENSUS_AGREEMENT.observe(consensus.agreement_percent)

    cross_check = metadata.cross_check
    if cross_check is not None:
        if not cross_check.performed:
            result = "skipped"
        elif cross_check.has_discrepancy:
            result = "discrepancy"
        else:
            result = "match"
        CROSS_CHECKS_TOTAL.labels(result=result).inc()

    if metadata.result_validation_failed:
        PLAUSIBILITY_FAILURES.inc()


async def metrics_endpoint(request: Request) -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    # Handle multiprocess mode if using gunicorn
    try:
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        metrics = generate_latest(registry)
    except ValueError:
        # Not in multiprocess mode
        metrics = generate_latest(REGISTRY)

    return Response(
        content=metrics,
        media_type=CONTENT_TYPE_LATEST,
    )
