"""
OpenTelemetry Tracing
=====================

Distributed tracing for request flow visualization.

The pipeline creates ``process_query``, ``run_consensus`` and
``run_candidate`` spans through the global tracer provider installed here.
"""

import os

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
import structlog

logger = structlog.get_logger(__name__)


def setup_tracing(
    app: FastAPI,
    service_name: str = "trusted-sql-api",
    otlp_endpoint: str | None = None,
    version: str = "0.1.0",
) -> TracerProvider:
    """
    Set up OpenTelemetry tracing for the application.

    Spans are exported only when an OTLP endpoint is configured (argument or
    OTEL_EXPORTER_OTLP_ENDPOINT); ``disabled`` turns the exporter off.

    Args:
        app: FastAPI application instance
        service_name: Name of the service for traces
        otlp_endpoint: OTLP collector endpoint
        version: Service version reported on the resource

    Returns:
        The installed TracerProvider
    """
    endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")

    resource = Resource.create({
        SERVICE_NAME: service_name,
        "service.version": version,
        "deployment.environment": os.getenv("ENVIRONMENT", "development"),
    })
    provider = TracerProvider(resource=resource)

    if endpoint and endpoint != "disabled":
        try:
            exporter = OTLPSpanExporter(endpoint=endpoint, insecure=True)
            provider.add_span_processor(BatchSpanProcessor(exporter))
        except Exception as e:
            logger.warning("otlp_exporter_unavailable", endpoint=endpoint, error=str(e))

    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app, tracer_provider=provider)
    return provider


def get_tracer(name: str = __name__) -> trace.Tracer:
    """
    Get a tracer instance for creating spans.

    Args:
        name: Name for the tracer (usually module name)

    Returns:
        Tracer from the global provider (no-op until one is installed)
    """
    return trace.get_tracer(name)
