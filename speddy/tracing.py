"""
OpenTelemetry tracing for the scheduling service.

Off unless ENABLE_TRACING is set. Spans are batched to an OTLP/gRPC
collector; request spans come from the FastAPI instrumentation and the
instance generator opens its own.
"""

import os
from typing import Iterable, Optional

import structlog
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = structlog.get_logger(__name__)

UNTRACED_PATHS = ("/health", "/ready", "/metrics")

_configured = False


def configure_opentelemetry(
    service_name: str,
    service_version: str,
    otlp_endpoint: Optional[str] = None,
    enable_tracing: bool = False,
) -> bool:
    """
    Install the global tracer provider.

    Calling it again after a successful setup is a no-op.

    Returns:
        Whether spans are exported after the call
    """
    global _configured

    if not enable_tracing:
        logger.debug("Tracing disabled")
        return False
    if _configured:
        return True

    endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "localhost:4317")
    provider = TracerProvider(
        resource=Resource.create(
            {
                SERVICE_NAME: service_name,
                SERVICE_VERSION: service_version,
                "service.namespace": "speddy",
                "deployment.environment": os.getenv("ENVIRONMENT", "production"),
            }
        )
    )
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True))
    )
    trace.set_tracer_provider(provider)
    _configured = True

    logger.info("Tracing configured", endpoint=endpoint, service=service_name)
    return True


def instrument_fastapi(app: FastAPI, untraced_paths: Iterable[str] = UNTRACED_PATHS) -> None:
    """Trace every request except health checks and metric scrapes."""
    FastAPIInstrumentor.instrument_app(
        app,
        excluded_urls=",".join(untraced_paths),
        tracer_provider=trace.get_tracer_provider(),
    )


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)
