"""OpenTelemetry distributed tracing integration.

Every backend request runs inside a span named after the table action
(``backend.select``, ``backend.insert``...) so the fan-out of a feed page
(posts, then profiles/likes/comments in parallel) shows up as one trace.

Environment Variables:
    - OTEL_SERVICE_NAME: Service name for traces (default: "socialsync")
    - Exporting is controlled by ``settings.enable_tracing`` and
      ``settings.otlp_endpoint``

Usage:

    ```python
    from socialsync.telemetry import get_tracer, add_span_attributes

    tracer = get_tracer(__name__)

    with tracer.start_as_current_span("feed.fetch_page") as span:
        add_span_attributes(span, {"page": 0, "page_size": 10})
    ```
"""

from __future__ import annotations

import os
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode, Tracer
from opentelemetry.trace.span import Span

from socialsync.config import settings
from socialsync.logging import logger, operation_var, request_id_var, user_id_var

_tracer_provider: TracerProvider | None = None
_initialized: bool = False


def initialize_telemetry() -> None:
    """Initialize the global OpenTelemetry tracer provider.

    Idempotent. Adds an OTLP exporter when tracing is enabled and an endpoint
    is configured, and a console exporter when tracing is enabled without one.

    Raises:
        ValueError: If the OTLP endpoint is invalid
    """
    global _tracer_provider, _initialized

    if _initialized:
        return

    service_name = os.getenv("OTEL_SERVICE_NAME", "socialsync")

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": "0.1.0",
            "deployment.environment": settings.environment.value,
        }
    )

    _tracer_provider = TracerProvider(resource=resource)

    if settings.enable_tracing and settings.otlp_endpoint:
        try:
            otlp_exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
            _tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
            logger.info(
                "Initialized OTLP span exporter",
                endpoint=settings.otlp_endpoint,
                service_name=service_name,
            )
        except Exception as e:
            logger.error("Failed to initialize OTLP exporter", error=str(e))
            raise ValueError(f"Invalid OTLP endpoint: {settings.otlp_endpoint}") from e
    elif settings.enable_tracing:
        _tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.debug("Initialized console span exporter")

    trace.set_tracer_provider(_tracer_provider)
    _initialized = True

    logger.debug(
        "Telemetry initialized",
        service_name=service_name,
        environment=settings.environment.value,
        tracing_enabled=settings.enable_tracing,
    )


def get_tracer(name: str) -> Tracer:
    """Get a tracer for the given module, initializing the provider on first use."""
    if not _initialized:
        initialize_telemetry()

    return trace.get_tracer(name)


def add_span_attributes(span: Span, attributes: dict[str, Any]) -> None:
    """Add multiple attributes to a span.

    None values are skipped; lists and dicts are stringified.
    """
    for key, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, (list, dict, tuple)):
            value = str(value)
        span.set_attribute(key, value)


def record_exception_in_span(
    span: Span,
    exception: BaseException,
    set_status: bool = True,
) -> None:
    """Record an exception in a span and optionally set error status."""
    span.record_exception(exception)
    if set_status:
        span.set_status(Status(StatusCode.ERROR, str(exception)))


def sync_logging_context_to_span(span: Span) -> None:
    """Copy request_id, user_id and operation from the logging context onto a span."""
    context_attrs = {
        "request_id": request_id_var.get(None),
        "user_id": user_id_var.get(None),
        "operation": operation_var.get(None),
    }
    add_span_attributes(span, context_attrs)


def shutdown_telemetry() -> None:
    """Shutdown the tracer provider and flush all pending spans."""
    global _tracer_provider, _initialized

    if _tracer_provider and _initialized:
        _tracer_provider.shutdown()
        _initialized = False
        logger.debug("Telemetry shut down")


__all__ = [
    "initialize_telemetry",
    "shutdown_telemetry",
    "get_tracer",
    "add_span_attributes",
    "record_exception_in_span",
    "sync_logging_context_to_span",
]
