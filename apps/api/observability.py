from __future__ import annotations

import logging
import os
import sys

try:
    from opentelemetry import trace
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
        OTLPSpanExporter,
    )
except Exception:  # pragma: no cover - optional dependency resolution
    trace = None
    Resource = None
    TracerProvider = None
    BatchSpanProcessor = None
    ConsoleSpanExporter = None
    OTLPSpanExporter = None


logger = logging.getLogger("event_reminders.observability")


def _console_export_enabled() -> bool:
    return os.getenv("OTEL_CONSOLE_EXPORT", "false").lower() == "true"


def init_observability(service_name: str = "event-reminders") -> bool:
    """Install a tracer provider for API requests and delivery jobs.

    Spans go to OTLP when OTEL_EXPORTER_OTLP_ENDPOINT is set, to the console
    when OTEL_CONSOLE_EXPORT=true, and nowhere otherwise.
    """
    if "pytest" in sys.modules:
        return False
    if trace is None or TracerProvider is None:
        return False
    if isinstance(trace.get_tracer_provider(), TracerProvider):
        return True

    resource = Resource.create(
        {
            "service.name": os.getenv("OTEL_SERVICE_NAME", service_name),
            "deployment.environment": os.getenv("APP_ENV", "development"),
        }
    )
    provider = TracerProvider(resource=resource)

    otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if otlp_endpoint and OTLPSpanExporter is not None:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
        logger.info("tracing_enabled exporter=otlp endpoint=%s", otlp_endpoint)
    elif _console_export_enabled() and ConsoleSpanExporter is not None:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("tracing_enabled exporter=console")

    trace.set_tracer_provider(provider)
    return True
