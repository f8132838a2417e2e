"""
Tracing helpers built on OpenTelemetry.

Spans wrap each generation and each provider attempt. When tracing is
disabled every helper degrades to a no-op so call sites never branch.
"""

import logging
from contextlib import contextmanager
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode, Tracer

logger = logging.getLogger(__name__)

_tracer_provider: Optional[TracerProvider] = None


def configure_tracing(enabled: bool, exporter: str = "console", service_name: str = "harmony-ai") -> None:
    """
    Install a tracer provider for the process.

    Args:
        enabled: TRACING_ENABLED setting
        exporter: "console" prints finished spans, "none" records without exporting
        service_name: resource service.name attribute

    A failure here is logged and leaves tracing disabled; the service keeps running.
    """
    global _tracer_provider

    if not enabled:
        logger.info("Tracing is disabled via TRACING_ENABLED=false")
        return

    if _tracer_provider is not None:
        return

    try:
        provider = TracerProvider(resource=Resource(attributes={SERVICE_NAME: service_name}))
        exporter_type = exporter.lower()

        if exporter_type == "console":
            provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
            logger.info("Console tracing configured")
        elif exporter_type == "none":
            logger.info("Tracing exporter set to 'none' - no spans will be exported")
        else:
            logger.warning(f"Unknown exporter type: {exporter}. Tracing disabled.")
            return

        trace.set_tracer_provider(provider)
        _tracer_provider = provider
        logger.info(f"Tracing configured successfully (service: {service_name})")

    except Exception as e:
        logger.error(f"Failed to configure tracing: {e}. Tracing will be disabled.")
        _tracer_provider = None


def is_tracing_enabled() -> bool:
    return _tracer_provider is not None


def get_tracer(component: str) -> Tracer:
    """Tracer for a component; a no-op tracer until configure_tracing() installs a provider."""
    return trace.get_tracer(component)


@contextmanager
def trace_span(tracer: Tracer, span_name: str, attributes: Optional[dict] = None):
    """
    Open a span, mark it errored if the body raises, and re-raise.

    Example:
        with trace_span(tracer, "generation.generate", {"operation": "bio"}) as span:
            add_span_attributes(span, {"provider": "gemini"})

    Yields None when tracing is disabled.
    """
    if not is_tracing_enabled():
        yield None
        return

    with tracer.start_as_current_span(span_name, record_exception=False, set_status_on_exception=False) as span:
        if attributes:
            add_span_attributes(span, attributes)
        try:
            yield span
        except Exception as e:
            set_span_error(span, e)
            raise


def set_span_error(span, error: Exception):
    if span and is_tracing_enabled():
        try:
            span.set_status(Status(StatusCode.ERROR, str(error)))
            span.record_exception(error)
        except Exception as e:
            logger.error(f"Error setting span error: {e}")


def add_span_attributes(span, attributes: dict):
    """Set attributes on a span, skipping None values."""
    if span and is_tracing_enabled():
        try:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        except Exception as e:
            logger.error(f"Error adding span attributes: {e}")
