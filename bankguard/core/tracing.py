"""
OpenTelemetry tracing configuration
"""
import uuid
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from bankguard.core.config import Settings, get_settings
from bankguard.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)

_tracer_provider: Optional[TracerProvider] = None
_configured = False


def configure_tracing(settings: Optional[Settings] = None):
    """
    Configure OpenTelemetry tracing

    Spans are exported to the console when tracing is enabled. When it is
    disabled the API's no-op tracer is used and trace ids fall back to
    locally generated ones (see ``get_current_trace_id``).
    """
    global _tracer_provider, _configured

    if _configured:
        return

    settings = settings or get_settings()
    if not settings.enable_tracing:
        logger.info("OpenTelemetry tracing is disabled via configuration")
        return

    resource = Resource.create({
        "service.name": settings.tracing_service_name,
        "service.version": "0.1.0",
        "service.environment": settings.app_env,
    })
    _tracer_provider = TracerProvider(resource=resource)
    _tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(_tracer_provider)

    _configured = True
    logger.info("OpenTelemetry tracing configured successfully")


def get_tracer(name: str):
    """Get a tracer instance (usually named after the module)"""
    return trace.get_tracer(name)


def get_current_trace_id() -> Optional[str]:
    """Trace ID of the current span, or None outside a recorded trace"""
    span = trace.get_current_span()
    if span and span.get_span_context().is_valid:
        return format(span.get_span_context().trace_id, '032x')
    return None


def get_or_create_trace_id() -> str:
    """Current trace ID, or a fresh one when tracing is not recording"""
    return get_current_trace_id() or uuid.uuid4().hex


def add_span_attributes(span=None, **kwargs):
    """Add attributes to the current span or the provided one"""
    if span is None:
        span = trace.get_current_span()
    if span is not None and span.is_recording():
        for key, value in kwargs.items():
            if value is not None:
                span.set_attribute(key, value)


def shutdown_tracing():
    """Flush and close the tracer provider on application shutdown"""
    global _tracer_provider, _configured

    if not _configured or _tracer_provider is None:
        return

    try:
        _tracer_provider.force_flush(timeout_millis=5000)
        _tracer_provider.shutdown()
        logger.info("OpenTelemetry tracing shutdown complete")
    except Exception as e:
        logger.warning(f"Error during tracing shutdown: {e}")
    finally:
        _tracer_provider = None
        _configured = False
