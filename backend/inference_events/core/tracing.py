import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from .config import settings

logger = logging.getLogger(__name__)

_tracer = None
_tracer_provider = None

def setup_tracing():
    """Initializes the OpenTelemetry TracerProvider when tracing is enabled."""
    global _tracer, _tracer_provider
    if _tracer:
        return # Already initialized

    if not settings.TRACING_ENABLED:
        # The API falls back to a no-op tracer without a provider
        _tracer = trace.get_tracer(settings.OTEL_SERVICE_NAME)
        return

    try:
        resource = Resource(attributes={
            SERVICE_NAME: settings.OTEL_SERVICE_NAME
        })

        _tracer_provider = TracerProvider(resource=resource)
        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.OTLP_ENDPOINT,
            insecure=settings.OTLP_INSECURE,
        )
        _tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        trace.set_tracer_provider(_tracer_provider)

        _tracer = trace.get_tracer(settings.OTEL_SERVICE_NAME)
        logger.info(
            f"OpenTelemetry tracing initialized for service '{settings.OTEL_SERVICE_NAME}', "
            f"exporting to {settings.OTLP_ENDPOINT}"
        )

    except Exception as e:
        logger.exception(f"Failed to initialize OpenTelemetry tracing: {e}")
        # Tracing must never stop the service from starting
        _tracer = trace.get_tracer("fallback_tracer")

def get_tracer():
    """Returns the initialized tracer instance."""
    if _tracer is None:
        setup_tracing()
    return _tracer

def shutdown_tracing():
    """Shuts down the tracer provider gracefully."""
    global _tracer_provider
    if _tracer_provider is not None:
        logger.info("Shutting down OpenTelemetry tracer provider...")
        _tracer_provider.shutdown()
        _tracer_provider = None
