"""Monitoring and observability setup.

Tracing and metrics are exported over OTLP only when ``OTEL_ENABLED`` is set.
Otherwise the OpenTelemetry API hands out its no-op providers, so the
instruments below can be used unconditionally from the rest of the service.
"""
import logging
from opentelemetry import trace, metrics
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
import pyroscope

from store_service.config import (
    ENVIRONMENT,
    OTEL_ENABLED,
    OTEL_EXPORTER_OTLP_ENDPOINT,
    PROFILING_ENABLED,
    PYROSCOPE_SERVER,
    SERVICE_NAME,
)

logger = logging.getLogger(__name__)


def init_tracing() -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing.

    Returns:
        Tracer instance
    """
    if OTEL_ENABLED:
        resource = Resource.create({"service.name": SERVICE_NAME})

        tracer_provider = TracerProvider(resource=resource)
        otlp_span_exporter = OTLPSpanExporter(
            endpoint=OTEL_EXPORTER_OTLP_ENDPOINT,
            insecure=True
        )
        tracer_provider.add_span_processor(BatchSpanProcessor(otlp_span_exporter))
        trace.set_tracer_provider(tracer_provider)

        logger.info(f"Tracing initialized with endpoint: {OTEL_EXPORTER_OTLP_ENDPOINT}")

    return trace.get_tracer(__name__)


def init_metrics() -> metrics.Meter:
    """
    Initialize OpenTelemetry metrics.

    Returns:
        Meter instance
    """
    if OTEL_ENABLED:
        resource = Resource.create({"service.name": SERVICE_NAME})

        otlp_metric_reader = PeriodicExportingMetricReader(
            OTLPMetricExporter(endpoint=OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True),
            export_interval_millis=5000
        )

        meter_provider = MeterProvider(
            resource=resource,
            metric_readers=[otlp_metric_reader]
        )
        metrics.set_meter_provider(meter_provider)

        logger.info("Metrics initialized with OTLP exporter")

    return metrics.get_meter(__name__)


def init_profiling() -> None:
    """Initialize Pyroscope profiling."""
    if not PROFILING_ENABLED:
        return
    try:
        pyroscope.configure(
            application_name=SERVICE_NAME,
            server_address=PYROSCOPE_SERVER,
            tags={"env": ENVIRONMENT}
        )
        logger.info(f"Profiling initialized with server: {PYROSCOPE_SERVER}")
    except Exception as e:
        logger.warning(f"Failed to initialize profiling: {e}")


# Initialize tracer and meter
tracer = init_tracing()
meter = init_metrics()

# Order workflow metrics
orders_created_counter = meter.create_counter(
    "store.orders.created",
    description="Total number of orders placed (pending payment)",
    unit="1"
)

checkout_amount_histogram = meter.create_histogram(
    "store.checkout.amount",
    description="Amount sent to the payment provider at checkout, tax and shipping included",
    unit="1"
)

orders_cancelled_counter = meter.create_counter(
    "store.orders.cancelled",
    description="Total number of cancelled orders",
    unit="1"
)

# Payment metrics
payment_confirmations_counter = meter.create_counter(
    "store.payments.confirmed",
    description="Paid transitions applied, by confirmation source (verify, webhook)",
    unit="1"
)

payment_failures_counter = meter.create_counter(
    "store.payments.failed",
    description="Payments reported failed or unsuccessful by the provider",
    unit="1"
)

stock_decrements_counter = meter.create_counter(
    "store.stock.decrements",
    description="Units removed from product stock on payment confirmation",
    unit="1"
)

payment_provider_duration_histogram = meter.create_histogram(
    "store.external.payment_provider.duration",
    description="Duration of payment provider calls",
    unit="s"
)

# Security monitoring metrics
auth_failures_counter = meter.create_counter(
    "store.auth.failures",
    description="Total number of authentication failures",
    unit="1"
)

auth_attempts_counter = meter.create_counter(
    "store.auth.attempts",
    description="Total number of authentication attempts",
    unit="1"
)

rate_limit_exceeded_counter = meter.create_counter(
    "store.rate_limit.exceeded",
    description="Total number of rate limit violations",
    unit="1"
)
