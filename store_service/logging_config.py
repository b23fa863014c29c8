"""Structured logging configuration.

Every record is a single JSON object on stdout carrying the service name,
environment and, inside a request, the active trace and span ids. Fields that
can hold credentials are masked before the record is written.
"""
import logging
import sys
from typing import Optional
from pythonjsonlogger import jsonlogger
from opentelemetry import trace

from store_service.config import ENVIRONMENT, LOG_LEVEL, OTEL_ENABLED, OTEL_EXPORTER_OTLP_ENDPOINT, SERVICE_NAME

# Note: OpenTelemetry logging SDK is experimental
try:
    from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
    from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
    from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
    from opentelemetry.sdk.resources import Resource
    OTLP_LOGGING_AVAILABLE = True
except ImportError:
    OTLP_LOGGING_AVAILABLE = False

REDACTED_FIELDS = frozenset({
    "password",
    "password_confirm",
    "current_password",
    "new_password",
    "token",
    "reset_token",
    "authorization",
    "secret_key",
})


class StoreJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding trace context and masking credential fields."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        span = trace.get_current_span()
        if span and span.get_span_context().is_valid:
            ctx = span.get_span_context()
            log_record['trace_id'] = format(ctx.trace_id, '032x')
            log_record['span_id'] = format(ctx.span_id, '016x')
            log_record['trace_flags'] = ctx.trace_flags

        log_record['service'] = SERVICE_NAME
        log_record['env'] = ENVIRONMENT

        for field in REDACTED_FIELDS.intersection(log_record):
            log_record[field] = "[REDACTED]"

        if 'message' in log_record:
            log_record['msg'] = log_record.pop('message')


def setup_logging(level: Optional[int] = None):
    """Configure structured logging for the application."""
    if level is None:
        level = logging.getLevelName(LOG_LEVEL)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # 1. stdout handler with JSON formatting
    formatter = StoreJsonFormatter(
        '%(levelname)s %(name)s %(message)s',
        rename_fields={
            'levelname': 'level'
        }
    )
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # 2. OTLP handler shipping logs to the collector
    if OTEL_ENABLED and OTLP_LOGGING_AVAILABLE:
        try:
            resource = Resource.create({
                "service.name": SERVICE_NAME,
                "deployment.environment": ENVIRONMENT
            })
            logger_provider = LoggerProvider(resource=resource)
            logger_provider.add_log_record_processor(
                BatchLogRecordProcessor(
                    OTLPLogExporter(endpoint=OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True)
                )
            )

            from opentelemetry._logs import set_logger_provider
            set_logger_provider(logger_provider)

            root_logger.addHandler(LoggingHandler(level=level, logger_provider=logger_provider))
            logging.info("OTLP logging handler configured")
        except Exception as e:
            logging.warning(f"Failed to configure OTLP logging handler: {e}")
    elif OTEL_ENABLED:
        logging.warning("OTLP logging SDK not available - logs will only go to stdout")

    # Reduce noise from libraries
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('passlib').setLevel(logging.ERROR)
