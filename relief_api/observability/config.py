# SPDX-License-Identifier: Apache-2.0

"""
OpenTelemetry Configuration

Sets up distributed tracing and structured JSON logging for the relief
coordination core.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

SERVICE_NAME = 'relief-coordination-core'

action_logger = logging.getLogger('relief_api.actions')


def setup_observability(settings) -> None:
    """Initialize logging and, when enabled, OpenTelemetry tracing."""
    setup_structured_logging(settings.environment, settings.log_level)

    if not settings.otel_enabled:
        # Disable tracing by not setting up a tracer provider
        return

    environment = settings.environment

    # Environment-specific sampling
    if environment == 'production':
        sampler = TraceIdRatioBased(0.1)  # 10% sampling in production
    elif environment == 'staging':
        sampler = TraceIdRatioBased(0.5)
    else:
        sampler = TraceIdRatioBased(1.0)

    resource = Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": settings.service_version,
        "deployment.environment": environment
    })

    tracer_provider = TracerProvider(sampler=sampler, resource=resource)

    if environment in ('production', 'staging'):
        # Endpoint and headers come from the standard OTEL_EXPORTER_OTLP_* variables
        tracer_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(), max_export_batch_size=512)
        )
    else:
        tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(tracer_provider)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, carrying ``extra_fields`` and the trace id."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage()
        }

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            entry.update(extra_fields)

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            entry["trace_id"] = format(span_context.trace_id, "032x")

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_json_default)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def setup_structured_logging(environment: str, log_level: Optional[str] = None) -> None:
    """Configure structured JSON logging with trace correlation."""
    level = {
        'production': logging.WARNING,
        'staging': logging.INFO,
        'development': logging.DEBUG
    }.get(environment, logging.INFO)
    if log_level:
        level = logging.getLevelName(log_level.upper())

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())

    logging.basicConfig(level=level, handlers=[handler], force=True)

    # Keep driver chatter out of the application log
    logging.getLogger('pymongo').setLevel(logging.WARNING)
    logging.getLogger('pika').setLevel(logging.ERROR)


def log_action(action: str, **details: Any) -> None:
    """Emit a business action record (``incident_created``, ``feed_cache_hit``, ...)."""
    action_logger.info(action, extra={"extra_fields": {"action": action, **details}})
