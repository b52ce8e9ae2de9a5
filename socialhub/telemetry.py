"""
Observability setup:
  - OpenTelemetry distributed tracing → Jaeger (via OTLP gRPC)
  - Prometheus metrics for the real-time hub, notifications and messaging

Metrics are module-level singletons; tracing is configured once at startup.
"""
import logging

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from prometheus_client import Counter, Gauge

from socialhub.config import settings

logger = logging.getLogger(__name__)

# ─────────────────────────── Prometheus Metrics ───────────────────────────
REALTIME_CONNECTIONS = Gauge(
    "realtime_connections",
    "Live real-time sessions currently joined to the event hub",
)

REALTIME_EVENTS_TOTAL = Counter(
    "realtime_events_total",
    "Events handed to live sessions",
    ["event"],  # 'sendMessage' | 'sendNotification' | 'readNotifications'
)

REALTIME_EVENTS_DROPPED = Counter(
    "realtime_events_dropped_total",
    "Events dropped because a session's outbound queue was full",
)

NOTIFICATIONS_CREATED = Counter(
    "notifications_created_total",
    "Notifications persisted",
    ["type"],
)

NOTIFICATION_FAILURES = Counter(
    "notification_failures_total",
    "Notifications that could not be persisted (and were therefore not pushed)",
)

MESSAGES_SENT = Counter(
    "messages_sent_total",
    "Direct messages persisted",
)

MESSAGE_PERSIST_FAILURES = Counter(
    "message_persist_failures_total",
    "Messages pushed optimistically whose persistence then failed",
)

CONVERSATION_CONFLICTS = Counter(
    "conversation_conflicts_total",
    "Concurrent first-contact inserts resolved by re-reading the existing pair",
)


# ─────────────────────────── OpenTelemetry Setup ──────────────────────────
def setup_tracing(engine=None) -> None:  # noqa: ANN001
    """Configure the global OTel TracerProvider with OTLP/Jaeger export."""
    if not settings.tracing_enabled:
        logger.info("OTel tracing disabled")
        return

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "deployment.environment": settings.environment,
        }
    )

    provider = TracerProvider(resource=resource)

    try:
        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            insecure=True,
        )
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        logger.info(
            "OTel tracing configured → %s", settings.otel_exporter_otlp_endpoint
        )
    except Exception as exc:
        logger.warning("Could not connect to OTLP exporter: %s — traces disabled", exc)

    trace.set_tracer_provider(provider)

    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def instrument_app(app) -> None:  # noqa: ANN001
    """Call after app is created to add FastAPI request spans."""
    FastAPIInstrumentor.instrument_app(app)
