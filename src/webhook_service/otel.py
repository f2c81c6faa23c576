"""Tracing for webhook-service.

The exporter is configured only when ``otel_exporter_endpoint`` is set; without
it spans go to the no-op provider and cost nothing. Every outbound attempt runs
in a ``webhook.deliver`` client span opened by :func:`delivery_span`.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator
from uuid import UUID

import structlog
from aiohttp import web

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.aiohttp_server import AioHttpServerInstrumentor
from opentelemetry.trace import SpanKind, Status, StatusCode

from webhook_service.domain.webhooks import DeliveryOutcome
from webhook_service.settings import settings

logger = structlog.get_logger(__name__)

DELIVERY_SPAN_NAME = "webhook.deliver"

_provider: TracerProvider | None = None


def traces_endpoint(base: str) -> str:
    return f"{base.rstrip('/')}/v1/traces"


def setup_otel(app: web.Application) -> None:
    global _provider

    endpoint = settings.otel_exporter_endpoint
    if not endpoint:
        logger.info("otel disabled", reason="otel_exporter_endpoint not set")
        return

    resource = Resource.create(
        {SERVICE_NAME: settings.app_name, "deployment.environment": settings.env}
    )
    _provider = TracerProvider(resource=resource)
    _provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint(str(endpoint))))
    )
    trace.set_tracer_provider(_provider)

    AioHttpServerInstrumentor().instrument(server=app)
    logger.info("otel enabled", endpoint=str(endpoint), service=settings.app_name)


async def shutdown_otel(_app: web.Application) -> None:
    global _provider
    if _provider is not None:
        _provider.shutdown()
        _provider = None
        logger.info("otel tracer provider shut down")


def get_tracer(name: str = __name__) -> trace.Tracer:
    return trace.get_tracer(name)


@contextmanager
def delivery_span(
    webhook_id: UUID,
    event_type: str,
    method: str,
    *,
    delivery_id: UUID | None = None,
    tracer: trace.Tracer | None = None,
) -> Iterator[trace.Span]:
    attributes = {
        "webhook.id": str(webhook_id),
        "webhook.event": event_type,
        "http.method": method,
    }
    if delivery_id is not None:
        attributes["webhook.delivery_id"] = str(delivery_id)
    tracer = tracer or get_tracer("webhook_service.delivery")
    with tracer.start_as_current_span(
        DELIVERY_SPAN_NAME, kind=SpanKind.CLIENT, attributes=attributes
    ) as span:
        yield span


def record_outcome(span: trace.Span, outcome: DeliveryOutcome) -> None:
    """Annotate a delivery span with the attempt result."""
    span.set_attribute("webhook.success", outcome.success)
    span.set_attribute("webhook.response_time_ms", outcome.response_time)
    if outcome.status_code is not None:
        span.set_attribute("http.status_code", outcome.status_code)
    if not outcome.success:
        span.set_status(Status(StatusCode.ERROR, outcome.error))
