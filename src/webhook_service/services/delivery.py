"""Outbound HTTP delivery of webhook events."""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Protocol
from uuid import UUID

import structlog
from aiohttp import ClientError, ClientSession, ClientTimeout
from opentelemetry import trace

from webhook_service.domain.enums import WebhookEventStatus
from webhook_service.domain.webhooks import (
    DeliveryOutcome,
    Webhook,
    WebhookEvent,
    validate_custom_headers,
)
from webhook_service.otel import delivery_span, record_outcome
from webhook_service.services.backoff import next_retry_at
from webhook_service.services.signing import encode_body, sign
from webhook_service.services.statistics import StatisticsAggregator
from webhook_service.settings import Settings, settings as default_settings

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"
ID_HEADER = "X-Webhook-ID"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
DELIVERY_ID_HEADER = "X-Webhook-Delivery-Id"

_SYSTEM_HEADERS = {
    h.lower()
    for h in (
        "Content-Type",
        "User-Agent",
        SIGNATURE_HEADER,
        EVENT_HEADER,
        ID_HEADER,
        TIMESTAMP_HEADER,
        DELIVERY_ID_HEADER,
    )
}


class EventStore(Protocol):
    async def claim(self, event_id: UUID, *, expected_attempts: int) -> WebhookEvent | None: ...

    async def mark_delivered(
        self, event_id: UUID, *, lease_id: UUID, outcome: DeliveryOutcome, at: datetime
    ) -> WebhookEvent | None: ...

    async def mark_attempt_failed(
        self,
        event_id: UUID,
        *,
        lease_id: UUID,
        attempts: int,
        status: WebhookEventStatus,
        next_retry_at: datetime | None,
        outcome: DeliveryOutcome,
        at: datetime,
    ) -> WebhookEvent | None: ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _flatten_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Join repeated response headers (``Set-Cookie``, ``Via``) with ", "."""
    flat: dict[str, str] = {}
    for name, value in headers.items():
        flat[name] = f"{flat[name]}, {value}" if name in flat else value
    return flat


class DeliveryExecutor:
    """Performs delivery attempts and records their outcome on the event record.

    ``deliver`` is a single HTTP call with no persistence; ``execute`` wraps it
    with the claim / complete protocol of the event store and feeds the
    statistics aggregator.
    """

    def __init__(
        self,
        session: ClientSession,
        events: EventStore,
        statistics: StatisticsAggregator,
        *,
        config: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
        tracer: trace.Tracer | None = None,
    ):
        self._session = session
        self._events = events
        self._statistics = statistics
        self._config = config or default_settings
        self._clock = clock
        self._tracer = tracer
        self._semaphore = asyncio.Semaphore(self._config.webhook_dispatch_max_concurrency)

    def _build_headers(
        self, webhook: Webhook, payload: dict[str, Any], body: bytes, delivery_id: UUID | None
    ) -> dict[str, str]:
        headers = {k: v for k, v in webhook.headers.items() if k.lower() not in _SYSTEM_HEADERS}
        headers.update(
            {
                "Content-Type": webhook.content_type.value,
                "User-Agent": self._config.webhook_user_agent,
                SIGNATURE_HEADER: sign(body, webhook.secret),
                EVENT_HEADER: str(payload.get("event", "")),
                ID_HEADER: str(payload.get("id", "")),
                TIMESTAMP_HEADER: str(payload.get("timestamp", "")),
            }
        )
        if delivery_id is not None:
            headers[DELIVERY_ID_HEADER] = str(delivery_id)
        return headers

    def _truncate(self, text: str) -> str:
        limit = self._config.webhook_response_body_max_chars
        return text if len(text) <= limit else text[:limit]

    async def deliver(
        self,
        webhook: Webhook,
        payload: dict[str, Any],
        *,
        delivery_id: UUID | None = None,
    ) -> DeliveryOutcome:
        """Send ``payload`` to the webhook endpoint once.

        Transport errors and timeouts are returned as failed outcomes. A webhook
        without a secret, or with headers that cannot be sent, is a data
        integrity problem and raises ``ValueError``.
        """
        if not webhook.secret:
            raise ValueError(f"Webhook {webhook.id} has no signing secret")
        validate_custom_headers(webhook.headers)

        body = encode_body(payload, webhook.content_type)
        headers = self._build_headers(webhook, payload, body, delivery_id)
        timeout = ClientTimeout(total=webhook.timeout_seconds)

        with delivery_span(
            webhook.id,
            headers[EVENT_HEADER],
            webhook.method.value,
            delivery_id=delivery_id,
            tracer=self._tracer,
        ) as span:
            async with self._semaphore:
                outcome = await self._send(webhook, body, headers, timeout)
            record_outcome(span, outcome)
            return outcome

    async def _send(
        self,
        webhook: Webhook,
        body: bytes,
        headers: dict[str, str],
        timeout: ClientTimeout,
    ) -> DeliveryOutcome:
        started = time.perf_counter()
        try:
            async with self._session.request(
                webhook.method.value,
                webhook.url,
                data=body,
                headers=headers,
                timeout=timeout,
            ) as resp:
                text = await resp.text(errors="replace")
                elapsed = _elapsed_ms(started)
                response_body = self._truncate(text)
                success = 200 <= resp.status < 300
                return DeliveryOutcome(
                    success=success,
                    status_code=resp.status,
                    response_body=response_body,
                    response_headers=_flatten_headers(resp.headers),
                    response_time=elapsed,
                    error=None if success else f"HTTP {resp.status}: {response_body[:200]}",
                )
        except asyncio.TimeoutError:
            error = f"Request timed out after {webhook.timeout_seconds:g}s"
        except ClientError as exc:
            error = str(exc) or type(exc).__name__
        return DeliveryOutcome(success=False, response_time=_elapsed_ms(started), error=error)

    async def execute(self, event: WebhookEvent, webhook: Webhook) -> WebhookEvent | None:
        """Claim ``event``, attempt delivery and persist the outcome.

        Returns the updated record, or ``None`` when another worker owns it.
        """
        log = logger.bind(
            event_id=str(event.id),
            webhook_id=str(webhook.id),
            event_type=event.event_type,
        )
        claimed = await self._events.claim(event.id, expected_attempts=event.attempts)
        if claimed is None or claimed.lease_id is None:
            log.info("webhook_event claim skipped", reason="not pending")
            return None

        try:
            outcome = await self.deliver(webhook, claimed.payload, delivery_id=claimed.id)
        except ValueError as exc:
            log.error("webhook_event not deliverable", error=str(exc))
            outcome = DeliveryOutcome(success=False, response_time=0.0, error=str(exc))

        now = self._clock()
        if outcome.success:
            updated = await self._events.mark_delivered(
                claimed.id, lease_id=claimed.lease_id, outcome=outcome, at=now
            )
            if updated is None:
                log.warning("webhook_event lease lost", outcome="delivered")
                return None
            await self._statistics.record_success(webhook.id, outcome.response_time, now)
            log.info(
                "webhook delivered",
                status_code=outcome.status_code,
                response_time_ms=outcome.response_time,
                attempt=claimed.attempts + 1,
            )
            return updated

        attempts = claimed.attempts + 1
        if attempts < claimed.max_attempts:
            status = WebhookEventStatus.PENDING
            retry_at: datetime | None = next_retry_at(webhook.retry_config, attempts, now)
        else:
            status = WebhookEventStatus.FAILED
            retry_at = None
        updated = await self._events.mark_attempt_failed(
            claimed.id,
            lease_id=claimed.lease_id,
            attempts=attempts,
            status=status,
            next_retry_at=retry_at,
            outcome=outcome,
            at=now,
        )
        if updated is None:
            log.warning("webhook_event lease lost", outcome="failed")
            return None
        await self._statistics.record_failure(webhook.id, now)
        log.warning(
            "webhook delivery failed",
            status_code=outcome.status_code,
            error=outcome.error,
            attempt=attempts,
            max_attempts=claimed.max_attempts,
            next_retry_at=retry_at.isoformat() if retry_at else None,
            final=status == WebhookEventStatus.FAILED,
        )
        return updated
