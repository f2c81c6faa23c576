"""Webhook administration: subscriptions, event history, manual actions and statistics."""
from __future__ import annotations

import re
import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, List, Tuple
from uuid import UUID, uuid4

import structlog

from webhook_service.core.exceptions import (
    ConcurrentModificationError,
    InvalidEventStateError,
    RetryLimitExceededError,
    WebhookInactiveError,
)
from webhook_service.domain.dto import WebhookCreateDTO, WebhookEventQueryDTO, WebhookUpdateDTO
from webhook_service.domain.enums import (
    EVENT_TYPE_DESCRIPTIONS,
    EventType,
    WebhookEventStatus,
    WebhookStatus,
)
from webhook_service.domain.webhooks import (
    DeliveryOutcome,
    Webhook,
    WebhookEvent,
    WebhookPayload,
    WebhookTestResult,
)
from webhook_service.repositories.webhook_events import WebhookEventRepository
from webhook_service.repositories.webhooks import WebhookRepository
from webhook_service.services.delivery import DeliveryExecutor, utcnow
from webhook_service.settings import Settings, settings as default_settings

logger = structlog.get_logger(__name__)

DEFAULT_STATS_PERIOD = "30d"
_PERIOD_RE = re.compile(r"^(\d+)([dhm])$")
_PERIOD_UNITS = {"d": "days", "h": "hours", "m": "minutes"}


def generate_secret() -> str:
    """64 hex characters (32 random bytes)."""
    return secrets.token_hex(32)


def parse_period(period: str) -> timedelta:
    """Parse ``30d`` / ``24h`` / ``90m`` style windows."""
    match = _PERIOD_RE.match(period.strip())
    if match is None or int(match.group(1)) == 0:
        raise ValueError(f"Invalid period: {period!r}; expected e.g. 30d, 24h or 90m")
    return timedelta(**{_PERIOD_UNITS[match.group(2)]: int(match.group(1))})


class WebhookService:
    def __init__(
        self,
        webhook_repository: WebhookRepository,
        event_repository: WebhookEventRepository,
        executor: DeliveryExecutor,
        *,
        config: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._webhooks = webhook_repository
        self._events = event_repository
        self._executor = executor
        self._config = config or default_settings
        self._clock = clock

    async def create_webhook(
        self, app_id: UUID, data: WebhookCreateDTO, *, created_by: UUID | None = None
    ) -> Webhook:
        webhook = await self._webhooks.create(
            app_id=app_id,
            data=data,
            secret=data.secret or generate_secret(),
            created_by=created_by,
        )
        logger.info("webhook created", webhook_id=str(webhook.id), app_id=str(app_id))
        return webhook

    async def get_webhook(self, app_id: UUID, webhook_id: UUID) -> Webhook:
        return await self._webhooks.get(app_id, webhook_id)

    async def list_webhooks(
        self,
        app_id: UUID,
        *,
        status: WebhookStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Webhook], int]:
        return await self._webhooks.list_by_app(app_id, status=status, limit=limit, offset=offset)

    async def update_webhook(
        self, app_id: UUID, webhook_id: UUID, updates: WebhookUpdateDTO
    ) -> Webhook:
        return await self._webhooks.update(app_id, webhook_id, updates)

    async def delete_webhook(self, app_id: UUID, webhook_id: UUID) -> None:
        await self._webhooks.delete(app_id, webhook_id)
        logger.info("webhook deleted", webhook_id=str(webhook_id), app_id=str(app_id))

    async def pause_webhook(self, app_id: UUID, webhook_id: UUID) -> Webhook:
        return await self._webhooks.set_status(app_id, webhook_id, WebhookStatus.PAUSED)

    async def resume_webhook(self, app_id: UUID, webhook_id: UUID) -> Webhook:
        return await self._webhooks.set_status(app_id, webhook_id, WebhookStatus.ACTIVE)

    async def toggle_webhook(self, app_id: UUID, webhook_id: UUID) -> Webhook:
        return await self._webhooks.toggle_status(app_id, webhook_id)

    async def list_events(
        self,
        app_id: UUID,
        webhook_id: UUID,
        query: WebhookEventQueryDTO,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WebhookEvent], int]:
        await self._webhooks.get(app_id, webhook_id)
        return await self._events.list_by_webhook(
            app_id, webhook_id, query, limit=limit, offset=offset
        )

    async def get_event(self, app_id: UUID, webhook_id: UUID, event_id: UUID) -> WebhookEvent:
        return await self._events.get_for_webhook(app_id, webhook_id, event_id)

    async def retry_webhook_event(
        self, app_id: UUID, webhook_id: UUID, event_id: UUID
    ) -> WebhookEvent:
        """Reset a record to ``pending`` and attempt delivery right away.

        The attempt budget is not extended: a record that used all of its
        attempts cannot be retried.
        """
        webhook = await self._webhooks.get(app_id, webhook_id)
        if webhook.status != WebhookStatus.ACTIVE:
            raise WebhookInactiveError("Webhook is not active")
        event = await self._events.get_for_webhook(app_id, webhook_id, event_id)
        if event.status == WebhookEventStatus.DELIVERED:
            raise InvalidEventStateError("Event has already been delivered")
        if event.status == WebhookEventStatus.PROCESSING:
            raise InvalidEventStateError("Event is being delivered")
        if event.attempts >= event.max_attempts:
            raise RetryLimitExceededError("maximum retry attempts exceeded")

        reset = await self._events.reset_for_retry(
            event.id,
            expected_status=event.status,
            expected_attempts=event.attempts,
            at=self._clock(),
        )
        if reset is None:
            raise ConcurrentModificationError("Event was modified concurrently")

        logger.info("webhook_event manual retry", event_id=str(event.id), webhook_id=str(webhook.id))
        result = await self._executor.execute(reset, webhook)
        if result is not None:
            return result
        # Another worker claimed it in between; report whatever state it is in now.
        return await self._events.get_for_webhook(app_id, webhook_id, event_id)

    async def cancel_webhook_event(
        self, app_id: UUID, webhook_id: UUID, event_id: UUID
    ) -> WebhookEvent:
        event = await self._events.get_for_webhook(app_id, webhook_id, event_id)
        if event.status != WebhookEventStatus.PENDING:
            raise InvalidEventStateError(f"Cannot cancel an event in status {event.status.value}")
        cancelled = await self._events.cancel(event.id)
        if cancelled is None:
            raise ConcurrentModificationError("Event was modified concurrently")
        return cancelled

    async def test_webhook(
        self, app_id: UUID, webhook_id: UUID, data: dict[str, Any] | None = None
    ) -> WebhookTestResult:
        """Send a ``webhook.test`` payload synchronously.

        No event record is created and the webhook counters are left alone; the
        result is stored as ``last_test_result``.
        """
        webhook = await self._webhooks.get(app_id, webhook_id)
        now = self._clock()
        payload = WebhookPayload(
            id=uuid4(),
            event=EventType.WEBHOOK_TEST.value,
            timestamp=now,
            data=data or {"message": "This is a test webhook delivery"},
            app_id=app_id,
            version=self._config.webhook_payload_version,
        ).to_wire()
        try:
            outcome = await self._executor.deliver(webhook, payload)
        except ValueError as exc:
            logger.error("webhook not deliverable", webhook_id=str(webhook.id), error=str(exc))
            outcome = DeliveryOutcome(success=False, response_time=0.0, error=str(exc))
        result = WebhookTestResult(
            success=outcome.success,
            status_code=outcome.status_code,
            response_time=outcome.response_time,
            error=outcome.error,
            tested_at=now,
        )
        await self._webhooks.record_test_result(webhook.id, result)
        logger.info(
            "webhook tested",
            webhook_id=str(webhook.id),
            success=result.success,
            status_code=result.status_code,
        )
        return result

    async def get_statistics(
        self, app_id: UUID, webhook_id: UUID, period: str = DEFAULT_STATS_PERIOD
    ) -> dict[str, Any]:
        window = parse_period(period)
        webhook = await self._webhooks.get(app_id, webhook_id)
        now = self._clock()
        since = now - window
        summary = await self._events.summarize(webhook.id, since)
        daily = await self._events.daily_counts(webhook.id, since)

        counts = {status.value: 0 for status in WebhookEventStatus}
        counts.update(summary["counts"])
        return {
            "webhook_id": str(webhook.id),
            "period": period,
            "since": since.isoformat(),
            "until": now.isoformat(),
            "totals": webhook.statistics.model_dump(mode="json"),
            "events": counts,
            "total_events": sum(counts.values()),
            "response_time": {
                "avg": round(summary["avg_response_time"], 2),
                "min": summary["min_response_time"],
                "max": summary["max_response_time"],
            },
            "daily": daily,
        }

    @staticmethod
    def event_types() -> List[dict[str, str]]:
        return [
            {"type": event_type.value, "description": EVENT_TYPE_DESCRIPTIONS[event_type]}
            for event_type in EventType
        ]
