"""Fan-out of domain events to subscribed webhooks."""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Callable, List, Protocol, Sequence
from uuid import UUID, uuid4

import structlog

from webhook_service.core.exceptions import InvalidEventTypeError
from webhook_service.domain.dto import WebhookEventCreateDTO
from webhook_service.domain.enums import EventType
from webhook_service.domain.webhooks import Webhook, WebhookEvent, WebhookPayload
from webhook_service.services.delivery import DeliveryExecutor, utcnow
from webhook_service.services.filters import matches_filters
from webhook_service.settings import Settings, settings as default_settings

logger = structlog.get_logger(__name__)


class WebhookSource(Protocol):
    async def list_active_matching(self, app_id: UUID, event_type: EventType) -> List[Webhook]: ...


class EventSink(Protocol):
    async def insert_many(self, items: Sequence[WebhookEventCreateDTO]) -> List[WebhookEvent]: ...


def parse_event_type(value: str | EventType) -> EventType:
    try:
        event_type = EventType(value)
    except ValueError as exc:
        raise InvalidEventTypeError(f"Unknown event type: {value}") from exc
    if event_type == EventType.ALL:
        raise InvalidEventTypeError("The wildcard '*' can only be used in subscriptions")
    return event_type


def _resource_id(data: dict[str, Any]) -> str | None:
    value = data.get("id")
    return str(value) if value is not None else None


class EventDispatcher:
    """Turns one domain event into persisted per-webhook records.

    First attempts run as background tasks owned by the dispatcher; the
    caller only waits for the records to be written.
    """

    def __init__(
        self,
        webhooks: WebhookSource,
        events: EventSink,
        executor: DeliveryExecutor,
        *,
        config: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._webhooks = webhooks
        self._events = events
        self._executor = executor
        self._config = config or default_settings
        self._clock = clock
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def trigger_event(
        self,
        app_id: UUID,
        event_type: str | EventType,
        data: dict[str, Any],
        resource_id: str | None = None,
    ) -> List[WebhookEvent]:
        parsed = parse_event_type(event_type)
        log = logger.bind(app_id=str(app_id), event_type=parsed.value)

        webhooks = await self._webhooks.list_active_matching(app_id, parsed)
        if not webhooks:
            log.debug("no webhooks subscribed")
            return []

        now = self._clock()
        payload = WebhookPayload(
            id=uuid4(),
            event=parsed.value,
            timestamp=now,
            data=data,
            app_id=app_id,
            version=self._config.webhook_payload_version,
        ).to_wire()

        matched = [
            w for w in webhooks if w.subscribes_to(parsed) and matches_filters(w.filters, data)
        ]
        if not matched:
            log.debug("event filtered out", candidates=len(webhooks))
            return []

        records = await self._events.insert_many(
            [
                WebhookEventCreateDTO(
                    webhook_id=webhook.id,
                    app_id=app_id,
                    event_type=parsed.value,
                    resource_id=resource_id,
                    payload=payload,
                    max_attempts=webhook.retry_config.effective_max_attempts,
                    scheduled_for=now,
                )
                for webhook in matched
            ]
        )
        by_id = {webhook.id: webhook for webhook in matched}
        for record in records:
            self._spawn(record, by_id[record.webhook_id])

        log.info("event dispatched", payload_id=payload["id"], webhooks=len(records))
        return records

    def _spawn(self, event: WebhookEvent, webhook: Webhook) -> None:
        task = asyncio.create_task(self._run(event, webhook), name=f"webhook-delivery-{event.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, event: WebhookEvent, webhook: Webhook) -> None:
        try:
            await self._executor.execute(event, webhook)
        except asyncio.CancelledError:
            raise
        except Exception:
            # The record stays pending/processing and is picked up by the retry sweep or reclaim.
            logger.exception(
                "webhook delivery task failed",
                event_id=str(event.id),
                webhook_id=str(webhook.id),
            )

    async def drain(self) -> None:
        """Wait for all in-flight first attempts."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("dispatcher stopped", cancelled=len(tasks))

    async def on_file_uploaded(self, app_id: UUID, data: dict[str, Any]) -> List[WebhookEvent]:
        return await self.trigger_event(app_id, EventType.FILE_UPLOADED, data, _resource_id(data))

    async def on_file_deleted(self, app_id: UUID, data: dict[str, Any]) -> List[WebhookEvent]:
        return await self.trigger_event(app_id, EventType.FILE_DELETED, data, _resource_id(data))

    async def on_file_updated(self, app_id: UUID, data: dict[str, Any]) -> List[WebhookEvent]:
        return await self.trigger_event(app_id, EventType.FILE_UPDATED, data, _resource_id(data))

    async def on_file_downloaded(self, app_id: UUID, data: dict[str, Any]) -> List[WebhookEvent]:
        return await self.trigger_event(app_id, EventType.FILE_DOWNLOADED, data, _resource_id(data))

    async def on_folder_created(self, app_id: UUID, data: dict[str, Any]) -> List[WebhookEvent]:
        return await self.trigger_event(app_id, EventType.FOLDER_CREATED, data, _resource_id(data))

    async def on_quota_exceeded(self, app_id: UUID, data: dict[str, Any]) -> List[WebhookEvent]:
        return await self.trigger_event(app_id, EventType.QUOTA_EXCEEDED, data, _resource_id(data))
