"""Periodic resubmission of pending webhook events."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Iterable, List, Protocol
from uuid import UUID

import structlog

from webhook_service.domain.enums import WebhookStatus
from webhook_service.domain.webhooks import Webhook, WebhookEvent
from webhook_service.services.delivery import DeliveryExecutor
from webhook_service.settings import Settings, settings as default_settings

logger = structlog.get_logger(__name__)


class WebhookLookup(Protocol):
    async def get_many(self, webhook_ids: Iterable[UUID]) -> dict[UUID, Webhook]: ...


class DueEventSource(Protocol):
    async def list_due(
        self, *, now: datetime, orphan_before: datetime, limit: int = 100
    ) -> List[WebhookEvent]: ...


class RetryScheduler:
    """Finds due ``pending`` records and hands them back to the executor.

    Records of webhooks that are no longer ``active`` are left untouched until
    the webhook is resumed.
    """

    def __init__(
        self,
        webhooks: WebhookLookup,
        events: DueEventSource,
        executor: DeliveryExecutor,
        *,
        config: Settings | None = None,
    ):
        self._webhooks = webhooks
        self._events = events
        self._executor = executor
        self._config = config or default_settings

    async def sweep(self, now: datetime) -> int:
        """Run one pass and return how many records were resubmitted."""
        orphan_before = now - timedelta(seconds=self._config.webhook_orphan_grace_seconds)
        due = await self._events.list_due(
            now=now, orphan_before=orphan_before, limit=self._config.webhook_retry_batch_size
        )
        if not due:
            return 0

        webhooks = await self._webhooks.get_many(event.webhook_id for event in due)
        jobs = []
        for event in due:
            webhook = webhooks.get(event.webhook_id)
            if webhook is None or webhook.status != WebhookStatus.ACTIVE:
                continue
            if not event.is_due(now, orphan_before):
                continue
            jobs.append(self._resubmit(event, webhook))

        if jobs:
            await asyncio.gather(*jobs)
        return len(jobs)

    async def _resubmit(self, event: WebhookEvent, webhook: Webhook) -> None:
        try:
            await self._executor.execute(event, webhook)
        except Exception:
            logger.exception(
                "webhook retry failed",
                event_id=str(event.id),
                webhook_id=str(webhook.id),
            )
