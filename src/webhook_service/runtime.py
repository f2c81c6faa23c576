"""Per-application delivery components (HTTP session, executor, dispatcher, scheduler)."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog
from aiohttp import ClientSession, web

from webhook_service.db.pool import get_pool
from webhook_service.repositories import WebhookEventRepository, WebhookRepository
from webhook_service.services.delivery import DeliveryExecutor
from webhook_service.services.dispatcher import EventDispatcher
from webhook_service.services.scheduler import RetryScheduler
from webhook_service.services.statistics import StatisticsAggregator

logger = structlog.get_logger(__name__)

REPOSITORIES_KEY = "webhook_repositories"
RUNTIME_KEY = "webhook_runtime"


@dataclass
class Repositories:
    webhooks: Any
    events: Any


@dataclass
class WebhookRuntime:
    repositories: Repositories
    session: ClientSession
    executor: DeliveryExecutor
    dispatcher: EventDispatcher
    scheduler: RetryScheduler


async def start_runtime(app: web.Application) -> None:
    """Build the delivery components. Register with ``app.on_startup`` after the pool."""
    repositories: Repositories | None = app.get(REPOSITORIES_KEY)
    if repositories is None:
        pool = await get_pool()
        repositories = Repositories(
            webhooks=WebhookRepository(pool),
            events=WebhookEventRepository(pool),
        )
        app[REPOSITORIES_KEY] = repositories

    session = ClientSession()
    executor = DeliveryExecutor(
        session, repositories.events, StatisticsAggregator(repositories.webhooks)
    )
    app[RUNTIME_KEY] = WebhookRuntime(
        repositories=repositories,
        session=session,
        executor=executor,
        dispatcher=EventDispatcher(repositories.webhooks, repositories.events, executor),
        scheduler=RetryScheduler(repositories.webhooks, repositories.events, executor),
    )


async def stop_runtime(app: web.Application) -> None:
    runtime: WebhookRuntime | None = app.get(RUNTIME_KEY)
    if runtime is None:
        return
    await runtime.dispatcher.aclose()
    await runtime.session.close()
    logger.info("webhook runtime stopped")


def get_runtime(app: web.Application) -> WebhookRuntime:
    runtime = app.get(RUNTIME_KEY)
    if runtime is None:
        raise RuntimeError("Webhook runtime not initialized. Register start_runtime first.")
    return runtime
