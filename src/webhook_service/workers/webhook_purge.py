"""Worker: purge old terminal webhook events."""
from __future__ import annotations

from datetime import datetime, timedelta

from aiohttp import web

from webhook_service.runtime import get_runtime
from webhook_service.settings import settings


async def webhook_purge_expired(app: web.Application, now: datetime) -> str | None:
    """Delete delivered/failed/cancelled events older than ``webhook_event_retention_days``."""
    cutoff = now - timedelta(days=settings.webhook_event_retention_days)
    purged = await get_runtime(app).repositories.events.delete_expired(cutoff)
    return f"purged={purged}" if purged else None
