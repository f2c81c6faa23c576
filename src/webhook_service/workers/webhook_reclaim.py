"""Worker: reclaim webhook events stuck in processing."""
from __future__ import annotations

from datetime import datetime, timedelta

from aiohttp import web

from webhook_service.runtime import get_runtime
from webhook_service.settings import settings


async def webhook_reclaim_stuck(app: web.Application, now: datetime) -> str | None:
    """Release leases older than ``webhook_stuck_minutes`` back to ``pending``."""
    cutoff = now - timedelta(minutes=settings.webhook_stuck_minutes)
    reclaimed = await get_runtime(app).repositories.events.reclaim_stuck(cutoff)
    return f"reclaimed={reclaimed}" if reclaimed else None
