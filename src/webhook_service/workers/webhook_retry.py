"""Worker: resubmit due pending webhook events."""
from __future__ import annotations

from datetime import datetime

from aiohttp import web

from webhook_service.runtime import get_runtime


async def webhook_retry_sweep(app: web.Application, now: datetime) -> str | None:
    resubmitted = await get_runtime(app).scheduler.sweep(now)
    return f"resubmitted={resubmitted}" if resubmitted else None
