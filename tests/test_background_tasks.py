"""Unit tests for webhook_service.workers task functions.

Uses a mocked runtime to avoid database dependency.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from aiohttp import web

from webhook_service.settings import settings
from webhook_service.workers import maintenance_worker, retry_scheduler


def _runtime(**events_methods):
    events = SimpleNamespace(**events_methods)
    return SimpleNamespace(
        repositories=SimpleNamespace(events=events),
        scheduler=SimpleNamespace(sweep=AsyncMock(return_value=0)),
    )


# ---------------------------------------------------------------------------
# webhook_reclaim_stuck
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_webhook_reclaim_stuck_returns_summary():
    now = datetime.now(timezone.utc)
    runtime = _runtime(reclaim_stuck=AsyncMock(return_value=2))
    with patch("webhook_service.workers.webhook_reclaim.get_runtime", return_value=runtime):
        from webhook_service.workers.webhook_reclaim import webhook_reclaim_stuck

        result = await webhook_reclaim_stuck(web.Application(), now)

    assert result == "reclaimed=2"
    cutoff = runtime.repositories.events.reclaim_stuck.call_args[0][0]
    assert cutoff == now - timedelta(minutes=settings.webhook_stuck_minutes)


@pytest.mark.asyncio
async def test_webhook_reclaim_stuck_returns_none_when_nothing_stuck():
    runtime = _runtime(reclaim_stuck=AsyncMock(return_value=0))
    with patch("webhook_service.workers.webhook_reclaim.get_runtime", return_value=runtime):
        from webhook_service.workers.webhook_reclaim import webhook_reclaim_stuck

        result = await webhook_reclaim_stuck(web.Application(), datetime.now(timezone.utc))

    assert result is None


# ---------------------------------------------------------------------------
# webhook_purge_expired
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_webhook_purge_expired_returns_summary():
    now = datetime.now(timezone.utc)
    runtime = _runtime(delete_expired=AsyncMock(return_value=10))
    with patch("webhook_service.workers.webhook_purge.get_runtime", return_value=runtime):
        from webhook_service.workers.webhook_purge import webhook_purge_expired

        result = await webhook_purge_expired(web.Application(), now)

    assert result == "purged=10"
    cutoff = runtime.repositories.events.delete_expired.call_args[0][0]
    assert cutoff == now - timedelta(days=settings.webhook_event_retention_days)


# ---------------------------------------------------------------------------
# webhook_retry_sweep
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_webhook_retry_sweep_returns_summary():
    now = datetime.now(timezone.utc)
    runtime = _runtime()
    runtime.scheduler.sweep.return_value = 4
    with patch("webhook_service.workers.webhook_retry.get_runtime", return_value=runtime):
        from webhook_service.workers.webhook_retry import webhook_retry_sweep

        result = await webhook_retry_sweep(web.Application(), now)

    assert result == "resubmitted=4"
    runtime.scheduler.sweep.assert_awaited_once_with(now)


@pytest.mark.asyncio
async def test_webhook_retry_sweep_returns_none_when_idle():
    runtime = _runtime()
    with patch("webhook_service.workers.webhook_retry.get_runtime", return_value=runtime):
        from webhook_service.workers.webhook_retry import webhook_retry_sweep

        result = await webhook_retry_sweep(web.Application(), datetime.now(timezone.utc))

    assert result is None


# ---------------------------------------------------------------------------
# worker assembly
# ---------------------------------------------------------------------------


def test_workers_have_correct_tasks():
    assert [t.name for t in retry_scheduler.tasks] == ["webhook_retry_sweep"]
    assert [t.name for t in maintenance_worker.tasks] == [
        "webhook_reclaim_stuck",
        "webhook_purge_expired",
    ]
    assert retry_scheduler.interval_seconds == settings.webhook_retry_interval_seconds
    assert retry_scheduler.app_key != maintenance_worker.app_key
