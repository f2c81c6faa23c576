"""Periodic in-process background worker for the aiohttp app.

Usage::

    async def purge_expired(app: web.Application, now: datetime) -> str | None:
        purged = await repo.delete_expired(now - timedelta(days=30))
        return f"purged={purged}" if purged else None

    worker = BackgroundWorker(
        name="maintenance",
        interval_seconds=300.0,
        tasks=[WorkerTask(name="purge_expired", fn=purge_expired)],
    )

    app.on_startup.append(worker.start)
    app.on_cleanup.append(worker.stop)
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

import structlog
from aiohttp import web

logger = structlog.get_logger(__name__)

# A task receives the application and the sweep time (UTC) and returns an
# optional summary, logged when non-empty.
TaskFn = Callable[[web.Application, datetime], Awaitable[str | None]]


@dataclass
class WorkerTask:
    name: str
    fn: TaskFn


@dataclass
class BackgroundWorker:
    """Runs its tasks every ``interval_seconds`` until cancelled.

    Tasks run one after another; a failing task is logged and does not
    prevent the others from running in the same sweep. Several workers can
    share one application as long as their names differ.
    """

    name: str
    interval_seconds: float = 60.0
    tasks: Sequence[WorkerTask] = field(default_factory=list)

    @property
    def app_key(self) -> str:
        return f"__background_worker_{self.name}__"

    async def start(self, app: web.Application) -> None:
        """Register with ``app.on_startup``."""
        app[self.app_key] = asyncio.create_task(self._loop(app), name=f"worker-{self.name}")

    async def stop(self, app: web.Application) -> None:
        """Register with ``app.on_cleanup``."""
        task = app.get(self.app_key)
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def run_once(self, app: web.Application, now: datetime | None = None) -> None:
        now = now or datetime.now(timezone.utc)
        for task in self.tasks:
            try:
                summary = await task.fn(app, now)
            except Exception:
                logger.exception("background_task failed", worker=self.name, task=task.name)
                continue
            if summary:
                logger.info(
                    "background_task completed",
                    worker=self.name,
                    task=task.name,
                    summary=summary,
                )

    async def _loop(self, app: web.Application) -> None:
        logger.info(
            "background_worker started",
            worker=self.name,
            interval_seconds=self.interval_seconds,
            tasks=[t.name for t in self.tasks],
        )
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.run_once(app)
            except asyncio.CancelledError:
                logger.info("background_worker stopped", worker=self.name)
                raise
            except Exception:
                logger.exception("background_worker sweep failed", worker=self.name)
