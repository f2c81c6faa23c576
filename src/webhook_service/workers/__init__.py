"""Background workers for webhook-service.

:data:`retry_scheduler` resubmits due events every
``webhook_retry_interval_seconds``; :data:`maintenance_worker` reclaims stuck
leases and purges expired history every ``worker_interval_seconds``.
"""
from __future__ import annotations

from webhook_service.settings import settings
from webhook_service.worker import BackgroundWorker, WorkerTask
from webhook_service.workers.webhook_purge import webhook_purge_expired
from webhook_service.workers.webhook_reclaim import webhook_reclaim_stuck
from webhook_service.workers.webhook_retry import webhook_retry_sweep

retry_scheduler = BackgroundWorker(
    name="webhook_retry",
    interval_seconds=settings.webhook_retry_interval_seconds,
    tasks=[WorkerTask(name="webhook_retry_sweep", fn=webhook_retry_sweep)],
)

maintenance_worker = BackgroundWorker(
    name="maintenance",
    interval_seconds=settings.worker_interval_seconds,
    tasks=[
        WorkerTask(name="webhook_reclaim_stuck", fn=webhook_reclaim_stuck),
        WorkerTask(name="webhook_purge_expired", fn=webhook_purge_expired),
    ],
)

__all__ = [
    "retry_scheduler",
    "maintenance_worker",
]
