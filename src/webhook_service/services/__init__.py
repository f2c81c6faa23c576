"""Domain services exports."""

from webhook_service.services.delivery import DeliveryExecutor
from webhook_service.services.dispatcher import EventDispatcher
from webhook_service.services.scheduler import RetryScheduler
from webhook_service.services.statistics import StatisticsAggregator
from webhook_service.services.webhooks import WebhookService

__all__ = [
    "DeliveryExecutor",
    "EventDispatcher",
    "RetryScheduler",
    "StatisticsAggregator",
    "WebhookService",
]
