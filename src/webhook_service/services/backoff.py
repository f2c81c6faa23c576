"""Retry delay policy for failed deliveries."""
from __future__ import annotations

from datetime import datetime, timedelta

from webhook_service.domain.enums import BackoffStrategy
from webhook_service.domain.webhooks import RetryConfig

# Exponential-family schedule in units of ``initial_delay_seconds`` (1s, 5s, 15s, 1m, 5m by default).
RETRY_SCHEDULE: tuple[int, ...] = (1, 5, 15, 60, 300)


def retry_delay(config: RetryConfig, failed_attempts: int) -> float:
    """Seconds to wait after the ``failed_attempts``-th failure (1-based)."""
    failed_attempts = max(failed_attempts, 1)
    if config.backoff_strategy == BackoffStrategy.FIXED:
        delay = config.initial_delay_seconds
    elif config.backoff_strategy == BackoffStrategy.LINEAR:
        delay = config.initial_delay_seconds * failed_attempts
    else:
        index = min(failed_attempts - 1, len(RETRY_SCHEDULE) - 1)
        delay = config.initial_delay_seconds * RETRY_SCHEDULE[index]
    return min(delay, config.max_delay_seconds)


def next_retry_at(config: RetryConfig, failed_attempts: int, now: datetime) -> datetime:
    return now + timedelta(seconds=retry_delay(config, failed_attempts))
