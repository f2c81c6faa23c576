"""Per-webhook delivery counters."""
from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID


class StatisticsStore(Protocol):
    async def increment_success(
        self, webhook_id: UUID, *, response_time: float, at: datetime
    ) -> None: ...

    async def increment_failure(self, webhook_id: UUID, *, at: datetime) -> None: ...

class StatisticsAggregator:
    """Applies one delivery outcome to the webhook counters.

    Callers invoke it only after their conditional event update matched, so a
    given attempt is counted once. The increments themselves happen in SQL.
    """

    def __init__(self, store: StatisticsStore):
        self._store = store

    async def record_success(self, webhook_id: UUID, response_time: float, at: datetime) -> None:
        await self._store.increment_success(webhook_id, response_time=response_time, at=at)

    async def record_failure(self, webhook_id: UUID, at: datetime) -> None:
        await self._store.increment_failure(webhook_id, at=at)
