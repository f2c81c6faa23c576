"""Webhook event records: the durable delivery ledger.

Every state change after creation is a conditional ``UPDATE`` so two workers
racing on the same record cannot both apply their result. A worker first
claims a ``pending`` record (``status -> processing`` with a fresh
``lease_id``); completion writes only match while that lease is held.
"""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, List, Sequence, Tuple
from uuid import UUID, uuid4

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.dto import WebhookEventCreateDTO, WebhookEventQueryDTO
from webhook_service.domain.enums import TERMINAL_EVENT_STATUSES, WebhookEventStatus
from webhook_service.domain.webhooks import DeliveryOutcome, WebhookEvent
from webhook_service.repositories.base import BaseRepository


class WebhookEventRepository(BaseRepository):
    JSONB_COLUMNS = {"payload", "response_headers"}

    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _normalize(payload: dict[str, Any]) -> dict[str, Any]:
        payload.pop("total_count", None)
        for column in WebhookEventRepository.JSONB_COLUMNS:
            value = payload.get(column)
            if isinstance(value, str):
                payload[column] = json.loads(value)
        return payload

    @staticmethod
    def _to_model(record: Record) -> WebhookEvent:
        return WebhookEvent.model_validate(WebhookEventRepository._normalize(dict(record)))

    def _to_optional(self, record: Record | None) -> WebhookEvent | None:
        return self._to_model(record) if record is not None else None

    async def insert_many(self, items: Sequence[WebhookEventCreateDTO]) -> List[WebhookEvent]:
        """Insert all records of one dispatch in a single statement."""
        if not items:
            return []
        records = await self._fetch(
            """
            INSERT INTO webhook_events (
                webhook_id,
                app_id,
                event_type,
                resource_id,
                payload,
                status,
                attempts,
                max_attempts,
                scheduled_for
            )
            SELECT u.webhook_id, u.app_id, u.event_type, u.resource_id, u.payload::jsonb,
                   'pending', 0, u.max_attempts, u.scheduled_for
            FROM unnest($1::uuid[], $2::uuid[], $3::text[], $4::text[], $5::text[],
                        $6::int[], $7::timestamptz[])
                 AS u(webhook_id, app_id, event_type, resource_id, payload,
                      max_attempts, scheduled_for)
            RETURNING *
            """,
            [item.webhook_id for item in items],
            [item.app_id for item in items],
            [item.event_type for item in items],
            [item.resource_id for item in items],
            [json.dumps(item.payload) for item in items],
            [item.max_attempts for item in items],
            [item.scheduled_for for item in items],
        )
        return [self._to_model(r) for r in records]

    async def get(self, event_id: UUID) -> WebhookEvent | None:
        record = await self._fetchrow("SELECT * FROM webhook_events WHERE id = $1", event_id)
        return self._to_optional(record)

    async def get_for_webhook(
        self, app_id: UUID, webhook_id: UUID, event_id: UUID
    ) -> WebhookEvent:
        record = await self._fetchrow(
            """
            SELECT *
            FROM webhook_events
            WHERE app_id = $1 AND webhook_id = $2 AND id = $3
            """,
            app_id,
            webhook_id,
            event_id,
        )
        if record is None:
            raise NotFoundError("Webhook event not found")
        return self._to_model(record)

    async def list_by_webhook(
        self,
        app_id: UUID,
        webhook_id: UUID,
        query: WebhookEventQueryDTO,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WebhookEvent], int]:
        where = ["app_id = $1", "webhook_id = $2"]
        values: list[Any] = [app_id, webhook_id]
        idx = 3
        if query.status is not None:
            where.append(f"status = ${idx}")
            values.append(query.status.value)
            idx += 1
        if query.created_from is not None:
            where.append(f"created_at >= ${idx}")
            values.append(query.created_from)
            idx += 1
        if query.created_to is not None:
            where.append(f"created_at <= ${idx}")
            values.append(query.created_to)
            idx += 1
        where_sql = " AND ".join(where)
        records = await self._fetch(
            f"""
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhook_events
            WHERE {where_sql}
            ORDER BY created_at DESC
            LIMIT ${idx} OFFSET ${idx + 1}
            """,
            *values,
            limit,
            offset,
        )
        items: List[WebhookEvent] = []
        total: int | None = None
        for rec in records:
            rec_dict = dict(rec)
            total_value = rec_dict.get("total_count")
            if total_value is not None:
                total = int(total_value)
            items.append(WebhookEvent.model_validate(self._normalize(rec_dict)))
        if total is None:
            total = int(
                await self._fetchval(
                    f"SELECT COUNT(*) FROM webhook_events WHERE {where_sql}", *values
                )
                or 0
            )
        return items, total

    async def claim(self, event_id: UUID, *, expected_attempts: int) -> WebhookEvent | None:
        """Lease a pending record. Returns None when another worker got there first."""
        record = await self._fetchrow(
            """
            UPDATE webhook_events
            SET status = 'processing',
                lease_id = $3,
                processing_started_at = now(),
                processing_ended_at = NULL,
                updated_at = now()
            WHERE id = $1
              AND status = 'pending'
              AND attempts = $2
            RETURNING *
            """,
            event_id,
            expected_attempts,
            uuid4(),
        )
        return self._to_optional(record)

    async def mark_delivered(
        self,
        event_id: UUID,
        *,
        lease_id: UUID,
        outcome: DeliveryOutcome,
        at: datetime,
    ) -> WebhookEvent | None:
        record = await self._fetchrow(
            """
            UPDATE webhook_events
            SET status = 'delivered',
                lease_id = NULL,
                delivered_at = $3,
                processing_ended_at = $3,
                next_retry_at = NULL,
                response_status = $4,
                response_body = $5,
                response_headers = $6::jsonb,
                response_time = $7,
                error_message = NULL,
                updated_at = now()
            WHERE id = $1
              AND status = 'processing'
              AND lease_id = $2
            RETURNING *
            """,
            event_id,
            lease_id,
            at,
            outcome.status_code,
            outcome.response_body,
            json.dumps(outcome.response_headers) if outcome.response_headers is not None else None,
            outcome.response_time,
        )
        return self._to_optional(record)

    async def mark_attempt_failed(
        self,
        event_id: UUID,
        *,
        lease_id: UUID,
        attempts: int,
        status: WebhookEventStatus,
        next_retry_at: datetime | None,
        outcome: DeliveryOutcome,
        at: datetime,
    ) -> WebhookEvent | None:
        """Record a failed attempt; ``status`` is ``pending`` (retry later) or ``failed``."""
        record = await self._fetchrow(
            """
            UPDATE webhook_events
            SET status = $3,
                attempts = $4,
                lease_id = NULL,
                next_retry_at = $5,
                failed_at = CASE WHEN $3 = 'failed' THEN $6 ELSE failed_at END,
                processing_ended_at = $6,
                response_status = $7,
                response_body = $8,
                response_headers = $9::jsonb,
                response_time = $10,
                error_message = $11,
                updated_at = now()
            WHERE id = $1
              AND status = 'processing'
              AND lease_id = $2
            RETURNING *
            """,
            event_id,
            lease_id,
            status.value,
            attempts,
            next_retry_at,
            at,
            outcome.status_code,
            outcome.response_body,
            json.dumps(outcome.response_headers) if outcome.response_headers is not None else None,
            outcome.response_time,
            outcome.error,
        )
        return self._to_optional(record)

    async def reset_for_retry(
        self,
        event_id: UUID,
        *,
        expected_status: WebhookEventStatus,
        expected_attempts: int,
        at: datetime,
    ) -> WebhookEvent | None:
        record = await self._fetchrow(
            """
            UPDATE webhook_events
            SET status = 'pending',
                next_retry_at = $4,
                scheduled_for = $4,
                failed_at = NULL,
                error_message = NULL,
                updated_at = now()
            WHERE id = $1
              AND status = $2
              AND attempts = $3
              AND attempts < max_attempts
            RETURNING *
            """,
            event_id,
            expected_status.value,
            expected_attempts,
            at,
        )
        return self._to_optional(record)

    async def cancel(self, event_id: UUID) -> WebhookEvent | None:
        record = await self._fetchrow(
            """
            UPDATE webhook_events
            SET status = 'cancelled',
                next_retry_at = NULL,
                updated_at = now()
            WHERE id = $1 AND status = 'pending'
            RETURNING *
            """,
            event_id,
        )
        return self._to_optional(record)

    async def list_due(
        self, *, now: datetime, orphan_before: datetime, limit: int = 100
    ) -> List[WebhookEvent]:
        """Pending records ready for (re)submission whose webhook is still active.

        A record is due when it already failed at least once and its
        ``next_retry_at`` has passed, or when its first attempt never started
        and it was scheduled before ``orphan_before``.
        """
        records = await self._fetch(
            """
            SELECT e.*
            FROM webhook_events e
            JOIN webhooks w ON w.id = e.webhook_id
            WHERE e.status = 'pending'
              AND w.status = 'active'
              AND (
                    (e.attempts > 0 AND e.next_retry_at <= $1)
                 OR (e.attempts = 0 AND e.scheduled_for <= $2)
              )
            ORDER BY COALESCE(e.next_retry_at, e.scheduled_for) ASC
            LIMIT $3
            """,
            now,
            orphan_before,
            limit,
        )
        return [self._to_model(r) for r in records]

    async def reclaim_stuck(self, locked_before: datetime) -> int:
        """Release ``processing`` leases older than ``locked_before`` (e.g. after a crash)."""
        result = await self._execute(
            """
            UPDATE webhook_events
            SET status = 'pending',
                lease_id = NULL,
                next_retry_at = now(),
                updated_at = now()
            WHERE status = 'processing'
              AND processing_started_at < $1
            """,
            locked_before,
        )
        return self._affected_rows(result)

    async def delete_expired(self, created_before: datetime) -> int:
        """Purge terminal records older than ``created_before``."""
        result = await self._execute(
            """
            DELETE FROM webhook_events
            WHERE status = ANY($2::text[])
              AND created_at < $1
            """,
            created_before,
            [status.value for status in TERMINAL_EVENT_STATUSES],
        )
        return self._affected_rows(result)

    async def summarize(self, webhook_id: UUID, since: datetime) -> dict[str, Any]:
        rows = await self._fetch(
            """
            SELECT status, COUNT(*) AS count
            FROM webhook_events
            WHERE webhook_id = $1 AND created_at >= $2
            GROUP BY status
            """,
            webhook_id,
            since,
        )
        counts = {row["status"]: int(row["count"]) for row in rows}
        timing = await self._fetchrow(
            """
            SELECT AVG(response_time) AS avg_response_time,
                   MIN(response_time) AS min_response_time,
                   MAX(response_time) AS max_response_time
            FROM webhook_events
            WHERE webhook_id = $1 AND status = 'delivered' AND created_at >= $2
            """,
            webhook_id,
            since,
        )
        return {
            "counts": counts,
            "avg_response_time": float(timing["avg_response_time"] or 0) if timing else 0.0,
            "min_response_time": float(timing["min_response_time"] or 0) if timing else 0.0,
            "max_response_time": float(timing["max_response_time"] or 0) if timing else 0.0,
        }

    async def daily_counts(self, webhook_id: UUID, since: datetime) -> List[dict[str, Any]]:
        rows = await self._fetch(
            """
            SELECT to_char(date_trunc('day', created_at AT TIME ZONE 'UTC'), 'YYYY-MM-DD') AS date,
                   status,
                   COUNT(*) AS count
            FROM webhook_events
            WHERE webhook_id = $1 AND created_at >= $2
            GROUP BY 1, 2
            ORDER BY 1 ASC, 2 ASC
            """,
            webhook_id,
            since,
        )
        return [
            {"date": row["date"], "status": row["status"], "count": int(row["count"])}
            for row in rows
        ]
