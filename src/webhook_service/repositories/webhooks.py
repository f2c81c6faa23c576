"""Webhook subscription repository."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Iterable, List, Tuple
from uuid import UUID

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.dto import WebhookCreateDTO, WebhookUpdateDTO
from webhook_service.domain.enums import EventType, WebhookStatus
from webhook_service.domain.webhooks import Webhook, WebhookTestResult
from webhook_service.repositories.base import BaseRepository

_STATISTICS_COLUMNS = (
    "total_sent",
    "total_successful",
    "total_failed",
    "average_response_time",
    "last_successful_delivery",
    "last_failed_delivery",
    "last_delivery_attempt",
)


class WebhookRepository(BaseRepository):
    """CRUD, matching and statistics counters for webhooks."""

    JSONB_COLUMNS = {"headers", "retry_config", "filters", "last_test_result"}

    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _normalize(payload: dict[str, Any]) -> dict[str, Any]:
        payload.pop("total_count", None)
        for column in WebhookRepository.JSONB_COLUMNS:
            value = payload.get(column)
            if isinstance(value, str):
                payload[column] = json.loads(value)
        payload["statistics"] = {
            column: payload.pop(column) for column in _STATISTICS_COLUMNS if column in payload
        }
        return payload

    @staticmethod
    def _to_model(record: Record) -> Webhook:
        return Webhook.model_validate(WebhookRepository._normalize(dict(record)))

    async def create(
        self,
        *,
        app_id: UUID,
        data: WebhookCreateDTO,
        secret: str,
        created_by: UUID | None,
    ) -> Webhook:
        record = await self._fetchrow(
            """
            INSERT INTO webhooks (
                app_id,
                name,
                description,
                url,
                method,
                content_type,
                events,
                headers,
                timeout_seconds,
                secret,
                status,
                retry_config,
                filters,
                created_by
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7::text[], $8::jsonb, $9, $10, 'active',
                    $11::jsonb, $12::jsonb, $13)
            RETURNING *
            """,
            app_id,
            data.name,
            data.description,
            str(data.url),
            data.method.value,
            data.content_type.value,
            [event.value for event in data.events],
            json.dumps(data.headers),
            data.timeout_seconds,
            secret,
            data.retry_config.model_dump_json(),
            data.filters.model_dump_json(),
            created_by,
        )
        assert record is not None
        return self._to_model(record)

    async def get(self, app_id: UUID, webhook_id: UUID) -> Webhook:
        record = await self._fetchrow(
            "SELECT * FROM webhooks WHERE app_id = $1 AND id = $2",
            app_id,
            webhook_id,
        )
        if record is None:
            raise NotFoundError("Webhook not found")
        return self._to_model(record)

    async def get_many(self, webhook_ids: Iterable[UUID]) -> dict[UUID, Webhook]:
        ids = list(dict.fromkeys(webhook_ids))
        if not ids:
            return {}
        records = await self._fetch("SELECT * FROM webhooks WHERE id = ANY($1::uuid[])", ids)
        webhooks = [self._to_model(r) for r in records]
        return {webhook.id: webhook for webhook in webhooks}

    async def list_by_app(
        self,
        app_id: UUID,
        *,
        status: WebhookStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Webhook], int]:
        where = ["app_id = $1"]
        values: list[Any] = [app_id]
        idx = 2
        if status is not None:
            where.append(f"status = ${idx}")
            values.append(status.value)
            idx += 1
        where_sql = " AND ".join(where)
        records = await self._fetch(
            f"""
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhooks
            WHERE {where_sql}
            ORDER BY created_at DESC
            LIMIT ${idx} OFFSET ${idx + 1}
            """,
            *values,
            limit,
            offset,
        )
        items: List[Webhook] = []
        total: int | None = None
        for rec in records:
            rec_dict = dict(rec)
            total_value = rec_dict.get("total_count")
            if total_value is not None:
                total = int(total_value)
            items.append(Webhook.model_validate(self._normalize(rec_dict)))
        if total is None:
            total = int(
                await self._fetchval(f"SELECT COUNT(*) FROM webhooks WHERE {where_sql}", *values)
                or 0
            )
        return items, total

    async def list_active_matching(self, app_id: UUID, event_type: EventType) -> List[Webhook]:
        records = await self._fetch(
            """
            SELECT *
            FROM webhooks
            WHERE app_id = $1
              AND status = 'active'
              AND events && ARRAY[$2::text, '*']
            ORDER BY created_at ASC
            """,
            app_id,
            event_type.value,
        )
        return [self._to_model(r) for r in records]

    async def update(self, app_id: UUID, webhook_id: UUID, updates: WebhookUpdateDTO) -> Webhook:
        payload = updates.changes()
        if not payload:
            raise ValueError("No fields provided for update")

        assignments = []
        values: list[Any] = []
        idx = 1
        for column, value in payload.items():
            if column in self.JSONB_COLUMNS:
                assignments.append(f"{column} = ${idx}::jsonb")
                values.append(json.dumps(value))
            elif column == "events":
                assignments.append(f"{column} = ${idx}::text[]")
                values.append(value)
            else:
                assignments.append(f"{column} = ${idx}")
                values.append(value)
            idx += 1
        assignments.append("updated_at = now()")
        values.extend([app_id, webhook_id])
        record = await self._fetchrow(
            f"""
            UPDATE webhooks
            SET {", ".join(assignments)}
            WHERE app_id = ${idx} AND id = ${idx + 1}
            RETURNING *
            """,
            *values,
        )
        if record is None:
            raise NotFoundError("Webhook not found")
        return self._to_model(record)

    async def set_status(self, app_id: UUID, webhook_id: UUID, status: WebhookStatus) -> Webhook:
        record = await self._fetchrow(
            """
            UPDATE webhooks
            SET status = $3, updated_at = now()
            WHERE app_id = $1 AND id = $2
            RETURNING *
            """,
            app_id,
            webhook_id,
            status.value,
        )
        if record is None:
            raise NotFoundError("Webhook not found")
        return self._to_model(record)

    async def toggle_status(self, app_id: UUID, webhook_id: UUID) -> Webhook:
        record = await self._fetchrow(
            """
            UPDATE webhooks
            SET status = CASE WHEN status = 'active' THEN 'paused' ELSE 'active' END,
                updated_at = now()
            WHERE app_id = $1 AND id = $2
            RETURNING *
            """,
            app_id,
            webhook_id,
        )
        if record is None:
            raise NotFoundError("Webhook not found")
        return self._to_model(record)

    async def delete(self, app_id: UUID, webhook_id: UUID) -> None:
        record = await self._fetchrow(
            "DELETE FROM webhooks WHERE app_id = $1 AND id = $2 RETURNING id",
            app_id,
            webhook_id,
        )
        if record is None:
            raise NotFoundError("Webhook not found")

    async def increment_success(
        self, webhook_id: UUID, *, response_time: float, at: datetime
    ) -> None:
        await self._execute(
            """
            UPDATE webhooks
            SET total_sent = total_sent + 1,
                total_successful = total_successful + 1,
                average_response_time =
                    (average_response_time * total_successful + $2) / (total_successful + 1),
                last_successful_delivery = $3,
                last_delivery_attempt = $3
            WHERE id = $1
            """,
            webhook_id,
            response_time,
            at,
        )

    async def increment_failure(self, webhook_id: UUID, *, at: datetime) -> None:
        await self._execute(
            """
            UPDATE webhooks
            SET total_sent = total_sent + 1,
                total_failed = total_failed + 1,
                last_failed_delivery = $2,
                last_delivery_attempt = $2
            WHERE id = $1
            """,
            webhook_id,
            at,
        )

    async def record_test_result(self, webhook_id: UUID, result: WebhookTestResult) -> None:
        await self._execute(
            """
            UPDATE webhooks
            SET last_tested_at = $2,
                last_test_result = $3::jsonb
            WHERE id = $1
            """,
            webhook_id,
            result.tested_at,
            result.model_dump_json(),
        )
