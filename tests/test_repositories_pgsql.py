"""SQL repositories and the delivery state machine against PostgreSQL (testsuite)."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import uuid4

import asyncpg  # type: ignore[import-untyped]
import pytest

from webhook_service.core.exceptions import (
    ConcurrentModificationError,
    InvalidEventStateError,
    NotFoundError,
)
from webhook_service.db.migrations import apply_migrations, find_migrations_dir, load_migrations
from webhook_service.domain.dto import WebhookCreateDTO, WebhookEventCreateDTO, WebhookUpdateDTO
from webhook_service.domain.enums import EventType, WebhookEventStatus, WebhookStatus
from webhook_service.domain.webhooks import DeliveryOutcome, RetryConfig
from webhook_service.services.dispatcher import EventDispatcher
from webhook_service.services.scheduler import RetryScheduler
from webhook_service.services.webhooks import WebhookService

from tests.utils import make_headers

SCHEMA_PATH = Path(__file__).parent / "schemas" / "postgresql" / "webhook_service.sql"
SECRET = "s" * 32
FAILED_OUTCOME = DeliveryOutcome(success=False, status_code=500, response_time=3.0, error="HTTP 500")


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def _webhook(repo, url="http://127.0.0.1:1/hook", *, app_id=None, events=("file.uploaded",), max_attempts=3, **fields):
    return await repo.create(
        app_id=app_id or uuid4(),
        data=WebhookCreateDTO(
            name="hook",
            url=url,
            events=list(events),
            retry_config=RetryConfig(max_attempts=max_attempts),
            **fields,
        ),
        secret=SECRET,
        created_by=None,
    )


def _record(webhook, *, scheduled_for=None, payload=None):
    return WebhookEventCreateDTO(
        webhook_id=webhook.id,
        app_id=webhook.app_id,
        event_type="file.uploaded",
        resource_id="file-1",
        payload=payload or {"id": str(uuid4()), "event": "file.uploaded", "data": {"size": 10}},
        max_attempts=webhook.retry_config.effective_max_attempts,
        scheduled_for=scheduled_for or _now(),
    )


async def _fail_once(events, event, *, next_retry_at):
    claimed = await events.claim(event.id, expected_attempts=event.attempts)
    assert claimed is not None
    failed = await events.mark_attempt_failed(
        event.id,
        lease_id=claimed.lease_id,
        attempts=event.attempts + 1,
        status=WebhookEventStatus.PENDING,
        next_retry_at=next_retry_at,
        outcome=FAILED_OUTCOME,
        at=_now(),
    )
    assert failed is not None
    return failed


def test_schema_file_matches_migration():
    migration = find_migrations_dir() / "001_webhooks.sql"
    assert SCHEMA_PATH.read_text(encoding="utf-8") == migration.read_text(encoding="utf-8")


@pytest.mark.asyncio
async def test_migrations_apply_over_existing_schema(database_uri):
    migrations = load_migrations(find_migrations_dir())
    conn = await asyncpg.connect(database_uri)
    try:
        await conn.execute("DROP TABLE IF EXISTS schema_migrations")
        assert await apply_migrations(conn, migrations) == len(migrations)
        assert await apply_migrations(conn, migrations) == 0
    finally:
        await conn.close()


@pytest.mark.asyncio
async def test_create_get_and_scoping(pg_webhooks):
    webhook = await _webhook(
        pg_webhooks,
        events=("file.uploaded", "file.deleted"),
        headers={"X-Tenant": "acme"},
        description="uploads",
    )

    loaded = await pg_webhooks.get(webhook.app_id, webhook.id)
    assert loaded.events == [EventType.FILE_UPLOADED, EventType.FILE_DELETED]
    assert loaded.headers == {"X-Tenant": "acme"}
    assert loaded.retry_config.max_attempts == 3
    assert loaded.statistics.total_sent == 0

    with pytest.raises(NotFoundError):
        await pg_webhooks.get(uuid4(), webhook.id)


@pytest.mark.asyncio
async def test_active_matching_uses_wildcard_and_status(pg_webhooks):
    app_id = uuid4()
    uploads = await _webhook(pg_webhooks, app_id=app_id)
    everything = await _webhook(pg_webhooks, app_id=app_id, events=("*",))
    paused = await _webhook(pg_webhooks, app_id=app_id)
    await pg_webhooks.set_status(app_id, paused.id, WebhookStatus.PAUSED)
    await _webhook(pg_webhooks, app_id=app_id, events=("file.deleted",))
    await _webhook(pg_webhooks)

    matching = await pg_webhooks.list_active_matching(app_id, EventType.FILE_UPLOADED)
    assert {w.id for w in matching} == {uploads.id, everything.id}


@pytest.mark.asyncio
async def test_update_clears_description_and_keeps_unset_fields(pg_webhooks):
    webhook = await _webhook(pg_webhooks, description="to be removed", headers={"X-A": "1"})

    updated = await pg_webhooks.update(
        webhook.app_id, webhook.id, WebhookUpdateDTO.model_validate({"description": None})
    )

    assert updated.description is None
    assert updated.name == "hook"
    assert updated.headers == {"X-A": "1"}


@pytest.mark.asyncio
async def test_insert_many_writes_pending_records(pg_webhooks, pg_events):
    first = await _webhook(pg_webhooks)
    second = await _webhook(pg_webhooks, max_attempts=5)
    payload = {"id": str(uuid4()), "event": "file.uploaded", "data": {"name": "a.txt", "size": 1}}

    records = await pg_events.insert_many([_record(first, payload=payload), _record(second, payload=payload)])

    assert [r.webhook_id for r in records] == [first.id, second.id]
    assert len({r.id for r in records}) == 2
    assert all(r.status == WebhookEventStatus.PENDING and r.attempts == 0 for r in records)
    assert [r.max_attempts for r in records] == [3, 5]
    assert all(r.payload == payload for r in records)
    assert await pg_events.insert_many([]) == []


@pytest.mark.asyncio
async def test_claim_is_exclusive(pg_webhooks, pg_events):
    webhook = await _webhook(pg_webhooks)
    [record] = await pg_events.insert_many([_record(webhook)])

    claims = await asyncio.gather(
        *(pg_events.claim(record.id, expected_attempts=0) for _ in range(5))
    )

    winners = [c for c in claims if c is not None]
    assert len(winners) == 1
    assert winners[0].status == WebhookEventStatus.PROCESSING
    assert winners[0].lease_id is not None
    assert await pg_events.claim(record.id, expected_attempts=0) is None


@pytest.mark.asyncio
async def test_completion_requires_current_lease(pg_webhooks, pg_events):
    webhook = await _webhook(pg_webhooks)
    [record] = await pg_events.insert_many([_record(webhook)])
    claimed = await pg_events.claim(record.id, expected_attempts=0)
    ok = DeliveryOutcome(success=True, status_code=200, response_time=5.0, response_headers={"Set-Cookie": "a=1, b=2"})

    assert await pg_events.mark_delivered(record.id, lease_id=uuid4(), outcome=ok, at=_now()) is None

    delivered = await pg_events.mark_delivered(record.id, lease_id=claimed.lease_id, outcome=ok, at=_now())
    assert delivered.status == WebhookEventStatus.DELIVERED
    assert delivered.lease_id is None
    assert delivered.response_headers == {"Set-Cookie": "a=1, b=2"}

    late = await pg_events.mark_attempt_failed(
        record.id,
        lease_id=claimed.lease_id,
        attempts=1,
        status=WebhookEventStatus.PENDING,
        next_retry_at=_now(),
        outcome=FAILED_OUTCOME,
        at=_now(),
    )
    assert late is None


@pytest.mark.asyncio
async def test_attempts_cannot_exceed_max(pg_webhooks, pg_events):
    webhook = await _webhook(pg_webhooks, max_attempts=1)
    [record] = await pg_events.insert_many([_record(webhook)])
    claimed = await pg_events.claim(record.id, expected_attempts=0)

    with pytest.raises(asyncpg.CheckViolationError):
        await pg_events.mark_attempt_failed(
            record.id,
            lease_id=claimed.lease_id,
            attempts=2,
            status=WebhookEventStatus.FAILED,
            next_retry_at=None,
            outcome=FAILED_OUTCOME,
            at=_now(),
        )


@pytest.mark.asyncio
async def test_reset_refuses_exhausted_records(pg_webhooks, pg_events):
    webhook = await _webhook(pg_webhooks, max_attempts=1)
    [record] = await pg_events.insert_many([_record(webhook)])
    claimed = await pg_events.claim(record.id, expected_attempts=0)
    await pg_events.mark_attempt_failed(
        record.id,
        lease_id=claimed.lease_id,
        attempts=1,
        status=WebhookEventStatus.FAILED,
        next_retry_at=None,
        outcome=FAILED_OUTCOME,
        at=_now(),
    )

    reset = await pg_events.reset_for_retry(
        record.id, expected_status=WebhookEventStatus.FAILED, expected_attempts=1, at=_now()
    )
    assert reset is None


@pytest.mark.asyncio
async def test_list_due_skips_paused_and_fresh_records(pg_webhooks, pg_events):
    now = _now()
    orphan_before = now - timedelta(minutes=5)
    active = await _webhook(pg_webhooks)
    paused = await _webhook(pg_webhooks)

    retry_due, paused_due, orphan, fresh, retry_later = await pg_events.insert_many(
        [
            _record(active),
            _record(paused),
            _record(active, scheduled_for=now - timedelta(minutes=10)),
            _record(active, scheduled_for=now - timedelta(minutes=1)),
            _record(active),
        ]
    )
    await _fail_once(pg_events, retry_due, next_retry_at=now - timedelta(seconds=1))
    await _fail_once(pg_events, paused_due, next_retry_at=now - timedelta(seconds=1))
    await _fail_once(pg_events, retry_later, next_retry_at=now + timedelta(minutes=1))
    await pg_webhooks.set_status(paused.app_id, paused.id, WebhookStatus.PAUSED)

    due = await pg_events.list_due(now=now, orphan_before=orphan_before)

    assert {e.id for e in due} == {retry_due.id, orphan.id}
    assert all(e.is_due(now, orphan_before) for e in due)
    assert fresh.id not in {e.id for e in due}


@pytest.mark.asyncio
async def test_reclaim_and_purge(pg_webhooks, pg_events):
    webhook = await _webhook(pg_webhooks)
    stuck, done, waiting = await pg_events.insert_many([_record(webhook)] * 3)
    await pg_events.claim(stuck.id, expected_attempts=0)
    claimed = await pg_events.claim(done.id, expected_attempts=0)
    await pg_events.mark_delivered(
        done.id,
        lease_id=claimed.lease_id,
        outcome=DeliveryOutcome(success=True, status_code=200, response_time=1.0),
        at=_now(),
    )

    assert await pg_events.reclaim_stuck(_now() - timedelta(minutes=5)) == 0
    assert await pg_events.reclaim_stuck(_now() + timedelta(minutes=1)) == 1
    reclaimed = await pg_events.get(stuck.id)
    assert (reclaimed.status, reclaimed.lease_id) == (WebhookEventStatus.PENDING, None)

    assert await pg_events.delete_expired(_now() + timedelta(days=1)) == 1
    assert await pg_events.get(done.id) is None
    assert await pg_events.get(waiting.id) is not None


@pytest.mark.asyncio
async def test_delete_webhook_cascades_to_events(pg_webhooks, pg_events):
    webhook = await _webhook(pg_webhooks)
    [record] = await pg_events.insert_many([_record(webhook)])

    await pg_webhooks.delete(webhook.app_id, webhook.id)

    assert await pg_events.get(record.id) is None
    with pytest.raises(NotFoundError):
        await pg_webhooks.delete(webhook.app_id, webhook.id)


@pytest.mark.asyncio
async def test_statistics_counters_stay_consistent(pg_webhooks, pg_events, pg_executor, receiver):
    receiver.statuses = [500, 200, 503, 200]
    app_id = uuid4()
    webhook = await _webhook(pg_webhooks, receiver.url, app_id=app_id)
    dispatcher = EventDispatcher(pg_webhooks, pg_events, pg_executor)

    for n in range(4):
        await dispatcher.trigger_event(app_id, EventType.FILE_UPLOADED, {"id": f"f{n}"})
        await dispatcher.drain()

    stats = (await pg_webhooks.get(app_id, webhook.id)).statistics
    assert (stats.total_sent, stats.total_successful, stats.total_failed) == (4, 2, 2)
    assert stats.total_sent == stats.total_successful + stats.total_failed
    assert stats.success_rate == 50.0

    summary = await pg_events.summarize(webhook.id, _now() - timedelta(days=1))
    assert summary["counts"] == {"delivered": 2, "pending": 2}
    daily = await pg_events.daily_counts(webhook.id, _now() - timedelta(days=1))
    assert sum(row["count"] for row in daily) == 4

    with pytest.raises(asyncpg.CheckViolationError):
        await pg_webhooks._execute(
            "UPDATE webhooks SET total_sent = total_sent + 1 WHERE id = $1", webhook.id
        )


@pytest.mark.asyncio
async def test_concurrent_executions_deliver_once(pg_webhooks, pg_events, pg_executor, receiver):
    receiver.delay = 0.05
    webhook = await _webhook(pg_webhooks, receiver.url)
    [record] = await pg_events.insert_many([_record(webhook)])

    results = await asyncio.gather(*(pg_executor.execute(record, webhook) for _ in range(3)))

    assert sum(r is not None for r in results) == 1
    assert len(receiver.requests) == 1
    stats = (await pg_webhooks.get(webhook.app_id, webhook.id)).statistics
    assert (stats.total_sent, stats.total_successful, stats.total_failed) == (1, 1, 0)


@pytest.mark.asyncio
async def test_sweep_racing_manual_retry_counts_once(pg_webhooks, pg_events, pg_executor, receiver):
    receiver.statuses = [500]
    app_id = uuid4()
    webhook = await _webhook(pg_webhooks, receiver.url, app_id=app_id)
    dispatcher = EventDispatcher(pg_webhooks, pg_events, pg_executor)
    [record] = await dispatcher.trigger_event(app_id, EventType.FILE_UPLOADED, {"id": "f"})
    await dispatcher.drain()
    receiver.delay = 0.05
    scheduler = RetryScheduler(pg_webhooks, pg_events, pg_executor)
    service = WebhookService(pg_webhooks, pg_events, pg_executor)

    results = await asyncio.gather(
        scheduler.sweep(_now() + timedelta(seconds=5)),
        service.retry_webhook_event(app_id, webhook.id, record.id),
        return_exceptions=True,
    )

    final = await pg_events.get(record.id)
    assert final.status == WebhookEventStatus.DELIVERED
    assert len(receiver.requests) == 2
    stats = (await pg_webhooks.get(app_id, webhook.id)).statistics
    assert (stats.total_sent, stats.total_successful, stats.total_failed) == (2, 1, 1)
    for result in results:
        if isinstance(result, Exception):
            assert isinstance(result, (ConcurrentModificationError, InvalidEventStateError))


@pytest.mark.asyncio
async def test_api_round_trip(pg_service_client, receiver):
    app_id = uuid4()
    resp = await pg_service_client.post(
        "/api/v1/webhooks",
        json={"name": "uploads", "url": receiver.url, "events": ["file.uploaded"], "description": "d"},
        headers=make_headers(app_id),
    )
    assert resp.status == 201, await resp.text()
    created = await resp.json()

    resp = await pg_service_client.patch(
        f"/api/v1/webhooks/{created['id']}",
        json={"description": None},
        headers=make_headers(app_id),
    )
    assert resp.status == 200
    assert (await resp.json())["description"] is None

    resp = await pg_service_client.get("/api/v1/webhooks", headers=make_headers(app_id))
    assert (await resp.json())["total"] == 1
