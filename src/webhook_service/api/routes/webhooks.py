"""Webhook administration endpoints."""
from __future__ import annotations

from uuid import UUID

from aiohttp import web
from pydantic import ValidationError

from webhook_service.api.utils import (
    event_json,
    paginated_response,
    pagination_params,
    parse_uuid,
    read_json,
    to_http_error,
    webhook_json,
)
from webhook_service.core.exceptions import WebhookServiceError
from webhook_service.domain.dto import (
    WebhookCreateDTO,
    WebhookEventQueryDTO,
    WebhookTestDTO,
    WebhookUpdateDTO,
)
from webhook_service.domain.enums import WebhookStatus
from webhook_service.services.dependencies import (
    WRITE_ROLES,
    get_webhook_service,
    require_app_context,
)
from webhook_service.services.webhooks import DEFAULT_STATS_PERIOD, WebhookService

routes = web.RouteTableDef()


def _webhook_id(request: web.Request) -> UUID:
    return parse_uuid(request.match_info["webhook_id"], "webhook_id")


def _event_id(request: web.Request) -> UUID:
    return parse_uuid(request.match_info["event_id"], "event_id")


@routes.get("/api/v1/webhooks/event-types")
async def list_event_types(request: web.Request):
    require_app_context(request)
    return web.json_response({"event_types": WebhookService.event_types()})


@routes.get("/api/v1/webhooks")
async def list_webhooks(request: web.Request):
    ctx = require_app_context(request)
    limit, offset = pagination_params(request)
    status_raw = request.rel_url.query.get("status")
    try:
        status = WebhookStatus(status_raw) if status_raw else None
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"Invalid status: {status_raw}") from exc
    service = await get_webhook_service(request)
    items, total = await service.list_webhooks(
        ctx.app_id, status=status, limit=limit, offset=offset
    )
    return web.json_response(
        paginated_response(
            [webhook_json(item) for item in items],
            limit=limit,
            offset=offset,
            key="webhooks",
            total=total,
        )
    )


@routes.post("/api/v1/webhooks")
async def create_webhook(request: web.Request):
    ctx = require_app_context(request, require_role=WRITE_ROLES)
    body = await read_json(request)
    try:
        dto = WebhookCreateDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc
    service = await get_webhook_service(request)
    webhook = await service.create_webhook(ctx.app_id, dto, created_by=ctx.user_id)
    return web.json_response(webhook_json(webhook, include_secret=True), status=201)


@routes.get("/api/v1/webhooks/{webhook_id}")
async def get_webhook(request: web.Request):
    ctx = require_app_context(request)
    service = await get_webhook_service(request)
    try:
        webhook = await service.get_webhook(ctx.app_id, _webhook_id(request))
    except WebhookServiceError as exc:
        raise to_http_error(exc) from exc
    return web.json_response(webhook_json(webhook))


@routes.patch("/api/v1/webhooks/{webhook_id}")
async def update_webhook(request: web.Request):
    ctx = require_app_context(request, require_role=WRITE_ROLES)
    webhook_id = _webhook_id(request)
    body = await read_json(request)
    try:
        dto = WebhookUpdateDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc
    service = await get_webhook_service(request)
    try:
        webhook = await service.update_webhook(ctx.app_id, webhook_id, dto)
    except WebhookServiceError as exc:
        raise to_http_error(exc) from exc
    except ValueError as exc:
        raise web.HTTPBadRequest(text=str(exc)) from exc
    return web.json_response(webhook_json(webhook))


@routes.delete("/api/v1/webhooks/{webhook_id}")
async def delete_webhook(request: web.Request):
    ctx = require_app_context(request, require_role=WRITE_ROLES)
    service = await get_webhook_service(request)
    try:
        await service.delete_webhook(ctx.app_id, _webhook_id(request))
    except WebhookServiceError as exc:
        raise to_http_error(exc) from exc
    return web.Response(status=204)


@routes.post("/api/v1/webhooks/{webhook_id}/pause")
async def pause_webhook(request: web.Request):
    ctx = require_app_context(request, require_role=WRITE_ROLES)
    service = await get_webhook_service(request)
    try:
        webhook = await service.pause_webhook(ctx.app_id, _webhook_id(request))
    except WebhookServiceError as exc:
        raise to_http_error(exc) from exc
    return web.json_response(webhook_json(webhook))


@routes.post("/api/v1/webhooks/{webhook_id}/resume")
async def resume_webhook(request: web.Request):
    ctx = require_app_context(request, require_role=WRITE_ROLES)
    service = await get_webhook_service(request)
    try:
        webhook = await service.resume_webhook(ctx.app_id, _webhook_id(request))
    except WebhookServiceError as exc:
        raise to_http_error(exc) from exc
    return web.json_response(webhook_json(webhook))


@routes.post("/api/v1/webhooks/{webhook_id}/toggle")
async def toggle_webhook(request: web.Request):
    ctx = require_app_context(request, require_role=WRITE_ROLES)
    service = await get_webhook_service(request)
    try:
        webhook = await service.toggle_webhook(ctx.app_id, _webhook_id(request))
    except WebhookServiceError as exc:
        raise to_http_error(exc) from exc
    return web.json_response(webhook_json(webhook))


@routes.post("/api/v1/webhooks/{webhook_id}/test")
async def test_webhook(request: web.Request):
    ctx = require_app_context(request, require_role=WRITE_ROLES)
    webhook_id = _webhook_id(request)
    body = await read_json(request)
    try:
        dto = WebhookTestDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc
    service = await get_webhook_service(request)
    try:
        result = await service.test_webhook(ctx.app_id, webhook_id, dto.data)
    except WebhookServiceError as exc:
        raise to_http_error(exc) from exc
    return web.json_response(result.model_dump(mode="json"))


@routes.get("/api/v1/webhooks/{webhook_id}/events")
async def list_webhook_events(request: web.Request):
    ctx = require_app_context(request)
    webhook_id = _webhook_id(request)
    limit, offset = pagination_params(request)
    query = request.rel_url.query
    try:
        filters = WebhookEventQueryDTO.model_validate(
            {
                "status": query.get("status"),
                "created_from": query.get("from"),
                "created_to": query.get("to"),
            }
        )
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc
    service = await get_webhook_service(request)
    try:
        items, total = await service.list_events(
            ctx.app_id, webhook_id, filters, limit=limit, offset=offset
        )
    except WebhookServiceError as exc:
        raise to_http_error(exc) from exc
    return web.json_response(
        paginated_response(
            [event_json(item) for item in items],
            limit=limit,
            offset=offset,
            key="events",
            total=total,
        )
    )


@routes.get("/api/v1/webhooks/{webhook_id}/events/{event_id}")
async def get_webhook_event(request: web.Request):
    ctx = require_app_context(request)
    service = await get_webhook_service(request)
    try:
        event = await service.get_event(ctx.app_id, _webhook_id(request), _event_id(request))
    except WebhookServiceError as exc:
        raise to_http_error(exc) from exc
    return web.json_response(event_json(event))


@routes.post("/api/v1/webhooks/{webhook_id}/events/{event_id}/retry")
async def retry_webhook_event(request: web.Request):
    ctx = require_app_context(request, require_role=WRITE_ROLES)
    service = await get_webhook_service(request)
    try:
        event = await service.retry_webhook_event(
            ctx.app_id, _webhook_id(request), _event_id(request)
        )
    except WebhookServiceError as exc:
        raise to_http_error(exc) from exc
    return web.json_response(event_json(event))


@routes.post("/api/v1/webhooks/{webhook_id}/events/{event_id}/cancel")
async def cancel_webhook_event(request: web.Request):
    ctx = require_app_context(request, require_role=WRITE_ROLES)
    service = await get_webhook_service(request)
    try:
        event = await service.cancel_webhook_event(
            ctx.app_id, _webhook_id(request), _event_id(request)
        )
    except WebhookServiceError as exc:
        raise to_http_error(exc) from exc
    return web.json_response(event_json(event))


@routes.get("/api/v1/webhooks/{webhook_id}/stats")
async def get_webhook_stats(request: web.Request):
    ctx = require_app_context(request)
    webhook_id = _webhook_id(request)
    period = request.rel_url.query.get("period", DEFAULT_STATS_PERIOD)
    service = await get_webhook_service(request)
    try:
        stats = await service.get_statistics(ctx.app_id, webhook_id, period)
    except WebhookServiceError as exc:
        raise to_http_error(exc) from exc
    except ValueError as exc:
        raise web.HTTPBadRequest(text=str(exc)) from exc
    return web.json_response(stats)
