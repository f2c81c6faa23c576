"""Domain event intake for collaborators running in other processes."""
from __future__ import annotations

from aiohttp import web
from pydantic import ValidationError

from webhook_service.api.utils import read_json, to_http_error
from webhook_service.core.exceptions import WebhookServiceError
from webhook_service.domain.dto import EventTriggerDTO
from webhook_service.services.dependencies import (
    WRITE_ROLES,
    get_event_dispatcher,
    require_app_context,
)

routes = web.RouteTableDef()


@routes.post("/api/v1/events")
async def trigger_event(request: web.Request):
    ctx = require_app_context(request, require_role=WRITE_ROLES)
    body = await read_json(request)
    try:
        dto = EventTriggerDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc

    dispatcher = get_event_dispatcher(request)
    try:
        records = await dispatcher.trigger_event(
            ctx.app_id, dto.event_type, dto.data, dto.resource_id
        )
    except WebhookServiceError as exc:
        raise to_http_error(exc) from exc

    return web.json_response(
        {
            "payload_id": records[0].payload["id"] if records else None,
            "event_ids": [str(record.id) for record in records],
        },
        status=202,
    )
