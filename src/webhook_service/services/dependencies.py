"""Shared dependency providers for aiohttp handlers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar
from uuid import UUID

from aiohttp import web

from webhook_service.runtime import get_runtime
from webhook_service.services.dispatcher import EventDispatcher
from webhook_service.services.webhooks import WebhookService

TService = TypeVar("TService")

_WEBHOOK_SERVICE_KEY = "webhook_service"

USER_ID_HEADER = "X-User-Id"
APP_ID_HEADER = "X-App-Id"
APP_ROLE_HEADER = "X-App-Role"

WRITE_ROLES = ("owner", "editor")


@dataclass
class AppContext:
    user_id: UUID
    app_id: UUID
    role: str


def _uuid_header(request: web.Request, header: str) -> UUID:
    raw = request.headers.get(header)
    if raw is None:
        raise web.HTTPBadRequest(text=f"Header {header} is required")
    try:
        return UUID(raw)
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"Invalid {header}") from exc


def require_app_context(
    request: web.Request, *, require_role: tuple[str, ...] | None = None
) -> AppContext:
    """Tenant context from the headers set by the API gateway."""
    if request.headers.get(USER_ID_HEADER) is None:
        raise web.HTTPUnauthorized(reason=f"Header {USER_ID_HEADER} is required")
    user_id = _uuid_header(request, USER_ID_HEADER)
    app_id = _uuid_header(request, APP_ID_HEADER)
    role = request.headers.get(APP_ROLE_HEADER)
    if not role:
        raise web.HTTPForbidden(reason="User does not belong to app")
    if require_role and role not in require_role:
        raise web.HTTPForbidden(reason="Insufficient app role")
    return AppContext(user_id=user_id, app_id=app_id, role=role)


async def _get_or_create_service(
    request: web.Request,
    cache_key: str,
    builder: Callable[[web.Request], Awaitable[TService]],
) -> TService:
    service = request.get(cache_key)
    if service is None:
        service = await builder(request)
        request[cache_key] = service
    return service


async def get_webhook_service(request: web.Request) -> WebhookService:
    async def builder(req: web.Request) -> WebhookService:
        runtime = get_runtime(req.app)
        return WebhookService(
            runtime.repositories.webhooks,
            runtime.repositories.events,
            runtime.executor,
        )

    return await _get_or_create_service(request, _WEBHOOK_SERVICE_KEY, builder)


def get_event_dispatcher(request: web.Request) -> EventDispatcher:
    return get_runtime(request.app).dispatcher
