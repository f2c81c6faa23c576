"""aiohttp application helpers: base app with tracing + CORS, health check, JSON bodies."""
from __future__ import annotations

from typing import Any

from aiohttp import web
from aiohttp_cors import CorsConfig, ResourceOptions, setup as cors_setup

from webhook_service.middleware.trace import (
    REQUEST_ID_HEADER,
    TRACE_ID_HEADER,
    create_trace_middleware,
)
from webhook_service.settings import Settings

# aiohttp_cors wants sequences here, not comma-separated strings.
_ALLOWED_HEADERS = (
    "Accept",
    "Content-Type",
    "Authorization",
    TRACE_ID_HEADER,
    REQUEST_ID_HEADER,
    "X-User-Id",
    "X-App-Id",
    "X-App-Role",
)
_ALLOWED_METHODS = ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")
_EXPOSED_HEADERS = (TRACE_ID_HEADER, REQUEST_ID_HEADER)


def create_base_app(settings: Settings) -> tuple[web.Application, CorsConfig]:
    app = web.Application()
    app.middlewares.append(create_trace_middleware(settings.app_name))
    cors = cors_setup(
        app,
        defaults={
            origin: ResourceOptions(
                allow_credentials=True,
                expose_headers=_EXPOSED_HEADERS,
                allow_headers=_ALLOWED_HEADERS,
                allow_methods=_ALLOWED_METHODS,
            )
            for origin in settings.cors_allowed_origins
        },
    )
    return app, cors


def add_healthcheck(app: web.Application, settings: Settings) -> None:
    async def healthcheck(_request: web.Request) -> web.Response:
        return web.json_response({"status": "ok", "service": settings.app_name, "env": settings.env})

    app.router.add_get("/health", healthcheck)


def add_cors_to_routes(app: web.Application, cors: CorsConfig) -> None:
    for route in list(app.router.routes()):
        cors.add(route)


async def read_json(request: web.Request) -> dict[str, Any]:
    """Parse a JSON object body or raise ``HTTPBadRequest``."""
    if not request.can_read_body:
        return {}
    try:
        data = await request.json()
    except ValueError as exc:
        raise web.HTTPBadRequest(text="Invalid JSON payload") from exc
    if not isinstance(data, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return data
