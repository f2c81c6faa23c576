"""API router composition for aiohttp."""
from __future__ import annotations

from aiohttp import web

from webhook_service.api.routes import events, webhooks

ROUTE_MODULES = [
    webhooks,
    events,
]


def setup_routes(app: web.Application) -> None:
    for module in ROUTE_MODULES:
        app.add_routes(module.routes)
