"""Helper utilities for API handlers."""
from __future__ import annotations

from typing import Any
from uuid import UUID

from aiohttp import web

from webhook_service.aiohttp_app import read_json as read_json  # noqa: F401
from webhook_service.core.exceptions import (
    ConcurrentModificationError,
    InvalidEventStateError,
    InvalidEventTypeError,
    NotFoundError,
    RetryLimitExceededError,
    WebhookInactiveError,
    WebhookServiceError,
)
from webhook_service.domain.webhooks import Webhook, WebhookEvent

_CONFLICT_ERRORS = (
    WebhookInactiveError,
    RetryLimitExceededError,
    InvalidEventStateError,
    ConcurrentModificationError,
)


def parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value)
    except (ValueError, TypeError) as exc:
        raise web.HTTPBadRequest(text=f"Invalid {label}") from exc


def pagination_params(
    request: web.Request,
    *,
    default_limit: int = 50,
    max_limit: int = 100,
) -> tuple[int, int]:
    query = request.rel_url.query
    try:
        limit = int(query.get("limit", str(default_limit)))
        offset = int(query.get("offset", "0"))
    except ValueError as exc:
        raise web.HTTPBadRequest(text="limit and offset must be integers") from exc
    if limit <= 0:
        limit = default_limit
    return min(limit, max_limit), max(offset, 0)


def paginated_response(
    items: list[Any],
    *,
    limit: int,
    offset: int,
    key: str,
    total: int,
) -> dict[str, Any]:
    return {
        key: items,
        "total": total,
        "page": offset // limit + 1 if limit else 1,
        "page_size": limit,
    }


def to_http_error(exc: WebhookServiceError) -> web.HTTPException:
    if isinstance(exc, NotFoundError):
        return web.HTTPNotFound(text=str(exc))
    if isinstance(exc, InvalidEventTypeError):
        return web.HTTPBadRequest(text=str(exc))
    if isinstance(exc, _CONFLICT_ERRORS):
        return web.HTTPConflict(text=str(exc))
    return web.HTTPBadRequest(text=str(exc))


def webhook_json(webhook: Webhook, *, include_secret: bool = False) -> dict[str, Any]:
    """Serialized webhook; the secret is only shown once, on creation."""
    return webhook.model_dump(mode="json", exclude=None if include_secret else {"secret"})


def event_json(event: WebhookEvent) -> dict[str, Any]:
    return event.model_dump(mode="json", exclude={"lease_id"})
