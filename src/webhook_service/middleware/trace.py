"""Request tracing middleware: trace/request ids in structlog context and response headers."""
from __future__ import annotations

import time
from typing import Any, Mapping
from uuid import UUID, uuid4

import structlog
from aiohttp import web

TRACE_ID_HEADER = "X-Trace-Id"
REQUEST_ID_HEADER = "X-Request-Id"

logger = structlog.get_logger(__name__)

SENSITIVE_HEADERS = {
    "authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
    "x-webhook-signature",
}


def _valid_uuid_or_new(value: str | None) -> str:
    if value:
        try:
            return str(UUID(value))
        except ValueError:
            pass
    return str(uuid4())


def safe_headers(headers: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in headers.items() if k.lower() not in SENSITIVE_HEADERS}


def create_trace_middleware(service_name: str):
    @web.middleware
    async def trace_middleware(request: web.Request, handler):
        started = time.perf_counter()
        trace_id = _valid_uuid_or_new(request.headers.get(TRACE_ID_HEADER))
        request_id = _valid_uuid_or_new(request.headers.get(REQUEST_ID_HEADER))
        request["trace_id"] = trace_id
        request["request_id"] = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            trace_id=trace_id,
            request_id=request_id,
            service=service_name,
            method=request.method,
            path=request.path,
        )
        logger.debug("request started", headers=safe_headers(request.headers))

        try:
            response = await handler(request)
        except web.HTTPException as exc:
            logger.warning(
                "request failed",
                status_code=exc.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            exc.headers[TRACE_ID_HEADER] = trace_id
            exc.headers[REQUEST_ID_HEADER] = request_id
            raise
        except Exception:
            logger.exception(
                "request crashed",
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            raise
        finally:
            structlog.contextvars.clear_contextvars()

        log = logger.warning if response.status >= 400 else logger.info
        log(
            "request completed",
            method=request.method,
            path=request.path,
            trace_id=trace_id,
            request_id=request_id,
            status_code=response.status,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        response.headers[TRACE_ID_HEADER] = trace_id
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    return trace_middleware
