"""Payload serialization and HMAC signing for outbound webhooks.

The signature is computed over the exact bytes sent as the request body so a
receiver can recompute it from the raw body it got.
"""
from __future__ import annotations

import hmac
import json
from hashlib import sha256
from typing import Any
from urllib.parse import urlencode

from webhook_service.domain.enums import ContentType


def canonical_json(payload: dict[str, Any]) -> bytes:
    # Keys are sorted: payloads round-trip through JSONB, which does not keep key order.
    return json.dumps(
        payload, separators=(",", ":"), ensure_ascii=False, sort_keys=True
    ).encode("utf-8")


def encode_body(payload: dict[str, Any], content_type: ContentType) -> bytes:
    body = canonical_json(payload)
    if content_type == ContentType.FORM:
        return urlencode({"payload": body.decode("utf-8")}).encode("ascii")
    return body


def sign(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of ``body`` keyed with ``secret``."""
    return hmac.new(secret.encode("utf-8"), body, sha256).hexdigest()


def verify_signature(body: bytes, secret: str, signature: str) -> bool:
    return hmac.compare_digest(sign(body, secret), signature)
