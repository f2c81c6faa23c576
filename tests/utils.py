from __future__ import annotations

import uuid


def make_headers(app_id: uuid.UUID, *, role: str | None = "owner", user_id: uuid.UUID | None = None) -> dict[str, str]:
    headers = {
        "X-User-Id": str(user_id or uuid.uuid4()),
        "X-App-Id": str(app_id),
    }
    if role is not None:
        headers["X-App-Role"] = role
    return headers
