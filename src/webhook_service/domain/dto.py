"""Pydantic DTOs for repository/service layers."""
from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar
from uuid import UUID

# pyright: reportMissingImports=false

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, field_validator, model_validator

from webhook_service.domain.enums import (
    ContentType,
    EventType,
    HttpMethod,
    WebhookEventStatus,
)
from webhook_service.domain.webhooks import (
    DEFAULT_TIMEOUT_SECONDS,
    MAX_TIMEOUT_SECONDS,
    MIN_TIMEOUT_SECONDS,
    RetryConfig,
    WebhookFilters,
    validate_custom_headers,
)


def _dedupe_events(value: list[EventType]) -> list[EventType]:
    return list(dict.fromkeys(value))


class WebhookCreateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    url: AnyHttpUrl
    method: HttpMethod = HttpMethod.POST
    content_type: ContentType = ContentType.JSON
    events: list[EventType] = Field(min_length=1)
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = Field(
        default=DEFAULT_TIMEOUT_SECONDS, ge=MIN_TIMEOUT_SECONDS, le=MAX_TIMEOUT_SECONDS
    )
    secret: str | None = Field(default=None, min_length=16, max_length=256)
    retry_config: RetryConfig = Field(default_factory=RetryConfig)
    filters: WebhookFilters = Field(default_factory=WebhookFilters)

    @field_validator("events")
    @classmethod
    def _normalize_events(cls, value: list[EventType]) -> list[EventType]:
        return _dedupe_events(value)

    @field_validator("headers")
    @classmethod
    def _check_headers(cls, value: dict[str, str]) -> dict[str, str]:
        return validate_custom_headers(value)


class WebhookUpdateDTO(BaseModel):
    """Partial update. The signing secret is intentionally absent.

    Only fields present in the request are applied; ``description`` may be
    cleared with an explicit ``null``.
    """

    model_config = ConfigDict(extra="forbid")

    NULLABLE_FIELDS: ClassVar[frozenset[str]] = frozenset({"description"})

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    url: AnyHttpUrl | None = None
    method: HttpMethod | None = None
    content_type: ContentType | None = None
    events: list[EventType] | None = Field(default=None, min_length=1)
    headers: dict[str, str] | None = None
    timeout_seconds: float | None = Field(
        default=None, ge=MIN_TIMEOUT_SECONDS, le=MAX_TIMEOUT_SECONDS
    )
    retry_config: RetryConfig | None = None
    filters: WebhookFilters | None = None

    @field_validator("events")
    @classmethod
    def _normalize_events(cls, value: list[EventType] | None) -> list[EventType] | None:
        return _dedupe_events(value) if value is not None else None

    @field_validator("headers")
    @classmethod
    def _check_headers(cls, value: dict[str, str] | None) -> dict[str, str] | None:
        return validate_custom_headers(value) if value is not None else None

    @model_validator(mode="after")
    def _reject_null_required(self) -> "WebhookUpdateDTO":
        for name in self.model_fields_set - self.NULLABLE_FIELDS:
            if getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        """Fields sent by the client, JSON-ready."""
        return self.model_dump(mode="json", exclude_unset=True)


class WebhookEventCreateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    webhook_id: UUID
    app_id: UUID
    event_type: str
    resource_id: str | None = None
    payload: dict[str, Any]
    max_attempts: int = Field(ge=1)
    scheduled_for: datetime


class WebhookEventQueryDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: WebhookEventStatus | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None


class EventTriggerDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event_type: EventType
    data: dict[str, Any] = Field(default_factory=dict)
    resource_id: str | None = None


class WebhookTestDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    data: dict[str, Any] = Field(default_factory=dict)
