"""Webhook domain primitives."""
from __future__ import annotations

import re
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field

from webhook_service.domain.enums import (
    BackoffStrategy,
    ContentType,
    EventType,
    FilterOperator,
    HttpMethod,
    WebhookEventStatus,
    WebhookStatus,
)

MIN_TIMEOUT_SECONDS = 1.0
MAX_TIMEOUT_SECONDS = 30.0
DEFAULT_TIMEOUT_SECONDS = 10.0

# RFC 9110 token characters for field names; values may not carry CR, LF or other controls.
_HEADER_NAME_RE = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")
_HEADER_VALUE_FORBIDDEN_RE = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")


def validate_custom_headers(headers: dict[str, str]) -> dict[str, str]:
    """Reject header names and values that cannot be sent on the wire."""
    for name, value in headers.items():
        if not _HEADER_NAME_RE.fullmatch(name):
            raise ValueError(f"Invalid header name: {name!r}")
        if _HEADER_VALUE_FORBIDDEN_RE.search(value):
            raise ValueError(f"Header {name} contains control characters")
    return headers


class RetryConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    max_attempts: int = Field(default=5, ge=1, le=10)
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    initial_delay_seconds: float = Field(default=1.0, gt=0)
    max_delay_seconds: float = Field(default=300.0, gt=0)

    @property
    def effective_max_attempts(self) -> int:
        """Attempt budget copied onto new event records."""
        return self.max_attempts if self.enabled else 1


class FilterCondition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    field: str = Field(min_length=1)
    operator: FilterOperator
    value: str


class WebhookFilters(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    file_types: list[str] = Field(default_factory=list)
    folder_paths: list[str] = Field(default_factory=list)
    min_file_size: int | None = Field(default=None, ge=0)
    max_file_size: int | None = Field(default=None, ge=0)
    conditions: list[FilterCondition] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.file_types
            or self.folder_paths
            or self.min_file_size is not None
            or self.max_file_size is not None
            or self.conditions
        )


class WebhookStatistics(BaseModel):
    total_sent: int = 0
    total_successful: int = 0
    total_failed: int = 0
    average_response_time: float = 0.0
    last_successful_delivery: datetime | None = None
    last_failed_delivery: datetime | None = None
    last_delivery_attempt: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success_rate(self) -> float:
        if not self.total_sent:
            return 0.0
        return round(self.total_successful / self.total_sent * 100, 2)


class WebhookTestResult(BaseModel):
    success: bool
    status_code: int | None = None
    response_time: float
    error: str | None = None
    tested_at: datetime


class Webhook(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    app_id: UUID
    name: str
    description: str | None = None
    url: str
    method: HttpMethod = HttpMethod.POST
    content_type: ContentType = ContentType.JSON
    events: list[EventType]
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    secret: str = Field(repr=False)
    status: WebhookStatus = WebhookStatus.ACTIVE
    retry_config: RetryConfig = Field(default_factory=RetryConfig)
    filters: WebhookFilters = Field(default_factory=WebhookFilters)
    statistics: WebhookStatistics = Field(default_factory=WebhookStatistics)
    last_tested_at: datetime | None = None
    last_test_result: WebhookTestResult | None = None
    created_by: UUID | None = None
    created_at: datetime
    updated_at: datetime

    def subscribes_to(self, event_type: EventType) -> bool:
        return EventType.ALL in self.events or event_type in self.events


class WebhookPayload(BaseModel):
    """Body sent to the receiver: ``{id, event, timestamp, data, appId, version}``."""

    model_config = ConfigDict(populate_by_name=True)

    id: UUID
    event: str
    timestamp: datetime
    data: dict[str, Any] = Field(default_factory=dict)
    app_id: UUID = Field(alias="appId")
    version: str

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class WebhookEvent(BaseModel):
    id: UUID
    webhook_id: UUID
    app_id: UUID
    event_type: str
    resource_id: str | None = None
    payload: dict[str, Any]
    status: WebhookEventStatus
    attempts: int
    max_attempts: int
    next_retry_at: datetime | None = None
    scheduled_for: datetime
    lease_id: UUID | None = None
    processing_started_at: datetime | None = None
    processing_ended_at: datetime | None = None
    delivered_at: datetime | None = None
    failed_at: datetime | None = None
    response_status: int | None = None
    response_body: str | None = None
    response_headers: dict[str, str] | None = None
    response_time: float | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime

    def is_due(self, now: datetime, orphan_before: datetime) -> bool:
        """Whether the retry sweep should resubmit this record."""
        if self.status != WebhookEventStatus.PENDING:
            return False
        if self.attempts > 0:
            return self.next_retry_at is not None and self.next_retry_at <= now
        return self.scheduled_for <= orphan_before


class DeliveryOutcome(BaseModel):
    """Result of a single outbound HTTP attempt."""

    success: bool
    status_code: int | None = None
    response_body: str | None = None
    response_headers: dict[str, str] | None = None
    response_time: float
    error: str | None = None
