"""Enumerations shared by webhook models, DTOs and repositories."""
from __future__ import annotations

from enum import Enum


class EventType(str, Enum):
    """Catalog of domain events a webhook can subscribe to."""

    FILE_UPLOADED = "file.uploaded"
    FILE_DELETED = "file.deleted"
    FILE_UPDATED = "file.updated"
    FILE_DOWNLOADED = "file.downloaded"
    FOLDER_CREATED = "folder.created"
    FOLDER_DELETED = "folder.deleted"
    FOLDER_UPDATED = "folder.updated"
    QUOTA_EXCEEDED = "quota.exceeded"
    QUOTA_WARNING = "quota.warning"
    USER_REGISTERED = "user.registered"
    USER_LOGIN = "user.login"
    APP_CREATED = "app.created"
    APP_UPDATED = "app.updated"
    WEBHOOK_TEST = "webhook.test"
    ALL = "*"


EVENT_TYPE_DESCRIPTIONS: dict[EventType, str] = {
    EventType.FILE_UPLOADED: "A file was uploaded",
    EventType.FILE_DELETED: "A file was deleted",
    EventType.FILE_UPDATED: "File metadata was updated",
    EventType.FILE_DOWNLOADED: "A file was downloaded",
    EventType.FOLDER_CREATED: "A folder was created",
    EventType.FOLDER_DELETED: "A folder was deleted",
    EventType.FOLDER_UPDATED: "A folder was updated",
    EventType.QUOTA_EXCEEDED: "Storage quota was exceeded",
    EventType.QUOTA_WARNING: "Storage usage is close to the quota",
    EventType.USER_REGISTERED: "A user registered in the application",
    EventType.USER_LOGIN: "A user logged in",
    EventType.APP_CREATED: "An application was created",
    EventType.APP_UPDATED: "An application was updated",
    EventType.WEBHOOK_TEST: "Test delivery sent from the admin API",
    EventType.ALL: "Every event",
}


class WebhookStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    DISABLED = "disabled"
    FAILED = "failed"


class WebhookEventStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_EVENT_STATUSES = (
    WebhookEventStatus.DELIVERED,
    WebhookEventStatus.FAILED,
    WebhookEventStatus.CANCELLED,
)


class HttpMethod(str, Enum):
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"


class ContentType(str, Enum):
    JSON = "application/json"
    FORM = "application/x-www-form-urlencoded"


class BackoffStrategy(str, Enum):
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


class FilterOperator(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NIN = "nin"
    CONTAINS = "contains"
