"""Domain exceptions raised by services and repositories."""
from __future__ import annotations


class WebhookServiceError(Exception):
    """Base class for errors surfaced to administrative callers."""


class NotFoundError(WebhookServiceError):
    pass


class InvalidEventTypeError(WebhookServiceError):
    pass


class WebhookInactiveError(WebhookServiceError):
    pass


class RetryLimitExceededError(WebhookServiceError):
    pass


class InvalidEventStateError(WebhookServiceError):
    pass


class ConcurrentModificationError(WebhookServiceError):
    """A conditional update on an event record matched no row."""
