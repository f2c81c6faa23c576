"""Evaluation of per-webhook event filters against event data.

Event data comes from the file/folder services, which use camelCase keys
(``mimeType``, ``folderPath``); snake_case spellings are accepted as well.
A configured constraint whose attribute is missing from the data rejects the
event.
"""
from __future__ import annotations

from typing import Any

from webhook_service.domain.enums import FilterOperator
from webhook_service.domain.webhooks import FilterCondition, WebhookFilters

_MISSING = object()


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return _MISSING


def _lookup(data: dict[str, Any], path: str) -> Any:
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _matches_file_type(data: dict[str, Any], file_types: list[str]) -> bool:
    mime = _first(data, "mimeType", "mime_type", "contentType", "content_type")
    filename = _first(data, "filename", "name", "originalName")
    for pattern in file_types:
        pattern = pattern.strip().lower()
        if not pattern:
            continue
        if "/" in pattern and isinstance(mime, str):
            mime_lower = mime.lower()
            if pattern.endswith("/*"):
                if mime_lower.startswith(pattern[:-1]):
                    return True
            elif mime_lower == pattern:
                return True
        elif isinstance(filename, str):
            extension = pattern if pattern.startswith(".") else f".{pattern}"
            if filename.lower().endswith(extension):
                return True
    return False


def _matches_folder(data: dict[str, Any], folder_paths: list[str]) -> bool:
    path = _first(data, "folderPath", "folder_path", "path")
    if not isinstance(path, str):
        return False
    normalized = "/" + path.strip("/")
    for prefix in folder_paths:
        prefix_norm = "/" + prefix.strip("/")
        if prefix_norm == "/" or normalized == prefix_norm or normalized.startswith(prefix_norm + "/"):
            return True
    return False


def evaluate_condition(condition: FilterCondition, data: dict[str, Any]) -> bool:
    actual = _lookup(data, condition.field)
    op = condition.operator
    if actual is _MISSING:
        return op in (FilterOperator.NE, FilterOperator.NIN)

    if op in (FilterOperator.IN, FilterOperator.NIN):
        options = [item.strip() for item in condition.value.split(",")]
        found = str(actual) in options
        return found if op == FilterOperator.IN else not found

    if op == FilterOperator.CONTAINS:
        if isinstance(actual, (list, tuple, set)):
            return condition.value in {str(item) for item in actual}
        return condition.value in str(actual)

    if op in (FilterOperator.GT, FilterOperator.GTE, FilterOperator.LT, FilterOperator.LTE):
        left, right = _to_number(actual), _to_number(condition.value)
        if left is None or right is None:
            return False
        if op == FilterOperator.GT:
            return left > right
        if op == FilterOperator.GTE:
            return left >= right
        if op == FilterOperator.LT:
            return left < right
        return left <= right

    left_num, right_num = _to_number(actual), _to_number(condition.value)
    if left_num is not None and right_num is not None:
        equal = left_num == right_num
    elif isinstance(actual, bool):
        equal = str(actual).lower() == condition.value.strip().lower()
    else:
        equal = str(actual) == condition.value
    return equal if op == FilterOperator.EQ else not equal


def matches_filters(filters: WebhookFilters, data: dict[str, Any]) -> bool:
    """Return True when ``data`` satisfies every configured constraint."""
    if filters.is_empty:
        return True
    if filters.file_types and not _matches_file_type(data, filters.file_types):
        return False
    if filters.folder_paths and not _matches_folder(data, filters.folder_paths):
        return False
    if filters.min_file_size is not None or filters.max_file_size is not None:
        size = _to_number(_first(data, "size", "fileSize", "file_size"))
        if size is None:
            return False
        if filters.min_file_size is not None and size < filters.min_file_size:
            return False
        if filters.max_file_size is not None and size > filters.max_file_size:
            return False
    return all(evaluate_condition(condition, data) for condition in filters.conditions)
