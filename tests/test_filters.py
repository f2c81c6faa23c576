from __future__ import annotations

import pytest

from webhook_service.domain.enums import FilterOperator
from webhook_service.domain.webhooks import FilterCondition, WebhookFilters
from webhook_service.services.filters import evaluate_condition, matches_filters

FILE = {
    "id": "f-1",
    "filename": "holiday.JPG",
    "mimeType": "image/jpeg",
    "size": 2048,
    "folderPath": "/photos/2024",
    "tags": ["family", "beach"],
    "owner": {"plan": "pro"},
}


def test_empty_filters_match_everything():
    assert matches_filters(WebhookFilters(), {})
    assert matches_filters(WebhookFilters(), FILE)


@pytest.mark.parametrize(
    ("file_types", "expected"),
    [
        (["image/*"], True),
        (["image/jpeg"], True),
        (["image/png"], False),
        (["jpg"], True),
        ([".jpg"], True),
        (["pdf", "application/pdf"], False),
    ],
)
def test_file_types(file_types, expected):
    assert matches_filters(WebhookFilters(file_types=file_types), FILE) is expected


@pytest.mark.parametrize(
    ("folders", "expected"),
    [
        (["/photos"], True),
        (["photos/2024/"], True),
        (["/pho"], False),
        (["/documents"], False),
        (["/"], True),
    ],
)
def test_folder_prefixes(folders, expected):
    assert matches_filters(WebhookFilters(folder_paths=folders), FILE) is expected


def test_size_bounds():
    assert matches_filters(WebhookFilters(min_file_size=1000, max_file_size=4096), FILE)
    assert not matches_filters(WebhookFilters(min_file_size=4096), FILE)
    assert not matches_filters(WebhookFilters(max_file_size=1000), FILE)


def test_missing_attribute_rejects_event():
    assert not matches_filters(WebhookFilters(file_types=["image/*"]), {"size": 1})
    assert not matches_filters(WebhookFilters(min_file_size=1), {"mimeType": "image/png"})
    assert not matches_filters(WebhookFilters(folder_paths=["/a"]), {})


@pytest.mark.parametrize(
    ("field", "operator", "value", "expected"),
    [
        ("size", FilterOperator.EQ, "2048", True),
        ("size", FilterOperator.NE, "2048", False),
        ("size", FilterOperator.GT, "1000", True),
        ("size", FilterOperator.GTE, "2048", True),
        ("size", FilterOperator.LT, "2048", False),
        ("size", FilterOperator.LTE, "2048", True),
        ("mimeType", FilterOperator.IN, "image/png, image/jpeg", True),
        ("mimeType", FilterOperator.NIN, "image/png,image/jpeg", False),
        ("tags", FilterOperator.CONTAINS, "beach", True),
        ("filename", FilterOperator.CONTAINS, "holiday", True),
        ("owner.plan", FilterOperator.EQ, "pro", True),
        ("owner.plan", FilterOperator.EQ, "free", False),
        ("mimeType", FilterOperator.GT, "1", False),
    ],
)
def test_conditions(field, operator, value, expected):
    condition = FilterCondition(field=field, operator=operator, value=value)
    assert evaluate_condition(condition, FILE) is expected


def test_condition_on_missing_field():
    assert not evaluate_condition(
        FilterCondition(field="missing", operator=FilterOperator.EQ, value="x"), FILE
    )
    assert evaluate_condition(
        FilterCondition(field="missing", operator=FilterOperator.NE, value="x"), FILE
    )


def test_all_constraints_must_hold():
    filters = WebhookFilters(
        file_types=["image/*"],
        folder_paths=["/photos"],
        conditions=[FilterCondition(field="owner.plan", operator=FilterOperator.EQ, value="free")],
    )
    assert not matches_filters(filters, FILE)
