from __future__ import annotations

import pytest

from backend.domain.constraints import AlertThresholds
from backend.domain.models import AlertCategoryType, AlertSeverity, UtilizationResult
from backend.services.alert_service import (
    CATEGORY_ORDER,
    categorize,
    classify,
    filter_by_severity,
)


def _result(resource_id: int, pct: int, name: str | None = None, active: bool = True, capacity: float = 40.0):
    return UtilizationResult(
        resource_id=resource_id,
        resource_name=name or f"Resource {resource_id}",
        allocated_hours=capacity * pct / 100.0,
        effective_capacity=capacity,
        utilization_pct=pct,
        active=active,
    )


@pytest.mark.parametrize(
    ("pct", "expected"),
    [
        (200, AlertCategoryType.CRITICAL),
        (101, AlertCategoryType.CRITICAL),
        (100, AlertCategoryType.NEAR_CAPACITY),
        (85, AlertCategoryType.NEAR_CAPACITY),
        (84, None),
        (70, None),
        (69, AlertCategoryType.UNDERUTILIZED),
        (1, AlertCategoryType.UNDERUTILIZED),
        (0, AlertCategoryType.UNASSIGNED),
    ],
)
def test_classify_band_edges(pct: int, expected) -> None:
    assert classify(pct) == expected


def test_every_category_is_emitted_in_fixed_order_even_when_empty() -> None:
    report = categorize([])

    assert [category.type for category in report.categories] == list(CATEGORY_ORDER)
    assert all(category.count == 0 for category in report.categories)
    assert report.summary.total_alerts == 0


def test_each_active_resource_lands_in_exactly_one_bucket() -> None:
    results = [
        _result(1, 120),
        _result(2, 90),
        _result(3, 75),
        _result(4, 40),
        _result(5, 0),
        _result(6, 150, active=False),
    ]

    report = categorize(results)

    placed = [
        result.resource_id
        for category in report.categories
        for result in category.resources
    ] + [result.resource_id for result in report.healthy]
    assert sorted(placed) == [1, 2, 3, 4, 5]
    assert report.skipped_inactive_ids == [6]
    assert report.category_of(1) == AlertCategoryType.CRITICAL
    assert report.category_of(3) is None
    assert report.summary.evaluated_count == 5


def test_summary_counts() -> None:
    results = [_result(1, 130), _result(2, 110), _result(3, 95), _result(4, 30), _result(5, 0), _result(6, 0)]

    summary = categorize(results).summary

    assert summary.critical_count == 2
    assert summary.warning_count == 1
    assert summary.info_count == 1
    assert summary.unassigned_count == 2
    assert summary.total_alerts == 6
    assert summary.healthy_count == 0


def test_category_sorting() -> None:
    results = [
        _result(1, 110, name="Zoe"),
        _result(2, 150, name="Adam"),
        _result(3, 30, name="Bea", capacity=20.0),
        _result(4, 30, name="Cy", capacity=40.0),
        _result(5, 10, name="Dee"),
        _result(6, 0, name="Yan"),
        _result(7, 0, name="Abe"),
    ]

    report = categorize(results)

    critical = report.category(AlertCategoryType.CRITICAL)
    assert [r.resource_id for r in critical.resources] == [2, 1]
    underutilized = report.category(AlertCategoryType.UNDERUTILIZED)
    # pct ascending, then more available hours first
    assert [r.resource_id for r in underutilized.resources] == [5, 4, 3]
    unassigned = report.category(AlertCategoryType.UNASSIGNED)
    assert [r.resource_name for r in unassigned.resources] == ["Abe", "Yan"]


def test_severity_mapping_and_titles() -> None:
    report = categorize([_result(1, 120)])
    by_type = {category.type: category for category in report.categories}

    assert by_type[AlertCategoryType.CRITICAL].severity == AlertSeverity.CRITICAL
    assert by_type[AlertCategoryType.NEAR_CAPACITY].severity == AlertSeverity.WARNING
    assert by_type[AlertCategoryType.UNDERUTILIZED].severity == AlertSeverity.INFO
    assert by_type[AlertCategoryType.UNASSIGNED].severity == AlertSeverity.INFO
    assert by_type[AlertCategoryType.CRITICAL].threshold == 100.0
    assert by_type[AlertCategoryType.CRITICAL].condition == "utilization > 100%"


def test_filter_by_severity() -> None:
    categories = categorize([_result(1, 120), _result(2, 50), _result(3, 0)]).categories

    assert [c.type for c in filter_by_severity(categories, "critical")] == [AlertCategoryType.CRITICAL]
    assert [c.type for c in filter_by_severity(categories, "info")] == [
        AlertCategoryType.UNDERUTILIZED,
        AlertCategoryType.UNASSIGNED,
    ]
    assert len(filter_by_severity(categories, "all")) == 4


def test_custom_thresholds_shift_bands() -> None:
    thresholds = AlertThresholds(critical_above=110.0, near_capacity_from=90.0, underutilized_below=50.0)

    assert classify(105, thresholds) == AlertCategoryType.NEAR_CAPACITY
    assert classify(60, thresholds) is None
    with pytest.raises(ValueError):
        categorize([], AlertThresholds(critical_above=50.0))
