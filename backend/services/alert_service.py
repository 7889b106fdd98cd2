"""Bucket utilization results into mutually exclusive alert categories."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from backend.domain.constraints import AlertThresholds, validate_alert_thresholds
from backend.domain.models import (
    AlertCategory,
    AlertCategoryType,
    AlertSeverity,
    UtilizationResult,
)


CATEGORY_ORDER: tuple[AlertCategoryType, ...] = (
    AlertCategoryType.CRITICAL,
    AlertCategoryType.NEAR_CAPACITY,
    AlertCategoryType.UNDERUTILIZED,
    AlertCategoryType.UNASSIGNED,
)

CATEGORY_SEVERITY: dict[AlertCategoryType, AlertSeverity] = {
    AlertCategoryType.CRITICAL: AlertSeverity.CRITICAL,
    AlertCategoryType.NEAR_CAPACITY: AlertSeverity.WARNING,
    AlertCategoryType.UNDERUTILIZED: AlertSeverity.INFO,
    AlertCategoryType.UNASSIGNED: AlertSeverity.INFO,
}

SEVERITY_FILTERS = ("all", "critical", "warning", "info")


@dataclass(frozen=True)
class CategoryDefinition:
    title: str
    threshold: float
    condition: str


@dataclass(frozen=True)
class AlertSummary:
    total_alerts: int
    critical_count: int
    warning_count: int
    info_count: int
    unassigned_count: int
    healthy_count: int
    evaluated_count: int


@dataclass
class AlertReport:
    categories: list[AlertCategory]
    summary: AlertSummary
    thresholds: AlertThresholds
    healthy: list[UtilizationResult] = field(default_factory=list)
    skipped_inactive_ids: list[int] = field(default_factory=list)

    def category(self, category_type: AlertCategoryType) -> AlertCategory:
        for item in self.categories:
            if item.type == category_type:
                return item
        raise KeyError(category_type)

    def category_of(self, resource_id: int) -> Optional[AlertCategoryType]:
        for item in self.categories:
            if any(result.resource_id == resource_id for result in item.resources):
                return item.type
        return None


def category_definitions(
    thresholds: AlertThresholds,
) -> dict[AlertCategoryType, CategoryDefinition]:
    critical = thresholds.critical_above
    near = thresholds.near_capacity_from
    under = thresholds.underutilized_below
    return {
        AlertCategoryType.CRITICAL: CategoryDefinition(
            title="Critical Overallocation",
            threshold=critical,
            condition=f"utilization > {critical:g}%",
        ),
        AlertCategoryType.NEAR_CAPACITY: CategoryDefinition(
            title="Near Capacity",
            threshold=near,
            condition=f"{near:g}% <= utilization <= {critical:g}%",
        ),
        AlertCategoryType.UNDERUTILIZED: CategoryDefinition(
            title="Under-utilized",
            threshold=under,
            condition=f"0% < utilization < {under:g}%",
        ),
        AlertCategoryType.UNASSIGNED: CategoryDefinition(
            title="Unassigned Resources",
            threshold=0.0,
            condition="utilization == 0%",
        ),
    }


def classify(
    utilization_pct: float,
    thresholds: AlertThresholds = AlertThresholds(),
) -> Optional[AlertCategoryType]:
    """Return the alert category for a percentage, or None for the healthy band."""
    if utilization_pct > thresholds.critical_above:
        return AlertCategoryType.CRITICAL
    if utilization_pct >= thresholds.near_capacity_from:
        return AlertCategoryType.NEAR_CAPACITY
    if utilization_pct <= 0:
        return AlertCategoryType.UNASSIGNED
    if utilization_pct < thresholds.underutilized_below:
        return AlertCategoryType.UNDERUTILIZED
    return None


_SORT_KEYS: dict[AlertCategoryType, Callable[[UtilizationResult], tuple]] = {
    AlertCategoryType.CRITICAL: lambda r: (-r.utilization_pct, r.resource_name, r.resource_id),
    AlertCategoryType.NEAR_CAPACITY: lambda r: (-r.utilization_pct, r.resource_name, r.resource_id),
    AlertCategoryType.UNDERUTILIZED: lambda r: (
        r.utilization_pct,
        -r.available_hours,
        r.resource_name,
        r.resource_id,
    ),
    AlertCategoryType.UNASSIGNED: lambda r: (r.resource_name, r.resource_id),
}


def categorize(
    results: Iterable[UtilizationResult],
    thresholds: AlertThresholds = AlertThresholds(),
) -> AlertReport:
    validate_alert_thresholds(thresholds)
    buckets: dict[AlertCategoryType, list[UtilizationResult]] = {
        category_type: [] for category_type in CATEGORY_ORDER
    }
    healthy: list[UtilizationResult] = []
    skipped_inactive: list[int] = []

    for result in results:
        if not result.active:
            skipped_inactive.append(result.resource_id)
            continue
        category_type = classify(result.utilization_pct, thresholds)
        if category_type is None:
            healthy.append(result)
        else:
            buckets[category_type].append(result)

    definitions = category_definitions(thresholds)
    categories = [
        AlertCategory(
            type=category_type,
            severity=CATEGORY_SEVERITY[category_type],
            title=definitions[category_type].title,
            threshold=definitions[category_type].threshold,
            condition=definitions[category_type].condition,
            resources=tuple(sorted(buckets[category_type], key=_SORT_KEYS[category_type])),
        )
        for category_type in CATEGORY_ORDER
    ]

    critical_count = len(buckets[AlertCategoryType.CRITICAL])
    warning_count = len(buckets[AlertCategoryType.NEAR_CAPACITY])
    info_count = len(buckets[AlertCategoryType.UNDERUTILIZED])
    unassigned_count = len(buckets[AlertCategoryType.UNASSIGNED])
    summary = AlertSummary(
        total_alerts=critical_count + warning_count + info_count + unassigned_count,
        critical_count=critical_count,
        warning_count=warning_count,
        info_count=info_count,
        unassigned_count=unassigned_count,
        healthy_count=len(healthy),
        evaluated_count=critical_count + warning_count + info_count + unassigned_count + len(healthy),
    )
    return AlertReport(
        categories=categories,
        summary=summary,
        thresholds=thresholds,
        healthy=sorted(healthy, key=lambda r: (r.resource_name, r.resource_id)),
        skipped_inactive_ids=skipped_inactive,
    )


def filter_by_severity(
    categories: Iterable[AlertCategory],
    severity: str = "all",
) -> list[AlertCategory]:
    if severity == "all":
        return list(categories)
    return [category for category in categories if category.severity.value == severity]
