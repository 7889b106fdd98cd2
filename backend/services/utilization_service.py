"""Effective capacity and utilization per resource per period."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Optional

from backend.domain.models import (
    NonProjectActivity,
    Period,
    Resource,
    Snapshot,
    TimeOff,
    UtilizationResult,
)
from backend.services.aggregation_service import FlaggedWeekKey, aggregate
from backend.utils.logger import get_logger


logger = get_logger(__name__)

DEFAULT_WEEKLY_CAPACITY = 40.0


def round_half_up(value: float) -> int:
    """Round halves away from zero."""
    if value >= 0:
        return int(math.floor(value + 0.5))
    return -int(math.floor(-value + 0.5))


def number_of_weeks_in(period: Period) -> float:
    return period.days / 7.0


def time_off_hours_overlapping(time_offs: Iterable[TimeOff], period: Period) -> float:
    """Time-off hours prorated by the inclusive days each entry shares with ``period``."""
    total = 0.0
    for entry in time_offs:
        span_days = (entry.end_date - entry.start_date).days + 1
        if span_days <= 0 or entry.hours <= 0:
            continue
        shared = period.overlap_days(entry.start_date, entry.end_date)
        total += entry.hours * shared / span_days
    return total


def non_project_hours_in(
    activities: Iterable[NonProjectActivity],
    period: Period,
    default_hours_per_week: float = 0.0,
) -> float:
    weekly = [
        activity.hours_per_week
        for activity in activities
        if activity.active and activity.hours_per_week > 0
    ]
    hours_per_week = sum(weekly) if weekly else default_hours_per_week
    return hours_per_week * number_of_weeks_in(period)


def resolve_weekly_capacity(
    resource: Resource,
    default_weekly_capacity: float = DEFAULT_WEEKLY_CAPACITY,
) -> float:
    capacity = resource.weekly_capacity
    if capacity is None or math.isnan(capacity) or capacity < 0:
        logger.warning(
            "Missing weekly capacity; using standard capacity | resource_id=%s | capacity=%s | fallback=%s",
            resource.resource_id,
            capacity,
            default_weekly_capacity,
        )
        return default_weekly_capacity
    return float(capacity)


def calculate(
    resource: Resource,
    allocated_hours: float,
    time_off_hours: float,
    period: Period,
    non_project_hours: float = 0.0,
    default_weekly_capacity: float = DEFAULT_WEEKLY_CAPACITY,
) -> UtilizationResult:
    weekly_capacity = resolve_weekly_capacity(resource, default_weekly_capacity)
    effective_capacity = (
        weekly_capacity * number_of_weeks_in(period)
        - non_project_hours
        - time_off_hours
    )
    degenerate = effective_capacity <= 0
    if degenerate:
        utilization_pct = 0
    else:
        utilization_pct = round_half_up(allocated_hours * 100.0 / effective_capacity)

    return UtilizationResult(
        resource_id=resource.resource_id,
        resource_name=resource.name,
        allocated_hours=float(allocated_hours),
        effective_capacity=float(effective_capacity),
        utilization_pct=utilization_pct,
        department=resource.department,
        role=resource.role,
        active=resource.active,
        capacity_degenerate=degenerate,
    )


@dataclass
class SnapshotEvaluation:
    results: dict[int, UtilizationResult] = field(default_factory=dict)
    excluded_resource_ids: list[int] = field(default_factory=list)
    flagged_week_keys: list[FlaggedWeekKey] = field(default_factory=list)
    skipped_allocation_ids: list[int] = field(default_factory=list)

    def ordered_results(self) -> list[UtilizationResult]:
        return [self.results[resource_id] for resource_id in sorted(self.results)]


def evaluate_snapshot(
    snapshot: Snapshot,
    period: Period,
    resource_ids: Optional[Iterable[int]] = None,
    default_weekly_capacity: float = DEFAULT_WEEKLY_CAPACITY,
    default_non_project_hours_per_week: float = 0.0,
) -> SnapshotEvaluation:
    """Aggregate and calculate utilization for active resources in ``snapshot``.

    A resource whose computation raises is logged and listed in
    ``excluded_resource_ids``; the rest of the batch is still evaluated.
    """

    wanted = set(resource_ids) if resource_ids is not None else None
    resources = [
        resource
        for resource in snapshot.resources
        if resource.active and (wanted is None or resource.resource_id in wanted)
    ]
    resource_id_set = {resource.resource_id for resource in resources}

    aggregation = aggregate(
        [
            allocation
            for allocation in snapshot.allocations
            if allocation.resource_id in resource_id_set
        ],
        period,
    )
    evaluation = SnapshotEvaluation(
        flagged_week_keys=list(aggregation.flagged_week_keys),
        skipped_allocation_ids=list(aggregation.skipped_allocation_ids),
    )

    for resource in resources:
        try:
            time_off_hours = time_off_hours_overlapping(
                (entry for entry in snapshot.time_offs if entry.resource_id == resource.resource_id),
                period,
            )
            non_project_hours = non_project_hours_in(
                (
                    activity
                    for activity in snapshot.non_project_activities
                    if activity.resource_id == resource.resource_id
                ),
                period,
                default_hours_per_week=default_non_project_hours_per_week,
            )
            evaluation.results[resource.resource_id] = calculate(
                resource=resource,
                allocated_hours=aggregation.hours_for(resource.resource_id),
                time_off_hours=time_off_hours,
                period=period,
                non_project_hours=non_project_hours,
                default_weekly_capacity=default_weekly_capacity,
            )
        except Exception:  # noqa: BLE001
            logger.exception(
                "Utilization computation failed; resource excluded | resource_id=%s",
                resource.resource_id,
            )
            evaluation.excluded_resource_ids.append(resource.resource_id)

    return evaluation
