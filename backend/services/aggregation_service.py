"""Collapse allocation records into allocated hours for an arbitrary period.

Two allocation shapes are supported:

* allocations with a weekly breakdown contribute the hours of every week whose
  Monday-Sunday span touches the period (overlap-inclusive, not weighted by
  the number of days that fall inside the period);
* allocations without a breakdown are prorated by the share of their own
  inclusive date span that overlaps the period.

Week keys arrive already normalized. Raw keys the repository could not
normalize travel on ``Allocation.unrecognized_week_keys`` and are flagged here
instead of vanishing.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from backend.domain.models import Allocation, AllocationStatus, Period
from backend.domain.week_keys import WeekKey, week_keys_between
from backend.utils.logger import get_logger


logger = get_logger(__name__)

COUNTED_STATUSES: frozenset[AllocationStatus] = frozenset({AllocationStatus.ACTIVE})


class AllocationDataError(ValueError):
    """Raised when a single allocation record cannot be aggregated."""


@dataclass(frozen=True)
class FlaggedWeekKey:
    allocation_id: int
    resource_id: int
    raw_key: str


@dataclass(frozen=True)
class WeeklyLoad:
    week: WeekKey
    hours: float


@dataclass
class AggregationResult:
    hours_by_resource: dict[int, float] = field(default_factory=dict)
    flagged_week_keys: list[FlaggedWeekKey] = field(default_factory=list)
    skipped_allocation_ids: list[int] = field(default_factory=list)

    def hours_for(self, resource_id: int) -> float:
        return self.hours_by_resource.get(resource_id, 0.0)


def weeks_in_period(period: Period) -> list[WeekKey]:
    return week_keys_between(period.start_date, period.end_date)


def _validate_allocation(allocation: Allocation) -> None:
    if allocation.end_date < allocation.start_date:
        raise AllocationDataError(
            f"allocation {allocation.allocation_id} ends before it starts"
        )
    if allocation.allocated_hours < 0:
        raise AllocationDataError(
            f"allocation {allocation.allocation_id} has negative allocated hours"
        )


def overlap_fraction(allocation: Allocation, period: Period) -> float:
    span_days = (allocation.end_date - allocation.start_date).days + 1
    if span_days <= 0:
        return 0.0
    return period.overlap_days(allocation.start_date, allocation.end_date) / span_days


def hours_in_period(allocation: Allocation, period: Period) -> float:
    """Hours one allocation contributes to ``period``."""
    _validate_allocation(allocation)
    if allocation.has_weekly_breakdown:
        return float(
            sum(
                allocation.weekly_allocations.get(week, 0.0)
                for week in weeks_in_period(period)
            )
        )
    return float(allocation.allocated_hours) * overlap_fraction(allocation, period)


def _flag_unrecognized(allocation: Allocation) -> list[FlaggedWeekKey]:
    if not allocation.unrecognized_week_keys:
        return []
    logger.warning(
        "Unrecognized week keys skipped | allocation_id=%s | resource_id=%s | keys=%s",
        allocation.allocation_id,
        allocation.resource_id,
        list(allocation.unrecognized_week_keys),
    )
    return [
        FlaggedWeekKey(
            allocation_id=allocation.allocation_id,
            resource_id=allocation.resource_id,
            raw_key=raw_key,
        )
        for raw_key in allocation.unrecognized_week_keys
    ]


def aggregate(
    allocations: Iterable[Allocation],
    period: Period,
    statuses: frozenset[AllocationStatus] = COUNTED_STATUSES,
) -> AggregationResult:
    """Sum in-period hours per resource.

    A malformed allocation is skipped and recorded; it never aborts the batch.
    """

    hours_by_resource: dict[int, float] = defaultdict(float)
    result = AggregationResult()

    for allocation in allocations:
        if allocation.status not in statuses:
            continue
        result.flagged_week_keys.extend(_flag_unrecognized(allocation))
        try:
            hours = hours_in_period(allocation, period)
        except AllocationDataError as exc:
            logger.warning(
                "Allocation skipped during aggregation | allocation_id=%s | reason=%s",
                allocation.allocation_id,
                exc,
            )
            result.skipped_allocation_ids.append(allocation.allocation_id)
            continue
        hours_by_resource[allocation.resource_id] += hours

    result.hours_by_resource = dict(hours_by_resource)
    return result


def weekly_breakdown(
    allocations: Iterable[Allocation],
    period: Period,
    statuses: frozenset[AllocationStatus] = COUNTED_STATUSES,
) -> dict[int, list[WeeklyLoad]]:
    """Per-resource hours for each week touching ``period``.

    Prorated allocations are spread over the weeks by the days each week shares
    with both the allocation and the period.
    """

    weeks = weeks_in_period(period)
    loads: dict[int, dict[WeekKey, float]] = defaultdict(
        lambda: {week: 0.0 for week in weeks}
    )
    for allocation in allocations:
        if allocation.status not in statuses:
            continue
        try:
            _validate_allocation(allocation)
        except AllocationDataError:
            continue
        resource_weeks = loads[allocation.resource_id]
        if allocation.has_weekly_breakdown:
            for week in weeks:
                resource_weeks[week] += allocation.weekly_allocations.get(week, 0.0)
            continue
        span_days = (allocation.end_date - allocation.start_date).days + 1
        for week in weeks:
            week_period = Period(
                start_date=max(week.monday, period.start_date),
                end_date=min(week.sunday, period.end_date),
            )
            shared_days = week_period.overlap_days(
                allocation.start_date, allocation.end_date
            )
            if shared_days:
                resource_weeks[week] += allocation.allocated_hours * shared_days / span_days

    return {
        resource_id: [WeeklyLoad(week=week, hours=hours) for week, hours in by_week.items()]
        for resource_id, by_week in loads.items()
    }


def peak_week(loads: list[WeeklyLoad]) -> WeeklyLoad | None:
    if not loads:
        return None
    return max(loads, key=lambda load: (load.hours, -load.week.iso_year, -load.week.iso_week))
