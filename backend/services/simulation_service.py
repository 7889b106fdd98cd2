"""What-if simulation of allocation changes, isolated from persistence.

The sandbox never touches the baseline snapshot or the repository. Deltas are
applied to a deep-copied overlay of the allocation set and only the overlay
is re-evaluated, so repeated calls with the same inputs return the same
result and leave nothing behind for the next call.
"""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass, replace
from typing import Iterable, Optional, Sequence
from uuid import uuid4

from backend.domain.models import (
    Allocation,
    AllocationDelta,
    AllocationStatus,
    Period,
    Snapshot,
    UtilizationResult,
)
from backend.domain.week_keys import WeekKey
from backend.services.aggregation_service import (
    AllocationDataError,
    hours_in_period,
    overlap_fraction,
    weeks_in_period,
)
from backend.services.alert_service import classify
from backend.domain.constraints import AlertThresholds
from backend.services.utilization_service import (
    DEFAULT_WEEKLY_CAPACITY,
    evaluate_snapshot,
)
from backend.utils.logger import get_logger


logger = get_logger(__name__)

EPSILON = 1e-6


class SimulationValidationError(Exception):
    """Raised when a single delta cannot be applied to the overlay."""


@dataclass(frozen=True)
class RejectedDelta:
    index: int
    delta: AllocationDelta
    reason: str


@dataclass(frozen=True)
class ResourceChange:
    resource_id: int
    resource_name: str
    before_pct: int
    after_pct: int
    before_category: Optional[str]
    after_category: Optional[str]

    @property
    def pct_change(self) -> int:
        return self.after_pct - self.before_pct


@dataclass(frozen=True)
class SimulationResult:
    before: tuple[UtilizationResult, ...]
    after: tuple[UtilizationResult, ...]
    changes: tuple[ResourceChange, ...]
    rejected: tuple[RejectedDelta, ...]
    applied_count: int


@dataclass
class _Overlay:
    allocations: dict[int, Allocation]
    next_synthetic_id: int
    touched_resource_ids: set[int]


def _scale_weeks(
    allocation: Allocation,
    weeks: Sequence[WeekKey],
    hours_change: float,
) -> dict[WeekKey, float]:
    weekly = dict(allocation.weekly_allocations)
    current = sum(weekly.get(week, 0.0) for week in weeks)
    target = current + hours_change
    if current > EPSILON:
        factor = target / current
        for week in weeks:
            if week in weekly:
                weekly[week] = max(0.0, weekly[week] * factor)
    else:
        share = hours_change / len(weeks)
        for week in weeks:
            weekly[week] = weekly.get(week, 0.0) + share
    return {week: weekly[week] for week in sorted(weekly)}


def shift_period_hours(
    allocation: Allocation,
    period: Period,
    hours_change: float,
    week: Optional[WeekKey] = None,
) -> Allocation:
    """Return a copy of ``allocation`` whose in-period hours moved by ``hours_change``."""
    try:
        current = hours_in_period(allocation, period)
    except AllocationDataError as exc:
        raise SimulationValidationError(str(exc)) from exc

    if week is not None:
        if not allocation.has_weekly_breakdown:
            raise SimulationValidationError(
                f"allocation {allocation.allocation_id} has no weekly breakdown"
            )
        week_hours = allocation.weekly_allocations.get(week, 0.0)
        if week_hours + hours_change < -EPSILON:
            raise SimulationValidationError(
                f"change would reduce week {week} of allocation "
                f"{allocation.allocation_id} below zero hours"
            )
        weekly = dict(allocation.weekly_allocations)
        weekly[week] = max(0.0, week_hours + hours_change)
        return replace(
            allocation,
            weekly_allocations={key: weekly[key] for key in sorted(weekly)},
        )

    if current + hours_change < -EPSILON:
        raise SimulationValidationError(
            f"change would reduce allocation {allocation.allocation_id} below zero hours "
            f"({current:.2f}h held in period)"
        )

    if allocation.has_weekly_breakdown:
        return replace(
            allocation,
            weekly_allocations=_scale_weeks(allocation, weeks_in_period(period), hours_change),
        )

    fraction = overlap_fraction(allocation, period)
    if fraction <= 0:
        raise SimulationValidationError(
            f"allocation {allocation.allocation_id} holds no hours in the simulated period"
        )
    return replace(
        allocation,
        allocated_hours=max(0.0, allocation.allocated_hours + hours_change / fraction),
    )


def _moved_allocation(
    source: Allocation,
    allocation_id: int,
    target_resource_id: int,
    hours: float,
    period: Period,
    week: Optional[WeekKey],
) -> Allocation:
    if week is not None:
        return Allocation(
            allocation_id=allocation_id,
            resource_id=target_resource_id,
            project_id=source.project_id,
            start_date=week.monday,
            end_date=week.sunday,
            allocated_hours=hours,
            weekly_allocations={week: hours},
            status=AllocationStatus.ACTIVE,
        )
    return Allocation(
        allocation_id=allocation_id,
        resource_id=target_resource_id,
        project_id=source.project_id,
        start_date=period.start_date,
        end_date=period.end_date,
        allocated_hours=hours,
        status=AllocationStatus.ACTIVE,
    )


def _apply_delta(
    overlay: _Overlay,
    delta: AllocationDelta,
    period: Period,
    known_resource_ids: set[int],
) -> None:
    allocation = overlay.allocations.get(delta.allocation_id)
    if allocation is None:
        raise SimulationValidationError(
            f"unknown allocation_id={delta.allocation_id}"
        )
    if not math.isfinite(delta.hours_change):
        raise SimulationValidationError("hours_change must be a finite number")
    if abs(delta.hours_change) <= EPSILON:
        raise SimulationValidationError("hours_change must be non-zero")

    if delta.reassign_to is not None:
        if delta.reassign_to not in known_resource_ids:
            raise SimulationValidationError(
                f"reassign_to references unknown resource_id={delta.reassign_to}"
            )
        if delta.reassign_to == allocation.resource_id:
            raise SimulationValidationError(
                "reassign_to must differ from the allocation's resource"
            )
        if delta.hours_change > 0:
            raise SimulationValidationError(
                "reassignment deltas must remove hours (hours_change < 0)"
            )

    updated = shift_period_hours(allocation, period, delta.hours_change, delta.week)
    overlay.allocations[allocation.allocation_id] = updated
    overlay.touched_resource_ids.add(allocation.resource_id)

    if delta.reassign_to is not None:
        moved = _moved_allocation(
            source=allocation,
            allocation_id=overlay.next_synthetic_id,
            target_resource_id=delta.reassign_to,
            hours=-delta.hours_change,
            period=period,
            week=delta.week,
        )
        overlay.allocations[moved.allocation_id] = moved
        overlay.next_synthetic_id -= 1
        overlay.touched_resource_ids.add(delta.reassign_to)


def apply_deltas(
    baseline: Snapshot,
    deltas: Iterable[AllocationDelta],
    period: Period,
) -> tuple[Snapshot, set[int], list[RejectedDelta]]:
    """Build an overlay snapshot with every applicable delta applied in order."""
    overlay = _Overlay(
        allocations={
            allocation.allocation_id: allocation
            for allocation in copy.deepcopy(list(baseline.allocations))
        },
        next_synthetic_id=-1,
        touched_resource_ids=set(),
    )
    known_resource_ids = {resource.resource_id for resource in baseline.resources}
    rejected: list[RejectedDelta] = []

    for index, delta in enumerate(deltas):
        try:
            _apply_delta(overlay, delta, period, known_resource_ids)
        except SimulationValidationError as exc:
            logger.info(
                "Simulation delta rejected | index=%s | allocation_id=%s | reason=%s",
                index,
                delta.allocation_id,
                exc,
            )
            rejected.append(RejectedDelta(index=index, delta=delta, reason=str(exc)))

    overlay_snapshot = replace(
        baseline,
        allocations=tuple(overlay.allocations.values()),
    )
    return overlay_snapshot, overlay.touched_resource_ids, rejected


def simulate(
    baseline: Snapshot,
    deltas: Sequence[AllocationDelta],
    period: Period,
    thresholds: AlertThresholds = AlertThresholds(),
    default_weekly_capacity: float = DEFAULT_WEEKLY_CAPACITY,
    default_non_project_hours_per_week: float = 0.0,
) -> SimulationResult:
    run_id = str(uuid4())
    logger.info(
        "Simulation run started | run_id=%s | deltas=%s | period=%s..%s",
        run_id,
        len(deltas),
        period.start_date.isoformat(),
        period.end_date.isoformat(),
    )

    overlay, touched, rejected = apply_deltas(baseline, deltas, period)
    evaluation_kwargs = {
        "resource_ids": touched,
        "default_weekly_capacity": default_weekly_capacity,
        "default_non_project_hours_per_week": default_non_project_hours_per_week,
    }
    before = evaluate_snapshot(baseline, period, **evaluation_kwargs)
    after = evaluate_snapshot(overlay, period, **evaluation_kwargs)

    changes: list[ResourceChange] = []
    for resource_id in sorted(set(before.results) & set(after.results)):
        old = before.results[resource_id]
        new = after.results[resource_id]
        old_category = classify(old.utilization_pct, thresholds)
        new_category = classify(new.utilization_pct, thresholds)
        changes.append(
            ResourceChange(
                resource_id=resource_id,
                resource_name=new.resource_name,
                before_pct=old.utilization_pct,
                after_pct=new.utilization_pct,
                before_category=old_category.value if old_category else None,
                after_category=new_category.value if new_category else None,
            )
        )

    result = SimulationResult(
        before=tuple(before.ordered_results()),
        after=tuple(after.ordered_results()),
        changes=tuple(changes),
        rejected=tuple(rejected),
        applied_count=len(deltas) - len(rejected),
    )
    logger.info(
        "Simulation run completed | run_id=%s | applied=%s | rejected=%s | touched=%s",
        run_id,
        result.applied_count,
        len(result.rejected),
        sorted(touched),
    )
    return result
