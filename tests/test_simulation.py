from __future__ import annotations

import copy
from datetime import date

import pytest

from backend.domain.models import (
    Allocation,
    AllocationDelta,
    Period,
    Resource,
    Snapshot,
)
from backend.domain.week_keys import WeekKey
from backend.services.simulation_service import (
    SimulationValidationError,
    apply_deltas,
    shift_period_hours,
    simulate,
)


PERIOD = Period(date(2025, 7, 14), date(2025, 8, 3))


def _baseline() -> Snapshot:
    return Snapshot(
        resources=(
            Resource(resource_id=1, name="Alice", weekly_capacity=40.0, department="Engineering"),
            Resource(resource_id=2, name="Bruno", weekly_capacity=40.0, department="Engineering"),
            Resource(resource_id=3, name="Ines", weekly_capacity=40.0, department="QA", active=False),
        ),
        allocations=(
            Allocation(
                allocation_id=1,
                resource_id=1,
                project_id=1,
                start_date=date(2025, 7, 14),
                end_date=date(2025, 8, 3),
                allocated_hours=96.0,
                weekly_allocations={
                    WeekKey(2025, 29): 32.0,
                    WeekKey(2025, 30): 32.0,
                    WeekKey(2025, 31): 32.0,
                },
            ),
            Allocation(
                allocation_id=2,
                resource_id=1,
                project_id=2,
                start_date=date(2025, 7, 14),
                end_date=date(2025, 8, 3),
                allocated_hours=42.0,
            ),
            Allocation(
                allocation_id=3,
                resource_id=2,
                project_id=1,
                start_date=date(2025, 7, 14),
                end_date=date(2025, 7, 20),
                allocated_hours=10.0,
                weekly_allocations={WeekKey(2025, 29): 10.0},
            ),
            Allocation(
                allocation_id=4,
                resource_id=2,
                project_id=2,
                start_date=date(2025, 6, 2),
                end_date=date(2025, 6, 27),
                allocated_hours=80.0,
            ),
        ),
    )


def _pct_after(result, resource_id: int) -> int:
    return next(item.utilization_pct for item in result.after if item.resource_id == resource_id)


def test_simulation_never_mutates_the_baseline() -> None:
    baseline = _baseline()
    pristine = copy.deepcopy(baseline)

    simulate(
        baseline,
        [
            AllocationDelta(allocation_id=1, hours_change=-30.0),
            AllocationDelta(allocation_id=1, hours_change=-12.0, week=WeekKey(2025, 30)),
            AllocationDelta(allocation_id=2, hours_change=-10.0, reassign_to=2),
        ],
        PERIOD,
    )

    assert baseline == pristine


def test_simulation_is_idempotent() -> None:
    baseline = _baseline()
    deltas = [AllocationDelta(allocation_id=1, hours_change=-24.0, reassign_to=2)]

    first = simulate(baseline, deltas, PERIOD)
    second = simulate(baseline, deltas, PERIOD)

    assert first == second


def test_period_delta_scales_weekly_allocation() -> None:
    result = simulate(_baseline(), [AllocationDelta(allocation_id=1, hours_change=-30.0)], PERIOD)

    assert result.applied_count == 1
    change = result.changes[0]
    assert change.resource_id == 1
    assert change.before_pct == 115
    assert change.after_pct == 90
    assert change.before_category == "critical"
    assert change.after_category == "near_capacity"


def test_week_delta_changes_only_that_week() -> None:
    allocation = _baseline().allocations[0]

    updated = shift_period_hours(allocation, PERIOD, -12.0, week=WeekKey(2025, 30))

    assert updated.weekly_allocations == {
        WeekKey(2025, 29): 32.0,
        WeekKey(2025, 30): 20.0,
        WeekKey(2025, 31): 32.0,
    }
    assert allocation.weekly_allocations[WeekKey(2025, 30)] == 32.0


def test_prorated_delta_changes_in_period_hours() -> None:
    result = simulate(_baseline(), [AllocationDelta(allocation_id=2, hours_change=-21.0)], PERIOD)

    # (96 + 21) / 120
    assert _pct_after(result, 1) == 98


def test_reassignment_moves_hours_to_target() -> None:
    baseline = _baseline()
    deltas = [AllocationDelta(allocation_id=1, hours_change=-24.0, reassign_to=2)]

    overlay, touched, rejected = apply_deltas(baseline, deltas, PERIOD)
    result = simulate(baseline, deltas, PERIOD)

    assert rejected == []
    assert touched == {1, 2}
    moved = [allocation for allocation in overlay.allocations if allocation.allocation_id < 0]
    assert len(moved) == 1
    assert moved[0].resource_id == 2
    assert moved[0].project_id == 1
    assert moved[0].allocated_hours == pytest.approx(24.0)
    assert _pct_after(result, 1) == 95
    assert _pct_after(result, 2) == 28
    assert [change.resource_id for change in result.changes] == [1, 2]


@pytest.mark.parametrize(
    "delta",
    [
        AllocationDelta(allocation_id=99, hours_change=-5.0),
        AllocationDelta(allocation_id=1, hours_change=0.0),
        AllocationDelta(allocation_id=3, hours_change=-20.0),
        AllocationDelta(allocation_id=1, hours_change=-5.0, reassign_to=42),
        AllocationDelta(allocation_id=1, hours_change=-5.0, reassign_to=1),
        AllocationDelta(allocation_id=1, hours_change=5.0, reassign_to=2),
        AllocationDelta(allocation_id=2, hours_change=-5.0, week=WeekKey(2025, 29)),
        AllocationDelta(allocation_id=4, hours_change=5.0),
        AllocationDelta(allocation_id=1, hours_change=float("inf")),
    ],
)
def test_invalid_deltas_are_rejected(delta: AllocationDelta) -> None:
    result = simulate(_baseline(), [delta], PERIOD)

    assert result.applied_count == 0
    assert len(result.rejected) == 1
    assert result.rejected[0].delta == delta
    assert result.rejected[0].reason
    assert result.changes == ()


def test_rejected_delta_does_not_block_the_rest() -> None:
    result = simulate(
        _baseline(),
        [
            AllocationDelta(allocation_id=99, hours_change=-5.0),
            AllocationDelta(allocation_id=1, hours_change=-30.0),
        ],
        PERIOD,
    )

    assert result.applied_count == 1
    assert [rejected.index for rejected in result.rejected] == [0]
    assert _pct_after(result, 1) == 90


def test_shift_below_zero_raises() -> None:
    allocation = _baseline().allocations[2]

    with pytest.raises(SimulationValidationError):
        shift_period_hours(allocation, PERIOD, -11.0)


def test_nan_delta_is_rejected() -> None:
    result = simulate(_baseline(), [AllocationDelta(allocation_id=1, hours_change=float("nan"))], PERIOD)

    assert result.applied_count == 0
    assert [rejected.index for rejected in result.rejected] == [0]
    assert result.changes == ()
