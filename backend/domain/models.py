"""Domain models for capacity analysis, alerting and what-if simulation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum, IntEnum
from typing import Optional

from backend.domain.week_keys import WeekKey


class AllocationStatus(str, Enum):
    ACTIVE = "active"
    PLANNED = "planned"
    COMPLETED = "completed"


class ProjectPriority(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @classmethod
    def parse(cls, value: object) -> "ProjectPriority":
        if isinstance(value, ProjectPriority):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        if isinstance(value, str):
            text = value.strip()
            if text.isdigit():
                return cls(int(text))
            return cls[text.upper()]
        raise ValueError(f"unsupported project priority {value!r}")


class AlertCategoryType(str, Enum):
    CRITICAL = "critical"
    NEAR_CAPACITY = "near_capacity"
    UNDERUTILIZED = "underutilized"
    UNASSIGNED = "unassigned"


class AlertSeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class SuggestionKind(str, Enum):
    REDUCE = "reduce"
    REASSIGN = "reassign"


@dataclass(frozen=True)
class Period:
    start_date: date
    end_date: date

    def __post_init__(self) -> None:
        if self.end_date < self.start_date:
            raise ValueError("period end_date must not precede start_date")

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def overlap_days(self, start: date, end: date) -> int:
        overlap_start = max(self.start_date, start)
        overlap_end = min(self.end_date, end)
        if overlap_end < overlap_start:
            return 0
        return (overlap_end - overlap_start).days + 1

    def overlaps(self, start: date, end: date) -> bool:
        return self.overlap_days(start, end) > 0


@dataclass(frozen=True)
class Resource:
    resource_id: int
    name: str
    weekly_capacity: Optional[float]
    department: Optional[str] = None
    role: Optional[str] = None
    active: bool = True

    @property
    def group(self) -> str:
        """Department key used by filters; falls back to role, then General."""
        return self.department or self.role or "General"


@dataclass(frozen=True)
class Project:
    project_id: int
    name: str
    priority: ProjectPriority = ProjectPriority.MEDIUM
    status: str = "active"
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    def is_active_in(self, period: Period) -> bool:
        """Active status and a date range touching ``period``; missing bounds are open."""
        if self.status != "active":
            return False
        if self.start_date is not None and self.start_date > period.end_date:
            return False
        if self.end_date is not None and self.end_date < period.start_date:
            return False
        return True


@dataclass(frozen=True)
class Allocation:
    allocation_id: int
    resource_id: int
    project_id: int
    start_date: date
    end_date: date
    allocated_hours: float
    weekly_allocations: dict[WeekKey, float] = field(default_factory=dict)
    status: AllocationStatus = AllocationStatus.ACTIVE
    unrecognized_week_keys: tuple[str, ...] = ()

    @property
    def has_weekly_breakdown(self) -> bool:
        return bool(self.weekly_allocations)


@dataclass(frozen=True)
class TimeOff:
    resource_id: int
    start_date: date
    end_date: date
    hours: float


@dataclass(frozen=True)
class NonProjectActivity:
    resource_id: int
    activity_type: str
    hours_per_week: float
    active: bool = True


@dataclass(frozen=True)
class Snapshot:
    """Read-only view of the records one engine call works on."""

    resources: tuple[Resource, ...] = ()
    allocations: tuple[Allocation, ...] = ()
    time_offs: tuple[TimeOff, ...] = ()
    projects: tuple[Project, ...] = ()
    non_project_activities: tuple[NonProjectActivity, ...] = ()

    def resource_by_id(self) -> dict[int, Resource]:
        return {resource.resource_id: resource for resource in self.resources}

    def project_by_id(self) -> dict[int, Project]:
        return {project.project_id: project for project in self.projects}

    def allocations_for(self, resource_id: int) -> list[Allocation]:
        return [
            allocation
            for allocation in self.allocations
            if allocation.resource_id == resource_id
        ]


@dataclass(frozen=True)
class UtilizationResult:
    resource_id: int
    resource_name: str
    allocated_hours: float
    effective_capacity: float
    utilization_pct: int
    department: Optional[str] = None
    role: Optional[str] = None
    active: bool = True
    capacity_degenerate: bool = False

    @property
    def available_hours(self) -> float:
        return max(0.0, self.effective_capacity - self.allocated_hours)

    @property
    def overallocated_hours(self) -> float:
        return max(0.0, self.allocated_hours - self.effective_capacity)


@dataclass(frozen=True)
class AlertCategory:
    type: AlertCategoryType
    severity: AlertSeverity
    title: str
    threshold: float
    condition: str
    resources: tuple[UtilizationResult, ...] = ()

    @property
    def count(self) -> int:
        return len(self.resources)


@dataclass(frozen=True)
class AllocationDelta:
    """Hypothetical change to one allocation's hours within a period.

    ``hours_change`` is applied to the hours the allocation holds inside the
    simulated period, or to ``week`` only when given. With ``reassign_to`` the
    removed hours are moved onto that resource for the same project.
    """

    allocation_id: int
    hours_change: float
    week: Optional[WeekKey] = None
    reassign_to: Optional[int] = None


@dataclass(frozen=True)
class ResolutionSuggestion:
    kind: SuggestionKind
    source_resource_id: int
    project_id: int
    allocation_id: int
    delta_hours: float
    coverage_pct: int
    projected_utilization_pct: int
    rationale: str
    target_resource_id: Optional[int] = None

    def to_delta(self) -> AllocationDelta:
        return AllocationDelta(
            allocation_id=self.allocation_id,
            hours_change=-self.delta_hours,
            reassign_to=self.target_resource_id,
        )
