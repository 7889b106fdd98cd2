"""Orchestration of the capacity engine for the HTTP layer.

Resolves request filters (period, department, severity), loads a snapshot
from the repository and wires aggregation, utilization, alerting,
resolution and simulation together. Input anomalies degrade to defaults with
a warning instead of failing the request.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

from backend.domain.constraints import (
    AlertThresholds,
    ResolutionConfig,
    validate_alert_thresholds,
    validate_resolution_config,
)
from backend.domain.models import (
    AllocationDelta,
    Period,
    Snapshot,
    UtilizationResult,
)
from backend.repository.data_repository import DataRepository
from backend.services import resolution_service, simulation_service
from backend.services.aggregation_service import peak_week, weekly_breakdown
from backend.services.alert_service import (
    SEVERITY_FILTERS,
    AlertReport,
    categorize,
    filter_by_severity,
)
from backend.services.utilization_service import (
    SnapshotEvaluation,
    evaluate_snapshot,
    round_half_up,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

ALL_DEPARTMENTS = "all"
_COMPARED_KPIS = ("active_projects", "available_resources", "conflicts", "utilization")


class CapacityServiceError(Exception):
    """Raised when a capacity request cannot be served."""


class ResourceNotFoundError(CapacityServiceError):
    """Raised when a resource id does not exist."""


def _today_utc() -> date:
    return datetime.now(timezone.utc).date()


def current_month(today: date) -> Period:
    last_day = calendar.monthrange(today.year, today.month)[1]
    return Period(
        start_date=today.replace(day=1),
        end_date=today.replace(day=last_day),
    )


def previous_week(period: Period) -> Optional[Period]:
    """Seven days ending one week before ``period`` ends, or None below date.min."""
    try:
        end = period.end_date - timedelta(days=7)
        start = end - timedelta(days=6)
    except OverflowError:
        return None
    return Period(start_date=start, end_date=end)


def _parse_optional_date(raw: Optional[str], field_name: str) -> Optional[date]:
    if raw is None or not str(raw).strip():
        return None
    try:
        return date.fromisoformat(str(raw).strip())
    except ValueError:
        logger.warning("Unparseable date ignored | field=%s | value=%s", field_name, raw)
        return None


@dataclass(frozen=True)
class AnalysisContext:
    period: Period
    department: Optional[str]
    snapshot: Snapshot
    evaluation: SnapshotEvaluation


class CapacityAnalysisService:
    """Entry point for alerts, KPIs, utilization, resolutions and simulations."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], date]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or _today_utc
        self._thresholds = AlertThresholds(
            critical_above=self._settings.alert_critical_threshold,
            near_capacity_from=self._settings.alert_near_capacity_threshold,
            underutilized_below=self._settings.alert_underutilized_threshold,
        )
        validate_alert_thresholds(self._thresholds)
        self._resolution_config = ResolutionConfig(
            max_suggestions=self._settings.resolution_max_suggestions,
        )
        validate_resolution_config(self._resolution_config)

    @property
    def thresholds(self) -> AlertThresholds:
        return self._thresholds

    def resolve_period(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> Period:
        """Return the requested period, or the current calendar month.

        A single bound fills the other from the default month; an inverted
        range falls back to the default entirely.
        """
        default = current_month(self._clock())
        start = _parse_optional_date(start_date, "startDate") or default.start_date
        end = _parse_optional_date(end_date, "endDate") or default.end_date
        if start > end:
            logger.warning(
                "Period start after end; using current month | start=%s | end=%s",
                start.isoformat(),
                end.isoformat(),
            )
            return default
        return Period(start_date=start, end_date=end)

    def resolve_department(self, department: Optional[str]) -> Optional[str]:
        if department is None or not department.strip():
            return None
        candidate = department.strip()
        if candidate.lower() == ALL_DEPARTMENTS:
            return None
        known = self._repository.list_departments()
        for name in known:
            if name.lower() == candidate.lower():
                return name
        logger.warning(
            "Unknown department; using all departments | department=%s | known=%s",
            candidate,
            known,
        )
        return None

    def resolve_severity(self, severity: Optional[str]) -> str:
        if severity is None or not severity.strip():
            return "all"
        candidate = severity.strip().lower()
        if candidate not in SEVERITY_FILTERS:
            logger.warning("Unknown severity filter; using all | severity=%s", severity)
            return "all"
        return candidate

    def _analyze(
        self,
        start_date: Optional[str],
        end_date: Optional[str],
        department: Optional[str],
    ) -> AnalysisContext:
        period = self.resolve_period(start_date, end_date)
        resolved_department = self.resolve_department(department)
        snapshot = self._repository.load_snapshot(department=resolved_department)
        return AnalysisContext(
            period=period,
            department=resolved_department,
            snapshot=snapshot,
            evaluation=self._evaluate(snapshot, period),
        )

    def _evaluate(self, snapshot: Snapshot, period: Period) -> SnapshotEvaluation:
        return evaluate_snapshot(
            snapshot,
            period,
            default_weekly_capacity=self._settings.default_weekly_capacity,
            default_non_project_hours_per_week=self._settings.default_non_project_hours_per_week,
        )

    def build_report(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        department: Optional[str] = None,
    ) -> tuple[AnalysisContext, AlertReport]:
        context = self._analyze(start_date, end_date, department)
        report = categorize(context.evaluation.ordered_results(), self._thresholds)
        return context, report

    def get_alerts(
        self,
        department: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        severity: Optional[str] = None,
    ) -> dict[str, Any]:
        context, report = self.build_report(start_date, end_date, department)
        severity_filter = self.resolve_severity(severity)
        categories = filter_by_severity(report.categories, severity_filter)
        summary = report.summary

        logger.info(
            "Alerts generated | period=%s..%s | department=%s | evaluated=%s | alerts=%s | critical=%s",
            context.period.start_date.isoformat(),
            context.period.end_date.isoformat(),
            context.department or ALL_DEPARTMENTS,
            summary.evaluated_count,
            summary.total_alerts,
            summary.critical_count,
        )
        return {
            "categories": [
                {
                    "type": category.type.value,
                    "severity": category.severity.value,
                    "title": category.title,
                    "threshold": category.threshold,
                    "condition": category.condition,
                    "count": category.count,
                    "resources": [_result_payload(result) for result in category.resources],
                }
                for category in categories
            ],
            "summary": {
                "total_alerts": summary.total_alerts,
                "critical_count": summary.critical_count,
                "warning_count": summary.warning_count,
                "info_count": summary.info_count,
                "unassigned_count": summary.unassigned_count,
            },
            "metadata": {
                "generated_at": datetime.now(timezone.utc).isoformat(),
                "period_start": context.period.start_date,
                "period_end": context.period.end_date,
                "department": context.department or ALL_DEPARTMENTS,
                "severity": severity_filter,
                "evaluated_count": summary.evaluated_count,
                "healthy_count": summary.healthy_count,
                "healthy_resource_ids": [result.resource_id for result in report.healthy],
                "excluded_resource_ids": list(context.evaluation.excluded_resource_ids),
                "skipped_allocation_ids": list(context.evaluation.skipped_allocation_ids),
                "flagged_week_keys": [
                    {
                        "allocation_id": flagged.allocation_id,
                        "resource_id": flagged.resource_id,
                        "raw_key": flagged.raw_key,
                    }
                    for flagged in context.evaluation.flagged_week_keys
                ],
                "thresholds": {
                    "critical": self._thresholds.critical_above,
                    "near_capacity": self._thresholds.near_capacity_from,
                    "underutilized": self._thresholds.underutilized_below,
                },
            },
        }

    def get_kpis(
        self,
        department: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> dict[str, Any]:
        """Headline KPIs for the period plus the same figures for the prior week.

        The prior week is the seven days ending one week before the period end.
        """
        context = self._analyze(start_date, end_date, department)
        current = self._kpi_values(context.snapshot, context.period, context.evaluation)

        previous_period = previous_week(context.period)
        previous: Optional[dict[str, int]] = None
        if previous_period is not None:
            previous_values = self._kpi_values(
                context.snapshot,
                previous_period,
                self._evaluate(context.snapshot, previous_period),
            )
            previous = {key: previous_values[key] for key in _COMPARED_KPIS}
        else:
            logger.warning(
                "No prior week before period; comparison omitted | period_end=%s",
                context.period.end_date.isoformat(),
            )

        return {
            **current,
            "previous": previous,
            "previous_period_start": previous_period.start_date if previous_period else None,
            "previous_period_end": previous_period.end_date if previous_period else None,
        }

    def _kpi_values(
        self,
        snapshot: Snapshot,
        period: Period,
        evaluation: SnapshotEvaluation,
    ) -> dict[str, int]:
        results = [result for result in evaluation.ordered_results() if result.active]
        report = categorize(results, self._thresholds)
        total_allocated = sum(result.allocated_hours for result in results)
        total_capacity = sum(
            result.effective_capacity
            for result in results
            if not result.capacity_degenerate
        )
        utilization = (
            round_half_up(total_allocated * 100.0 / total_capacity)
            if total_capacity > 0
            else 0
        )
        return {
            "active_projects": sum(1 for project in snapshot.projects if project.is_active_in(period)),
            "total_projects": len(snapshot.projects),
            "available_resources": sum(1 for result in results if result.utilization_pct < 100),
            "total_resources": len(results),
            "conflicts": report.summary.critical_count,
            "utilization": utilization,
        }

    def get_utilization(
        self,
        department: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> dict[str, Any]:
        context, report = self.build_report(start_date, end_date, department)
        loads = weekly_breakdown(context.snapshot.allocations, context.period)
        rows: list[dict[str, Any]] = []
        for result in context.evaluation.ordered_results():
            resource_loads = loads.get(result.resource_id, [])
            peak = peak_week(resource_loads)
            category = report.category_of(result.resource_id)
            rows.append(
                {
                    **_result_payload(result),
                    "category": category.value if category else "healthy",
                    "weekly": [
                        {"week": str(load.week), "hours": load.hours}
                        for load in resource_loads
                    ],
                    "peak_week": str(peak.week) if peak and peak.hours > 0 else None,
                    "peak_week_hours": peak.hours if peak else 0.0,
                }
            )
        return {
            "period_start": context.period.start_date,
            "period_end": context.period.end_date,
            "department": context.department or ALL_DEPARTMENTS,
            "resources": rows,
        }

    def resolve(
        self,
        resource_id: int,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> dict[str, Any]:
        """Suggestions for one resource; peers come from every department."""
        context = self._analyze(start_date, end_date, None)
        resource = context.snapshot.resource_by_id().get(resource_id)
        if resource is None:
            raise ResourceNotFoundError(f"resource_id={resource_id} not found")

        result = context.evaluation.results.get(resource_id)
        suggestions = []
        if result is not None:
            suggestions = resolution_service.suggest(
                overallocated=result,
                allocations=context.snapshot.allocations_for(resource_id),
                peers=context.evaluation.ordered_results(),
                projects=context.snapshot.project_by_id(),
                period=context.period,
                max_suggestions=self._resolution_config.max_suggestions,
            )
        return {
            "resource_id": resource_id,
            "resource_name": resource.name,
            "period_start": context.period.start_date,
            "period_end": context.period.end_date,
            "utilization_pct": result.utilization_pct if result else 0,
            "deficit_hours": resolution_service.compute_deficit(result) if result else 0.0,
            "suggestions": [
                {
                    "kind": suggestion.kind.value,
                    "source_resource_id": suggestion.source_resource_id,
                    "target_resource_id": suggestion.target_resource_id,
                    "project_id": suggestion.project_id,
                    "allocation_id": suggestion.allocation_id,
                    "delta_hours": suggestion.delta_hours,
                    "coverage_pct": suggestion.coverage_pct,
                    "projected_utilization_pct": suggestion.projected_utilization_pct,
                    "rationale": suggestion.rationale,
                }
                for suggestion in suggestions
            ],
        }

    def simulate(
        self,
        deltas: Iterable[AllocationDelta],
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        department: Optional[str] = None,
    ) -> dict[str, Any]:
        """Evaluate hypothetical deltas; nothing is written to the repository."""
        period = self.resolve_period(start_date, end_date)
        resolved_department = self.resolve_department(department)
        baseline = self._repository.load_snapshot(department=resolved_department)
        result = simulation_service.simulate(
            baseline=baseline,
            deltas=list(deltas),
            period=period,
            thresholds=self._thresholds,
            default_weekly_capacity=self._settings.default_weekly_capacity,
            default_non_project_hours_per_week=self._settings.default_non_project_hours_per_week,
        )
        return {
            "period_start": period.start_date,
            "period_end": period.end_date,
            "applied_count": result.applied_count,
            "before": [_result_payload(item) for item in result.before],
            "after": [_result_payload(item) for item in result.after],
            "changes": [
                {
                    "resource_id": change.resource_id,
                    "resource_name": change.resource_name,
                    "before_pct": change.before_pct,
                    "after_pct": change.after_pct,
                    "pct_change": change.pct_change,
                    "before_category": change.before_category or "healthy",
                    "after_category": change.after_category or "healthy",
                }
                for change in result.changes
            ],
            "rejected": [
                {
                    "index": rejected.index,
                    "allocation_id": rejected.delta.allocation_id,
                    "reason": rejected.reason,
                }
                for rejected in result.rejected
            ],
        }


def _result_payload(result: UtilizationResult) -> dict[str, Any]:
    return {
        "resource_id": result.resource_id,
        "name": result.resource_name,
        "department": result.department,
        "role": result.role,
        "allocated_hours": result.allocated_hours,
        "effective_capacity": result.effective_capacity,
        "available_hours": result.available_hours,
        "utilization_pct": result.utilization_pct,
        "capacity_degenerate": result.capacity_degenerate,
    }
