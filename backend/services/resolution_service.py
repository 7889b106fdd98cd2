"""Reallocation proposals for overallocated resources.

Two kinds of proposal are generated and then ranked together:

* ``reduce``: trim hours from the resource's lowest-priority allocations, each
  capped at what the allocation holds in the period, until the deficit is
  covered;
* ``reassign``: move hours from one allocation onto a peer sharing the
  department or role whose spare capacity is at least the deficit.

Proposals are never negative, never exceed the hours the source allocation
holds in the period, and never push a target past its effective capacity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Union

from backend.domain.models import (
    Allocation,
    AllocationStatus,
    Period,
    Project,
    ProjectPriority,
    ResolutionSuggestion,
    SuggestionKind,
    UtilizationResult,
)
from backend.services.aggregation_service import AllocationDataError, hours_in_period
from backend.services.utilization_service import round_half_up
from backend.utils.logger import get_logger


logger = get_logger(__name__)

EPSILON = 1e-6
DEFAULT_MAX_SUGGESTIONS = 3

_KIND_ORDER = {SuggestionKind.REDUCE: 0, SuggestionKind.REASSIGN: 1}


@dataclass(frozen=True)
class RankedAllocation:
    allocation: Allocation
    project: Project
    hours: float


def compute_deficit(result: UtilizationResult) -> float:
    """Hours that must come off for the resource to reach 100 %."""
    return max(0.0, result.allocated_hours - max(0.0, result.effective_capacity))


def _project_lookup(
    projects: Union[Iterable[Project], Mapping[int, Project]],
) -> dict[int, Project]:
    if isinstance(projects, Mapping):
        return dict(projects)
    return {project.project_id: project for project in projects}


def rank_allocations(
    resource_id: int,
    allocations: Iterable[Allocation],
    projects: Mapping[int, Project],
    period: Period,
) -> list[RankedAllocation]:
    """Active allocations holding hours in ``period``, lowest project priority first."""
    ranked: list[RankedAllocation] = []
    for allocation in allocations:
        if allocation.resource_id != resource_id:
            continue
        if allocation.status != AllocationStatus.ACTIVE:
            continue
        try:
            hours = hours_in_period(allocation, period)
        except AllocationDataError as exc:
            logger.warning(
                "Allocation ignored for resolution | allocation_id=%s | reason=%s",
                allocation.allocation_id,
                exc,
            )
            continue
        if hours <= EPSILON:
            continue
        project = projects.get(allocation.project_id) or Project(
            project_id=allocation.project_id,
            name=f"Project {allocation.project_id}",
            priority=ProjectPriority.MEDIUM,
        )
        ranked.append(RankedAllocation(allocation=allocation, project=project, hours=hours))

    ranked.sort(
        key=lambda item: (
            int(item.project.priority),
            -item.hours,
            item.allocation.allocation_id,
        )
    )
    return ranked


def _is_peer(source: UtilizationResult, candidate: UtilizationResult) -> bool:
    if candidate.resource_id == source.resource_id or not candidate.active:
        return False
    if candidate.capacity_degenerate:
        return False
    same_department = bool(source.department) and candidate.department == source.department
    same_role = bool(source.role) and candidate.role == source.role
    return same_department or same_role


def _shared_attributes(source: UtilizationResult, candidate: UtilizationResult) -> int:
    return int(candidate.department == source.department) + int(candidate.role == source.role)


def _projected_pct(result: UtilizationResult, hours_removed: float) -> int:
    if result.effective_capacity <= 0:
        return 0
    remaining = max(0.0, result.allocated_hours - hours_removed)
    return round_half_up(remaining * 100.0 / result.effective_capacity)


def _coverage_pct(delta: float, deficit: float) -> int:
    return round_half_up(min(delta, deficit) * 100.0 / deficit)


def _reduce_candidates(
    source: UtilizationResult,
    ranked: list[RankedAllocation],
    deficit: float,
) -> list[ResolutionSuggestion]:
    suggestions: list[ResolutionSuggestion] = []
    remaining = deficit
    for item in ranked:
        if remaining <= EPSILON:
            break
        delta = min(item.hours, remaining)
        remaining -= delta
        suggestions.append(
            ResolutionSuggestion(
                kind=SuggestionKind.REDUCE,
                source_resource_id=source.resource_id,
                project_id=item.project.project_id,
                allocation_id=item.allocation.allocation_id,
                delta_hours=delta,
                coverage_pct=_coverage_pct(delta, deficit),
                projected_utilization_pct=_projected_pct(source, delta),
                rationale=(
                    f"Reduce {delta:.1f}h on {item.project.priority.name.lower()}-priority "
                    f"project '{item.project.name}' for {source.resource_name} "
                    f"({item.hours:.1f}h allocated in period)"
                ),
            )
        )
    return suggestions


def _pick_reassignable(ranked: list[RankedAllocation], deficit: float) -> RankedAllocation:
    for item in ranked:
        if item.hours >= deficit - EPSILON:
            return item
    largest = max(item.hours for item in ranked)
    return next(item for item in ranked if item.hours == largest)


def _reassign_candidates(
    source: UtilizationResult,
    ranked: list[RankedAllocation],
    peers: Iterable[UtilizationResult],
    deficit: float,
) -> list[ResolutionSuggestion]:
    eligible = [
        peer
        for peer in peers
        if _is_peer(source, peer) and peer.available_hours >= deficit - EPSILON
    ]
    eligible.sort(
        key=lambda peer: (
            -_shared_attributes(source, peer),
            -peer.available_hours,
            peer.resource_name,
            peer.resource_id,
        )
    )

    suggestions: list[ResolutionSuggestion] = []
    for peer in eligible:
        item = _pick_reassignable(ranked, deficit)
        delta = min(deficit, item.hours, peer.available_hours)
        if delta <= EPSILON:
            continue
        suggestions.append(
            ResolutionSuggestion(
                kind=SuggestionKind.REASSIGN,
                source_resource_id=source.resource_id,
                target_resource_id=peer.resource_id,
                project_id=item.project.project_id,
                allocation_id=item.allocation.allocation_id,
                delta_hours=delta,
                coverage_pct=_coverage_pct(delta, deficit),
                projected_utilization_pct=_projected_pct(source, delta),
                rationale=(
                    f"Move {delta:.1f}h of '{item.project.name}' from "
                    f"{source.resource_name} to {peer.resource_name} "
                    f"({peer.available_hours:.1f}h spare capacity)"
                ),
            )
        )
    return suggestions


def suggest(
    overallocated: UtilizationResult,
    allocations: Iterable[Allocation],
    peers: Iterable[UtilizationResult],
    projects: Union[Iterable[Project], Mapping[int, Project]],
    period: Period,
    max_suggestions: int = DEFAULT_MAX_SUGGESTIONS,
) -> list[ResolutionSuggestion]:
    """Return at most ``max_suggestions`` ranked proposals; empty when none apply."""
    deficit = compute_deficit(overallocated)
    if deficit <= EPSILON:
        return []

    project_by_id = _project_lookup(projects)
    ranked = rank_allocations(
        overallocated.resource_id,
        allocations,
        project_by_id,
        period,
    )
    if not ranked:
        logger.info(
            "No adjustable allocations for overallocated resource | resource_id=%s | deficit=%.2f",
            overallocated.resource_id,
            deficit,
        )
        return []

    candidates = _reduce_candidates(overallocated, ranked, deficit)
    candidates.extend(_reassign_candidates(overallocated, ranked, list(peers), deficit))

    priority_by_project = {item.project.project_id: int(item.project.priority) for item in ranked}
    ordered = sorted(
        enumerate(candidates),
        key=lambda pair: (
            -min(pair[1].delta_hours, deficit),
            priority_by_project.get(pair[1].project_id, int(ProjectPriority.MEDIUM)),
            _KIND_ORDER[pair[1].kind],
            pair[0],
        ),
    )
    selected = [suggestion for _, suggestion in ordered[:max_suggestions]]
    logger.info(
        "Resolution suggestions generated | resource_id=%s | deficit=%.2f | candidates=%s | returned=%s",
        overallocated.resource_id,
        deficit,
        len(candidates),
        len(selected),
    )
    return selected


