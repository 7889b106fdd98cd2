"""HTTP controller layer for capacity alerts, KPIs and what-if simulation."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from backend.controllers.dependencies import get_capacity_service
from backend.domain.models import AllocationDelta
from backend.domain.week_keys import WeekKey, WeekKeyError
from backend.services.capacity_service import (
    CapacityAnalysisService,
    CapacityServiceError,
    ResourceNotFoundError,
)
from backend.services.simulation_service import SimulationValidationError
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["capacity"])


class CamelModel(BaseModel):
    """Base DTO: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ResourceUtilizationResponse(CamelModel):
    resource_id: int
    name: str
    department: Optional[str] = None
    role: Optional[str] = None
    allocated_hours: float = Field(ge=0.0)
    effective_capacity: float
    available_hours: float = Field(ge=0.0)
    utilization_pct: int = Field(ge=0)
    capacity_degenerate: bool = False


class AlertCategoryResponse(CamelModel):
    type: str
    severity: str
    title: str
    threshold: float
    condition: str
    count: int = Field(ge=0)
    resources: list[ResourceUtilizationResponse]


class AlertSummaryResponse(CamelModel):
    total_alerts: int = Field(ge=0)
    critical_count: int = Field(ge=0)
    warning_count: int = Field(ge=0)
    info_count: int = Field(ge=0)
    unassigned_count: int = Field(ge=0)


class FlaggedWeekKeyResponse(CamelModel):
    allocation_id: int
    resource_id: int
    raw_key: str


class ThresholdsResponse(CamelModel):
    critical: float
    near_capacity: float
    underutilized: float


class AlertMetadataResponse(CamelModel):
    generated_at: str
    period_start: date
    period_end: date
    department: str
    severity: str
    evaluated_count: int = Field(ge=0)
    healthy_count: int = Field(ge=0)
    healthy_resource_ids: list[int]
    excluded_resource_ids: list[int]
    skipped_allocation_ids: list[int]
    flagged_week_keys: list[FlaggedWeekKeyResponse]
    thresholds: ThresholdsResponse


class AlertsResponse(CamelModel):
    categories: list[AlertCategoryResponse]
    summary: AlertSummaryResponse
    metadata: AlertMetadataResponse


class PreviousKpiResponse(CamelModel):
    active_projects: int = Field(ge=0)
    available_resources: int = Field(ge=0)
    conflicts: int = Field(ge=0)
    utilization: int = Field(ge=0)


class KpiResponse(CamelModel):
    active_projects: int = Field(ge=0)
    total_projects: int = Field(ge=0)
    available_resources: int = Field(ge=0)
    total_resources: int = Field(ge=0)
    conflicts: int = Field(ge=0)
    utilization: int = Field(ge=0)
    previous: Optional[PreviousKpiResponse] = None
    previous_period_start: Optional[date] = None
    previous_period_end: Optional[date] = None


class WeeklyLoadResponse(CamelModel):
    week: str
    hours: float


class ResourceUtilizationDetailResponse(ResourceUtilizationResponse):
    category: str
    weekly: list[WeeklyLoadResponse]
    peak_week: Optional[str] = None
    peak_week_hours: float = 0.0


class UtilizationResponse(CamelModel):
    period_start: date
    period_end: date
    department: str
    resources: list[ResourceUtilizationDetailResponse]


class ResolutionSuggestionResponse(CamelModel):
    kind: str
    source_resource_id: int
    target_resource_id: Optional[int] = None
    project_id: int
    allocation_id: int
    delta_hours: float = Field(gt=0.0)
    coverage_pct: int = Field(ge=0, le=100)
    projected_utilization_pct: int = Field(ge=0)
    rationale: str


class ResolutionResponse(CamelModel):
    resource_id: int
    resource_name: str
    period_start: date
    period_end: date
    utilization_pct: int = Field(ge=0)
    deficit_hours: float = Field(ge=0.0)
    suggestions: list[ResolutionSuggestionResponse]


class AllocationDeltaRequest(CamelModel):
    allocation_id: int
    hours_change: float = Field(allow_inf_nan=False)
    week: Optional[str] = None
    reassign_to: Optional[int] = Field(default=None, gt=0)

    @field_validator("week")
    @classmethod
    def validate_week(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        try:
            WeekKey.parse(value)
        except WeekKeyError as exc:
            raise ValueError(f"week must be an ISO week such as 2025-W29: {exc}") from exc
        return value

    def to_delta(self) -> AllocationDelta:
        return AllocationDelta(
            allocation_id=self.allocation_id,
            hours_change=self.hours_change,
            week=WeekKey.parse(self.week) if self.week else None,
            reassign_to=self.reassign_to,
        )


class SimulateRequest(CamelModel):
    deltas: list[AllocationDeltaRequest] = Field(min_length=1)
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    department: Optional[str] = None


class ResourceChangeResponse(CamelModel):
    resource_id: int
    resource_name: str
    before_pct: int
    after_pct: int
    pct_change: int
    before_category: str
    after_category: str


class RejectedDeltaResponse(CamelModel):
    index: int = Field(ge=0)
    allocation_id: int
    reason: str


class SimulateResponse(CamelModel):
    period_start: date
    period_end: date
    applied_count: int = Field(ge=0)
    before: list[ResourceUtilizationResponse]
    after: list[ResourceUtilizationResponse]
    changes: list[ResourceChangeResponse]
    rejected: list[RejectedDeltaResponse]


@router.get("/alerts", response_model=AlertsResponse, status_code=status.HTTP_200_OK)
async def get_alerts(
    department: Optional[str] = Query(default=None),
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    severity: Optional[str] = Query(default=None),
    capacity_service: CapacityAnalysisService = Depends(get_capacity_service),
) -> AlertsResponse:
    try:
        result = capacity_service.get_alerts(
            department=department,
            start_date=start_date,
            end_date=end_date,
            severity=severity,
        )
        return AlertsResponse(**result)
    except CapacityServiceError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected alert generation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate alerts",
        ) from exc


@router.get("/kpis", response_model=KpiResponse, status_code=status.HTTP_200_OK)
async def get_kpis(
    department: Optional[str] = Query(default=None),
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    capacity_service: CapacityAnalysisService = Depends(get_capacity_service),
) -> KpiResponse:
    try:
        result = capacity_service.get_kpis(
            department=department,
            start_date=start_date,
            end_date=end_date,
        )
        return KpiResponse(**result)
    except CapacityServiceError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected KPI computation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute KPIs",
        ) from exc


@router.get("/utilization", response_model=UtilizationResponse, status_code=status.HTTP_200_OK)
async def get_utilization(
    department: Optional[str] = Query(default=None),
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    capacity_service: CapacityAnalysisService = Depends(get_capacity_service),
) -> UtilizationResponse:
    try:
        result = capacity_service.get_utilization(
            department=department,
            start_date=start_date,
            end_date=end_date,
        )
        return UtilizationResponse(**result)
    except CapacityServiceError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected utilization failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute utilization",
        ) from exc


@router.get(
    "/resources/{resource_id}/resolutions",
    response_model=ResolutionResponse,
    status_code=status.HTTP_200_OK,
)
async def get_resolutions(
    resource_id: int = Path(gt=0),
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    capacity_service: CapacityAnalysisService = Depends(get_capacity_service),
) -> ResolutionResponse:
    try:
        result = capacity_service.resolve(
            resource_id=resource_id,
            start_date=start_date,
            end_date=end_date,
        )
        return ResolutionResponse(**result)
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except CapacityServiceError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected resolution failure | resource_id=%s", resource_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate resolution suggestions",
        ) from exc


@router.post("/simulate", response_model=SimulateResponse, status_code=status.HTTP_200_OK)
async def simulate(
    payload: SimulateRequest,
    capacity_service: CapacityAnalysisService = Depends(get_capacity_service),
) -> SimulateResponse:
    try:
        result = capacity_service.simulate(
            deltas=[delta.to_delta() for delta in payload.deltas],
            start_date=payload.start_date,
            end_date=payload.end_date,
            department=payload.department,
        )
        return SimulateResponse(**result)
    except (CapacityServiceError, SimulationValidationError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected simulation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to run simulation",
        ) from exc
