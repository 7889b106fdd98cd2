"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from backend.services.capacity_service import CapacityAnalysisService
from backend.utils.config import get_settings


def get_capacity_service(request: Request) -> CapacityAnalysisService:
    service = getattr(request.app.state, "capacity_service", None)
    if service is None:
        repository = getattr(request.app.state, "repository", None)
        if repository is not None:
            service = CapacityAnalysisService(
                repository=repository,
                settings=get_settings(),
            )
            request.app.state.capacity_service = service
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Capacity service is not initialized",
        )
    return service
