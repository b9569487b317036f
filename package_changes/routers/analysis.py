"""API routes for triggering and inspecting package change analysis runs."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status

from package_changes.core.config import settings
from package_changes.core.errors import AnalysisAlreadyRunningError
from package_changes.dependencies import get_analysis_service
from package_changes.models.domain import AnalysisRun
from package_changes.schemas.analysis import (
    ExclusionListResponse,
    RefreshRequest,
    RefreshResponse,
    RunListResponse,
    RunStatusResponse,
)
from package_changes.services.analysis import AnalysisRunService


router = APIRouter(prefix=f"{settings.api_v1_prefix}/package-changes", tags=["analysis"])


@router.post("/refresh", response_model=RefreshResponse, status_code=status.HTTP_202_ACCEPTED)
def refresh_analysis(
    background_tasks: BackgroundTasks,
    payload: RefreshRequest | None = None,
    analysis_service: AnalysisRunService = Depends(get_analysis_service),
) -> RefreshResponse:
    payload = payload or RefreshRequest()
    try:
        run = analysis_service.start_run(
            since_sequence=payload.since_sequence,
            deployment_filter=payload.deployment_filter,
            background_tasks=background_tasks,
        )
    except AnalysisAlreadyRunningError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return RefreshResponse(
        run_id=run.run_id,
        status=run.status,
        status_url=f"{settings.service_base_url}{settings.api_v1_prefix}/package-changes/runs/{run.run_id}",
    )


@router.get("/status", response_model=RunStatusResponse)
def get_run_status(
    analysis_service: AnalysisRunService = Depends(get_analysis_service),
) -> RunStatusResponse:
    return RunStatusResponse(**analysis_service.run_status())


@router.get("/runs", response_model=RunListResponse)
def list_runs(
    limit: int = Query(20, ge=1, le=100, description="Maximum number of runs to return, newest first."),
    analysis_service: AnalysisRunService = Depends(get_analysis_service),
) -> RunListResponse:
    return RunListResponse(runs=analysis_service.list_runs(limit=limit), request_id=f"rq_{uuid.uuid4().hex}")


@router.get("/runs/{run_id}", response_model=AnalysisRun)
def get_run(
    run_id: str,
    analysis_service: AnalysisRunService = Depends(get_analysis_service),
) -> AnalysisRun:
    run = analysis_service.get_run(run_id)
    if not run:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Run not found")
    return run


@router.get("/runs/{run_id}/exclusions", response_model=ExclusionListResponse)
def list_run_exclusions(
    run_id: str,
    analysis_service: AnalysisRunService = Depends(get_analysis_service),
) -> ExclusionListResponse:
    if not analysis_service.get_run(run_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Run not found")
    return ExclusionListResponse(
        run_id=run_id,
        exclusions=analysis_service.list_exclusions(run_id),
        request_id=f"rq_{uuid.uuid4().hex}",
    )
