"""API routes for package change reporting."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status

from package_changes.core.config import settings
from package_changes.dependencies import get_analytics_service
from package_changes.schemas.analytics import (
    ByAccountResponse,
    ByProductResponse,
    RecentChangesResponse,
    SummaryResponse,
)
from package_changes.services.analytics import AnalyticsService


router = APIRouter(prefix=f"{settings.api_v1_prefix}/package-changes", tags=["analytics"])

TIME_WINDOW_DESCRIPTION = "Optional duration string such as 24h, 7d, 4w, 3m or 1y."


@router.get("/summary", response_model=SummaryResponse)
def get_change_summary(
    time_window: str | None = Query(None, description=TIME_WINDOW_DESCRIPTION),
    analytics_service: AnalyticsService = Depends(get_analytics_service),
) -> SummaryResponse:
    try:
        summary, snapshot = analytics_service.summary(time_window=time_window)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return SummaryResponse(
        summary=summary,
        run_id=snapshot.run_id if snapshot else None,
        published_at=snapshot.published_at if snapshot else None,
        time_window=time_window,
        request_id=f"rq_{uuid.uuid4().hex}",
    )


@router.get("/by-product", response_model=ByProductResponse)
def get_changes_by_product(
    time_window: str | None = Query(None, description=TIME_WINDOW_DESCRIPTION),
    analytics_service: AnalyticsService = Depends(get_analytics_service),
) -> ByProductResponse:
    try:
        products = analytics_service.by_product(time_window=time_window)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return ByProductResponse(
        data=products, count=len(products), time_window=time_window, request_id=f"rq_{uuid.uuid4().hex}"
    )


@router.get("/by-account", response_model=ByAccountResponse)
def get_changes_by_account(
    time_window: str | None = Query(None, description=TIME_WINDOW_DESCRIPTION),
    limit: int = Query(10, ge=1, le=100, description="Maximum number of accounts to return."),
    analytics_service: AnalyticsService = Depends(get_analytics_service),
) -> ByAccountResponse:
    try:
        accounts = analytics_service.by_account(time_window=time_window, limit=limit)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return ByAccountResponse(
        data=accounts, count=len(accounts), time_window=time_window, request_id=f"rq_{uuid.uuid4().hex}"
    )


@router.get("/recent", response_model=RecentChangesResponse)
def get_recent_changes(
    limit: int = Query(20, ge=1, le=100, description="Maximum number of changes to return."),
    analytics_service: AnalyticsService = Depends(get_analytics_service),
) -> RecentChangesResponse:
    changes = analytics_service.recent(limit=limit)
    return RecentChangesResponse(data=changes, count=len(changes), request_id=f"rq_{uuid.uuid4().hex}")
