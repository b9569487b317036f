"""API schemas for package change reporting."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from package_changes.models.analytics import AccountChangeSummary, ChangeSummary, ProductChangeSummary
from package_changes.models.domain import PackageChange


class SummaryResponse(BaseModel):
    """Response for GET /v1/package-changes/summary."""

    summary: ChangeSummary
    run_id: Optional[str] = None
    published_at: Optional[datetime] = None
    time_window: Optional[str] = None
    request_id: str


class ByProductResponse(BaseModel):
    """Response for GET /v1/package-changes/by-product."""

    data: list[ProductChangeSummary] = Field(default_factory=list)
    count: int
    time_window: Optional[str] = None
    request_id: str


class ByAccountResponse(BaseModel):
    """Response for GET /v1/package-changes/by-account."""

    data: list[AccountChangeSummary] = Field(default_factory=list)
    count: int
    time_window: Optional[str] = None
    request_id: str


class RecentChangesResponse(BaseModel):
    """Response for GET /v1/package-changes/recent."""

    data: list[PackageChange] = Field(default_factory=list)
    count: int
    request_id: str
