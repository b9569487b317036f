"""Schemas for raw record ingestion and analysis run tracking."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from package_changes.models.domain import AnalysisRun, RecordExclusion, RunStatus


class RawProvisioningRecord(BaseModel):
    """Provisioning request as exported by the upstream CRM, before normalization."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    record_id: str = Field(..., validation_alias=AliasChoices("record_id", "id", "name", "Name"))
    deployment_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("deployment_id", "deployment", "deploymentNumber")
    )
    account_id: Optional[str] = Field(None, validation_alias=AliasChoices("account_id", "accountId", "Account__c"))
    account_name: Optional[str] = Field(None, validation_alias=AliasChoices("account_name", "accountName"))
    tenant_name: Optional[str] = Field(
        None, validation_alias=AliasChoices("tenant_name", "tenantName", "Tenant_Name__c")
    )
    status: Optional[str] = Field(None, validation_alias=AliasChoices("status", "Status__c"))
    request_type: Optional[str] = Field(
        None, validation_alias=AliasChoices("request_type", "requestType", "TenantRequestAction__c")
    )
    created_at: datetime = Field(..., validation_alias=AliasChoices("created_at", "createdAt", "CreatedDate"))
    payload: Union[str, dict[str, Any], None] = Field(
        None,
        validation_alias=AliasChoices("payload", "Payload_Data__c"),
        description="Entitlement payload, either a JSON document or an already decoded mapping.",
    )


class RefreshRequest(BaseModel):
    """Request body for POST /v1/package-changes/refresh."""

    since_sequence: Optional[int] = Field(None, ge=0, description="Only analyze records after this sequence.")
    deployment_filter: list[str] = Field(default_factory=list, description="Restrict the run to these deployments.")


class RefreshResponse(BaseModel):
    """Response acknowledging a refresh request."""

    run_id: str
    status: RunStatus
    status_url: str


class RunStatusResponse(BaseModel):
    """Latest run metadata for the presentation layer."""

    has_analysis: bool
    run: Optional[AnalysisRun] = None
    last_run_ago: Optional[str] = None
    stale: bool = False
    message: Optional[str] = None


class RunListResponse(BaseModel):
    runs: list[AnalysisRun]
    request_id: str


class ExclusionListResponse(BaseModel):
    run_id: str
    exclusions: list[RecordExclusion]
    request_id: str
