"""Domain data models for the package change analytics engine."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RecordStatus(str, Enum):
    """Lifecycle state of a provisioning request in the upstream system."""

    COMPLETED = "completed"
    IN_PROGRESS = "in_progress"
    FAILED = "failed"
    OTHER = "other"


class RequestType(str, Enum):
    """Kind of provisioning request."""

    NEW = "new"
    UPDATE = "update"
    DEPROVISION = "deprovision"
    OTHER = "other"


class ChangeType(str, Enum):
    """Direction of a package tier transition."""

    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"


class ExclusionReason(str, Enum):
    """Reason codes attached to records that are left out of comparisons."""

    MALFORMED_PAYLOAD = "malformed_payload"
    OVERLAPPING_DATES = "overlapping_dates"
    INVALID_IDENTIFIER = "invalid_identifier"
    MISSING_DEPLOYMENT = "missing_deployment"


class RunStatus(str, Enum):
    """Processing lifecycle states for an analysis run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class DateRange(BaseModel):
    """Inclusive range of dates an entitlement is active for."""

    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    def overlaps(self, other: "DateRange") -> bool:
        return self.start <= other.end and other.start <= self.end


class Entitlement(BaseModel):
    """One product line within a provisioning record's payload."""

    model_config = ConfigDict(frozen=True)

    product_code: str
    package_name: Optional[str] = Field(
        None, description="Package tier label; empty values never take part in a comparison."
    )
    date_range: Optional[DateRange] = None
    product_name: Optional[str] = None

    @property
    def comparable(self) -> bool:
        return bool(self.package_name and self.package_name.strip())


class ProvisioningRecord(BaseModel):
    """A normalized provisioning request for one customer deployment."""

    record_id: str = Field(..., description="Identifier of the form PREFIX-<sequence>, e.g. PS-4640.")
    sequence: int = Field(..., description="Ordering key parsed from record_id.")
    deployment_id: str
    account_id: str
    account_name: str
    tenant_name: Optional[str] = None
    status: RecordStatus
    request_type: RequestType
    created_at: datetime
    entitlements: list[Entitlement] = Field(default_factory=list)


class PackageChange(BaseModel):
    """A detected package tier transition between two adjacent records."""

    model_config = ConfigDict(frozen=True)

    product_code: str
    product_name: Optional[str] = None
    previous_package: str
    new_package: str
    change_type: ChangeType
    deployment_id: str
    account_id: str
    account_name: str
    tenant_name: Optional[str] = None
    previous_record_id: str
    new_record_id: str
    previous_date_range: Optional[DateRange] = None
    new_date_range: Optional[DateRange] = None
    created_at: datetime = Field(..., description="Creation time of the record carrying the new package.")


class RecordExclusion(BaseModel):
    """Attribution for a single record left out of an analysis run."""

    record_id: str
    deployment_id: Optional[str] = None
    reason: ExclusionReason
    detail: str = ""


class AnalysisRun(BaseModel):
    """Aggregate record for one execution of the engine."""

    run_id: str
    status: RunStatus
    started_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    records_analyzed: int = 0
    records_excluded: int = 0
    deployments_processed: int = 0
    changes_found: int = 0
    upgrades_found: int = 0
    downgrades_found: int = 0
    records_with_changes: int = 0
    accounts_affected: int = 0
    pairs_evaluated: int = 0
    pairs_skipped: int = 0
    unrankable_pairs: int = 0
    exclusions_by_reason: dict[str, int] = Field(default_factory=dict)
    since_sequence: Optional[int] = None
    deployment_filter: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_change_counts(self) -> "AnalysisRun":
        if self.status == RunStatus.COMPLETED and self.changes_found != self.upgrades_found + self.downgrades_found:
            raise ValueError("changes_found must equal upgrades_found + downgrades_found")
        return self
