"""Analytics-facing models produced by the aggregator."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from package_changes.models.domain import PackageChange


class ChangeCounts(BaseModel):
    """Upgrade/downgrade tallies for one node of an aggregate."""

    model_config = ConfigDict(frozen=True)

    upgrades: int = 0
    downgrades: int = 0
    total_changes: int = Field(0, description="Always upgrades + downgrades.")


class ChangeSummary(BaseModel):
    """Global totals for a set of package changes."""

    model_config = ConfigDict(frozen=True)

    records_with_changes: int = Field(0, description="Distinct records carrying at least one change.")
    total_changes: int = 0
    upgrades: int = 0
    downgrades: int = 0
    accounts_affected: int = 0
    deployments_affected: int = 0
    products_changed: int = 0


class ProductChangeSummary(ChangeCounts):
    """Counts for a single product across every account."""

    product_code: str
    product_name: Optional[str] = None
    records_with_changes: int = 0
    accounts: int = 0


class DeploymentChangeSummary(ChangeCounts):
    """Counts for a deployment, broken down by product."""

    deployment_id: str
    tenant_name: Optional[str] = None
    records_with_changes: int = 0
    products: dict[str, ChangeCounts] = Field(default_factory=dict)


class AccountChangeSummary(ChangeCounts):
    """Counts for an account, broken down by deployment."""

    account_id: str
    account_name: str
    records_with_changes: int = 0
    products_changed: int = 0
    deployments: dict[str, DeploymentChangeSummary] = Field(default_factory=dict)


class AggregateResult(BaseModel):
    """Output of one aggregation pass; immutable once published."""

    model_config = ConfigDict(frozen=True)

    summary: ChangeSummary = Field(default_factory=ChangeSummary)
    by_product: dict[str, ProductChangeSummary] = Field(default_factory=dict)
    by_account: dict[str, AccountChangeSummary] = Field(default_factory=dict)
    recent: list[PackageChange] = Field(default_factory=list)


class ResultSnapshot(BaseModel):
    """Published output of a completed run, as held by the result store."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    published_at: datetime
    changes: list[PackageChange] = Field(default_factory=list)
    aggregate: AggregateResult = Field(default_factory=AggregateResult)
