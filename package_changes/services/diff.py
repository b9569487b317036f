"""Pairwise comparison of adjacent provisioning records."""

from __future__ import annotations

import logging
from datetime import date
from typing import Mapping, Sequence

from pydantic import BaseModel, Field

from package_changes.models.domain import (
    ChangeType,
    Entitlement,
    PackageChange,
    ProvisioningRecord,
    RecordStatus,
    RequestType,
)
from package_changes.services.grouping import adjacent_pairs
from package_changes.services.ranking import BasePackageRankResolver, RankOrder

logger = logging.getLogger(__name__)

UNRANKABLE_PACKAGE_PAIR = "unrankable_package_pair"


class DiffOutcome(BaseModel):
    """Changes detected across one or more deployment groups, plus pass counters."""

    changes: list[PackageChange] = Field(default_factory=list)
    deployments_processed: int = 0
    pairs_evaluated: int = Field(0, description="Adjacent pairs visited, eligible or not.")
    pairs_skipped: int = Field(0, description="Visited pairs that were not eligible for comparison.")
    unrankable_pairs: int = 0

    def merge(self, other: "DiffOutcome") -> None:
        self.changes.extend(other.changes)
        self.deployments_processed += other.deployments_processed
        self.pairs_evaluated += other.pairs_evaluated
        self.pairs_skipped += other.pairs_skipped
        self.unrankable_pairs += other.unrankable_pairs


def is_eligible(previous: ProvisioningRecord, current: ProvisioningRecord) -> bool:
    return (
        current.request_type == RequestType.UPDATE
        and previous.status == RecordStatus.COMPLETED
        and current.status == RecordStatus.COMPLETED
    )


def _comparable_by_product(record: ProvisioningRecord) -> dict[str, list[Entitlement]]:
    by_product: dict[str, list[Entitlement]] = {}
    for entitlement in record.entitlements:
        if entitlement.comparable:
            by_product.setdefault(entitlement.product_code, []).append(entitlement)
    return by_product


def _range_key(entitlement: Entitlement) -> tuple[int, date, date]:
    if entitlement.date_range is None:
        return (0, date.min, date.min)
    return (1, entitlement.date_range.end, entitlement.date_range.start)


def _latest(entries: Sequence[Entitlement]) -> Entitlement:
    return max(enumerate(entries), key=lambda item: (_range_key(item[1]), item[0]))[1]


class PackageDiffEngine:
    """Walks ordered deployment histories and classifies package transitions."""

    def __init__(self, resolver: BasePackageRankResolver, suppress_repeat_transitions: bool = False) -> None:
        self._resolver = resolver
        self._suppress_repeat_transitions = suppress_repeat_transitions

    def diff_groups(self, groups: Mapping[str, list[ProvisioningRecord]]) -> DiffOutcome:
        outcome = DiffOutcome()
        for deployment_id in sorted(groups):
            outcome.merge(self.diff_group(groups[deployment_id]))
        return outcome

    def diff_group(self, records: list[ProvisioningRecord]) -> DiffOutcome:
        outcome = DiffOutcome(deployments_processed=1)
        last_transition: dict[str, tuple[str, ChangeType]] = {}
        for previous, current in adjacent_pairs(records):
            outcome.pairs_evaluated += 1
            if not is_eligible(previous, current):
                outcome.pairs_skipped += 1
                continue
            changes, unrankable = self.compare_pair(previous, current)
            outcome.unrankable_pairs += unrankable
            for change in changes:
                transition = (change.new_package, change.change_type)
                if self._suppress_repeat_transitions and last_transition.get(change.product_code) == transition:
                    logger.debug(
                        "Skipping repeated %s of %s to %s in %s",
                        change.change_type.value,
                        change.product_code,
                        change.new_package,
                        change.new_record_id,
                    )
                    continue
                last_transition[change.product_code] = transition
                outcome.changes.append(change)
        return outcome

    def compare_pair(
        self, previous: ProvisioningRecord, current: ProvisioningRecord
    ) -> tuple[list[PackageChange], int]:
        """Return the package changes between two adjacent records and the unrankable count."""

        previous_by_product = _comparable_by_product(previous)
        changes: list[PackageChange] = []
        unrankable = 0
        for product_code, current_entries in _comparable_by_product(current).items():
            previous_entries = previous_by_product.get(product_code)
            if not previous_entries:
                continue
            previous_names = {entry.package_name for entry in previous_entries}
            current_names = {entry.package_name for entry in current_entries}
            if previous_names == current_names:
                continue

            removed = [entry for entry in previous_entries if entry.package_name not in current_names]
            added = [entry for entry in current_entries if entry.package_name not in previous_names]
            before = _latest(removed or previous_entries)
            after = _latest(added or current_entries)
            if before.package_name == after.package_name:
                continue

            order = self._resolver.rank(product_code, before.package_name, after.package_name)
            if order == RankOrder.UNKNOWN:
                unrankable += 1
                logger.warning(
                    "Cannot rank %s packages %r -> %r (%s -> %s): %s",
                    product_code,
                    before.package_name,
                    after.package_name,
                    previous.record_id,
                    current.record_id,
                    UNRANKABLE_PACKAGE_PAIR,
                    extra={"reason_code": UNRANKABLE_PACKAGE_PAIR, "record_id": current.record_id},
                )
                continue
            if order == RankOrder.EQUAL:
                continue

            changes.append(
                PackageChange(
                    product_code=product_code,
                    product_name=after.product_name or before.product_name,
                    previous_package=before.package_name,
                    new_package=after.package_name,
                    change_type=ChangeType.UPGRADE if order == RankOrder.LESS else ChangeType.DOWNGRADE,
                    deployment_id=current.deployment_id,
                    account_id=current.account_id,
                    account_name=current.account_name,
                    tenant_name=current.tenant_name,
                    previous_record_id=previous.record_id,
                    new_record_id=current.record_id,
                    previous_date_range=before.date_range,
                    new_date_range=after.date_range,
                    created_at=current.created_at,
                )
            )
        return changes, unrankable
