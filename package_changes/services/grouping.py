"""Grouping of normalized records into per-deployment, sequence-ordered histories."""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable

from package_changes.models.domain import ProvisioningRecord, RecordStatus


def group_by_deployment(records: Iterable[ProvisioningRecord]) -> dict[str, list[ProvisioningRecord]]:
    """Group completed records by deployment, each list ascending by sequence.

    Records that are not completed are dropped without being reported as
    excluded. The returned mapping is ordered by deployment id so downstream
    passes are deterministic.
    """

    grouped: dict[str, list[ProvisioningRecord]] = defaultdict(list)
    for record in records:
        if record.status != RecordStatus.COMPLETED:
            continue
        grouped[record.deployment_id].append(record)
    return {
        deployment_id: sorted(grouped[deployment_id], key=lambda rec: (rec.sequence, rec.record_id))
        for deployment_id in sorted(grouped)
    }


def adjacent_pairs(records: list[ProvisioningRecord]) -> list[tuple[ProvisioningRecord, ProvisioningRecord]]:
    return list(zip(records, records[1:]))
