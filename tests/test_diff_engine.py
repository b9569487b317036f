import logging
from datetime import date, datetime, timezone

from package_changes.models.domain import (
    ChangeType,
    DateRange,
    Entitlement,
    ProvisioningRecord,
    RecordStatus,
    RequestType,
)
from package_changes.services.diff import PackageDiffEngine, is_eligible
from package_changes.services.grouping import group_by_deployment
from package_changes.services.normalizer import RecordNormalizer
from package_changes.services.ranking import TierNumberRankResolver
from package_changes.schemas.analysis import RawProvisioningRecord

YEAR_2024 = DateRange(start=date(2024, 1, 1), end=date(2024, 12, 31))
YEAR_2025 = DateRange(start=date(2025, 1, 1), end=date(2025, 12, 31))


def _record(
    record_id: str,
    entitlements: list[tuple[str, str | None, DateRange | None]],
    request_type: RequestType = RequestType.UPDATE,
    status: RecordStatus = RecordStatus.COMPLETED,
    deployment_id: str = "D1",
) -> ProvisioningRecord:
    return ProvisioningRecord(
        record_id=record_id,
        sequence=int(record_id.split("-")[1]),
        deployment_id=deployment_id,
        account_id="001A",
        account_name="Acme Corp",
        tenant_name="acme-prod",
        status=status,
        request_type=request_type,
        created_at=datetime(2025, 1, 2, tzinfo=timezone.utc),
        entitlements=[
            Entitlement(product_code=code, package_name=package, date_range=date_range)
            for code, package, date_range in entitlements
        ],
    )


def _engine(**kwargs) -> PackageDiffEngine:
    return PackageDiffEngine(TierNumberRankResolver(), **kwargs)


def test_upgrade_between_adjacent_records():
    previous = _record("PS-100", [("X", "P4", YEAR_2024)], request_type=RequestType.NEW)
    current = _record("PS-140", [("X", "P5", YEAR_2025)])

    outcome = _engine().diff_group([previous, current])

    assert len(outcome.changes) == 1
    change = outcome.changes[0]
    assert change.product_code == "X"
    assert (change.previous_package, change.new_package) == ("P4", "P5")
    assert change.change_type == ChangeType.UPGRADE
    assert (change.previous_record_id, change.new_record_id) == ("PS-100", "PS-140")
    assert change.previous_date_range == YEAR_2024
    assert change.new_date_range == YEAR_2025
    assert change.deployment_id == "D1"
    assert change.account_name == "Acme Corp"


def test_downgrade_between_adjacent_records():
    previous = _record("PS-100", [("X", "P5", YEAR_2024)], request_type=RequestType.NEW)
    current = _record("PS-140", [("X", "P3", YEAR_2025)])

    outcome = _engine().diff_group([previous, current])

    assert [change.change_type for change in outcome.changes] == [ChangeType.DOWNGRADE]


def _raw(record_id: str, request_type: str, entries: list[dict]) -> RawProvisioningRecord:
    return RawProvisioningRecord.model_validate(
        {
            "record_id": record_id,
            "deployment_id": "D1",
            "account_id": "001A",
            "account_name": "Acme Corp",
            "status": "Completed",
            "request_type": request_type,
            "created_at": "2025-01-02T00:00:00Z",
            "payload": {"properties": {"provisioningDetail": {"entitlements": {"appEntitlements": entries}}}},
        }
    )


def test_overlapping_record_contributes_no_changes_on_either_side():
    raws = [
        _raw("PS-100", "New", [{"productCode": "X", "packageName": "P4", "startDate": "2024-01-01", "endDate": "2024-12-31"}]),
        _raw(
            "PS-140",
            "Update",
            [
                {"productCode": "X", "packageName": "P5", "startDate": "2025-01-01", "endDate": "2025-12-31"},
                {"productCode": "X", "packageName": "P6", "startDate": "2025-06-01", "endDate": "2026-05-31"},
            ],
        ),
        _raw("PS-160", "Update", [{"productCode": "X", "packageName": "P4", "startDate": "2026-01-01", "endDate": "2026-12-31"}]),
    ]
    records, exclusions = RecordNormalizer().normalize_all(raws)

    outcome = _engine().diff_groups(group_by_deployment(records))

    assert [exclusion.record_id for exclusion in exclusions] == ["PS-140"]
    assert all("PS-140" not in (change.previous_record_id, change.new_record_id) for change in outcome.changes)
    assert outcome.changes == []


def test_first_record_in_group_yields_nothing():
    outcome = _engine().diff_group([_record("PS-100", [("X", "P4", YEAR_2024)])])

    assert outcome.changes == []
    assert outcome.pairs_evaluated == 0
    assert outcome.deployments_processed == 1


def test_product_on_one_side_only_is_not_a_change():
    previous = _record("PS-100", [("X", "P4", YEAR_2024)], request_type=RequestType.NEW)
    current = _record("PS-140", [("Y", "P1", YEAR_2025)])

    assert _engine().diff_group([previous, current]).changes == []


def test_only_adjacent_pairs_are_compared():
    records = [
        _record("PS-1", [("X", "P1", None)], request_type=RequestType.NEW),
        _record("PS-2", [("X", "P2", None)]),
        _record("PS-3", [("X", "P3", None)]),
        _record("PS-4", [("X", "P1", None)]),
    ]

    outcome = _engine().diff_group(records)

    assert outcome.pairs_evaluated == len(records) - 1
    assert [(change.previous_record_id, change.new_record_id) for change in outcome.changes] == [
        ("PS-1", "PS-2"),
        ("PS-2", "PS-3"),
        ("PS-3", "PS-4"),
    ]
    assert [change.change_type for change in outcome.changes] == [
        ChangeType.UPGRADE,
        ChangeType.UPGRADE,
        ChangeType.DOWNGRADE,
    ]


def test_non_update_requests_are_skipped():
    records = [
        _record("PS-1", [("X", "P1", None)], request_type=RequestType.NEW),
        _record("PS-2", [("X", "P2", None)], request_type=RequestType.NEW),
        _record("PS-3", [("X", "P3", None)], request_type=RequestType.DEPROVISION),
    ]

    outcome = _engine().diff_group(records)

    assert outcome.changes == []
    assert outcome.pairs_evaluated == 2
    assert outcome.pairs_skipped == 2


def test_eligibility_requires_both_sides_completed():
    completed = _record("PS-1", [("X", "P1", None)])
    failed = _record("PS-2", [("X", "P2", None)], status=RecordStatus.FAILED)

    assert is_eligible(completed, completed)
    assert not is_eligible(failed, completed)
    assert not is_eligible(completed, failed)


def test_unchanged_or_missing_packages_produce_nothing():
    previous = _record("PS-1", [("X", "P1", None), ("Y", None, None), ("Z", "P2", None)], request_type=RequestType.NEW)
    current = _record("PS-2", [("X", "P1", YEAR_2025), ("Y", "P3", None), ("Z", None, None)])

    assert _engine().diff_group([previous, current]).changes == []


def test_multiple_products_changing_in_one_record():
    previous = _record("PS-1", [("X", "P1", None), ("Y", "P3", None), ("Z", "P2", None)], request_type=RequestType.NEW)
    current = _record("PS-2", [("X", "P2", None), ("Y", "P2", None), ("Z", "P5", None)])

    changes = _engine().diff_group([previous, current]).changes

    assert sorted((change.product_code, change.change_type) for change in changes) == [
        ("X", ChangeType.UPGRADE),
        ("Y", ChangeType.DOWNGRADE),
        ("Z", ChangeType.UPGRADE),
    ]


def test_unrankable_pair_is_counted_and_logged(caplog):
    previous = _record("PS-1", [("X", "Base", None), ("Y", "P1", None)], request_type=RequestType.NEW)
    current = _record("PS-2", [("X", "Premium", None), ("Y", "P2", None)])

    with caplog.at_level(logging.WARNING):
        outcome = _engine().diff_group([previous, current])

    assert [change.product_code for change in outcome.changes] == ["Y"]
    assert outcome.unrankable_pairs == 1
    assert any(getattr(entry, "reason_code", None) == "unrankable_package_pair" for entry in caplog.records)


def test_latest_dated_entry_represents_a_product_listed_twice():
    previous = _record("PS-1", [("X", "P2", YEAR_2024)], request_type=RequestType.NEW)
    current = _record(
        "PS-2",
        [("X", "P2", YEAR_2024), ("X", "P5", YEAR_2025)],
    )

    changes = _engine().diff_group([previous, current]).changes

    assert [(change.previous_package, change.new_package) for change in changes] == [("P2", "P5")]


def test_repeat_transitions_can_be_suppressed():
    records = [
        _record("PS-1", [("X", "P1", None)], request_type=RequestType.NEW),
        _record("PS-2", [("X", "P2", None)]),
        _record("PS-3", [("X", "Gold", None)]),
        _record("PS-4", [("X", "P1", None)]),
        _record("PS-5", [("X", "P2", None)]),
    ]

    default = _engine().diff_group(records)
    suppressed = _engine(suppress_repeat_transitions=True).diff_group(records)

    assert [change.new_record_id for change in default.changes] == ["PS-2", "PS-5"]
    assert [change.new_record_id for change in suppressed.changes] == ["PS-2"]
    assert suppressed.unrankable_pairs == 2


def test_diff_groups_merges_counters_across_deployments():
    groups = {
        "D2": [
            _record("PS-10", [("X", "P1", None)], request_type=RequestType.NEW, deployment_id="D2"),
            _record("PS-11", [("X", "P2", None)], deployment_id="D2"),
        ],
        "D1": [_record("PS-1", [("X", "P1", None)], request_type=RequestType.NEW)],
    }

    outcome = _engine().diff_groups(groups)

    assert outcome.deployments_processed == 2
    assert outcome.pairs_evaluated == 1
    assert [change.deployment_id for change in outcome.changes] == ["D2"]
