from datetime import datetime, timezone

from hypothesis import given, strategies as st

from package_changes.models.domain import ChangeType, PackageChange
from package_changes.services.aggregation import aggregate_changes


@st.composite
def package_changes(draw):
    count = draw(st.integers(min_value=0, max_value=25))
    changes = []
    for _ in range(count):
        sequence = draw(st.integers(min_value=1, max_value=50))
        changes.append(
            PackageChange(
                product_code=draw(st.sampled_from(["X", "Y", "Z", "WFM-FC"])),
                previous_package="P1",
                new_package="P2",
                change_type=draw(st.sampled_from(list(ChangeType))),
                deployment_id=draw(st.sampled_from(["D1", "D2", "D3"])),
                account_id=draw(st.sampled_from(["A1", "A2"])),
                account_name="Account",
                previous_record_id=f"PS-{sequence - 1}",
                new_record_id=f"PS-{sequence}",
                created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
            )
        )
    return changes


@given(package_changes())
def test_counts_are_consistent_at_every_level(changes):
    result = aggregate_changes(changes)
    summary = result.summary

    assert summary.total_changes == summary.upgrades + summary.downgrades == len(changes)
    assert sum(item.upgrades for item in result.by_product.values()) == summary.upgrades
    assert sum(item.downgrades for item in result.by_product.values()) == summary.downgrades
    assert sum(item.total_changes for item in result.by_account.values()) == summary.total_changes
    assert summary.records_with_changes == len({change.new_record_id for change in changes})
    assert summary.records_with_changes <= summary.total_changes
    for account in result.by_account.values():
        assert account.total_changes == account.upgrades + account.downgrades
        assert account.total_changes == sum(node.total_changes for node in account.deployments.values())


@given(package_changes(), st.integers(min_value=0, max_value=30))
def test_recent_is_bounded_and_newest_first(changes, limit):
    recent = aggregate_changes(changes, recent_limit=limit).recent

    assert len(recent) == min(limit, len(changes))
    sequences = [int(change.new_record_id.split("-")[1]) for change in recent]
    assert sequences == sorted(sequences, reverse=True)
