from datetime import datetime, timedelta, timezone

import fakeredis
import pytest

from package_changes.models.analytics import ResultSnapshot
from package_changes.models.domain import ChangeType, PackageChange
from package_changes.repositories.redis_store import RedisResultStore
from package_changes.services.aggregation import aggregate_changes
from package_changes.services.analytics import AnalyticsService, _parse_window


def _change(sequence: int, age: timedelta, account_id: str = "001A", product_code: str = "X") -> PackageChange:
    return PackageChange(
        product_code=product_code,
        previous_package="P1",
        new_package="P2",
        change_type=ChangeType.UPGRADE,
        deployment_id="D1",
        account_id=account_id,
        account_name=account_id,
        previous_record_id=f"PS-{sequence - 1}",
        new_record_id=f"PS-{sequence}",
        created_at=datetime.now(timezone.utc) - age,
    )


def _bootstrap(changes, recent_limit=2) -> AnalyticsService:
    store = RedisResultStore(fakeredis.FakeRedis(decode_responses=True))
    store.publish_snapshot(
        ResultSnapshot(
            run_id="run_1",
            published_at=datetime.now(timezone.utc),
            changes=changes,
            aggregate=aggregate_changes(changes, recent_limit=recent_limit),
        )
    )
    return AnalyticsService(store, recent_limit=recent_limit)


@pytest.mark.parametrize(
    ("window", "expected"),
    [
        ("24h", timedelta(hours=24)),
        ("7d", timedelta(days=7)),
        ("2w", timedelta(weeks=2)),
        ("3m", timedelta(days=90)),
        ("1y", timedelta(days=365)),
    ],
)
def test_parse_window(window, expected):
    assert _parse_window(window) == expected


@pytest.mark.parametrize("window", ["", "7", "d7", "7 d", "1q"])
def test_parse_window_rejects_bad_formats(window):
    with pytest.raises(ValueError):
        _parse_window(window)


def test_windowed_views_reaggregate_recent_changes():
    analytics = _bootstrap(
        [
            _change(10, timedelta(days=40), account_id="A1"),
            _change(11, timedelta(days=3), account_id="A1", product_code="Y"),
            _change(12, timedelta(hours=2), account_id="A2"),
        ]
    )

    summary, snapshot = analytics.summary(time_window="1w")
    assert snapshot.run_id == "run_1"
    assert summary.total_changes == 2
    assert analytics.summary()[0].total_changes == 3
    assert [item.product_code for item in analytics.by_product(time_window="24h")] == ["X"]
    assert [item.account_id for item in analytics.by_account()] == ["A1", "A2"]
    assert [item.account_id for item in analytics.by_account(limit=1)] == ["A1"]


def test_recent_beyond_stored_list_is_recomputed_from_changes():
    analytics = _bootstrap([_change(seq, timedelta(days=1)) for seq in range(1, 6)], recent_limit=2)

    assert [change.new_record_id for change in analytics.recent()] == ["PS-5", "PS-4"]
    assert [change.new_record_id for change in analytics.recent(limit=4)] == ["PS-5", "PS-4", "PS-3", "PS-2"]


def test_views_are_empty_without_a_snapshot():
    analytics = AnalyticsService(RedisResultStore(fakeredis.FakeRedis(decode_responses=True)))

    summary, snapshot = analytics.summary(time_window="7d")
    assert snapshot is None
    assert summary.total_changes == 0
    assert analytics.by_product() == []
    assert analytics.recent() == []
