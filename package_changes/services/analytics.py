"""Read-side queries over the published package change snapshot."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from package_changes.models.analytics import (
    AccountChangeSummary,
    AggregateResult,
    ChangeSummary,
    ProductChangeSummary,
    ResultSnapshot,
)
from package_changes.models.domain import AnalysisRun, PackageChange
from package_changes.repositories.redis_store import RedisResultStore
from package_changes.services.aggregation import DEFAULT_RECENT_LIMIT, aggregate_changes, recent_order_key
from package_changes.telemetry import EventSink, NullEventSink

WINDOW_PATTERN = re.compile(r"^(?P<value>\d+)(?P<unit>[hdwmy])$")


def _parse_window(window: str) -> timedelta:
    match = WINDOW_PATTERN.match(window)
    if not match:
        raise ValueError(f"Invalid time window format: {window}")
    value = int(match.group("value"))
    unit = match.group("unit")
    match unit:
        case "h":
            return timedelta(hours=value)
        case "d":
            return timedelta(days=value)
        case "w":
            return timedelta(weeks=value)
        case "m":
            return timedelta(days=30 * value)
        case "y":
            return timedelta(days=365 * value)
    raise ValueError(f"Unsupported time window unit: {unit}")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AnalyticsService:
    """Serves summary, product, account, and recent-change views of the current result."""

    def __init__(
        self,
        store: RedisResultStore,
        sink: EventSink | None = None,
        recent_limit: int = DEFAULT_RECENT_LIMIT,
    ) -> None:
        self._store = store
        self._sink = sink or NullEventSink()
        self._recent_limit = recent_limit

    def current_snapshot(self) -> Optional[ResultSnapshot]:
        return self._store.get_current_snapshot()

    def summary(self, time_window: str | None = None) -> tuple[ChangeSummary, Optional[ResultSnapshot]]:
        snapshot = self.current_snapshot()
        return self._aggregate(snapshot, time_window).summary, snapshot

    def by_product(self, time_window: str | None = None) -> list[ProductChangeSummary]:
        aggregate = self._aggregate(self.current_snapshot(), time_window)
        return sorted(aggregate.by_product.values(), key=lambda item: (-item.total_changes, item.product_code))

    def by_account(self, time_window: str | None = None, limit: int | None = None) -> list[AccountChangeSummary]:
        aggregate = self._aggregate(self.current_snapshot(), time_window)
        accounts = sorted(aggregate.by_account.values(), key=lambda item: (-item.total_changes, item.account_id))
        return accounts if limit is None else accounts[: max(limit, 0)]

    def recent(self, limit: int | None = None) -> list[PackageChange]:
        snapshot = self.current_snapshot()
        if snapshot is None:
            return []
        limit = self._recent_limit if limit is None else max(limit, 0)
        if limit <= len(snapshot.aggregate.recent):
            return snapshot.aggregate.recent[:limit]
        return sorted(snapshot.changes, key=recent_order_key)[:limit]

    def index_run(self, run: AnalysisRun, aggregate: AggregateResult) -> None:
        self._sink.publish(self._build_run_event(run, aggregate))

    def _aggregate(self, snapshot: Optional[ResultSnapshot], time_window: str | None) -> AggregateResult:
        if time_window is not None:
            window_start = _now() - _parse_window(time_window)
        if snapshot is None:
            return AggregateResult()
        if time_window is None:
            return snapshot.aggregate
        changes = [change for change in snapshot.changes if _as_utc(change.created_at) >= window_start]
        return aggregate_changes(changes, self._recent_limit)

    @staticmethod
    def _build_run_event(run: AnalysisRun, aggregate: AggregateResult) -> dict:
        return {
            "event_type": "package_change_run",
            "run_id": run.run_id,
            "timestamp": _now().isoformat(),
            "status": run.status.value,
            "records_analyzed": run.records_analyzed,
            "records_excluded": run.records_excluded,
            "exclusions_by_reason": dict(run.exclusions_by_reason),
            "unrankable_pairs": run.unrankable_pairs,
            "total_changes": aggregate.summary.total_changes,
            "upgrades": aggregate.summary.upgrades,
            "downgrades": aggregate.summary.downgrades,
            "records_with_changes": aggregate.summary.records_with_changes,
            "accounts_affected": aggregate.summary.accounts_affected,
            "product_metrics": [
                {
                    "product_code": product.product_code,
                    "upgrades": product.upgrades,
                    "downgrades": product.downgrades,
                    "total_changes": product.total_changes,
                }
                for product in aggregate.by_product.values()
            ],
        }
