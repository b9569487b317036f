"""Service orchestration for package change analysis runs."""

from __future__ import annotations

import logging
import time
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Sequence

from fastapi import BackgroundTasks

from package_changes.core.errors import AnalysisAlreadyRunningError, RecordSourceError
from package_changes.core.identifiers import new_run_id
from package_changes.models.analytics import AggregateResult, ResultSnapshot
from package_changes.models.domain import AnalysisRun, ChangeType, RecordExclusion, RunStatus
from package_changes.repositories.redis_store import RedisResultStore
from package_changes.services.aggregation import DEFAULT_RECENT_LIMIT, aggregate_changes
from package_changes.services.analytics import AnalyticsService
from package_changes.services.diff import PackageDiffEngine
from package_changes.services.grouping import group_by_deployment
from package_changes.services.normalizer import RecordNormalizer
from package_changes.sources.record_source import RecordSource
from package_changes.telemetry import (
    increment_runs_started,
    record_excluded_records,
    record_package_changes,
    record_run_duration,
    record_unrankable_pairs,
)

logger = logging.getLogger(__name__)

STALE_RUN_MESSAGE = "Run exceeded {seconds}s without completing and was marked stale"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def humanize_age(delta: timedelta) -> str:
    """Render an elapsed time the way the status banner shows it ("5 minutes ago")."""

    seconds = int(max(delta.total_seconds(), 0))
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return "just now"


class AnalysisRunService:
    """Coordinates fetching, normalization, diffing, aggregation, and publication of runs."""

    def __init__(
        self,
        store: RedisResultStore,
        source: RecordSource,
        normalizer: RecordNormalizer,
        diff_engine: PackageDiffEngine,
        analytics_service: AnalyticsService | None = None,
        recent_limit: int = DEFAULT_RECENT_LIMIT,
        stale_after_seconds: int = 3600,
    ) -> None:
        self._store = store
        self._source = source
        self._normalizer = normalizer
        self._diff_engine = diff_engine
        self._analytics = analytics_service
        self._recent_limit = recent_limit
        self._stale_after = timedelta(seconds=stale_after_seconds)

    def start_run(
        self,
        since_sequence: int | None = None,
        deployment_filter: Sequence[str] | None = None,
        background_tasks: BackgroundTasks | None = None,
    ) -> AnalysisRun:
        run_id = new_run_id()
        if not self._store.acquire_run_lock(run_id, int(self._stale_after.total_seconds())):
            raise AnalysisAlreadyRunningError(self._store.run_lock_holder())

        timestamp = _now()
        run = AnalysisRun(
            run_id=run_id,
            status=RunStatus.PENDING,
            started_at=timestamp,
            updated_at=timestamp,
            since_sequence=since_sequence,
            deployment_filter=[item for item in (deployment_filter or []) if item],
        )
        self._store.create_run(run)
        run.status = RunStatus.RUNNING
        run.updated_at = _now()
        self._store.update_run(run)
        increment_runs_started()
        logger.info("Started package change run %s", run_id)

        if background_tasks is not None:
            background_tasks.add_task(self.execute_run, run_id)
            return run
        return self.execute_run(run_id) or run

    def execute_run(self, run_id: str) -> AnalysisRun | None:
        """Run the pipeline for ``run_id`` and settle its status.

        Publishing the snapshot and marking the run completed are the last steps, so a
        run that fails leaves the previously published result current. The run lock
        expires after ``stale_after_seconds``; a run that outlives it is reported stale
        by readers, and when it eventually finishes it finds itself failed and does not
        publish.
        """

        run = self._store.get_run(run_id)
        if not run:
            logger.warning("Run %s not found; nothing to execute", run_id)
            self._store.release_run_lock(run_id)
            return None
        started = time.perf_counter()
        try:
            raws = self._source.fetch_completed_records(
                since_sequence=run.since_sequence,
                deployment_filter=run.deployment_filter or None,
            )
            records, exclusions = self._normalizer.normalize_all(raws)
            outcome = self._diff_engine.diff_groups(group_by_deployment(records))
            aggregate = aggregate_changes(outcome.changes, self._recent_limit)

            stored = self._store.get_run(run_id)
            if stored is not None and stored.status == RunStatus.FAILED:
                logger.warning("Run %s was marked failed while executing; discarding its results", run_id)
                return stored

            if exclusions:
                self._store.add_exclusions(run_id, exclusions)
            run.records_analyzed = len(raws)
            run.records_excluded = len(exclusions)
            run.exclusions_by_reason = self._count_reasons(exclusions)
            run.deployments_processed = outcome.deployments_processed
            run.pairs_evaluated = outcome.pairs_evaluated
            run.pairs_skipped = outcome.pairs_skipped
            run.unrankable_pairs = outcome.unrankable_pairs
            run.changes_found = aggregate.summary.total_changes
            run.upgrades_found = aggregate.summary.upgrades
            run.downgrades_found = aggregate.summary.downgrades
            run.records_with_changes = aggregate.summary.records_with_changes
            run.accounts_affected = aggregate.summary.accounts_affected

            self._store.publish_snapshot(
                ResultSnapshot(run_id=run_id, published_at=_now(), changes=outcome.changes, aggregate=aggregate)
            )
            run.status = RunStatus.COMPLETED
            run.completed_at = run.updated_at = _now()
            self._store.update_run(run)
        except RecordSourceError as exc:
            logger.error("Run %s failed fetching records: %s", run_id, exc)
            self._mark_failed(run, str(exc))
            return run
        except Exception as exc:  # background jobs must always settle the run state
            logger.exception("Run %s failed", run_id)
            self._mark_failed(run, str(exc) or exc.__class__.__name__)
            return run
        finally:
            self._store.release_run_lock(run_id)

        logger.info(
            "Run %s completed: %d changes (%d upgrades, %d downgrades), %d records excluded",
            run_id,
            run.changes_found,
            run.upgrades_found,
            run.downgrades_found,
            run.records_excluded,
        )
        self._report_completed(run, aggregate, time.perf_counter() - started)
        return run

    def _report_completed(self, run: AnalysisRun, aggregate: AggregateResult, duration: float) -> None:
        record_run_duration(duration)
        record_package_changes(ChangeType.UPGRADE.value, run.upgrades_found)
        record_package_changes(ChangeType.DOWNGRADE.value, run.downgrades_found)
        record_excluded_records(run.records_excluded)
        record_unrankable_pairs(run.unrankable_pairs)
        if self._analytics is None:
            return
        try:
            self._analytics.index_run(run, aggregate)
        except Exception:  # the run is already published; export failures are only logged
            logger.exception("Failed to export run event for %s", run.run_id)

    def get_run(self, run_id: str) -> AnalysisRun | None:
        run = self._store.get_run(run_id)
        return self._expire_if_stale(run) if run else None

    def list_runs(self, limit: int | None = None) -> list[AnalysisRun]:
        return [self._expire_if_stale(run) for run in self._store.list_runs(limit=limit)]

    def latest_run(self) -> AnalysisRun | None:
        run = self._store.latest_run()
        return self._expire_if_stale(run) if run else None

    def run_status(self) -> dict:
        run = self.latest_run()
        if run is None:
            return {"has_analysis": False, "message": "No package change analysis has been run yet"}
        reference = run.completed_at or run.updated_at
        return {
            "has_analysis": True,
            "run": run,
            "last_run_ago": humanize_age(_now() - _as_utc(reference)),
            "stale": run.status == RunStatus.FAILED and run.error_message == self._stale_message,
            "message": run.error_message,
        }

    def list_exclusions(self, run_id: str) -> list[RecordExclusion]:
        return self._store.list_exclusions(run_id)

    @property
    def _stale_message(self) -> str:
        return STALE_RUN_MESSAGE.format(seconds=int(self._stale_after.total_seconds()))

    def _expire_if_stale(self, run: AnalysisRun) -> AnalysisRun:
        if run.status not in {RunStatus.PENDING, RunStatus.RUNNING}:
            return run
        if _now() - _as_utc(run.updated_at) <= self._stale_after:
            return run
        logger.warning("Run %s has been %s since %s; marking it failed", run.run_id, run.status.value, run.updated_at)
        self._mark_failed(run, self._stale_message)
        self._store.release_run_lock(run.run_id)
        return run

    def _mark_failed(self, run: AnalysisRun, message: str) -> None:
        run.status = RunStatus.FAILED
        run.error_message = message
        run.updated_at = _now()
        self._store.update_run(run)

    @staticmethod
    def _count_reasons(exclusions: list[RecordExclusion]) -> dict[str, int]:
        return dict(sorted(Counter(exclusion.reason.value for exclusion in exclusions).items()))
