"""Redis-backed persistence for analysis runs and published results."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from redis import Redis
from redis.exceptions import WatchError

from package_changes.models.analytics import ResultSnapshot
from package_changes.models.domain import AnalysisRun, RecordExclusion

SUPERSEDED_SNAPSHOT_TTL_SECONDS = 3600


def _timestamp(dt: datetime) -> float:
    return dt.timestamp()


class RedisResultStore:
    """Stores run history, exclusions and the current published snapshot in Redis.

    The current result is a pointer (``<prefix>:current``) to an immutable
    run-scoped snapshot blob. Publishing writes the blob and swaps the pointer in
    one MULTI/EXEC transaction, so a reader always resolves to a complete blob.
    """

    def __init__(
        self,
        client: Redis,
        key_prefix: str = "package_changes",
        superseded_ttl_seconds: int = SUPERSEDED_SNAPSHOT_TTL_SECONDS,
    ) -> None:
        self._client = client
        self._prefix = key_prefix
        self._superseded_ttl = superseded_ttl_seconds

    def create_run(self, run: AnalysisRun) -> None:
        self.update_run(run)

    def update_run(self, run: AnalysisRun) -> None:
        pipeline = self._client.pipeline()
        pipeline.set(self._run_key(run.run_id), run.model_dump_json())
        pipeline.zadd(self._runs_index_key, {run.run_id: _timestamp(run.started_at)})
        pipeline.execute()

    def get_run(self, run_id: str) -> Optional[AnalysisRun]:
        data = self._client.get(self._run_key(run_id))
        if not data:
            return None
        return AnalysisRun.model_validate_json(data)

    def list_runs(self, limit: int | None = None) -> list[AnalysisRun]:
        """Return runs newest first."""

        end = -1 if limit is None else max(limit, 1) - 1
        ids = self._client.zrevrange(self._runs_index_key, 0, end)
        if not ids:
            return []
        pipeline = self._client.pipeline()
        for run_id in ids:
            pipeline.get(self._run_key(run_id))
        raw_runs = pipeline.execute()
        return [AnalysisRun.model_validate_json(blob) for blob in raw_runs if blob]

    def latest_run(self) -> Optional[AnalysisRun]:
        runs = self.list_runs(limit=1)
        return runs[0] if runs else None

    def add_exclusions(self, run_id: str, exclusions: Iterable[RecordExclusion]) -> None:
        payload = [exclusion.model_dump_json() for exclusion in exclusions]
        if payload:
            self._client.rpush(self._exclusions_key(run_id), *payload)

    def list_exclusions(self, run_id: str) -> list[RecordExclusion]:
        entries = self._client.lrange(self._exclusions_key(run_id), 0, -1)
        return [RecordExclusion.model_validate_json(entry) for entry in entries]

    def publish_snapshot(self, snapshot: ResultSnapshot) -> None:
        previous_run_id = self._client.get(self._current_key)
        pipeline = self._client.pipeline(transaction=True)
        pipeline.set(self._snapshot_key(snapshot.run_id), snapshot.model_dump_json())
        pipeline.set(self._current_key, snapshot.run_id)
        if previous_run_id and previous_run_id != snapshot.run_id:
            pipeline.expire(self._snapshot_key(previous_run_id), self._superseded_ttl)
        pipeline.execute()

    def get_current_snapshot(self) -> Optional[ResultSnapshot]:
        run_id = self._client.get(self._current_key)
        if not run_id:
            return None
        data = self._client.get(self._snapshot_key(run_id))
        if not data:
            return None
        return ResultSnapshot.model_validate_json(data)

    def acquire_run_lock(self, run_id: str, ttl_seconds: int) -> bool:
        return bool(self._client.set(self._lock_key, run_id, nx=True, ex=max(ttl_seconds, 1)))

    def run_lock_holder(self) -> Optional[str]:
        return self._client.get(self._lock_key)

    def release_run_lock(self, run_id: str) -> bool:
        with self._client.pipeline() as pipeline:
            try:
                pipeline.watch(self._lock_key)
                if pipeline.get(self._lock_key) != run_id:
                    pipeline.unwatch()
                    return False
                pipeline.multi()
                pipeline.delete(self._lock_key)
                pipeline.execute()
                return True
            except WatchError:
                # Another writer touched the lock, so it no longer belongs to this run.
                return False

    @property
    def _runs_index_key(self) -> str:
        return f"{self._prefix}:runs"

    @property
    def _current_key(self) -> str:
        return f"{self._prefix}:current"

    @property
    def _lock_key(self) -> str:
        return f"{self._prefix}:lock"

    def _run_key(self, run_id: str) -> str:
        return f"{self._prefix}:run:{run_id}"

    def _exclusions_key(self, run_id: str) -> str:
        return f"{self._prefix}:run:{run_id}:exclusions"

    def _snapshot_key(self, run_id: str) -> str:
        return f"{self._prefix}:snapshot:{run_id}"
