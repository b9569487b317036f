"""Event sink implementations for exporting completed-run events."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Protocol

import requests

from package_changes.core.config import Settings, settings as default_settings


class EventSink(Protocol):
    """Abstract sink contract."""

    def publish(self, event: dict) -> None:  # pragma: no cover - interface
        ...

    def close(self) -> None:  # pragma: no cover - interface
        ...


class NullEventSink:
    """No-op sink used when telemetry is disabled."""

    def publish(self, event: dict) -> None:
        return None

    def close(self) -> None:
        return None


class FileEventSink:
    """Persists events to newline-delimited JSON for downstream ingestion."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def publish(self, event: dict) -> None:
        payload = json.dumps(event, separators=(",", ":"), sort_keys=True)
        with self._lock, self.path.open("a", encoding="utf-8") as handle:
            handle.write(payload)
            handle.write("\n")

    def close(self) -> None:
        return None


class ClickHouseEventSink:
    """Writes events into ClickHouse via the HTTP interface."""

    def __init__(
        self,
        url: str,
        table: str,
        *,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        batch_size: int = 25,
        session: requests.Session | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._table = table
        self._database = database
        self._batch_size = max(batch_size, 1)
        self._auth = (user, password) if user and password else None
        self._buffer: list[str] = []
        self._lock = threading.Lock()
        self._session = session or requests.Session()

    def _table_reference(self) -> str:
        if self._database and "." not in self._table:
            return f"{self._database}.{self._table}"
        return self._table

    def publish(self, event: dict) -> None:
        payload = json.dumps(event, separators=(",", ":"), sort_keys=True)
        with self._lock:
            self._buffer.append(payload)
            if len(self._buffer) >= self._batch_size:
                self._flush_locked()

    def close(self) -> None:
        with self._lock:
            self._flush_locked()
        self._session.close()

    def _flush_locked(self) -> None:
        if not self._buffer:
            return
        data = "\n".join(self._buffer)
        query = f"INSERT INTO {self._table_reference()} FORMAT JSONEachRow\n{data}\n"
        response = self._session.post(
            self._url,
            data=query.encode("utf-8"),
            auth=self._auth,
            headers={"Content-Type": "application/json"},
            timeout=30,
        )
        if response.status_code >= 400:
            raise RuntimeError(f"ClickHouse insert failed ({response.status_code}): {response.text}")
        self._buffer.clear()


def sink_from_settings(config: Settings | None = None) -> EventSink:
    """Factory to construct an event sink based on app settings."""

    config = config or default_settings
    backend = config.timeseries_backend.lower().strip()
    if backend == "file":
        return FileEventSink(config.timeseries_path)
    if backend == "clickhouse":
        if not (config.clickhouse_url and config.timeseries_table):
            raise ValueError(
                "ClickHouse backend requires PACKAGE_CHANGES_CLICKHOUSE_URL and PACKAGE_CHANGES_TIMESERIES_TABLE"
            )
        return ClickHouseEventSink(
            url=config.clickhouse_url,
            table=config.timeseries_table,
            database=config.clickhouse_database,
            user=config.clickhouse_user,
            password=config.clickhouse_password,
            batch_size=config.timeseries_batch_size,
        )
    if backend in {"off", "none", "disabled"}:
        return NullEventSink()
    raise ValueError(f"Unsupported timeseries backend: {config.timeseries_backend}")
