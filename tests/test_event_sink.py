import json
from datetime import datetime, timezone
from pathlib import Path

import fakeredis
import pytest

from package_changes.core.config import Settings
from package_changes.models.domain import AnalysisRun, ChangeType, PackageChange, RunStatus
from package_changes.repositories.redis_store import RedisResultStore
from package_changes.services.aggregation import aggregate_changes
from package_changes.services.analytics import AnalyticsService
from package_changes.telemetry import ClickHouseEventSink, FileEventSink, NullEventSink, sink_from_settings


def _completed_run() -> tuple[AnalysisRun, list[PackageChange]]:
    now = datetime.now(timezone.utc)
    changes = [
        PackageChange(
            product_code="X",
            previous_package="P4",
            new_package="P5",
            change_type=ChangeType.UPGRADE,
            deployment_id="D1",
            account_id="001A",
            account_name="Acme Corp",
            previous_record_id="PS-100",
            new_record_id="PS-140",
            created_at=now,
        )
    ]
    run = AnalysisRun(
        run_id="run_sink",
        status=RunStatus.COMPLETED,
        started_at=now,
        updated_at=now,
        records_analyzed=2,
        changes_found=1,
        upgrades_found=1,
        exclusions_by_reason={"overlapping_dates": 1},
        records_excluded=1,
    )
    return run, changes


def test_file_event_sink_writes_run_event(tmp_path: Path):
    sink_path = tmp_path / "events.jsonl"
    sink = FileEventSink(sink_path)
    analytics = AnalyticsService(RedisResultStore(fakeredis.FakeRedis(decode_responses=True)), sink=sink)
    run, changes = _completed_run()

    analytics.index_run(run, aggregate_changes(changes))

    payloads = sink_path.read_text(encoding="utf-8").strip().splitlines()
    event = json.loads(payloads[0])
    assert event["event_type"] == "package_change_run"
    assert event["run_id"] == "run_sink"
    assert event["total_changes"] == 1
    assert event["upgrades"] == 1
    assert event["exclusions_by_reason"] == {"overlapping_dates": 1}
    assert event["product_metrics"] == [{"product_code": "X", "upgrades": 1, "downgrades": 0, "total_changes": 1}]


class _StubResponse:
    status_code = 200
    text = ""


class _StubSession:
    def __init__(self):
        self.posts = []
        self.closed = False

    def post(self, url, **kwargs):
        self.posts.append((url, kwargs))
        return _StubResponse()

    def close(self):
        self.closed = True


def test_clickhouse_sink_batches_rows():
    session = _StubSession()
    sink = ClickHouseEventSink(
        "http://clickhouse:8123/", "events", database="analytics", batch_size=2, session=session
    )

    sink.publish({"run_id": "a"})
    assert session.posts == []
    sink.publish({"run_id": "b"})
    sink.publish({"run_id": "c"})
    sink.close()

    assert len(session.posts) == 2
    url, kwargs = session.posts[0]
    assert url == "http://clickhouse:8123"
    body = kwargs["data"].decode("utf-8")
    assert body.startswith("INSERT INTO analytics.events FORMAT JSONEachRow\n")
    assert '{"run_id":"a"}\n{"run_id":"b"}' in body
    assert session.closed


def test_clickhouse_sink_raises_on_http_error():
    class _Failing(_StubSession):
        def post(self, url, **kwargs):
            response = _StubResponse()
            response.status_code = 500
            response.text = "boom"
            return response

    sink = ClickHouseEventSink("http://clickhouse:8123", "events", batch_size=1, session=_Failing())

    with pytest.raises(RuntimeError):
        sink.publish({"run_id": "a"})


def test_sink_from_settings(tmp_path: Path):
    assert isinstance(
        sink_from_settings(Settings(timeseries_backend="file", timeseries_path=str(tmp_path / "e.jsonl"))),
        FileEventSink,
    )
    assert isinstance(sink_from_settings(Settings(timeseries_backend="off")), NullEventSink)
    clickhouse = sink_from_settings(
        Settings(timeseries_backend="clickhouse", clickhouse_url="http://ch:8123", timeseries_table="events")
    )
    assert isinstance(clickhouse, ClickHouseEventSink)
    with pytest.raises(ValueError):
        sink_from_settings(Settings(timeseries_backend="clickhouse"))
    with pytest.raises(ValueError):
        sink_from_settings(Settings(timeseries_backend="kafka"))
