import json
from pathlib import Path

import pytest

from package_changes.core.config import Settings
from package_changes.core.errors import RecordSourceError
from package_changes.sources.record_source import (
    FileRecordSource,
    StaticRecordSource,
    source_from_settings,
)


def _row(record_id: str, deployment: str = "D1") -> dict:
    return {
        "Name": record_id,
        "deploymentNumber": deployment,
        "Account__c": "001A",
        "Status__c": "Completed",
        "TenantRequestAction__c": "Update",
        "CreatedDate": "2025-01-01T00:00:00Z",
        "Payload_Data__c": "{}",
    }


def test_static_source_filters_by_sequence_and_deployment():
    source = StaticRecordSource([_row("PS-1"), _row("PS-5"), _row("PS-9", "D2"), _row("LEGACY", "D1")])

    assert [item.record_id for item in source.fetch_completed_records()] == ["PS-1", "PS-5", "PS-9", "LEGACY"]
    assert [item.record_id for item in source.fetch_completed_records(since_sequence=4)] == ["PS-5", "PS-9", "LEGACY"]
    assert [item.record_id for item in source.fetch_completed_records(deployment_filter=["D2"])] == ["PS-9"]


def test_file_source_reads_json_lines(tmp_path: Path):
    path = tmp_path / "records.jsonl"
    path.write_text("\n".join(json.dumps(row) for row in [_row("PS-1"), _row("PS-2")]) + "\n", encoding="utf-8")

    records = FileRecordSource(path).fetch_completed_records()

    assert [record.record_id for record in records] == ["PS-1", "PS-2"]
    assert records[0].deployment_id == "D1"


def test_file_source_reads_json_array_and_skips_invalid_rows(tmp_path: Path):
    path = tmp_path / "records.json"
    path.write_text(json.dumps([_row("PS-1"), {"Name": "PS-2"}]), encoding="utf-8")

    records = FileRecordSource(path).fetch_completed_records()

    assert [record.record_id for record in records] == ["PS-1"]


def test_file_source_raises_on_missing_or_corrupt_export(tmp_path: Path):
    with pytest.raises(RecordSourceError):
        FileRecordSource(tmp_path / "missing.jsonl").fetch_completed_records()

    corrupt = tmp_path / "corrupt.jsonl"
    corrupt.write_text("{not json}\n", encoding="utf-8")
    with pytest.raises(RecordSourceError):
        FileRecordSource(corrupt).fetch_completed_records()


def test_source_from_settings(tmp_path: Path):
    file_source = source_from_settings(Settings(record_source_backend="file", record_source_path=str(tmp_path / "x")))
    assert isinstance(file_source, FileRecordSource)
    assert isinstance(source_from_settings(Settings(record_source_backend="none")), StaticRecordSource)
    with pytest.raises(ValueError):
        source_from_settings(Settings(record_source_backend="salesforce"))
