"""Record source collaborators feeding raw provisioning records into a run."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Protocol, Sequence

from pydantic import ValidationError

from package_changes.core.config import Settings, settings as default_settings
from package_changes.core.errors import RecordSourceError
from package_changes.core.identifiers import parse_record_sequence
from package_changes.schemas.analysis import RawProvisioningRecord

logger = logging.getLogger(__name__)


class RecordSource(Protocol):
    """Abstract record source contract."""

    def fetch_completed_records(
        self,
        since_sequence: int | None = None,
        deployment_filter: Sequence[str] | None = None,
    ) -> list[RawProvisioningRecord]:  # pragma: no cover - interface
        ...


def _apply_filters(
    records: Iterable[RawProvisioningRecord],
    since_sequence: int | None,
    deployment_filter: Sequence[str] | None,
) -> list[RawProvisioningRecord]:
    wanted = {item for item in (deployment_filter or []) if item}
    selected: list[RawProvisioningRecord] = []
    for record in records:
        if wanted and (record.deployment_id or record.tenant_name) not in wanted:
            continue
        if since_sequence is not None:
            sequence = parse_record_sequence(record.record_id)
            # Unparsable ids are kept so the normalizer can report them.
            if sequence is not None and sequence <= since_sequence:
                continue
        selected.append(record)
    return selected


class StaticRecordSource:
    """Serves a fixed, in-memory list of records."""

    def __init__(self, records: Iterable[RawProvisioningRecord | dict]) -> None:
        self._records = [
            record if isinstance(record, RawProvisioningRecord) else RawProvisioningRecord.model_validate(record)
            for record in records
        ]

    def fetch_completed_records(
        self,
        since_sequence: int | None = None,
        deployment_filter: Sequence[str] | None = None,
    ) -> list[RawProvisioningRecord]:
        return _apply_filters(self._records, since_sequence, deployment_filter)


class FileRecordSource:
    """Reads an exported record set from a JSON array or JSON-lines file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def fetch_completed_records(
        self,
        since_sequence: int | None = None,
        deployment_filter: Sequence[str] | None = None,
    ) -> list[RawProvisioningRecord]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise RecordSourceError(f"Unable to read provisioning records from {self.path}: {exc}") from exc
        try:
            rows = self._decode(text)
        except json.JSONDecodeError as exc:
            raise RecordSourceError(f"Provisioning export {self.path} could not be decoded: {exc}") from exc
        records: list[RawProvisioningRecord] = []
        for index, row in enumerate(rows):
            try:
                records.append(RawProvisioningRecord.model_validate(row))
            except ValidationError as exc:
                logger.warning(
                    "Skipping row %d of %s: missing record fields (%d errors)", index, self.path, exc.error_count()
                )
        logger.info("Loaded %d provisioning records from %s", len(records), self.path)
        return _apply_filters(records, since_sequence, deployment_filter)

    @staticmethod
    def _decode(text: str) -> list[dict]:
        stripped = text.strip()
        if not stripped:
            return []
        if stripped.startswith("["):
            rows = json.loads(stripped)
        else:
            rows = [json.loads(line) for line in stripped.splitlines() if line.strip()]
        if not all(isinstance(row, dict) for row in rows):
            raise RecordSourceError("Provisioning export rows must be JSON objects")
        return rows


def source_from_settings(config: Settings | None = None) -> RecordSource:
    """Factory to construct a record source based on app settings."""

    config = config or default_settings
    backend = config.record_source_backend.lower().strip()
    if backend == "file":
        return FileRecordSource(config.record_source_path)
    if backend in {"none", "static", "off"}:
        return StaticRecordSource([])
    raise ValueError(f"Unsupported record source backend: {config.record_source_backend}")
