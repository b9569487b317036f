"""Normalization of raw provisioning records into comparable entitlement sets."""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Iterable, Optional

from pydantic import BaseModel

from package_changes.core.identifiers import parse_record_sequence
from package_changes.models.domain import (
    DateRange,
    Entitlement,
    ExclusionReason,
    ProvisioningRecord,
    RecordExclusion,
    RecordStatus,
    RequestType,
)
from package_changes.schemas.analysis import RawProvisioningRecord

logger = logging.getLogger(__name__)

PRODUCT_CODE_KEYS = ("productCode", "product_code", "ProductCode")
PACKAGE_NAME_KEYS = ("packageName", "package_name", "PackageName")
PRODUCT_NAME_KEYS = ("name", "productName", "product_name")
START_DATE_KEYS = ("startDate", "start_date", "StartDate")
END_DATE_KEYS = ("endDate", "end_date", "EndDate")

TENANT_NAME_PATHS = (
    ("properties", "provisioningDetail", "tenantName"),
    ("properties", "tenantName"),
    ("preferredSubdomain1",),
    ("preferredSubdomain2",),
    ("properties", "preferredSubdomain1"),
    ("properties", "preferredSubdomain2"),
    ("tenantName",),
)

COMPLETED_STATUSES = {"completed", "complete", "tenant request completed"}


class MalformedPayloadError(ValueError):
    """Raised internally when an entitlement payload cannot be interpreted."""


class NormalizationResult(BaseModel):
    """Outcome of normalizing one raw record."""

    record_id: str
    deployment_id: Optional[str] = None
    record: Optional[ProvisioningRecord] = None
    reason: Optional[ExclusionReason] = None
    detail: str = ""

    @property
    def valid(self) -> bool:
        return self.reason is None and self.record is not None

    def exclusion(self) -> RecordExclusion | None:
        if self.reason is None:
            return None
        return RecordExclusion(
            record_id=self.record_id,
            deployment_id=self.deployment_id,
            reason=self.reason,
            detail=self.detail,
        )


def map_status(value: str | None) -> RecordStatus:
    text = (value or "").strip().lower()
    if text in COMPLETED_STATUSES:
        return RecordStatus.COMPLETED
    if "progress" in text or "pending" in text:
        return RecordStatus.IN_PROGRESS
    if "fail" in text:
        return RecordStatus.FAILED
    return RecordStatus.OTHER


def map_request_type(value: str | None) -> RequestType:
    text = (value or "").strip().lower()
    try:
        return RequestType(text)
    except ValueError:
        return RequestType.OTHER


def find_overlap(entitlements: Iterable[Entitlement]) -> tuple[Entitlement, Entitlement] | None:
    """Return the first pair of same-product entitlements whose date ranges overlap."""

    by_product: dict[str, list[Entitlement]] = defaultdict(list)
    for entitlement in entitlements:
        if entitlement.date_range is not None:
            by_product[entitlement.product_code].append(entitlement)
    for entries in by_product.values():
        for idx, first in enumerate(entries):
            for second in entries[idx + 1 :]:
                if first.date_range.overlaps(second.date_range):
                    return first, second
    return None


class RecordNormalizer:
    """Turns raw CRM records into ProvisioningRecords and flags invalid ones."""

    def normalize(self, raw: RawProvisioningRecord) -> NormalizationResult:
        deployment_hint = _clean(raw.deployment_id) or _clean(raw.tenant_name)
        sequence = parse_record_sequence(raw.record_id)
        if sequence is None:
            return self._exclude(
                raw,
                deployment_hint,
                ExclusionReason.INVALID_IDENTIFIER,
                f"record id {raw.record_id!r} carries no sequence number",
            )

        try:
            payload = self._decode_payload(raw.payload)
            entitlements = self._parse_entitlements(payload)
        except MalformedPayloadError as exc:
            return self._exclude(raw, deployment_hint, ExclusionReason.MALFORMED_PAYLOAD, str(exc))

        tenant_name = self._tenant_name(payload) or _clean(raw.tenant_name)
        deployment_hint = deployment_hint or tenant_name
        if not deployment_hint:
            return self._exclude(
                raw, None, ExclusionReason.MISSING_DEPLOYMENT, "record has neither a deployment nor a tenant name"
            )

        overlap = find_overlap(entitlements)
        if overlap is not None:
            first, second = overlap
            return self._exclude(
                raw,
                deployment_hint,
                ExclusionReason.OVERLAPPING_DATES,
                f"{first.product_code}: {first.date_range.start}..{first.date_range.end} overlaps "
                f"{second.date_range.start}..{second.date_range.end}",
            )

        account_id = _clean(raw.account_id) or _clean(raw.account_name) or "unknown"
        record = ProvisioningRecord(
            record_id=raw.record_id.strip(),
            sequence=sequence,
            deployment_id=deployment_hint,
            account_id=account_id,
            account_name=_clean(raw.account_name) or account_id,
            tenant_name=tenant_name,
            status=map_status(raw.status),
            request_type=map_request_type(raw.request_type),
            created_at=raw.created_at,
            entitlements=entitlements,
        )
        return NormalizationResult(record_id=record.record_id, deployment_id=record.deployment_id, record=record)

    def normalize_all(
        self, raws: Iterable[RawProvisioningRecord]
    ) -> tuple[list[ProvisioningRecord], list[RecordExclusion]]:
        records: list[ProvisioningRecord] = []
        exclusions: list[RecordExclusion] = []
        for raw in raws:
            result = self.normalize(raw)
            if result.valid:
                records.append(result.record)
            else:
                exclusions.append(result.exclusion())
        return records, exclusions

    @staticmethod
    def _exclude(
        raw: RawProvisioningRecord,
        deployment_id: str | None,
        reason: ExclusionReason,
        detail: str,
    ) -> NormalizationResult:
        logger.warning(
            "Excluding record %s (%s): %s",
            raw.record_id,
            reason.value,
            detail,
            extra={"reason_code": reason.value, "record_id": raw.record_id},
        )
        return NormalizationResult(record_id=raw.record_id, deployment_id=deployment_id, reason=reason, detail=detail)

    @staticmethod
    def _decode_payload(payload: str | dict | None) -> dict:
        if payload is None:
            return {}
        if isinstance(payload, dict):
            return payload
        if not payload.strip():
            return {}
        try:
            decoded = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise MalformedPayloadError(f"payload is not valid JSON: {exc.msg}") from exc
        if not isinstance(decoded, dict):
            raise MalformedPayloadError("payload is not a JSON object")
        return decoded

    def _parse_entitlements(self, payload: dict) -> list[Entitlement]:
        nested = _dig(payload, ("properties", "provisioningDetail", "entitlements")) or {}
        if not isinstance(nested, dict):
            raise MalformedPayloadError("provisioningDetail.entitlements is not an object")
        entries = _as_list(nested.get("appEntitlements"), "appEntitlements")
        entries += _as_list(payload.get("appEntitlements"), "appEntitlements")

        entitlements: list[Entitlement] = []
        for entry in entries:
            if not isinstance(entry, dict):
                raise MalformedPayloadError("entitlement entry is not an object")
            product_code = _clean(_first(entry, PRODUCT_CODE_KEYS))
            if not product_code:
                continue
            start = _first(entry, START_DATE_KEYS)
            end = _first(entry, END_DATE_KEYS)
            date_range = None
            if start and end:
                date_range = DateRange(start=_parse_date(start), end=_parse_date(end))
                if date_range.end < date_range.start:
                    raise MalformedPayloadError(f"{product_code}: date range ends before it starts")
            entitlements.append(
                Entitlement(
                    product_code=product_code,
                    package_name=_clean(_first(entry, PACKAGE_NAME_KEYS)),
                    date_range=date_range,
                    product_name=_clean(_first(entry, PRODUCT_NAME_KEYS)),
                )
            )
        return entitlements

    @staticmethod
    def _tenant_name(payload: dict) -> str | None:
        for path in TENANT_NAME_PATHS:
            value = _clean(_dig(payload, path))
            if value:
                return value
        return None


def _dig(payload: dict, path: tuple[str, ...]) -> Any:
    current: Any = payload
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _first(entry: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = entry.get(key)
        if value not in (None, ""):
            return value
    return None


def _as_list(value: Any, label: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedPayloadError(f"{label} is not a list")
    return list(value)


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise MalformedPayloadError(f"unsupported date value {value!r}")
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError as exc:
        raise MalformedPayloadError(f"unparsable date {value!r}") from exc
