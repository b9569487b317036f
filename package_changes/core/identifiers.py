"""Utilities for generating and parsing identifiers used across the service."""

from __future__ import annotations

import re
import uuid

RECORD_ID_PATTERN = re.compile(r"^(?P<prefix>[A-Za-z][A-Za-z0-9_]*)-(?P<sequence>\d+)$")


def new_run_id() -> str:
    return f"run_{uuid.uuid4().hex}"


def parse_record_sequence(record_id: str) -> int | None:
    """Return the numeric sequence embedded in a ``PREFIX-<n>`` record id, or None."""

    match = RECORD_ID_PATTERN.match((record_id or "").strip())
    if not match:
        return None
    return int(match.group("sequence"))


def record_sort_key(record_id: str) -> int:
    sequence = parse_record_sequence(record_id)
    return sequence if sequence is not None else -1
