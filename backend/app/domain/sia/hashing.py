"""Content fingerprints used for SIA change detection."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime
from typing import Any, Iterable, Mapping

from app.domain.sia.models import StampedStudent, record_nim


def canonical_json(record: Mapping[str, Any]) -> str:
    """Serialise a record independently of key insertion order."""

    return json.dumps(record, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def hash_record(record: Mapping[str, Any]) -> str:
    """Return a fixed-width SHA-256 hex digest over the full record payload."""

    return hashlib.sha256(canonical_json(record).encode("utf-8")).hexdigest()


def stamp_records(records: Iterable[Mapping[str, Any]], *, fetched_at: datetime) -> list[StampedStudent]:
    """Attach hash and fetch timestamp to each record; records without a NIM are dropped."""

    stamped: list[StampedStudent] = []
    for record in records:
        if not isinstance(record, Mapping):
            continue
        nim = record_nim(record)
        if nim is None:
            continue
        stamped.append(StampedStudent(nim=nim, data=record, hash=hash_record(record), fetched_at=fetched_at))
    return stamped
