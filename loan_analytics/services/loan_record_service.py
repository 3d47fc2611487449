from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any, Iterable
from urllib.parse import urlparse

from services.duration_service import (
    NOT_RETURNED_LABEL,
    format_local_time,
    format_record_duration,
    parse_timestamp,
)


DEFAULT_IMAGE = "https://placehold.jp/3b82f6/ffffff/150x150.png?text=No+Image"
UNKNOWN_ITEM_NAME = "Unknown item"

LOGGER = logging.getLogger("loan_analytics.records")


@dataclass(frozen=True)
class LoanRecord:
    loan_id: int
    event_id: str | None
    item_id: str
    item_name: str
    image: str
    start: datetime | None
    end: datetime | None
    start_raw: str
    end_raw: str | None

    @property
    def is_returned(self) -> bool:
        return self.end_raw is not None


def resolve_image_url(raw: Any) -> str:
    value = str(raw or "").strip()
    if not value:
        return DEFAULT_IMAGE
    parsed = urlparse(value)
    if not parsed.scheme or not parsed.netloc:
        return DEFAULT_IMAGE
    return value


def _unwrap_relation(raw: Any) -> dict[str, Any] | None:
    if isinstance(raw, (list, tuple)):
        raw = raw[0] if raw else None
    if isinstance(raw, dict):
        return raw
    return None


def _item_fields(row: dict[str, Any]) -> tuple[Any, Any]:
    relation = _unwrap_relation(row.get("items"))
    if relation is None:
        relation = _unwrap_relation(row.get("item"))
    if relation is not None:
        return relation.get("name"), relation.get("image")
    return row.get("item_name"), row.get("image")


def _raw_timestamp(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    text = str(value).strip()
    return text or None


def normalize_loan_record(row: dict[str, Any]) -> LoanRecord | None:
    """Map one joined store row onto a LoanRecord.

    Rows without a usable identifier or start timestamp are dropped
    (None). A start that is present but unparseable is kept so the loan
    still counts; its ``start`` is None.
    """
    try:
        loan_id = int(row.get("result_id"))
    except (TypeError, ValueError):
        LOGGER.warning("Dropping loan row without identifier raw_id=%r", row.get("result_id"))
        return None

    start_raw = _raw_timestamp(row.get("start_datetime"))
    if start_raw is None:
        LOGGER.warning("Dropping loan row without start timestamp result_id=%s", loan_id)
        return None

    end_raw = _raw_timestamp(row.get("end_datetime"))
    start = parse_timestamp(row.get("start_datetime"))
    end = parse_timestamp(row.get("end_datetime")) if end_raw is not None else None
    if start is None or (end_raw is not None and end is None):
        LOGGER.warning(
            "Unparseable timestamp result_id=%s start=%r end=%r", loan_id, start_raw, end_raw
        )

    item_id = str(row.get("item_id") or "").strip()
    name, image = _item_fields(row)
    item_name = str(name or "").strip()
    if not item_name:
        LOGGER.warning("Item name not found result_id=%s item_id=%s", loan_id, item_id)
        item_name = UNKNOWN_ITEM_NAME

    event_id = row.get("event_id")
    return LoanRecord(
        loan_id=loan_id,
        event_id=str(event_id) if event_id is not None else None,
        item_id=item_id,
        item_name=item_name,
        image=resolve_image_url(image),
        start=start,
        end=end,
        start_raw=start_raw,
        end_raw=end_raw,
    )


def normalize_loan_records(rows: Iterable[dict[str, Any]]) -> list[LoanRecord]:
    records: list[LoanRecord] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        record = normalize_loan_record(row)
        if record is not None:
            records.append(record)
    return records


def serialize_loan_record(record: LoanRecord, tz: tzinfo) -> dict:
    return {
        "resultID": record.loan_id,
        "eventID": record.event_id,
        "itemID": record.item_id,
        "itemName": record.item_name,
        "image": record.image,
        "startDatetime": record.start.isoformat() if record.start else record.start_raw,
        "endDatetime": record.end.isoformat() if record.end else record.end_raw,
        "startTime": format_local_time(record.start, tz),
        "endTime": format_local_time(record.end, tz) if record.is_returned else NOT_RETURNED_LABEL,
        "isReturned": record.is_returned,
        "duration": format_record_duration(record),
    }
