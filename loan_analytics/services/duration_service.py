from __future__ import annotations

import math
from datetime import datetime, timezone, tzinfo
from typing import Any


NOT_RETURNED_LABEL = "Not returned"
DURATION_PLACEHOLDER = "-"
DURATION_ERROR_LABEL = "error"
ZERO_TOTAL_DURATION = "0h 0m 0s"


class DurationError(ValueError):
    pass


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 value into an aware datetime.

    Naive values are taken as UTC, the store's reference for absolute
    instants. Returns None when the value is empty or does not parse.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value).strip()
        if not raw:
            return None
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def compute_duration(start: datetime, end: datetime | None) -> float | None:
    if end is None:
        return None
    seconds = (end - start).total_seconds()
    if seconds < 0:
        return 0.0
    return seconds


def record_duration(record) -> float | None:
    """Duration of a normalized loan record in seconds.

    None while the loan is open. Raises DurationError when a timestamp
    that is present could not be parsed.
    """
    if not record.is_returned:
        return None
    if record.start is None or record.end is None:
        raise DurationError(f"unparseable timestamps for loan {record.loan_id}")
    return compute_duration(record.start, record.end)


def safe_record_duration(record) -> float | None:
    try:
        return record_duration(record)
    except DurationError:
        return None


def format_loan_duration(seconds: float | None) -> str:
    if seconds is None:
        return DURATION_PLACEHOLDER
    whole = max(0, int(math.floor(seconds)))
    if whole < 60:
        return f"{whole}s"
    minutes, remainder = divmod(whole, 60)
    return f"{minutes}m {remainder}s"


def format_record_duration(record) -> str:
    try:
        return format_loan_duration(record_duration(record))
    except DurationError:
        return DURATION_ERROR_LABEL


def format_total_duration(seconds: float) -> str:
    if seconds is None or seconds < 0:
        return ZERO_TOTAL_DURATION

    whole = int(math.floor(seconds))
    hours = whole // 3600
    minutes = (whole % 3600) // 60
    remaining_seconds = whole % 60
    if hours == 0 and minutes == 0 and remaining_seconds == 0:
        return ZERO_TOTAL_DURATION

    parts: list[str] = []
    if hours > 0:
        parts.append(f"{hours}h")
    # "1h 5s" would read ambiguously, so minutes stay visible once hours are.
    if minutes > 0 or hours > 0:
        parts.append(f"{minutes}m")
    parts.append(f"{remaining_seconds}s")
    return " ".join(parts)


def format_local_datetime(value: datetime | None, tz: tzinfo) -> str:
    if value is None:
        return DURATION_PLACEHOLDER
    return value.astimezone(tz).strftime("%Y/%m/%d %H:%M:%S")


def format_local_time(value: datetime | None, tz: tzinfo) -> str:
    if value is None:
        return DURATION_PLACEHOLDER
    return value.astimezone(tz).strftime("%H:%M:%S")
