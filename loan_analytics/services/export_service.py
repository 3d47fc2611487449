from __future__ import annotations

import logging
from datetime import date, tzinfo
from typing import Iterable

from services.duration_service import (
    NOT_RETURNED_LABEL,
    format_local_datetime,
    format_record_duration,
    format_total_duration,
)
from services.loan_record_service import LoanRecord
from services.statistics_service import ItemStatistics


DELIMITER = ","
STATISTICS_LABEL = "loan_statistics"
HEATMAP_LABEL = "heatmap"
HISTORY_LABEL = "loan_history"
MERGED_SUFFIX = "_merged"

HOUR_COLUMNS = [f"hour{hour:02d}" for hour in range(24)]
STATISTICS_HEADERS = ["itemId", "itemName", "loanCount", "totalDuration", "averageDuration", *HOUR_COLUMNS]
HEATMAP_HEADERS = ["itemId", "itemName", *HOUR_COLUMNS]
HISTORY_HEADERS = ["itemId", "itemName", "startDatetime", "endDatetime", "duration"]

LOGGER = logging.getLogger("loan_analytics.export")


def _export_item_id(stats: ItemStatistics) -> str:
    if stats.original_item_ids:
        return stats.original_item_ids[0]
    return stats.item_id


def _join_rows(headers: list[str], rows: list[list[str]]) -> str:
    # Values are written as-is; delimiters inside values are only reported.
    for row in rows:
        for value in row:
            if DELIMITER in value or '"' in value:
                LOGGER.warning("Unescaped CSV value may shift columns value=%r", value)
    lines = [DELIMITER.join(headers)]
    lines.extend(DELIMITER.join(row) for row in rows)
    return "\n".join(lines)


def build_statistics_csv(rows: Iterable[ItemStatistics]) -> str:
    data = []
    for stats in rows:
        data.append(
            [
                _export_item_id(stats),
                stats.item_name,
                str(stats.loan_count),
                format_total_duration(stats.total_duration),
                format_total_duration(stats.average_duration),
                *[str(count) for count in stats.hourly_usage],
            ]
        )
    return _join_rows(STATISTICS_HEADERS, data)


def build_heatmap_csv(rows: Iterable[ItemStatistics]) -> str:
    data = [
        [_export_item_id(stats), stats.item_name, *[str(count) for count in stats.hourly_usage]]
        for stats in rows
    ]
    return _join_rows(HEATMAP_HEADERS, data)


def build_history_csv(records: Iterable[LoanRecord], tz: tzinfo) -> str:
    data = []
    for record in records:
        data.append(
            [
                record.item_id,
                record.item_name,
                format_local_datetime(record.start, tz) if record.start else record.start_raw,
                format_local_datetime(record.end, tz) if record.is_returned else NOT_RETURNED_LABEL,
                format_record_duration(record),
            ]
        )
    return _join_rows(HISTORY_HEADERS, data)


def build_export_filename(label: str, event: dict | None, today: date, merged: bool = False) -> str:
    date_stamp = today.strftime("%Y%m%d")
    suffix = MERGED_SUFFIX if merged else ""
    if event and event.get("eventID"):
        return f"{date_stamp}_{label}_{event['eventID']}-{event.get('name') or ''}{suffix}.csv"
    return f"{date_stamp}_{label}{suffix}.csv"
