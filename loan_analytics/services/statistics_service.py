from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import tzinfo
from typing import Iterable

from services.duration_service import DurationError, format_total_duration, record_duration
from services.loan_record_service import LoanRecord


HOURS_PER_DAY = 24

LOGGER = logging.getLogger("loan_analytics.statistics")


@dataclass
class ItemStatistics:
    item_id: str
    item_name: str
    image: str
    loan_count: int = 0
    total_duration: float = 0.0
    average_duration: float = 0.0
    hourly_usage: list[int] = field(default_factory=lambda: [0] * HOURS_PER_DAY)
    original_item_ids: list[str] | None = None

    @property
    def constituent_ids(self) -> list[str]:
        if self.original_item_ids:
            return list(self.original_item_ids)
        return [self.item_id]


def _recompute_average(stats: ItemStatistics) -> None:
    if stats.loan_count > 0:
        stats.average_duration = stats.total_duration / stats.loan_count
    else:
        stats.average_duration = 0.0


def sort_item_ids(item_ids: Iterable[str]) -> list[str]:
    values = list(item_ids)
    try:
        return sorted(values, key=lambda value: int(value))
    except (TypeError, ValueError):
        return sorted(values)


def aggregate_loan_statistics(records: Iterable[LoanRecord], tz: tzinfo) -> dict[str, ItemStatistics]:
    """Fold loan records into one ItemStatistics per item id.

    Every record counts. Completed loans add their clamped duration to
    the total; every record with a parseable start lands in the bucket of
    its local start hour.
    """
    stats_by_item: dict[str, ItemStatistics] = {}
    for record in records:
        stats = stats_by_item.get(record.item_id)
        if stats is None:
            stats = ItemStatistics(
                item_id=record.item_id,
                item_name=record.item_name,
                image=record.image,
            )
            stats_by_item[record.item_id] = stats

        stats.loan_count += 1

        try:
            duration = record_duration(record)
        except DurationError:
            LOGGER.warning("Skipping duration for result_id=%s", record.loan_id)
            duration = None
        if duration is not None:
            stats.total_duration += duration

        if record.start is not None:
            stats.hourly_usage[record.start.astimezone(tz).hour] += 1

    for stats in stats_by_item.values():
        _recompute_average(stats)
    return stats_by_item


def consolidate_by_name(statistics: Iterable[ItemStatistics]) -> list[ItemStatistics]:
    merged: dict[str, ItemStatistics] = {}
    for stats in statistics:
        existing = merged.get(stats.item_name)
        if existing is None:
            merged[stats.item_name] = ItemStatistics(
                item_id=stats.item_id,
                item_name=stats.item_name,
                image=stats.image,
                loan_count=stats.loan_count,
                total_duration=stats.total_duration,
                hourly_usage=list(stats.hourly_usage),
                original_item_ids=sort_item_ids(stats.constituent_ids),
            )
            continue

        existing.loan_count += stats.loan_count
        existing.total_duration += stats.total_duration
        existing.hourly_usage = [
            count + other for count, other in zip(existing.hourly_usage, stats.hourly_usage)
        ]
        existing.original_item_ids = sort_item_ids(existing.constituent_ids + stats.constituent_ids)

    rows = list(merged.values())
    for row in rows:
        row.item_id = row.original_item_ids[0]
        _recompute_average(row)
    return rows


def build_display_statistics(
    records: Iterable[LoanRecord],
    tz: tzinfo,
    merge_by_name: bool = False,
) -> list[ItemStatistics]:
    rows = list(aggregate_loan_statistics(records, tz).values())
    if merge_by_name:
        return consolidate_by_name(rows)
    return rows


def serialize_statistics(stats: ItemStatistics, display_item_id: str | None = None, rotation_index: int = 0) -> dict:
    ids = stats.constituent_ids
    payload = {
        "itemID": stats.item_id,
        "displayItemID": display_item_id or stats.item_id,
        "itemName": stats.item_name,
        "image": stats.image,
        "loanCount": stats.loan_count,
        "totalDuration": stats.total_duration,
        "averageDuration": stats.average_duration,
        "totalDurationText": format_total_duration(stats.total_duration),
        "averageDurationText": format_total_duration(stats.average_duration),
        "hourlyUsage": list(stats.hourly_usage),
        "originalItemIDs": stats.original_item_ids,
    }
    if stats.original_item_ids and len(ids) > 1:
        payload["idFraction"] = f"{rotation_index + 1}/{len(ids)}"
    return payload
