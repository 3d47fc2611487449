from __future__ import annotations

import locale
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Callable, Iterable, Literal

from services.duration_service import DurationError, record_duration
from services.loan_record_service import LoanRecord
from services.statistics_service import ItemStatistics


ASC = "asc"
DESC = "desc"

ITEM_ID = "item_id"
ITEM_NAME = "item_name"
LOAN_COUNT = "loan_count"
TOTAL_DURATION = "total_duration"
AVERAGE_DURATION = "average_duration"
START_DATETIME = "start_datetime"
END_DATETIME = "end_datetime"
DURATION = "duration"

# Header pseudo-columns.
ITEM_INFO = "item_info"
LOAN_PERIOD = "loan_period"

STATISTICS_SORT_KEYS = {ITEM_ID, ITEM_NAME, LOAN_COUNT, TOTAL_DURATION, AVERAGE_DURATION}
HISTORY_SORT_KEYS = {ITEM_ID, ITEM_NAME, START_DATETIME, END_DATETIME, DURATION}

OPEN_LOAN_RANK = -1.0
FAILED_DURATION_RANK = -2.0

ITEM_INFO_LABELS = {ITEM_ID: "Item ID", ITEM_NAME: "Item name"}


@dataclass(frozen=True)
class SortState:
    key: str
    direction: Literal["asc", "desc"] = ASC

    def toggled(self) -> "SortState":
        return SortState(self.key, DESC if self.direction == ASC else ASC)


DEFAULT_STATISTICS_SORT = SortState(LOAN_COUNT, DESC)
DEFAULT_HISTORY_SORT = SortState(START_DATETIME, DESC)


def resolve_sort_key(column: str) -> str:
    if column == ITEM_INFO:
        return ITEM_ID
    if column == LOAN_PERIOD:
        return START_DATETIME
    return column


def next_sort_state(previous: SortState | None, column: str, wide: bool) -> SortState | None:
    """Sort state after a header activation.

    In wide mode id and name are separate headers and the combined item
    info header does nothing. In narrow mode the combined header cycles
    id asc, id desc, name asc, name desc.
    """
    if column == ITEM_INFO:
        if wide:
            return previous
        if previous == SortState(ITEM_ID, ASC):
            return SortState(ITEM_ID, DESC)
        if previous == SortState(ITEM_ID, DESC):
            return SortState(ITEM_NAME, ASC)
        if previous == SortState(ITEM_NAME, ASC):
            return SortState(ITEM_NAME, DESC)
        return SortState(ITEM_ID, ASC)

    key = resolve_sort_key(column)
    if previous is not None and previous.key == key and previous.direction == ASC:
        return SortState(key, DESC)
    return SortState(key, ASC)


def describe_sort_header(state: SortState | None, column: str, wide: bool) -> dict:
    if state is None:
        return {"active": False, "direction": None, "arrow": "", "label": ""}

    label = ""
    if column == ITEM_INFO and not wide:
        active = state.key in ITEM_INFO_LABELS
        label = ITEM_INFO_LABELS.get(state.key, "")
    else:
        active = state.key == resolve_sort_key(column) and column != ITEM_INFO

    if not active:
        return {"active": False, "direction": None, "arrow": "", "label": ""}
    return {
        "active": True,
        "direction": state.direction,
        "arrow": "↑" if state.direction == ASC else "↓",
        "label": label,
    }


def _sign(value: float) -> int:
    if value < 0:
        return -1
    if value > 0:
        return 1
    return 0


def _directed(result: int, direction: str) -> int:
    return -result if direction == DESC else result


def compare_text(left: str, right: str) -> int:
    primary = locale.strcoll(left.casefold(), right.casefold())
    if primary:
        return _sign(primary)
    return _sign(locale.strcoll(left, right))


def compare_item_ids(left: str, right: str) -> int:
    try:
        return _sign(int(left) - int(right))
    except (TypeError, ValueError):
        left_text, right_text = str(left or ""), str(right or "")
        return (left_text > right_text) - (left_text < right_text)


def _duration_rank(record: LoanRecord) -> float:
    if not record.is_returned:
        return OPEN_LOAN_RANK
    try:
        return record_duration(record)
    except DurationError:
        return FAILED_DURATION_RANK


def _timestamp_comparator(attribute: str, direction: str) -> Callable:
    def compare(left, right) -> int:
        left_value = getattr(left, attribute)
        right_value = getattr(right, attribute)
        # Missing timestamps stay at the end in both directions.
        if left_value is None and right_value is None:
            return 0
        if left_value is None:
            return 1
        if right_value is None:
            return -1
        return _directed(_sign((left_value - right_value).total_seconds()), direction)

    return compare


def _build_comparator(key: str, direction: str) -> Callable:
    if key == ITEM_ID:
        return lambda left, right: _directed(compare_item_ids(left.item_id, right.item_id), direction)
    if key == ITEM_NAME:
        return lambda left, right: _directed(compare_text(left.item_name, right.item_name), direction)
    if key == START_DATETIME:
        return _timestamp_comparator("start", direction)
    if key == END_DATETIME:
        return _timestamp_comparator("end", direction)
    if key == DURATION:
        return lambda left, right: _directed(_sign(_duration_rank(left) - _duration_rank(right)), direction)
    return lambda left, right: _directed(_sign(getattr(left, key) - getattr(right, key)), direction)


def _sort(rows: Iterable, state: SortState | None, allowed_keys: set[str]) -> list:
    items = list(rows)
    if state is None:
        return items
    key = resolve_sort_key(state.key)
    if key not in allowed_keys:
        raise ValueError(f"Unsupported sort key: {state.key}")
    # list.sort is stable, so equal rows keep their previous order.
    items.sort(key=cmp_to_key(_build_comparator(key, state.direction)))
    return items


def sort_statistics(rows: Iterable[ItemStatistics], state: SortState | None) -> list[ItemStatistics]:
    return _sort(rows, state, STATISTICS_SORT_KEYS)


def sort_loan_records(records: Iterable[LoanRecord], state: SortState | None) -> list[LoanRecord]:
    return _sort(records, state, HISTORY_SORT_KEYS)
