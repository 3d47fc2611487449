import sys
import unittest
from datetime import date, timezone
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from services.export_service import (
    HEATMAP_HEADERS,
    HEATMAP_LABEL,
    HISTORY_HEADERS,
    HISTORY_LABEL,
    STATISTICS_HEADERS,
    STATISTICS_LABEL,
    build_export_filename,
    build_heatmap_csv,
    build_history_csv,
    build_statistics_csv,
)
from services.loan_record_service import DEFAULT_IMAGE, normalize_loan_records
from services.sort_service import (
    ASC,
    DEFAULT_HISTORY_SORT,
    DESC,
    ITEM_ID,
    ITEM_INFO,
    ITEM_NAME,
    LOAN_PERIOD,
    SortState,
    describe_sort_header,
    next_sort_state,
    sort_loan_records,
    sort_statistics,
)
from services.statistics_service import ItemStatistics


UTC = timezone.utc


def _stats(item_id, name="Tent", loan_count=1, total=0.0, original_ids=None):
    return ItemStatistics(
        item_id=item_id,
        item_name=name,
        image=DEFAULT_IMAGE,
        loan_count=loan_count,
        total_duration=total,
        average_duration=total / loan_count if loan_count else 0.0,
        original_item_ids=original_ids,
    )


def _records(rows):
    return normalize_loan_records(
        [
            {
                "result_id": result_id,
                "event_id": "EV1",
                "item_id": item_id,
                "start_datetime": start,
                "end_datetime": end,
                "items": {"name": f"Item {item_id}"},
            }
            for result_id, item_id, start, end in rows
        ]
    )


class SortStateMachineTests(unittest.TestCase):
    def test_narrow_item_info_cycle(self):
        state = None
        seen = []
        for _ in range(5):
            state = next_sort_state(state, ITEM_INFO, wide=False)
            seen.append((state.key, state.direction))
        self.assertEqual(
            seen,
            [
                (ITEM_ID, ASC),
                (ITEM_ID, DESC),
                (ITEM_NAME, ASC),
                (ITEM_NAME, DESC),
                (ITEM_ID, ASC),
            ],
        )

    def test_narrow_cycle_starts_over_from_other_keys(self):
        state = next_sort_state(SortState("loan_count", DESC), ITEM_INFO, wide=False)
        self.assertEqual(state, SortState(ITEM_ID, ASC))

    def test_wide_item_info_is_inert(self):
        previous = SortState("loan_count", DESC)
        self.assertIs(next_sort_state(previous, ITEM_INFO, wide=True), previous)
        self.assertIsNone(next_sort_state(None, ITEM_INFO, wide=True))

    def test_plain_column_toggles(self):
        state = next_sort_state(None, ITEM_NAME, wide=True)
        self.assertEqual(state, SortState(ITEM_NAME, ASC))
        state = next_sort_state(state, ITEM_NAME, wide=True)
        self.assertEqual(state, SortState(ITEM_NAME, DESC))
        state = next_sort_state(state, ITEM_NAME, wide=True)
        self.assertEqual(state, SortState(ITEM_NAME, ASC))
        self.assertEqual(next_sort_state(state, "loan_count", wide=True), SortState("loan_count", ASC))

    def test_loan_period_header_sorts_by_start(self):
        state = next_sort_state(DEFAULT_HISTORY_SORT, LOAN_PERIOD, wide=False)
        self.assertEqual(state, SortState("start_datetime", ASC))

    def test_header_indicator(self):
        narrow = describe_sort_header(SortState(ITEM_NAME, DESC), ITEM_INFO, wide=False)
        self.assertEqual(narrow, {"active": True, "direction": DESC, "arrow": "↓", "label": "Item name"})

        wide = describe_sort_header(SortState(ITEM_ID, ASC), ITEM_ID, wide=True)
        self.assertTrue(wide["active"])
        self.assertEqual(wide["arrow"], "↑")
        self.assertEqual(wide["label"], "")

        self.assertFalse(describe_sort_header(SortState(ITEM_ID, ASC), ITEM_INFO, wide=True)["active"])
        self.assertFalse(describe_sort_header(None, ITEM_ID, wide=True)["active"])


class StatisticsSortTests(unittest.TestCase):
    def test_numeric_ids_compare_numerically(self):
        rows = [_stats("10"), _stats("9"), _stats("2")]
        ordered = sort_statistics(rows, SortState(ITEM_ID, ASC))
        self.assertEqual([row.item_id for row in ordered], ["2", "9", "10"])
        ordered = sort_statistics(rows, SortState(ITEM_ID, DESC))
        self.assertEqual([row.item_id for row in ordered], ["10", "9", "2"])

    def test_non_numeric_ids_compare_as_text(self):
        rows = [_stats("b-1"), _stats("A-2"), _stats("10")]
        ordered = sort_statistics(rows, SortState(ITEM_ID, ASC))
        self.assertEqual([row.item_id for row in ordered], ["10", "A-2", "b-1"])

    def test_non_numeric_ids_compare_raw_strings(self):
        rows = [_stats("a"), _stats("B"), _stats("10")]
        ordered = sort_statistics(rows, SortState(ITEM_ID, ASC))
        self.assertEqual([row.item_id for row in ordered], ["10", "B", "a"])
        ordered = sort_statistics(rows, SortState(ITEM_ID, DESC))
        self.assertEqual([row.item_id for row in ordered], ["a", "B", "10"])

    def test_names_compare_case_insensitively(self):
        rows = [_stats("1", "banana"), _stats("2", "Cherry"), _stats("3", "apple")]
        ordered = sort_statistics(rows, SortState(ITEM_NAME, ASC))
        self.assertEqual([row.item_name for row in ordered], ["apple", "banana", "Cherry"])

    def test_equal_keys_keep_previous_order(self):
        rows = [_stats("1", loan_count=3), _stats("2", loan_count=5), _stats("3", loan_count=3), _stats("4", loan_count=3)]
        ordered = sort_statistics(rows, SortState("loan_count", DESC))
        self.assertEqual([row.item_id for row in ordered], ["2", "1", "3", "4"])
        again = sort_statistics(ordered, SortState("loan_count", DESC))
        self.assertEqual([row.item_id for row in again], ["2", "1", "3", "4"])

    def test_unsupported_key_is_rejected(self):
        with self.assertRaises(ValueError):
            sort_statistics([_stats("1")], SortState("start_datetime", ASC))

    def test_no_state_keeps_input_order(self):
        rows = [_stats("3"), _stats("1")]
        self.assertEqual([row.item_id for row in sort_statistics(rows, None)], ["3", "1"])


class HistorySortTests(unittest.TestCase):
    def setUp(self):
        self.records = _records(
            [
                (1, "1", "2025-03-18T10:00:00Z", "2025-03-18T10:10:00Z"),
                (2, "2", "2025-03-18T11:00:00Z", None),
                (3, "3", "2025-03-18T09:00:00Z", "2025-03-18T09:00:30Z"),
                (4, "4", "2025-03-18T12:00:00Z", "not-a-date"),
                (5, "5", "2025-03-18T08:00:00Z", None),
            ]
        )

    def _ids(self, records):
        return [record.loan_id for record in records]

    def test_start_datetime(self):
        self.assertEqual(self._ids(sort_loan_records(self.records, DEFAULT_HISTORY_SORT)), [4, 2, 1, 3, 5])
        self.assertEqual(self._ids(sort_loan_records(self.records, SortState("start_datetime", ASC))), [5, 3, 1, 2, 4])

    def test_missing_end_sorts_last_in_both_directions(self):
        ascending = self._ids(sort_loan_records(self.records, SortState("end_datetime", ASC)))
        descending = self._ids(sort_loan_records(self.records, SortState("end_datetime", DESC)))
        self.assertEqual(ascending[:2], [3, 1])
        self.assertEqual(descending[:2], [1, 3])
        self.assertEqual(set(ascending[2:]), {2, 4, 5})
        self.assertEqual(set(descending[2:]), {2, 4, 5})

    def test_duration_ranks_failures_then_open_loans(self):
        ascending = self._ids(sort_loan_records(self.records, SortState("duration", ASC)))
        self.assertEqual(ascending, [4, 2, 5, 3, 1])
        descending = self._ids(sort_loan_records(self.records, SortState("duration", DESC)))
        self.assertEqual(descending, [1, 3, 2, 5, 4])


class CsvExportTests(unittest.TestCase):
    def test_statistics_csv(self):
        usage = [0] * 24
        usage[10] = 2
        row = _stats("2", "Cable", loan_count=2, total=3605, original_ids=["2", "7"])
        row.hourly_usage = usage
        content = build_statistics_csv([row])
        lines = content.split("\n")
        self.assertEqual(lines[0], ",".join(STATISTICS_HEADERS))
        self.assertTrue(lines[0].startswith("itemId,itemName,loanCount,totalDuration,averageDuration,hour00,"))
        self.assertTrue(lines[0].endswith(",hour23"))
        fields = lines[1].split(",")
        self.assertEqual(fields[:5], ["2", "Cable", "2", "1h 0m 5s", "30m 2s"])
        self.assertEqual(fields[5 + 10], "2")
        self.assertEqual(len(fields), len(STATISTICS_HEADERS))

    def test_heatmap_csv(self):
        content = build_heatmap_csv([_stats("1", "Tent")])
        lines = content.split("\n")
        self.assertEqual(lines[0], ",".join(HEATMAP_HEADERS))
        self.assertEqual(lines[1], "1,Tent," + ",".join(["0"] * 24))

    def test_history_csv(self):
        records = _records(
            [
                (1, "1", "2025-03-18T10:00:00Z", "2025-03-18T10:02:05Z"),
                (2, "2", "2025-03-18T11:00:00Z", None),
            ]
        )
        lines = build_history_csv(records, UTC).split("\n")
        self.assertEqual(lines[0], ",".join(HISTORY_HEADERS))
        self.assertEqual(lines[1], "1,Item 1,2025/03/18 10:00:00,2025/03/18 10:02:05,2m 5s")
        self.assertEqual(lines[2], "2,Item 2,2025/03/18 11:00:00,Not returned,-")

    def test_empty_input_yields_header_only(self):
        self.assertEqual(build_statistics_csv([]), ",".join(STATISTICS_HEADERS))

    def test_filenames(self):
        today = date(2025, 3, 18)
        event = {"eventID": "EV1", "name": "Spring Fair"}
        self.assertEqual(
            build_export_filename(STATISTICS_LABEL, event, today),
            "20250318_loan_statistics_EV1-Spring Fair.csv",
        )
        self.assertEqual(
            build_export_filename(HEATMAP_LABEL, event, today, merged=True),
            "20250318_heatmap_EV1-Spring Fair_merged.csv",
        )
        self.assertEqual(build_export_filename(HISTORY_LABEL, None, today), "20250318_loan_history.csv")


if __name__ == "__main__":
    unittest.main()
