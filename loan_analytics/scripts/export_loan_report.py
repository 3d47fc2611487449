#!/usr/bin/env python3
"""Write loan history, statistics or heatmap CSV files for one event."""

from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from services.export_service import (
    HEATMAP_LABEL,
    HISTORY_LABEL,
    STATISTICS_LABEL,
    build_export_filename,
    build_heatmap_csv,
    build_history_csv,
    build_statistics_csv,
)
from services.loan_record_service import normalize_loan_records
from services.loan_store_service import LoanStoreError, fetch_loan_rows, get_event
from services.sort_service import (
    DEFAULT_HISTORY_SORT,
    DEFAULT_STATISTICS_SORT,
    sort_loan_records,
    sort_statistics,
)
from services.statistics_service import build_display_statistics


def _get_engine(db_url: str) -> Engine:
    return create_engine(db_url, pool_pre_ping=True, future=True)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Export loan analytics CSV for one event")
    parser.add_argument("--event-id", required=True, help="events.event_id to export")
    parser.add_argument(
        "--kind",
        choices=["statistics", "heatmap", "history"],
        default="statistics",
        help="Which view to export.",
    )
    parser.add_argument("--merge", action="store_true", help="Consolidate items sharing a display name.")
    parser.add_argument("--out", default=".", help="Directory for the CSV file.")
    parser.add_argument("--db-url", default=os.environ.get("LOAN_ANALYTICS_DB_URL", ""))
    parser.add_argument("--timezone", default=os.environ.get("DISPLAY_TIMEZONE", "Asia/Tokyo"))
    return parser


def main() -> int:
    args = _build_parser().parse_args()

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("LOAN_ANALYTICS_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    try:
        tz = ZoneInfo(args.timezone)
    except ZoneInfoNotFoundError:
        print(f"Unknown timezone: {args.timezone}")
        return 2

    engine = _get_engine(db_url)
    with Session(engine) as db:
        try:
            event = get_event(db, args.event_id)
            records = normalize_loan_records(fetch_loan_rows(db, args.event_id))
        except LoanStoreError as exc:
            print(f"Could not read loan records: {exc}")
            return 3

    if not records:
        print(f"No loan records for event {args.event_id}.")
        return 1

    today = datetime.now(tz).date()
    if args.kind == "history":
        content = build_history_csv(sort_loan_records(records, DEFAULT_HISTORY_SORT), tz)
        filename = build_export_filename(HISTORY_LABEL, event, today)
    else:
        rows = sort_statistics(build_display_statistics(records, tz, args.merge), DEFAULT_STATISTICS_SORT)
        if args.kind == "heatmap":
            content = build_heatmap_csv(rows)
            filename = build_export_filename(HEATMAP_LABEL, event, today, merged=args.merge)
        else:
            content = build_statistics_csv(rows)
            filename = build_export_filename(STATISTICS_LABEL, event, today, merged=args.merge)

    target = Path(args.out) / filename
    target.write_text(content, encoding="utf-8")
    print(f"Wrote {len(records)} records to {target}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
