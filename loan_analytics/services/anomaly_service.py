from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Literal

from sqlalchemy.orm import Session

from services.duration_service import DurationError, record_duration
from services.loan_record_service import LoanRecord
from services.loan_store_service import delete_loan_records


DEFAULT_SHORT_LOAN_THRESHOLD_SECONDS = 60

LOGGER = logging.getLogger("loan_analytics.store")


@dataclass
class ShortLoanCleanup:
    status: Literal["none", "deleted"]
    threshold_seconds: float
    deleted_ids: list[int] = field(default_factory=list)
    deleted_count: int = 0


def find_short_loans(
    records: Iterable[LoanRecord],
    threshold_seconds: float = DEFAULT_SHORT_LOAN_THRESHOLD_SECONDS,
) -> list[LoanRecord]:
    short_loans: list[LoanRecord] = []
    for record in records:
        if not record.is_returned:
            continue
        try:
            duration = record_duration(record)
        except DurationError:
            continue
        if duration is not None and duration < threshold_seconds:
            short_loans.append(record)
    return short_loans


def delete_short_loans(
    db: Session,
    event_id: str,
    records: Iterable[LoanRecord],
    threshold_seconds: float = DEFAULT_SHORT_LOAN_THRESHOLD_SECONDS,
) -> ShortLoanCleanup:
    """Delete returned loans shorter than the threshold.

    Raises LoanStoreError when the store rejects the delete; the caller
    re-fetches on success.
    """
    short_loans = find_short_loans(records, threshold_seconds)
    if not short_loans:
        return ShortLoanCleanup(status="none", threshold_seconds=threshold_seconds)

    ids = [record.loan_id for record in short_loans]
    deleted = delete_loan_records(db, event_id, ids)
    if deleted != len(ids):
        LOGGER.warning(
            "Short loan delete matched fewer rows event_id=%s requested=%s deleted=%s", event_id, len(ids), deleted
        )
    return ShortLoanCleanup(
        status="deleted",
        threshold_seconds=threshold_seconds,
        deleted_ids=ids,
        deleted_count=deleted,
    )
