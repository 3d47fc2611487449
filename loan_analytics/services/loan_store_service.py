from __future__ import annotations

import logging

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from models.loan_models import Event, LoanResult


LOGGER = logging.getLogger("loan_analytics.store")


class LoanStoreError(RuntimeError):
    pass


def serialize_event(event: Event) -> dict:
    return {
        "eventID": event.event_id,
        "name": event.name,
        "createdAt": event.created_at,
    }


def _loan_row(result: LoanResult) -> dict:
    item = result.Item
    return {
        "result_id": result.result_id,
        "event_id": result.event_id,
        "item_id": result.item_id,
        "start_datetime": result.start_datetime,
        "end_datetime": result.end_datetime,
        "items": {"item_id": item.item_id, "name": item.name, "image": item.image} if item else None,
    }


def list_events(db: Session) -> list[dict]:
    stmt = select(Event).where(Event.event_deleted.is_(False)).order_by(Event.created_at.desc())
    try:
        events = db.execute(stmt).scalars().all()
    except SQLAlchemyError as exc:
        LOGGER.error("Event fetch failed error=%s", exc)
        raise LoanStoreError("Could not fetch events.") from exc
    return [serialize_event(event) for event in events]


def get_event(db: Session, event_id: str) -> dict | None:
    try:
        event = db.get(Event, event_id)
    except SQLAlchemyError as exc:
        raise LoanStoreError("Could not fetch event.") from exc
    if not event or event.event_deleted:
        return None
    return serialize_event(event)


def fetch_loan_rows(db: Session, event_id: str) -> list[dict]:
    stmt = (
        select(LoanResult)
        .options(selectinload(LoanResult.Item))
        .where(LoanResult.event_id == event_id)
        .order_by(LoanResult.start_datetime.desc())
    )
    try:
        results = db.execute(stmt).scalars().all()
    except SQLAlchemyError as exc:
        LOGGER.error("Loan fetch failed event_id=%s error=%s", event_id, exc)
        raise LoanStoreError("Could not fetch loan records.") from exc
    return [_loan_row(result) for result in results]


def delete_loan_records(db: Session, event_id: str, result_ids: list[int]) -> int:
    if not result_ids:
        return 0
    stmt = (
        delete(LoanResult)
        .where(LoanResult.event_id == event_id)
        .where(LoanResult.result_id.in_(result_ids))
    )
    try:
        outcome = db.execute(stmt)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.error("Loan delete failed event_id=%s count=%s error=%s", event_id, len(result_ids), exc)
        raise LoanStoreError("Could not delete loan records.") from exc
    deleted = outcome.rowcount if outcome.rowcount is not None and outcome.rowcount >= 0 else len(result_ids)
    LOGGER.info("Deleted loan records event_id=%s count=%s", event_id, deleted)
    return deleted
