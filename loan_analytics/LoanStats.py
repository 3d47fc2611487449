import logging
import os
from datetime import datetime
from urllib.parse import quote
from zoneinfo import ZoneInfo

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

load_dotenv()

from db.deps import get_loan_db
from schemas.loans import DisplayModeRequest, SelectEventRequest, ShortLoanDeleteRequest, SortRequest
from services.anomaly_service import DEFAULT_SHORT_LOAN_THRESHOLD_SECONDS, delete_short_loans
from services.export_service import (
    HEATMAP_LABEL,
    HISTORY_LABEL,
    STATISTICS_LABEL,
    build_export_filename,
    build_heatmap_csv,
    build_history_csv,
    build_statistics_csv,
)
from services.heatmap_service import build_heatmap_rows
from services.loan_record_service import normalize_loan_records, serialize_loan_record
from services.loan_store_service import LoanStoreError, fetch_loan_rows, get_event, list_events
from services.notification_service import DEFAULT_NOTIFICATION_TTL_SECONDS
from services.rotation_service import DEFAULT_ROTATION_INTERVAL_SECONDS
from services.sort_service import (
    HISTORY_SORT_KEYS,
    ITEM_INFO,
    STATISTICS_SORT_KEYS,
    describe_sort_header,
    resolve_sort_key,
)
from services.statistics_service import serialize_statistics
from services.view_state_service import (
    DEFAULT_SESSION_TTL_SECONDS,
    HISTORY_VIEW,
    STATISTICS_VIEW,
    ViewSession,
    create_session,
    get_session,
    remove_session,
)


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


def _float_env(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return float(default)
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be numeric, got {raw!r}") from exc


DISPLAY_TZ = ZoneInfo((os.environ.get("DISPLAY_TIMEZONE") or "Asia/Tokyo").strip())
SHORT_LOAN_THRESHOLD_SECONDS = _float_env("SHORT_LOAN_THRESHOLD_SECONDS", DEFAULT_SHORT_LOAN_THRESHOLD_SECONDS)
ROTATION_INTERVAL_SECONDS = _float_env("ROTATION_INTERVAL_SECONDS", DEFAULT_ROTATION_INTERVAL_SECONDS)
NOTIFICATION_TTL_SECONDS = _float_env("NOTIFICATION_TTL_SECONDS", DEFAULT_NOTIFICATION_TTL_SECONDS)
VIEW_SESSION_TTL_SECONDS = _float_env("VIEW_SESSION_TTL_SECONDS", DEFAULT_SESSION_TTL_SECONDS)

logging.getLogger("loan_analytics").setLevel((os.environ.get("LOG_LEVEL") or "INFO").strip().upper())
API_LOGGER = logging.getLogger("loan_analytics.api")

STATISTICS_HEADERS = [ITEM_INFO, "item_id", "item_name", "loan_count", "total_duration", "average_duration"]
HISTORY_HEADERS = [ITEM_INFO, "item_id", "item_name", "loan_period", "duration"]

app = FastAPI()

_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:5173,http://localhost:5173",
)
_CORS_ALLOW_CREDENTIALS = str(os.environ.get("CORS_ALLOW_CREDENTIALS", "true")).strip().lower() in {"1", "true", "yes", "on"}
if "*" in _CORS_ALLOW_ORIGINS:
    # Wildcard origins cannot carry credentials.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_session(x_session_token: str | None) -> ViewSession:
    session = get_session(x_session_token)
    if session is None:
        raise HTTPException(status_code=401, detail="Unknown or expired view session.")
    return session


def _require_selected_event(session: ViewSession) -> str:
    if not session.selected_event_id:
        raise HTTPException(status_code=400, detail="No event selected.")
    return session.selected_event_id


def _load_snapshot(session: ViewSession, db: Session) -> bool:
    event_id = _require_selected_event(session)
    token = session.begin_fetch()
    try:
        rows = fetch_loan_rows(db, event_id)
    except LoanStoreError:
        session.fail_fetch(token)
        session.notifications.push("error", "Could not fetch loan records.")
        raise

    records = normalize_loan_records(rows)
    applied = session.complete_fetch(token, records)
    if applied and not records:
        session.notifications.push("info", "No loan records for this event.")
    API_LOGGER.info(
        "Snapshot fetched session=%s event_id=%s rows=%s records=%s applied=%s",
        session.session_id,
        event_id,
        len(rows),
        len(records),
        applied,
    )
    return applied


def _refresh_snapshot(session: ViewSession, db: Session) -> bool:
    try:
        return _load_snapshot(session, db)
    except LoanStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def _serialize_session(session: ViewSession) -> dict:
    return {
        "selectedEventID": session.selected_event_id,
        "loading": session.loading,
        "fetchedAt": session.fetched_at,
        "recordCount": len(session.records),
        "wide": session.wide,
        "mergeByName": session.merge_by_name,
        "historySort": _serialize_sort(session.history_sort),
        "statisticsSort": _serialize_sort(session.statistics_sort),
    }


def _serialize_sort(state) -> dict | None:
    if state is None:
        return None
    return {"key": state.key, "direction": state.direction}


def _sort_headers(session: ViewSession, view: str) -> dict:
    columns = HISTORY_HEADERS if view == HISTORY_VIEW else STATISTICS_HEADERS
    state = session.history_sort if view == HISTORY_VIEW else session.statistics_sort
    return {column: describe_sort_header(state, column, session.wide) for column in columns}


def _lookup_event(db: Session, event_id: str | None) -> dict | None:
    if not event_id:
        return None
    try:
        return get_event(db, event_id)
    except LoanStoreError as exc:
        API_LOGGER.warning("Event lookup failed for export file name event_id=%s error=%s", event_id, exc)
        return None


def _csv_response(content: str, filename: str) -> Response:
    fallback = filename.encode("ascii", "ignore").decode("ascii") or "export.csv"
    disposition = f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": disposition},
    )


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_loan_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.post("/api/session")
def open_session():
    session = create_session(
        DISPLAY_TZ,
        rotation_interval_seconds=ROTATION_INTERVAL_SECONDS,
        notification_ttl_seconds=NOTIFICATION_TTL_SECONDS,
        ttl_seconds=VIEW_SESSION_TTL_SECONDS,
    )
    session.subscribe(
        lambda event_id: API_LOGGER.info("Event selected session=%s event_id=%s", session.session_id, event_id)
    )
    return {"sessionToken": session.session_id, **_serialize_session(session)}


@app.get("/api/session")
def read_session(x_session_token: str | None = Header(None, alias="X-Session-Token")):
    return _serialize_session(_require_session(x_session_token))


@app.delete("/api/session")
def close_session(x_session_token: str | None = Header(None, alias="X-Session-Token")):
    if not remove_session(x_session_token):
        raise HTTPException(status_code=401, detail="Unknown or expired view session.")
    return {"ok": True}


@app.get("/api/events")
def get_events(db: Session = Depends(get_loan_db)):
    try:
        return list_events(db)
    except LoanStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@app.put("/api/session/event")
def select_event(
    payload: SelectEventRequest,
    db: Session = Depends(get_loan_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session(x_session_token)
    event_id = (payload.eventID or "").strip() or None
    session.select_event(event_id)
    if event_id:
        _refresh_snapshot(session, db)
    return _serialize_session(session)


@app.post("/api/session/refresh")
def refresh_session(
    db: Session = Depends(get_loan_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session(x_session_token)
    _refresh_snapshot(session, db)
    return _serialize_session(session)


@app.put("/api/session/display")
def update_display(
    payload: DisplayModeRequest,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session(x_session_token)
    session.set_display(wide=payload.wide, merge_by_name=payload.mergeByName)
    return _serialize_session(session)


@app.post("/api/session/sort")
def apply_sort(
    payload: SortRequest,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session(x_session_token)
    allowed = HISTORY_SORT_KEYS if payload.view == HISTORY_VIEW else STATISTICS_SORT_KEYS
    if resolve_sort_key(payload.column) not in allowed:
        raise HTTPException(status_code=400, detail=f"Column {payload.column} cannot sort the {payload.view} view.")
    state = session.apply_sort(payload.view, payload.column)
    return {
        "sort": _serialize_sort(state),
        "headers": _sort_headers(session, payload.view),
    }


@app.get("/api/loans")
def get_loans(x_session_token: str | None = Header(None, alias="X-Session-Token")):
    session = _require_session(x_session_token)
    records = session.sorted_records()
    return {
        "loading": session.loading,
        "sort": _serialize_sort(session.history_sort),
        "headers": _sort_headers(session, HISTORY_VIEW),
        "records": [serialize_loan_record(record, session.tz) for record in records],
    }


@app.get("/api/statistics")
def get_statistics(x_session_token: str | None = Header(None, alias="X-Session-Token")):
    session = _require_session(x_session_token)
    rows = session.sorted_statistics()
    return {
        "loading": session.loading,
        "mergeByName": session.merge_by_name,
        "sort": _serialize_sort(session.statistics_sort),
        "headers": _sort_headers(session, STATISTICS_VIEW),
        "statistics": [
            serialize_statistics(
                row,
                display_item_id=session.rotation.current_item_id(row),
                rotation_index=session.rotation.index_for(row.item_name),
            )
            for row in rows
        ],
    }


@app.get("/api/statistics/heatmap")
def get_heatmap(x_session_token: str | None = Header(None, alias="X-Session-Token")):
    session = _require_session(x_session_token)
    rows = session.sorted_statistics()
    return {
        "mergeByName": session.merge_by_name,
        "rows": build_heatmap_rows(rows, display_item_id=session.rotation.current_item_id),
    }


@app.get("/api/exports/statistics.csv")
def export_statistics(
    db: Session = Depends(get_loan_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session(x_session_token)
    rows = session.sorted_statistics()
    if not rows:
        raise HTTPException(status_code=404, detail="Nothing to export.")
    filename = build_export_filename(
        STATISTICS_LABEL,
        _lookup_event(db, session.selected_event_id),
        datetime.now(session.tz).date(),
        merged=session.merge_by_name,
    )
    return _csv_response(build_statistics_csv(rows), filename)


@app.get("/api/exports/heatmap.csv")
def export_heatmap(
    db: Session = Depends(get_loan_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session(x_session_token)
    rows = session.sorted_statistics()
    if not rows:
        raise HTTPException(status_code=404, detail="Nothing to export.")
    filename = build_export_filename(
        HEATMAP_LABEL,
        _lookup_event(db, session.selected_event_id),
        datetime.now(session.tz).date(),
        merged=session.merge_by_name,
    )
    return _csv_response(build_heatmap_csv(rows), filename)


@app.get("/api/exports/history.csv")
def export_history(
    db: Session = Depends(get_loan_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session(x_session_token)
    records = session.sorted_records()
    if not records:
        raise HTTPException(status_code=404, detail="Nothing to export.")
    filename = build_export_filename(
        HISTORY_LABEL,
        _lookup_event(db, session.selected_event_id),
        datetime.now(session.tz).date(),
    )
    return _csv_response(build_history_csv(records, session.tz), filename)


@app.post("/api/loans/short-loans/delete")
def delete_short_loan_records(
    payload: ShortLoanDeleteRequest | None = None,
    db: Session = Depends(get_loan_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session(x_session_token)
    event_id = _require_selected_event(session)
    threshold = (payload.thresholdSeconds if payload else None) or SHORT_LOAN_THRESHOLD_SECONDS

    try:
        cleanup = delete_short_loans(db, event_id, session.records, threshold)
    except LoanStoreError as exc:
        session.notifications.push("error", "Could not delete short loans.")
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    if cleanup.status == "none":
        session.notifications.push("info", f"No loans shorter than {threshold:g} seconds were found.")
        return {"status": cleanup.status, "deletedCount": 0, "deletedIDs": []}

    API_LOGGER.info(
        "Short loans deleted session=%s event_id=%s count=%s threshold=%s",
        session.session_id,
        event_id,
        cleanup.deleted_count,
        threshold,
    )
    session.notifications.push(
        "success",
        f"Deleted {cleanup.deleted_count} loans shorter than {threshold:g} seconds.",
    )
    # The delete is committed; a failed re-fetch is reported on its own.
    try:
        refreshed = _load_snapshot(session, db)
    except LoanStoreError as exc:
        API_LOGGER.warning(
            "Re-fetch after short loan delete failed session=%s event_id=%s error=%s",
            session.session_id,
            event_id,
            exc,
        )
        session.drop_records(cleanup.deleted_ids)
        refreshed = False
    return {
        "status": cleanup.status,
        "deletedCount": cleanup.deleted_count,
        "deletedIDs": cleanup.deleted_ids,
        "refreshed": refreshed,
    }


@app.get("/api/notifications")
def get_notifications(x_session_token: str | None = Header(None, alias="X-Session-Token")):
    session = _require_session(x_session_token)
    return session.notifications.serialize()


@app.delete("/api/notifications/{notification_id}")
def dismiss_notification(
    notification_id: str,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session(x_session_token)
    if not session.notifications.dismiss(notification_id):
        raise HTTPException(status_code=404, detail="Notification not found.")
    return {"ok": True}
