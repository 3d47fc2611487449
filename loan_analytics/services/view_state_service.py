from __future__ import annotations

import logging
import secrets
import threading
import time
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable

from services.loan_record_service import LoanRecord
from services.notification_service import DEFAULT_NOTIFICATION_TTL_SECONDS, NotificationCenter
from services.rotation_service import DEFAULT_ROTATION_INTERVAL_SECONDS, IdentityRotation
from services.sort_service import (
    DEFAULT_HISTORY_SORT,
    DEFAULT_STATISTICS_SORT,
    SortState,
    next_sort_state,
    sort_loan_records,
    sort_statistics,
)
from services.statistics_service import (
    ItemStatistics,
    aggregate_loan_statistics,
    consolidate_by_name,
)


DEFAULT_SESSION_TTL_SECONDS = 60 * 60 * 12

HISTORY_VIEW = "history"
STATISTICS_VIEW = "statistics"

LOGGER = logging.getLogger("loan_analytics.api")

_LOCK = threading.Lock()
_SESSIONS: dict[str, "ViewSession"] = {}


class ViewSession:
    """Per-client view state: selected event, last snapshot, display toggles.

    Fetches are sequenced: only the most recently started fetch may
    install its records, so a slow earlier response never overwrites a
    newer one.
    """

    def __init__(
        self,
        session_id: str,
        tz: tzinfo,
        rotation_interval_seconds: float = DEFAULT_ROTATION_INTERVAL_SECONDS,
        notification_ttl_seconds: float = DEFAULT_NOTIFICATION_TTL_SECONDS,
        ttl_seconds: float = DEFAULT_SESSION_TTL_SECONDS,
    ):
        self.session_id = session_id
        self.ttl_seconds = float(ttl_seconds)
        self.expires_at = time.time() + self.ttl_seconds
        self.tz = tz
        self._lock = threading.Lock()
        self._subscribers: list[Callable[[str | None], Any]] = []
        self.selected_event_id: str | None = None
        self.records: list[LoanRecord] = []
        self.statistics: list[ItemStatistics] = []
        self.fetched_at: datetime | None = None
        self.wide = False
        self.merge_by_name = False
        self.history_sort: SortState | None = DEFAULT_HISTORY_SORT
        self.statistics_sort: SortState | None = DEFAULT_STATISTICS_SORT
        self.rotation = IdentityRotation(rotation_interval_seconds)
        self.notifications = NotificationCenter(notification_ttl_seconds)
        self._fetch_seq = 0
        self._settled_seq = 0

    def is_expired(self, now: float | None = None) -> bool:
        return (time.time() if now is None else now) >= self.expires_at

    def touch(self, now: float | None = None) -> None:
        self.expires_at = (time.time() if now is None else now) + self.ttl_seconds

    @property
    def loading(self) -> bool:
        return self._fetch_seq != self._settled_seq

    def subscribe(self, callback: Callable[[str | None], Any]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def select_event(self, event_id: str | None) -> bool:
        with self._lock:
            if event_id == self.selected_event_id:
                return False
            self.selected_event_id = event_id
            subscribers = list(self._subscribers)
        for callback in subscribers:
            callback(event_id)
        return True

    def begin_fetch(self) -> int:
        with self._lock:
            self._fetch_seq += 1
            return self._fetch_seq

    def complete_fetch(self, token: int, records: list[LoanRecord]) -> bool:
        with self._lock:
            if token != self._fetch_seq:
                LOGGER.info("Discarding stale fetch session=%s token=%s latest=%s", self.session_id, token, self._fetch_seq)
                return False
            self._settled_seq = token
            self.records = list(records)
            self.statistics = list(aggregate_loan_statistics(self.records, self.tz).values())
            self.fetched_at = datetime.now(timezone.utc)
            self.history_sort = DEFAULT_HISTORY_SORT
            merged = self.merge_by_name
        if merged:
            self.rotation.reset(self.display_statistics())
        return True

    def fail_fetch(self, token: int) -> None:
        with self._lock:
            if token == self._fetch_seq:
                self._settled_seq = token

    def drop_records(self, loan_ids: list[int]) -> None:
        """Remove deleted loans from the current snapshot without a fetch."""
        removed = set(loan_ids)
        with self._lock:
            self.records = [record for record in self.records if record.loan_id not in removed]
            self.statistics = list(aggregate_loan_statistics(self.records, self.tz).values())
            merged = self.merge_by_name
        if merged:
            self.rotation.reset(self.display_statistics())

    def display_statistics(self) -> list[ItemStatistics]:
        if self.merge_by_name:
            return consolidate_by_name(self.statistics)
        return list(self.statistics)

    def sorted_statistics(self) -> list[ItemStatistics]:
        return sort_statistics(self.display_statistics(), self.statistics_sort)

    def sorted_records(self) -> list[LoanRecord]:
        return sort_loan_records(self.records, self.history_sort)

    def set_display(self, wide: bool | None = None, merge_by_name: bool | None = None) -> None:
        if wide is not None:
            self.wide = bool(wide)
        if merge_by_name is None or bool(merge_by_name) == self.merge_by_name:
            return
        self.merge_by_name = bool(merge_by_name)
        if self.merge_by_name:
            self.rotation.start(self.display_statistics())
        else:
            self.rotation.stop()

    def apply_sort(self, view: str, column: str) -> SortState | None:
        if view == HISTORY_VIEW:
            self.history_sort = next_sort_state(self.history_sort, column, self.wide)
            return self.history_sort
        if view == STATISTICS_VIEW:
            self.statistics_sort = next_sort_state(self.statistics_sort, column, self.wide)
            return self.statistics_sort
        raise ValueError(f"Unknown view: {view}")

    def close(self) -> None:
        self.rotation.stop()
        with self._lock:
            self._subscribers.clear()


def create_session(
    tz: tzinfo,
    rotation_interval_seconds: float = DEFAULT_ROTATION_INTERVAL_SECONDS,
    notification_ttl_seconds: float = DEFAULT_NOTIFICATION_TTL_SECONDS,
    ttl_seconds: float = DEFAULT_SESSION_TTL_SECONDS,
) -> ViewSession:
    purge_expired_sessions()
    token = secrets.token_urlsafe(24)
    session = ViewSession(
        token,
        tz,
        rotation_interval_seconds=rotation_interval_seconds,
        notification_ttl_seconds=notification_ttl_seconds,
        ttl_seconds=ttl_seconds,
    )
    with _LOCK:
        _SESSIONS[token] = session
    return session


def purge_expired_sessions(now: float | None = None) -> int:
    """Drop idle sessions and stop their rotation threads."""
    now = time.time() if now is None else now
    with _LOCK:
        expired = [token for token, session in _SESSIONS.items() if session.is_expired(now)]
        sessions = [_SESSIONS.pop(token) for token in expired]
    for session in sessions:
        session.close()
    if sessions:
        LOGGER.info("Expired view sessions count=%s", len(sessions))
    return len(sessions)


def get_session(token: str | None) -> ViewSession | None:
    if not token:
        return None
    now = time.time()
    purge_expired_sessions(now)
    with _LOCK:
        session = _SESSIONS.get(token)
    if session is not None:
        session.touch(now)
    return session


def remove_session(token: str | None) -> bool:
    if not token:
        return False
    with _LOCK:
        session = _SESSIONS.pop(token, None)
    if session is None:
        return False
    session.close()
    return True
