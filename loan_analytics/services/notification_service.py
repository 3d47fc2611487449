from __future__ import annotations

import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Literal


DEFAULT_NOTIFICATION_TTL_SECONDS = 5.0

NotificationKind = Literal["success", "error", "info"]


@dataclass(frozen=True)
class Notification:
    notification_id: str
    kind: NotificationKind
    message: str
    created_at: float
    expires_at: float


class NotificationCenter:
    """Transient notices that expire on their own countdown."""

    def __init__(self, ttl_seconds: float = DEFAULT_NOTIFICATION_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = max(float(ttl_seconds), 0.0)
        self._clock = clock
        self._lock = threading.Lock()
        self._items: list[Notification] = []

    def push(self, kind: NotificationKind, message: str) -> Notification:
        now = self._clock()
        notification = Notification(
            notification_id=secrets.token_hex(8),
            kind=kind,
            message=message,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        with self._lock:
            self._items.append(notification)
        return notification

    def active(self) -> list[Notification]:
        now = self._clock()
        with self._lock:
            self._items = [item for item in self._items if item.expires_at > now]
            return list(self._items)

    def dismiss(self, notification_id: str) -> bool:
        with self._lock:
            before = len(self._items)
            self._items = [item for item in self._items if item.notification_id != notification_id]
            return len(self._items) != before

    def serialize(self) -> list[dict]:
        now = self._clock()
        return [
            {
                "id": item.notification_id,
                "type": item.kind,
                "message": item.message,
                "countdown": max(0, int(round(item.expires_at - now))),
            }
            for item in self.active()
        ]
