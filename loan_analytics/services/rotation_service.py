from __future__ import annotations

import logging
import threading
from typing import Iterable

from services.statistics_service import ItemStatistics


DEFAULT_ROTATION_INTERVAL_SECONDS = 2.0

LOGGER = logging.getLogger("loan_analytics.statistics")


class IdentityRotation:
    """Cycles the item id shown for consolidated rows.

    Indices are keyed by display name. The background loop only runs
    between start() and stop(); both reset every index to 0.
    """

    def __init__(self, interval_seconds: float = DEFAULT_ROTATION_INTERVAL_SECONDS):
        self.interval_seconds = max(float(interval_seconds), 0.01)
        self._lock = threading.Lock()
        self._sizes: dict[str, int] = {}
        self._indices: dict[str, int] = {}
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def reset(self, rows: Iterable[ItemStatistics]) -> None:
        sizes: dict[str, int] = {}
        for row in rows:
            if row.original_item_ids:
                sizes[row.item_name] = len(row.original_item_ids)
        with self._lock:
            self._sizes = sizes
            self._indices = {name: 0 for name in sizes}

    def advance(self) -> None:
        with self._lock:
            for name, size in self._sizes.items():
                if size > 1:
                    self._indices[name] = (self._indices.get(name, 0) + 1) % size
                else:
                    self._indices[name] = 0

    def index_for(self, item_name: str) -> int:
        with self._lock:
            return self._indices.get(item_name, 0)

    def current_item_id(self, row: ItemStatistics) -> str:
        if not row.original_item_ids:
            return row.item_id
        index = self.index_for(row.item_name)
        if index >= len(row.original_item_ids):
            index = 0
        return row.original_item_ids[index]

    def start(self, rows: Iterable[ItemStatistics]) -> None:
        self.stop()
        self.reset(rows)
        stop_event = threading.Event()
        thread = threading.Thread(
            target=self._run,
            args=(stop_event,),
            name="identity-rotation",
            daemon=True,
        )
        self._stop_event = stop_event
        self._thread = thread
        thread.start()

    def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.interval_seconds + 1)
        self._stop_event = None
        self._thread = None
        with self._lock:
            self._indices = {name: 0 for name in self._sizes}

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval_seconds):
            self.advance()
        LOGGER.debug("Identity rotation stopped")
