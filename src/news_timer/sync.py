"""Online/offline reconciliation between the timer and the remote store.

The remote store is the system of record. The local cache is a single JSON
snapshot that keeps the display going while the server is unreachable; it is
overwritten wholesale on every save and never merged.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

from .errors import NewsTimerError, is_connectivity_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncMode(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class LocalCache:
    """Last-resort snapshot of {sources, settings, dailyUsedSeconds}.

    Saves come from scheduler worker threads and the UI thread; they are
    serialized so each one writes and replaces the file whole.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def save(self, snapshot: dict) -> bool:
        data = dict(snapshot)
        data["savedAt"] = datetime.now().isoformat()
        text = json.dumps(data, indent=2, ensure_ascii=False)
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
                tmp_path.write_text(text, encoding="utf-8")
                tmp_path.replace(self.path)
                return True
            except OSError as e:
                logger.error(f"Failed to save local cache to {self.path}: {e}")
                return False

    def load(self) -> dict | None:
        if not self.path.exists():
            return None
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load local cache from {self.path}: {e}")
            return None

    def clear(self) -> None:
        with self._lock:
            self.path.unlink(missing_ok=True)


class SyncPolicy:
    """Decides where state mutations go and tracks connectivity.

    Mode is OFFLINE after any remote call fails for connectivity reasons and
    flips back to ONLINE on the next successful remote read.
    """

    def __init__(self, cache: LocalCache, mode: SyncMode = SyncMode.ONLINE):
        self.cache = cache
        self._mode = mode
        self.last_error: NewsTimerError | None = None

    @property
    def mode(self) -> SyncMode:
        return self._mode

    @property
    def is_online(self) -> bool:
        return self._mode == SyncMode.ONLINE

    def write(self, operation: Callable[[], Any], snapshot: Callable[[], dict]) -> bool:
        """Attempt a remote write; on connectivity failure save locally.

        Returns True when the remote write succeeded. Rejections by the
        server (bad field, unknown source) return False without touching the
        cache or the mode; they are kept in `last_error`.
        """
        ok, _ = self._attempt_write(operation, snapshot)
        return ok

    def submit(self, operation: Callable[[], T], snapshot: Callable[[], dict]) -> T | None:
        """Like write(), but returns the operation's result (None on failure).

        A successful write never changes the mode; only reads bring the
        policy back online.
        """
        ok, value = self._attempt_write(operation, snapshot)
        return value if ok else None

    def _attempt_write(self, operation, snapshot) -> tuple[bool, Any]:
        try:
            value = operation()
        except NewsTimerError as e:
            self.last_error = e
            if not is_connectivity_error(e):
                logger.warning(f"Remote write rejected: {e.message}")
                return False, None
            logger.warning(f"Remote write failed, saving locally: {e.message}")
            self._go_offline()
            self.cache.save(snapshot())
            return False, None
        self.last_error = None
        return True, value

    def read(self, operation: Callable[[], T]) -> T | None:
        """Attempt a remote read; success means we are online again."""
        try:
            value = operation()
        except NewsTimerError as e:
            self.last_error = e
            if is_connectivity_error(e):
                self._go_offline()
            else:
                logger.warning(f"Remote read rejected: {e.message}")
            return None
        if self._mode == SyncMode.OFFLINE:
            logger.info("Remote store reachable again, back online")
        self._mode = SyncMode.ONLINE
        self.last_error = None
        return value

    def save_local(self, snapshot: dict) -> bool:
        return self.cache.save(snapshot)

    def _go_offline(self) -> None:
        if self._mode == SyncMode.ONLINE:
            logger.warning("Remote store unreachable, switching to offline mode")
        self._mode = SyncMode.OFFLINE
