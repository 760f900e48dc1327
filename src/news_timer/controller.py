"""
Timer controller: drives NewsTimer from a background scheduler.

The state machine in timer.py is pure; this adapter owns everything with a
side effect:
- a 1 s IntervalTrigger tick job while a source is running
- fire-and-forget one-shot flush jobs (POST /api/usage)
- a periodic background refresh of the source list
- remote writes routed through SyncPolicy, with the local cache as fallback

Every access to the timer happens under one lock, since the tick runs on a
scheduler worker thread and user actions arrive from the UI thread. A second
lock orders usage posts against the remote reset: a flush already sending
finishes before the server is cleared, and flushes queued before a reset
are dropped.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from . import allocation
from .allocation import compute_daily_stats, validate_allocation, validate_time_limit
from .client import ApiClient
from .config import REFRESH_INTERVAL_SECONDS, VERSION
from .errors import NewsTimerError, ValidationError
from .sync import LocalCache, SyncPolicy
from .timer import NewsTimer, TimerEvent, TimerResult, sources_from_api

logger = logging.getLogger(__name__)

TICK_JOB_ID = "news_timer_tick"
REFRESH_JOB_ID = "news_timer_refresh"

Notifier = Callable[[str, str], None]

_LEVELS = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def log_notification(message: str, level: str = "info") -> None:
    logger.log(_LEVELS.get(level, logging.INFO), message)


class TimerController:
    def __init__(
        self,
        client: ApiClient,
        cache: LocalCache,
        scheduler=None,
        notifier: Notifier | None = None,
        refresh_interval: int = REFRESH_INTERVAL_SECONDS,
        timer: NewsTimer | None = None,
    ):
        self.client = client
        self.timer = timer or NewsTimer()
        self.sync = SyncPolicy(cache)
        self.scheduler = scheduler or BackgroundScheduler()
        self.notifier: Notifier = notifier or log_notification
        self.refresh_interval = refresh_interval
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._tick_job = None
        self._refresh_job = None
        # Local reset done, remote clear still owed
        self._reset_pending = False

    # ---- Lifecycle ----

    def startup(self) -> bool:
        """Load state, start the scheduler and the background refresh."""
        cached = self.sync.cache.load()
        if cached and cached.get("resetPending"):
            self._reset_pending = True
        loaded = self.load()
        if not self.scheduler.running:
            self.scheduler.start()
        if self._refresh_job is None:
            self._refresh_job = self.scheduler.add_job(
                self.refresh,
                trigger=IntervalTrigger(seconds=self.refresh_interval),
                id=REFRESH_JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        return loaded

    def shutdown(self) -> None:
        """Pause (flushing the running source) and stop the scheduler."""
        with self._lock:
            result = self.timer.pause()
            self._stop_ticking()
            self._remove_job(self._refresh_job)
            self._refresh_job = None
        # The scheduler is going away, so the last flush runs inline
        for key in result.flush:
            self._flush(key)
        self.sync.save_local(self._snapshot())
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def load(self) -> bool:
        """Load sources and settings from the API, or the local cache when offline.

        Returns True when the data came from the server. While a source is
        running this is a refresh instead, so the session and its unflushed
        seconds survive.
        """
        with self._lock:
            running = self.timer.is_running
        if running:
            return self.refresh()

        rows = settings = None
        if self._clear_pending_reset():
            rows = self.sync.read(self.client.get_sources)
            settings = self.sync.read(self.client.get_settings) if rows is not None else None
        if rows is not None and settings is not None:
            with self._lock:
                self._stop_ticking()
                self.timer.load(
                    sources_from_api(rows),
                    total_time_limit=settings.get("totalTimeLimit"),
                    auto_start=settings.get("autoStart"),
                )
            logger.info(f"Loaded {len(rows)} sources from the API")
            return True

        snapshot = self.sync.cache.load()
        if snapshot:
            with self._lock:
                self._stop_ticking()
                self.timer.restore(snapshot)
                self._reset_pending = self._reset_pending or bool(snapshot.get("resetPending"))
            self.notifier("Offline: showing locally saved data", "warning")
        else:
            self.notifier(self._error_text("Could not load sources"), "error")
        return False

    # ---- User actions ----

    def select_source(self, key: str) -> TimerResult:
        with self._lock:
            result = self.timer.select_source(key)
            self._apply(result)
        return result

    def start(self) -> TimerResult:
        with self._lock:
            result = self.timer.start()
            self._apply(result)
        return result

    def pause(self) -> TimerResult:
        with self._lock:
            result = self.timer.pause()
            self._apply(result)
        return result

    def toggle(self) -> TimerResult:
        """Start if stopped, pause if running."""
        with self._lock:
            result = self.timer.pause() if self.timer.is_running else self.timer.start()
            self._apply(result)
        return result

    def reset(self) -> bool:
        """Zero today's data locally, clear it remotely, then resynchronise.

        The local zeroing always sticks. The reload only happens when the
        remote clear succeeded; otherwise the zeroed state is cached locally,
        the error is reported and the clear is retried on the next
        successful read.
        """
        with self._lock:
            self._apply(self.timer.reset())
            self._reset_pending = True
        cleared = self._clear_pending_reset()
        if cleared:
            self.load()
            self.notifier("Daily data has been reset", "info")
            return True

        self.sync.save_local(self._snapshot())
        self.notifier(self._error_text("Reset saved locally but the server was not cleared"), "error")
        return False

    def clear_all_data(self) -> bool:
        """Reset today and drop the offline cache."""
        cleared = self.reset()
        if cleared:
            self.sync.cache.clear()
        return cleared

    def update_settings(self, total_time_limit: int, auto_start: bool) -> bool:
        validate_time_limit(total_time_limit)
        if not isinstance(auto_start, bool):
            raise ValidationError("Auto start must be a boolean value")
        with self._lock:
            self.timer.update_settings(total_time_limit, auto_start)
        ok = self.sync.write(
            lambda: self.client.update_settings(total_time_limit, auto_start), self._snapshot
        )
        self._report_write(ok, "Settings saved")
        return ok

    def set_allocation(self, key: str, allocated: int) -> bool:
        validate_allocation(allocated)
        with self._lock:
            if self.timer.source(key) is None:
                self.notifier(f"Unknown source: {key}", "warning")
                return False
            self.timer.set_allocation(key, allocated)
        ok = self.sync.write(
            lambda: self.client.update_source_allocation(key, allocated), self._snapshot
        )
        self._report_write(ok)
        return ok

    def distribute_evenly(self, total_minutes: int) -> dict[str, int]:
        """Split `total_minutes` across all sources and persist each allocation.

        Nothing changes when any resulting allocation would be out of range.
        """
        with self._lock:
            allocations = allocation.distribute_evenly(total_minutes, self.timer.source_keys)
        for allocated in allocations.values():
            validate_allocation(allocated)

        with self._lock:
            for key, allocated in allocations.items():
                self.timer.set_allocation(key, allocated)
        failed = []
        for key, allocated in allocations.items():
            if not self.sync.write(
                lambda key=key, allocated=allocated: self.client.update_source_allocation(key, allocated),
                self._snapshot,
            ):
                failed.append(key)
        if failed:
            self._report_write(False)
        else:
            self.notifier(f"Distributed {total_minutes} minutes across {len(allocations)} sources", "info")
        return allocations

    def add_source(self, name: str, icon: str | None = None, url: str | None = None) -> dict | None:
        """Create a source on the server, then redistribute the daily limit."""
        created = self.sync.submit(lambda: self.client.add_source(name, icon=icon, url=url), self._snapshot)
        if created is None:
            self.notifier(self._error_text("Could not add source"), "error")
            return None

        with self._lock:
            self.timer.add_source(
                created["key"], created["allocated"], name=created.get("name"), icon=created.get("icon")
            )
            total_minutes = self.timer.total_time_limit // 60
        try:
            self.distribute_evenly(total_minutes)
        except ValidationError as e:
            self.notifier(f"Kept existing allocations: {e.message}", "warning")
        self.notifier(f"Added {created.get('name', created['key'])}", "info")
        return created

    def delete_source(self, key: str) -> bool:
        """Delete remotely first; the local source only goes away on success."""
        ok = self.sync.write(lambda: self.client.delete_source(key), self._snapshot)
        if not ok:
            self.notifier(self._error_text(f"Could not delete {key}"), "error")
            return False
        with self._lock:
            self._apply(self.timer.remove_source(key))
        return True

    def refresh(self) -> bool:
        """Background read of the source list.

        Coming back online, an owed remote reset is sent first, then local
        counters are pushed (they accumulated while the server was
        unreachable) and the merge waits for the next refresh.
        """
        was_offline = not self.sync.is_online
        had_pending_reset = self._reset_pending
        rows = self.sync.read(self.client.get_sources)
        if rows is None:
            return False
        if not self._clear_pending_reset():
            return False
        with self._lock:
            if was_offline or had_pending_reset:
                for key in self.timer.source_keys:
                    timer = self.timer.source(key)
                    if timer.used or timer.sessions:
                        self._schedule_flush(key)
                return True
            self.timer.merge_remote(sources_from_api(rows))
        return True

    # ---- Export / import ----

    def export_data(self) -> dict:
        with self._lock:
            sources = []
            for key in self.timer.source_keys:
                timer = self.timer.source(key)
                sources.append({
                    "key": key,
                    "name": timer.name,
                    "icon": timer.icon,
                    "allocated": timer.allocated,
                    "used": timer.used,
                    "sessions": timer.sessions,
                    "overrunTime": timer.overrun,
                })
            used_rows = [row for row in sources if row["used"] or row["sessions"]]
            return {
                "version": VERSION,
                "exportDate": datetime.now().isoformat(),
                "sources": sources,
                "settings": {
                    "totalTimeLimit": self.timer.total_time_limit,
                    "autoStart": self.timer.auto_start,
                },
                "stats": compute_daily_stats(used_rows).to_export_dict(),
            }

    def import_data(self, data: dict) -> int:
        """Apply settings and allocations from an export, then reload.

        Sources that do not exist here are skipped. Returns the number of
        allocations applied.
        """
        if not isinstance(data, dict):
            raise ValidationError("Invalid import file")
        settings = data.get("settings")
        if isinstance(settings, dict) and "totalTimeLimit" in settings:
            self.update_settings(int(settings["totalTimeLimit"]), bool(settings.get("autoStart", False)))

        applied = 0
        for row in data.get("sources") or []:
            key = row.get("key")
            if key is None or row.get("allocated") is None:
                continue
            with self._lock:
                known = self.timer.source(key) is not None
            if known and self.set_allocation(key, int(row["allocated"])):
                applied += 1
        self.load()
        return applied

    # ---- Display ----

    def view(self) -> dict:
        """Consistent copy of everything a front end needs to draw."""
        with self._lock:
            data = self.timer.to_export_dict()
            data["mode"] = self.sync.mode.value
            data["sources"] = [
                {
                    "key": key,
                    "name": self.timer.source(key).name or key,
                    "icon": self.timer.source(key).icon,
                    "allocated": self.timer.source(key).allocated,
                    "used": self.timer.source(key).used,
                    "sessions": self.timer.source(key).sessions,
                    "overrun": self.timer.source(key).overrun,
                }
                for key in self.timer.source_keys
            ]
        return data

    # ---- Scheduler plumbing ----

    def _on_tick(self) -> None:
        with self._lock:
            self._apply(self.timer.tick())

    def _apply(self, result: TimerResult) -> None:
        """Carry out the side effects a transition asked for. Caller holds the lock."""
        for warning in result.warnings:
            self.notifier(warning, "warning")

        for event in result.events:
            if event == TimerEvent.STARTED:
                self._start_ticking()
            elif event in (TimerEvent.PAUSED, TimerEvent.RESET):
                self._stop_ticking()
            elif event == TimerEvent.DAILY_LIMIT_REACHED:
                self._stop_ticking()
                self.notifier("Daily time limit reached! Timer stopped.", "warning")
            elif event == TimerEvent.ALLOCATION_REACHED:
                timer = self.timer.source(result.source_key)
                name = timer.name if timer and timer.name else result.source_key
                self.notifier(f"Time's up for {name}! Consider switching sources.", "warning")

        for key in result.flush:
            self._schedule_flush(key)

    def _start_ticking(self) -> None:
        if self._tick_job is not None:
            return
        self._tick_job = self.scheduler.add_job(
            self._on_tick,
            trigger=IntervalTrigger(seconds=1),
            id=TICK_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def _stop_ticking(self) -> None:
        self._remove_job(self._tick_job)
        self._tick_job = None

    @staticmethod
    def _remove_job(job) -> None:
        if job is None:
            return
        try:
            job.remove()
        except JobLookupError:
            pass

    def _schedule_flush(self, key: str) -> None:
        """Queue a one-shot flush. Caller holds the lock."""
        self.scheduler.add_job(self._flush, args=[key, self.timer.generation], name=f"flush_{key}")

    def _flush(self, key: str, generation: int | None = None) -> bool:
        """Send the source's counters as they are now (idempotent overwrite).

        A flush queued before a reset (older `generation`) is dropped.
        """
        with self._write_lock:
            with self._lock:
                if generation is not None and generation != self.timer.generation:
                    logger.debug(f"Dropping flush of {key} queued before reset")
                    return False
                payload = self.timer.usage_payload(key)
            if payload is None:
                return False
            was_online = self.sync.is_online
            ok = self.sync.write(lambda: self.client.record_usage(payload), self._snapshot)
        if not ok and was_online:
            self._report_write(False)
        return ok

    def _clear_pending_reset(self) -> bool:
        """Send an owed remote reset. True when nothing is owed any more."""
        if not self._reset_pending:
            return True
        with self._write_lock:
            cleared = self.sync.write(self.client.reset, self._snapshot)
        if cleared:
            with self._lock:
                self._reset_pending = False
            logger.info("Remote daily data cleared")
        return cleared

    def _snapshot(self) -> dict:
        with self._lock:
            snapshot = self.timer.snapshot()
            snapshot["resetPending"] = self._reset_pending
            return snapshot

    def _report_write(self, ok: bool, success_message: str | None = None) -> None:
        if ok:
            if success_message:
                self.notifier(success_message, "info")
        elif not self.sync.is_online:
            self.notifier("Server unreachable, changes saved locally", "warning")
        else:
            self.notifier(self._error_text("Server rejected the change"), "error")

    def _error_text(self, prefix: str) -> str:
        error: NewsTimerError | None = self.sync.last_error
        return f"{prefix}: {error.message}" if error else prefix
