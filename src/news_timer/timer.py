"""News timer state machine. Pure logic, no I/O.

All time values are integer seconds. The machine never talks to the network
or the clock: callers feed it ticks and user actions, and every operation
returns a TimerResult describing events and the persistence work the caller
should perform.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from enum import Enum

from .allocation import overrun_seconds, remaining_seconds
from .config import DEFAULT_ICON, DEFAULT_TIME_LIMIT, FLUSH_EVERY_TICKS


class TimerState(str, Enum):
    IDLE = "idle"
    SELECTED = "selected"
    RUNNING = "running"
    PAUSED = "paused"
    DAILY_LIMIT_REACHED = "daily_limit_reached"


class TimerEvent(Enum):
    STARTED = "started"
    PAUSED = "paused"
    ALLOCATION_REACHED = "allocation_reached"
    DAILY_LIMIT_REACHED = "daily_limit_reached"
    RESET = "reset"
    STATE_CHANGED = "state_changed"


@dataclass
class SourceTimer:
    allocated: int
    used: int = 0
    sessions: int = 0
    overrun: int = 0
    name: str | None = None
    icon: str = DEFAULT_ICON


@dataclass
class TimerResult:
    events: list[TimerEvent] = field(default_factory=list)
    old_state: TimerState | None = None
    # Source keys whose counters should be persisted
    flush: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    source_key: str | None = None

    def request_flush(self, key: str | None) -> None:
        if key is not None and key not in self.flush:
            self.flush.append(key)

    def extend(self, other: TimerResult) -> None:
        """Fold another result (from a nested transition) into this one."""
        for event in other.events:
            if event not in self.events:
                self.events.append(event)
        for key in other.flush:
            self.request_flush(key)
        self.warnings.extend(other.warnings)
        if other.source_key is not None:
            self.source_key = other.source_key


def sources_from_api(rows: Iterable[Mapping]) -> dict[str, SourceTimer]:
    """Build source timers from GET /api/sources payload rows (camelCase)."""
    sources: dict[str, SourceTimer] = {}
    for row in rows:
        sources[row["key"]] = SourceTimer(
            allocated=int(row.get("allocated", 0)),
            used=int(row.get("used", 0)),
            sessions=int(row.get("sessions", 0)),
            overrun=int(row.get("overrunTime") or 0),
            name=row.get("name"),
            icon=row.get("icon") or DEFAULT_ICON,
        )
    return sources


class NewsTimer:
    """Single-active-source reading timer.

    One source at a time accumulates time. Running past a source's
    allocation is allowed (overrun); reaching the daily limit stops
    everything until reset().
    """

    def __init__(
        self,
        total_time_limit: int = DEFAULT_TIME_LIMIT,
        auto_start: bool = False,
        flush_every: int = FLUSH_EVERY_TICKS,
    ):
        self._sources: dict[str, SourceTimer] = {}
        self._state: TimerState = TimerState.IDLE
        self._current_key: str | None = None
        self._daily_used: int = 0
        self._total_time_limit: int = total_time_limit
        self._auto_start: bool = auto_start
        self._flush_every: int = flush_every
        # Set once ALLOCATION_REACHED has fired for the current run
        self._allocation_notified: bool = False
        # Bumped by reset() so flushes queued before it can be recognised
        self._generation: int = 0

    # ---- Read-only properties ----

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def current_source_key(self) -> str | None:
        return self._current_key

    @property
    def daily_used_seconds(self) -> int:
        return self._daily_used

    @property
    def total_time_limit(self) -> int:
        return self._total_time_limit

    @property
    def auto_start(self) -> bool:
        return self._auto_start

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_running(self) -> bool:
        return self._state == TimerState.RUNNING

    @property
    def remaining_seconds(self) -> int:
        return remaining_seconds(self._total_time_limit, self._daily_used)

    @property
    def limit_reached(self) -> bool:
        return self._daily_used >= self._total_time_limit

    @property
    def source_keys(self) -> list[str]:
        return list(self._sources)

    def source(self, key: str) -> SourceTimer | None:
        return self._sources.get(key)

    # ---- Loading ----

    def load(
        self,
        sources: Mapping[str, SourceTimer],
        total_time_limit: int | None = None,
        auto_start: bool | None = None,
    ) -> None:
        """Replace all state, e.g. on startup or when restoring the offline cache."""
        self._sources = {key: SourceTimer(**asdict(timer)) for key, timer in sources.items()}
        if total_time_limit is not None:
            self._total_time_limit = int(total_time_limit)
        if auto_start is not None:
            self._auto_start = bool(auto_start)
        self._current_key = None
        self._allocation_notified = False
        self._recount_daily_used()
        self._state = TimerState.DAILY_LIMIT_REACHED if self.limit_reached else TimerState.IDLE

    def merge_remote(self, sources: Mapping[str, SourceTimer]) -> None:
        """Apply a background read of the source list.

        While running, the current source keeps its local counters: a remote
        read can only be older than what the tick has accumulated.
        """
        keep_current = self._state == TimerState.RUNNING and self._current_key in self._sources
        merged: dict[str, SourceTimer] = {}
        for key, remote in sources.items():
            if keep_current and key == self._current_key:
                merged[key] = self._sources[key]
            else:
                merged[key] = SourceTimer(**asdict(remote))
        if keep_current and self._current_key not in merged:
            merged[self._current_key] = self._sources[self._current_key]

        self._sources = merged
        if self._current_key is not None and self._current_key not in merged:
            self._current_key = None
            if self._state in (TimerState.SELECTED, TimerState.PAUSED):
                self._state = TimerState.IDLE
        self._recount_daily_used()

    # ---- User actions ----

    def select_source(self, key: str) -> TimerResult:
        """Make `key` the active source and start it.

        A different running source is paused (and flushed) first.
        """
        result = TimerResult(old_state=self._state, source_key=key)
        if key not in self._sources:
            result.warnings.append(f"Unknown source: {key}")
            return result
        if self._state == TimerState.RUNNING and key == self._current_key:
            return result
        if self._state == TimerState.DAILY_LIMIT_REACHED:
            result.warnings.append("Daily time limit reached! Please reset.")
            return result

        if self._state == TimerState.RUNNING:
            result.extend(self.pause())

        self._current_key = key
        if self._state in (TimerState.IDLE, TimerState.PAUSED):
            self._state = TimerState.SELECTED
            result.events.append(TimerEvent.STATE_CHANGED)
        result.extend(self.start())
        result.source_key = key
        return result

    def start(self) -> TimerResult:
        result = TimerResult(old_state=self._state, source_key=self._current_key)
        if self._current_key is None:
            result.warnings.append("Please select a news source first.")
            return result
        # Terminal until reset(), even if the limit was raised since
        if self.limit_reached or self._state == TimerState.DAILY_LIMIT_REACHED:
            result.warnings.append("Daily time limit reached! Please reset.")
            if self._state != TimerState.DAILY_LIMIT_REACHED:
                self._state = TimerState.DAILY_LIMIT_REACHED
                result.events.append(TimerEvent.STATE_CHANGED)
            return result
        if self._state == TimerState.RUNNING:
            return result

        self._state = TimerState.RUNNING
        self._allocation_notified = False
        result.events.append(TimerEvent.STARTED)
        result.events.append(TimerEvent.STATE_CHANGED)
        return result

    def pause(self) -> TimerResult:
        result = TimerResult(old_state=self._state, source_key=self._current_key)
        if self._state != TimerState.RUNNING:
            return result
        self._state = TimerState.PAUSED
        result.events.append(TimerEvent.PAUSED)
        result.events.append(TimerEvent.STATE_CHANGED)
        result.request_flush(self._current_key)
        return result

    def reset(self) -> TimerResult:
        """Zero today's counters locally. The caller clears the remote copy."""
        result = TimerResult(old_state=self._state)
        for timer in self._sources.values():
            timer.used = 0
            timer.sessions = 0
            timer.overrun = 0
        self._daily_used = 0
        self._current_key = None
        self._allocation_notified = False
        self._generation += 1
        if self._state != TimerState.IDLE:
            result.events.append(TimerEvent.STATE_CHANGED)
        self._state = TimerState.IDLE
        result.events.insert(0, TimerEvent.RESET)
        return result

    # ---- Tick ----

    def tick(self) -> TimerResult:
        """Advance the running source by one second."""
        if self._state != TimerState.RUNNING or self._current_key is None:
            return TimerResult(old_state=self._state)

        key = self._current_key
        result = TimerResult(old_state=self._state, source_key=key)
        timer = self._sources[key]

        self._daily_used += 1
        timer.used += 1
        timer.overrun = overrun_seconds(timer.used, timer.allocated)

        if self._daily_used % self._flush_every == 0:
            result.request_flush(key)

        # Soft limit: notify once per run, keep running
        if timer.used >= timer.allocated and not self._allocation_notified:
            self._allocation_notified = True
            timer.sessions += 1
            result.events.append(TimerEvent.ALLOCATION_REACHED)

        # Hard limit
        if self.limit_reached:
            self._state = TimerState.DAILY_LIMIT_REACHED
            result.events.append(TimerEvent.DAILY_LIMIT_REACHED)
            result.events.append(TimerEvent.STATE_CHANGED)
            result.request_flush(key)

        return result

    # ---- Source and settings edits ----

    def add_source(self, key: str, allocated: int, name: str | None = None, icon: str = DEFAULT_ICON) -> None:
        if key not in self._sources:
            self._sources[key] = SourceTimer(allocated=allocated, name=name, icon=icon)

    def remove_source(self, key: str) -> TimerResult:
        result = TimerResult(old_state=self._state, source_key=key)
        if key not in self._sources:
            return result
        if key == self._current_key:
            if self._state == TimerState.RUNNING:
                result.extend(self.pause())
                # Nothing left to persist for a deleted source
                result.flush.clear()
            self._current_key = None
            if self._state in (TimerState.SELECTED, TimerState.PAUSED):
                self._state = TimerState.IDLE
                result.events.append(TimerEvent.STATE_CHANGED)
        del self._sources[key]
        self._recount_daily_used()
        return result

    def set_allocation(self, key: str, allocated: int) -> None:
        timer = self._sources.get(key)
        if timer is None:
            return
        timer.allocated = allocated
        timer.overrun = overrun_seconds(timer.used, allocated)
        if key == self._current_key and timer.used < allocated:
            self._allocation_notified = False

    def update_settings(self, total_time_limit: int | None = None, auto_start: bool | None = None) -> None:
        if total_time_limit is not None:
            self._total_time_limit = int(total_time_limit)
        if auto_start is not None:
            self._auto_start = bool(auto_start)

    # ---- Serialization ----

    def usage_payload(self, key: str) -> dict | None:
        """Body for POST /api/usage with the source's current counters."""
        timer = self._sources.get(key)
        if timer is None:
            return None
        return {
            "sourceKey": key,
            "timeUsed": timer.used,
            "sessions": timer.sessions,
            "overrunTime": overrun_seconds(timer.used, timer.allocated),
        }

    def snapshot(self) -> dict:
        """Full state for the local offline cache."""
        return {
            "sources": {key: asdict(timer) for key, timer in self._sources.items()},
            "settings": {
                "totalTimeLimit": self._total_time_limit,
                "autoStart": self._auto_start,
            },
            "dailyUsedSeconds": self._daily_used,
        }

    def restore(self, snapshot: Mapping) -> None:
        """Load state previously produced by snapshot()."""
        settings = snapshot.get("settings") or {}
        sources = {
            key: SourceTimer(**value) for key, value in (snapshot.get("sources") or {}).items()
        }
        self.load(
            sources,
            total_time_limit=settings.get("totalTimeLimit", self._total_time_limit),
            auto_start=settings.get("autoStart", self._auto_start),
        )

    def to_export_dict(self) -> dict:
        """CamelCase dict for display and export."""
        return {
            "state": self._state.value,
            "currentSource": self._current_key,
            "isRunning": self.is_running,
            "dailyUsedSeconds": self._daily_used,
            "totalTimeLimit": self._total_time_limit,
            "remainingSeconds": self.remaining_seconds,
            "autoStart": self._auto_start,
        }

    # ---- Internal ----

    def _recount_daily_used(self) -> None:
        self._daily_used = sum(timer.used for timer in self._sources.values())
