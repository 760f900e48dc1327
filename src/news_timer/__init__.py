"""News Timer: daily reading time budget across news sources.

The timer and allocation logic are pure; the FastAPI server persists
sources, daily usage and settings in SQLite.
"""

from .allocation import DailyStats, compute_daily_stats, distribute_evenly, source_key
from .config import VERSION
from .errors import (
    ConflictError,
    InternalError,
    NewsTimerError,
    NoSourcesError,
    NotFoundError,
    StoreUnavailable,
    ValidationError,
)
from .sync import LocalCache, SyncMode, SyncPolicy
from .timer import NewsTimer, SourceTimer, TimerEvent, TimerResult, TimerState

__version__ = VERSION

__all__ = [
    "ConflictError",
    "DailyStats",
    "InternalError",
    "LocalCache",
    "NewsTimer",
    "NewsTimerError",
    "NoSourcesError",
    "NotFoundError",
    "SourceTimer",
    "StoreUnavailable",
    "SyncMode",
    "SyncPolicy",
    "TimerEvent",
    "TimerResult",
    "TimerState",
    "ValidationError",
    "compute_daily_stats",
    "distribute_evenly",
    "source_key",
]
