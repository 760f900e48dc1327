"""SQLite-backed store for sources, daily usage rows and settings.

Every call opens its own aiosqlite connection (busy_timeout configured), so
the store can be shared by concurrent requests. Schema creation and seeding
run once per process behind an asyncio lock.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import date
from pathlib import Path
from urllib.parse import urlparse

import aiosqlite

from .allocation import (
    DailyStats,
    compute_daily_stats,
    favicon_url,
    source_key,
    validate_allocation,
    validate_time_limit,
)
from .config import DEFAULT_ALLOCATION, DEFAULT_ICON, DEFAULT_SOURCES, DEFAULT_TIME_LIMIT
from .errors import ConflictError, NotFoundError, StoreUnavailable, ValidationError

logger = logging.getLogger("news_timer")

BUSY_TIMEOUT_MS = 5000

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS news_sources (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        key TEXT UNIQUE NOT NULL,
        name TEXT NOT NULL,
        icon TEXT NOT NULL,
        url TEXT,
        favicon_url TEXT,
        default_allocation INTEGER DEFAULT 300,
        is_active INTEGER DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS daily_usages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        source_id INTEGER NOT NULL,
        date TEXT NOT NULL,
        time_used INTEGER DEFAULT 0,
        sessions INTEGER DEFAULT 0,
        overrun_time INTEGER DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (source_id) REFERENCES news_sources(id) ON DELETE CASCADE,
        UNIQUE(source_id, date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_settings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        total_time_limit INTEGER DEFAULT 1800,
        auto_start INTEGER DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_daily_usages_date ON daily_usages(date)",
]

# news_sources columns added after the first release
COLUMN_MIGRATIONS = [
    ("url", "ALTER TABLE news_sources ADD COLUMN url TEXT"),
    ("favicon_url", "ALTER TABLE news_sources ADD COLUMN favicon_url TEXT"),
]

SEED_SOURCE_SQL = "INSERT INTO news_sources (key, name, icon, default_allocation) VALUES (?, ?, ?, ?)"
SEED_SETTINGS_SQL = "INSERT INTO user_settings (total_time_limit, auto_start) VALUES (?, ?)"


def pending_migrations(columns) -> list[str]:
    """ALTER statements still needed, given the existing news_sources column names."""
    return [statement for column, statement in COLUMN_MIGRATIONS if column not in columns]


def seed_source_rows() -> list[tuple]:
    return [(s["key"], s["name"], s["icon"], DEFAULT_ALLOCATION) for s in DEFAULT_SOURCES]


def seed_settings_row() -> tuple:
    return (DEFAULT_TIME_LIMIT, 0)


def today_iso() -> str:
    return date.today().isoformat()


def _is_valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return bool(parsed.scheme and parsed.netloc)


def _source_response(row, usage=None) -> dict:
    """Map a news_sources row (+ optional usage columns) to the API shape."""
    return {
        "key": row["key"],
        "name": row["name"],
        "icon": row["icon"],
        "url": row["url"],
        "faviconUrl": row["favicon_url"],
        "allocated": row["default_allocation"],
        "used": usage["time_used"] if usage else 0,
        "sessions": usage["sessions"] if usage else 0,
        "overrunTime": usage["overrun_time"] if usage else 0,
    }


class UsageStore:
    def __init__(
        self,
        db_path: Path,
        seed_defaults: bool = True,
        today: Callable[[], str] = today_iso,
    ):
        self.db_path = Path(db_path)
        self.seed_defaults = seed_defaults
        self._today = today
        self._initialized = False
        self._init_lock = asyncio.Lock()

    # ── Connection / init ─────────────────────────────────────

    @asynccontextmanager
    async def connect(self):
        """Open a connection; sqlite operational failures become StoreUnavailable."""
        try:
            db = await aiosqlite.connect(self.db_path, timeout=BUSY_TIMEOUT_MS / 1000)
        except (sqlite3.OperationalError, OSError) as e:
            logger.error(f"Store: cannot open {self.db_path}: {e}")
            raise StoreUnavailable() from e
        try:
            db.row_factory = aiosqlite.Row
            await db.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
            await db.execute("PRAGMA foreign_keys=ON")
            yield db
        except sqlite3.OperationalError as e:
            logger.error(f"Store: operational error: {e}")
            raise StoreUnavailable() from e
        finally:
            await db.close()

    async def ensure_initialized(self) -> None:
        """Create schema and seed data exactly once, even under racing requests."""
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            async with self.connect() as db:
                await self._create_schema(db)
                await db.commit()
            self._initialized = True
            logger.info(f"Database initialized at {self.db_path}")

    async def _create_schema(self, db: aiosqlite.Connection) -> None:
        for statement in SCHEMA:
            await db.execute(statement)

        cursor = await db.execute("PRAGMA table_info(news_sources)")
        columns = [col[1] for col in await cursor.fetchall()]
        for statement in pending_migrations(columns):
            await db.execute(statement)

        if not self.seed_defaults:
            return

        cursor = await db.execute("SELECT COUNT(*) FROM news_sources")
        if (await cursor.fetchone())[0] == 0:
            await db.executemany(SEED_SOURCE_SQL, seed_source_rows())
            logger.info(f"Seeded {len(DEFAULT_SOURCES)} default sources")

        cursor = await db.execute("SELECT COUNT(*) FROM user_settings")
        if (await cursor.fetchone())[0] == 0:
            await db.execute(SEED_SETTINGS_SQL, seed_settings_row())

    # ── Sources ───────────────────────────────────────────────

    async def get_source(self, key: str) -> dict | None:
        await self.ensure_initialized()
        async with self.connect() as db:
            cursor = await db.execute("SELECT * FROM news_sources WHERE key = ?", (key,))
            row = await cursor.fetchone()
        return dict(row) if row else None

    async def get_sources_with_usage(self, day: str | None = None) -> list[dict]:
        """Active sources joined with their usage row for `day` (default today)."""
        await self.ensure_initialized()
        day = day or self._today()
        async with self.connect() as db:
            cursor = await db.execute(
                """SELECT ns.*, du.time_used, du.sessions, du.overrun_time
                   FROM news_sources ns
                   LEFT JOIN daily_usages du ON du.source_id = ns.id AND du.date = ?
                   WHERE ns.is_active = 1
                   ORDER BY ns.id""",
                (day,),
            )
            rows = await cursor.fetchall()
        return [
            _source_response(row, row if row["time_used"] is not None else None)
            for row in rows
        ]

    async def add_source(
        self,
        name: str,
        icon: str | None = None,
        url: str | None = None,
        allocation: int | None = None,
    ) -> dict:
        await self.ensure_initialized()
        name = (name or "").strip()
        if not name:
            raise ValidationError("name is required")
        icon = icon or DEFAULT_ICON
        allocation = DEFAULT_ALLOCATION if allocation is None else allocation
        validate_allocation(allocation)
        if url and not _is_valid_url(url):
            raise ValidationError("Invalid URL format")

        key = source_key(name)
        icon_url = favicon_url(url)
        async with self.connect() as db:
            cursor = await db.execute("SELECT id FROM news_sources WHERE key = ?", (key,))
            if await cursor.fetchone():
                raise ConflictError()
            try:
                await db.execute(
                    """INSERT INTO news_sources (key, name, icon, url, favicon_url, default_allocation)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (key, name, icon, url, icon_url, allocation),
                )
                await db.commit()
            except sqlite3.IntegrityError as e:
                raise ConflictError() from e

        logger.info(f"Source added: {key} ({allocation}s)")
        return {
            "key": key,
            "name": name,
            "icon": icon,
            "url": url,
            "faviconUrl": icon_url,
            "allocated": allocation,
            "used": 0,
            "sessions": 0,
            "overrunTime": 0,
        }

    async def update_source_allocation(self, key: str, allocation: int) -> None:
        await self.ensure_initialized()
        validate_allocation(allocation)
        async with self.connect() as db:
            cursor = await db.execute(
                "UPDATE news_sources SET default_allocation = ? WHERE key = ?",
                (allocation, key),
            )
            if cursor.rowcount == 0:
                raise NotFoundError()
            await db.commit()

    async def delete_source(self, key: str) -> None:
        """Delete a source and every usage row that references it."""
        await self.ensure_initialized()
        async with self.connect() as db:
            cursor = await db.execute("SELECT id FROM news_sources WHERE key = ?", (key,))
            row = await cursor.fetchone()
            if row is None:
                raise NotFoundError()
            await db.execute("DELETE FROM daily_usages WHERE source_id = ?", (row["id"],))
            await db.execute("DELETE FROM news_sources WHERE id = ?", (row["id"],))
            await db.commit()
        logger.info(f"Source deleted: {key}")

    # ── Usage ─────────────────────────────────────────────────

    async def record_usage(
        self,
        key: str,
        time_used: int,
        sessions: int,
        overrun_time: int = 0,
        day: str | None = None,
    ) -> None:
        """Upsert the (source, day) row. Counters are overwritten, never added."""
        await self.ensure_initialized()
        if time_used < 0 or sessions < 0 or overrun_time < 0:
            raise ValidationError("Usage values cannot be negative")
        day = day or self._today()
        async with self.connect() as db:
            cursor = await db.execute("SELECT id FROM news_sources WHERE key = ?", (key,))
            row = await cursor.fetchone()
            if row is None:
                raise NotFoundError()
            await db.execute(
                """INSERT INTO daily_usages (source_id, date, time_used, sessions, overrun_time)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(source_id, date) DO UPDATE SET
                       time_used = excluded.time_used,
                       sessions = excluded.sessions,
                       overrun_time = excluded.overrun_time""",
                (row["id"], day, time_used, sessions, overrun_time),
            )
            await db.commit()

    async def get_daily_usages(self, day: str | None = None) -> list[dict]:
        await self.ensure_initialized()
        day = day or self._today()
        async with self.connect() as db:
            cursor = await db.execute(
                """SELECT du.*, ns.key, ns.name, ns.icon, ns.default_allocation
                   FROM daily_usages du
                   JOIN news_sources ns ON du.source_id = ns.id
                   WHERE du.date = ?""",
                (day,),
            )
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def get_daily_stats(self, day: str | None = None) -> DailyStats:
        return compute_daily_stats(await self.get_daily_usages(day))

    async def clear_daily_usage(self, day: str | None = None) -> int:
        """Delete the usage rows for `day` (default today). Returns rows removed."""
        await self.ensure_initialized()
        day = day or self._today()
        async with self.connect() as db:
            cursor = await db.execute("DELETE FROM daily_usages WHERE date = ?", (day,))
            await db.commit()
            deleted = cursor.rowcount
        logger.info(f"Reset daily data for {day} ({deleted} rows)")
        return deleted

    # ── Settings ──────────────────────────────────────────────

    async def get_settings(self) -> dict:
        await self.ensure_initialized()
        async with self.connect() as db:
            cursor = await db.execute("SELECT * FROM user_settings ORDER BY id DESC LIMIT 1")
            row = await cursor.fetchone()
        if row is None:
            return {"totalTimeLimit": DEFAULT_TIME_LIMIT, "autoStart": False}
        return {"totalTimeLimit": row["total_time_limit"], "autoStart": bool(row["auto_start"])}

    async def update_settings(self, total_time_limit: int, auto_start: bool) -> None:
        await self.ensure_initialized()
        validate_time_limit(total_time_limit)
        if not isinstance(auto_start, bool):
            raise ValidationError("Auto start must be a boolean value")
        async with self.connect() as db:
            cursor = await db.execute("SELECT id FROM user_settings ORDER BY id DESC LIMIT 1")
            row = await cursor.fetchone()
            if row:
                await db.execute(
                    """UPDATE user_settings
                       SET total_time_limit = ?, auto_start = ?, updated_at = CURRENT_TIMESTAMP
                       WHERE id = ?""",
                    (total_time_limit, int(auto_start), row["id"]),
                )
            else:
                await db.execute(
                    "INSERT INTO user_settings (total_time_limit, auto_start) VALUES (?, ?)",
                    (total_time_limit, int(auto_start)),
                )
            await db.commit()
