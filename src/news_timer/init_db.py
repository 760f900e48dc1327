#!/usr/bin/env python3
"""
Initialize the SQLite database with required tables and seed data.
Run this script standalone or let the FastAPI app initialize on first request.
"""

import sqlite3
from pathlib import Path

from .config import get_settings
from .store import (
    BUSY_TIMEOUT_MS,
    SCHEMA,
    SEED_SETTINGS_SQL,
    SEED_SOURCE_SQL,
    pending_migrations,
    seed_settings_row,
    seed_source_rows,
)


def init_database(db_path: Path | None = None, seed_defaults: bool = True) -> Path:
    """Create or migrate tables (and default rows on an empty database). Returns the path used."""
    db_path = Path(db_path or get_settings().db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()

        # WAL lets the TUI/CLI read while the server writes
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")

        for statement in SCHEMA:
            cursor.execute(statement)

        cursor.execute("PRAGMA table_info(news_sources)")
        columns = [col[1] for col in cursor.fetchall()]
        for statement in pending_migrations(columns):
            cursor.execute(statement)
            print(f"Migrated: {statement}")

        if seed_defaults:
            cursor.execute("SELECT COUNT(*) FROM news_sources")
            if cursor.fetchone()[0] == 0:
                cursor.executemany(SEED_SOURCE_SQL, seed_source_rows())
            cursor.execute("SELECT COUNT(*) FROM user_settings")
            if cursor.fetchone()[0] == 0:
                cursor.execute(SEED_SETTINGS_SQL, seed_settings_row())

        conn.commit()
    finally:
        conn.close()
    return db_path


if __name__ == "__main__":
    path = init_database()
    print(f"Database initialized at {path}")
    print("Tables created: news_sources, daily_usages, user_settings")
