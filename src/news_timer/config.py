"""Configuration for the news timer server and clients.

Values come from the environment (optionally a .env file in the working
directory). Business bounds are plain module constants.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path.cwd() / ".env")

# Business rules
MIN_ALLOCATION = 60           # 1 minute
MAX_ALLOCATION = 3600         # 1 hour
DEFAULT_ALLOCATION = 300      # 5 minutes
MIN_TIME_LIMIT = 60           # 1 minute
MAX_TIME_LIMIT = 7200         # 2 hours
DEFAULT_TIME_LIMIT = 1800     # 30 minutes
DEFAULT_ICON = "📰"

FLUSH_EVERY_TICKS = 10
REFRESH_INTERVAL_SECONDS = 30

VERSION = "2.0.0"

DEFAULT_SOURCES = [
    {"key": "bbc-football", "name": "BBC Football", "icon": "⚽"},
    {"key": "bbc-headlines", "name": "BBC Headlines", "icon": "📰"},
    {"key": "rte-headlines", "name": "RTE Headlines", "icon": "📺"},
    {"key": "guardian-headlines", "name": "Guardian Headlines", "icon": "📰"},
    {"key": "guardian-opinion", "name": "Guardian Opinion", "icon": "💭"},
    {"key": "cnn", "name": "CNN", "icon": "🌍"},
]


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Runtime configuration, read from the environment at construction."""

    db_path: Path
    env: str
    port: int
    api_url: str
    cache_path: Path
    timeout: float
    seed_defaults: bool

    @property
    def is_development(self) -> bool:
        return self.env == "development"


def get_settings() -> Settings:
    """Build a Settings instance from the current environment."""
    home = Path.home() / ".news-timer"
    port = int(os.environ.get("NEWS_TIMER_PORT", "7780"))
    return Settings(
        db_path=Path(os.environ.get("NEWS_TIMER_DB", home / "news_timer.db")),
        env=os.environ.get("NEWS_TIMER_ENV", "production").lower(),
        port=port,
        api_url=os.environ.get("NEWS_TIMER_API_URL", f"http://localhost:{port}").rstrip("/"),
        cache_path=Path(os.environ.get("NEWS_TIMER_CACHE", home / "cache.json")),
        timeout=float(os.environ.get("NEWS_TIMER_TIMEOUT", "10")),
        seed_defaults=_env_bool("NEWS_TIMER_SEED_DEFAULTS", True),
    )
