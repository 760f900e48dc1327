"""Tests for UsageStore against a temporary SQLite database."""

import asyncio

import aiosqlite
import pytest
import pytest_asyncio

from news_timer.config import DEFAULT_SOURCES
from news_timer.errors import ConflictError, NotFoundError, StoreUnavailable, ValidationError
from news_timer.store import UsageStore

TODAY = "2026-03-01"


@pytest_asyncio.fixture
async def store(tmp_path):
    s = UsageStore(tmp_path / "news_timer.db", seed_defaults=False, today=lambda: TODAY)
    await s.ensure_initialized()
    return s


@pytest_asyncio.fixture
async def seeded(tmp_path):
    s = UsageStore(tmp_path / "seeded.db", seed_defaults=True, today=lambda: TODAY)
    await s.ensure_initialized()
    return s


# ── Init ──────────────────────────────────────────────────────


class TestInit:
    @pytest.mark.asyncio
    async def test_seeds_default_sources_and_settings(self, seeded):
        sources = await seeded.get_sources_with_usage()
        assert [s["key"] for s in sources] == [s["key"] for s in DEFAULT_SOURCES]
        assert all(s["allocated"] == 300 for s in sources)
        assert await seeded.get_settings() == {"totalTimeLimit": 1800, "autoStart": False}

    @pytest.mark.asyncio
    async def test_unseeded_settings_fall_back_to_defaults(self, store):
        assert await store.get_sources_with_usage() == []
        assert await store.get_settings() == {"totalTimeLimit": 1800, "autoStart": False}

    @pytest.mark.asyncio
    async def test_concurrent_init_seeds_once(self, tmp_path):
        s = UsageStore(tmp_path / "race.db", seed_defaults=True, today=lambda: TODAY)
        await asyncio.gather(*(s.ensure_initialized() for _ in range(5)))
        assert len(await s.get_sources_with_usage()) == len(DEFAULT_SOURCES)

    @pytest.mark.asyncio
    async def test_reinit_on_existing_db_does_not_reseed(self, seeded):
        await seeded.delete_source("cnn")
        again = UsageStore(seeded.db_path, seed_defaults=True, today=lambda: TODAY)
        await again.ensure_initialized()
        keys = [s["key"] for s in await again.get_sources_with_usage()]
        assert "cnn" not in keys

    @pytest.mark.asyncio
    async def test_migrates_old_schema(self, tmp_path):
        db_path = tmp_path / "old.db"
        async with aiosqlite.connect(db_path) as db:
            await db.execute(
                """CREATE TABLE news_sources (
                       id INTEGER PRIMARY KEY AUTOINCREMENT,
                       key TEXT UNIQUE NOT NULL,
                       name TEXT NOT NULL,
                       icon TEXT NOT NULL,
                       default_allocation INTEGER DEFAULT 300,
                       is_active INTEGER DEFAULT 1,
                       created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                   )"""
            )
            await db.commit()
        s = UsageStore(db_path, seed_defaults=False, today=lambda: TODAY)
        created = await s.add_source("Le Monde", url="https://www.lemonde.fr")
        assert created["faviconUrl"].endswith("domain=www.lemonde.fr&sz=32")

    @pytest.mark.asyncio
    async def test_unopenable_database_is_unavailable(self, tmp_path):
        # A directory cannot be opened as a database file
        s = UsageStore(tmp_path, seed_defaults=False, today=lambda: TODAY)
        with pytest.raises(StoreUnavailable):
            await s.ensure_initialized()


# ── Sources ───────────────────────────────────────────────────


class TestSources:
    @pytest.mark.asyncio
    async def test_add_source_defaults(self, store):
        created = await store.add_source("BBC Sport")
        assert created == {
            "key": "bbc-sport",
            "name": "BBC Sport",
            "icon": "📰",
            "url": None,
            "faviconUrl": None,
            "allocated": 300,
            "used": 0,
            "sessions": 0,
            "overrunTime": 0,
        }

    @pytest.mark.asyncio
    async def test_add_source_with_url(self, store):
        created = await store.add_source("BBC", icon="⚽", url="https://www.bbc.co.uk", allocation=600)
        assert created["faviconUrl"] == "https://www.google.com/s2/favicons?domain=www.bbc.co.uk&sz=32"
        assert created["allocated"] == 600
        assert created["icon"] == "⚽"

    @pytest.mark.asyncio
    async def test_duplicate_key_conflicts(self, store):
        await store.add_source("BBC Sport")
        with pytest.raises(ConflictError):
            await store.add_source("bbc sport")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [
        {"name": "  "},
        {"name": "X", "allocation": 59},
        {"name": "X", "allocation": 3601},
        {"name": "X", "url": "notaurl"},
    ])
    async def test_add_source_validation(self, store, kwargs):
        with pytest.raises(ValidationError):
            await store.add_source(**kwargs)

    @pytest.mark.asyncio
    async def test_update_allocation(self, store):
        await store.add_source("CNN")
        await store.update_source_allocation("cnn", 900)
        sources = await store.get_sources_with_usage()
        assert sources[0]["allocated"] == 900

    @pytest.mark.asyncio
    async def test_update_allocation_errors(self, store):
        await store.add_source("CNN")
        with pytest.raises(NotFoundError):
            await store.update_source_allocation("nope", 300)
        with pytest.raises(ValidationError):
            await store.update_source_allocation("cnn", 30)

    @pytest.mark.asyncio
    async def test_delete_cascades_usage(self, store):
        await store.add_source("CNN")
        await store.record_usage("cnn", 120, 1, 0)
        await store.delete_source("cnn")
        assert await store.get_source("cnn") is None
        assert await store.get_daily_usages() == []

    @pytest.mark.asyncio
    async def test_delete_unknown(self, store):
        with pytest.raises(NotFoundError):
            await store.delete_source("nope")


# ── Usage ─────────────────────────────────────────────────────


class TestUsage:
    @pytest.mark.asyncio
    async def test_upsert_overwrites(self, store):
        await store.add_source("BBC")
        await store.record_usage("bbc", 100, 1, 0)
        await store.record_usage("bbc", 50, 1, 0)
        sources = await store.get_sources_with_usage()
        assert sources[0]["used"] == 50
        assert len(await store.get_daily_usages()) == 1

    @pytest.mark.asyncio
    async def test_usage_is_per_day(self, store):
        await store.add_source("BBC")
        await store.record_usage("bbc", 100, 1, 0, day="2026-02-28")
        sources = await store.get_sources_with_usage()
        assert sources[0]["used"] == 0
        yesterday = await store.get_sources_with_usage("2026-02-28")
        assert yesterday[0]["used"] == 100

    @pytest.mark.asyncio
    async def test_unknown_source(self, store):
        with pytest.raises(NotFoundError):
            await store.record_usage("nope", 1, 0, 0)

    @pytest.mark.asyncio
    async def test_negative_values_rejected(self, store):
        await store.add_source("BBC")
        with pytest.raises(ValidationError):
            await store.record_usage("bbc", -1, 0, 0)

    @pytest.mark.asyncio
    async def test_daily_stats(self, store):
        await store.add_source("BBC")
        await store.add_source("CNN")
        await store.record_usage("bbc", 301, 1, 1)
        await store.record_usage("cnn", 99, 1, 0)
        stats = await store.get_daily_stats()
        assert stats.total_time_used == 400
        assert stats.total_sessions == 2
        assert stats.total_overrun == 1
        assert stats.sources_used == 2
        assert stats.average_session_time == 200

    @pytest.mark.asyncio
    async def test_clear_only_today(self, store):
        await store.add_source("BBC")
        await store.record_usage("bbc", 10, 0, 0)
        await store.record_usage("bbc", 20, 0, 0, day="2026-02-28")
        assert await store.clear_daily_usage() == 1
        assert await store.get_daily_usages() == []
        assert len(await store.get_daily_usages("2026-02-28")) == 1
        assert await store.get_source("bbc") is not None


# ── Settings ──────────────────────────────────────────────────


class TestSettings:
    @pytest.mark.asyncio
    async def test_update_and_read(self, store):
        await store.update_settings(900, True)
        assert await store.get_settings() == {"totalTimeLimit": 900, "autoStart": True}
        await store.update_settings(1200, False)
        assert await store.get_settings() == {"totalTimeLimit": 1200, "autoStart": False}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("total, auto", [(50, False), (7201, False), (600, "yes")])
    async def test_invalid_settings(self, store, total, auto):
        with pytest.raises(ValidationError):
            await store.update_settings(total, auto)
