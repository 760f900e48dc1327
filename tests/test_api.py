"""Endpoint tests through FastAPI's TestClient with a temporary database."""

import pytest
from fastapi.testclient import TestClient

from news_timer.config import Settings
from news_timer.main import create_app
from news_timer.store import UsageStore


def make_settings(tmp_path, env="production", seed_defaults=False) -> Settings:
    return Settings(
        db_path=tmp_path / "api.db",
        env=env,
        port=7780,
        api_url="http://testserver",
        cache_path=tmp_path / "cache.json",
        timeout=5,
        seed_defaults=seed_defaults,
    )


def make_client(settings: Settings) -> TestClient:
    store = UsageStore(settings.db_path, seed_defaults=settings.seed_defaults)
    return TestClient(create_app(settings=settings, store=store))


@pytest.fixture
def client(tmp_path):
    with make_client(make_settings(tmp_path)) as c:
        yield c


@pytest.fixture
def dev_client(tmp_path):
    with make_client(make_settings(tmp_path, env="development")) as c:
        yield c


def add(client, name, **extra):
    response = client.post("/api/sources", json={"name": name, **extra})
    assert response.status_code == 201, response.text
    return response.json()


# ============ Health / logs ============

class TestHealth:
    def test_health(self, client):
        data = client.get("/api/health").json()
        assert data["status"] == "OK"
        assert data["version"] == "2.0.0"
        assert data["environment"] == "production"
        assert data["timestamp"]

    def test_recent_logs(self, client):
        add(client, "Logged Source")
        data = client.get("/api/logs/recent", params={"limit": 100}).json()
        assert data["count"] == len(data["logs"])
        assert any("logged-source" in entry["message"] for entry in data["logs"])


# ============ Sources ============

class TestSources:
    def test_seeded_sources(self, tmp_path):
        with make_client(make_settings(tmp_path, seed_defaults=True)) as c:
            sources = c.get("/api/sources").json()
        assert len(sources) == 6
        assert sources[0]["key"] == "bbc-football"

    def test_add_source_defaults(self, client):
        created = add(client, "BBC Sport")
        assert created["key"] == "bbc-sport"
        assert created["icon"] == "📰"
        assert created["allocated"] == 300
        assert created["used"] == 0

    def test_duplicate_is_400_conflict(self, client):
        add(client, "BBC Sport")
        response = client.post("/api/sources", json={"name": "BBC Sport"})
        assert response.status_code == 400
        assert response.json()["code"] == "CONFLICT"

    def test_missing_name_is_400(self, client):
        response = client.post("/api/sources", json={"icon": "⚽"})
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_update_allocation(self, client):
        add(client, "CNN")
        response = client.put("/api/sources/cnn/allocation", json={"allocation": 600})
        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert client.get("/api/sources").json()[0]["allocated"] == 600

    def test_allocation_out_of_range(self, client):
        add(client, "CNN")
        response = client.put("/api/sources/cnn/allocation", json={"allocation": 30})
        assert response.status_code == 400

    def test_allocation_must_be_integer(self, client):
        add(client, "CNN")
        response = client.put("/api/sources/cnn/allocation", json={"allocation": "600"})
        assert response.status_code == 400

    def test_allocation_unknown_source(self, client):
        response = client.put("/api/sources/nope/allocation", json={"allocation": 600})
        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "Source not found"
        assert body["code"] == "NOT_FOUND"
        assert "debug" not in body

    def test_delete_source(self, client):
        add(client, "CNN")
        client.post("/api/usage", json={"sourceKey": "cnn", "timeUsed": 60, "sessions": 0})
        assert client.delete("/api/sources/cnn").json() == {"success": True}
        assert client.get("/api/sources").json() == []
        assert client.get("/api/stats").json()["sourcesUsed"] == 0
        assert client.delete("/api/sources/cnn").status_code == 404


# ============ Usage / stats / reset ============

class TestUsage:
    def test_bbc_scenario(self, client):
        add(client, "BBC Sport")
        response = client.post(
            "/api/usage",
            json={"sourceKey": "bbc-sport", "timeUsed": 301, "sessions": 1, "overrunTime": 1},
        )
        assert response.status_code == 200

        source = client.get("/api/sources").json()[0]
        assert source["used"] == 301
        assert source["sessions"] == 1
        assert source["overrunTime"] == 1

        stats = client.get("/api/stats").json()
        assert stats == {
            "totalTimeUsed": 301,
            "totalSessions": 1,
            "totalOverrun": 1,
            "sourcesUsed": 1,
            "averageSessionTime": 301,
        }

    def test_usage_overwrites(self, client):
        add(client, "BBC")
        client.post("/api/usage", json={"sourceKey": "bbc", "timeUsed": 100, "sessions": 1})
        client.post("/api/usage", json={"sourceKey": "bbc", "timeUsed": 40, "sessions": 1})
        assert client.get("/api/stats").json()["totalTimeUsed"] == 40

    def test_usage_unknown_source(self, client):
        response = client.post("/api/usage", json={"sourceKey": "nope", "timeUsed": 1, "sessions": 0})
        assert response.status_code == 404

    def test_usage_negative(self, client):
        add(client, "BBC")
        response = client.post("/api/usage", json={"sourceKey": "bbc", "timeUsed": -5, "sessions": 0})
        assert response.status_code == 400

    def test_reset_clears_today_only(self, client):
        add(client, "BBC")
        add(client, "CNN")
        client.post("/api/usage", json={"sourceKey": "bbc", "timeUsed": 120, "sessions": 1})
        client.post("/api/usage", json={"sourceKey": "cnn", "timeUsed": 30, "sessions": 0})
        client.put("/api/settings", json={"totalTimeLimit": 900, "autoStart": True})

        assert client.post("/api/reset").json() == {"success": True}

        assert client.get("/api/stats").json() == {
            "totalTimeUsed": 0,
            "totalSessions": 0,
            "totalOverrun": 0,
            "sourcesUsed": 0,
            "averageSessionTime": 0,
        }
        assert [s["key"] for s in client.get("/api/sources").json()] == ["bbc", "cnn"]
        assert client.get("/api/settings").json() == {"totalTimeLimit": 900, "autoStart": True}


# ============ Settings ============

class TestSettings:
    def test_defaults(self, client):
        assert client.get("/api/settings").json() == {"totalTimeLimit": 1800, "autoStart": False}

    def test_update(self, client):
        response = client.put("/api/settings", json={"totalTimeLimit": 600, "autoStart": True})
        assert response.json() == {"success": True}
        assert client.get("/api/settings").json() == {"totalTimeLimit": 600, "autoStart": True}

    def test_below_minimum_is_400(self, client):
        response = client.put("/api/settings", json={"totalTimeLimit": 50, "autoStart": False})
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["timestamp"]
        assert client.get("/api/settings").json()["totalTimeLimit"] == 1800

    def test_auto_start_must_be_boolean(self, client):
        response = client.put("/api/settings", json={"totalTimeLimit": 600, "autoStart": "true"})
        assert response.status_code == 400


# ============ Development mode ============

class TestDevelopmentErrors:
    def test_debug_details_in_development(self, dev_client):
        response = dev_client.put("/api/sources/nope/allocation", json={"allocation": 600})
        assert response.status_code == 404
        debug = response.json()["debug"]
        assert debug["name"] == "NotFoundError"
        assert "Source not found" in debug["originalMessage"]
