from pathlib import Path

import pytest
import yaml
from fastapi.testclient import TestClient

from ecowire.admin import ADMIN_COOKIE_NAME, app
from ecowire.models import JobResult
from ecowire.scheduler import JobScheduler


def _write_config(tmp_path: Path) -> Path:
    config = {
        "app": {"name": "EcoWire", "timezone": "UTC"},
        "paths": {"state_db": str(tmp_path / "data" / "state.sqlite3")},
        "http": {"timeout_seconds": 5, "max_retries": 0, "backoff_seconds": 0.0},
    }
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text(yaml.safe_dump(config), encoding="utf-8")
    return cfg_path


@pytest.fixture(autouse=True)
def _fresh_app(tmp_path, monkeypatch):
    monkeypatch.setenv("EW_CONFIG_PATH", str(_write_config(tmp_path)))
    monkeypatch.setattr(app.state, "scheduler", None, raising=False)


def _stub_scheduler(calls):
    def body(job_id):
        def run():
            calls.append(job_id)
            return JobResult(job_id=job_id, status="ok", inserted=2)

        return run

    scheduler = JobScheduler(aliases={"rss": "feed_ingestion"}, run_last=["retention_cleanup"])
    scheduler.register("feed_ingestion", "0 */4 * * *", body("feed_ingestion"))
    scheduler.register("retention_cleanup", "0 3 * * *", body("retention_cleanup"))
    return scheduler


def test_health():
    client = TestClient(app)
    response = client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is True
    assert "version" in payload


def test_sources_create_list_deactivate():
    client = TestClient(app)

    response = client.post(
        "/sources",
        json={"name": "Grid Desk", "url": "https://grid.example.com/rss", "category": "Energy"},
    )
    assert response.status_code == 200
    created = response.json()
    assert created["active"] is True
    assert created["kind"] == "feed"

    listing = client.get("/sources", params={"kind": "feed"}).json()
    assert [source["name"] for source in listing] == ["Grid Desk"]

    response = client.post(f"/sources/{created['id']}/deactivate")
    assert response.status_code == 200
    assert response.json()["active"] is False
    assert client.get("/sources", params={"active_only": "true"}).json() == []

    response = client.post("/sources/does-not-exist/deactivate")
    assert response.status_code == 404
    assert response.json()["detail"] == "source_not_found"


def test_sources_create_rejects_invalid_definition():
    client = TestClient(app)
    response = client.post("/sources", json={"name": "Bad", "url": "ftp://example.com/feed"})
    assert response.status_code == 400


def test_seed_and_stats():
    client = TestClient(app)
    response = client.post("/sources/seed")
    assert response.json() == {"seeded": 15}

    stats = client.get("/stats").json()
    assert stats["active_sources"] == 15
    assert stats["content_records"] == 0
    assert stats["recent_content"] == []


def test_jobs_status_lists_registered_jobs():
    client = TestClient(app)
    jobs = client.get("/jobs").json()
    assert {job["job_id"] for job in jobs} == {
        "feed_ingestion",
        "metric_ingestion",
        "catalog_scrape",
        "retention_cleanup",
    }
    assert all(job["next_run_at"] for job in jobs)
    assert not any(job["is_running"] for job in jobs)


def test_jobs_run_by_alias_and_all():
    calls = []
    app.state.scheduler = _stub_scheduler(calls)
    client = TestClient(app)

    response = client.post("/jobs/run", json={"job": "rss"})
    assert response.status_code == 200
    assert response.json()["results"]["feed_ingestion"]["inserted"] == 2

    response = client.post("/jobs/run", json={"job": "all"})
    assert list(response.json()["results"]) == ["feed_ingestion", "retention_cleanup"]
    assert calls == ["feed_ingestion", "feed_ingestion", "retention_cleanup"]


def test_jobs_run_unknown_job():
    app.state.scheduler = _stub_scheduler([])
    client = TestClient(app)
    response = client.post("/jobs/run", json={"job": "podcasts"})
    assert response.status_code == 404
    assert response.json()["detail"] == "job_not_found"


def test_admin_token_required_for_mutations(monkeypatch):
    monkeypatch.setenv("EW_ADMIN_TOKEN", "s3cret")
    app.state.scheduler = _stub_scheduler([])
    client = TestClient(app)

    assert client.post("/jobs/run", json={"job": "rss"}).status_code == 401
    assert client.post("/sources/seed").status_code == 401
    assert client.get("/jobs").status_code == 200

    response = client.post(
        "/jobs/run", json={"job": "rss"}, headers={"X-Admin-Token": "s3cret"}
    )
    assert response.status_code == 200

    client.cookies.set(ADMIN_COOKIE_NAME, "s3cret")
    assert client.post("/sources/seed").status_code == 200
