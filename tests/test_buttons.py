"""Tests for the seed endpoint and its busy-state behavior."""

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", "postgresql://localhost/us_libraries")

import psycopg
import pytest
from libraries_analyzer import load_data, website
from libraries_analyzer.report_cache import ReportCache

pytestmark = pytest.mark.web


@pytest.fixture(autouse=True)
def reset_seed_state():
    website.SEED_STATE["status"] = "idle"
    website.SEED_STATE["message"] = ""
    yield
    website.SEED_STATE["status"] = "idle"
    website.SEED_STATE["message"] = ""


def _client(**kwargs):
    app = website.create_app(**kwargs)
    app.config["TESTING"] = True
    return app.test_client()


def test_post_seed_runs_seeder_and_clears_cache():
    cache = ReportCache(ttl_minutes=5)
    cache.put("stale", "result")
    client = _client(run_seed_fn=lambda: {"states": 2, "libraries": 3}, cache=cache)

    resp = client.post("/seed")

    assert resp.status_code == 202
    assert resp.get_json() == {"ok": True, "inserted": 5}
    assert cache.get("stale") is None
    status = client.get("/seed-status").get_json()
    assert status == {"status": "done", "message": "Seed complete. Inserted 5 rows."}


def test_post_seed_busy_returns_409():
    calls = []
    client = _client(run_seed_fn=lambda: calls.append(True))
    website.SEED_STATE["status"] = "running"

    resp = client.post("/seed")

    assert resp.status_code == 409
    assert resp.get_json() == {"busy": True}
    assert calls == []


@pytest.mark.parametrize(
    "error",
    [
        psycopg.OperationalError("db down"),
        FileNotFoundError("library.txt"),
        ValueError("bad line"),
    ],
)
def test_post_seed_failure_returns_500(error):
    def failing_seed():
        raise error

    resp = _client(run_seed_fn=failing_seed).post("/seed")

    assert resp.status_code == 500
    assert resp.get_json() == {"ok": False, "error": website.SEED_ERROR_MESSAGE}
    assert website.SEED_STATE["status"] == "error"


def test_seed_route_rejects_get():
    assert _client().get("/seed").status_code == 405


def test_default_seed_logs_progress(monkeypatch):
    captured = {}

    def fake_run_seed(**kwargs):
        captured.update(kwargs)
        return {"states": 1}

    monkeypatch.setattr(website, "run_seed", fake_run_seed)
    resp = _client().post("/seed")
    assert resp.status_code == 202
    assert captured["output_fn"] == website.LOGGER.info


class FakeCursor:
    def execute(self, _stmt, _params=None):
        return None

    def executemany(self, _stmt, _rows):
        return None

    def fetchone(self):
        return None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeConnection:
    def cursor(self):
        return FakeCursor()

    def commit(self):
        return None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def test_malformed_county_file_does_not_lock_seed(tmp_path):
    """A csv error fails the seed with 500 and the next request is not busy."""
    (tmp_path / "county.csv").write_text(
        'state_code,county_code,population,name\n1,1,5,"' + "x" * 200_000 + "\n",
        encoding="utf-8",
    )
    client = _client(
        run_seed_fn=lambda: load_data.run_seed(
            dsn="fake",
            data_dir=str(tmp_path),
            connect_fn=lambda _dsn: FakeConnection(),
            output_fn=lambda _line: None,
        )
    )

    first = client.post("/seed")
    assert first.status_code == 500
    assert website.SEED_STATE["status"] == "error"

    second = client.post("/seed")
    assert second.status_code == 500
    assert second.get_json() == {"ok": False, "error": website.SEED_ERROR_MESSAGE}


def test_unexpected_seed_error_clears_busy_state():
    def failing_seed():
        raise KeyError("states")

    client = _client(run_seed_fn=failing_seed)
    with pytest.raises(KeyError):
        client.post("/seed")

    assert website.SEED_STATE == {"status": "error", "message": website.SEED_ERROR_MESSAGE}
    resp = _client(run_seed_fn=lambda: {"states": 1}).post("/seed")
    assert resp.status_code == 202
