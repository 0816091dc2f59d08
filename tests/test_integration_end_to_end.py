"""Integration tests for seed -> report flows over an in-memory fake database."""

import io
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", "postgresql://localhost/us_libraries")

import psycopg
import pytest
from libraries_analyzer import __main__ as cli
from libraries_analyzer import load_data, query_table, website

pytestmark = pytest.mark.integration


class MemoryDatabase:
    """Stores inserted rows per table and answers the reports used below."""

    def __init__(self):
        self.tables = {}

    def connect(self, _dsn, **_kwargs):
        return MemoryConnection(self)


class MemoryCursor:
    def __init__(self, db):
        self.db = db
        self.result = []

    def execute(self, stmt, params=None):
        libraries = self.db.tables.get("libraries", [])
        if stmt == query_table.LIBRARIES_WITH_ID_OF_ID1_OR_ID2:
            self.result = [(row[0], row[1]) for row in libraries if row[0] in params]
        elif stmt == query_table.LIBRARIES_ORDERED_BY_TOTAL_OPERATING_REVENUE:
            revenues = {row[0]: sum(row[1:]) for row in self.db.tables.get("operating_revenues", [])}
            pairs = [(row[1], revenues[row[10]]) for row in libraries if row[10] in revenues]
            self.result = sorted(pairs, key=lambda pair: pair[1])
        else:
            self.result = []

    def executemany(self, table, rows):
        self.db.tables.setdefault(table, []).extend(rows)

    def fetchone(self):
        return self.result[0] if self.result else None

    def fetchall(self):
        return list(self.result)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class MemoryConnection:
    def __init__(self, db):
        self.db = db

    def cursor(self):
        return MemoryCursor(self.db)

    def commit(self):
        return None

    def rollback(self):
        return None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def _library(library_id, name, operating_id):
    return "\t".join(
        [
            library_id, name, "1 Main St", "Town", "00001", "-100.0", "40.0",
            "1", str(operating_id), "1", "1", "1", "1", "2", "110",
        ]
    )


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    (tmp_path / "states.txt").write_text("code alpha\n2 AK\n", encoding="utf-8")
    (tmp_path / "operating_revenues.txt").write_text(
        "id l s f o\n1 100 0 0 0\n2 1000 0 0 0\n", encoding="utf-8"
    )
    (tmp_path / "library.txt").write_text(
        "header\n"
        + _library("AK0001", "Juneau Public Library", 1) + "\n"
        + _library("AK0002", "Anchorage Library", 2) + "\n",
        encoding="utf-8",
    )
    return tmp_path


@pytest.fixture
def memory_db(monkeypatch):
    db = MemoryDatabase()
    monkeypatch.setattr(load_data, "insert_sql", lambda seeder: seeder.table)
    monkeypatch.setattr(psycopg, "connect", db.connect)
    return db


def test_seed_then_query_through_web(data_dir, memory_db):
    """POST /seed loads the flat files; report pages read the loaded rows."""
    website.SEED_STATE["status"] = "idle"
    app = website.create_app(
        run_seed_fn=lambda: load_data.run_seed(
            dsn="memory", data_dir=str(data_dir), output_fn=lambda _line: None
        ),
        fetch_report_fn=lambda report, args: query_table.fetch_report(report, args, dsn="memory"),
    )
    app.config["TESTING"] = True
    client = app.test_client()

    resp = client.post("/seed")
    assert resp.status_code == 202
    assert resp.get_json() == {"ok": True, "inserted": 5}
    assert len(memory_db.tables["libraries"]) == 2

    resp = client.get("/reports/2?id_1=AK0002&id_2=WY0023")
    body = resp.get_data(as_text=True)
    assert resp.status_code == 200
    assert "Anchorage Library" in body
    assert "Juneau Public Library" not in body

    resp = client.get("/reports/1?n=300")
    body = resp.get_data(as_text=True)
    assert resp.status_code == 200
    assert "Juneau Public Library" in body
    website.SEED_STATE["status"] = "idle"


def test_cli_seed_mode(data_dir, memory_db, capsys):
    code = cli.main(["--seed", "--data-dir", str(data_dir)])
    out = capsys.readouterr().out
    assert code == 0
    assert "The database is seeded successfully" in out
    assert "Inserted rows: 5" in out
    assert len(memory_db.tables["operating_revenues"]) == 2


def test_cli_console_mode_seeds_and_reports(data_dir, memory_db, monkeypatch, capsys):
    monkeypatch.setattr(sys, "stdin", io.StringIO("1\n300\nq\n"))
    code = cli.main(["--data-dir", str(data_dir)])
    out = capsys.readouterr().out
    assert code == 0
    assert "The database is seeded successfully" in out
    assert "Juneau Public Library" in out
    assert out.rstrip().endswith("Thank you for using our services")


def test_cli_reports_configuration_errors(monkeypatch, capsys):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    for key in ("DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("AUTH_CONFIG_PATH", "/nonexistent/auth.cfg")
    assert cli.main(["--no-seed"]) == 1
    assert "Database configuration missing" in capsys.readouterr().out
