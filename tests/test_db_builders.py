"""Tests for shared DB helpers, value parsers and the benchmark timer."""

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from libraries_analyzer import db_builders

pytestmark = pytest.mark.db


class FakeCursor:
    """Cursor returning queued fetchone results and recording statements."""

    def __init__(self, fetchone_values):
        self.fetchone_values = list(fetchone_values)
        self.executed = []

    def execute(self, stmt, params=None):
        self.executed.append((stmt, params))

    def fetchone(self):
        return self.fetchone_values.pop(0)


def test_value_parsers():
    assert db_builders.fint(" 42 ") == 42
    assert db_builders.fnum("3.5") == 3.5
    assert db_builders.ftext(" a\x00b ") == "ab"
    assert db_builders.ftext(None) is None
    with pytest.raises(ValueError):
        db_builders.fint("4.2")
    with pytest.raises(ValueError):
        db_builders.fnum("n/a")


@pytest.mark.parametrize(
    "value, expected",
    [("12", True), ("-3", True), ("1.5", False), ("abc", False), (None, False)],
)
def test_is_integer(value, expected):
    assert db_builders.is_integer(value) is expected


@pytest.mark.parametrize(
    "value, expected",
    [
        ("100", True),
        ("-2.5", True),
        (".75", True),
        ("1e3", True),
        ("inf", False),
        ("nan", False),
        ("12a", False),
        ("", False),
    ],
)
def test_is_number(value, expected):
    assert db_builders.is_number(value) is expected


def test_table_exists_uses_to_regclass():
    cur = FakeCursor([("public.libraries",)])
    assert db_builders.table_exists(cur, "libraries") is True
    _stmt, params = cur.executed[0]
    assert params == ("public.libraries", 1)


def test_table_exists_false_when_unresolved():
    cur = FakeCursor([(None,)])
    assert db_builders.table_exists(cur, "libraries") is False


def test_is_table_seeded():
    assert db_builders.is_table_seeded(FakeCursor([(1,)]), "states") is True
    assert db_builders.is_table_seeded(FakeCursor([None]), "states") is False


def test_is_database_seeded_requires_table():
    """A missing libraries table short-circuits before the row probe."""
    cur = FakeCursor([(None,)])
    assert db_builders.is_database_seeded(cur) is False
    assert len(cur.executed) == 1

    cur = FakeCursor([("public.libraries",), (1,)])
    assert db_builders.is_database_seeded(cur) is True


def test_format_elapsed():
    assert db_builders.format_elapsed(90) == "Minutes: 1.5000 | Seconds: 90.000"


def test_benchmark_reports_elapsed_time():
    lines = []
    ticks = iter([10.0, 13.0])
    with db_builders.benchmark(lines.append, clock=lambda: next(ticks)):
        pass
    assert lines == ["Minutes: 0.0500 | Seconds: 3.000"]


def test_benchmark_silent_on_error():
    lines = []
    with pytest.raises(ValueError):
        with db_builders.benchmark(lines.append):
            raise ValueError("boom")
    assert lines == []
