"""
Shared DB/query/value helper functions for the libraries analyzer.
"""

import re
import time
from contextlib import contextmanager

from psycopg import sql

from .db_config import get_db_dsn


T_STATES = "states"
T_SCHOOLS = "schools"
T_COUNTIES = "counties"
T_OPERATING_REVENUES = "operating_revenues"
T_CAPITAL_REVENUES = "capital_revenues"
T_COLLECTION_EXPENDITURES = "collection_expenditures"
T_EMPLOYEE_EXPENDITURES = "employee_expenditures"
T_STAFF_MEMBERS_COUNTS = "staff_members_counts"
T_DATABASES_COUNTS = "databases_counts"
T_LIBRARIES = "libraries"

# Parents first so foreign keys on libraries/schools/counties resolve.
TABLE_NAMES = (
    T_STATES,
    T_SCHOOLS,
    T_COUNTIES,
    T_OPERATING_REVENUES,
    T_CAPITAL_REVENUES,
    T_COLLECTION_EXPENDITURES,
    T_EMPLOYEE_EXPENDITURES,
    T_STAFF_MEMBERS_COUNTS,
    T_DATABASES_COUNTS,
    T_LIBRARIES,
)
SCHEMA_NAME = "public"

_NUMBER_RE = re.compile(r"^[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?$")


def regclass_name(table: str) -> str:
    """Return the ``schema.table`` name used for ``to_regclass`` lookups."""
    return f"{SCHEMA_NAME}.{table}"


def fint(value):
    """
    Convert an integer cell to ``int``.

    :param value: Raw cell text.
    :raises ValueError: If the cell is not an integer.
    :returns: Parsed integer.
    """

    return int(str(value).strip())


def fnum(value):
    """
    Convert a numeric cell to ``float``.

    :param value: Raw cell text.
    :raises ValueError: If the cell is not numeric.
    :returns: Parsed float.
    """

    return float(str(value).strip())


def ftext(value):
    """
    Normalize text values to strings without NULL bytes.

    :param value: Input value.
    :returns: Cleaned string or None.
    """

    if value is None:
        return None
    return str(value).replace("\x00", "").strip()


def is_integer(value) -> bool:
    """Return True when ``value`` parses as an integer."""
    try:
        int(str(value).strip())
    except (TypeError, ValueError):
        return False
    return True


def is_number(value) -> bool:
    """Return True when ``value`` is a plain decimal number (no inf/nan)."""
    if value is None:
        return False
    return bool(_NUMBER_RE.match(str(value).strip()))


def tables_sql(query_template: str, *, table: str, **identifiers):
    """
    Compose SQL with safely quoted identifier placeholders.

    :param query_template: SQL template containing ``{table}``.
    :param table: Target table name.
    :param identifiers: Extra SQL identifiers used in ``format``.
    :returns: Composed SQL object.
    """

    format_args = {"table": sql.Identifier(table)}
    format_args.update(identifiers)
    return sql.SQL(query_template).format(**format_args)


def table_exists(db_cursor, table: str) -> bool:
    """
    Check whether a table exists without requiring DDL privileges.

    :param db_cursor: Database cursor.
    :param table: Table name inside the ``public`` schema.
    :returns: True when ``to_regclass`` resolves the table.
    """

    stmt = sql.SQL(
        """
        SELECT to_regclass(%s)
        LIMIT %s;
        """
    )
    db_cursor.execute(stmt, (regclass_name(table), 1))
    row = db_cursor.fetchone()
    return row is not None and row[0] is not None


def is_table_seeded(db_cursor, table: str) -> bool:
    """
    Return True when ``table`` already holds at least one row.

    :param db_cursor: Database cursor.
    :param table: Table name.
    """

    stmt = tables_sql("SELECT 1 FROM {table} LIMIT 1;", table=table)
    db_cursor.execute(stmt)
    return db_cursor.fetchone() is not None


def is_database_seeded(db_cursor) -> bool:
    """Return True when the ``libraries`` table exists and has rows."""
    if not table_exists(db_cursor, T_LIBRARIES):
        return False
    return is_table_seeded(db_cursor, T_LIBRARIES)


def format_elapsed(seconds: float) -> str:
    """Format elapsed seconds the way the console benchmark prints them."""
    return f"Minutes: {seconds / 60:.4f} | Seconds: {seconds:.3f}"


@contextmanager
def benchmark(output_fn=print, clock=time.perf_counter):
    """
    Time the wrapped block and report the elapsed time.

    :param output_fn: Callable receiving the formatted timing line.
    :param clock: Monotonic clock, injectable for tests.
    """

    start = clock()
    yield
    output_fn(format_elapsed(clock() - start))


__all__ = [
    "get_db_dsn",
    "T_STATES",
    "T_SCHOOLS",
    "T_COUNTIES",
    "T_OPERATING_REVENUES",
    "T_CAPITAL_REVENUES",
    "T_COLLECTION_EXPENDITURES",
    "T_EMPLOYEE_EXPENDITURES",
    "T_STAFF_MEMBERS_COUNTS",
    "T_DATABASES_COUNTS",
    "T_LIBRARIES",
    "TABLE_NAMES",
    "regclass_name",
    "fint",
    "fnum",
    "ftext",
    "is_integer",
    "is_number",
    "tables_sql",
    "table_exists",
    "is_table_seeded",
    "is_database_seeded",
    "format_elapsed",
    "benchmark",
]
