"""
Seed the US libraries tables from flat files into PostgreSQL.

This module can be executed as a script and will:
- Create any missing tables from the packaged ``schema.sql``.
- Parse each flat file (whitespace, tab or comma delimited).
- Insert rows table by table, skipping tables that already hold data.
"""

import csv
import logging
import os
from pathlib import Path
from typing import Callable, NamedTuple, Optional

import psycopg
from psycopg import sql

from . import db_builders
from .db_builders import fint, fnum, ftext


LOGGER = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
SCHEMA_PATH = BASE_DIR / "sql" / "schema.sql"
DATA_DIR_ENV_VAR = "DATA_DIR"

STATES_FILE = "states.txt"
STATE_NAMES_FILE = "state_code_and_names.txt"
SCHOOLS_FILE = "schools.txt"
COUNTIES_FILE = "county.csv"
LIBRARIES_FILE = "library.txt"

TAB = "\t"
COMMA = ","


class SeedDataError(ValueError):
    """Raised when a flat-file line cannot be converted into a table row."""


class TableSeeder(NamedTuple):
    """How one table is filled: source file, delimiter, columns and row builder."""

    table: str
    file_name: str
    columns: tuple
    build_row: Optional[Callable] = None
    delimiter: Optional[str] = None


def get_data_dir() -> str:
    """Return the flat-file directory from ``DATA_DIR`` or the working directory."""
    return os.environ.get(DATA_DIR_ENV_VAR) or os.getcwd()


def read_sql_statements(path) -> list:
    """
    Read a SQL script and split it into individual statements.

    ``--`` comment lines are dropped, the remaining lines are joined and the
    text is split on ``;``.

    :param path: SQL script path.
    :returns: List of non-blank statements.
    """

    with open(path, "r", encoding="utf-8") as handle:
        lines = [
            line.rstrip("\n")
            for line in handle
            if not line.lstrip().startswith("--")
        ]
    script = "\n".join(lines)
    return [statement.strip() for statement in script.split(";") if statement.strip()]


def create_tables_if_absent(conn, schema_path=None):
    """
    Run every statement of the schema script (all ``IF NOT EXISTS``).

    :param conn: Open database connection.
    :param schema_path: Optional override for ``schema.sql``.
    """

    statements = read_sql_statements(schema_path or SCHEMA_PATH)
    with conn.cursor() as cur:
        for statement in statements:
            cur.execute(statement)
    conn.commit()


def read_records(path, delimiter=None, skip_header=True):
    """
    Yield ``(line_number, cells)`` for each non-blank record of a flat file.

    :param path: Flat file path.
    :param delimiter: ``None`` splits on whitespace, ``","`` uses the csv
        reader, anything else is a literal separator.
    :param skip_header: Skip the first line.
    :raises SeedDataError: If the csv reader rejects a record.
    """

    with open(path, "r", encoding="utf-8", newline="") as handle:
        if delimiter == COMMA:
            reader = csv.reader(handle)
            try:
                for record_number, cells in enumerate(reader, start=1):
                    if skip_header and record_number == 1:
                        continue
                    if not cells or not any(cell.strip() for cell in cells):
                        continue
                    yield reader.line_num, [cell.strip() for cell in cells]
            except csv.Error as exc:
                raise SeedDataError(f"{path}:{reader.line_num}: {exc}") from exc
            return

        for line_number, line in enumerate(handle, start=1):
            if skip_header and line_number == 1:
                continue
            record = line.strip()
            if not record:
                continue
            if delimiter is None:
                yield line_number, record.split()
            else:
                yield line_number, record.split(delimiter)


def build_state_row(cells):
    return (fint(cells[0]), ftext(cells[1]))


def build_county_row(cells):
    return (fint(cells[0]), fint(cells[1]), fint(cells[2]), ftext(cells[3]))


def build_revenue_row(cells):
    """Shared by operating and capital revenues: id plus four amounts."""
    return (
        fint(cells[0]),
        fnum(cells[1]),
        fnum(cells[2]),
        fnum(cells[3]),
        fnum(cells[4]),
    )


def build_collection_expenditure_row(cells):
    return (fint(cells[0]), fnum(cells[1]), fnum(cells[2]), fnum(cells[3]))


def build_employee_expenditure_row(cells):
    """Lines carrying only the id load as zero salaries and benefits."""
    if len(cells) > 1:
        return (fint(cells[0]), fnum(cells[1]), fnum(cells[2]))
    return (fint(cells[0]), 0.0, 0.0)


def build_staff_members_count_row(cells):
    return (fint(cells[0]), fnum(cells[1]), fnum(cells[2]))


def build_databases_count_row(cells):
    return (fint(cells[0]), fint(cells[1]), fint(cells[2]))


def build_library_row(cells):
    """
    Map one ``library.txt`` record onto ``LIBRARIES_COLUMNS``.

    The file stores the six foreign ids in cells 7-12 and the state/county
    codes at the end (cells 13 and 14).
    """

    return (
        ftext(cells[0]),
        ftext(cells[1]),
        ftext(cells[2]),
        ftext(cells[3]),
        ftext(cells[4]),
        fnum(cells[5]),
        fnum(cells[6]),
        fint(cells[13]),
        fint(cells[14]),
        fint(cells[7]),
        fint(cells[8]),
        fint(cells[9]),
        fint(cells[10]),
        fint(cells[11]),
        fint(cells[12]),
    )


STATES_COLUMNS = ("state_code", "state_alpha_code")
SCHOOLS_COLUMNS = ("school_code", "school_name", "state_code")
COUNTIES_COLUMNS = ("state_code", "county_code", "county_population", "county_name")
OPERATING_REVENUES_COLUMNS = (
    "operating_revenue_id",
    "local_government_operating_revenue",
    "state_government_operating_revenue",
    "federal_government_operating_revenue",
    "other_operating_revenue",
)
CAPITAL_REVENUES_COLUMNS = (
    "capital_revenue_id",
    "local_government_capital_revenue",
    "state_government_capital_revenue",
    "federal_government_capital_revenue",
    "other_capital_revenue",
)
COLLECTION_EXPENDITURES_COLUMNS = (
    "collection_expenditure_id",
    "print_collection_expenditures",
    "digital_collection_expenditures",
    "other_collection_expenditures",
)
EMPLOYEE_EXPENDITURES_COLUMNS = ("employee_expenditure_id", "salaries", "benefits")
STAFF_MEMBERS_COUNTS_COLUMNS = ("staff_members_count_id", "librarians", "employees")
DATABASES_COUNTS_COLUMNS = (
    "databases_count_id",
    "local_cooperative_agreements",
    "state_licensed_databases",
)
LIBRARIES_COLUMNS = (
    "library_id",
    "library_name",
    "street_address",
    "city",
    "zipcode",
    "longitude",
    "latitude",
    "state_code",
    "county_code",
    "staff_members_count_id",
    "operating_revenue_id",
    "employee_expenditure_id",
    "collection_expenditure_id",
    "capital_revenue_id",
    "databases_count_id",
)

SEEDERS = (
    TableSeeder(db_builders.T_STATES, STATES_FILE, STATES_COLUMNS, build_state_row),
    TableSeeder(db_builders.T_SCHOOLS, SCHOOLS_FILE, SCHOOLS_COLUMNS, delimiter=TAB),
    TableSeeder(
        db_builders.T_COUNTIES,
        COUNTIES_FILE,
        COUNTIES_COLUMNS,
        build_county_row,
        delimiter=COMMA,
    ),
    TableSeeder(
        db_builders.T_OPERATING_REVENUES,
        "operating_revenues.txt",
        OPERATING_REVENUES_COLUMNS,
        build_revenue_row,
    ),
    TableSeeder(
        db_builders.T_CAPITAL_REVENUES,
        "capital_revenues.txt",
        CAPITAL_REVENUES_COLUMNS,
        build_revenue_row,
    ),
    TableSeeder(
        db_builders.T_COLLECTION_EXPENDITURES,
        "collection_expenditures.txt",
        COLLECTION_EXPENDITURES_COLUMNS,
        build_collection_expenditure_row,
    ),
    TableSeeder(
        db_builders.T_EMPLOYEE_EXPENDITURES,
        "employee_expenditures.txt",
        EMPLOYEE_EXPENDITURES_COLUMNS,
        build_employee_expenditure_row,
    ),
    TableSeeder(
        db_builders.T_STAFF_MEMBERS_COUNTS,
        "staff_members_counts.txt",
        STAFF_MEMBERS_COUNTS_COLUMNS,
        build_staff_members_count_row,
    ),
    TableSeeder(
        db_builders.T_DATABASES_COUNTS,
        "databases_counts.txt",
        DATABASES_COUNTS_COLUMNS,
        build_databases_count_row,
    ),
    TableSeeder(
        db_builders.T_LIBRARIES,
        LIBRARIES_FILE,
        LIBRARIES_COLUMNS,
        build_library_row,
        delimiter=TAB,
    ),
)


def build_rows(path, build_row, delimiter=None):
    """
    Parse a flat file into INSERT tuples.

    :param path: Flat file path.
    :param build_row: Callable converting split cells into a tuple.
    :param delimiter: See :func:`read_records`.
    :raises SeedDataError: If a record is malformed.
    :returns: List of row tuples.
    """

    rows = []
    for line_number, cells in read_records(path, delimiter):
        try:
            rows.append(build_row(cells))
        except (ValueError, IndexError) as exc:
            raise SeedDataError(f"{path}:{line_number}: {exc}") from exc
    return rows


def read_state_names(path) -> dict:
    """Map upper-cased full state names to alpha codes (``AA<TAB>Name``, no header)."""
    states = {}
    for _line_number, cells in read_records(path, TAB, skip_header=False):
        if len(cells) < 2:
            continue
        states[cells[1].strip().upper()] = cells[0].strip()
    return states


def read_state_codes(path) -> dict:
    """Map alpha codes to numeric state codes from ``states.txt``."""
    return {alpha: code for code, alpha in build_rows(path, build_state_row)}


def read_school_rows(schools_path, state_names_path, states_path) -> list:
    """
    Parse ``schools.txt`` into ``(school_code, school_name, state_code)`` rows.

    A single-cell line opens the section for the named state; schools in a
    section whose state cannot be resolved to a state code are skipped.

    :param schools_path: Schools file path.
    :param state_names_path: ``state_code_and_names.txt`` path.
    :param states_path: ``states.txt`` path.
    :returns: List of row tuples.
    """

    for supporting_path in (state_names_path, states_path):
        if not os.path.exists(supporting_path):
            LOGGER.warning(
                "No file found: %s; schools cannot be mapped to states.",
                supporting_path,
            )
            return []

    state_alpha_by_name = read_state_names(state_names_path)
    state_code_by_alpha = read_state_codes(states_path)

    rows = []
    state = ""
    for line_number, cells in read_records(schools_path, TAB):
        if len(cells) == 1:
            state = cells[0].strip().upper()
            continue

        state_code = state_code_by_alpha.get(state_alpha_by_name.get(state))
        if state_code is None:
            continue
        try:
            rows.append((fint(cells[0]), ftext(cells[1]), state_code))
        except ValueError as exc:
            raise SeedDataError(f"{schools_path}:{line_number}: {exc}") from exc
    return rows


def load_rows(seeder: TableSeeder, data_dir) -> list:
    """Read the rows for one table from its flat file under ``data_dir``."""
    path = os.path.join(data_dir, seeder.file_name)
    if seeder.table == db_builders.T_SCHOOLS:
        return read_school_rows(
            path,
            os.path.join(data_dir, STATE_NAMES_FILE),
            os.path.join(data_dir, STATES_FILE),
        )
    return build_rows(path, seeder.build_row, seeder.delimiter)


def insert_sql(seeder: TableSeeder):
    """
    Compose the parameterized INSERT for a seeder's table.

    :param seeder: Table seeder definition.
    :returns: Composed SQL object.
    """

    insert_columns = sql.SQL(", ").join(sql.Identifier(column) for column in seeder.columns)
    placeholders = sql.SQL(", ").join(sql.Placeholder() for _ in seeder.columns)
    return db_builders.tables_sql(
        "INSERT INTO {table} ({insert_columns}) VALUES ({values});",
        table=seeder.table,
        insert_columns=insert_columns,
        values=placeholders,
    )


def seed_table(conn, seeder: TableSeeder, data_dir) -> int:
    """
    Fill one table from its flat file unless it already holds rows.

    :param conn: Open database connection.
    :param seeder: Table seeder definition.
    :param data_dir: Directory containing the flat files.
    :returns: Number of inserted rows (0 when skipped).
    """

    with conn.cursor() as cur:
        if db_builders.is_table_seeded(cur, seeder.table):
            LOGGER.info("Table %s already seeded; skipping.", seeder.table)
            return 0

    path = os.path.join(data_dir, seeder.file_name)
    if not os.path.exists(path):
        LOGGER.warning("No file found: %s; table %s left empty.", path, seeder.table)
        return 0

    rows = load_rows(seeder, data_dir)
    if not rows:
        return 0

    with conn.cursor() as cur:
        cur.executemany(insert_sql(seeder), rows)
    conn.commit()

    LOGGER.info("Inserted %s rows into %s.", len(rows), seeder.table)
    return len(rows)


def seed_database(conn, data_dir=None, output_fn=print) -> dict:
    """
    Create missing tables and seed every table in dependency order.

    :param conn: Open database connection.
    :param data_dir: Flat-file directory, defaults to :func:`get_data_dir`.
    :param output_fn: Progress printer.
    :returns: Dict of table name to inserted row count.
    """

    data_dir = data_dir or get_data_dir()
    create_tables_if_absent(conn)

    output_fn("We are loading the best data for you !")
    output_fn("------ ------ ------ ------ ------ ------ ------ ------ ------ ------")
    counts = {}
    for seeder in SEEDERS:
        counts[seeder.table] = seed_table(conn, seeder, data_dir)
        output_fn(f"---- o {seeder.table}: {counts[seeder.table]} rows")
    return counts


def run_seed(dsn=None, data_dir=None, connect_fn=None, output_fn=print) -> dict:
    """
    Connect, seed the database and report the elapsed time.

    :param dsn: Optional DSN, defaults to :func:`db_config.get_db_dsn`.
    :param data_dir: Optional flat-file directory.
    :param connect_fn: Optional DB connector for dependency injection.
    :param output_fn: Progress printer.
    :returns: Dict of table name to inserted row count.
    """

    if connect_fn is None:
        connect_fn = psycopg.connect
    if dsn is None:
        dsn = db_builders.get_db_dsn()

    with db_builders.benchmark(output_fn):
        with connect_fn(dsn) as conn:
            counts = seed_database(conn, data_dir, output_fn)

    output_fn(f"Inserted rows: {sum(counts.values())}")
    return counts


def main() -> None:
    """Configure logging and seed the database from ``DATA_DIR``."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_seed()
    print("The database is seeded successfully")


if __name__ == "__main__":
    main()
