"""
Canned SQL reports over the US libraries tables.

Every report in the directory is registered here with its menu key, title,
SQL text, display headers and argument prompts. The console menu and the
web app both run reports through :func:`run_report`.
"""

from bisect import bisect_left
from decimal import Decimal
from typing import Callable, NamedTuple, Optional

import psycopg

from . import db_builders


DEFAULT_REPORT_KEY = 0
NOT_FOUND_MESSAGE = "Option not found"
NOT_NUMERICAL_MESSAGE = "The input must be numerical"


class ReportArgumentError(ValueError):
    """Raised when report arguments are missing or malformed."""


class ReportResult(NamedTuple):
    """Rows produced by one report run, ready for rendering or caching."""

    title: str
    headers: tuple
    rows: list
    cached: bool = False


LIBRARIES_ORDERED_BY_TOTAL_OPERATING_REVENUE = """
SELECT
    library_name,
    (local_government_operating_revenue
     + state_government_operating_revenue
     + federal_government_operating_revenue
     + other_operating_revenue) AS total_operating_revenue
FROM libraries
JOIN operating_revenues
  ON libraries.operating_revenue_id = operating_revenues.operating_revenue_id
ORDER BY total_operating_revenue;
"""

LIBRARIES_WITH_ID_OF_ID1_OR_ID2 = """
SELECT library_id, library_name
FROM libraries
WHERE library_id = %s
   OR library_id = %s;
"""

AVERAGE_STATE_LICENSED_DATABASES_FOR_SMALL_STATES = """
SELECT
    outer_counties.county_code,
    outer_counties.state_code,
    ROUND(
        SUM(databases_counts.state_licensed_databases)::numeric
        / NULLIF(COUNT(libraries.library_id), 0),
        2
    ) AS average_state_licensed_databases
FROM counties AS outer_counties
JOIN states ON outer_counties.state_code = states.state_code
JOIN libraries
  ON states.state_code = libraries.state_code
 AND outer_counties.county_code = libraries.county_code
JOIN databases_counts
  ON libraries.databases_count_id = databases_counts.databases_count_id
WHERE outer_counties.state_code IN (
    SELECT states.state_code
    FROM states
    JOIN counties ON states.state_code = counties.state_code
    WHERE states.state_code = outer_counties.state_code
    GROUP BY states.state_code
    HAVING COUNT(counties.county_code) < 5
)
GROUP BY outer_counties.county_code, outer_counties.state_code
ORDER BY average_state_licensed_databases;
"""

TOP_10_LIBRARIES_WITH_HIGHEST_AVERAGE_PAY = """
SELECT
    library_name,
    (salaries + benefits) / NULLIF(librarians + employees, 0) AS average_pay
FROM libraries
JOIN staff_members_counts
  ON libraries.staff_members_count_id = staff_members_counts.staff_members_count_id
JOIN employee_expenditures
  ON libraries.employee_expenditure_id = employee_expenditures.employee_expenditure_id
ORDER BY average_pay DESC NULLS LAST
LIMIT 10;
"""

SCHOOLS_WITH_STATE_POPULATION = """
WITH state_pop AS (
    SELECT
        counties.state_code,
        SUM(county_population) AS state_population
    FROM counties
    JOIN states ON counties.state_code = states.state_code
    GROUP BY counties.state_code
)
SELECT
    schools.school_name,
    states.state_alpha_code,
    state_pop.state_population
FROM schools
JOIN states ON schools.state_code = states.state_code
JOIN state_pop ON schools.state_code = state_pop.state_code;
"""

TOP_10_COUNTIES_BY_LIBRARIES_THEN_SCHOOLS = """
SELECT
    counties.county_code,
    counties.state_code,
    COUNT(DISTINCT libraries.library_id) AS libraries_count,
    COUNT(DISTINCT schools.school_code) AS schools_count
FROM counties
JOIN states ON counties.state_code = states.state_code
JOIN libraries
  ON states.state_code = libraries.state_code
 AND counties.county_code = libraries.county_code
JOIN schools ON states.state_code = schools.state_code
GROUP BY counties.county_code, counties.state_code
ORDER BY libraries_count DESC, schools_count DESC
LIMIT 10;
"""

TOP_10_MOST_EXPENSIVE_LIBRARIES_TO_RUN = """
SELECT
    library_name,
    (
        (local_government_operating_revenue + state_government_operating_revenue
         + federal_government_operating_revenue + other_operating_revenue
         + local_government_capital_revenue + state_government_capital_revenue
         + federal_government_capital_revenue + other_capital_revenue)
        -
        (salaries + benefits
         + print_collection_expenditures + digital_collection_expenditures
         + other_collection_expenditures)
    ) AS total_cost
FROM libraries
JOIN operating_revenues
  ON libraries.operating_revenue_id = operating_revenues.operating_revenue_id
JOIN capital_revenues
  ON libraries.capital_revenue_id = capital_revenues.capital_revenue_id
JOIN collection_expenditures
  ON libraries.collection_expenditure_id = collection_expenditures.collection_expenditure_id
JOIN employee_expenditures
  ON libraries.employee_expenditure_id = employee_expenditures.employee_expenditure_id
ORDER BY total_cost DESC
LIMIT 10;
"""

STAFF_COUNT_AND_STAFF_PAY_PER_LIBRARY = """
SELECT
    library_name,
    librarians,
    employees,
    (librarians + employees) AS total_staff,
    salaries,
    benefits,
    (salaries + benefits) AS total_employee_expenditures
FROM libraries
JOIN staff_members_counts
  ON libraries.staff_members_count_id = staff_members_counts.staff_members_count_id
JOIN employee_expenditures
  ON libraries.employee_expenditure_id = employee_expenditures.employee_expenditure_id
ORDER BY total_staff DESC, total_employee_expenditures DESC;
"""

LIBRARY_COUNT_PER_COUNTY = """
SELECT
    counties.county_name,
    counties.county_population,
    states.state_alpha_code,
    COUNT(libraries.library_id) AS library_count
FROM counties
JOIN libraries
  ON counties.state_code = libraries.state_code
 AND counties.county_code = libraries.county_code
JOIN states ON counties.state_code = states.state_code
GROUP BY states.state_alpha_code, counties.county_population, counties.county_name
ORDER BY library_count DESC;
"""

DATABASE_COUNT_PER_LIBRARY = """
SELECT
    library_name,
    local_cooperative_agreements,
    state_licensed_databases,
    (local_cooperative_agreements + state_licensed_databases) AS total_databases
FROM libraries
JOIN databases_counts
  ON libraries.databases_count_id = databases_counts.databases_count_id
ORDER BY total_databases DESC;
"""

ADDRESSES_OF_EACH_LIBRARY = """
SELECT
    library_name,
    street_address,
    city,
    zipcode,
    state_alpha_code,
    county_name,
    latitude,
    longitude
FROM libraries
JOIN states ON libraries.state_code = states.state_code
JOIN counties
  ON libraries.state_code = counties.state_code
 AND libraries.county_code = counties.county_code;
"""

CAPITAL_REVENUES_MOST_TO_LEAST = """
SELECT
    library_name,
    local_government_capital_revenue,
    state_government_capital_revenue,
    federal_government_capital_revenue,
    other_capital_revenue,
    (local_government_capital_revenue + state_government_capital_revenue
     + federal_government_capital_revenue + other_capital_revenue) AS total_capital_revenue
FROM libraries
JOIN capital_revenues
  ON libraries.capital_revenue_id = capital_revenues.capital_revenue_id
ORDER BY total_capital_revenue DESC;
"""

OPERATING_REVENUES_MOST_TO_LEAST = """
SELECT
    library_name,
    local_government_operating_revenue,
    state_government_operating_revenue,
    federal_government_operating_revenue,
    other_operating_revenue,
    (local_government_operating_revenue + state_government_operating_revenue
     + federal_government_operating_revenue + other_operating_revenue) AS total_operating_revenue
FROM libraries
JOIN operating_revenues
  ON libraries.operating_revenue_id = operating_revenues.operating_revenue_id
ORDER BY total_operating_revenue DESC;
"""

COLLECTION_EXPENDITURES_MOST_TO_LEAST = """
SELECT
    library_name,
    print_collection_expenditures,
    digital_collection_expenditures,
    other_collection_expenditures,
    (print_collection_expenditures + digital_collection_expenditures
     + other_collection_expenditures) AS total_collection_expenditures
FROM libraries
JOIN collection_expenditures
  ON libraries.collection_expenditure_id = collection_expenditures.collection_expenditure_id
ORDER BY total_collection_expenditures DESC;
"""


def fetch_all_rows(cur, stmt, params=None):
    """
    Execute a query and return all rows.

    :param cur: Database cursor.
    :param stmt: SQL text.
    :param params: Execute parameters for placeholders.
    :returns: List of result rows.
    """

    cur.execute(stmt, params)
    return cur.fetchall()


def fetch_report_rows(cur, report, args):
    """Run a report's SQL with its arguments bound as parameters."""
    return fetch_all_rows(cur, report.sql, tuple(args) or None)


def find_closest_library(libraries, target):
    """
    Return the ``(name, total)`` pair whose total is nearest ``target``.

    ``libraries`` must be sorted ascending by total. Targets below the
    smallest or above the largest total resolve to the first or last
    entry; a tie between two neighbours resolves to the larger total.

    :param libraries: Sorted list of ``(name, total)`` pairs.
    :param target: Amount to match.
    :returns: Closest pair, or None for an empty list.
    """

    if not libraries:
        return None

    totals = [total for _name, total in libraries]
    index = bisect_left(totals, target)
    if index == 0:
        return libraries[0]
    if index == len(libraries):
        return libraries[-1]

    left, right = libraries[index - 1], libraries[index]
    if target - left[1] < right[1] - target:
        return left
    return right


def fetch_closest_revenue_rows(cur, report, args):
    """Pick the library whose total operating revenue is closest to ``n``."""
    raw_target = args[0]
    if not db_builders.is_number(raw_target):
        raise ReportArgumentError(NOT_NUMERICAL_MESSAGE)
    target = float(raw_target)

    libraries = [
        (name, float(total))
        for name, total in fetch_all_rows(cur, report.sql)
        if total is not None
    ]
    closest = find_closest_library(libraries, target)
    if closest is None:
        return []
    return [(closest[0], closest[1], target)]


class Report(NamedTuple):
    """One entry of the reports directory."""

    key: int
    title: str
    sql: Optional[str]
    headers: tuple
    args: tuple = ()
    runner: Callable = fetch_report_rows

    @property
    def cacheable(self) -> bool:
        """Reports taking arguments are always re-run."""
        return not self.args

    def __str__(self):
        return f"{self.key} {self.title}"


DEFAULT_REPORT = Report(DEFAULT_REPORT_KEY, "Default", None, ())

_REPORT_DEFINITIONS = (
    (
        "Library with total operating revenue closest to n US dollars",
        LIBRARIES_ORDERED_BY_TOTAL_OPERATING_REVENUE,
        ("Library", "Total Operating Revenue", "n"),
        ("n",),
        fetch_closest_revenue_rows,
    ),
    (
        "Libraries with ID of id_1 or id_2",
        LIBRARIES_WITH_ID_OF_ID1_OR_ID2,
        ("Library ID", "Library"),
        ("id_1 (e.g. AK0001)", "id_2 (e.g. WY0023)"),
        fetch_report_rows,
    ),
    (
        "Average state licensed databases per library for counties that "
        "belong to states with less than 5 counties",
        AVERAGE_STATE_LICENSED_DATABASES_FOR_SMALL_STATES,
        (
            "County Code",
            "State Code",
            "Average State Licensed Databases per Library for County",
        ),
    ),
    (
        "Top 10 libraries with the highest average pay per employee",
        TOP_10_LIBRARIES_WITH_HIGHEST_AVERAGE_PAY,
        ("Library", "Average Pay"),
    ),
    (
        "Schools with their state's total population",
        SCHOOLS_WITH_STATE_POPULATION,
        ("School", "State Alpha Code", "State Population"),
    ),
    (
        "Top 10 counties ordered by libraries count then by schools count",
        TOP_10_COUNTIES_BY_LIBRARIES_THEN_SCHOOLS,
        ("County Code", "State Code", "Libraries", "Schools"),
    ),
    (
        "Top 10 most expensive libraries to run",
        TOP_10_MOST_EXPENSIVE_LIBRARIES_TO_RUN,
        ("Library", "Total Cost"),
    ),
    (
        "Staff count and staff pay per library",
        STAFF_COUNT_AND_STAFF_PAY_PER_LIBRARY,
        (
            "Library",
            "Librarians",
            "Employees",
            "Total Staff",
            "Salaries",
            "Benefits",
            "Total Employee Expenditures",
        ),
    ),
    (
        "Library count per county",
        LIBRARY_COUNT_PER_COUNTY,
        ("County", "County Population", "State Alpha Code", "Libraries"),
    ),
    (
        "Database count per library",
        DATABASE_COUNT_PER_LIBRARY,
        (
            "Library",
            "Local Cooperative Agreements",
            "State Licensed Databases",
            "Total Databases",
        ),
    ),
    (
        "Address of each library",
        ADDRESSES_OF_EACH_LIBRARY,
        (
            "Library",
            "Street",
            "City",
            "Zipcode",
            "State Alpha Code",
            "County",
            "Latitude",
            "Longitude",
        ),
    ),
    (
        "Capital revenues of each library desc",
        CAPITAL_REVENUES_MOST_TO_LEAST,
        (
            "Library",
            "Local Government Capital Revenue",
            "State Government Capital Revenue",
            "Federal Government Capital Revenue",
            "Other Capital Revenue",
            "Total Capital Revenue",
        ),
    ),
    (
        "Operating revenues of each library desc",
        OPERATING_REVENUES_MOST_TO_LEAST,
        (
            "Library",
            "Local Government Operating Revenue",
            "State Government Operating Revenue",
            "Federal Government Operating Revenue",
            "Other Operating Revenue",
            "Total Operating Revenue",
        ),
    ),
    (
        "Collection expenditures of each library desc",
        COLLECTION_EXPENDITURES_MOST_TO_LEAST,
        (
            "Library",
            "Print Collection Expenditures",
            "Digital Collection Expenditures",
            "Other Collection Expenditures",
            "Total Collection Expenditures",
        ),
    ),
)

# Menu keys follow registration order, starting at 1.
REPORTS = tuple(
    Report(key, *definition)
    for key, definition in enumerate(_REPORT_DEFINITIONS, start=1)
)
REPORTS_BY_KEY = {report.key: report for report in REPORTS}
CLOSEST_REVENUE_REPORT = REPORTS_BY_KEY[1]


def get_report(key) -> Report:
    """Return the report registered under ``key`` or the default report."""
    return REPORTS_BY_KEY.get(key, DEFAULT_REPORT)


def run_report(cur, report: Report, args=()) -> ReportResult:
    """
    Run one report on an open cursor.

    :param cur: Database cursor.
    :param report: Report to run.
    :param args: Argument values, in the order of ``report.args``.
    :raises ReportArgumentError: On wrong arity or a malformed value.
    :returns: ``ReportResult`` (``rows`` is empty when nothing matched).
    """

    if report.sql is None:
        raise ReportArgumentError(NOT_FOUND_MESSAGE)

    values = tuple(str(arg).strip() for arg in args)
    if len(values) != len(report.args):
        raise ReportArgumentError(
            f"The args count is not valid (expected {len(report.args)}, "
            f"got {len(values)})"
        )

    rows = [tuple(row) for row in report.runner(cur, report, values)]
    return ReportResult(report.title, report.headers, rows)


def fetch_report(report: Report, args=(), connect_fn=None, dsn=None) -> ReportResult:
    """
    Open a connection and run one report.

    :param report: Report to run.
    :param args: Argument values.
    :param connect_fn: Optional DB connector for dependency injection.
    :param dsn: Optional DSN, defaults to ``get_db_dsn()``.
    :returns: ``ReportResult``.
    """

    if connect_fn is None:
        connect_fn = psycopg.connect
    if dsn is None:
        dsn = db_builders.get_db_dsn()

    with connect_fn(dsn) as conn:
        with conn.cursor() as cur:
            return run_report(cur, report, args)


def format_cell(value) -> str:
    """
    Format a result cell for display.

    :param value: Raw database value.
    :returns: Two-decimal string for fractional numbers, ``""`` for NULL.
    """

    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (float, Decimal)):
        number = float(value)
        if number.is_integer():
            return str(int(number))
        return f"{number:.2f}"
    return str(value)
