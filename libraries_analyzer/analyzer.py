"""
Console menu for the canned library reports.

The analyzer prints the reports directory, reads a menu key per line, asks
for report arguments when needed, runs the report (through the report
cache) and renders the rows as a ``rich`` table.
"""

import logging

import psycopg
from rich.console import Console
from rich.table import Table

from . import db_builders, query_table
from .query_table import DEFAULT_REPORT_KEY, ReportArgumentError
from .report_cache import ReportCache, run_cached


LOGGER = logging.getLogger(__name__)

QUIT_COMMAND = "q"
MAX_ARG_ATTEMPTS = 3
NOT_A_NUMBER_MESSAGE = "--- Please enter a number ---"
NO_RECORDS_MESSAGE = "- - - No records are found - - -"
REPORT_FAILED_MESSAGE = "--- The report could not be run, please try again ---"
GOODBYE_MESSAGE = "Thank you for using our services"


def split_args(line: str) -> list:
    """
    Split an argument line into values.

    Values are TAB separated; a line without TABs is split on whitespace.
    """

    line = line.strip("\r\n")
    if "\t" in line:
        values = [value.strip() for value in line.split("\t")]
        return [value for value in values if value]
    return line.split()


class ReportsAnalyzer:
    """Interactive reports directory bound to one open database connection."""

    def __init__(self, conn, cache=None, input_fn=input, console=None):
        self.conn = conn
        self.cache = cache if cache is not None else ReportCache()
        self.input_fn = input_fn
        self.console = console or Console()

    def echo(self, text=""):
        self.console.print(text, markup=False, highlight=False)

    def read_line(self):
        """Return the next input line, or None at end of input."""
        try:
            return self.input_fn()
        except EOFError:
            return None

    def directory_text(self) -> str:
        lines = ["", "         Reports Directory", "-" * 40]
        lines.extend(str(report) for report in query_table.REPORTS)
        lines.extend([f"{QUIT_COMMAND} - End", "", "Please make a selection"])
        return "\n".join(lines)

    def show_directory(self):
        self.echo(self.directory_text())

    def is_seeded(self) -> bool:
        with self.conn.cursor() as cur:
            return db_builders.is_database_seeded(cur)

    def _run_on_connection(self, report, args):
        with self.conn.cursor() as cur:
            return query_table.run_report(cur, report, args)

    def execute(self, report, args=()):
        """Run ``report`` through the cache and return its ``ReportResult``."""
        return run_cached(self.cache, report, args, self._run_on_connection)

    def render(self, result):
        if not result.rows:
            self.echo(NO_RECORDS_MESSAGE)
            return

        title = f"Cached: {result.title}" if result.cached else result.title
        table = Table(title=title)
        for header in result.headers:
            table.add_column(header)
        for row in result.rows:
            table.add_row(*(query_table.format_cell(value) for value in row))
        self.console.print(table)

    def prompt_args(self, report):
        """
        Ask for the report's argument values.

        :param report: Report taking arguments.
        :returns: List of values, or None after ``MAX_ARG_ATTEMPTS`` bad tries.
        """

        attempts_left = MAX_ARG_ATTEMPTS
        while attempts_left > 0:
            self.echo("You have selected a query with args")
            self.echo(f"Args count: {len(report.args)}")
            self.echo("Please enter a value for each of the args separated by TAB")
            self.echo(" ".join(report.args))

            line = self.read_line()
            if line is None:
                return None
            values = split_args(line)
            if len(values) == len(report.args):
                return values

            attempts_left -= 1
            self.echo("The args count is not valid")
            self.echo(f"You have {attempts_left} times left for retry")
        return None

    def run_selection(self, report):
        """Run one report chosen from the directory and render the result."""
        if report.key == DEFAULT_REPORT_KEY:
            with db_builders.benchmark(self.echo):
                self.echo(query_table.NOT_FOUND_MESSAGE)
            return

        args = ()
        if report.args:
            args = self.prompt_args(report)
            if args is None:
                return

        try:
            with db_builders.benchmark(self.echo):
                self.render(self.execute(report, args))
        except ReportArgumentError as exc:
            self.echo(f"--- {exc} ---")
        except psycopg.Error:
            LOGGER.exception("Report %s failed", report.key)
            self.conn.rollback()
            self.echo(REPORT_FAILED_MESSAGE)

    def handle_selection(self, line: str) -> bool:
        """
        Act on one menu line.

        :param line: Raw input line.
        :returns: False when the user asked to quit, True otherwise.
        """

        text = line.strip()
        if text == QUIT_COMMAND:
            return False
        if not text:
            return True

        token = text.split()[0]
        if not db_builders.is_integer(token):
            self.echo(NOT_A_NUMBER_MESSAGE)
            return True

        self.run_selection(query_table.get_report(int(token)))
        return True

    def run(self, seed_fn=None):
        """
        Seed when needed, then loop over menu selections until ``q``.

        :param seed_fn: Optional callable seeding an empty database.
        """

        if seed_fn is not None and not self.is_seeded():
            seed_fn()
            self.echo("The database is seeded successfully")

        while True:
            self.show_directory()
            line = self.read_line()
            if line is None or not self.handle_selection(line):
                break

        self.echo(GOODBYE_MESSAGE)
