"""
Flask application serving the reports directory and report tables.

This module exposes a Flask app factory plus the seed endpoint used to load
the flat files. Database access is injectable for automated testing.
"""

import logging
import os

import psycopg
from flask import Flask, abort, current_app, jsonify, render_template, request

from . import query_table
from .load_data import run_seed
from .query_table import ReportArgumentError, fetch_report
from .report_cache import ReportCache, run_cached


BASE_DIR = os.path.dirname(os.path.abspath(__file__))
TEMPLATE_DIR = os.path.abspath(os.path.join(BASE_DIR, "templates"))

LOGGER = logging.getLogger(__name__)
SEED_STATE = {"status": "idle", "message": ""}
SEED_ERROR_MESSAGE = "Seeding failed due to an internal error."
REPORT_ERROR_MESSAGE = "Report is temporarily unavailable. Please try again later."
REPORT_ERRORS = (
    psycopg.Error,
    OSError,
    RuntimeError,
)
SEED_ERRORS = (
    psycopg.Error,
    OSError,
    ValueError,
    RuntimeError,
)


def report_arg_names(report) -> list:
    """Query-string names for a report's arguments (first word of each prompt)."""
    return [prompt.split()[0] for prompt in report.args]


def run_default_seed() -> dict:
    """Seed with logging in place of console progress output."""
    return run_seed(output_fn=LOGGER.info)


def _report_rows(result):
    return [
        [query_table.format_cell(value) for value in row]
        for row in result.rows
    ]


def index():
    """
    Render the reports directory.

    :returns: Rendered HTML response.
    """

    reports = [
        {
            "key": report.key,
            "title": report.title,
            "arg_names": report_arg_names(report),
        }
        for report in query_table.REPORTS
    ]
    return render_template("index.html", reports=reports, seed_state=SEED_STATE)


def show_report(key):
    """
    Run one report with query-string arguments and render its table.

    :param key: Report key from the directory.
    :returns: Rendered HTML response with status code.
    """

    report = query_table.REPORTS_BY_KEY.get(key)
    if report is None:
        abort(404)

    arg_names = report_arg_names(report)
    arg_values = {name: request.args.get(name, "").strip() for name in arg_names}
    context = {"report": report, "arg_values": arg_values}

    missing = [name for name, value in arg_values.items() if not value]
    if missing:
        error = f"Missing argument(s): {', '.join(missing)}"
        return render_template("report.html", error=error, **context), 400

    fetch_fn = current_app.config.get("FETCH_REPORT", fetch_report)
    cache = current_app.config["REPORT_CACHE"]
    try:
        result = run_cached(
            cache,
            report,
            [arg_values[name] for name in arg_names],
            fetch_fn,
        )
    except ReportArgumentError as exc:
        return render_template("report.html", error=str(exc), **context), 400
    except REPORT_ERRORS:
        current_app.logger.exception("Failed to run report %s", key)
        return render_template("report.html", error=REPORT_ERROR_MESSAGE, **context), 503

    return render_template(
        "report.html",
        result=result,
        rows=_report_rows(result),
        **context,
    )


def seed():
    """
    Seed the database from the flat files.

    :returns: JSON response with status code.
    """

    # Only one seed at a time
    if SEED_STATE["status"] == "running":
        return jsonify({"busy": True}), 409

    run_fn = current_app.config.get("RUN_SEED", run_default_seed)
    SEED_STATE["status"] = "running"
    SEED_STATE["message"] = "Seeding in progress..."
    try:
        counts = run_fn()
        inserted = sum((counts or {}).values())
        current_app.config["REPORT_CACHE"].clear()
        SEED_STATE["status"] = "done"
        SEED_STATE["message"] = f"Seed complete. Inserted {inserted} rows."
        return jsonify({"ok": True, "inserted": inserted}), 202
    except SEED_ERRORS:
        current_app.logger.exception("Seed request failed before completion")
        SEED_STATE["status"] = "error"
        SEED_STATE["message"] = SEED_ERROR_MESSAGE
        return jsonify({"ok": False, "error": SEED_ERROR_MESSAGE}), 500
    finally:
        # Never leave the busy flag set once this request is over
        if SEED_STATE["status"] == "running":
            SEED_STATE["status"] = "error"
            SEED_STATE["message"] = SEED_ERROR_MESSAGE


def seed_status():
    """Return the current seed state as JSON."""
    return jsonify(dict(SEED_STATE)), 200


def create_app(*, fetch_report_fn=None, run_seed_fn=None, cache=None):
    """
    Create and configure the Flask application.

    Dependency injection hooks are exposed for testability.

    :param fetch_report_fn: Optional callable ``(report, args) -> ReportResult``.
    :param run_seed_fn: Optional callable replacing the seeder.
    :param cache: Optional ``ReportCache`` shared by report requests.
    :returns: Configured Flask app instance.
    """

    app = Flask(__name__, template_folder=TEMPLATE_DIR)
    app.config["REPORT_CACHE"] = cache if cache is not None else ReportCache()
    if fetch_report_fn is not None:
        app.config["FETCH_REPORT"] = fetch_report_fn
    if run_seed_fn is not None:
        app.config["RUN_SEED"] = run_seed_fn
    app.add_url_rule("/", "index", index)
    app.add_url_rule("/reports/<int:key>", "show_report", show_report)
    app.add_url_rule("/seed", "seed", seed, methods=["POST"])
    app.add_url_rule("/seed-status", "seed_status", seed_status)
    return app
