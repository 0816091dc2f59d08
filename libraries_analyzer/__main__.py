"""
Command-line entrypoint: ``python -m libraries_analyzer``.

By default the console reports directory runs against the configured
database, seeding it first when the ``libraries`` table is empty.
"""

import argparse
import functools
import logging
import os

import psycopg

from .analyzer import ReportsAnalyzer
from .db_config import get_db_dsn
from .load_data import DATA_DIR_ENV_VAR, run_seed
from .website import create_app


LOGGER = logging.getLogger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="libraries-analyzer",
        description="Seed the US libraries database and run canned reports.",
    )
    parser.add_argument(
        "--seed",
        action="store_true",
        help="Seed the database from the flat files and exit.",
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Run the Flask reports site instead of the console menu.",
    )
    parser.add_argument(
        "--data-dir",
        default=None,
        help=f"Flat-file directory (defaults to ${DATA_DIR_ENV_VAR} or the working directory).",
    )
    parser.add_argument(
        "--no-seed",
        action="store_true",
        help="Do not seed an empty database before showing the menu.",
    )
    return parser


def main(argv=None) -> int:
    """
    Parse arguments and run the selected mode.

    :param argv: Optional argument list, defaults to ``sys.argv[1:]``.
    :returns: Process exit code.
    """

    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.data_dir:
        os.environ[DATA_DIR_ENV_VAR] = args.data_dir

    if args.serve:
        port = int(os.getenv("PORT", "8000"))
        create_app().run(host="0.0.0.0", port=port, debug=False)
        return 0

    try:
        dsn = get_db_dsn()
        if args.seed:
            run_seed(dsn=dsn, data_dir=args.data_dir)
            print("The database is seeded successfully")
            return 0

        seed_fn = None
        if not args.no_seed:
            seed_fn = functools.partial(run_seed, dsn=dsn, data_dir=args.data_dir)
        with psycopg.connect(dsn, autocommit=True) as conn:
            ReportsAnalyzer(conn).run(seed_fn=seed_fn)
    except (psycopg.Error, OSError, RuntimeError, ValueError) as exc:
        LOGGER.exception("libraries-analyzer failed")
        print(f"Error: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
