"""
Database connection configuration helpers.

This module centralizes database connection loading from environment
variables and the ``auth.cfg`` credentials file, and avoids hard-coded
credentials in application code.
"""

import configparser
import os


DB_ENV_KEYS = ("DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD")
DB_SERVER_KEYS = ("DB_HOST", "DB_PORT", "DB_NAME")
AUTH_CONFIG_ENV_VAR = "AUTH_CONFIG_PATH"
DEFAULT_AUTH_CONFIG = "auth.cfg"
AUTH_SECTION = "auth"


def _quote_conninfo_value(value: str) -> str:
    """
    Quote and escape a libpq conninfo value.

    :param value: Raw connection value.
    :returns: Safely quoted value for a conninfo string.
    """

    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _build_conninfo(host, port, dbname, user, password) -> str:
    conn_values = {
        "host": host,
        "port": port,
        "dbname": dbname,
        "user": user,
        "password": password,
    }
    return " ".join(
        f"{key}={_quote_conninfo_value(value)}"
        for key, value in conn_values.items()
    )


def read_auth_config(path: str):
    """
    Read ``username`` and ``password`` from a properties-style file.

    Lines look like ``key=value`` or ``key: value``; blank lines and lines
    starting with ``#`` or ``!`` are ignored. The file has no section
    headers, so one is prepended before handing it to ``configparser``.

    :param path: Credentials file path.
    :raises FileNotFoundError: If the file does not exist.
    :raises RuntimeError: If either key is missing or empty.
    :returns: ``(username, password)`` tuple.
    """

    if not os.path.exists(path):
        raise FileNotFoundError(f"Could not find config file: {path}")

    cfg = configparser.ConfigParser(
        comment_prefixes=("#", "!"),
        allow_no_value=True,
        strict=False,
        interpolation=None,
    )
    with open(path, "r", encoding="utf-8") as handle:
        cfg.read_string(f"[{AUTH_SECTION}]\n" + handle.read(), source=path)

    section = cfg[AUTH_SECTION]
    username = section.get("username")
    password = section.get("password")
    if not username or not password:
        raise RuntimeError("Username or password not provided.")
    return username, password


def get_auth_config_path() -> str:
    """Return the credentials file path from ``AUTH_CONFIG_PATH`` or the default."""
    return os.environ.get(AUTH_CONFIG_ENV_VAR, DEFAULT_AUTH_CONFIG)


def get_db_dsn() -> str:
    """
    Build a database DSN from environment variables.

    Resolution order:
    1) ``DATABASE_URL`` if provided.
    2) Compose from ``DB_HOST``, ``DB_PORT``, ``DB_NAME``, ``DB_USER``,
       ``DB_PASSWORD``.
    3) Compose from ``DB_HOST``, ``DB_PORT``, ``DB_NAME`` plus the
       username/password stored in the ``auth.cfg`` credentials file.

    :raises RuntimeError: If required DB_* variables are missing.
    :returns: Connection string compatible with ``psycopg.connect``.
    """

    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        return database_url

    missing = [key for key in DB_ENV_KEYS if not os.environ.get(key)]
    if not missing:
        return _build_conninfo(*(os.environ[key] for key in DB_ENV_KEYS))

    auth_path = get_auth_config_path()
    server_ready = all(os.environ.get(key) for key in DB_SERVER_KEYS)
    if server_ready and os.path.exists(auth_path):
        username, password = read_auth_config(auth_path)
        return _build_conninfo(
            os.environ["DB_HOST"],
            os.environ["DB_PORT"],
            os.environ["DB_NAME"],
            username,
            password,
        )

    missing_vars = ", ".join(missing)
    raise RuntimeError(
        "Database configuration missing. Set DATABASE_URL or all of "
        "DB_HOST, DB_PORT, DB_NAME, DB_USER, DB_PASSWORD "
        f"(missing: {missing_vars})."
    )
