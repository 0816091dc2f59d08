"""Package entrypoint for the Flask app.

Exposes an app factory and a ready-to-run Flask instance for CLI/WSGI use.
"""

from .website import create_app

# Default app instance so `flask --app libraries_analyzer` works out-of-the-box.
app = create_app()

__all__ = ["app", "create_app"]
