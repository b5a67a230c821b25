"""Flask front for the ClarityPath WSGI application.

Flask owns the process (CLI commands, dev server, WSGI entry point for
gunicorn/waitress); every request is handed to ``claritypath.server.app``
through a catch-all route.
"""

from __future__ import annotations

import os
import subprocess
import sys

import click
from flask import Flask, request

from .config import BASE_DIR, COOKIE_SECURE, HOST, PORT, SECRET_KEY, configure_logging
from .db import ensure_bootstrap, init_db
from .server import app as wsgi_app

configure_logging()

flask_app = Flask(__name__, static_folder=None, template_folder=None)

flask_app.config["SECRET_KEY"] = SECRET_KEY
flask_app.config["SESSION_COOKIE_SECURE"] = COOKIE_SECURE
flask_app.config["SESSION_COOKIE_HTTPONLY"] = True
flask_app.config["SESSION_COOKIE_SAMESITE"] = "Lax"

METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH"]


@flask_app.before_request
def setup_request():
    # Health probes stay independent of the database bootstrap.
    if request.path in {"/healthz"}:
        return None
    ensure_bootstrap()


@flask_app.route("/", defaults={"path": ""}, methods=METHODS)
@flask_app.route("/<path:path>", methods=METHODS)
def catch_all(path):
    response_data = {}

    def start_response(status, headers, exc_info=None):
        response_data["status"] = status
        response_data["headers"] = headers
        return lambda s: None

    body = b"".join(wsgi_app(request.environ, start_response))
    status_code = int(response_data.get("status", "200 OK").split()[0])
    response = flask_app.make_response((body, status_code))
    # Set-Cookie may repeat, so headers are appended rather than assigned.
    response.headers.clear()
    for header_name, header_value in response_data.get("headers", []):
        response.headers.add(header_name, header_value)
    return response


@flask_app.cli.command("init-db")
def init_db_command():
    """Create tables and seed the admin account and video catalog."""
    init_db()
    click.echo("Database initialized.")


@flask_app.cli.command("run-tests")
@click.argument("pytest_args", nargs=-1)
def run_tests_command(pytest_args):
    """Run the pytest suite."""
    result = subprocess.run([sys.executable, "-m", "pytest", "tests/", *pytest_args], cwd=str(BASE_DIR))
    sys.exit(result.returncode)


if __name__ == "__main__":
    flask_app.run(host=HOST, port=PORT, debug=os.environ.get("FLASK_DEBUG", "0") == "1", threaded=True)
