#!/usr/bin/env python3
"""Smoke checks for local runs and CI, made as in-process WSGI calls.

Exits non-zero and lists the failing checks when any probe misbehaves.
"""

import io
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from claritypath.db import ensure_bootstrap
from claritypath.server import app

# (description, method, path, json body or None, expected status prefix)
CHECKS = [
    ("liveness", "GET", "/healthz", None, "200"),
    ("readiness", "GET", "/readyz", None, "200"),
    ("login page", "GET", "/login", None, "200"),
    ("employee access page", "GET", "/acesso", None, "200"),
    ("anonymous portal API", "GET", "/api/employees/me", None, "401"),
    ("anonymous manager API", "GET", "/api/employees", None, "401"),
    ("anonymous video admin", "GET", "/api/videos", None, "401"),
    ("employee password reset page", "GET", "/acesso/esqueci-senha", None, "200"),
    ("anonymous portal page", "GET", "/funcionario/mapa", None, "302"),
    ("unknown CPF", "POST", "/acesso", {"cpf": "000.000.000-00"}, "401"),
    ("webhook without key", "POST", "/api/webhooks/journey-map", {"cpf": "52998224725", "html_result": "<p/>"}, "401"),
    ("webhook description", "GET", "/api/webhooks/typeform-mapa", None, "200"),
]


def call(method, path, payload=None):
    captured = {}

    def start_response(status, headers, exc_info=None):
        captured["status"] = status

    body = json.dumps(payload).encode("utf-8") if payload is not None else b""
    path_info, _, query = path.partition("?")
    environ = {
        "REQUEST_METHOD": method,
        "PATH_INFO": path_info,
        "QUERY_STRING": query,
        "wsgi.input": io.BytesIO(body),
        "CONTENT_LENGTH": str(len(body)),
        "CONTENT_TYPE": "application/json" if payload is not None else "",
        "REMOTE_ADDR": "127.0.0.1",
        "HTTP_USER_AGENT": "smoke-test",
    }
    content = b"".join(app(environ, start_response))
    return captured["status"], content.decode("utf-8", errors="ignore")


def main() -> int:
    ensure_bootstrap()
    failures = []
    for label, method, path, payload, expected in CHECKS:
        status, _body = call(method, path, payload)
        if not status.startswith(expected):
            failures.append(f"{label}: {method} {path} -> {status} (expected {expected})")
    if failures:
        print("SMOKE_FAILED")
        for line in failures:
            print(" -", line)
        return 1
    print(f"SMOKE_OK ({len(CHECKS)} checks)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
