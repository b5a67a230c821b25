"""Request/response primitives shared by the WSGI app and its route handlers."""

from __future__ import annotations

import json
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qs, quote, unquote

from .config import COOKIE_SECURE


class Request:
    """Thin wrapper over the WSGI environ with lazy form/JSON body parsing."""

    def __init__(self, environ: dict):
        self.environ = environ
        self.method = environ.get("REQUEST_METHOD", "GET").upper()
        self.path = environ.get("PATH_INFO", "/") or "/"
        self.query = {k: v[0] for k, v in parse_qs(environ.get("QUERY_STRING", ""), keep_blank_values=True).items()}
        self.cookies = self._parse_cookies(environ.get("HTTP_COOKIE", ""))
        self._body: Optional[bytes] = None
        self._form: Optional[Dict[str, str]] = None
        self._json: Optional[object] = None
        self._json_loaded = False

    def _parse_cookies(self, raw_cookie: str) -> Dict[str, str]:
        cookies: Dict[str, str] = {}
        if not raw_cookie:
            return cookies
        for token in raw_cookie.split(";"):
            if "=" not in token:
                continue
            key, value = token.split("=", 1)
            cookies[key.strip()] = unquote(value.strip())
        return cookies

    @property
    def remote_addr(self) -> str:
        return self.environ.get("REMOTE_ADDR", "unknown")

    @property
    def user_agent(self) -> str:
        return self.environ.get("HTTP_USER_AGENT", "")

    @property
    def is_json(self) -> bool:
        return "application/json" in self.environ.get("CONTENT_TYPE", "")

    @property
    def wants_json(self) -> bool:
        return self.path.startswith("/api/") or "application/json" in self.environ.get("HTTP_ACCEPT", "")

    def body(self) -> bytes:
        if self._body is None:
            try:
                length = int(self.environ.get("CONTENT_LENGTH") or 0)
            except ValueError:
                length = 0
            stream = self.environ.get("wsgi.input")
            self._body = stream.read(length) if (stream is not None and length) else b""
        return self._body

    @property
    def form(self) -> Dict[str, str]:
        if self._form is None:
            self._form = {}
            if self.method in {"POST", "PUT", "PATCH", "DELETE"} and not self.is_json:
                parsed = parse_qs(self.body().decode("utf-8", errors="replace"), keep_blank_values=True)
                self._form = {k: v[0] for k, v in parsed.items()}
        return self._form

    @property
    def json(self) -> Optional[object]:
        """Decoded JSON body, or None when absent or malformed."""
        if not self._json_loaded:
            self._json_loaded = True
            raw = self.body()
            if raw:
                try:
                    self._json = json.loads(raw.decode("utf-8"))
                except (UnicodeDecodeError, json.JSONDecodeError):
                    self._json = None
        return self._json

    def payload(self) -> Dict[str, object]:
        """Form fields or a JSON object body, whichever the client sent."""
        if self.is_json:
            data = self.json
            return data if isinstance(data, dict) else {}
        return dict(self.form)


class Response:
    """Response object that centralizes security headers."""

    def __init__(
        self,
        body: object = "",
        status: str = "200 OK",
        content_type: str = "text/html; charset=utf-8",
        headers: Optional[List[Tuple[str, str]]] = None,
    ):
        self.body = body.encode("utf-8") if isinstance(body, str) else bytes(body)  # type: ignore[arg-type]
        self.status = status
        self.content_type = content_type
        self.headers = headers or []

    @property
    def status_code(self) -> int:
        return int(self.status.split()[0])

    def wsgi(self, start_response):
        sec_headers = [
            ("Content-Type", self.content_type),
            ("X-Frame-Options", "DENY"),
            ("X-Content-Type-Options", "nosniff"),
            ("Referrer-Policy", "strict-origin-when-cross-origin"),
            ("Cache-Control", "no-store"),
            (
                "Content-Security-Policy",
                "default-src 'self'; style-src 'self'; script-src 'self'; img-src 'self' data:; "
                "frame-src https://www.youtube.com; base-uri 'self'; form-action 'self'",
            ),
        ]
        start_response(self.status, sec_headers + self.headers)
        return [self.body]


def redirect(location: str, cookies: Optional[List[str]] = None) -> Response:
    headers = [("Location", location)]
    for cookie in cookies or []:
        headers.append(("Set-Cookie", cookie))
    return Response("", status="302 Found", headers=headers)


def json_response(payload: object, status: str = "200 OK", cookies: Optional[List[str]] = None) -> Response:
    headers = [("Set-Cookie", cookie) for cookie in cookies or []]
    return Response(json.dumps(payload), status=status, content_type="application/json; charset=utf-8", headers=headers)


def json_error(error: str, status: str, **extra: object) -> Response:
    payload: Dict[str, object] = {"ok": False, "error": error}
    payload.update(extra)
    return json_response(payload, status=status)


def set_cookie(name: str, value: str, max_age: Optional[int] = None, path: str = "/") -> str:
    parts = [f"{name}={quote(value)}", f"Path={path}", "HttpOnly", "SameSite=Lax"]
    if COOKIE_SECURE:
        parts.append("Secure")
    if max_age is not None:
        parts.append(f"Max-Age={max_age}")
    return "; ".join(parts)


def clear_cookie(name: str, path: str = "/") -> str:
    parts = [f"{name}=", "Max-Age=0", f"Path={path}", "HttpOnly", "SameSite=Lax"]
    if COOKIE_SECURE:
        parts.append("Secure")
    return "; ".join(parts)
