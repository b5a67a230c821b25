"""Sessions, login throttling, CSRF and password reset links.

One ``sessions`` table serves both account kinds: managers/admins (``user_id``)
and employees (``employee_id``). The raw token lives only in the cookie; the
database keeps its SHA-256.
"""

from __future__ import annotations

import datetime as dt
import logging
import secrets
import threading
from typing import Dict, List, Optional, Tuple

from .config import EMPLOYEE_RESET_HOURS, SESSION_DAYS
from .utils import iso, token_hash, utcnow
from .web import Request, Response, json_error, redirect

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session_token"

ROLE_RANK = {
    "employee": 1,
    "manager": 2,
    "admin": 3,
}

RATE_LIMIT: Dict[str, List[dt.datetime]] = {}
RATE_LIMIT_LOCK = threading.Lock()


def anonymous_context() -> Dict[str, object]:
    return {"user": None, "employee": None, "company": None, "role": None, "csrf": ""}


def create_session(
    conn,
    ip: str,
    user_agent: str,
    user_id: Optional[int] = None,
    employee_id: Optional[int] = None,
) -> Tuple[str, str]:
    if (user_id is None) == (employee_id is None):
        raise ValueError("a session belongs to exactly one user or employee")
    raw_token = secrets.token_urlsafe(32)
    csrf = secrets.token_urlsafe(24)
    expires = utcnow() + dt.timedelta(days=SESSION_DAYS)
    conn.execute(
        """
        INSERT INTO sessions (user_id, employee_id, token_hash, csrf_token, expires_at, created_at, last_seen_at, ip_address, user_agent)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (user_id, employee_id, token_hash(raw_token), csrf, expires.isoformat(), iso(), iso(), ip, user_agent[:200]),
    )
    return raw_token, csrf


def destroy_session(conn, raw_token: str) -> None:
    if raw_token:
        conn.execute("DELETE FROM sessions WHERE token_hash = ?", (token_hash(raw_token),))


def get_auth_context(conn, req: Request) -> Dict[str, object]:
    """Resolve the signed-in manager/admin or employee for this request."""
    token = req.cookies.get(SESSION_COOKIE)
    if not token:
        return anonymous_context()

    session = conn.execute("SELECT * FROM sessions WHERE token_hash = ?", (token_hash(token),)).fetchone()
    if not session:
        return anonymous_context()

    try:
        expires_at = dt.datetime.fromisoformat(session["expires_at"])
    except (TypeError, ValueError):
        expires_at = utcnow() - dt.timedelta(days=1)
    if expires_at < utcnow():
        conn.execute("DELETE FROM sessions WHERE id = ?", (session["id"],))
        conn.commit()
        return anonymous_context()

    ctx = anonymous_context()
    ctx["csrf"] = session["csrf_token"]

    if session["user_id"] is not None:
        user = conn.execute(
            "SELECT id, email, name, company_id, is_active, is_superuser FROM users WHERE id = ?",
            (session["user_id"],),
        ).fetchone()
        if not user or not user["is_active"]:
            conn.execute("DELETE FROM sessions WHERE id = ?", (session["id"],))
            conn.commit()
            return anonymous_context()
        ctx["user"] = {
            "id": int(user["id"]),
            "email": user["email"],
            "name": user["name"],
            "company_id": user["company_id"],
            "is_superuser": bool(user["is_superuser"]),
        }
        ctx["role"] = "admin" if user["is_superuser"] else "manager"
        if user["company_id"] is not None:
            ctx["company"] = conn.execute("SELECT * FROM companies WHERE id = ?", (user["company_id"],)).fetchone()
    else:
        employee = conn.execute(
            "SELECT id, name, email, company_id, status, archived_at FROM employees WHERE id = ?",
            (session["employee_id"],),
        ).fetchone()
        if not employee or employee["status"] == "blocked" or employee["archived_at"]:
            conn.execute("DELETE FROM sessions WHERE id = ?", (session["id"],))
            conn.commit()
            return anonymous_context()
        ctx["employee"] = {
            "id": int(employee["id"]),
            "name": employee["name"],
            "email": employee["email"],
            "company_id": int(employee["company_id"]),
        }
        ctx["role"] = "employee"
        ctx["company"] = conn.execute("SELECT * FROM companies WHERE id = ?", (employee["company_id"],)).fetchone()

    conn.execute("UPDATE sessions SET last_seen_at = ? WHERE id = ?", (iso(), session["id"]))
    return ctx


def role_allows(role: Optional[str], minimum: str) -> bool:
    if role is None:
        return False
    return ROLE_RANK.get(role, 0) >= ROLE_RANK.get(minimum, 99)


def login_path_for(req: Request) -> str:
    return "/acesso" if req.path.startswith("/funcionario") else "/login"


def require_employee(req: Request, ctx: Dict[str, object]) -> Optional[Response]:
    if ctx.get("employee"):
        return None
    if req.wants_json:
        return json_error("unauthenticated", "401 Unauthorized")
    return redirect("/acesso")


def require_role(req: Request, ctx: Dict[str, object], minimum: str) -> Optional[Response]:
    """Gate a manager/admin route: anonymous -> login, wrong role -> 403."""
    if not ctx.get("user"):
        if req.wants_json:
            return json_error("unauthenticated", "401 Unauthorized")
        return redirect(login_path_for(req))
    if not role_allows(str(ctx.get("role") or ""), minimum):
        if req.wants_json:
            return json_error("forbidden", "403 Forbidden")
        return Response("<h1>403 Forbidden</h1>", status="403 Forbidden")
    return None


def validate_csrf(req: Request, ctx: Dict[str, object]) -> bool:
    if req.method not in {"POST", "PUT", "PATCH", "DELETE"}:
        return True
    csrf = req.form.get("csrf_token") or req.environ.get("HTTP_X_CSRF_TOKEN", "")
    return bool(csrf and csrf == ctx.get("csrf"))


def enforce_rate_limit(ip: str, max_attempts: int = 8, window_minutes: int = 10) -> bool:
    now = utcnow()
    cutoff = now - dt.timedelta(minutes=window_minutes)
    with RATE_LIMIT_LOCK:
        history = [event for event in RATE_LIMIT.get(ip, []) if event >= cutoff]
        if len(history) >= max_attempts:
            RATE_LIMIT[ip] = history
            logger.warning("Login rate limit hit for %s", ip)
            return False
        history.append(now)
        RATE_LIMIT[ip] = history
    return True


def create_password_reset(conn, user_id: int, hours: int = 24) -> Tuple[str, str]:
    raw_token = secrets.token_urlsafe(32)
    expires = utcnow() + dt.timedelta(hours=hours)
    conn.execute(
        "INSERT INTO password_resets (user_id, token_hash, expires_at, used_at, created_at) VALUES (?, ?, ?, NULL, ?)",
        (user_id, token_hash(raw_token), expires.isoformat(), iso()),
    )
    return raw_token, expires.isoformat()


def _unexpired(row):
    if not row or row["used_at"]:
        return None
    try:
        if dt.datetime.fromisoformat(row["expires_at"]) < utcnow():
            return None
    except ValueError:
        return None
    return row


def verify_reset_token(conn, raw_token: str):
    row = conn.execute(
        """
        SELECT pr.*, u.email, u.name
        FROM password_resets pr
        JOIN users u ON u.id = pr.user_id
        WHERE pr.token_hash = ?
        """,
        (token_hash(raw_token),),
    ).fetchone()
    return _unexpired(row)


def create_employee_password_reset(conn, employee_id: int, hours: float = EMPLOYEE_RESET_HOURS) -> Tuple[str, str]:
    raw_token = secrets.token_urlsafe(32)
    expires = utcnow() + dt.timedelta(hours=hours)
    conn.execute(
        "INSERT INTO employee_password_resets (employee_id, token_hash, expires_at, used_at, created_at) VALUES (?, ?, ?, NULL, ?)",
        (employee_id, token_hash(raw_token), expires.isoformat(), iso()),
    )
    return raw_token, expires.isoformat()


def verify_employee_reset_token(conn, raw_token: str):
    """Archived employees cannot use a link issued before they were archived."""
    row = conn.execute(
        """
        SELECT epr.*, e.name
        FROM employee_password_resets epr
        JOIN employees e ON e.id = epr.employee_id
        WHERE epr.token_hash = ? AND e.archived_at IS NULL
        """,
        (token_hash(raw_token),),
    ).fetchone()
    return _unexpired(row)
