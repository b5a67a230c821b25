"""Company registration and the platform admin's company controls."""

from __future__ import annotations

import logging
import sqlite3
from typing import Dict, List, Optional, Tuple

from .config import COMPANY_PLANS, COMPANY_STATUSES, MIN_EMPLOYEES_QUOTA, MIN_MANAGER_PASSWORD
from .db import log_action, query_scalar
from .utils import email_is_valid, hash_password, iso, normalize_email, to_int

logger = logging.getLogger(__name__)


def register_company(conn, payload: Dict[str, object]) -> Tuple[Optional[Dict[str, int]], str]:
    """Create an inactive company on the ``equipe`` plan plus its first manager.

    Returns ``({"company_id", "manager_id"}, "")`` or ``(None, error)``; the
    caller commits.
    """
    company_name = str(payload.get("company_name") or "").strip()
    quota = to_int(payload.get("employees_quota"))
    manager_name = str(payload.get("manager_name") or "").strip()
    email = normalize_email(payload.get("manager_email"))
    password = str(payload.get("manager_password") or "")
    phone = str(payload.get("manager_phone") or "").strip() or None

    if not company_name or quota is None:
        return None, "Dados da empresa incompletos"
    if not manager_name or not email or not password:
        return None, "Dados do gestor incompletos"
    if quota < MIN_EMPLOYEES_QUOTA:
        return None, f"Número mínimo de funcionários é {MIN_EMPLOYEES_QUOTA}"
    if len(password) < MIN_MANAGER_PASSWORD:
        return None, f"A senha deve ter no mínimo {MIN_MANAGER_PASSWORD} caracteres"
    if not email_is_valid(email):
        return None, "Email inválido"
    if conn.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone():
        return None, "Email já cadastrado"

    cur = conn.execute(
        "INSERT INTO companies (name, employees_quota, plan, status, created_at) VALUES (?, ?, 'equipe', 'inactive', ?)",
        (company_name, quota, iso()),
    )
    company_id = int(cur.lastrowid)
    pw_hash, pw_salt = hash_password(password)
    try:
        cur = conn.execute(
            """
            INSERT INTO users (email, name, phone, password_hash, password_salt, company_id, is_active, is_superuser, created_at)
            VALUES (?, ?, ?, ?, ?, ?, 1, 0, ?)
            """,
            (email, manager_name, phone, pw_hash, pw_salt, company_id, iso()),
        )
    except sqlite3.IntegrityError:
        conn.execute("DELETE FROM companies WHERE id = ?", (company_id,))
        return None, "Email já cadastrado"
    manager_id = int(cur.lastrowid)
    log_action(conn, company_id, manager_id, "company.registered", "companies", company_id, company_name)
    logger.info("Registered company %s (%s) with manager %s", company_id, company_name, email)
    return {"company_id": company_id, "manager_id": manager_id}, ""


def list_companies(conn, status: str = "", search: str = "") -> List[Dict[str, object]]:
    sql = """
        SELECT c.*,
               (SELECT COUNT(*) FROM employees e WHERE e.company_id = c.id AND e.archived_at IS NULL) AS employee_count,
               (SELECT u.email FROM users u WHERE u.company_id = c.id ORDER BY u.id LIMIT 1) AS manager_email
        FROM companies c
        WHERE 1 = 1
    """
    params: List[object] = []
    if status in COMPANY_STATUSES:
        sql += " AND c.status = ?"
        params.append(status)
    if search.strip():
        sql += " AND LOWER(c.name) LIKE ?"
        params.append(f"%{search.strip().lower()}%")
    sql += " ORDER BY c.created_at DESC, c.id DESC"
    return [dict(row) for row in conn.execute(sql, tuple(params)).fetchall()]


def update_company(conn, company_id: int, payload: Dict[str, object], actor_id: Optional[int]) -> Tuple[bool, str]:
    current = conn.execute("SELECT * FROM companies WHERE id = ?", (company_id,)).fetchone()
    if not current:
        return False, "Empresa não encontrada"
    status = str(payload.get("status") or current["status"])
    plan = str(payload.get("plan") or current["plan"])
    quota = to_int(payload.get("employees_quota"), int(current["employees_quota"]))
    if status not in COMPANY_STATUSES:
        return False, "Status inválido"
    if plan not in COMPANY_PLANS:
        return False, "Plano inválido"
    if quota is None or quota < MIN_EMPLOYEES_QUOTA:
        return False, f"Número mínimo de funcionários é {MIN_EMPLOYEES_QUOTA}"
    in_use = employee_count(conn, company_id)
    if quota < in_use:
        return False, f"A empresa já possui {in_use} funcionários ativos"
    conn.execute(
        "UPDATE companies SET status = ?, plan = ?, employees_quota = ? WHERE id = ?",
        (status, plan, quota, company_id),
    )
    log_action(conn, company_id, actor_id, "company.updated", "companies", company_id, f"status={status} plan={plan} quota={quota}")
    return True, "Empresa atualizada"


def employee_count(conn, company_id: int) -> int:
    return query_scalar(
        conn,
        "SELECT COUNT(*) FROM employees WHERE company_id = ? AND archived_at IS NULL",
        (company_id,),
    )


def seats_left(conn, company) -> int:
    return max(0, int(company["employees_quota"]) - employee_count(conn, int(company["id"])))
