"""Per-company departments."""

from __future__ import annotations

import sqlite3
from typing import Dict, List, Optional, Tuple

from .db import log_action
from .utils import iso


def list_departments(conn, company_id: int) -> List[Dict[str, object]]:
    rows = conn.execute(
        """
        SELECT d.*,
               (SELECT COUNT(*) FROM employees e WHERE e.department_id = d.id AND e.archived_at IS NULL) AS employee_count
        FROM departments d
        WHERE d.company_id = ?
        ORDER BY LOWER(d.name)
        """,
        (company_id,),
    ).fetchall()
    return [dict(row) for row in rows]


def create_department(conn, company_id: int, name: str, description: str = "", actor_id: Optional[int] = None) -> Tuple[Optional[int], str]:
    name = (name or "").strip()
    if not name:
        return None, "Nome do departamento é obrigatório"
    try:
        cur = conn.execute(
            "INSERT INTO departments (company_id, name, description, created_at) VALUES (?, ?, ?, ?)",
            (company_id, name[:120], (description or "").strip() or None, iso()),
        )
    except sqlite3.IntegrityError:
        return None, "Já existe um departamento com este nome"
    department_id = int(cur.lastrowid)
    log_action(conn, company_id, actor_id, "department.created", "departments", department_id, name)
    return department_id, ""


def rename_department(conn, company_id: int, department_id: int, name: str, description: Optional[str] = None, actor_id: Optional[int] = None) -> Tuple[bool, str]:
    name = (name or "").strip()
    if not name:
        return False, "Nome do departamento é obrigatório"
    current = conn.execute("SELECT * FROM departments WHERE id = ? AND company_id = ?", (department_id, company_id)).fetchone()
    if not current:
        return False, "Departamento não encontrado"
    desc = current["description"] if description is None else (description.strip() or None)
    try:
        conn.execute(
            "UPDATE departments SET name = ?, description = ? WHERE id = ?",
            (name[:120], desc, department_id),
        )
    except sqlite3.IntegrityError:
        return False, "Já existe um departamento com este nome"
    log_action(conn, company_id, actor_id, "department.updated", "departments", department_id, name)
    return True, "Departamento atualizado"


def delete_department(conn, company_id: int, department_id: int, actor_id: Optional[int] = None) -> Tuple[bool, str]:
    current = conn.execute("SELECT * FROM departments WHERE id = ? AND company_id = ?", (department_id, company_id)).fetchone()
    if not current:
        return False, "Departamento não encontrado"
    # Employees stay; they just lose their department.
    conn.execute("UPDATE employees SET department_id = NULL WHERE department_id = ?", (department_id,))
    conn.execute("DELETE FROM departments WHERE id = ?", (department_id,))
    log_action(conn, company_id, actor_id, "department.deleted", "departments", department_id, current["name"])
    return True, "Departamento removido"
