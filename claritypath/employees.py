"""Employee records: manager CRUD, invites, CPF sign-in lookups and progress."""

from __future__ import annotations

import datetime as dt
import json
import logging
import re
import secrets
import sqlite3
from typing import Dict, List, Optional, Tuple

from . import workbook
from .companies import seats_left
from .config import EMPLOYEE_PASSWORD_MAX, EMPLOYEE_PASSWORD_MIN, EMPLOYEE_STATUSES, INVITE_HOURS
from .db import log_action
from .journey import JourneyRecord, JourneyState, ReleasePolicy, evaluate
from .utils import (
    clean_cpf,
    cpf_is_valid,
    email_is_valid,
    hash_password,
    iso,
    normalize_email,
    parse_date,
    to_int,
    token_hash,
    utcnow,
    verify_password,
)

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "email", "cpf", "birth_date", "whatsapp", "department_id", "status")
PASSWORD_CHARS_RE = re.compile(r"[A-Za-z0-9@#$%&*!_-]+")


def get_employee(conn, company_id: int, employee_id: int):
    return conn.execute(
        "SELECT * FROM employees WHERE id = ? AND company_id = ?",
        (employee_id, company_id),
    ).fetchone()


def find_by_cpf(conn, cpf: object):
    digits = clean_cpf(cpf)
    if not digits:
        return None
    return conn.execute("SELECT * FROM employees WHERE cpf = ?", (digits,)).fetchone()


def find_by_email(conn, email: object):
    return conn.execute(
        "SELECT * FROM employees WHERE email = ? ORDER BY id LIMIT 1",
        (normalize_email(email),),
    ).fetchone()


def _validate_department(conn, company_id: int, department_id: Optional[int]) -> bool:
    if department_id is None:
        return True
    row = conn.execute("SELECT id FROM departments WHERE id = ? AND company_id = ?", (department_id, company_id)).fetchone()
    return row is not None


def _clean_fields(conn, company_id: int, payload: Dict[str, object]) -> Tuple[Dict[str, object], str]:
    fields: Dict[str, object] = {}
    if "name" in payload:
        name = str(payload.get("name") or "").strip()
        if not name:
            return {}, "Nome é obrigatório"
        fields["name"] = name[:200]
    if "email" in payload:
        email = normalize_email(payload.get("email"))
        if not email_is_valid(email):
            return {}, "Email inválido"
        fields["email"] = email
    if "cpf" in payload:
        raw = str(payload.get("cpf") or "").strip()
        if raw:
            if not cpf_is_valid(raw):
                return {}, "CPF inválido"
            fields["cpf"] = clean_cpf(raw)
        else:
            fields["cpf"] = None
    if "birth_date" in payload:
        raw = str(payload.get("birth_date") or "").strip()
        parsed = parse_date(raw) if raw else None
        if raw and not parsed:
            return {}, "Data de nascimento inválida"
        fields["birth_date"] = parsed
    if "whatsapp" in payload:
        fields["whatsapp"] = str(payload.get("whatsapp") or "").strip()[:40] or None
    if "department_id" in payload:
        department_id = to_int(payload.get("department_id"))
        if not _validate_department(conn, company_id, department_id):
            return {}, "Departamento não encontrado"
        fields["department_id"] = department_id
    if "status" in payload:
        status = str(payload.get("status") or "").strip()
        if status not in EMPLOYEE_STATUSES:
            return {}, "Status inválido"
        fields["status"] = status
    return fields, ""


def create_employee(conn, company, manager_id: Optional[int], payload: Dict[str, object]) -> Tuple[Optional[int], str]:
    company_id = int(company["id"])
    if not str(payload.get("name") or "").strip() or not str(payload.get("email") or "").strip():
        return None, "Campos obrigatórios: nome e email"
    if seats_left(conn, company) <= 0:
        return None, "Limite de funcionários do plano atingido"
    data = {key: payload.get(key) for key in EDITABLE_FIELDS if key in payload and key != "status"}
    fields, error = _clean_fields(conn, company_id, data)
    if error:
        return None, error
    if conn.execute(
        "SELECT id FROM employees WHERE company_id = ? AND email = ?",
        (company_id, fields["email"]),
    ).fetchone():
        return None, "Funcionário com este e-mail já existe nesta empresa"
    if fields.get("cpf") and find_by_cpf(conn, fields["cpf"]):
        return None, "CPF já cadastrado"
    now = iso()
    try:
        cur = conn.execute(
            """
            INSERT INTO employees
            (company_id, manager_id, department_id, name, email, cpf, birth_date, whatsapp, status, invited_at, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'invited', ?, ?, ?)
            """,
            (
                company_id,
                manager_id,
                fields.get("department_id"),
                fields["name"],
                fields["email"],
                fields.get("cpf"),
                fields.get("birth_date"),
                fields.get("whatsapp"),
                now,
                now,
                now,
            ),
        )
    except sqlite3.IntegrityError:
        return None, "Funcionário já cadastrado"
    employee_id = int(cur.lastrowid)
    log_action(conn, company_id, manager_id, "employee.created", "employees", employee_id, fields["email"])
    return employee_id, ""


def update_employee(conn, company_id: int, employee_id: int, payload: Dict[str, object], actor_id: Optional[int]) -> Tuple[bool, str]:
    current = get_employee(conn, company_id, employee_id)
    if not current:
        return False, "Funcionário não encontrado"
    data = {key: payload.get(key) for key in EDITABLE_FIELDS if key in payload}
    fields, error = _clean_fields(conn, company_id, data)
    if error:
        return False, error
    if not fields:
        return True, "Nada para atualizar"
    if "email" in fields and fields["email"] != current["email"]:
        clash = conn.execute(
            "SELECT id FROM employees WHERE company_id = ? AND email = ? AND id != ?",
            (company_id, fields["email"], employee_id),
        ).fetchone()
        if clash:
            return False, "Funcionário com este e-mail já existe nesta empresa"
    if fields.get("cpf") and fields["cpf"] != current["cpf"]:
        clash = find_by_cpf(conn, fields["cpf"])
        if clash and int(clash["id"]) != employee_id:
            return False, "CPF já cadastrado"
    assignments = ", ".join(f"{key} = ?" for key in fields)
    params = tuple(fields.values()) + (iso(), employee_id, company_id)
    conn.execute(f"UPDATE employees SET {assignments}, updated_at = ? WHERE id = ? AND company_id = ?", params)
    log_action(conn, company_id, actor_id, "employee.updated", "employees", employee_id, ",".join(sorted(fields)))
    return True, "Funcionário atualizado"


def set_archived(conn, company, employee_id: int, archived: bool, actor_id: Optional[int]) -> Tuple[bool, str]:
    company_id = int(company["id"])
    current = get_employee(conn, company_id, employee_id)
    if not current:
        return False, "Funcionário não encontrado"
    if archived == bool(current["archived_at"]):
        return True, "Funcionário já está arquivado" if archived else "Funcionário já está ativo"
    if not archived and seats_left(conn, company) <= 0:
        return False, "Limite de funcionários do plano atingido"
    conn.execute(
        "UPDATE employees SET archived_at = ?, updated_at = ? WHERE id = ?",
        (iso() if archived else None, iso(), employee_id),
    )
    if archived:
        conn.execute("DELETE FROM sessions WHERE employee_id = ?", (employee_id,))
    log_action(conn, company_id, actor_id, "employee.archived" if archived else "employee.restored", "employees", employee_id)
    return True, "Funcionário arquivado" if archived else "Funcionário restaurado"


def delete_employee(conn, company_id: int, employee_id: int, actor_id: Optional[int]) -> Tuple[bool, str]:
    current = get_employee(conn, company_id, employee_id)
    if not current:
        # Already gone: the caller's goal is met.
        return True, "Funcionário já foi removido anteriormente"
    conn.execute("DELETE FROM employees WHERE id = ? AND company_id = ?", (employee_id, company_id))
    log_action(conn, company_id, actor_id, "employee.deleted", "employees", employee_id, current["email"])
    logger.info("Deleted employee %s of company %s", employee_id, company_id)
    return True, f"Funcionário {current['name']} excluído com sucesso"


def create_invite(conn, company_id: int, employee_id: int, actor_id: Optional[int], hours: int = INVITE_HOURS) -> Tuple[Optional[str], str]:
    """Issue a one-time sign-in token for an employee; returns the raw token."""
    if not get_employee(conn, company_id, employee_id):
        return None, "Funcionário não encontrado"
    raw_token = secrets.token_urlsafe(32)
    expires = utcnow() + dt.timedelta(hours=hours)
    conn.execute(
        """
        INSERT INTO employee_invites (employee_id, company_id, token_hash, expires_at, used_at, created_by, created_at)
        VALUES (?, ?, ?, ?, NULL, ?, ?)
        """,
        (employee_id, company_id, token_hash(raw_token), expires.isoformat(), actor_id, iso()),
    )
    conn.execute("UPDATE employees SET invited_at = ?, updated_at = ? WHERE id = ?", (iso(), iso(), employee_id))
    log_action(conn, company_id, actor_id, "employee.invited", "employees", employee_id)
    return raw_token, ""


def redeem_invite(conn, raw_token: str):
    """Consume an invite token and return the employee row, or None."""
    if not raw_token:
        return None
    invite = conn.execute("SELECT * FROM employee_invites WHERE token_hash = ?", (token_hash(raw_token),)).fetchone()
    if not invite or invite["used_at"]:
        return None
    try:
        if dt.datetime.fromisoformat(invite["expires_at"]) < utcnow():
            return None
    except ValueError:
        return None
    conn.execute("UPDATE employee_invites SET used_at = ? WHERE id = ?", (iso(), invite["id"]))
    return conn.execute("SELECT * FROM employees WHERE id = ?", (invite["employee_id"],)).fetchone()


def can_sign_in(employee) -> bool:
    return bool(employee) and employee["status"] != "blocked" and not employee["archived_at"]


def mark_active(conn, employee) -> None:
    if employee["status"] == "invited":
        conn.execute("UPDATE employees SET status = 'active', updated_at = ? WHERE id = ?", (iso(), employee["id"]))


def password_error(password: str) -> str:
    """Why ``password`` is not acceptable for an employee, or "" when it is."""
    if not EMPLOYEE_PASSWORD_MIN <= len(password) <= EMPLOYEE_PASSWORD_MAX:
        return f"A senha deve ter entre {EMPLOYEE_PASSWORD_MIN} e {EMPLOYEE_PASSWORD_MAX} caracteres"
    if not PASSWORD_CHARS_RE.fullmatch(password):
        return "A senha só pode conter letras, números e os símbolos @#$%&*!_-"
    return ""


def has_password(employee) -> bool:
    return bool(employee["password_hash"])


def check_password(employee, password: str) -> bool:
    """Employees without a password still sign in with the CPF alone."""
    if not has_password(employee):
        return True
    return verify_password(password or "", str(employee["password_hash"]), str(employee["password_salt"] or ""))


def set_password(conn, employee_id: int, password: str) -> None:
    pw_hash, pw_salt = hash_password(password)
    conn.execute(
        "UPDATE employees SET password_hash = ?, password_salt = ?, updated_at = ? WHERE id = ?",
        (pw_hash, pw_salt, iso(), employee_id),
    )


def change_password(conn, employee, current: str, new: str, confirm: Optional[str] = None) -> Tuple[bool, str]:
    if has_password(employee) and not check_password(employee, current):
        return False, "Senha atual incorreta"
    error = password_error(new)
    if error:
        return False, error
    if confirm is not None and confirm != new:
        return False, "As senhas não coincidem"
    set_password(conn, int(employee["id"]), new)
    log_action(conn, int(employee["company_id"]), None, "employee.password_changed", "employees", employee["id"])
    return True, "Senha atualizada"


def journey_record(row) -> JourneyRecord:
    return JourneyRecord.from_mapping(dict(row))


def public_record(row) -> Dict[str, object]:
    """The employee snapshot served to the employee portal."""
    return {
        "id": int(row["id"]),
        "name": row["name"],
        "email": row["email"],
        "journey_filled": bool(row["journey_filled"]),
        "journey_filled_at": row["journey_filled_at"],
        "journey_result_html": row["journey_result_html"],
    }


def manager_record(row) -> Dict[str, object]:
    """An employee row for manager views, without report bodies or credentials."""
    item = dict(row)
    item.pop("journey_result_html", None)
    item.pop("journey_answers_json", None)
    item["has_password"] = bool(item.pop("password_hash", None))
    item.pop("password_salt", None)
    return item


def list_employees(
    conn,
    company_id: int,
    now: dt.datetime,
    policy: Optional[ReleasePolicy] = None,
    search: str = "",
    department_id: Optional[int] = None,
    journey_state: str = "",
    archived: bool = False,
) -> List[Dict[str, object]]:
    sql = """
        SELECT e.*, d.name AS department_name,
               (SELECT COUNT(*) FROM video_progress vp JOIN videos v ON v.id = vp.video_id
                 WHERE vp.employee_id = e.id AND vp.completed = 1 AND v.is_active = 1) AS videos_watched,
               (SELECT COUNT(*) FROM workbook_responses wr WHERE wr.employee_id = e.id AND wr.value != '') AS workbook_answered
        FROM employees e
        LEFT JOIN departments d ON d.id = e.department_id
        WHERE e.company_id = ?
    """
    params: List[object] = [company_id]
    sql += " AND e.archived_at IS NOT NULL" if archived else " AND e.archived_at IS NULL"
    if search.strip():
        sql += " AND (LOWER(e.name) LIKE ? OR LOWER(e.email) LIKE ?)"
        needle = f"%{search.strip().lower()}%"
        params.extend([needle, needle])
    if department_id is not None:
        sql += " AND e.department_id = ?"
        params.append(department_id)
    sql += " ORDER BY e.created_at DESC, e.id DESC"

    wanted = journey_state if journey_state in {s.value for s in JourneyState} else ""
    out = []
    for row in conn.execute(sql, tuple(params)).fetchall():
        view = evaluate(journey_record(row), now, policy)
        if wanted and view.state.value != wanted:
            continue
        item = manager_record(row)
        item["journey"] = view.as_dict()
        item["workbook_pct"] = round(int(item["workbook_answered"] or 0) / len(workbook.WORKBOOK_FIELDS) * 100)
        out.append(item)
    return out


def employee_progress(conn, company_id: int, employee_id: int, now: dt.datetime, policy: Optional[ReleasePolicy] = None) -> Optional[Dict[str, object]]:
    row = get_employee(conn, company_id, employee_id)
    if not row:
        return None
    from .videos import videos_with_progress

    videos = videos_with_progress(conn, employee_id)
    responses = workbook.load_responses(conn, employee_id)
    watched = sum(1 for video in videos if video["is_watched"])
    return {
        "employee": {"id": int(row["id"]), "name": row["name"], "email": row["email"], "status": row["status"]},
        "videos": videos,
        "videos_watched": watched,
        "videos_total": len(videos),
        "videos_pct": round(watched / len(videos) * 100) if videos else 0,
        "workbook": workbook.completion(responses),
        "journey": evaluate(journey_record(row), now, policy).as_dict(),
    }


def regenerate_map_payload(conn, company_id: int, employee_id: int) -> Tuple[Optional[Dict[str, object]], str]:
    """Stored questionnaire answers, ready to send back to the map generator."""
    row = get_employee(conn, company_id, employee_id)
    if not row:
        return None, "Funcionário não encontrado"
    if not row["journey_answers_json"]:
        return None, "Funcionário não possui respostas salvas para regenerar o mapa"
    try:
        answers = json.loads(row["journey_answers_json"])
    except json.JSONDecodeError:
        logger.warning("Employee %s has unreadable journey answers", employee_id)
        return None, "Respostas salvas estão corrompidas"
    return {
        "employee": {"id": int(row["id"]), "name": row["name"], "email": row["email"]},
        "respostas": answers,
    }, ""
