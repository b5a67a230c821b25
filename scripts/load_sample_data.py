#!/usr/bin/env python3
"""Load a deterministic demo company with employees in every journey state.

Everything created here is tagged ``[SAMPLE]`` and removed again with
``--cleanup-only`` (or before a reload).
"""

import argparse
import datetime as dt
import json
import random
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from claritypath.companies import register_company
from claritypath.db import db_connect, ensure_bootstrap
from claritypath.departments import create_department
from claritypath.employees import create_employee
from claritypath.videos import active_videos, mark_progress
from claritypath.workbook import WORKBOOK_FIELDS, save_response
from claritypath.utils import iso

RANDOM_SEED = 20260216
SAMPLE_COMPANY = "[SAMPLE] Empresa Demonstração"
SAMPLE_MANAGER_EMAIL = "gestor.sample@claritypath.local"
SAMPLE_PASSWORD = "SampleSenha2026"

NAMES = [
    "Ana Souza",
    "Bruno Lima",
    "Carla Mendes",
    "Diego Rocha",
    "Elisa Prado",
    "Fábio Nunes",
    "Gabriela Reis",
    "Henrique Alves",
]
DEPARTMENTS = ["Operações", "Comercial", "Pessoas"]


def make_cpf(base: str) -> str:
    """Append the two verifier digits to a 9-digit base."""
    digits = base
    for size in (9, 10):
        total = sum(int(digits[idx]) * (size + 1 - idx) for idx in range(size))
        check = (total * 10) % 11
        digits += "0" if check == 10 else str(check)
    return digits


def clear_previous_sample(conn) -> int:
    rows = conn.execute("SELECT id FROM companies WHERE name = ?", (SAMPLE_COMPANY,)).fetchall()
    for row in rows:
        conn.execute("DELETE FROM companies WHERE id = ?", (row["id"],))
    conn.execute("DELETE FROM users WHERE email = ?", (SAMPLE_MANAGER_EMAIL,))
    return len(rows)


def set_journey(conn, employee_id: int, filled_hours_ago, html) -> None:
    if filled_hours_ago is None:
        return
    filled_at = dt.datetime.now(dt.timezone.utc) - dt.timedelta(hours=filled_hours_ago)
    conn.execute(
        """
        UPDATE employees
        SET journey_filled = 1, journey_filled_at = ?, journey_result_html = ?, journey_answers_json = ?, updated_at = ?
        WHERE id = ?
        """,
        (iso(filled_at), html, json.dumps({"1": "Paciente", "2": "Leal"}), iso(), employee_id),
    )


def parse_args():
    parser = argparse.ArgumentParser(description="Load deterministic sample data.")
    parser.add_argument("--cleanup-only", action="store_true", help="Only remove [SAMPLE] data.")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    random.seed(RANDOM_SEED)
    ensure_bootstrap()
    conn = db_connect()
    try:
        removed = clear_previous_sample(conn)
        if args.cleanup_only:
            conn.commit()
            print("SAMPLE_CLEANUP companies_removed=", removed)
            return 0

        created, error = register_company(
            conn,
            {
                "company_name": SAMPLE_COMPANY,
                "employees_quota": 12,
                "manager_name": "Gestora Demonstração",
                "manager_email": SAMPLE_MANAGER_EMAIL,
                "manager_password": SAMPLE_PASSWORD,
            },
        )
        if error:
            raise SystemExit(f"could not create sample company: {error}")
        company_id = created["company_id"]
        manager_id = created["manager_id"]
        conn.execute("UPDATE companies SET status = 'active' WHERE id = ?", (company_id,))
        company = conn.execute("SELECT * FROM companies WHERE id = ?", (company_id,)).fetchone()

        dept_ids = [create_department(conn, company_id, name, actor_id=manager_id)[0] for name in DEPARTMENTS]
        videos = active_videos(conn)
        rating_keys = [key for key, entry in WORKBOOK_FIELDS.items() if entry.field_type == "rating"]
        text_keys = [key for key, entry in WORKBOOK_FIELDS.items() if entry.field_type != "rating"]
        # Hours since questionnaire submission per employee; None means not submitted.
        journeys = [None, None, 2, 30, 71, 80, 100, 150]

        cpfs = []
        for idx, name in enumerate(NAMES):
            cpf = make_cpf(f"{random.randint(100_000_000, 999_999_999)}")
            employee_id, error = create_employee(
                conn,
                company,
                manager_id,
                {
                    "name": name,
                    "email": f"sample{idx + 1}@claritypath.local",
                    "cpf": cpf,
                    "department_id": dept_ids[idx % len(dept_ids)],
                },
            )
            if error:
                raise SystemExit(f"could not create {name}: {error}")
            cpfs.append(cpf)
            for video in videos[: random.randint(0, len(videos))]:
                mark_progress(conn, employee_id, video["id"])
            for key in rating_keys[: random.randint(0, len(rating_keys))]:
                save_response(conn, employee_id, key, random.randint(0, 10))
            for key in text_keys[: random.randint(0, 4)]:
                save_response(conn, employee_id, key, f"[SAMPLE] resposta de {name}")
            hours = journeys[idx]
            html = "<h3>Perfil</h3><p>[SAMPLE] Relatório de demonstração.</p>" if hours and hours >= 100 else None
            set_journey(conn, employee_id, hours, html)
        conn.commit()
    finally:
        conn.close()

    print("SAMPLE_DATA_LOADED")
    print("manager:", SAMPLE_MANAGER_EMAIL, SAMPLE_PASSWORD)
    print("employee CPFs:", ", ".join(cpfs))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
