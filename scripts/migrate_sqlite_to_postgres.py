#!/usr/bin/env python3
"""Copy ClarityPath data from the SQLite file into PostgreSQL.

Usage:
  CLARITY_DATABASE_URL=postgresql://... python3 scripts/migrate_sqlite_to_postgres.py
  python3 scripts/migrate_sqlite_to_postgres.py --source /path/to/claritypath.db --truncate

The destination schema is created first through the normal bootstrap.
"""

from __future__ import annotations

import argparse
import sqlite3
import sys
from pathlib import Path
from typing import Dict, List

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from claritypath.config import DATA_DIR, DATABASE_URL, DB_BACKEND
from claritypath.db import ensure_bootstrap, psycopg

# Parents before children so foreign keys resolve.
TABLE_ORDER = [
    "companies",
    "users",
    "departments",
    "employees",
    "videos",
    "video_progress",
    "workbook_responses",
    "sessions",
    "employee_invites",
    "password_resets",
    "webhook_log",
    "audit_log",
]


def sqlite_columns(conn: sqlite3.Connection, table: str) -> List[str]:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return [str(r[1]) for r in rows]


def pg_columns(cur, table: str) -> List[str]:
    cur.execute(
        """
        SELECT column_name
        FROM information_schema.columns
        WHERE table_schema = current_schema() AND table_name = %s
        ORDER BY ordinal_position
        """,
        (table,),
    )
    return [str(r[0]) for r in cur.fetchall()]


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--source", default=str(DATA_DIR / "claritypath.db"))
    parser.add_argument("--truncate", action="store_true", help="truncate destination tables before import")
    args = parser.parse_args()

    if psycopg is None:
        raise SystemExit("psycopg is required: pip install 'claritypath[postgres]'")
    if DB_BACKEND != "postgres":
        raise SystemExit("Set CLARITY_DATABASE_URL (or DATABASE_URL) to a postgresql:// URL first.")
    source_path = Path(args.source)
    if not source_path.exists():
        raise SystemExit(f"SQLite source not found: {source_path}")

    ensure_bootstrap()
    src = sqlite3.connect(str(source_path))
    dst = psycopg.connect(DATABASE_URL, autocommit=False)

    migrated: Dict[str, int] = {}
    try:
        with dst.cursor() as dcur:
            if args.truncate:
                quoted = ", ".join(f'"{t}"' for t in TABLE_ORDER)
                dcur.execute(f"TRUNCATE TABLE {quoted} RESTART IDENTITY CASCADE")
            for table in TABLE_ORDER:
                dst_cols = set(pg_columns(dcur, table))
                cols = [c for c in sqlite_columns(src, table) if c in dst_cols]
                if not cols:
                    continue
                qcols = ", ".join(f'"{c}"' for c in cols)
                ph = ", ".join(["%s"] * len(cols))
                rows = src.execute(f'SELECT {qcols} FROM "{table}"').fetchall()
                if rows:
                    dcur.executemany(f'INSERT INTO "{table}" ({qcols}) VALUES ({ph}) ON CONFLICT DO NOTHING', rows)
                migrated[table] = len(rows)
                if "id" in cols and rows:
                    # Keep BIGSERIAL sequences ahead of the copied ids.
                    dcur.execute(
                        f"SELECT setval(pg_get_serial_sequence('{table}', 'id'), (SELECT MAX(id) FROM \"{table}\"))"
                    )
        dst.commit()
    finally:
        src.close()
        dst.close()

    total = sum(migrated.values())
    print(f"MIGRATION_COMPLETE tables={len(migrated)} rows={total}")
    for table, count in migrated.items():
        print(f"- {table}: {count}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
