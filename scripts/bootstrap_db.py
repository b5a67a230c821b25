#!/usr/bin/env python3
"""Create or upgrade the ClarityPath schema and report what is in it.

  python3 scripts/bootstrap_db.py           # human-readable summary
  python3 scripts/bootstrap_db.py --json    # machine-readable, for deploy checks
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from claritypath.config import ADMIN_EMAIL, DB_BACKEND, DB_PATH, FLAG_ENABLE_WEBHOOKS, JOURNEY_RELEASE_HOURS, WEBHOOK_KEY
from claritypath.db import db_connect, ensure_bootstrap, query_scalar

COUNTED_TABLES = ("companies", "users", "employees", "departments", "videos", "workbook_responses", "webhook_log")


def collect() -> dict:
    conn = db_connect()
    try:
        counts = {table: query_scalar(conn, f"SELECT COUNT(*) FROM {table}") for table in COUNTED_TABLES}
        admin_ok = query_scalar(conn, "SELECT COUNT(*) FROM users WHERE email = ? AND is_superuser = 1", (ADMIN_EMAIL,)) == 1
    finally:
        conn.close()
    return {
        "backend": DB_BACKEND,
        "location": str(DB_PATH) if DB_BACKEND == "sqlite" else "CLARITY_DATABASE_URL",
        "counts": counts,
        "admin_seeded": admin_ok,
        "release_hours": JOURNEY_RELEASE_HOURS,
        # An unset key makes every webhook call fail with 401.
        "webhooks_ready": FLAG_ENABLE_WEBHOOKS and bool(WEBHOOK_KEY),
    }


def main() -> int:
    parser = argparse.ArgumentParser(description="Bootstrap the ClarityPath database.")
    parser.add_argument("--json", action="store_true", help="print the summary as JSON")
    args = parser.parse_args()

    ensure_bootstrap()
    summary = collect()
    if args.json:
        print(json.dumps(summary, indent=2))
    else:
        print(f"Database ready ({summary['backend']}: {summary['location']})")
        for table, count in summary["counts"].items():
            print(f"  {table:<20} {count}")
        print(f"Admin account {ADMIN_EMAIL}: {'ok' if summary['admin_seeded'] else 'MISSING'}")
        if not summary["webhooks_ready"]:
            print("Warning: webhooks are disabled or CLARITY_JOURNEY_WEBHOOK_KEY is unset.")
    return 0 if summary["admin_seeded"] else 1


if __name__ == "__main__":
    raise SystemExit(main())
