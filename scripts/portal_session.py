#!/usr/bin/env python3
"""Run an employee portal session against a running server.

Signs in with a CPF, follows the Journey Map countdown for a while and
optionally autosaves workbook fields given as KEY=VALUE pairs.

  python3 scripts/portal_session.py --cpf 529.982.247-25 --watch 5 roda_energia=7
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from claritypath.client import PortalClient, describe_view
from claritypath.config import HOST, PORT, configure_logging
from claritypath.workbook import UnknownWorkbookField

logger = logging.getLogger("portal_session")


def parse_args():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--base-url", default=f"http://{HOST}:{PORT}")
    parser.add_argument("--cpf", required=True)
    parser.add_argument("--watch", type=float, default=3.0, help="seconds to follow the countdown")
    parser.add_argument("--debug", action="store_true", help="request immediate release (needs server override)")
    parser.add_argument("fields", nargs="*", help="workbook edits as field_key=value")
    return parser.parse_args()


def main() -> int:
    configure_logging()
    args = parse_args()
    client = PortalClient(args.base_url)
    ok, error = client.login(args.cpf)
    if not ok:
        logger.error("Sign-in failed: %s", error)
        return 1

    monitor, error = client.journey_monitor(lambda view: print(describe_view(view)), debug=args.debug)
    if error:
        logger.warning("Showing placeholder journey: %s", error)

    autosave = client.workbook_autosave(on_status=lambda key, status, err: print(f"{key}: {status.value} {err}".rstrip()))
    try:
        for pair in args.fields:
            key, _, value = pair.partition("=")
            try:
                autosave.edit(key, value)
            except UnknownWorkbookField:
                logger.error("Unknown workbook field %s", key)
        time.sleep(args.watch)
    finally:
        autosave.close()
        monitor.close()
    failed = autosave.errors()
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
