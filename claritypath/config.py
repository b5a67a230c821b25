"""Runtime configuration read from ``CLARITY_*`` environment variables.

Every knob is a module-level constant so route handlers and scripts can
import exactly what they need.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

APP_NAME = "ClarityPath"
APP_TAGLINE = "Clarity journeys for teams: training videos, workbook and Journey Map"
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"
STATIC_DIR = BASE_DIR / "claritypath" / "static"
DB_PATH = Path(os.environ.get("CLARITY_DB_PATH", str(DATA_DIR / "claritypath.db")))
DATABASE_URL = os.environ.get("CLARITY_DATABASE_URL", os.environ.get("DATABASE_URL", "")).strip()
DB_BACKEND = "postgres" if DATABASE_URL.startswith(("postgres://", "postgresql://")) else "sqlite"
SECRET_KEY = os.environ.get("CLARITY_SECRET_KEY", "change-this-secret-in-production")
COOKIE_SECURE = os.environ.get("CLARITY_COOKIE_SECURE", "0") == "1"
SESSION_DAYS = int(os.environ.get("CLARITY_SESSION_DAYS", "14"))
# Generic container vars are honoured; CLARITY_* take precedence where set.
HOST = os.environ.get("CLARITY_HOST", os.environ.get("HOST", "127.0.0.1"))
PORT = int(os.environ.get("CLARITY_PORT", os.environ.get("PORT", "8080")))
WSGI_THREADED = os.environ.get("CLARITY_WSGI_THREADED", "1") == "1"
DB_BUSY_TIMEOUT_MS = max(1000, int(os.environ.get("CLARITY_DB_BUSY_TIMEOUT_MS", "6000")))
DB_JOURNAL_MODE = os.environ.get("CLARITY_DB_JOURNAL_MODE", "WAL").strip().upper()
DB_SYNCHRONOUS = os.environ.get("CLARITY_DB_SYNCHRONOUS", "NORMAL").strip().upper()
LOG_LEVEL = os.environ.get("CLARITY_LOG_LEVEL", "INFO").strip().upper()

ADMIN_EMAIL = os.environ.get("CLARITY_ADMIN_EMAIL", "admin@claritypath.local").lower().strip()
ADMIN_PASSWORD = os.environ.get("CLARITY_ADMIN_PASSWORD", "ChangeMe!Clarity2026")
ADMIN_NAME = os.environ.get("CLARITY_ADMIN_NAME", "ClarityPath Admin")

# Journey Map release gate. Older page revisions used 52 hours; 72 is canonical.
JOURNEY_RELEASE_HOURS = float(os.environ.get("CLARITY_JOURNEY_RELEASE_HOURS", "72"))
# When enabled, a request carrying ?debug=true releases results immediately.
JOURNEY_DEBUG_OVERRIDE = os.environ.get("CLARITY_JOURNEY_DEBUG_OVERRIDE", "0") == "1"
JOURNEY_DEBUG_FLAG_VALUE = "true"


def clamp_tick_seconds(value: float) -> float:
    """Countdown ticks stay between 0.1s and 1s so the seconds unit never lags."""
    return min(1.0, max(0.1, float(value)))


COUNTDOWN_TICK_SECONDS = clamp_tick_seconds(os.environ.get("CLARITY_COUNTDOWN_TICK_SECONDS", "1"))
JOURNEY_FORM_URL = os.environ.get("CLARITY_JOURNEY_FORM_URL", "https://terapiaempresarial.com.br/formulario/")

AUTOSAVE_DEBOUNCE_MS = max(100, int(os.environ.get("CLARITY_AUTOSAVE_DEBOUNCE_MS", "1000")))

WEBHOOK_KEY = os.environ.get("CLARITY_JOURNEY_WEBHOOK_KEY", "")
FLAG_ENABLE_WEBHOOKS = os.environ.get("CLARITY_FLAG_ENABLE_WEBHOOKS", "1") == "1"
FLAG_ENABLE_REGISTRATION = os.environ.get("CLARITY_FLAG_ENABLE_REGISTRATION", "1") == "1"

MIN_EMPLOYEES_QUOTA = 5
MIN_MANAGER_PASSWORD = 6
EMPLOYEE_PASSWORD_MIN = 4
EMPLOYEE_PASSWORD_MAX = 50
EMPLOYEE_RESET_HOURS = 1
INVITE_HOURS = int(os.environ.get("CLARITY_INVITE_HOURS", "72"))

COMPANY_PLANS = ["equipe", "lider"]
COMPANY_STATUSES = ["inactive", "active"]
EMPLOYEE_STATUSES = ["invited", "active", "blocked"]


def configure_logging(level: str = "") -> None:
    """Install a single stream handler on the root logger (idempotent)."""
    root = logging.getLogger()
    if getattr(root, "_claritypath_configured", False):
        return
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    root._claritypath_configured = True  # type: ignore[attr-defined]
