"""Database access: SQLite by default, PostgreSQL through a thin compat layer."""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
from typing import Any, Dict, List, Optional, Tuple

from .config import (
    ADMIN_EMAIL,
    ADMIN_NAME,
    ADMIN_PASSWORD,
    DATA_DIR,
    DATABASE_URL,
    DB_BACKEND,
    DB_BUSY_TIMEOUT_MS,
    DB_JOURNAL_MODE,
    DB_PATH,
    DB_SYNCHRONOUS,
)
from .utils import hash_password, iso

try:
    import psycopg
    from psycopg.rows import dict_row
except Exception:  # pragma: no cover - optional dependency path
    psycopg = None
    dict_row = None

logger = logging.getLogger(__name__)

BOOTSTRAPPED = False
BOOTSTRAP_LOCK = threading.Lock()
BOOTSTRAP_ERROR = ""

SCHEMA = """
CREATE TABLE IF NOT EXISTS companies (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    employees_quota INTEGER NOT NULL DEFAULT 5,
    plan TEXT NOT NULL DEFAULT 'equipe',
    status TEXT NOT NULL DEFAULT 'inactive',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    phone TEXT,
    password_hash TEXT NOT NULL,
    password_salt TEXT NOT NULL,
    company_id INTEGER,
    is_active INTEGER NOT NULL DEFAULT 1,
    is_superuser INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    FOREIGN KEY (company_id) REFERENCES companies(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS departments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    company_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    description TEXT,
    created_at TEXT NOT NULL,
    UNIQUE (company_id, name),
    FOREIGN KEY (company_id) REFERENCES companies(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS employees (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    company_id INTEGER NOT NULL,
    manager_id INTEGER,
    department_id INTEGER,
    name TEXT NOT NULL,
    email TEXT NOT NULL,
    cpf TEXT UNIQUE,
    birth_date TEXT,
    whatsapp TEXT,
    status TEXT NOT NULL DEFAULT 'invited',
    invited_at TEXT,
    archived_at TEXT,
    journey_filled INTEGER NOT NULL DEFAULT 0,
    journey_filled_at TEXT,
    journey_result_html TEXT,
    journey_answers_json TEXT,
    password_hash TEXT,
    password_salt TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (company_id, email),
    FOREIGN KEY (company_id) REFERENCES companies(id) ON DELETE CASCADE,
    FOREIGN KEY (manager_id) REFERENCES users(id) ON DELETE SET NULL,
    FOREIGN KEY (department_id) REFERENCES departments(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS videos (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    company_id INTEGER,
    title TEXT NOT NULL,
    youtube_id TEXT NOT NULL DEFAULT '',
    video_url TEXT,
    description TEXT,
    duration_seconds INTEGER NOT NULL DEFAULT 0,
    position INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_by_type TEXT NOT NULL DEFAULT 'system',
    created_at TEXT NOT NULL,
    FOREIGN KEY (company_id) REFERENCES companies(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS video_progress (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    employee_id INTEGER NOT NULL,
    video_id INTEGER NOT NULL,
    completed INTEGER NOT NULL DEFAULT 0,
    completed_at TEXT,
    updated_at TEXT NOT NULL,
    UNIQUE (employee_id, video_id),
    FOREIGN KEY (employee_id) REFERENCES employees(id) ON DELETE CASCADE,
    FOREIGN KEY (video_id) REFERENCES videos(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS workbook_responses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    employee_id INTEGER NOT NULL,
    field_key TEXT NOT NULL,
    section TEXT NOT NULL,
    value TEXT NOT NULL DEFAULT '',
    updated_at TEXT NOT NULL,
    UNIQUE (employee_id, field_key),
    FOREIGN KEY (employee_id) REFERENCES employees(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER,
    employee_id INTEGER,
    token_hash TEXT NOT NULL UNIQUE,
    csrf_token TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    created_at TEXT NOT NULL,
    last_seen_at TEXT,
    ip_address TEXT,
    user_agent TEXT,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
    FOREIGN KEY (employee_id) REFERENCES employees(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS employee_invites (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    employee_id INTEGER NOT NULL,
    company_id INTEGER NOT NULL,
    token_hash TEXT NOT NULL UNIQUE,
    expires_at TEXT NOT NULL,
    used_at TEXT,
    created_by INTEGER,
    created_at TEXT NOT NULL,
    FOREIGN KEY (employee_id) REFERENCES employees(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS password_resets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    token_hash TEXT NOT NULL UNIQUE,
    expires_at TEXT NOT NULL,
    used_at TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS employee_password_resets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    employee_id INTEGER NOT NULL,
    token_hash TEXT NOT NULL UNIQUE,
    expires_at TEXT NOT NULL,
    used_at TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (employee_id) REFERENCES employees(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS webhook_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    provider TEXT NOT NULL,
    payload TEXT NOT NULL,
    handled INTEGER NOT NULL DEFAULT 0,
    outcome TEXT,
    received_at TEXT NOT NULL,
    handled_at TEXT
);

CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    company_id INTEGER,
    user_id INTEGER,
    action TEXT NOT NULL,
    entity TEXT,
    entity_id TEXT,
    details TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_employees_company ON employees(company_id);
CREATE INDEX IF NOT EXISTS idx_workbook_employee ON workbook_responses(employee_id);
CREATE INDEX IF NOT EXISTS idx_progress_employee ON video_progress(employee_id);
"""

DEFAULT_VIDEOS = [
    ("Boas-vindas à jornada de clareza", "dQw4w9WgXcQ", "Como a jornada funciona e o que esperar.", 420),
    ("Cápsula do tempo", "9bZkp7q19f0", "Olhar para onde você está e para onde quer ir.", 610),
    ("Roda da vida profissional", "3JZ_D3ELwOQ", "Avalie as oito áreas da sua vida profissional.", 735),
    ("Matriz de habilidades", "L_jWHffIx5E", "Forças, paixões e a sua zona de oportunidade.", 560),
    ("Plano de ação de 90 dias", "kJQP7kiw5Fk", "Uma prioridade, ações e acompanhamento.", 690),
]


class CompatRow(dict):
    """Row mapping that also supports numeric index access like sqlite3.Row."""

    def __init__(self, data: Dict[str, Any], order: List[str]):
        super().__init__(data)
        self._order = order

    def __getitem__(self, key: object) -> Any:  # type: ignore[override]
        if isinstance(key, int):
            return super().__getitem__(self._order[key])
        return super().__getitem__(str(key))

    def keys(self):  # type: ignore[override]
        return list(self._order)


class CompatCursor:
    """Cursor wrapper with sqlite-like row behavior for PostgreSQL."""

    def __init__(self, cursor: Any, order: Optional[List[str]] = None, lastrowid: Optional[int] = None):
        self._cursor = cursor
        self._order = order or []
        self.lastrowid = lastrowid

    @property
    def rowcount(self) -> int:
        return int(getattr(self._cursor, "rowcount", -1))

    def _wrap(self, row: Any) -> Any:
        if isinstance(row, dict):
            return CompatRow(row, self._order)
        if isinstance(row, tuple):
            return CompatRow({self._order[idx]: row[idx] for idx in range(min(len(self._order), len(row)))}, self._order)
        return row

    def fetchone(self):
        row = self._cursor.fetchone()
        return None if row is None else self._wrap(row)

    def fetchall(self):
        return [self._wrap(row) for row in self._cursor.fetchall()]


def _split_sql_script(script: str) -> List[str]:
    chunks = []
    buf: List[str] = []
    in_single = False
    for ch in script:
        if ch == "'":
            in_single = not in_single
        if ch == ";" and not in_single:
            stmt = "".join(buf).strip()
            if stmt:
                chunks.append(stmt)
            buf = []
        else:
            buf.append(ch)
    tail = "".join(buf).strip()
    if tail:
        chunks.append(tail)
    return chunks


def _replace_qmark_params(sql: str) -> str:
    out: List[str] = []
    in_single = False
    for ch in sql:
        if ch == "'":
            in_single = not in_single
        out.append("%s" if ch == "?" and not in_single else ch)
    return "".join(out)


PRAGMA_TABLE_INFO_RE = re.compile(r"PRAGMA\s+table_info\(([^)]+)\)", re.IGNORECASE)


def _adapt_sql_for_postgres(sql: str) -> str:
    # Column introspection used by schema upgrades.
    if PRAGMA_TABLE_INFO_RE.match(sql.strip()):
        return (
            "SELECT column_name AS name, data_type AS type FROM information_schema.columns "
            "WHERE table_schema = current_schema() AND table_name = %s ORDER BY ordinal_position"
        )
    text = re.sub(r"INTEGER\s+PRIMARY\s+KEY\s+AUTOINCREMENT", "BIGSERIAL PRIMARY KEY", sql.strip(), flags=re.IGNORECASE)
    return _replace_qmark_params(text)


class PostgresCompatConnection:
    """Small DB-API compatibility layer so sqlite-style calls work on PostgreSQL."""

    def __init__(self, conn: Any):
        self._conn = conn

    def execute(self, sql: str, params: Tuple[Any, ...] = ()):
        pg_sql = _adapt_sql_for_postgres(sql)
        pragma = PRAGMA_TABLE_INFO_RE.match(sql.strip())
        if pragma:
            params = (pragma.group(1).strip().strip('"'),)
        cur = self._conn.cursor()
        try:
            cur.execute(pg_sql, params)
        except Exception as exc:
            # Callers only handle sqlite3.IntegrityError for constraint violations.
            if str(getattr(exc, "sqlstate", "") or "").startswith("23"):
                raise sqlite3.IntegrityError(str(exc)) from exc
            raise
        order = [d.name for d in (cur.description or [])]
        last_id = None
        if pg_sql.upper().startswith("INSERT"):
            with self._conn.cursor() as c2:
                c2.execute("SELECT LASTVAL() AS id")
                row = c2.fetchone()
                if row:
                    last_id = int(row["id"] if isinstance(row, dict) else row[0])
        return CompatCursor(cur, order=order, lastrowid=last_id)

    def executescript(self, script: str):
        for stmt in _split_sql_script(script):
            self.execute(stmt)

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._conn.close()


def db_connect():
    if DB_BACKEND == "postgres":
        if psycopg is None:
            raise RuntimeError("PostgreSQL backend requested but psycopg is not installed.")
        raw = psycopg.connect(DATABASE_URL, row_factory=dict_row, autocommit=False)
        return PostgresCompatConnection(raw)

    if DB_PATH.parent == DATA_DIR:
        DATA_DIR.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(DB_PATH), timeout=DB_BUSY_TIMEOUT_MS / 1000.0)
    conn.row_factory = sqlite3.Row
    conn.execute(f"PRAGMA busy_timeout = {DB_BUSY_TIMEOUT_MS}")
    conn.execute("PRAGMA foreign_keys = ON")
    safe_journal_mode = DB_JOURNAL_MODE if DB_JOURNAL_MODE in {"DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"} else "WAL"
    safe_synchronous = DB_SYNCHRONOUS if DB_SYNCHRONOUS in {"OFF", "NORMAL", "FULL", "EXTRA"} else "NORMAL"
    conn.execute(f"PRAGMA journal_mode = {safe_journal_mode}")
    conn.execute(f"PRAGMA synchronous = {safe_synchronous}")
    return conn


def ensure_bootstrap() -> None:
    """Initialize the database once per process.

    WSGI servers may run requests concurrently; the lock keeps init work single.
    """
    global BOOTSTRAPPED, BOOTSTRAP_ERROR
    if BOOTSTRAPPED:
        return
    with BOOTSTRAP_LOCK:
        if BOOTSTRAPPED:
            return
        try:
            init_db()
            BOOTSTRAPPED = True
            BOOTSTRAP_ERROR = ""
        except Exception as exc:
            BOOTSTRAP_ERROR = str(exc)
            logger.exception("Database bootstrap failed")
            raise


def init_db() -> None:
    """Create the schema and seed the platform admin and video catalog.

    Safe to call repeatedly: tables use IF NOT EXISTS and seeds check first.
    """
    conn = db_connect()
    try:
        conn.executescript(SCHEMA)
        run_schema_upgrades(conn)
        seed_defaults(conn)
        conn.commit()
    finally:
        conn.close()


def ensure_column(conn, table: str, column: str, ddl: str) -> None:
    existing = {str(row["name"]).lower() for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
    if column.lower() in existing:
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")
    logger.info("Added column %s.%s", table, column)


def run_schema_upgrades(conn) -> None:
    """Additive upgrades for databases created before these columns existed."""
    ensure_column(conn, "employees", "password_hash", "TEXT")
    ensure_column(conn, "employees", "password_salt", "TEXT")
    ensure_column(conn, "videos", "company_id", "INTEGER REFERENCES companies(id) ON DELETE CASCADE")
    ensure_column(conn, "videos", "video_url", "TEXT")
    ensure_column(conn, "videos", "created_by_type", "TEXT NOT NULL DEFAULT 'system'")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_videos_company ON videos(company_id)")


def seed_defaults(conn) -> None:
    admin = conn.execute("SELECT id FROM users WHERE email = ?", (ADMIN_EMAIL,)).fetchone()
    if not admin:
        pw_hash, pw_salt = hash_password(ADMIN_PASSWORD)
        conn.execute(
            """
            INSERT INTO users (email, name, password_hash, password_salt, company_id, is_active, is_superuser, created_at)
            VALUES (?, ?, ?, ?, NULL, 1, 1, ?)
            """,
            (ADMIN_EMAIL, ADMIN_NAME, pw_hash, pw_salt, iso()),
        )
        logger.info("Seeded platform admin %s", ADMIN_EMAIL)

    if query_scalar(conn, "SELECT COUNT(*) FROM videos WHERE company_id IS NULL") == 0:
        for position, (title, youtube_id, description, duration) in enumerate(DEFAULT_VIDEOS, start=1):
            conn.execute(
                """
                INSERT INTO videos
                    (title, youtube_id, video_url, description, duration_seconds, position, is_active, created_by_type, created_at)
                VALUES (?, ?, ?, ?, ?, ?, 1, 'system', ?)
                """,
                (title, youtube_id, f"https://www.youtube.com/watch?v={youtube_id}", description, duration, position, iso()),
            )


def query_scalar(conn, sql: str, params: Tuple = ()) -> int:
    row = conn.execute(sql, params).fetchone()
    return int(row[0] or 0) if row else 0


def log_action(
    conn,
    company_id: Optional[int],
    user_id: Optional[int],
    action: str,
    entity: Optional[str] = None,
    entity_id: Optional[object] = None,
    details: Optional[str] = None,
) -> None:
    conn.execute(
        "INSERT INTO audit_log (company_id, user_id, action, entity, entity_id, details, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
        (company_id, user_id, action, entity, None if entity_id is None else str(entity_id), details, iso()),
    )
