import datetime as dt
import heapq
import itertools
import os
import re
import tempfile
from pathlib import Path

import pytest

# Configuration is read at import time, so the environment is set up first.
_TMP = Path(tempfile.mkdtemp(prefix="claritypath-tests-"))
os.environ["CLARITY_DB_PATH"] = str(_TMP / "test.db")
os.environ["CLARITY_JOURNEY_WEBHOOK_KEY"] = "test-webhook-key"
os.environ["CLARITY_JOURNEY_DEBUG_OVERRIDE"] = "1"
os.environ["CLARITY_ADMIN_PASSWORD"] = "AdminSenha2026"
os.environ.pop("CLARITY_DATABASE_URL", None)
os.environ.pop("DATABASE_URL", None)

from werkzeug.test import Client  # noqa: E402

from claritypath import auth, server  # noqa: E402
from claritypath.config import ADMIN_EMAIL  # noqa: E402
from claritypath.db import db_connect, ensure_bootstrap  # noqa: E402
from claritypath.scheduling import Clock, Scheduler, TimerHandle  # noqa: E402

WEBHOOK_KEY = "test-webhook-key"
ADMIN_PASSWORD = "AdminSenha2026"
CSRF_META_RE = re.compile(r'<meta name="csrf-token" content="([^"]*)"')
T0 = dt.datetime(2026, 3, 2, 12, 0, 0, tzinfo=dt.timezone.utc)

_cpf_counter = itertools.count(100_000_001)
_email_counter = itertools.count(1)


def make_cpf(base: str) -> str:
    digits = base
    for size in (9, 10):
        total = sum(int(digits[idx]) * (size + 1 - idx) for idx in range(size))
        check = (total * 10) % 11
        digits += "0" if check == 10 else str(check)
    return digits


class ManualClock(Clock):
    def __init__(self, start: dt.datetime = T0):
        self.current = start

    def now(self) -> dt.datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += dt.timedelta(**kwargs)


class _ManualHandle(TimerHandle):
    def __init__(self):
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler(Scheduler):
    """Virtual-time scheduler: timers only fire inside ``advance()``."""

    def __init__(self, clock: ManualClock = None):
        self.clock = clock
        self.elapsed = 0.0
        self._queue = []
        self._seq = itertools.count()

    def call_later(self, delay, callback):
        handle = _ManualHandle()
        heapq.heappush(self._queue, (self.elapsed + delay, next(self._seq), handle, callback))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for _, _, handle, _ in self._queue if not handle.cancelled)

    def advance(self, seconds: float) -> None:
        target = self.elapsed + seconds
        while self._queue and self._queue[0][0] <= target + 1e-9:
            due, _, handle, callback = heapq.heappop(self._queue)
            self._move_to(due)
            if not handle.cancelled:
                callback()
        self._move_to(target)

    def _move_to(self, when: float) -> None:
        if when <= self.elapsed:
            return
        if self.clock is not None:
            self.clock.advance(seconds=when - self.elapsed)
        self.elapsed = when


@pytest.fixture(scope="session", autouse=True)
def bootstrapped():
    ensure_bootstrap()
    yield


@pytest.fixture(autouse=True)
def reset_rate_limit():
    with auth.RATE_LIMIT_LOCK:
        auth.RATE_LIMIT.clear()
    yield


@pytest.fixture
def conn():
    connection = db_connect()
    try:
        yield connection
    finally:
        connection.rollback()
        connection.close()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture
def pinned_clock(monkeypatch):
    """Pin the server's notion of "now" to a controllable clock."""
    manual = ManualClock()
    monkeypatch.setattr(server, "CLOCK", manual)
    return manual


@pytest.fixture
def client():
    return Client(server.app)


def csrf_from(html: str) -> str:
    match = CSRF_META_RE.search(html)
    return match.group(1) if match else ""


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}{next(_email_counter)}@example.com"


def unique_cpf() -> str:
    return make_cpf(str(next(_cpf_counter)))


class Portal:
    """Signed-in helpers over a werkzeug test client."""

    def __init__(self, client: Client):
        self.client = client
        self.csrf = ""

    def headers(self):
        return {"X-CSRF-Token": self.csrf}

    def login_manager(self, email: str, password: str, landing: str = "/gestor"):
        resp = self.client.post("/login", data={"email": email, "password": password})
        assert resp.status_code == 302, resp.get_data(as_text=True)
        page = self.client.get(landing)
        self.csrf = csrf_from(page.get_data(as_text=True))
        return resp

    def login_employee(self, cpf: str):
        resp = self.client.post("/acesso", json={"cpf": cpf})
        if resp.status_code == 200:
            self.csrf = resp.get_json()["csrf"]
        return resp

    def get(self, path, **kwargs):
        return self.client.get(path, headers=self.headers(), **kwargs)

    def post(self, path, **kwargs):
        return self.client.post(path, headers=self.headers(), **kwargs)

    def patch(self, path, **kwargs):
        return self.client.patch(path, headers=self.headers(), **kwargs)

    def delete(self, path, **kwargs):
        return self.client.delete(path, headers=self.headers(), **kwargs)


@pytest.fixture
def company(client):
    """A freshly registered company and its signed-in manager portal."""
    email = unique_email("manager")
    resp = client.post(
        "/cadastro-gestor",
        json={
            "company_name": f"Empresa {email}",
            "employees_quota": 5,
            "manager_name": "Gestora Teste",
            "manager_email": email,
            "manager_password": "segredo1",
        },
    )
    assert resp.status_code == 201, resp.get_data(as_text=True)
    data = resp.get_json()
    portal = Portal(Client(server.app))
    portal.login_manager(email, "segredo1")
    return {"id": data["company_id"], "manager_id": data["manager_id"], "email": email, "portal": portal}


@pytest.fixture
def employee(company):
    """An employee of ``company`` with a valid CPF, plus a signed-in portal."""
    cpf = unique_cpf()
    email = unique_email("employee")
    resp = company["portal"].post("/api/employees", json={"name": "Funcionária Teste", "email": email, "cpf": cpf})
    assert resp.status_code == 201, resp.get_data(as_text=True)
    portal = Portal(Client(server.app))
    assert portal.login_employee(cpf).status_code == 200
    return {"id": resp.get_json()["id"], "cpf": cpf, "email": email, "portal": portal}


@pytest.fixture
def admin_portal():
    portal = Portal(Client(server.app))
    portal.login_manager(ADMIN_EMAIL, ADMIN_PASSWORD, landing="/admin")
    return portal


def set_journey(employee_id: int, filled: bool, filled_at, html=None) -> None:
    connection = db_connect()
    try:
        connection.execute(
            "UPDATE employees SET journey_filled = ?, journey_filled_at = ?, journey_result_html = ? WHERE id = ?",
            (1 if filled else 0, filled_at, html, employee_id),
        )
        connection.commit()
    finally:
        connection.close()


@pytest.fixture
def journey_setter():
    return set_journey


@pytest.fixture
def webhook_key():
    return WEBHOOK_KEY


@pytest.fixture
def new_cpf():
    return unique_cpf


@pytest.fixture
def new_email():
    return unique_email


@pytest.fixture
def new_portal():
    return lambda: Portal(Client(server.app))
