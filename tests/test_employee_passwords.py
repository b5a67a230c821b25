import datetime as dt
import re

import pytest

from claritypath import auth
from claritypath.employees import password_error

RESET_RE = re.compile(r"/acesso/redefinir-senha\?token=([\w-]+)")


def set_password(employee, new, current=""):
    return employee["portal"].post("/api/employees/change-password", json={"current_password": current, "new_password": new})


def request_reset(client, cpf):
    page = client.post("/acesso/esqueci-senha", data={"cpf": cpf}).get_data(as_text=True)
    match = RESET_RE.search(page)
    return match.group(1) if match else None


@pytest.mark.parametrize(
    "password, ok",
    [
        ("abc", False),
        ("abcd", True),
        ("a" * 50, True),
        ("a" * 51, False),
        ("com espaço", False),
        ("ação1", False),
        ("senha\n", False),
        ("Ab1@#$%&*!_-", True),
    ],
)
def test_password_rules(password, ok):
    assert (password_error(password) == "") is ok


def test_cpf_alone_works_until_a_password_is_set(employee, new_portal):
    resp = set_password(employee, "abc1")
    assert resp.status_code == 200
    assert resp.get_json() == {"ok": True, "message": "Senha atualizada"}

    portal = new_portal()
    resp = portal.login_employee(employee["cpf"])
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "Senha incorreta"
    resp = portal.client.post("/acesso", json={"cpf": employee["cpf"], "password": "abc1"})
    assert resp.status_code == 200


def test_change_requires_current_password(employee):
    assert set_password(employee, "primeira").status_code == 200
    resp = set_password(employee, "segunda", current="errada")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Senha atual incorreta"
    assert set_password(employee, "x y", current="primeira").status_code == 400
    assert set_password(employee, "segunda", current="primeira").status_code == 200


def test_change_password_form(employee):
    portal = employee["portal"]
    page = portal.get("/funcionario/senha").get_data(as_text=True)
    assert "Criar senha" in page
    assert 'name="current_password"' not in page

    resp = portal.post("/funcionario/senha", data={"new_password": "nova1", "password_confirm": "nova2"})
    assert resp.status_code == 400
    assert "As senhas não coincidem" in resp.get_data(as_text=True)

    resp = portal.post("/funcionario/senha", data={"new_password": "nova1", "password_confirm": "nova1"})
    assert resp.status_code == 302
    assert resp.headers["Location"].startswith("/funcionario?msg=")
    page = portal.get("/funcionario/senha").get_data(as_text=True)
    assert "Alterar senha" in page
    assert 'name="current_password"' in page


def test_forgot_and_reset_password(client, employee, new_portal):
    token = request_reset(client, employee["cpf"])
    assert token
    assert client.get("/acesso/redefinir-senha", query_string={"token": token}).status_code == 200

    resp = client.post("/acesso/redefinir-senha", data={"token": token, "password": "nova1", "password_confirm": "outra"})
    assert resp.status_code == 400
    resp = client.post("/acesso/redefinir-senha", data={"token": token, "password": "nova1", "password_confirm": "nova1"})
    assert resp.status_code == 302
    assert resp.headers["Location"].startswith("/acesso?msg=")

    # Existing sessions end and the link is single use.
    assert employee["portal"].get("/api/employees/me").status_code == 401
    assert client.get("/acesso/redefinir-senha", query_string={"token": token}).status_code == 400
    portal = new_portal()
    assert portal.client.post("/acesso", json={"cpf": employee["cpf"], "password": "nova1"}).status_code == 200


def test_forgot_password_answers_generically(client, new_cpf):
    page = client.post("/acesso/esqueci-senha", data={"cpf": new_cpf()}).get_data(as_text=True)
    assert "Se o CPF estiver cadastrado" in page
    assert not RESET_RE.search(page)


def test_archived_employee_cannot_reset(client, company, employee):
    token = request_reset(client, employee["cpf"])
    assert company["portal"].post(f"/gestor/employees/{employee['id']}/archive").status_code == 302
    assert client.get("/acesso/redefinir-senha", query_string={"token": token}).status_code == 400
    assert request_reset(client, employee["cpf"]) is None


def test_reset_link_expires_after_an_hour(client, employee, monkeypatch):
    token = request_reset(client, employee["cpf"])
    issued = auth.utcnow()
    monkeypatch.setattr(auth, "utcnow", lambda: issued + dt.timedelta(minutes=61))
    assert client.get("/acesso/redefinir-senha", query_string={"token": token}).status_code == 400


def test_manager_sees_flag_not_hash(company, employee):
    set_password(employee, "abc1")
    data = company["portal"].get(f"/api/employees/{employee['id']}").get_json()["employee"]
    assert data["has_password"] is True
    assert "password_hash" not in data and "password_salt" not in data
    listed = company["portal"].get("/api/employees").get_json()["employees"]
    assert all("password_hash" not in item for item in listed)
