import json

import pytest

from claritypath import config
from claritypath.db import db_connect

JOURNEY_MAP = "/api/webhooks/journey-map"
TYPEFORM = "/api/webhooks/typeform-mapa"


def employee_row(employee_id):
    conn = db_connect()
    try:
        return conn.execute("SELECT * FROM employees WHERE id = ?", (employee_id,)).fetchone()
    finally:
        conn.close()


def last_log(provider):
    conn = db_connect()
    try:
        return conn.execute("SELECT * FROM webhook_log WHERE provider = ? ORDER BY id DESC LIMIT 1", (provider,)).fetchone()
    finally:
        conn.close()


def test_journey_map_requires_key(client, employee):
    resp = client.post(JOURNEY_MAP, json={"cpf": employee["cpf"], "html_result": "<p>x</p>", "webhook_key": "wrong"})
    assert resp.status_code == 401
    assert resp.get_json()["ok"] is False
    assert employee_row(employee["id"])["journey_result_html"] is None


def test_journey_map_requires_cpf_and_html(client, webhook_key):
    assert client.post(JOURNEY_MAP, json={"html_result": "<p>x</p>", "webhook_key": webhook_key}).status_code == 400
    assert client.post(JOURNEY_MAP, json={"cpf": "52998224725", "webhook_key": webhook_key}).status_code == 400


def test_journey_map_unknown_cpf(client, webhook_key, new_cpf):
    cpf = new_cpf()
    resp = client.post(JOURNEY_MAP, json={"cpf": cpf, "html_result": "<p>x</p>", "webhook_key": webhook_key})
    assert resp.status_code == 404
    assert resp.get_json()["cpf_searched"] == cpf


def test_journey_map_stores_report_and_keeps_first_timestamp(client, employee, webhook_key, journey_setter):
    journey_setter(employee["id"], True, "2026-03-01T10:00:00+00:00")
    formatted = f"{employee['cpf'][:3]}.{employee['cpf'][3:6]}.{employee['cpf'][6:9]}-{employee['cpf'][9:]}"
    resp = client.post(JOURNEY_MAP, json={"cpf": formatted, "html_result": "<h1>Mapa</h1>", "webhook_key": webhook_key})
    assert resp.status_code == 200
    assert resp.get_json()["employee"]["id"] == employee["id"]
    row = employee_row(employee["id"])
    assert row["journey_result_html"] == "<h1>Mapa</h1>"
    assert row["journey_filled"] == 1
    assert row["journey_filled_at"] == "2026-03-01T10:00:00+00:00"


def test_journey_map_sets_timestamp_when_missing(client, employee, webhook_key):
    client.post(JOURNEY_MAP, json={"cpf": employee["cpf"], "html_result": "<p>r</p>", "webhook_key": webhook_key})
    assert employee_row(employee["id"])["journey_filled_at"]


def test_invalid_json_body(client):
    resp = client.post(JOURNEY_MAP, data="{not json", content_type="application/json")
    assert resp.status_code == 400


def test_deliveries_are_logged_without_the_key(client, employee, webhook_key):
    client.post(JOURNEY_MAP, json={"cpf": employee["cpf"], "html_result": "<p>log</p>", "webhook_key": webhook_key})
    row = last_log("journey-map")
    assert row["handled"] == 1
    assert row["outcome"].startswith("200")
    assert webhook_key not in row["payload"]
    assert json.loads(row["payload"])["html_result"] == "<p>log</p>"

    client.post(JOURNEY_MAP, json={"cpf": employee["cpf"], "html_result": "<p>x</p>", "webhook_key": "nope"})
    row = last_log("journey-map")
    assert row["handled"] == 0
    assert row["outcome"].startswith("401")


def test_typeform_by_email_sets_submitted_time(client, employee, webhook_key):
    resp = client.post(
        TYPEFORM,
        json={"email": employee["email"].upper(), "submittedAt": "2026-03-02T09:00:00-03:00", "1": "Paciente", "webhook_key": webhook_key},
    )
    assert resp.status_code == 200
    assert resp.get_json()["employee_id"] == employee["id"]
    row = employee_row(employee["id"])
    assert row["journey_filled"] == 1
    assert row["journey_filled_at"].startswith("2026-03-02T12:00:00")
    answers = json.loads(row["journey_answers_json"])
    assert answers["1"] == "Paciente"
    assert "webhook_key" not in answers


def test_typeform_list_and_body_wrapper_with_query_key(client, employee, webhook_key):
    payload = [{"body": {"CPF": employee["cpf"], "2": "Leal"}}]
    resp = client.post(TYPEFORM, json=payload, query_string={"key": webhook_key})
    assert resp.status_code == 200
    assert json.loads(employee_row(employee["id"])["journey_answers_json"]) == {"CPF": employee["cpf"], "2": "Leal"}


def test_typeform_key_in_header(client, employee, webhook_key):
    resp = client.post(TYPEFORM, json={"cpf": employee["cpf"]}, headers={"X-Webhook-Key": webhook_key})
    assert resp.status_code == 200


def test_typeform_rejections(client, webhook_key, new_email):
    assert client.post(TYPEFORM, json={"email": "a@b.com"}).status_code == 401
    assert client.post(TYPEFORM, json={"nome": "x", "webhook_key": webhook_key}).status_code == 400
    resp = client.post(TYPEFORM, json={"email": new_email("ghost"), "webhook_key": webhook_key})
    assert resp.status_code == 404


def test_typeform_get_describes_endpoint(client):
    data = client.get(TYPEFORM).get_json()
    assert data["endpoint"] == TYPEFORM
    assert data["method"] == "POST"


def test_wrong_method_and_unknown_webhook(client):
    assert client.get(JOURNEY_MAP).status_code == 405
    assert client.post("/api/webhooks/other", json={}).status_code == 404


def test_countdown_starts_after_questionnaire(client, employee, webhook_key, pinned_clock):
    from conftest import T0

    client.post(TYPEFORM, json={"cpf": employee["cpf"], "submittedAt": T0.isoformat(), "webhook_key": webhook_key})
    journey = employee["portal"].get("/api/employees/me").get_json()["journey"]
    assert journey["state"] == "awaiting_release"
    assert journey["countdown"]["days"] == 3


@pytest.mark.parametrize("path", [JOURNEY_MAP, TYPEFORM])
def test_disabled_flag_returns_501(client, monkeypatch, path):
    monkeypatch.setattr(config, "FLAG_ENABLE_WEBHOOKS", False)
    assert client.post(path, json={}).status_code == 501


def test_empty_key_rejects_everything(client, employee, monkeypatch):
    monkeypatch.setattr(config, "WEBHOOK_KEY", "")
    resp = client.post(JOURNEY_MAP, json={"cpf": employee["cpf"], "html_result": "<p>x</p>", "webhook_key": ""})
    assert resp.status_code == 401
