import threading
from wsgiref.simple_server import WSGIRequestHandler, make_server

import pytest

from claritypath import server
from claritypath.autosave import SaveStatus
from claritypath.client import PortalClient, describe_view
from claritypath.journey import JourneyState
from conftest import T0


class QuietHandler(WSGIRequestHandler):
    def log_message(self, format, *args):
        pass


@pytest.fixture
def base_url():
    httpd = make_server("127.0.0.1", 0, server.app, server_class=server.ThreadedWSGIServer, handler_class=QuietHandler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{httpd.server_port}"
    finally:
        httpd.shutdown()
        httpd.server_close()


def test_signed_out_client_gets_placeholder(base_url):
    portal = PortalClient(base_url, timeout=5)
    employee, error = portal.fetch_employee()
    assert error.startswith("HTTP 401")
    assert employee["journey_filled"] is False
    record, error = portal.load_journey()
    assert error
    assert record.journey_filled is False


def test_login_and_workbook_round_trip(base_url, employee):
    portal = PortalClient(base_url, timeout=5)
    assert portal.login(employee["cpf"]) == (True, "")
    assert portal.csrf

    assert portal.save_workbook_field("plano_acoes", "Ler 10 páginas por dia") == (True, "")
    responses, error = portal.load_workbook()
    assert error == ""
    assert responses["plano_acoes"] == "Ler 10 páginas por dia"

    ok, error = portal.save_workbook_field("inexistente", "x")
    assert not ok
    assert error == "HTTP 400: unknown_field"


def test_bad_cpf_login(base_url, new_cpf):
    ok, error = PortalClient(base_url, timeout=5).login(new_cpf())
    assert not ok
    assert error.startswith("HTTP 401")


def test_autosave_over_http(base_url, employee, scheduler):
    portal = PortalClient(base_url, timeout=5)
    portal.login(employee["cpf"])
    saver = portal.workbook_autosave(scheduler=scheduler, delay_ms=1000)
    saver.edit("roda_energia", "6")
    saver.edit("roda_energia", "7")
    scheduler.advance(1)
    assert saver.statuses()["roda_energia"] is SaveStatus.SAVED
    assert portal.load_workbook()[0]["roda_energia"] == "7"

    saver.edit("roda_energia", "99")
    scheduler.advance(1)
    assert saver.statuses()["roda_energia"] is SaveStatus.ERROR
    assert portal.load_workbook()[0]["roda_energia"] == "7"
    saver.close()


def test_journey_monitor_counts_down(base_url, employee, journey_setter, clock, scheduler):
    journey_setter(employee["id"], True, T0.isoformat())
    clock.current = T0.replace(hour=13)
    portal = PortalClient(base_url, timeout=5)
    portal.login(employee["cpf"])

    views = []
    monitor, error = portal.journey_monitor(views.append, clock=clock, scheduler=scheduler)
    assert error == ""
    assert monitor.view.state is JourneyState.AWAITING_RELEASE
    assert "Processando resultado" in describe_view(monitor.view)
    scheduler.advance(3)
    assert views[-1].countdown.seconds == 57
    monitor.close()
    assert not monitor.ticking


def test_password_login(base_url, employee):
    portal = PortalClient(base_url, timeout=5)
    assert portal.login(employee["cpf"]) == (True, "")
    assert portal.change_password("abc1") == (True, "")
    ok, error = portal.change_password("abc2", current_password="nope")
    assert not ok
    assert error == "HTTP 400: Senha atual incorreta"

    fresh = PortalClient(base_url, timeout=5)
    ok, error = fresh.login(employee["cpf"])
    assert not ok
    assert error == "HTTP 401: Senha incorreta"
    assert fresh.login(employee["cpf"], "abc1") == (True, "")
