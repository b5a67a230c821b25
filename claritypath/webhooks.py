"""Inbound webhooks from the Journey Map questionnaire and report generator.

Two providers write into the employee journey record:

* ``typeform-mapa`` delivers the questionnaire answers. It marks the journey
  filled and starts the release countdown at ``submittedAt``.
* ``journey-map`` delivers the rendered report HTML for a CPF.

Both are authenticated with the shared ``CLARITY_JOURNEY_WEBHOOK_KEY``; an
unset key rejects every call. Each delivery is stored in ``webhook_log``
before it is handled.
"""

from __future__ import annotations

import hmac
import json
import logging
from typing import Dict, Optional, Tuple

from . import config
from .employees import find_by_cpf, find_by_email
from .utils import clean_cpf, iso, normalize_email, parse_rfc3339_datetime

logger = logging.getLogger(__name__)

WebhookResult = Tuple[str, Dict[str, object]]

TYPEFORM_PATH = "/api/webhooks/typeform-mapa"
JOURNEY_MAP_PATH = "/api/webhooks/journey-map"


def key_matches(supplied: object) -> bool:
    expected = config.WEBHOOK_KEY
    if not expected or not isinstance(supplied, str) or not supplied:
        return False
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def record_delivery(conn, provider: str, payload: object) -> int:
    if isinstance(payload, dict):
        payload = {k: v for k, v in payload.items() if k != "webhook_key"}
    cur = conn.execute(
        "INSERT INTO webhook_log (provider, payload, handled, outcome, received_at) VALUES (?, ?, 0, NULL, ?)",
        (provider, json.dumps(payload, ensure_ascii=False, default=str)[:100_000], iso()),
    )
    return int(cur.lastrowid)


def finish_delivery(conn, log_id: int, handled: bool, outcome: str) -> None:
    conn.execute(
        "UPDATE webhook_log SET handled = ?, outcome = ?, handled_at = ? WHERE id = ?",
        (1 if handled else 0, outcome[:300], iso(), log_id),
    )


def handle_journey_map(conn, payload: object) -> WebhookResult:
    """Attach the rendered Journey Map report to the employee with this CPF."""
    data = payload if isinstance(payload, dict) else {}
    if not key_matches(data.get("webhook_key")):
        logger.warning("journey-map webhook rejected: invalid key")
        return "401 Unauthorized", {"ok": False, "error": "Chave de webhook inválida"}
    cpf = clean_cpf(data.get("cpf"))
    html_result = data.get("html_result")
    if not cpf:
        return "400 Bad Request", {"ok": False, "error": "CPF é obrigatório"}
    if not isinstance(html_result, str) or not html_result.strip():
        return "400 Bad Request", {"ok": False, "error": "html_result é obrigatório"}

    employee = find_by_cpf(conn, cpf)
    if not employee:
        logger.info("journey-map webhook for unknown CPF %s", cpf)
        return "404 Not Found", {"ok": False, "error": "Funcionário não encontrado com este CPF", "cpf_searched": cpf}

    now = iso()
    # The first submission time drives the release countdown; later reports keep it.
    conn.execute(
        """
        UPDATE employees
        SET journey_filled = 1,
            journey_filled_at = COALESCE(journey_filled_at, ?),
            journey_result_html = ?,
            updated_at = ?
        WHERE id = ?
        """,
        (now, html_result, now, employee["id"]),
    )
    logger.info("Journey Map report stored for employee %s", employee["id"])
    return "200 OK", {
        "ok": True,
        "message": "Mapa de jornada atualizado com sucesso",
        "employee": {"id": int(employee["id"]), "name": employee["name"], "cpf": cpf},
        "timestamp": now,
    }


def unwrap_typeform(data: object) -> Dict[str, object]:
    """Accept a single delivery or a list of them, optionally wrapped in ``body``."""
    if isinstance(data, list):
        data = data[0] if data else {}
    if not isinstance(data, dict):
        return {}
    body = data.get("body")
    return body if isinstance(body, dict) else data


def handle_typeform(conn, data: object, supplied_key: Optional[str] = None) -> WebhookResult:
    """Store questionnaire answers and start the release countdown."""
    body = unwrap_typeform(data)
    key = supplied_key or body.get("webhook_key")
    if not key_matches(key):
        logger.warning("typeform-mapa webhook rejected: invalid key")
        return "401 Unauthorized", {"ok": False, "error": "Chave de webhook inválida"}

    email = normalize_email(body.get("email"))
    cpf = clean_cpf(body.get("CPF") or body.get("cpf"))
    if not email and not cpf:
        return "400 Bad Request", {
            "ok": False,
            "error": "Email ou CPF são obrigatórios para identificar o funcionário",
        }

    employee = find_by_email(conn, email) if email else None
    if employee is None and cpf:
        employee = find_by_cpf(conn, cpf)
    if not employee:
        logger.info("typeform-mapa webhook for unknown employee email=%s cpf=%s", email, cpf)
        return "404 Not Found", {
            "ok": False,
            "error": "Funcionário não encontrado no sistema",
            "email": email,
            "cpf": cpf,
        }

    submitted = parse_rfc3339_datetime(body.get("submittedAt"))
    if body.get("submittedAt") and submitted is None:
        logger.warning("typeform-mapa submittedAt %r is not a timestamp; using receipt time", body.get("submittedAt"))
    filled_at = iso(submitted) if submitted else iso()
    answers = {k: v for k, v in body.items() if k != "webhook_key"}
    conn.execute(
        """
        UPDATE employees
        SET journey_answers_json = ?,
            journey_filled = 1,
            journey_filled_at = COALESCE(journey_filled_at, ?),
            updated_at = ?
        WHERE id = ?
        """,
        (json.dumps(answers, ensure_ascii=False, default=str), filled_at, iso(), employee["id"]),
    )
    logger.info("Journey questionnaire answers stored for employee %s", employee["id"])
    return "200 OK", {
        "ok": True,
        "message": "Respostas do mapa de jornada salvas com sucesso",
        "employee_id": int(employee["id"]),
        "employee_name": employee["name"],
        "saved_at": iso(),
    }


def describe_typeform() -> Dict[str, object]:
    return {
        "message": "Webhook do Typeform - Mapa de Jornada",
        "endpoint": TYPEFORM_PATH,
        "method": "POST",
        "description": "Recebe respostas do questionário e salva no cadastro do funcionário",
        "required_fields": ["email ou CPF", "webhook_key (corpo, ?key= ou X-Webhook-Key)"],
        "example": {
            "email": "funcionario@exemplo.com",
            "CPF": "12345678900",
            "nome": "Nome do Funcionário",
            "submittedAt": "2025-11-10T16:50:55.749Z",
            "1": "Paciente",
            "2": "Leal",
        },
    }
