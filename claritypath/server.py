"""WSGI application for ClarityPath.

Route dispatch is explicit (`if req.path == ...`) and grouped by audience:
public pages and webhooks, the employee portal, the manager dashboard and
the platform admin. Each request opens its own database connection.
"""

from __future__ import annotations

import logging
import re
from socketserver import ThreadingMixIn
from typing import Dict, Optional
from urllib.parse import quote
from wsgiref.simple_server import WSGIServer, make_server

from . import config, departments, employees, videos, views, webhooks, workbook
from .auth import (
    SESSION_COOKIE,
    create_employee_password_reset,
    create_password_reset,
    create_session,
    destroy_session,
    enforce_rate_limit,
    get_auth_context,
    require_employee,
    require_role,
    validate_csrf,
    verify_employee_reset_token,
    verify_reset_token,
)
from .companies import list_companies, register_company, seats_left, update_company
from .db import db_connect, ensure_bootstrap
from .journey import ReleasePolicy, evaluate
from .scheduling import SystemClock
from .utils import h, hash_password, iso, normalize_email, to_int, verify_password
from .web import Request, Response, clear_cookie, json_error, json_response, redirect, set_cookie

logger = logging.getLogger(__name__)

# Replaced in tests to pin "now".
CLOCK = SystemClock()

STATIC_TYPES = {
    ".css": "text/css; charset=utf-8",
    ".js": "application/javascript; charset=utf-8",
    ".svg": "image/svg+xml",
}

EMPLOYEE_API_RE = re.compile(r"^/api/employees/(\d+)(?:/(progress|regenerate-map))?$")
MANAGER_EMPLOYEE_RE = re.compile(r"^/gestor/employees/(\d+)(?:/(edit|archive|restore|delete|invite))?$")
DEPARTMENT_RE = re.compile(r"^/gestor/departamentos/(\d+)/(edit|delete)$")
API_DEPARTMENT_RE = re.compile(r"^/api/departments/(\d+)$")
VIDEO_RE = re.compile(r"^/gestor/videos/(\d+)/(edit|delete)$")
API_VIDEO_RE = re.compile(r"^/api/videos/(\d+)$")
ADMIN_COMPANY_RE = re.compile(r"^/(?:api/)?admin/companies/(\d+)$")


class ThreadedWSGIServer(ThreadingMixIn, WSGIServer):
    """Thread-per-request WSGI server; the stdlib default handles one request at a time."""

    daemon_threads = True


def page(title: str, content: str, req: Request, ctx: Dict[str, object], notice: str = "", status: str = "200 OK") -> Response:
    return Response(views.render_layout(title, content, req, ctx, notice), status=status)


def serve_static(req: Request) -> Response:
    rel = req.path.replace("/static/", "", 1)
    static_file = (config.STATIC_DIR / rel).resolve()
    if config.STATIC_DIR.resolve() not in static_file.parents or not static_file.is_file():
        return Response("Not found", status="404 Not Found")
    mime = STATIC_TYPES.get(static_file.suffix, "text/plain; charset=utf-8")
    return Response(static_file.read_text(encoding="utf-8"), content_type=mime)


def msg_redirect(path: str, message: str) -> Response:
    return redirect(f"{path}?msg={quote(message)}")


def webhook_route(conn, req: Request) -> Response:
    if not config.FLAG_ENABLE_WEBHOOKS:
        return json_error("webhooks_disabled", "501 Not Implemented")

    if req.path == webhooks.TYPEFORM_PATH and req.method == "GET":
        return json_response(webhooks.describe_typeform())

    if req.method != "POST" or req.path not in {webhooks.TYPEFORM_PATH, webhooks.JOURNEY_MAP_PATH}:
        if req.path in {webhooks.TYPEFORM_PATH, webhooks.JOURNEY_MAP_PATH}:
            return json_error("method_not_allowed", "405 Method Not Allowed")
        return json_error("not_found", "404 Not Found")

    data = req.json
    if data is None:
        return json_error("JSON inválido", "400 Bad Request")
    provider = "typeform" if req.path == webhooks.TYPEFORM_PATH else "journey-map"
    log_id = webhooks.record_delivery(conn, provider, data)
    if provider == "typeform":
        supplied = req.query.get("key") or req.environ.get("HTTP_X_WEBHOOK_KEY") or None
        status, body = webhooks.handle_typeform(conn, data, supplied_key=supplied)
    else:
        status, body = webhooks.handle_journey_map(conn, data)
    ok = status.startswith("200")
    webhooks.finish_delivery(conn, log_id, ok, status if ok else f"{status}: {body.get('error')}")
    conn.commit()
    return json_response(body, status=status)


def public_route(conn, req: Request, ctx: Dict[str, object], notice: str) -> Optional[Response]:
    """Routes reachable without a session. Returns None when the path is not public."""
    if req.path == "/":
        role = ctx.get("role")
        if role == "employee":
            return redirect("/funcionario")
        if role == "admin":
            return redirect("/admin")
        if role == "manager":
            return redirect("/gestor")
        return redirect("/login")

    if req.path == "/login" and req.method == "GET":
        return Response(views.render_login(req, error=notice))

    if req.path == "/login" and req.method == "POST":
        if not enforce_rate_limit(req.remote_addr):
            return Response(views.render_login(req, "Muitas tentativas. Tente novamente mais tarde."), status="429 Too Many Requests")
        email = normalize_email(req.form.get("email"))
        password = req.form.get("password", "")
        user = conn.execute("SELECT * FROM users WHERE email = ? AND is_active = 1", (email,)).fetchone()
        if not user or not verify_password(password, str(user["password_hash"] or ""), str(user["password_salt"] or "")):
            return Response(views.render_login(req, "Email ou senha inválidos."), status="401 Unauthorized")
        raw_session, _csrf = create_session(conn, req.remote_addr, req.user_agent, user_id=int(user["id"]))
        conn.commit()
        logger.info("User %s signed in", email)
        cookie = set_cookie(SESSION_COOKIE, raw_session, max_age=config.SESSION_DAYS * 24 * 3600)
        return redirect("/admin" if user["is_superuser"] else "/gestor", cookies=[cookie])

    if req.path == "/acesso" and req.method == "GET":
        invite_token = req.query.get("convite", "")
        if not invite_token:
            return Response(views.render_employee_access(req, error=notice))
        employee = employees.redeem_invite(conn, invite_token)
        if not employees.can_sign_in(employee):
            conn.commit()
            return Response(views.render_employee_access(req, "Link de acesso inválido ou expirado."), status="400 Bad Request")
        return employee_sign_in(conn, req, employee)

    if req.path == "/acesso" and req.method == "POST":
        if not enforce_rate_limit(req.remote_addr):
            if req.is_json:
                return json_error("too_many_attempts", "429 Too Many Requests")
            return Response(views.render_employee_access(req, "Muitas tentativas. Tente novamente mais tarde."), status="429 Too Many Requests")
        payload = req.payload()
        employee = employees.find_by_cpf(conn, payload.get("cpf"))
        if not employees.can_sign_in(employee):
            if req.is_json:
                return json_error("CPF não encontrado", "401 Unauthorized")
            return Response(views.render_employee_access(req, "CPF não encontrado."), status="401 Unauthorized")
        if not employees.check_password(employee, str(payload.get("password") or "")):
            if req.is_json:
                return json_error("Senha incorreta", "401 Unauthorized")
            return Response(views.render_employee_access(req, "Senha incorreta."), status="401 Unauthorized")
        return employee_sign_in(conn, req, employee)

    if req.path == "/acesso/esqueci-senha" and req.method == "GET":
        return Response(views.render_forgot_password(req, message=notice, employee=True))

    if req.path == "/acesso/esqueci-senha" and req.method == "POST":
        if not enforce_rate_limit(req.remote_addr):
            return Response(
                views.render_forgot_password(req, "Muitas tentativas. Tente novamente mais tarde.", employee=True),
                status="429 Too Many Requests",
            )
        employee = employees.find_by_cpf(conn, req.form.get("cpf"))
        if not employees.can_sign_in(employee):
            return Response(views.render_forgot_password(req, "Se o CPF estiver cadastrado, o link estará disponível com o seu gestor.", employee=True))
        token, _expires = create_employee_password_reset(conn, int(employee["id"]))
        conn.commit()
        logger.info("Password reset link issued for employee %s", employee["id"])
        link = f"/acesso/redefinir-senha?token={token}"
        return Response(views.render_forgot_password(req, f"Link de redefinição (válido por 1 hora): {link}", employee=True))

    if req.path == "/acesso/redefinir-senha" and req.method == "GET":
        token = req.query.get("token", "")
        if not token or not verify_employee_reset_token(conn, token):
            return Response(views.render_employee_access(req, "Link inválido ou expirado."), status="400 Bad Request")
        return Response(views.render_reset_password(req, token, employee=True))

    if req.path == "/acesso/redefinir-senha" and req.method == "POST":
        token = req.form.get("token", "")
        password = req.form.get("password", "")
        error = employees.password_error(password)
        if not error and password != req.form.get("password_confirm", ""):
            error = "As senhas não coincidem"
        if error:
            return Response(views.render_reset_password(req, token, error, employee=True), status="400 Bad Request")
        reset = verify_employee_reset_token(conn, token)
        if not reset:
            return Response(views.render_employee_access(req, "Link inválido ou expirado."), status="400 Bad Request")
        employees.set_password(conn, int(reset["employee_id"]), password)
        conn.execute("UPDATE employee_password_resets SET used_at = ? WHERE id = ?", (iso(), reset["id"]))
        conn.execute("DELETE FROM sessions WHERE employee_id = ?", (reset["employee_id"],))
        conn.commit()
        return msg_redirect("/acesso", "Senha atualizada. Entre com seu CPF e a nova senha.")

    if req.path == "/cadastro-gestor":
        if not config.FLAG_ENABLE_REGISTRATION:
            return Response("<h1>501 Not Implemented</h1><p>Cadastro desativado.</p>", status="501 Not Implemented")
        if req.method == "GET":
            return Response(views.render_register(req))
        payload = req.payload()
        created, error = register_company(conn, payload)
        if error:
            conn.rollback()
            if req.is_json:
                return json_error(error, "400 Bad Request")
            return Response(views.render_register(req, error, payload), status="400 Bad Request")
        conn.commit()
        if req.is_json:
            return json_response({"ok": True, **created}, status="201 Created")
        return msg_redirect("/login", "Empresa cadastrada. Entre com seu email e senha.")

    if req.path == "/forgot-password" and req.method == "GET":
        return Response(views.render_forgot_password(req, message=notice))

    if req.path == "/forgot-password" and req.method == "POST":
        email = normalize_email(req.form.get("email"))
        user = conn.execute("SELECT id FROM users WHERE email = ? AND is_active = 1", (email,)).fetchone()
        if not user:
            return Response(views.render_forgot_password(req, "Se a conta existir, o link estará disponível com o administrador."))
        token, _expires = create_password_reset(conn, int(user["id"]))
        conn.commit()
        return Response(views.render_forgot_password(req, f"Link de redefinição (compartilhe com segurança): /reset-password?token={token}"))

    if req.path == "/reset-password" and req.method == "GET":
        token = req.query.get("token", "")
        if not token or not verify_reset_token(conn, token):
            return Response(views.render_login(req, "Link inválido ou expirado."), status="400 Bad Request")
        return Response(views.render_reset_password(req, token))

    if req.path == "/reset-password" and req.method == "POST":
        token = req.form.get("token", "")
        password = req.form.get("password", "")
        if password != req.form.get("password_confirm", "") or len(password) < config.MIN_MANAGER_PASSWORD:
            return Response(views.render_reset_password(req, token, "As senhas devem coincidir e ter ao menos 6 caracteres."), status="400 Bad Request")
        reset = verify_reset_token(conn, token)
        if not reset:
            return Response(views.render_login(req, "Link inválido ou expirado."), status="400 Bad Request")
        pw_hash, pw_salt = hash_password(password)
        conn.execute("UPDATE users SET password_hash = ?, password_salt = ? WHERE id = ?", (pw_hash, pw_salt, reset["user_id"]))
        conn.execute("UPDATE password_resets SET used_at = ? WHERE id = ?", (iso(), reset["id"]))
        conn.execute("DELETE FROM sessions WHERE user_id = ?", (reset["user_id"],))
        conn.commit()
        return msg_redirect("/login", "Senha atualizada. Entre novamente.")

    return None


def employee_sign_in(conn, req: Request, employee) -> Response:
    employees.mark_active(conn, employee)
    raw_session, csrf = create_session(conn, req.remote_addr, req.user_agent, employee_id=int(employee["id"]))
    conn.commit()
    logger.info("Employee %s signed in", employee["id"])
    cookie = set_cookie(SESSION_COOKIE, raw_session, max_age=config.SESSION_DAYS * 24 * 3600)
    if req.is_json:
        return json_response({"ok": True, "csrf": csrf, "employee": {"id": int(employee["id"]), "name": employee["name"]}}, cookies=[cookie])
    return redirect("/funcionario", cookies=[cookie])


def employee_route(conn, req: Request, ctx: Dict[str, object], notice: str) -> Optional[Response]:
    employee_id = int(ctx["employee"]["id"])

    if req.path == "/api/employees/me" and req.method == "GET":
        row = conn.execute("SELECT * FROM employees WHERE id = ?", (employee_id,)).fetchone()
        policy = ReleasePolicy.for_request(req.query.get("debug"))
        view = evaluate(employees.journey_record(row), CLOCK.now(), policy)
        return json_response({"ok": True, "employee": employees.public_record(row), "journey": view.as_dict()})

    if req.path == "/api/workbook/responses" and req.method == "GET":
        responses = workbook.load_responses(conn, employee_id)
        return json_response({"ok": True, "responses": responses, "completion": workbook.completion(responses)})

    if req.path == "/api/workbook/responses" and req.method == "POST":
        payload = req.payload()
        field_key = str(payload.get("field_key") or "")
        try:
            value = workbook.save_response(conn, employee_id, field_key, payload.get("value"))
        except workbook.UnknownWorkbookField:
            return json_error("unknown_field", "400 Bad Request", field_key=field_key)
        except workbook.InvalidWorkbookValue as exc:
            return json_error(str(exc), "400 Bad Request", field_key=field_key)
        conn.commit()
        return json_response({"ok": True, "field_key": field_key, "value": value})

    if req.path in {"/api/videos/progress", "/funcionario/videos"} and req.method == "POST":
        payload = req.payload()
        completed = str(payload.get("completed", "1")).lower() not in {"0", "false", ""}
        ok, message = videos.mark_progress(conn, employee_id, payload.get("video_id"), completed)
        if ok:
            conn.commit()
        if req.path.startswith("/api/"):
            if not ok:
                return json_error(message, "400 Bad Request")
            return json_response({"ok": True, "watched": videos.watched_count(conn, employee_id)})
        return msg_redirect("/funcionario/videos", message)

    if req.path == "/funcionario":
        row = conn.execute("SELECT * FROM employees WHERE id = ?", (employee_id,)).fetchone()
        view = evaluate(employees.journey_record(row), CLOCK.now(), ReleasePolicy.for_request(req.query.get("debug")))
        catalog = videos.videos_with_progress(conn, employee_id)
        watched = sum(1 for video in catalog if video["is_watched"])
        videos_pct = round(watched / len(catalog) * 100) if catalog else 0
        done = workbook.completion(workbook.load_responses(conn, employee_id))
        return page("Início", views.render_employee_home(row, view, videos_pct, done), req, ctx, notice)

    if req.path == "/funcionario/mapa":
        row = conn.execute("SELECT * FROM employees WHERE id = ?", (employee_id,)).fetchone()
        policy = ReleasePolicy.for_request(req.query.get("debug"))
        record = employees.journey_record(row)
        now = CLOCK.now()
        view = evaluate(record, now, policy)
        content = views.journey_block(view, policy.threshold_ms, record.journey_result_html, now=now)
        return page("Mapa de Jornada", content, req, ctx, notice)

    if req.path in {"/funcionario/senha", "/api/employees/change-password"} and req.method == "POST":
        payload = req.payload()
        row = conn.execute("SELECT * FROM employees WHERE id = ?", (employee_id,)).fetchone()
        confirm = payload.get("password_confirm")
        ok, message = employees.change_password(
            conn,
            row,
            str(payload.get("current_password") or ""),
            str(payload.get("new_password") or ""),
            None if confirm is None else str(confirm),
        )
        if req.path.startswith("/api/"):
            if not ok:
                conn.rollback()
                return json_error(message, "400 Bad Request")
            conn.commit()
            return json_response({"ok": True, "message": message})
        if not ok:
            conn.rollback()
            return page("Senha", views.render_change_password(employees.has_password(row), message), req, ctx, status="400 Bad Request")
        conn.commit()
        return msg_redirect("/funcionario", message)

    if req.path == "/funcionario/senha":
        row = conn.execute("SELECT * FROM employees WHERE id = ?", (employee_id,)).fetchone()
        return page("Senha", views.render_change_password(employees.has_password(row)), req, ctx, notice)

    if req.path == "/funcionario/caderno":
        return page("Caderno", views.render_workbook_page(workbook.load_responses(conn, employee_id)), req, ctx, notice)

    if req.path == "/funcionario/videos":
        return page("Vídeos", views.render_videos_page(videos.videos_with_progress(conn, employee_id)), req, ctx, notice)

    return None


def employee_filters(req: Request) -> Dict[str, str]:
    return {
        "q": req.query.get("q", ""),
        "department_id": req.query.get("department_id", ""),
        "journey_state": req.query.get("journey_state", ""),
        "archived": "1" if req.query.get("archived") in {"1", "true"} else "",
    }


def list_for_filters(conn, company_id: int, filters: Dict[str, str]):
    return employees.list_employees(
        conn,
        company_id,
        CLOCK.now(),
        search=filters["q"],
        department_id=to_int(filters["department_id"]),
        journey_state=filters["journey_state"],
        archived=filters["archived"] == "1",
    )


def manager_route(conn, req: Request, ctx: Dict[str, object], notice: str) -> Optional[Response]:
    company = ctx["company"]
    company_id = int(company["id"])
    user_id = int(ctx["user"]["id"])

    if req.path == "/gestor":
        filters = employee_filters(req)
        content = views.render_manager_dashboard(
            company,
            list_for_filters(conn, company_id, filters),
            departments.list_departments(conn, company_id),
            filters,
            seats_left(conn, company),
        )
        return page("Funcionários", content, req, ctx, notice)

    if req.path == "/api/employees" and req.method == "GET":
        filters = employee_filters(req)
        return json_response({"ok": True, "employees": list_for_filters(conn, company_id, filters)})

    if req.path in {"/api/employees", "/gestor/employees/new"} and req.method == "POST":
        employee_id, error = employees.create_employee(conn, company, user_id, req.payload())
        if error:
            conn.rollback()
            if req.path.startswith("/api/"):
                return json_error(error, "409 Conflict" if "existe" in error or "cadastrado" in error else "400 Bad Request")
            return msg_redirect("/gestor", error)
        conn.commit()
        if req.path.startswith("/api/"):
            return json_response({"ok": True, "id": employee_id}, status="201 Created")
        return redirect(f"/gestor/employees/{employee_id}?msg={quote('Funcionário criado')}")

    match = EMPLOYEE_API_RE.match(req.path)
    if match:
        employee_id = int(match.group(1))
        action = match.group(2)
        if action == "progress" and req.method == "GET":
            progress = employees.employee_progress(conn, company_id, employee_id, CLOCK.now())
            if progress is None:
                return json_error("not_found", "404 Not Found")
            return json_response({"ok": True, **progress})
        if action == "regenerate-map" and req.method == "POST":
            payload, error = employees.regenerate_map_payload(conn, company_id, employee_id)
            if payload is None:
                return json_error(error, "404 Not Found" if "encontrado" in error else "400 Bad Request")
            employee = payload["employee"]
            logger.info("Journey map regeneration requested for employee %s", employee_id)
            return json_response(
                {
                    "ok": True,
                    "message": "Respostas recuperadas com sucesso",
                    "employee_id": employee["id"],
                    "employee_name": employee["name"],
                    "employee_email": employee["email"],
                    "respostas": payload["respostas"],
                }
            )
        if action is None and req.method == "GET":
            row = employees.get_employee(conn, company_id, employee_id)
            if not row:
                return json_error("not_found", "404 Not Found")
            item = employees.manager_record(row)
            item["journey"] = evaluate(employees.journey_record(row), CLOCK.now()).as_dict()
            return json_response({"ok": True, "employee": item})
        if action is None and req.method in {"PUT", "PATCH"}:
            ok, message = employees.update_employee(conn, company_id, employee_id, req.payload(), user_id)
            if not ok:
                conn.rollback()
                return json_error(message, "404 Not Found" if "encontrado" in message else "400 Bad Request")
            conn.commit()
            return json_response({"ok": True, "message": message})
        if action is None and req.method == "DELETE":
            ok, message = employees.delete_employee(conn, company_id, employee_id, user_id)
            conn.commit()
            return json_response({"ok": ok, "message": message})
        return json_error("method_not_allowed", "405 Method Not Allowed")

    match = MANAGER_EMPLOYEE_RE.match(req.path)
    if match:
        employee_id = int(match.group(1))
        action = match.group(2)
        detail_path = f"/gestor/employees/{employee_id}"
        if action is None or (action == "invite" and req.method == "POST"):
            row = employees.get_employee(conn, company_id, employee_id)
            if not row:
                return Response("<h1>404 Not Found</h1>", status="404 Not Found")
            invite_link = ""
            if action == "invite":
                token, error = employees.create_invite(conn, company_id, employee_id, user_id)
                if token is None:
                    return msg_redirect(detail_path, error)
                conn.commit()
                invite_link = f"/acesso?convite={token}"
                row = employees.get_employee(conn, company_id, employee_id)
            progress = employees.employee_progress(conn, company_id, employee_id, CLOCK.now())
            content = views.render_employee_detail(row, progress, departments.list_departments(conn, company_id), invite_link)
            return page(str(row["name"]), content, req, ctx, notice)
        if req.method != "POST":
            return Response("<h1>405 Method Not Allowed</h1>", status="405 Method Not Allowed")
        if action == "edit":
            ok, message = employees.update_employee(conn, company_id, employee_id, req.payload(), user_id)
        elif action == "delete":
            ok, message = employees.delete_employee(conn, company_id, employee_id, user_id)
            if ok:
                conn.commit()
                return msg_redirect("/gestor", message)
        else:
            ok, message = employees.set_archived(conn, company, employee_id, action == "archive", user_id)
        if ok:
            conn.commit()
        else:
            conn.rollback()
        return msg_redirect(detail_path, message)

    if req.path == "/api/departments" and req.method == "GET":
        return json_response({"ok": True, "departments": departments.list_departments(conn, company_id)})

    if req.path in {"/api/departments", "/gestor/departamentos"} and req.method == "POST":
        payload = req.payload()
        dept_id, error = departments.create_department(conn, company_id, str(payload.get("name") or ""), str(payload.get("description") or ""), user_id)
        if error:
            conn.rollback()
            if req.path.startswith("/api/"):
                return json_error(error, "409 Conflict" if "Já existe" in error else "400 Bad Request")
            return msg_redirect("/gestor/departamentos", error)
        conn.commit()
        if req.path.startswith("/api/"):
            return json_response({"ok": True, "id": dept_id}, status="201 Created")
        return msg_redirect("/gestor/departamentos", "Departamento criado")

    if req.path == "/gestor/departamentos":
        return page("Departamentos", views.render_departments(departments.list_departments(conn, company_id)), req, ctx, notice)

    match = DEPARTMENT_RE.match(req.path) or API_DEPARTMENT_RE.match(req.path)
    if match and req.method in {"POST", "PUT", "PATCH", "DELETE"}:
        dept_id = int(match.group(1))
        is_api = req.path.startswith("/api/")
        action = match.group(2) if not is_api else ("delete" if req.method == "DELETE" else "edit")
        if action == "delete":
            ok, message = departments.delete_department(conn, company_id, dept_id, user_id)
        else:
            payload = req.payload()
            description = payload.get("description")
            ok, message = departments.rename_department(
                conn, company_id, dept_id, str(payload.get("name") or ""), None if description is None else str(description), user_id
            )
        if ok:
            conn.commit()
        else:
            conn.rollback()
        if is_api:
            if not ok:
                return json_error(message, "404 Not Found" if "encontrado" in message else "400 Bad Request")
            return json_response({"ok": True, "message": message})
        return msg_redirect("/gestor/departamentos", message)

    if req.path == "/api/videos" and req.method == "GET":
        return json_response({"ok": True, "videos": videos.list_company_videos(conn, company_id)})

    if req.path in {"/api/videos", "/gestor/videos"} and req.method == "POST":
        video_id, error = videos.create_video(conn, company_id, user_id, req.payload())
        if error:
            conn.rollback()
            if req.path.startswith("/api/"):
                return json_error(error, "400 Bad Request")
            return msg_redirect("/gestor/videos", error)
        conn.commit()
        if req.path.startswith("/api/"):
            return json_response({"ok": True, "id": video_id}, status="201 Created")
        return msg_redirect("/gestor/videos", "Vídeo adicionado")

    if req.path == "/gestor/videos":
        return page("Vídeos", views.render_manager_videos(videos.list_company_videos(conn, company_id)), req, ctx, notice)

    match = VIDEO_RE.match(req.path) or API_VIDEO_RE.match(req.path)
    if match and req.method in {"POST", "PUT", "PATCH", "DELETE"}:
        video_id = int(match.group(1))
        is_api = req.path.startswith("/api/")
        action = match.group(2) if not is_api else ("delete" if req.method == "DELETE" else "edit")
        if action == "delete":
            ok, message = videos.delete_video(conn, company_id, video_id, user_id)
        else:
            ok, message = videos.update_video(conn, company_id, video_id, req.payload(), user_id)
        if ok:
            conn.commit()
        else:
            conn.rollback()
        if is_api:
            if not ok:
                status = "404 Not Found" if "encontrado" in message else "403 Forbidden" if "sistema" in message else "400 Bad Request"
                return json_error(message, status)
            return json_response({"ok": True, "message": message})
        return msg_redirect("/gestor/videos", message)

    return None


def admin_route(conn, req: Request, ctx: Dict[str, object], notice: str) -> Optional[Response]:
    user_id = int(ctx["user"]["id"])

    if req.path in {"/admin", "/api/admin/companies"} and req.method == "GET":
        filters = {"q": req.query.get("q", ""), "status": req.query.get("status", "")}
        companies = list_companies(conn, status=filters["status"], search=filters["q"])
        if req.path.startswith("/api/"):
            return json_response({"ok": True, "companies": companies})
        return page("Empresas", views.render_admin(companies, filters), req, ctx, notice)

    match = ADMIN_COMPANY_RE.match(req.path)
    if match and req.method in {"POST", "PUT", "PATCH"}:
        ok, message = update_company(conn, int(match.group(1)), req.payload(), user_id)
        if ok:
            conn.commit()
        else:
            conn.rollback()
        if req.path.startswith("/api/"):
            if not ok:
                return json_error(message, "404 Not Found" if "encontrada" in message else "400 Bad Request")
            return json_response({"ok": True, "message": message})
        return msg_redirect("/admin", message)

    return None


def is_employee_path(path: str) -> bool:
    return path.startswith("/funcionario") or path in {
        "/api/employees/me",
        "/api/employees/change-password",
        "/api/workbook/responses",
        "/api/videos/progress",
    }


def is_admin_path(path: str) -> bool:
    return path.startswith("/admin") or path.startswith("/api/admin/")


def not_found(req: Request) -> Response:
    if req.wants_json:
        return json_error("not_found", "404 Not Found")
    return Response("<h1>404 Not Found</h1>", status="404 Not Found")


def app(environ, start_response):
    """WSGI entrypoint."""
    req = Request(environ)

    if req.path.startswith("/static/"):
        return serve_static(req).wsgi(start_response)
    if req.path == "/healthz":
        return Response("ok", content_type="text/plain").wsgi(start_response)
    if req.path == "/readyz":
        try:
            ensure_bootstrap()
            probe = db_connect()
            probe.execute("SELECT 1").fetchone()
            probe.close()
            return Response("ready", content_type="text/plain").wsgi(start_response)
        except Exception as exc:
            logger.warning("Readiness probe failed: %s", exc)
            return Response(f"not-ready: {h(str(exc))}", status="503 Service Unavailable", content_type="text/plain").wsgi(start_response)

    try:
        ensure_bootstrap()
    except Exception as exc:
        body = f"<h1>503 Service Unavailable</h1><p>Database bootstrap failed: {h(str(exc))}</p>"
        return Response(body, status="503 Service Unavailable").wsgi(start_response)

    conn = db_connect()
    try:
        if req.path.startswith("/api/webhooks/"):
            return webhook_route(conn, req).wsgi(start_response)

        ctx = get_auth_context(conn, req)
        notice = req.query.get("msg", "")

        response = public_route(conn, req, ctx, notice)
        if response is not None:
            return response.wsgi(start_response)

        if req.path == "/logout" and req.method == "POST":
            if ctx.get("role") and not validate_csrf(req, ctx):
                return Response("<h1>400 Bad Request</h1><p>CSRF token inválido.</p>", status="400 Bad Request").wsgi(start_response)
            target = "/acesso" if ctx.get("employee") else "/login"
            destroy_session(conn, req.cookies.get(SESSION_COOKIE, ""))
            conn.commit()
            return redirect(target, cookies=[clear_cookie(SESSION_COOKIE)]).wsgi(start_response)

        if is_employee_path(req.path):
            gate = require_employee(req, ctx)
        elif is_admin_path(req.path):
            gate = require_role(req, ctx, "admin")
        else:
            gate = require_role(req, ctx, "manager")
        if gate:
            return gate.wsgi(start_response)

        if not validate_csrf(req, ctx):
            if req.wants_json:
                return json_error("csrf_mismatch", "400 Bad Request").wsgi(start_response)
            return Response("<h1>400 Bad Request</h1><p>CSRF token inválido.</p>", status="400 Bad Request").wsgi(start_response)

        if is_employee_path(req.path):
            response = employee_route(conn, req, ctx, notice)
        elif is_admin_path(req.path):
            response = admin_route(conn, req, ctx, notice)
        elif ctx.get("company") is None:
            # Platform admins have no company of their own.
            response = redirect("/admin")
        else:
            response = manager_route(conn, req, ctx, notice)
        return (response or not_found(req)).wsgi(start_response)
    except Exception:
        logger.exception("Unhandled error on %s %s", req.method, req.path)
        if req.wants_json:
            return json_error("internal_error", "500 Internal Server Error").wsgi(start_response)
        return Response(
            "<h1>500 Internal Server Error</h1><p>Ocorreu um erro inesperado.</p>",
            status="500 Internal Server Error",
        ).wsgi(start_response)
    finally:
        conn.close()


def run() -> None:
    config.configure_logging()
    ensure_bootstrap()
    server_mode = "threaded" if config.WSGI_THREADED else "single-threaded"
    logger.info(
        "%s running on http://%s:%s (db=%s, mode=%s, release=%sh)",
        config.APP_NAME,
        config.HOST,
        config.PORT,
        config.DB_PATH if config.DB_BACKEND == "sqlite" else "postgres",
        server_mode,
        config.JOURNEY_RELEASE_HOURS,
    )
    if config.WSGI_THREADED:
        server = make_server(config.HOST, config.PORT, app, server_class=ThreadedWSGIServer)
    else:
        server = make_server(config.HOST, config.PORT, app)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    run()
