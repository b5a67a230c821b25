"""Server-rendered HTML pages.

Templates are f-strings; every interpolated value goes through ``h()``.
Forms carry a ``{{csrf}}`` placeholder that the dispatcher fills per session.
"""

from __future__ import annotations

import datetime as dt
from typing import Dict, List, Optional

from . import workbook
from .config import (
    APP_NAME,
    APP_TAGLINE,
    AUTOSAVE_DEBOUNCE_MS,
    COMPANY_PLANS,
    COMPANY_STATUSES,
    EMPLOYEE_PASSWORD_MAX,
    EMPLOYEE_PASSWORD_MIN,
    EMPLOYEE_STATUSES,
    JOURNEY_FORM_URL,
)
from .journey import JourneyState, JourneyView
from .utils import format_cpf, h
from .web import Request


def fill_csrf(content: str, csrf_token: str) -> str:
    return content.replace("{{csrf}}", h(csrf_token))


def csrf_field() -> str:
    return "<input type='hidden' name='csrf_token' value='{{csrf}}' />"


def nav_for(ctx: Dict[str, object]) -> str:
    role = ctx.get("role")
    if role == "employee":
        links = [
            ("/funcionario", "Início"),
            ("/funcionario/videos", "Vídeos"),
            ("/funcionario/caderno", "Caderno"),
            ("/funcionario/mapa", "Mapa de Jornada"),
            ("/funcionario/senha", "Senha"),
        ]
    elif role == "admin":
        links = [("/admin", "Empresas")]
    elif role == "manager":
        links = [("/gestor", "Funcionários"), ("/gestor/departamentos", "Departamentos"), ("/gestor/videos", "Vídeos")]
    else:
        return ""
    items = "".join(f"<a href='{h(path)}'>{h(label)}</a>" for path, label in links)
    return f"<nav class='top-nav' aria-label='Principal'>{items}</nav>"


def render_layout(title: str, content: str, req: Request, ctx: Optional[Dict[str, object]] = None, notice: str = "") -> str:
    ctx = ctx or {}
    who = ctx.get("employee") or ctx.get("user")
    if who:
        account = f"""
        <div class="account">
          <span class="user-chip">{h(who['name'])}</span>
          <form method="post" action="/logout">
            {csrf_field()}
            <button type="submit" class="btn ghost">Sair</button>
          </form>
        </div>
        """
    else:
        account = ""
    alert = f"<div class='notice' role='status' aria-live='polite'>{h(notice)}</div>" if notice else ""
    page = f"""
    <!doctype html>
    <html lang="pt-BR">
      <head>
        <meta charset="utf-8" />
        <meta name="viewport" content="width=device-width,initial-scale=1" />
        <meta name="csrf-token" content="{{{{csrf}}}}" />
        <title>{h(title)} | {h(APP_NAME)}</title>
        <link rel="stylesheet" href="/static/style.css" />
        <script defer src="/static/portal.js"></script>
      </head>
      <body>
        <header class="topbar"><h1>{h(APP_NAME)}</h1>{nav_for(ctx)}{account}</header>
        {alert}
        <main id="main-content">{content}</main>
      </body>
    </html>
    """
    return fill_csrf(page, str(ctx.get("csrf") or ""))


def render_login(req: Request, error: str = "") -> str:
    body = f"""
    <section class="card auth">
      <h2>Entrar como gestor</h2>
      <p>{h(APP_TAGLINE)}</p>
      {'<div class="error">' + h(error) + '</div>' if error else ''}
      <form method="post" action="/login">
        <label>Email <input type="email" name="email" required /></label>
        <label>Senha <input type="password" name="password" required /></label>
        <button type="submit">Entrar</button>
      </form>
      <p><a href="/forgot-password">Esqueceu a senha?</a> · <a href="/cadastro-gestor">Cadastrar empresa</a></p>
      <p><a href="/acesso">Sou funcionário</a></p>
    </section>
    """
    return render_layout("Login", body, req)


def render_employee_access(req: Request, error: str = "") -> str:
    body = f"""
    <section class="card auth">
      <h2>Acesso do funcionário</h2>
      <p>Informe o CPF cadastrado pela sua empresa.</p>
      {'<div class="error">' + h(error) + '</div>' if error else ''}
      <form method="post" action="/acesso">
        <label>CPF <input name="cpf" inputmode="numeric" required placeholder="000.000.000-00" /></label>
        <label>Senha (se você já criou uma) <input type="password" name="password" autocomplete="current-password" /></label>
        <button type="submit">Acessar</button>
      </form>
      <p><a href="/acesso/esqueci-senha">Esqueci minha senha</a></p>
    </section>
    """
    return render_layout("Acesso", body, req)


def render_register(req: Request, error: str = "", values: Optional[Dict[str, object]] = None) -> str:
    values = values or {}
    body = f"""
    <section class="card auth">
      <h2>Cadastro de empresa</h2>
      {'<div class="error">' + h(error) + '</div>' if error else ''}
      <form method="post" action="/cadastro-gestor">
        <label>Empresa <input name="company_name" required value="{h(values.get('company_name'))}" /></label>
        <label>Número de funcionários <input type="number" name="employees_quota" min="5" required value="{h(values.get('employees_quota') or 5)}" /></label>
        <label>Seu nome <input name="manager_name" required value="{h(values.get('manager_name'))}" /></label>
        <label>Email <input type="email" name="manager_email" required value="{h(values.get('manager_email'))}" /></label>
        <label>Telefone <input name="manager_phone" value="{h(values.get('manager_phone'))}" /></label>
        <label>Senha <input type="password" name="manager_password" minlength="6" required /></label>
        <button type="submit">Cadastrar</button>
      </form>
    </section>
    """
    return render_layout("Cadastro", body, req)


def render_forgot_password(req: Request, message: str = "", employee: bool = False) -> str:
    if employee:
        action, back = "/acesso/esqueci-senha", "/acesso"
        field = '<label>CPF <input name="cpf" inputmode="numeric" required placeholder="000.000.000-00" /></label>'
    else:
        action, back = "/forgot-password", "/login"
        field = '<label>Email <input type="email" name="email" required /></label>'
    body = f"""
    <section class="card auth">
      <h2>Redefinir senha</h2>
      <p>O link de redefinição é exibido aqui; compartilhe-o por um canal seguro.</p>
      {f"<div class='notice'>{h(message)}</div>" if message else ""}
      <form method="post" action="{action}">
        {field}
        <button type="submit">Gerar link</button>
      </form>
      <p><a href="{back}">Voltar</a></p>
    </section>
    """
    return render_layout("Redefinir senha", body, req)


def render_reset_password(req: Request, token: str, error: str = "", employee: bool = False) -> str:
    action = "/acesso/redefinir-senha" if employee else "/reset-password"
    limits = f'minlength="{EMPLOYEE_PASSWORD_MIN}" maxlength="{EMPLOYEE_PASSWORD_MAX}"' if employee else 'minlength="6"'
    body = f"""
    <section class="card auth">
      <h2>Nova senha</h2>
      {f"<div class='error'>{h(error)}</div>" if error else ""}
      <form method="post" action="{action}">
        <input type="hidden" name="token" value="{h(token)}" />
        <label>Nova senha <input type="password" name="password" {limits} required /></label>
        <label>Confirmar <input type="password" name="password_confirm" {limits} required /></label>
        <button type="submit">Salvar</button>
      </form>
    </section>
    """
    return render_layout("Nova senha", body, req)


def render_change_password(has_password: bool, error: str = "") -> str:
    current = (
        '<label>Senha atual <input type="password" name="current_password" required autocomplete="current-password" /></label>'
        if has_password
        else "<p>Você ainda entra só com o CPF. Crie uma senha para proteger seu acesso.</p>"
    )
    limits = f'minlength="{EMPLOYEE_PASSWORD_MIN}" maxlength="{EMPLOYEE_PASSWORD_MAX}"'
    return f"""
    <section class="card auth">
      <h2>{"Alterar senha" if has_password else "Criar senha"}</h2>
      {f"<div class='error'>{h(error)}</div>" if error else ""}
      <form method="post" action="/funcionario/senha">
        {csrf_field()}
        {current}
        <label>Nova senha <input type="password" name="new_password" {limits} required autocomplete="new-password" /></label>
        <label>Confirmar <input type="password" name="password_confirm" {limits} required autocomplete="new-password" /></label>
        <p class="muted">De {EMPLOYEE_PASSWORD_MIN} a {EMPLOYEE_PASSWORD_MAX} caracteres: letras, números e @#$%&*!_-</p>
        <button type="submit">Salvar</button>
      </form>
    </section>
    """


def progress_bar(pct: float, label: str = "") -> str:
    pct = max(0.0, min(100.0, float(pct)))
    return f"<progress class='progress' max='100' value='{pct:.1f}' aria-label='{h(label)}'>{pct:.0f}%</progress>"


def journey_block(
    view: JourneyView, threshold_ms: int, result_html: Optional[str] = None, now: Optional[dt.datetime] = None
) -> str:
    """The Journey Map panel for one evaluated state.

    ``now`` is the server time the view was evaluated at; the countdown script
    ticks from it so a skewed device clock cannot fire the release early.
    """
    state = view.state
    if state is JourneyState.NOT_STARTED:
        return f"""
        <section class="card journey" data-state="{state.value}">
          <h2>Mapa de Jornada</h2>
          <p>Você ainda não respondeu o questionário do Mapa de Jornada.</p>
          <a class="btn" href="{h(JOURNEY_FORM_URL)}" target="_blank" rel="noopener">Responder questionário</a>
        </section>
        """
    if state is JourneyState.AWAITING_RELEASE and view.countdown is not None:
        cd = view.countdown
        return f"""
        <section class="card journey" data-state="{state.value}"
                 data-release-at="{h(view.release_at.isoformat() if view.release_at else '')}"
                 data-threshold-ms="{threshold_ms}"
                 data-server-now="{h(now.isoformat() if now else '')}">
          <h2>Seu mapa está sendo processado</h2>
          <p>O resultado será liberado em:</p>
          <p class="countdown" data-countdown>
            <span data-unit="days">{cd.days}</span>d
            <span data-unit="hours">{cd.hours}</span>h
            <span data-unit="minutes">{cd.minutes}</span>m
            <span data-unit="seconds">{cd.seconds}</span>s
          </p>
          {progress_bar(cd.progress_pct, "Progresso da liberação")}
        </section>
        """
    if state is JourneyState.RESULT_PENDING:
        return f"""
        <section class="card journey" data-state="{state.value}">
          <h2>Resultado em preparação</h2>
          <p>Seu questionário foi recebido e o relatório está sendo preparado. Volte em breve.</p>
        </section>
        """
    # The report HTML comes from the trusted report generator webhook.
    return f"""
    <section class="card journey" data-state="{state.value}">
      <h2>Seu Mapa de Jornada</h2>
      <div class="journey-result">{result_html or ''}</div>
    </section>
    """


def render_employee_home(employee: Dict[str, object], view: JourneyView, videos_pct: int, workbook_done: Dict[str, object]) -> str:
    return f"""
    <section class="card">
      <h2>Olá, {h(employee['name'])}</h2>
      <div class="stats">
        <article><h3>Vídeos</h3>{progress_bar(videos_pct, "Vídeos assistidos")}<p>{videos_pct}%</p><a href="/funcionario/videos">Assistir</a></article>
        <article><h3>Caderno de Clareza</h3>{progress_bar(float(workbook_done['pct']), "Caderno")}<p>{workbook_done['answered']}/{workbook_done['total']} respostas</p><a href="/funcionario/caderno">Preencher</a></article>
        <article><h3>Mapa de Jornada</h3><p class="pill">{h(view.state.label)}</p><a href="/funcionario/mapa">Ver</a></article>
      </div>
    </section>
    """


def video_player(video: Dict[str, object]) -> str:
    youtube_id = str(video.get("youtube_id") or "")
    if youtube_id:
        return f'<iframe src="https://www.youtube.com/embed/{h(youtube_id)}" title="{h(video["title"])}" allowfullscreen></iframe>'
    # Only YouTube may be framed; anything else opens in a new tab.
    return f'<a class="btn ghost" href="{h(video.get("video_url") or "")}" target="_blank" rel="noopener">Abrir vídeo</a>'


def render_videos_page(videos: List[Dict[str, object]]) -> str:
    items = []
    for video in videos:
        watched = bool(video["is_watched"])
        items.append(
            f"""
            <article class="video" data-video-id="{int(video['id'])}">
              <h3>{h(video['title'])}</h3>
              {video_player(video)}
              <p>{h(video.get('description') or '')}</p>
              <form method="post" action="/funcionario/videos">
                {csrf_field()}
                <input type="hidden" name="video_id" value="{int(video['id'])}" />
                <input type="hidden" name="completed" value="{'0' if watched else '1'}" />
                <button type="submit" class="btn {'ghost' if watched else ''}">{'Assistido ✓' if watched else 'Marcar como assistido'}</button>
              </form>
            </article>
            """
        )
    return f"<section class='card'><h2>Vídeos</h2>{''.join(items) or '<p>Nenhum vídeo disponível.</p>'}</section>"


def render_workbook_page(responses: Dict[str, str]) -> str:
    done = workbook.completion(responses)
    sections = []
    for section, entries in workbook.fields_by_section().items():
        fields = []
        for entry in entries:
            value = responses.get(entry.key, "")
            if entry.field_type == "rating":
                control = f"<input type='number' min='{workbook.RATING_MIN}' max='{workbook.RATING_MAX}' name='{h(entry.key)}' value='{h(value)}' data-autosave />"
            else:
                control = f"<textarea name='{h(entry.key)}' rows='4' data-autosave>{h(value)}</textarea>"
            fields.append(
                f"<label class='wb-field'>{h(entry.label)} {control}<small class='save-status' data-status-for='{h(entry.key)}'></small></label>"
            )
        section_done = done["sections"][section]
        sections.append(
            f"""
            <fieldset class="wb-section" id="{h(section)}">
              <legend>{h(workbook.SECTIONS[section])} <small>{section_done['answered']}/{section_done['total']}</small></legend>
              {''.join(fields)}
            </fieldset>
            """
        )
    return f"""
    <section class="card workbook" data-autosave-url="/api/workbook/responses" data-debounce-ms="{AUTOSAVE_DEBOUNCE_MS}">
      <h2>Caderno de Clareza</h2>
      {progress_bar(float(done['pct']), "Caderno")}
      <p>As respostas são salvas automaticamente enquanto você escreve.</p>
      {''.join(sections)}
    </section>
    """


def _options(values: List[str], selected: object, blank: str = "") -> str:
    opts = [f"<option value=''>{h(blank)}</option>"] if blank else []
    for value in values:
        mark = " selected" if str(selected) == str(value) else ""
        opts.append(f"<option value='{h(value)}'{mark}>{h(value)}</option>")
    return "".join(opts)


def _department_options(departments: List[Dict[str, object]], selected: object) -> str:
    opts = ["<option value=''>Sem departamento</option>"]
    for dept in departments:
        mark = " selected" if str(selected) == str(dept["id"]) else ""
        opts.append(f"<option value='{int(dept['id'])}'{mark}>{h(dept['name'])}</option>")
    return "".join(opts)


def render_manager_dashboard(
    company,
    employees: List[Dict[str, object]],
    departments: List[Dict[str, object]],
    filters: Dict[str, str],
    seats_left: int,
) -> str:
    rows = []
    for emp in employees:
        rows.append(
            f"""
            <tr>
              <td><a href="/gestor/employees/{int(emp['id'])}">{h(emp['name'])}</a></td>
              <td>{h(emp['email'])}</td>
              <td>{h(emp.get('department_name') or '-')}</td>
              <td>{h(emp['status'])}</td>
              <td>{int(emp['videos_watched'] or 0)}</td>
              <td>{int(emp['workbook_pct'])}%</td>
              <td><span class="pill">{h(emp['journey']['label'])}</span></td>
            </tr>
            """
        )
    state_options = "".join(
        f"<option value='{s.value}'{' selected' if filters.get('journey_state') == s.value else ''}>{h(s.label)}</option>"
        for s in JourneyState
    )
    archived = filters.get("archived") == "1"
    return f"""
    <section class="card">
      <h2>{h(company['name'])}</h2>
      <p>Plano {h(company['plan'])} · status {h(company['status'])} · {seats_left} vagas disponíveis</p>
      <form method="get" action="/gestor" class="filters">
        <input name="q" value="{h(filters.get('q'))}" placeholder="Buscar nome ou email" />
        <select name="department_id">{_department_options(departments, filters.get('department_id'))}</select>
        <select name="journey_state"><option value=''>Todos os estados</option>{state_options}</select>
        <label><input type="checkbox" name="archived" value="1"{' checked' if archived else ''} /> Arquivados</label>
        <button type="submit">Filtrar</button>
      </form>
      <table>
        <thead><tr><th>Nome</th><th>Email</th><th>Departamento</th><th>Status</th><th>Vídeos</th><th>Caderno</th><th>Mapa</th></tr></thead>
        <tbody>{''.join(rows) or "<tr><td colspan='7'>Nenhum funcionário encontrado.</td></tr>"}</tbody>
      </table>
    </section>
    <section class="card">
      <h3>Novo funcionário</h3>
      <form method="post" action="/gestor/employees/new">
        {csrf_field()}
        <label>Nome <input name="name" required /></label>
        <label>Email <input type="email" name="email" required /></label>
        <label>CPF <input name="cpf" inputmode="numeric" /></label>
        <label>Nascimento <input type="date" name="birth_date" /></label>
        <label>WhatsApp <input name="whatsapp" /></label>
        <label>Departamento <select name="department_id">{_department_options(departments, '')}</select></label>
        <button type="submit"{' disabled' if seats_left <= 0 else ''}>Adicionar</button>
      </form>
    </section>
    """


def render_employee_detail(employee, progress: Dict[str, object], departments: List[Dict[str, object]], invite_link: str = "") -> str:
    emp_id = int(employee["id"])
    wb = progress["workbook"]
    journey = progress["journey"]
    archived = bool(employee["archived_at"])
    invite = f"<p class='notice'>Link de acesso (válido por tempo limitado): <code>{h(invite_link)}</code></p>" if invite_link else ""
    video_rows = "".join(
        f"<li>{h(v['title'])}: {'assistido' if v['is_watched'] else 'pendente'}</li>" for v in progress["videos"]
    )
    return f"""
    <section class="card">
      <h2>{h(employee['name'])}</h2>
      <p>{h(employee['email'])} · CPF {h(format_cpf(employee['cpf']) if employee['cpf'] else '-')}</p>
      {invite}
      <div class="stats">
        <article><h3>Vídeos</h3><p>{progress['videos_watched']}/{progress['videos_total']}</p><ul>{video_rows}</ul></article>
        <article><h3>Caderno</h3>{progress_bar(float(wb['pct']), "Caderno")}<p>{wb['answered']}/{wb['total']}</p></article>
        <article><h3>Mapa de Jornada</h3><p class="pill">{h(journey['label'])}</p></article>
      </div>
    </section>
    <section class="card">
      <h3>Editar</h3>
      <form method="post" action="/gestor/employees/{emp_id}/edit">
        {csrf_field()}
        <label>Nome <input name="name" required value="{h(employee['name'])}" /></label>
        <label>Email <input type="email" name="email" required value="{h(employee['email'])}" /></label>
        <label>CPF <input name="cpf" value="{h(employee['cpf'] or '')}" /></label>
        <label>Nascimento <input type="date" name="birth_date" value="{h(employee['birth_date'] or '')}" /></label>
        <label>WhatsApp <input name="whatsapp" value="{h(employee['whatsapp'] or '')}" /></label>
        <label>Departamento <select name="department_id">{_department_options(departments, employee['department_id'])}</select></label>
        <label>Status <select name="status">{_options(EMPLOYEE_STATUSES, employee['status'])}</select></label>
        <button type="submit">Salvar</button>
      </form>
      <div class="actions">
        <form method="post" action="/gestor/employees/{emp_id}/invite">{csrf_field()}<button type="submit">Gerar link de acesso</button></form>
        <form method="post" action="/gestor/employees/{emp_id}/{'restore' if archived else 'archive'}">{csrf_field()}<button type="submit" class="btn ghost">{'Restaurar' if archived else 'Arquivar'}</button></form>
        <form method="post" action="/gestor/employees/{emp_id}/delete">{csrf_field()}<button type="submit" class="btn danger">Excluir</button></form>
      </div>
    </section>
    """


def render_departments(departments: List[Dict[str, object]]) -> str:
    rows = []
    for dept in departments:
        dept_id = int(dept["id"])
        rows.append(
            f"""
            <tr>
              <td>
                <form method="post" action="/gestor/departamentos/{dept_id}/edit" class="inline">
                  {csrf_field()}
                  <input name="name" value="{h(dept['name'])}" required />
                  <input name="description" value="{h(dept.get('description') or '')}" />
                  <button type="submit">Salvar</button>
                </form>
              </td>
              <td>{int(dept['employee_count'] or 0)}</td>
              <td><form method="post" action="/gestor/departamentos/{dept_id}/delete">{csrf_field()}<button type="submit" class="btn danger">Remover</button></form></td>
            </tr>
            """
        )
    return f"""
    <section class="card">
      <h2>Departamentos</h2>
      <table>
        <thead><tr><th>Nome</th><th>Funcionários</th><th></th></tr></thead>
        <tbody>{''.join(rows) or "<tr><td colspan='3'>Nenhum departamento.</td></tr>"}</tbody>
      </table>
      <form method="post" action="/gestor/departamentos">
        {csrf_field()}
        <label>Nome <input name="name" required /></label>
        <label>Descrição <input name="description" /></label>
        <button type="submit">Adicionar</button>
      </form>
    </section>
    """


def render_manager_videos(videos: List[Dict[str, object]]) -> str:
    rows = []
    for video in videos:
        video_id = int(video["id"])
        watched = int(video.get("watched_by") or 0)
        if not video["editable"]:
            rows.append(
                f"""
                <tr>
                  <td>{h(video['title'])} <span class="pill">Sistema</span></td>
                  <td><a href="{h(video.get('video_url') or '')}" target="_blank" rel="noopener">Abrir</a></td>
                  <td>{watched}</td>
                  <td></td>
                </tr>
                """
            )
            continue
        active = int(video["is_active"] or 0)
        rows.append(
            f"""
            <tr>
              <td colspan="2">
                <form method="post" action="/gestor/videos/{video_id}/edit" class="inline">
                  {csrf_field()}
                  <input name="title" value="{h(video['title'])}" required />
                  <input type="url" name="video_url" value="{h(video.get('video_url') or '')}" required />
                  <input type="number" name="position" value="{int(video['position'] or 0)}" aria-label="Posição" />
                  <select name="is_active" aria-label="Situação">
                    <option value="1"{' selected' if active else ''}>Ativo</option>
                    <option value="0"{'' if active else ' selected'}>Inativo</option>
                  </select>
                  <button type="submit">Salvar</button>
                </form>
              </td>
              <td>{watched}</td>
              <td><form method="post" action="/gestor/videos/{video_id}/delete">{csrf_field()}<button type="submit" class="btn danger">Remover</button></form></td>
            </tr>
            """
        )
    return f"""
    <section class="card">
      <h2>Vídeos</h2>
      <p>Os vídeos do sistema aparecem para todas as empresas. Os vídeos adicionados aqui aparecem só para os seus funcionários.</p>
      <table>
        <thead><tr><th>Título</th><th>Link</th><th>Assistido por</th><th></th></tr></thead>
        <tbody>{''.join(rows) or "<tr><td colspan='4'>Nenhum vídeo.</td></tr>"}</tbody>
      </table>
      <form method="post" action="/gestor/videos">
        {csrf_field()}
        <label>Título <input name="title" required /></label>
        <label>URL do vídeo <input type="url" name="video_url" required placeholder="https://www.youtube.com/watch?v=..." /></label>
        <label>Descrição <input name="description" /></label>
        <label>Duração (segundos) <input type="number" name="duration_seconds" min="0" /></label>
        <button type="submit">Adicionar</button>
      </form>
    </section>
    """


def render_admin(companies: List[Dict[str, object]], filters: Dict[str, str]) -> str:
    rows = []
    for company in companies:
        cid = int(company["id"])
        rows.append(
            f"""
            <tr>
              <td>{h(company['name'])}</td>
              <td>{h(company.get('manager_email') or '-')}</td>
              <td>{int(company['employee_count'] or 0)}/{int(company['employees_quota'])}</td>
              <td>
                <form method="post" action="/admin/companies/{cid}" class="inline">
                  {csrf_field()}
                  <select name="status">{_options(COMPANY_STATUSES, company['status'])}</select>
                  <select name="plan">{_options(COMPANY_PLANS, company['plan'])}</select>
                  <input type="number" name="employees_quota" min="5" value="{int(company['employees_quota'])}" />
                  <button type="submit">Salvar</button>
                </form>
              </td>
            </tr>
            """
        )
    return f"""
    <section class="card">
      <h2>Empresas</h2>
      <form method="get" action="/admin" class="filters">
        <input name="q" value="{h(filters.get('q'))}" placeholder="Buscar empresa" />
        <select name="status">{_options(COMPANY_STATUSES, filters.get('status'), blank='Todos')}</select>
        <button type="submit">Filtrar</button>
      </form>
      <table>
        <thead><tr><th>Empresa</th><th>Gestor</th><th>Funcionários</th><th>Plano</th></tr></thead>
        <tbody>{''.join(rows) or "<tr><td colspan='4'>Nenhuma empresa.</td></tr>"}</tbody>
      </table>
    </section>
    """
