"""HTTP client for the employee portal API.

Drives the same endpoints the browser uses: CPF sign-in, the employee record
with its evaluated journey block, and per-field workbook saves. The autosave
and countdown controllers are built on top of it so a script (or a kiosk
process) can run a portal session outside the browser.
"""

from __future__ import annotations

import http.cookiejar
import json
import logging
from typing import Dict, Optional, Tuple
from urllib import error as urlerror
from urllib import request as urlrequest
from urllib.parse import urlencode

from .autosave import StatusListener, WorkbookAutosave
from .config import AUTOSAVE_DEBOUNCE_MS, COUNTDOWN_TICK_SECONDS
from .journey import CountdownMonitor, JourneyRecord, JourneyView, ReleasePolicy
from .scheduling import Clock, Scheduler, SystemClock, ThreadingScheduler

logger = logging.getLogger(__name__)


class PortalClient:
    def __init__(self, base_url: str, timeout: float = 20.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.csrf = ""
        self._cookies = http.cookiejar.CookieJar()
        self._opener = urlrequest.build_opener(urlrequest.HTTPCookieProcessor(self._cookies))

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, object]] = None,
    ) -> Tuple[Optional[Dict[str, object]], str]:
        url = f"{self.base_url}{path}"
        if params:
            url = f"{url}{'&' if '?' in url else '?'}{urlencode(params)}"
        body = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = urlrequest.Request(url, data=body, method=method.upper())
        req.add_header("Accept", "application/json")
        if payload is not None:
            req.add_header("Content-Type", "application/json")
        if self.csrf:
            req.add_header("X-CSRF-Token", self.csrf)

        try:
            with self._opener.open(req, timeout=self.timeout) as resp:
                raw = resp.read().decode("utf-8", errors="ignore")
                return (json.loads(raw) if raw else {}), ""
        except urlerror.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="ignore")[:600]
            try:
                message = str(json.loads(detail).get("error") or detail)
            except (ValueError, AttributeError):
                message = detail
            return None, f"HTTP {exc.code}: {message or exc.reason}"
        except Exception as exc:
            return None, f"Request failed: {str(exc)[:300]}"

    def login(self, cpf: str, password: str = "") -> Tuple[bool, str]:
        payload = {"cpf": cpf}
        if password:
            payload["password"] = password
        data, error = self.request("POST", "/acesso", payload=payload)
        if data is None:
            return False, error
        self.csrf = str(data.get("csrf") or "")
        return bool(data.get("ok")), str(data.get("error") or "")

    def change_password(self, new_password: str, current_password: str = "") -> Tuple[bool, str]:
        data, error = self.request(
            "POST",
            "/api/employees/change-password",
            payload={"current_password": current_password, "new_password": new_password},
        )
        if data is None:
            return False, error
        return True, ""

    def fetch_employee(self, debug: bool = False) -> Tuple[Dict[str, object], str]:
        """The signed-in employee's record, or a placeholder plus the error."""
        params = {"debug": "true"} if debug else None
        data, error = self.request("GET", "/api/employees/me", params=params)
        if data is None or not isinstance(data.get("employee"), dict):
            logger.warning("Employee record unavailable, using placeholder: %s", error or "malformed response")
            return {"journey_filled": False, "journey_filled_at": None, "journey_result_html": None}, error or "malformed response"
        return data["employee"], ""

    def load_journey(self, debug: bool = False) -> Tuple[JourneyRecord, str]:
        employee, error = self.fetch_employee(debug=debug)
        if error:
            return JourneyRecord.placeholder(), error
        return JourneyRecord.from_mapping(employee), ""

    def load_workbook(self) -> Tuple[Dict[str, str], str]:
        data, error = self.request("GET", "/api/workbook/responses")
        if data is None:
            return {}, error
        responses = data.get("responses") or {}
        return {str(k): str(v) for k, v in responses.items()}, ""

    def save_workbook_field(self, field_key: str, value: str) -> Tuple[bool, str]:
        data, error = self.request("POST", "/api/workbook/responses", payload={"field_key": field_key, "value": value})
        if data is None:
            return False, error
        if not data.get("ok"):
            return False, str(data.get("error") or "save failed")
        return True, ""

    def workbook_autosave(
        self,
        scheduler: Optional[Scheduler] = None,
        delay_ms: int = AUTOSAVE_DEBOUNCE_MS,
        on_status: Optional[StatusListener] = None,
    ) -> WorkbookAutosave:
        initial, error = self.load_workbook()
        if error:
            logger.warning("Starting workbook autosave without saved values: %s", error)
        return WorkbookAutosave(
            self.save_workbook_field,
            scheduler or ThreadingScheduler(),
            delay_ms=delay_ms,
            initial_values=initial,
            on_status=on_status,
        )

    def journey_monitor(
        self,
        on_update,
        debug: bool = False,
        clock: Optional[Clock] = None,
        scheduler: Optional[Scheduler] = None,
        override_enabled: bool = False,
        interval: float = COUNTDOWN_TICK_SECONDS,
    ) -> Tuple[CountdownMonitor, str]:
        """A started countdown monitor for the signed-in employee.

        ``override_enabled`` mirrors the deployment's debug override; the
        server applies its own policy to the journey block it returns.
        """
        record, error = self.load_journey(debug=debug)
        policy = ReleasePolicy.for_request("true" if debug else None, override_enabled=override_enabled)
        monitor = CountdownMonitor(
            record,
            clock or SystemClock(),
            scheduler or ThreadingScheduler(),
            on_update,
            policy=policy,
            interval=interval,
        )
        return monitor.start(), error


def describe_view(view: JourneyView) -> str:
    if view.countdown is not None:
        return f"{view.state.label}: {view.countdown} ({view.countdown.progress_pct:.0f}%)"
    return view.state.label
