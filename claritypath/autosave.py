"""Debounced per-field autosave for the clarity workbook.

Each field key owns a ``FieldAutosave``: its current value, at most one
pending save timer and a status. Editing a field updates the value at once,
cancels that field's pending timer and schedules a new one; when the quiet
period elapses the value captured at schedule time is persisted. Fields never
share timers, so edits to one key cannot delay or cancel another.

Saves already running are never interrupted. A failed save marks the field
as ``error`` and is not retried; the next edit schedules a fresh attempt.
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import Callable, Dict, Optional, Tuple

from .config import AUTOSAVE_DEBOUNCE_MS
from .scheduling import Scheduler, TimerHandle
from .workbook import lookup_field

logger = logging.getLogger(__name__)

# Persist callables return (ok, error_message), like the portal client does.
PersistFn = Callable[[str, str], Tuple[bool, str]]
StatusListener = Callable[[str, "SaveStatus", str], None]


class SaveStatus(str, enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


class FieldAutosave:
    def __init__(
        self,
        field_key: str,
        persist: PersistFn,
        scheduler: Scheduler,
        delay_ms: int = AUTOSAVE_DEBOUNCE_MS,
        initial_value: str = "",
        on_status: Optional[StatusListener] = None,
    ):
        self.field_key = field_key
        self._persist = persist
        self._scheduler = scheduler
        self._delay = delay_ms / 1000.0
        self._value = initial_value
        self._on_status = on_status
        self._handle: Optional[TimerHandle] = None
        self._generation = 0
        self._lock = threading.Lock()
        self.status = SaveStatus.IDLE
        self.last_error = ""
        self.saved_value: Optional[str] = None

    @property
    def value(self) -> str:
        return self._value

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def edit(self, value: str) -> None:
        with self._lock:
            self._value = value
            if self._handle is not None:
                self._handle.cancel()
            self._generation += 1
            generation = self._generation
            self._handle = self._scheduler.call_later(self._delay, lambda: self._fire(generation, value))
        self._set_status(SaveStatus.PENDING)

    def flush(self) -> bool:
        """Persist a pending edit right away. Returns False when nothing was pending."""
        with self._lock:
            if self._handle is None:
                return False
            self._handle.cancel()
            self._handle = None
            value = self._value
        self._save(value)
        return True

    def cancel(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
                self._handle = None
        if self.status is SaveStatus.PENDING:
            self._set_status(SaveStatus.IDLE)

    def _fire(self, generation: int, value: str) -> None:
        with self._lock:
            # A newer edit replaced this timer after it had already started firing.
            if generation != self._generation or self._handle is None:
                return
            self._handle = None
        self._save(value)

    def _save(self, value: str) -> None:
        self._set_status(SaveStatus.SAVING)
        try:
            ok, error = self._persist(self.field_key, value)
        except Exception as exc:
            logger.exception("Autosave of %s raised", self.field_key)
            ok, error = False, str(exc)[:300] or exc.__class__.__name__
        if ok:
            self.saved_value = value
            self.last_error = ""
            if self._handle is None:
                self._set_status(SaveStatus.SAVED)
            return
        self.last_error = error or "save failed"
        logger.warning("Autosave of %s failed: %s", self.field_key, self.last_error)
        # A newer edit is already queued; its save decides the final status.
        self._set_status(SaveStatus.PENDING if self._handle is not None else SaveStatus.ERROR)

    def _set_status(self, status: SaveStatus) -> None:
        self.status = status
        if self._on_status is not None:
            self._on_status(self.field_key, status, self.last_error if status is SaveStatus.ERROR else "")


class WorkbookAutosave:
    """Owns one ``FieldAutosave`` per workbook field key."""

    def __init__(
        self,
        persist: PersistFn,
        scheduler: Scheduler,
        delay_ms: int = AUTOSAVE_DEBOUNCE_MS,
        initial_values: Optional[Dict[str, str]] = None,
        on_status: Optional[StatusListener] = None,
    ):
        self._persist = persist
        self._scheduler = scheduler
        self._delay_ms = delay_ms
        self._initial = dict(initial_values or {})
        self._on_status = on_status
        self._fields: Dict[str, FieldAutosave] = {}
        self._lock = threading.Lock()
        self._closed = False

    def field(self, field_key: str) -> FieldAutosave:
        lookup_field(field_key)
        with self._lock:
            saver = self._fields.get(field_key)
            if saver is None:
                saver = FieldAutosave(
                    field_key,
                    self._persist,
                    self._scheduler,
                    delay_ms=self._delay_ms,
                    initial_value=self._initial.get(field_key, ""),
                    on_status=self._on_status,
                )
                self._fields[field_key] = saver
            return saver

    def edit(self, field_key: str, value: str) -> None:
        if self._closed:
            raise RuntimeError("workbook autosave is closed")
        self.field(field_key).edit(value)

    def values(self) -> Dict[str, str]:
        merged = dict(self._initial)
        merged.update({key: saver.value for key, saver in self._fields.items()})
        return merged

    def statuses(self) -> Dict[str, SaveStatus]:
        return {key: saver.status for key, saver in self._fields.items()}

    def errors(self) -> Dict[str, str]:
        return {key: saver.last_error for key, saver in self._fields.items() if saver.status is SaveStatus.ERROR}

    def flush(self) -> int:
        return sum(1 for saver in list(self._fields.values()) if saver.flush())

    def close(self, flush: bool = True) -> None:
        """Tear down: optionally save pending edits, then cancel every timer."""
        if flush:
            self.flush()
        for saver in list(self._fields.values()):
            saver.cancel()
        self._closed = True
