"""Clock and timer primitives for countdown refresh and autosave debounce.

Everything that reads the wall clock or schedules a callback goes through a
``Clock`` or ``Scheduler`` so the journey and autosave logic can be driven
deterministically in tests.
"""

from __future__ import annotations

import datetime as dt
import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Clock:
    def now(self) -> dt.datetime:
        raise NotImplementedError


class SystemClock(Clock):
    """Local wall clock. No server-time reconciliation is attempted."""

    def now(self) -> dt.datetime:
        return dt.datetime.now(dt.timezone.utc)


class TimerHandle:
    def cancel(self) -> None:
        raise NotImplementedError


class Scheduler:
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        raise NotImplementedError


class _ThreadTimerHandle(TimerHandle):
    def __init__(self, timer: threading.Timer):
        self._timer = timer

    def cancel(self) -> None:
        self._timer.cancel()


class ThreadingScheduler(Scheduler):
    """Runs callbacks on daemon ``threading.Timer`` threads."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(max(0.0, delay), callback)
        timer.daemon = True
        timer.start()
        return _ThreadTimerHandle(timer)


class Ticker:
    """Recurring callback every ``interval`` seconds until cancelled.

    Each tick schedules the next one only after the callback returns, so a
    slow callback delays the following tick instead of overlapping it.
    No callback runs after ``cancel()`` returns.
    """

    def __init__(self, scheduler: Scheduler, interval: float, callback: Callable[[], None]):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._scheduler = scheduler
        self._interval = interval
        self._callback = callback
        self._handle: Optional[TimerHandle] = None
        self._active = False
        self._lock = threading.RLock()

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> "Ticker":
        with self._lock:
            if not self._active:
                self._active = True
                self._schedule()
        return self

    def cancel(self) -> None:
        with self._lock:
            self._active = False
            if self._handle is not None:
                self._handle.cancel()
                self._handle = None

    def _schedule(self) -> None:
        self._handle = self._scheduler.call_later(self._interval, self._fire)

    def _fire(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._handle = None
            try:
                self._callback()
            except Exception:
                logger.exception("Ticker callback failed")
            if self._active:
                self._schedule()

    def __enter__(self) -> "Ticker":
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.cancel()
