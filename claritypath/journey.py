"""Journey Map release gate.

An employee's behavioral report may only be shown once a fixed delay has
elapsed since the external questionnaire was submitted. The state is a pure
function of the employee record, the current time and the release policy:

    NOT_STARTED -> AWAITING_RELEASE -> RESULT_PENDING -> RESULT_READY
                                    \\-------------------> RESULT_READY

Nothing here mutates the record; transitions happen because the form
provider webhook fills the record, the report webhook adds the HTML, or the
clock advances. ``CountdownMonitor`` re-evaluates on a periodic tick and on
reload so a live countdown can be displayed.
"""

from __future__ import annotations

import datetime as dt
import enum
import logging
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from .config import (
    COUNTDOWN_TICK_SECONDS,
    JOURNEY_DEBUG_FLAG_VALUE,
    JOURNEY_DEBUG_OVERRIDE,
    JOURNEY_RELEASE_HOURS,
    clamp_tick_seconds,
)
from .scheduling import Clock, Scheduler, Ticker
from .utils import parse_rfc3339_datetime

logger = logging.getLogger(__name__)

MS_PER_DAY = 86_400_000
MS_PER_HOUR = 3_600_000
MS_PER_MINUTE = 60_000
MS_PER_SECOND = 1_000


class JourneyState(str, enum.Enum):
    NOT_STARTED = "not_started"
    AWAITING_RELEASE = "awaiting_release"
    RESULT_PENDING = "result_pending"
    RESULT_READY = "result_ready"

    @property
    def label(self) -> str:
        return STATE_LABELS[self]


STATE_LABELS = {
    JourneyState.NOT_STARTED: "Não iniciado",
    JourneyState.AWAITING_RELEASE: "Processando resultado",
    JourneyState.RESULT_PENDING: "Resultado em preparação",
    JourneyState.RESULT_READY: "Resultado disponível",
}


@dataclass(frozen=True)
class JourneyRecord:
    journey_filled: bool = False
    journey_filled_at: Optional[dt.datetime] = None
    journey_result_html: Optional[str] = None
    # Raw timestamp as stored, kept for integrity-fault logging.
    filled_at_raw: Optional[str] = None
    employee_id: Optional[int] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "JourneyRecord":
        raw = data.get("journey_filled_at")
        html = data.get("journey_result_html")
        employee_id = data.get("id")
        return cls(
            journey_filled=bool(data.get("journey_filled")),
            journey_filled_at=parse_rfc3339_datetime(raw),
            journey_result_html=str(html) if html not in (None, "") else None,
            filled_at_raw=None if raw is None else str(raw),
            employee_id=int(employee_id) if isinstance(employee_id, int) else None,
        )

    @classmethod
    def placeholder(cls) -> "JourneyRecord":
        """Safe stand-in used when the record could not be loaded."""
        return cls()


@dataclass(frozen=True)
class ReleasePolicy:
    threshold: dt.timedelta = dt.timedelta(hours=72)

    @property
    def threshold_ms(self) -> int:
        return self.threshold // dt.timedelta(milliseconds=1)

    @classmethod
    def default(cls) -> "ReleasePolicy":
        return cls(threshold=dt.timedelta(hours=JOURNEY_RELEASE_HOURS))

    @classmethod
    def immediate(cls) -> "ReleasePolicy":
        return cls(threshold=dt.timedelta(0))

    @classmethod
    def for_request(cls, debug_flag: Optional[str], override_enabled: bool = JOURNEY_DEBUG_OVERRIDE) -> "ReleasePolicy":
        """Policy for one request; the debug flag only counts when the deployment allows it."""
        if override_enabled and (debug_flag or "").strip().lower() == JOURNEY_DEBUG_FLAG_VALUE:
            return cls.immediate()
        return cls.default()


@dataclass(frozen=True)
class Countdown:
    remaining_ms: int
    days: int
    hours: int
    minutes: int
    seconds: int
    progress_pct: float

    def as_dict(self) -> dict:
        return {
            "remaining_ms": self.remaining_ms,
            "days": self.days,
            "hours": self.hours,
            "minutes": self.minutes,
            "seconds": self.seconds,
            "progress_pct": self.progress_pct,
        }

    def __str__(self) -> str:
        return f"{self.days}d {self.hours}h {self.minutes}m {self.seconds}s"


@dataclass(frozen=True)
class JourneyView:
    state: JourneyState
    countdown: Optional[Countdown] = None
    release_at: Optional[dt.datetime] = None

    def as_dict(self) -> dict:
        return {
            "state": self.state.value,
            "label": self.state.label,
            "release_at": self.release_at.isoformat() if self.release_at else None,
            "countdown": self.countdown.as_dict() if self.countdown else None,
        }


def decompose_ms(remaining_ms: int):
    """Split milliseconds into whole (days, hours, minutes, seconds)."""
    days, rest = divmod(remaining_ms, MS_PER_DAY)
    hours, rest = divmod(rest, MS_PER_HOUR)
    minutes, rest = divmod(rest, MS_PER_MINUTE)
    seconds = rest // MS_PER_SECOND
    return days, hours, minutes, seconds


def progress_percent(threshold_ms: int, remaining_ms: int) -> float:
    if threshold_ms <= 0:
        return 100.0 if remaining_ms <= 0 else 0.0
    pct = (threshold_ms - remaining_ms) / threshold_ms * 100.0
    return max(0.0, min(100.0, pct))


def release_time(record: JourneyRecord, policy: ReleasePolicy) -> Optional[dt.datetime]:
    if not record.journey_filled or record.journey_filled_at is None:
        return None
    return record.journey_filled_at + policy.threshold


def classify(record: JourneyRecord, now: dt.datetime, policy: ReleasePolicy) -> JourneyState:
    if not record.journey_filled:
        if record.filled_at_raw:
            logger.warning(
                "Journey record %s has journey_filled_at=%r but journey_filled is false",
                record.employee_id,
                record.filled_at_raw,
            )
        return JourneyState.NOT_STARTED
    release = release_time(record, policy)
    if release is None:
        logger.warning(
            "Journey record %s is filled without a usable journey_filled_at (%r); showing result as pending",
            record.employee_id,
            record.filled_at_raw,
        )
        return JourneyState.RESULT_PENDING
    if now < release:
        return JourneyState.AWAITING_RELEASE
    if record.journey_result_html is None:
        return JourneyState.RESULT_PENDING
    return JourneyState.RESULT_READY


def countdown(record: JourneyRecord, now: dt.datetime, policy: ReleasePolicy) -> Optional[Countdown]:
    release = release_time(record, policy)
    if release is None or now >= release:
        return None
    remaining_ms = (release - now) // dt.timedelta(milliseconds=1)
    days, hours, minutes, seconds = decompose_ms(remaining_ms)
    return Countdown(
        remaining_ms=remaining_ms,
        days=days,
        hours=hours,
        minutes=minutes,
        seconds=seconds,
        progress_pct=progress_percent(policy.threshold_ms, remaining_ms),
    )


def evaluate(record: JourneyRecord, now: dt.datetime, policy: Optional[ReleasePolicy] = None) -> JourneyView:
    policy = policy or ReleasePolicy.default()
    state = classify(record, now, policy)
    if state is JourneyState.AWAITING_RELEASE:
        return JourneyView(state=state, countdown=countdown(record, now, policy), release_at=release_time(record, policy))
    return JourneyView(state=state, release_at=release_time(record, policy))


class CountdownMonitor:
    """Keeps a ``JourneyView`` current while a result is awaiting release.

    ``start()`` evaluates once and, while the state is ``AWAITING_RELEASE``,
    re-evaluates on every tick. The tick stops by itself once the state moves
    on, and ``close()`` cancels it for good.
    """

    def __init__(
        self,
        record: JourneyRecord,
        clock: Clock,
        scheduler: Scheduler,
        on_update: Callable[[JourneyView], None],
        policy: Optional[ReleasePolicy] = None,
        interval: float = COUNTDOWN_TICK_SECONDS,
    ):
        self._record = record
        self._clock = clock
        self._policy = policy or ReleasePolicy.default()
        self._on_update = on_update
        self._ticker = Ticker(scheduler, clamp_tick_seconds(interval), self._tick)
        self._closed = False
        self.view: Optional[JourneyView] = None

    @property
    def ticking(self) -> bool:
        return self._ticker.active

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> "CountdownMonitor":
        self._refresh()
        return self

    def reload(self, record: JourneyRecord) -> JourneyView:
        """Swap in a freshly fetched record and re-evaluate immediately."""
        self._record = record
        return self._refresh()

    def close(self) -> None:
        self._closed = True
        self._ticker.cancel()

    def _tick(self) -> None:
        self._refresh()

    def _refresh(self) -> JourneyView:
        view = evaluate(self._record, self._clock.now(), self._policy)
        self.view = view
        if self._closed:
            return view
        self._on_update(view)
        if view.state is JourneyState.AWAITING_RELEASE:
            self._ticker.start()
        else:
            self._ticker.cancel()
        return view

    def __enter__(self) -> "CountdownMonitor":
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.close()
