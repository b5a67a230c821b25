import datetime as dt
import logging

import pytest

from claritypath.config import clamp_tick_seconds
from claritypath.journey import (
    CountdownMonitor,
    JourneyRecord,
    JourneyState,
    ReleasePolicy,
    decompose_ms,
    evaluate,
    progress_percent,
)

T = dt.datetime(2026, 3, 2, 12, 0, 0, tzinfo=dt.timezone.utc)
H72 = ReleasePolicy(threshold=dt.timedelta(hours=72))


def filled(at=T, html=None):
    return JourneyRecord(journey_filled=True, journey_filled_at=at, journey_result_html=html, filled_at_raw=at.isoformat() if at else None)


def test_decompose_exact_units():
    assert decompose_ms(90_061_000) == (1, 1, 1, 1)
    assert decompose_ms(0) == (0, 0, 0, 0)
    assert decompose_ms(999) == (0, 0, 0, 0)
    assert decompose_ms(86_399_999) == (0, 23, 59, 59)


@pytest.mark.parametrize("remaining_ms", [1_000, 59_999, 3_600_000, 90_061_000, 259_199_000])
def test_countdown_units_recompose_to_whole_seconds(remaining_ms):
    now = T + H72.threshold - dt.timedelta(milliseconds=remaining_ms)
    view = evaluate(filled(), now, H72)
    assert view.state is JourneyState.AWAITING_RELEASE
    cd = view.countdown
    assert cd.remaining_ms == remaining_ms
    assert 0 <= cd.hours < 24 and 0 <= cd.minutes < 60 and 0 <= cd.seconds < 60
    recomposed = ((cd.days * 24 + cd.hours) * 60 + cd.minutes) * 60 + cd.seconds
    assert recomposed == remaining_ms // 1000


def test_one_second_before_release():
    view = evaluate(filled(), T + dt.timedelta(hours=71, minutes=59, seconds=59), H72)
    assert view.state is JourneyState.AWAITING_RELEASE
    assert (view.countdown.days, view.countdown.hours, view.countdown.minutes, view.countdown.seconds) == (0, 0, 0, 1)
    assert str(view.countdown) == "0d 0h 0m 1s"


def test_release_instant_without_report_is_pending():
    view = evaluate(filled(), T + dt.timedelta(hours=72), H72)
    assert view.state is JourneyState.RESULT_PENDING
    assert view.countdown is None


def test_release_instant_with_report_is_ready():
    view = evaluate(filled(html="<p>ok</p>"), T + dt.timedelta(hours=72), H72)
    assert view.state is JourneyState.RESULT_READY
    assert view.countdown is None


def test_report_before_release_still_waits():
    view = evaluate(filled(html="<p>ok</p>"), T + dt.timedelta(hours=1), H72)
    assert view.state is JourneyState.AWAITING_RELEASE


@pytest.mark.parametrize(
    "record",
    [
        JourneyRecord(),
        JourneyRecord(journey_filled=False, journey_filled_at=T, journey_result_html="<p>x</p>", filled_at_raw=T.isoformat()),
        JourneyRecord(journey_filled=False, journey_result_html="<p>x</p>"),
    ],
)
def test_not_filled_is_always_not_started(record):
    for now in (T - dt.timedelta(days=1), T, T + dt.timedelta(days=10)):
        view = evaluate(record, now, H72)
        assert view.state is JourneyState.NOT_STARTED
        assert view.countdown is None


def test_filled_without_timestamp_degrades_to_pending(caplog):
    record = JourneyRecord.from_mapping({"id": 7, "journey_filled": 1, "journey_filled_at": "not a date"})
    with caplog.at_level(logging.WARNING, logger="claritypath.journey"):
        view = evaluate(record, T, H72)
    assert view.state is JourneyState.RESULT_PENDING
    assert "usable journey_filled_at" in caplog.text


def test_progress_monotonic_from_zero_to_hundred():
    record = filled()
    release = T + H72.threshold
    assert evaluate(record, T, H72).countdown.progress_pct == 0.0
    previous = -1.0
    now = T
    while now < release:
        pct = evaluate(record, now, H72).countdown.progress_pct
        assert pct >= previous
        previous = pct
        now += dt.timedelta(hours=3, minutes=7)
    assert progress_percent(H72.threshold_ms, 0) == 100.0


def test_progress_is_clamped():
    assert progress_percent(1000, 5000) == 0.0
    assert progress_percent(1000, -5) == 100.0
    assert progress_percent(0, 0) == 100.0


def test_debug_override_releases_immediately():
    policy = ReleasePolicy.for_request("true", override_enabled=True)
    assert policy.threshold_ms == 0
    assert evaluate(filled(), T, policy).state is JourneyState.RESULT_PENDING
    assert evaluate(filled(html="<p>ok</p>"), T + dt.timedelta(milliseconds=1), policy).state is JourneyState.RESULT_READY


def test_debug_flag_ignored_when_override_disabled():
    policy = ReleasePolicy.for_request("true", override_enabled=False)
    assert policy == ReleasePolicy.default()
    assert ReleasePolicy.for_request("yes", override_enabled=True) == ReleasePolicy.default()


def test_from_mapping_parses_zulu_timestamps():
    record = JourneyRecord.from_mapping(
        {"id": 3, "journey_filled": True, "journey_filled_at": "2026-03-02T12:00:00.000Z", "journey_result_html": ""}
    )
    assert record.journey_filled_at == T
    assert record.journey_result_html is None
    assert record.employee_id == 3


def test_view_as_dict_shape():
    data = evaluate(filled(), T + dt.timedelta(hours=1), H72).as_dict()
    assert data["state"] == "awaiting_release"
    assert data["release_at"] == (T + dt.timedelta(hours=72)).isoformat()
    assert data["countdown"]["hours"] == 23 and data["countdown"]["days"] == 2


class TestCountdownMonitor:
    def test_ticks_until_release_then_stops(self, clock, scheduler):
        clock.current = T + dt.timedelta(hours=71, minutes=59, seconds=57)
        updates = []
        monitor = CountdownMonitor(filled(), clock, scheduler, updates.append, policy=H72, interval=1).start()
        assert monitor.ticking
        assert updates[-1].countdown.seconds == 3

        scheduler.advance(2)
        assert updates[-1].state is JourneyState.AWAITING_RELEASE
        assert updates[-1].countdown.seconds == 1

        scheduler.advance(1)
        assert updates[-1].state is JourneyState.RESULT_PENDING
        assert not monitor.ticking
        assert scheduler.pending == 0

        count = len(updates)
        scheduler.advance(10)
        assert len(updates) == count

    def test_close_cancels_tick(self, clock, scheduler):
        updates = []
        monitor = CountdownMonitor(filled(), clock, scheduler, updates.append, policy=H72).start()
        monitor.close()
        assert monitor.closed and not monitor.ticking
        assert scheduler.pending == 0
        count = len(updates)
        scheduler.advance(5)
        assert len(updates) == count

    def test_not_started_never_ticks(self, clock, scheduler):
        updates = []
        with CountdownMonitor(JourneyRecord(), clock, scheduler, updates.append, policy=H72) as monitor:
            assert not monitor.ticking
            assert updates[0].state is JourneyState.NOT_STARTED
        assert scheduler.pending == 0

    def test_reload_picks_up_report(self, clock, scheduler):
        clock.current = T + dt.timedelta(hours=80)
        updates = []
        monitor = CountdownMonitor(filled(), clock, scheduler, updates.append, policy=H72).start()
        assert monitor.view.state is JourneyState.RESULT_PENDING
        view = monitor.reload(filled(html="<p>ok</p>"))
        assert view.state is JourneyState.RESULT_READY
        assert updates[-1] is view

    def test_reload_into_awaiting_starts_ticking(self, clock, scheduler):
        updates = []
        monitor = CountdownMonitor(JourneyRecord(), clock, scheduler, updates.append, policy=H72).start()
        assert not monitor.ticking
        monitor.reload(filled(at=clock.now()))
        assert monitor.ticking
        scheduler.advance(1)
        assert updates[-1].countdown.remaining_ms == H72.threshold_ms - 1000
        monitor.close()

    def test_slow_interval_is_clamped_to_one_second(self, clock, scheduler):
        clock.current = T + dt.timedelta(hours=71, minutes=59, seconds=50)
        updates = []
        monitor = CountdownMonitor(filled(), clock, scheduler, updates.append, policy=H72, interval=5).start()
        assert updates[-1].countdown.seconds == 10
        scheduler.advance(1)
        assert updates[-1].countdown.seconds == 9
        monitor.close()


@pytest.mark.parametrize("raw, expected", [("5", 1.0), ("1", 1.0), ("0.25", 0.25), ("0", 0.1), (30, 1.0)])
def test_clamp_tick_seconds(raw, expected):
    assert clamp_tick_seconds(raw) == expected
