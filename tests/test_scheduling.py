import datetime as dt
import threading

import pytest

from claritypath.scheduling import SystemClock, ThreadingScheduler, Ticker


def test_system_clock_is_aware_utc():
    now = SystemClock().now()
    assert now.tzinfo is not None
    assert now.utcoffset() == dt.timedelta(0)


def test_ticker_fires_every_interval(scheduler):
    ticks = []
    ticker = Ticker(scheduler, 1.0, lambda: ticks.append(scheduler.elapsed)).start()
    scheduler.advance(3.5)
    assert ticks == [1.0, 2.0, 3.0]
    ticker.cancel()
    scheduler.advance(3)
    assert len(ticks) == 3
    assert scheduler.pending == 0


def test_ticker_cancel_from_callback(scheduler):
    ticks = []

    def on_tick():
        ticks.append(1)
        if len(ticks) == 2:
            ticker.cancel()

    ticker = Ticker(scheduler, 1.0, on_tick).start()
    scheduler.advance(10)
    assert len(ticks) == 2
    assert not ticker.active


def test_ticker_survives_callback_errors(scheduler, caplog):
    calls = []

    def flaky():
        calls.append(1)
        raise RuntimeError("boom")

    with Ticker(scheduler, 1.0, flaky):
        scheduler.advance(2)
    assert len(calls) == 2
    assert "Ticker callback failed" in caplog.text
    assert scheduler.pending == 0


def test_ticker_rejects_non_positive_interval(scheduler):
    with pytest.raises(ValueError):
        Ticker(scheduler, 0, lambda: None)


def test_start_is_idempotent(scheduler):
    ticker = Ticker(scheduler, 1.0, lambda: None)
    ticker.start()
    ticker.start()
    assert scheduler.pending == 1
    ticker.cancel()


def test_threading_scheduler_runs_and_cancels():
    fired = threading.Event()
    cancelled = threading.Event()
    scheduler = ThreadingScheduler()
    scheduler.call_later(0.01, fired.set)
    handle = scheduler.call_later(0.2, cancelled.set)
    handle.cancel()
    assert fired.wait(2)
    assert not cancelled.wait(0.4)
