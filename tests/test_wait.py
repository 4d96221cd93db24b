from __future__ import annotations

import threading
import time

import pytest

from chain_archiver.wait import WaitCancelled, WaitTimeout, time_is_after, wait_until


def test_wait_until_retries_until_condition_holds() -> None:
    calls: list[int] = []

    def condition() -> bool:
        calls.append(1)
        return len(calls) == 3

    wait_until(condition, 0, 0)
    assert len(calls) == 3


def test_wait_until_stops_on_error() -> None:
    calls: list[int] = []

    def condition() -> bool:
        calls.append(1)
        raise LookupError("permanent")

    with pytest.raises(LookupError, match="permanent"):
        wait_until(condition, 0, 0)
    assert len(calls) == 1


def test_wait_until_returns_promptly_when_cancelled() -> None:
    cancel = threading.Event()
    timer = threading.Timer(0.05, cancel.set)
    timer.start()
    started = time.monotonic()
    try:
        with pytest.raises(WaitCancelled):
            wait_until(lambda: False, 0, 60, cancel)
    finally:
        timer.cancel()
    assert time.monotonic() - started < 5


def test_wait_until_checks_cancellation_before_first_attempt() -> None:
    cancel = threading.Event()
    cancel.set()
    calls: list[int] = []

    def condition() -> bool:
        calls.append(1)
        return True

    with pytest.raises(WaitCancelled):
        wait_until(condition, 0, 0, cancel)
    assert calls == []


def test_wait_until_timeout() -> None:
    with pytest.raises(WaitTimeout):
        wait_until(lambda: False, 0, 0.01, timeout=0.05)


def test_time_is_after() -> None:
    now = [100.0]
    condition = time_is_after(150, clock=lambda: now[0])
    assert condition() is False
    now[0] = 150.0
    assert condition() is False
    now[0] = 151.0
    assert condition() is True
