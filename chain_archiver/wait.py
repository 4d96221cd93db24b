"""Cancellable polling used wherever the archiver waits on something external.

A condition is a zero-argument callable. Returning ``True`` ends the wait,
returning ``False`` schedules another attempt after the poll interval, and
raising ends the wait with that exception. Conditions that want a failure to
be retried must therefore catch it themselves and return ``False``.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

Condition = Callable[[], bool]


class WaitCancelled(RuntimeError):
    """Raised when the cancellation event is set while waiting."""


class WaitTimeout(RuntimeError):
    """Raised when a wait exceeds its deadline."""


def wait_until(
    condition: Condition,
    initial_delay: float,
    interval: float,
    cancel: threading.Event | None = None,
    timeout: float | None = None,
) -> None:
    """Evaluate ``condition`` until it returns ``True``.

    Parameters
    ----------
    condition:
        Callable evaluated on every attempt.
    initial_delay:
        Seconds to wait before the first attempt.
    interval:
        Seconds to wait between attempts.
    cancel:
        Optional event; once set, the wait stops at the next suspension point
        and :class:`WaitCancelled` is raised.
    timeout:
        Optional overall deadline in seconds, raising :class:`WaitTimeout`.
    """

    cancel = cancel or threading.Event()
    deadline = None if timeout is None else time.monotonic() + timeout

    def _sleep(seconds: float) -> None:
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise WaitTimeout(f"condition not met within {timeout} seconds")
            seconds = min(seconds, remaining)
        if cancel.wait(seconds):
            raise WaitCancelled("wait cancelled")

    _sleep(initial_delay)
    while True:
        if cancel.is_set():
            raise WaitCancelled("wait cancelled")
        if condition():
            return
        _sleep(interval)


def time_is_after(target_ts: int, clock: Callable[[], float] = time.time) -> Condition:
    """Return a condition that holds once the wall clock passes ``target_ts``."""

    def _condition() -> bool:
        return clock() > target_ts

    return _condition


__all__ = ["Condition", "WaitCancelled", "WaitTimeout", "time_is_after", "wait_until"]
