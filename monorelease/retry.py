"""Retry and polling schedules.

Both are small bounded state machines over an injectable ``Clock``, so
tests can drive them with a simulated clock instead of sleeping.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Protocol, TypeVar

from .config import RetryConfig, VisibilityConfig
from .errors import RegistryError

T = TypeVar("T")


class Clock(Protocol):
    def monotonic(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall clock backed by ``time``."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class Backoff:
    """Exponential backoff between attempts of one operation.

    Attributes:
        attempt: Failed attempts so far.
    """

    def __init__(self, config: RetryConfig) -> None:
        self.config = config
        self.attempt = 0
        self._delay = config.initial_delay

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.config.max_attempts

    def record_failure(self) -> float | None:
        """Register a failed attempt.

        Returns:
            Seconds to wait before the next attempt, or None once all
            attempts are used up.
        """
        self.attempt += 1
        if self.exhausted:
            return None
        delay = min(self._delay, self.config.max_delay)
        self._delay *= self.config.multiplier
        return delay


class VisibilityWait:
    """Growing poll intervals bounded by a total wait.

    The first poll happens immediately. Each following interval grows by
    ``multiplier`` up to ``max_interval``, and the last one is shortened so
    that the total wait never exceeds ``max_wait``.
    """

    def __init__(self, config: VisibilityConfig) -> None:
        self.config = config
        self.polls = 0
        self.waited = 0.0
        self._interval = config.initial_interval

    def next_interval(self, elapsed: float | None = None) -> float | None:
        """Seconds to wait before the next poll, None once time is up.

        Args:
            elapsed: Time spent so far, including time spent polling.
                     Defaults to the sum of the intervals handed out.
        """
        spent = self.waited if elapsed is None else elapsed
        remaining = self.config.max_wait - spent
        if remaining <= 0:
            return None
        interval = min(self._interval, self.config.max_interval, remaining)
        self._interval *= self.config.multiplier
        self.waited += interval
        return interval


def call_with_retry(
    func: Callable[[], T],
    config: RetryConfig,
    clock: Clock,
    label: str,
) -> T:
    """Call ``func``, retrying ``RegistryError`` with exponential backoff.

    Raises:
        RegistryError: The last error once every attempt failed.
    """
    backoff = Backoff(config)
    while True:
        try:
            return func()
        except RegistryError as e:
            delay = backoff.record_failure()
            if delay is None:
                raise
            attempt = f"{backoff.attempt}/{config.max_attempts}"
            print(f"    {label} failed (attempt {attempt}): {e}")
            print(f"    retrying in {delay:g}s")
            clock.sleep(delay)


def wait_until(
    predicate: Callable[[], bool],
    config: VisibilityConfig,
    clock: Clock,
) -> bool:
    """Poll ``predicate`` until it returns True or ``max_wait`` elapses.

    Time spent inside ``predicate`` counts toward ``max_wait``.

    Returns:
        True if the predicate held before the deadline.
    """
    wait = VisibilityWait(config)
    started = clock.monotonic()
    while True:
        wait.polls += 1
        if predicate():
            return True
        interval = wait.next_interval(clock.monotonic() - started)
        if interval is None:
            return False
        clock.sleep(interval)
