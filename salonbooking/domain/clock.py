"""
Injectable clocks so that "now" never comes from a hidden global.
"""

from typing import Protocol

import pendulum
from pendulum import DateTime


class Clock(Protocol):
    """Anything that can tell the current time."""

    def now(self) -> DateTime:
        """Return the current time as an aware DateTime."""


class SystemClock:
    """Wall-clock time in a fixed timezone."""

    def __init__(self, timezone: str = "UTC"):
        self.timezone = timezone

    def now(self) -> DateTime:
        return pendulum.now(self.timezone)


class FixedClock:
    """Clock frozen at a given instant. Used by tests and replays."""

    def __init__(self, instant: DateTime):
        self.instant = instant

    def now(self) -> DateTime:
        return self.instant

    def advance(self, **kwargs) -> None:
        """Move the clock forward, e.g. ``advance(minutes=10)``."""
        self.instant = self.instant.add(**kwargs)
