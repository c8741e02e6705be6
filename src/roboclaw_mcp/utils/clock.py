"""Injectable time source shared by the simulator and the sampler.

Experiments sleep between samples and the simulator integrates over real
elapsed time. Both take a ``Clock`` so tests can drive them with a manual
clock whose ``sleep`` simply advances ``monotonic``.

Example:
    class ManualClock:
        def __init__(self) -> None:
            self.now = 0.0

        def monotonic(self) -> float:
            return self.now

        def sleep(self, seconds: float) -> None:
            self.now += max(0.0, seconds)

    clock = ManualClock()
    sim = SimulationContext(clock=clock)
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable

__all__ = ["Clock", "SystemClock"]


@runtime_checkable
class Clock(Protocol):  # pragma: no cover
    """Protocol for time functions (injectable for testing)."""

    def monotonic(self) -> float:
        """Return monotonic time in seconds.

        Returns:
            Seconds from an arbitrary origin. Only differences are meaningful.
        """
        ...

    def sleep(self, seconds: float) -> None:
        """Block for the given number of seconds.

        Args:
            seconds: Duration to sleep. Zero or negative returns immediately.
        """
        ...


class SystemClock:
    """Clock backed by ``time.monotonic`` and ``time.sleep``."""

    def monotonic(self) -> float:
        """Return ``time.monotonic()``."""
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        """Sleep via ``time.sleep``; non-positive durations return at once."""
        if seconds > 0:
            time.sleep(seconds)
