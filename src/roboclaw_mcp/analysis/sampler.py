"""Fixed-interval sampling loop.

Experiments call a function every ``interval_ms`` for ``duration_ms``. The
loop sleeps until the next scheduled instant rather than for a fixed
amount, so a slow callback does not make the schedule drift; missed
instants are not replayed.

Example:
    sampler = Sampler(interval_ms=10, duration_ms=2000)
    speeds = sampler.run(lambda t_ms: driver.read_speed(1))
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from roboclaw_mcp.errors import LogicalError
from roboclaw_mcp.utils.clock import Clock, SystemClock

__all__ = ["ExperimentSample", "Sampler"]

T = TypeVar("T")

# Slack for floating point when comparing elapsed time with the duration.
_EPSILON_MS = 1e-6


@dataclass(frozen=True)
class ExperimentSample:
    """One point of an experiment time series.

    Attributes:
        t_ms: Milliseconds since the experiment started.
        vel: Measured speed in counts/s.
        cmd: Command applied at that instant (PWM counts for duty
            experiments).
    """

    t_ms: float
    vel: float
    cmd: float

    def to_dict(self) -> dict[str, Any]:
        return {"t_ms": self.t_ms, "vel": self.vel, "cmd": self.cmd}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExperimentSample:
        return cls(t_ms=float(data["t_ms"]), vel=float(data["vel"]), cmd=float(data["cmd"]))


class Sampler:
    """Call a function at fixed intervals for a bounded duration.

    The first call happens immediately at t=0; the last at the final
    scheduled instant not later than ``duration_ms``.
    """

    def __init__(
        self,
        interval_ms: float,
        duration_ms: float,
        clock: Clock | None = None,
    ) -> None:
        """Create a sampler.

        Args:
            interval_ms: Spacing between calls, must be positive.
            duration_ms: Total sampling window, must be non-negative.
            clock: Time source; defaults to the system clock.

        Raises:
            LogicalError: Non-positive interval or negative duration.
        """
        if interval_ms <= 0:
            raise LogicalError(f"Sample interval must be positive, got {interval_ms}")
        if duration_ms < 0:
            raise LogicalError(f"Duration must be non-negative, got {duration_ms}")
        self.interval_ms = float(interval_ms)
        self.duration_ms = float(duration_ms)
        self._clock: Clock = clock or SystemClock()

    def run(self, callback: Callable[[float], T]) -> list[T]:
        """Run the loop.

        Args:
            callback: Called with the elapsed milliseconds; its return value
                is collected. Exceptions propagate and end the run.

        Returns:
            Callback results in time order.
        """
        results: list[T] = []
        start = self._clock.monotonic()
        k = 0
        while True:
            scheduled = start + k * self.interval_ms / 1000.0
            self._clock.sleep(scheduled - self._clock.monotonic())
            elapsed_ms = (self._clock.monotonic() - start) * 1000.0
            if elapsed_ms > self.duration_ms + _EPSILON_MS:
                break
            results.append(callback(elapsed_ms))
            # Skip instants already missed by a slow callback.
            k = max(k + 1, int(elapsed_ms // self.interval_ms) + 1)
        return results
