"""Motor driver facade.

``MotorDriver`` is what experiments and tools talk to. Every call first
asks its backend provider for the active backend, so a runtime switch
between hardware and the digital twin takes effect on the next call.

Key Components:
- MotorDriver: Backend-agnostic facade plus QPPS measurement
- QppsMeasurement: Result of ``measure_qpps``

Example:
    runtime = get_runtime()
    driver = MotorDriver.from_runtime(runtime)

    driver.drive_pwm(1, 16000)
    print(driver.read_speed(1))

    result = driver.measure_qpps(1)
    print(f"QPPS: {result.qpps}")
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from roboclaw_mcp.analysis.sampler import Sampler
from roboclaw_mcp.drivers.motors.types import (
    PWM_MAX,
    ControllerStatus,
    MotorBackend,
    MotorCurrents,
    PositionPid,
    PwmReadback,
    VelocityPid,
    check_motor,
)
from roboclaw_mcp.errors import EstimationError, LogicalError
from roboclaw_mcp.observability import get_logger
from roboclaw_mcp.utils.clock import Clock, SystemClock

if TYPE_CHECKING:
    from roboclaw_mcp.drivers.config import MotorRuntime

__all__ = ["MIN_QPPS_DURATION_MS", "MotorDriver", "QppsMeasurement"]

logger = get_logger(__name__)

MIN_QPPS_DURATION_MS = 200
DEFAULT_QPPS_DURATION_MS = 1000
DEFAULT_QPPS_INTERVAL_MS = 100

_U32_SPAN = 1 << 32


@dataclass
class QppsMeasurement:
    """Measured full-duty encoder speed.

    Attributes:
        qpps: Median speed magnitude in counts/s, rounded.
        samples: Per-interval speeds in counts/s, signed.
        interval_ms: Nominal spacing of encoder reads.
        backend: Backend the measurement ran against.
    """

    qpps: int
    samples: list[float] = field(default_factory=list)
    interval_ms: float = DEFAULT_QPPS_INTERVAL_MS
    backend: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "qpps": self.qpps,
            "samples": list(self.samples),
            "interval_ms": self.interval_ms,
            "backend": self.backend,
        }


def encoder_delta(previous: int, current: int) -> int:
    """Signed difference of two 32-bit encoder readings across wraparound.

    Example:
        >>> encoder_delta(0xFFFFFFF0, 0x10)
        32
    """
    delta = (current - previous) % _U32_SPAN
    if delta >= _U32_SPAN // 2:
        delta -= _U32_SPAN
    return delta


class MotorDriver:
    """Backend-agnostic motor driver.

    Thread-safe to the extent of its backends: every operation is one
    locked exchange or state touch.
    """

    def __init__(
        self,
        backend: Callable[[], MotorBackend] | MotorBackend,
        clock: Clock | None = None,
        fallback: Callable[[], MotorBackend] | None = None,
        simulated: Callable[[], bool] | None = None,
    ) -> None:
        """Create a driver.

        Args:
            backend: Backend, or a callable returning the active backend.
            clock: Time source for sleeps between samples.
            fallback: Provider of the simulated backend used by experiments
                that allow falling back when hardware cannot be driven.
            simulated: Returns True while the simulated backend is selected.
        """
        if isinstance(backend, MotorBackend):
            fixed = backend
            self._provider: Callable[[], MotorBackend] = lambda: fixed
        else:
            self._provider = backend
        self._clock: Clock = clock or SystemClock()
        self._fallback = fallback
        self._simulated = simulated

    @classmethod
    def from_runtime(cls, runtime: MotorRuntime) -> MotorDriver:
        """Driver that follows the runtime's backend flag."""
        return cls(
            runtime.backend,
            clock=runtime.simulation.clock,
            fallback=lambda: runtime.simulated_backend,
            simulated=lambda: runtime.selector.simulated,
        )

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def backend(self) -> MotorBackend:
        """Currently selected backend."""
        return self._provider()

    @property
    def backend_name(self) -> str:
        return self.backend.name

    @property
    def is_simulated(self) -> bool:
        if self._simulated is not None:
            return self._simulated()
        return self.backend.name == "simulated"

    def simulation_fallback(self) -> MotorDriver | None:
        """Driver bound to the simulated backend, if one is available."""
        if self._fallback is None:
            return None
        return MotorDriver(self._fallback(), clock=self._clock)

    def pinned(self) -> MotorDriver:
        """Driver bound to the backend selected right now.

        Experiments use this so a mode switch mid-run cannot mix samples
        from two backends.
        """
        return MotorDriver(self.backend, clock=self._clock, fallback=self._fallback)

    # =========================================================================
    # Backend pass-through
    # =========================================================================

    def drive(self, motor: int, speed: int) -> None:
        self.backend.drive(check_motor(motor), speed)

    def drive_pwm(self, motor: int, pwm: int) -> None:
        self.backend.drive_pwm(check_motor(motor), pwm)

    def read_speed(self, motor: int) -> int:
        return self.backend.read_speed(check_motor(motor))

    def read_currents(self) -> MotorCurrents:
        return self.backend.read_currents()

    def read_pwm(self) -> PwmReadback:
        return self.backend.read_pwm()

    def reset_encoder(self) -> None:
        self.backend.reset_encoder()

    def read_velocity_pid(self, motor: int) -> VelocityPid:
        return self.backend.read_velocity_pid(check_motor(motor))

    def write_velocity_pid(self, motor: int, pid: VelocityPid) -> None:
        self.backend.write_velocity_pid(check_motor(motor), pid)

    def read_position_pid(self, motor: int) -> PositionPid:
        return self.backend.read_position_pid(check_motor(motor))

    def write_position_pid(self, motor: int, pid: PositionPid) -> None:
        self.backend.write_position_pid(check_motor(motor), pid)

    def read_all_status(self) -> ControllerStatus:
        return self.backend.read_all_status()

    # =========================================================================
    # QPPS measurement
    # =========================================================================

    def measure_qpps(
        self,
        motor: int,
        duration_ms: float = DEFAULT_QPPS_DURATION_MS,
        interval_ms: float = DEFAULT_QPPS_INTERVAL_MS,
    ) -> QppsMeasurement:
        """Measure encoder speed at full duty.

        Drives ``motor`` at PWM 32767, reads the encoder through Read All
        Status every ``interval_ms`` and reports the median per-interval
        speed. The motor is returned to PWM 0 even if a read fails.

        Args:
            motor: Motor index, 1 or 2.
            duration_ms: Measurement window, at least 200 ms.
            interval_ms: Spacing of encoder reads.

        Returns:
            QppsMeasurement with the median magnitude and raw speeds.

        Raises:
            LogicalError: Bad motor index, window under 200 ms or
                non-positive interval.
            EstimationError: Fewer than 2 encoder samples were taken.
            TransportError, ProtocolError: Propagated from the backend.

        Example:
            >>> result = driver.measure_qpps(1, duration_ms=1000)
            >>> driver.write_velocity_pid(1, VelocityPid(qpps=result.qpps))
        """
        check_motor(motor)
        if duration_ms < MIN_QPPS_DURATION_MS:
            raise LogicalError(
                f"QPPS measurement needs at least {MIN_QPPS_DURATION_MS} ms, "
                f"got {duration_ms}"
            )

        sampler = Sampler(interval_ms, duration_ms, clock=self._clock)
        backend = self.backend

        backend.drive_pwm(motor, PWM_MAX)
        try:
            readings = sampler.run(
                lambda t_ms: (t_ms, backend.read_all_status().encoder(motor))
            )
        finally:
            backend.drive_pwm(motor, 0)

        if len(readings) < 2:
            raise EstimationError(
                f"QPPS measurement needs at least 2 encoder samples, got {len(readings)}"
            )

        speeds: list[float] = []
        for (t0, e0), (t1, e1) in zip(readings, readings[1:], strict=False):
            dt_s = (t1 - t0) / 1000.0
            if dt_s > 0:
                speeds.append(encoder_delta(e0, e1) / dt_s)
        if not speeds:
            raise EstimationError("Encoder samples share a timestamp")

        qpps = int(round(abs(float(np.median(speeds)))))
        if qpps == 0:
            logger.warning(
                "QPPS measured as zero; encoder did not advance between samples",
                motor=motor,
                interval_ms=interval_ms,
                backend=backend.name,
            )
        logger.info(
            "QPPS measured",
            motor=motor,
            qpps=qpps,
            samples=len(speeds),
            backend=backend.name,
        )
        return QppsMeasurement(
            qpps=qpps, samples=speeds, interval_ms=float(interval_ms), backend=backend.name
        )
