"""Motor controller type definitions and the backend protocol.

Types shared by the hardware and simulated backends. Kept in their own
module so both implementations and the analysis layer can import them
without circular imports.

Types defined here:
- VelocityPid / PositionPid: PID parameter sets in 16.16 fixed point
- ControllerStatus: decoded Read All Status reply
- MotorCurrents / PwmReadback: two-channel readings
- MotorBackend: Protocol implemented by HardwareBackend and SimulatedBackend

Example:
    from roboclaw_mcp.drivers.motors.types import VelocityPid, to_fixed

    pid = VelocityPid(p=to_fixed(1.5), i=to_fixed(0.25), d=0, qpps=4000)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Protocol, runtime_checkable

from roboclaw_mcp.errors import LogicalError

__all__ = [
    "FIXED_POINT_SCALE",
    "MOTORS",
    "PWM_MAX",
    "ControllerStatus",
    "MotorBackend",
    "MotorCurrents",
    "PositionPid",
    "PwmReadback",
    "VelocityPid",
    "check_motor",
    "from_fixed",
    "to_fixed",
]

#: 16.16 fixed point scale used for PID gains on the wire.
FIXED_POINT_SCALE = 65536

#: Full-scale signed duty.
PWM_MAX = 32767

#: Valid motor indices.
MOTORS = (1, 2)


def to_fixed(value: float) -> int:
    """Convert a gain to 16.16 fixed point, ``round(value * 65536)``."""
    return int(round(value * FIXED_POINT_SCALE))


def from_fixed(raw: int) -> float:
    """Convert a 16.16 fixed point integer back to a float gain."""
    return raw / FIXED_POINT_SCALE


def check_motor(motor: int) -> int:
    """Validate a motor index.

    Raises:
        LogicalError: If ``motor`` is not 1 or 2.
    """
    if motor not in MOTORS:
        raise LogicalError(f"Motor index must be 1 or 2, got {motor}")
    return motor


@dataclass(frozen=True)
class VelocityPid:
    """Velocity PID parameters.

    Attributes:
        p: Proportional gain, 16.16 fixed point.
        i: Integral gain, 16.16 fixed point.
        d: Derivative gain, 16.16 fixed point.
        qpps: Encoder speed at full duty (quadrature pulses per second).
    """

    p: int = 0
    i: int = 0
    d: int = 0
    qpps: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Raw fields plus float gains."""
        return {
            **asdict(self),
            "kp": from_fixed(self.p),
            "ki": from_fixed(self.i),
            "kd": from_fixed(self.d),
        }


@dataclass(frozen=True)
class PositionPid:
    """Position PID parameters.

    Attributes:
        p: Proportional gain, 16.16 fixed point.
        i: Integral gain, 16.16 fixed point.
        d: Derivative gain, 16.16 fixed point.
        max_i: Integrator windup limit.
        deadzone: Encoder counts treated as on target.
        min: Minimum position limit.
        max: Maximum position limit.
    """

    p: int = 0
    i: int = 0
    d: int = 0
    max_i: int = 0
    deadzone: int = 0
    min: int = 0
    max: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Raw fields plus float gains."""
        return {
            **asdict(self),
            "kp": from_fixed(self.p),
            "ki": from_fixed(self.i),
            "kd": from_fixed(self.d),
        }


@dataclass(frozen=True)
class MotorCurrents:
    """Motor currents in controller units (10 mA per count on hardware)."""

    m1: int
    m2: int


@dataclass(frozen=True)
class PwmReadback:
    """Signed duty currently applied to each motor."""

    m1: int
    m2: int


@dataclass(frozen=True)
class ControllerStatus:
    """Decoded Read All Status (command 73) reply."""

    tick: int
    error: int
    temp1: int
    temp2: int
    main_battery: int
    logic_battery: int
    m1_pwm: int
    m2_pwm: int
    m1_current: int
    m2_current: int
    m1_encoder: int
    m2_encoder: int
    m1_speed: int
    m2_speed: int
    m1_instant_speed: int
    m2_instant_speed: int
    m1_speed_error: int
    m2_speed_error: int
    m1_position_error: int
    m2_position_error: int

    def encoder(self, motor: int) -> int:
        """Encoder count of ``motor`` (1 or 2)."""
        return self.m1_encoder if check_motor(motor) == 1 else self.m2_encoder

    def to_dict(self) -> dict[str, int]:
        """All fields as a dict."""
        return asdict(self)


@runtime_checkable
class MotorBackend(Protocol):  # pragma: no cover
    """Capability interface shared by the hardware and simulated backends.

    Motor arguments are 1 or 2; anything else raises ``LogicalError``.
    Write operations raise on failure and return nothing.
    """

    @property
    def name(self) -> str:
        """Backend name, "hardware" or "simulated"."""
        ...

    def drive(self, motor: int, speed: int) -> None:
        """Open-loop speed command, 0 full reverse, 64 stop, 127 full forward.

        Args:
            motor: Motor index.
            speed: Command byte, clamped to [0, 127].
        """
        ...

    def drive_pwm(self, motor: int, pwm: int) -> None:
        """Signed duty command, clamped to [-32767, 32767]."""
        ...

    def read_speed(self, motor: int) -> int:
        """Signed encoder speed in counts per second."""
        ...

    def read_currents(self) -> MotorCurrents:
        """Current draw of both motors."""
        ...

    def read_pwm(self) -> PwmReadback:
        """Duty applied to both motors."""
        ...

    def reset_encoder(self) -> None:
        """Zero both encoder counters."""
        ...

    def read_velocity_pid(self, motor: int) -> VelocityPid:
        """Stored velocity PID of ``motor``."""
        ...

    def write_velocity_pid(self, motor: int, pid: VelocityPid) -> None:
        """Store a velocity PID for ``motor``."""
        ...

    def read_position_pid(self, motor: int) -> PositionPid:
        """Stored position PID of ``motor``."""
        ...

    def write_position_pid(self, motor: int, pid: PositionPid) -> None:
        """Store a position PID for ``motor``."""
        ...

    def read_all_status(self) -> ControllerStatus:
        """Full controller status snapshot."""
        ...
