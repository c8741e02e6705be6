"""Digital twin of the dual-channel motor controller.

Simulates each motor as a first-order lag plant driven either directly by
a signed duty (PWM mode) or by an internal velocity PID that mirrors the
controller firmware (open-loop speed mode). Encoders integrate velocity.

Plant model per motor::

    tau * dv/dt = gain * u - v        u in [-1, 1]

Integration happens lazily: every simulated operation first advances the
state by the real time elapsed since the previous call, clamped to 200 ms
and split into 10 ms sub-steps.

Example:
    sim = SimulationContext()
    backend = SimulatedBackend(sim)

    sim.set_plant_params(1, tau=0.1, gain=100.0)
    backend.drive_pwm(1, 16000)
    time.sleep(1.0)
    print(backend.read_speed(1))  # ~49 counts/s

Testing:
    Inject a clock whose ``sleep`` advances ``monotonic`` to make runs
    deterministic:

    clock = ManualClock()
    sim = SimulationContext(clock=clock)
"""

from __future__ import annotations

import math
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from roboclaw_mcp.drivers.motors.types import (
    PWM_MAX,
    ControllerStatus,
    MotorCurrents,
    PositionPid,
    PwmReadback,
    VelocityPid,
    check_motor,
    from_fixed,
)
from roboclaw_mcp.errors import LogicalError
from roboclaw_mcp.observability import get_logger
from roboclaw_mcp.utils.clock import Clock, SystemClock
from roboclaw_mcp.utils.locks import DEFAULT_LOCK_TIMEOUT_S, hold

logger = get_logger(__name__)

__all__ = [
    "MotorSimState",
    "SimulatedBackend",
    "SimulationContext",
    "SimulationState",
]

# Integration limits
MAX_STEP_S = 0.2
MIN_STEP_S = 1e-6
SUB_STEP_S = 0.01

# Plant defaults
DEFAULT_TAU_S = 0.1
DEFAULT_GAIN = 100.0
STOP_SPEED_BYTE = 64

# Synthesised status values
CURRENT_PER_COUNT = 15.0
NOMINAL_TEMPERATURE = 250  # 25.0 C in tenths
NOMINAL_MAIN_BATTERY = 120  # 12.0 V in tenths
NOMINAL_LOGIC_BATTERY = 50  # 5.0 V in tenths

_U32 = 0xFFFFFFFF
_U16 = 0xFFFF


@dataclass
class MotorSimState:
    """Simulated state of one motor channel.

    Attributes:
        speed_byte: Last open-loop command, 64 = stop.
        pwm: Last signed duty command.
        pwm_mode: True after a duty command, False after an open-loop one.
        velocity: Current velocity in counts/s.
        encoder: Cumulative encoder count, wrapped to 32 bits.
        velocity_pid: Stored velocity PID (drives open-loop mode).
        position_pid: Stored position PID (stored only).
        integrator: Velocity PID integrator.
        last_error: Velocity PID error from the previous sub-step.
        tau_s: Plant time constant in seconds.
        gain: Plant velocity at full command, counts/s.
    """

    speed_byte: int = STOP_SPEED_BYTE
    pwm: int = 0
    pwm_mode: bool = False
    velocity: float = 0.0
    encoder: int = 0
    velocity_pid: VelocityPid = field(
        default_factory=lambda: VelocityPid(qpps=int(DEFAULT_GAIN))
    )
    position_pid: PositionPid = field(default_factory=PositionPid)
    integrator: float = 0.0
    last_error: float = 0.0
    tau_s: float = DEFAULT_TAU_S
    gain: float = DEFAULT_GAIN

    def stop(self) -> None:
        """Return to the stopped open-loop state."""
        self.speed_byte = STOP_SPEED_BYTE
        self.pwm = 0
        self.pwm_mode = False
        self.velocity = 0.0
        self.integrator = 0.0
        self.last_error = 0.0

    def command(self, sub_dt: float) -> float:
        """Actuator command in [-1, 1] for the next sub-step.

        PWM mode scales the duty. Open-loop mode runs the velocity PID
        against the setpoint implied by the speed byte; with QPPS 0 or all
        gains zero the setpoint ratio is applied directly.
        """
        if self.pwm_mode:
            return _clamp(self.pwm / PWM_MAX, -1.0, 1.0)

        ratio = (self.speed_byte - STOP_SPEED_BYTE) / 63.0
        pid = self.velocity_pid
        if pid.qpps <= 0 or (pid.p == 0 and pid.i == 0 and pid.d == 0):
            return _clamp(ratio, -1.0, 1.0)

        setpoint = ratio * pid.qpps
        error = setpoint - self.velocity
        self.integrator += error * sub_dt
        derivative = (error - self.last_error) / sub_dt
        self.last_error = error
        output = (
            from_fixed(pid.p) * error
            + from_fixed(pid.i) * self.integrator
            + from_fixed(pid.d) * derivative
        )
        return _clamp(output / pid.qpps, -1.0, 1.0)

    def advance(self, dt: float) -> None:
        """Integrate the plant over ``dt`` seconds in 10 ms sub-steps."""
        steps = max(1, math.ceil(dt / SUB_STEP_S))
        sub_dt = dt / steps
        for _ in range(steps):
            target = self.gain * self.command(sub_dt)
            self.velocity += (sub_dt / self.tau_s) * (target - self.velocity)
            # Per-sub-step truncation loses fractional counts at low speed.
            self.encoder = (self.encoder + int(self.velocity * sub_dt)) & _U32

    def pwm_readback(self) -> int:
        """Duty as the firmware would report it."""
        if self.pwm_mode:
            return self.pwm
        if self.gain == 0:
            return 0
        return int(_clamp(self.velocity / self.gain * PWM_MAX, -PWM_MAX, PWM_MAX))

    def current(self) -> int:
        return int(abs(self.velocity) * CURRENT_PER_COUNT)


@dataclass
class SimulationState:
    """State of both simulated motors plus the integration timestamp."""

    motors: dict[int, MotorSimState] = field(
        default_factory=lambda: {1: MotorSimState(), 2: MotorSimState()}
    )
    last_update: float | None = None

    def motor(self, index: int) -> MotorSimState:
        """State of motor ``index`` (1 or 2)."""
        return self.motors[check_motor(index)]


class SimulationContext:
    """Process-wide simulation state behind an exclusive lock.

    Thread Safety:
        ``session()`` holds the lock for one state touch and integrates
        before yielding. Never held across a sleep.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        lock_timeout_s: float = DEFAULT_LOCK_TIMEOUT_S,
    ) -> None:
        """Create a fresh simulation.

        Args:
            clock: Time source; defaults to the system monotonic clock.
            lock_timeout_s: Seconds to wait for the state lock.
        """
        self._clock: Clock = clock or SystemClock()
        self._state = SimulationState()
        self._lock = threading.Lock()
        self._lock_timeout_s = lock_timeout_s

    @property
    def clock(self) -> Clock:
        """Time source used for integration."""
        return self._clock

    @contextmanager
    def session(self, advance: bool = True) -> Iterator[SimulationState]:
        """Lock the state, optionally integrate, and yield it.

        Args:
            advance: Integrate elapsed time before yielding.

        Raises:
            ConcurrencyError: State lock not acquired in time.
        """
        with hold(self._lock, self._lock_timeout_s, "simulation"):
            if advance:
                self._step_locked()
            yield self._state

    def step(self) -> None:
        """Integrate the plant up to the current clock time."""
        with self.session():
            pass

    def _step_locked(self) -> None:
        now = self._clock.monotonic()
        last = self._state.last_update
        self._state.last_update = now
        if last is None:
            return
        dt = min(max(now - last, 0.0), MAX_STEP_S)
        if dt <= MIN_STEP_S:
            return
        for motor in self._state.motors.values():
            motor.advance(dt)

    def set_plant_params(self, motor: int, tau: float, gain: float) -> None:
        """Set the plant time constant and gain of one motor.

        Args:
            motor: Motor index, 1 or 2.
            tau: Time constant in seconds, must be positive.
            gain: Velocity at full command in counts/s.

        Raises:
            LogicalError: Bad motor index, non-positive or non-finite tau,
                non-finite gain.
        """
        check_motor(motor)
        if not math.isfinite(tau) or tau <= 0:
            raise LogicalError(f"Time constant must be positive, got {tau}")
        if not math.isfinite(gain):
            raise LogicalError(f"Gain must be finite, got {gain}")
        with self.session(advance=False) as state:
            sim = state.motor(motor)
            sim.tau_s = float(tau)
            sim.gain = float(gain)
        logger.info("Simulation plant updated", motor=motor, tau_s=tau, gain=gain)

    def plant_params(self, motor: int) -> dict[str, float]:
        """Current time constant and gain of one motor."""
        with self.session(advance=False) as state:
            sim = state.motor(motor)
            return {"tau_s": sim.tau_s, "gain": sim.gain}

    def reset(self) -> None:
        """Discard all state, as if the process had just started."""
        with self.session(advance=False):
            self._state = SimulationState()


class SimulatedBackend:
    """``MotorBackend`` implementation backed by a ``SimulationContext``.

    Never touches the serial transport.
    """

    name = "simulated"

    def __init__(self, context: SimulationContext) -> None:
        self._context = context

    @property
    def context(self) -> SimulationContext:
        """Shared simulation state this backend reads and writes."""
        return self._context

    def drive(self, motor: int, speed: int) -> None:
        """Set the speed byte and switch the motor to velocity mode.

        Args:
            motor: Motor index, 1 or 2.
            speed: Speed byte, clamped to [0, 127]; 64 is stop.

        Raises:
            LogicalError: Bad motor index.
        """
        check_motor(motor)
        with self._context.session() as state:
            sim = state.motor(motor)
            sim.speed_byte = max(0, min(127, int(speed)))
            sim.pwm_mode = False

    def drive_pwm(self, motor: int, pwm: int) -> None:
        """Apply a signed duty, clamped to [-32767, 32767], in open loop."""
        check_motor(motor)
        with self._context.session() as state:
            sim = state.motor(motor)
            sim.pwm = max(-PWM_MAX, min(PWM_MAX, int(pwm)))
            sim.pwm_mode = True

    def read_speed(self, motor: int) -> int:
        """Plant velocity in counts/s, rounded to the nearest integer."""
        check_motor(motor)
        with self._context.session() as state:
            return int(round(state.motor(motor).velocity))

    def read_currents(self) -> MotorCurrents:
        """Currents proportional to the absolute plant velocity."""
        with self._context.session() as state:
            return MotorCurrents(m1=state.motor(1).current(), m2=state.motor(2).current())

    def read_pwm(self) -> PwmReadback:
        """Duty implied by each motor's velocity relative to its gain."""
        with self._context.session() as state:
            return PwmReadback(
                m1=state.motor(1).pwm_readback(), m2=state.motor(2).pwm_readback()
            )

    def reset_encoder(self) -> None:
        """Zero both encoders and stop both motors."""
        with self._context.session() as state:
            for sim in state.motors.values():
                sim.encoder = 0
                sim.stop()
        logger.info("Simulated encoders reset")

    def read_velocity_pid(self, motor: int) -> VelocityPid:
        """Stored velocity PID; reading does not advance the simulation."""
        check_motor(motor)
        with self._context.session(advance=False) as state:
            return state.motor(motor).velocity_pid

    def write_velocity_pid(self, motor: int, pid: VelocityPid) -> None:
        """Store the velocity PID and clear the controller's integrator.

        Args:
            motor: Motor index, 1 or 2.
            pid: New gains. Zero QPPS or all-zero gains make velocity
                mode apply the speed byte ratio directly.

        Raises:
            LogicalError: Bad motor index.
        """
        check_motor(motor)
        with self._context.session(advance=False) as state:
            sim = state.motor(motor)
            sim.velocity_pid = pid
            sim.integrator = 0.0
            sim.last_error = 0.0
        logger.info("Simulated velocity PID written", motor=motor, p=pid.p, i=pid.i)

    def read_position_pid(self, motor: int) -> PositionPid:
        """Stored position PID."""
        check_motor(motor)
        with self._context.session(advance=False) as state:
            return state.motor(motor).position_pid

    def write_position_pid(self, motor: int, pid: PositionPid) -> None:
        """Store the position PID; the twin runs no position loop."""
        check_motor(motor)
        with self._context.session(advance=False) as state:
            state.motor(motor).position_pid = pid

    def read_all_status(self) -> ControllerStatus:
        """Status snapshot synthesised from the simulation state."""
        with self._context.session() as state:
            m1, m2 = state.motor(1), state.motor(2)
            tick = int((state.last_update or 0.0) * 1000) & _U32
            return ControllerStatus(
                tick=tick,
                error=0,
                temp1=NOMINAL_TEMPERATURE,
                temp2=NOMINAL_TEMPERATURE,
                main_battery=NOMINAL_MAIN_BATTERY,
                logic_battery=NOMINAL_LOGIC_BATTERY,
                m1_pwm=m1.pwm_readback(),
                m2_pwm=m2.pwm_readback(),
                m1_current=min(m1.current(), _U16),
                m2_current=min(m2.current(), _U16),
                m1_encoder=m1.encoder,
                m2_encoder=m2.encoder,
                m1_speed=int(round(m1.velocity)),
                m2_speed=int(round(m2.velocity)),
                m1_instant_speed=int(round(m1.velocity)),
                m2_instant_speed=int(round(m2.velocity)),
                m1_speed_error=0,
                m2_speed_error=0,
                m1_position_error=0,
                m2_position_error=0,
            )


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
