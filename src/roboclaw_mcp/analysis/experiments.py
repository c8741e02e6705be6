"""Identification experiments run through the motor driver.

Both experiments drive the motor with signed duty (PWM) so the identified
gain is in counts/s per PWM count, and always return the motor to PWM 0.

- ``run_step_response``: hold 0, step to ``pwm_step`` after a delay.
- ``run_frequency_response``: sinusoidal duty around 0 at log-spaced
  frequencies; gain and phase by single-bin quadrature correlation.

With ``allow_simulation_fallback`` an experiment whose first drive command
fails with ``TransportError`` on hardware is rerun against the digital
twin. The result says so in ``backend`` and ``fallback_reason``.

Example:
    driver = MotorDriver.from_runtime(get_runtime())
    result = run_step_response(driver, motor=1, pwm_step=16000)
    estimate = estimate_step_response(result.samples)
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from roboclaw_mcp.analysis.sampler import ExperimentSample, Sampler
from roboclaw_mcp.drivers.motors.types import PWM_MAX, check_motor
from roboclaw_mcp.errors import EstimationError, LogicalError, TransportError
from roboclaw_mcp.observability import LogContext, get_logger

if TYPE_CHECKING:
    from roboclaw_mcp.devices.controller import MotorDriver

__all__ = [
    "FrequencyPoint",
    "FrequencyResponseResult",
    "StepResponseResult",
    "nyquist_hz",
    "run_frequency_response",
    "run_step_response",
]

logger = get_logger(__name__)


@dataclass(frozen=True)
class FrequencyPoint:
    """Measured response at one frequency.

    Attributes:
        freq_hz: Excitation frequency.
        gain: |velocity| / |command| in counts/s per PWM count.
        phase_deg: Phase of velocity relative to command, degrees.
    """

    freq_hz: float
    gain: float
    phase_deg: float

    def to_dict(self) -> dict[str, float]:
        return {"freq_hz": self.freq_hz, "gain": self.gain, "phase_deg": self.phase_deg}


@dataclass
class StepResponseResult:
    """Samples of a step experiment and where they came from."""

    motor: int
    pwm_step: int
    samples: list[ExperimentSample] = field(default_factory=list)
    backend: str = ""
    fallback_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "motor": self.motor,
            "pwm_step": self.pwm_step,
            "samples": [s.to_dict() for s in self.samples],
            "backend": self.backend,
            "fallback_reason": self.fallback_reason,
        }


@dataclass
class FrequencyResponseResult:
    """Points and raw samples of a frequency sweep."""

    motor: int
    amplitude_cmd: int
    points: list[FrequencyPoint] = field(default_factory=list)
    samples: list[ExperimentSample] = field(default_factory=list)
    skipped_hz: list[float] = field(default_factory=list)
    backend: str = ""
    fallback_reason: str | None = None

    def to_dict(self, include_samples: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "motor": self.motor,
            "amplitude_cmd": self.amplitude_cmd,
            "points": [p.to_dict() for p in self.points],
            "skipped_hz": list(self.skipped_hz),
            "backend": self.backend,
            "fallback_reason": self.fallback_reason,
        }
        if include_samples:
            data["samples"] = [s.to_dict() for s in self.samples]
        return data


def nyquist_hz(sample_interval_ms: float) -> float:
    """Highest frequency resolvable at the given sample interval."""
    return 500.0 / sample_interval_ms


def _clamp_pwm(value: float) -> int:
    return max(-PWM_MAX, min(PWM_MAX, int(round(value))))


def _start(
    driver: MotorDriver,
    motor: int,
    allow_simulation_fallback: bool,
) -> tuple[MotorDriver, str | None]:
    """Issue the initial stop command, falling back to the twin if allowed.

    Returns:
        The driver to run the experiment on and the fallback reason.
    """
    try:
        driver.drive_pwm(motor, 0)
        return driver, None
    except TransportError as e:
        fallback = driver.simulation_fallback() if allow_simulation_fallback else None
        if fallback is None or driver.is_simulated:
            raise
        logger.warning(
            "Hardware unavailable, running experiment on simulation",
            motor=motor,
            error=str(e),
        )
        fallback.drive_pwm(motor, 0)
        return fallback, str(e)


# =============================================================================
# Step response
# =============================================================================


def run_step_response(
    driver: MotorDriver,
    motor: int,
    pwm_step: int,
    duration_ms: float = 2000.0,
    sample_interval_ms: float = 10.0,
    apply_delay_ms: float = 200.0,
    allow_simulation_fallback: bool = False,
) -> StepResponseResult:
    """Record the speed response to a PWM step.

    PWM 0 is applied immediately, the step at ``apply_delay_ms``, and PWM 0
    again once ``duration_ms`` has elapsed or a read fails.

    Args:
        driver: Motor driver.
        motor: Motor index, 1 or 2.
        pwm_step: Duty after the step, clamped to +/-32767.
        duration_ms: Total recording time.
        sample_interval_ms: Spacing of speed reads.
        apply_delay_ms: Time of the step from the start.
        allow_simulation_fallback: Rerun on the twin if hardware fails.

    Returns:
        StepResponseResult with one sample per interval; ``cmd`` is the PWM
        in force at that sample.

    Raises:
        LogicalError: Bad motor index or timing arguments.
        TransportError, ProtocolError: From the backend.
    """
    check_motor(motor)
    if apply_delay_ms < 0 or apply_delay_ms >= duration_ms:
        raise LogicalError(
            f"apply_delay_ms must be in [0, duration_ms), got {apply_delay_ms}"
        )
    step = _clamp_pwm(pwm_step)
    sampler = Sampler(sample_interval_ms, duration_ms, clock=driver.clock)

    with LogContext(experiment="step", motor=motor):
        active, reason = _start(driver.pinned(), motor, allow_simulation_fallback)
        applied = 0

        def sample(t_ms: float) -> ExperimentSample:
            nonlocal applied
            cmd = step if t_ms >= apply_delay_ms else 0
            if cmd != applied:
                active.drive_pwm(motor, cmd)
                applied = cmd
            return ExperimentSample(t_ms=t_ms, vel=float(active.read_speed(motor)), cmd=cmd)

        try:
            samples = sampler.run(sample)
        finally:
            active.drive_pwm(motor, 0)

        logger.info(
            "Step response recorded",
            samples=len(samples),
            pwm_step=step,
            backend=active.backend_name,
        )

    return StepResponseResult(
        motor=motor,
        pwm_step=step,
        samples=samples,
        backend=active.backend_name,
        fallback_reason=reason,
    )


# =============================================================================
# Frequency response
# =============================================================================


def _correlate(
    t_ms: np.ndarray, vel: np.ndarray, cmd: np.ndarray, freq_hz: float
) -> FrequencyPoint:
    """Gain and phase of velocity against command at one frequency."""
    phasor = np.exp(-2j * np.pi * freq_hz * t_ms / 1000.0)
    y = np.sum((vel - vel.mean()) * phasor)
    u = np.sum((cmd - cmd.mean()) * phasor)
    if abs(u) == 0.0:
        raise EstimationError(f"No excitation at {freq_hz:.4g} Hz")
    h = y / u
    return FrequencyPoint(
        freq_hz=float(freq_hz),
        gain=float(abs(h)),
        phase_deg=float(np.rad2deg(np.angle(h))),
    )


def run_frequency_response(
    driver: MotorDriver,
    motor: int,
    start_hz: float = 0.2,
    end_hz: float = 10.0,
    points: int = 10,
    amplitude_cmd: int = 8000,
    cycles: int = 3,
    sample_interval_ms: float = 10.0,
    allow_simulation_fallback: bool = False,
) -> FrequencyResponseResult:
    """Measure gain and phase with a sinusoidal PWM sweep around 0.

    Each frequency is driven for ``cycles`` periods. When more than one
    cycle is recorded the first is treated as settling and left out of
    the correlation. Frequencies above ``500 / sample_interval_ms`` Hz are
    skipped with a warning.

    Args:
        driver: Motor driver.
        motor: Motor index, 1 or 2.
        start_hz: Lowest frequency.
        end_hz: Highest frequency.
        points: Number of log-spaced frequencies.
        amplitude_cmd: Sinusoid amplitude in PWM counts.
        cycles: Periods recorded per frequency.
        sample_interval_ms: Spacing of speed reads.
        allow_simulation_fallback: Rerun on the twin if hardware fails.

    Returns:
        FrequencyResponseResult with one point per measured frequency and
        all samples on a continuous time axis.

    Raises:
        LogicalError: Bad motor index or sweep arguments.
        EstimationError: Every frequency is above the Nyquist limit.
        TransportError, ProtocolError: From the backend.
    """
    check_motor(motor)
    if start_hz <= 0 or end_hz < start_hz:
        raise LogicalError(f"Invalid sweep range {start_hz}..{end_hz} Hz")
    if points < 1 or cycles < 1:
        raise LogicalError("points and cycles must be at least 1")
    amplitude = _clamp_pwm(abs(amplitude_cmd))
    if amplitude == 0:
        raise LogicalError("amplitude_cmd must be non-zero")

    limit = nyquist_hz(sample_interval_ms)
    freqs = [float(f) for f in np.geomspace(start_hz, end_hz, points)]
    usable = [f for f in freqs if f <= limit]
    skipped = [f for f in freqs if f > limit]
    if skipped:
        logger.warning(
            "Skipping frequencies above Nyquist limit",
            limit_hz=limit,
            skipped=[round(f, 4) for f in skipped],
        )
    if not usable:
        raise EstimationError(
            f"All frequencies exceed the Nyquist limit of {limit:.4g} Hz"
        )

    result = FrequencyResponseResult(
        motor=motor, amplitude_cmd=amplitude, skipped_hz=skipped
    )

    with LogContext(experiment="frf", motor=motor):
        active, reason = _start(driver.pinned(), motor, allow_simulation_fallback)
        offset_ms = 0.0
        try:
            for freq in usable:
                period_ms = 1000.0 / freq
                samples = _run_sine(
                    active, motor, freq, amplitude, cycles * period_ms, sample_interval_ms
                )
                settled = [s for s in samples if cycles == 1 or s.t_ms >= period_ms]
                result.points.append(
                    _correlate(
                        np.array([s.t_ms for s in settled]),
                        np.array([s.vel for s in settled]),
                        np.array([s.cmd for s in settled]),
                        freq,
                    )
                )
                result.samples.extend(
                    ExperimentSample(t_ms=s.t_ms + offset_ms, vel=s.vel, cmd=s.cmd)
                    for s in samples
                )
                offset_ms += cycles * period_ms + sample_interval_ms
                logger.debug("Sweep point", point=result.points[-1].to_dict())
        finally:
            active.drive_pwm(motor, 0)

        logger.info(
            "Frequency response recorded",
            points=len(result.points),
            backend=active.backend_name,
        )

    result.backend = active.backend_name
    result.fallback_reason = reason
    return result


def _run_sine(
    driver: MotorDriver,
    motor: int,
    freq_hz: float,
    amplitude: int,
    duration_ms: float,
    sample_interval_ms: float,
) -> list[ExperimentSample]:
    sampler = Sampler(sample_interval_ms, duration_ms, clock=driver.clock)
    omega = 2.0 * math.pi * freq_hz / 1000.0

    def sample(t_ms: float) -> ExperimentSample:
        cmd = _clamp_pwm(amplitude * math.sin(omega * t_ms))
        driver.drive_pwm(motor, cmd)
        return ExperimentSample(t_ms=t_ms, vel=float(driver.read_speed(motor)), cmd=cmd)

    return sampler.run(sample)
