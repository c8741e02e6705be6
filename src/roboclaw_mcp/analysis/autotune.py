"""Velocity PID autotuning by Internal Model Control.

Pipeline: experiment -> first-order estimate -> IMC gains -> optional
write-back. For a plant ``K / (1 + s*tau)`` and closed-loop time constant
``lambda``, IMC gives a PI controller with

    Kc = tau / (K_eff * lambda),   Ti = tau,   Kd = 0

where ``K_eff = K * 32767 / QPPS`` expresses the plant gain in the
controller's normalised units.

Example:
    driver = MotorDriver.from_runtime(get_runtime())
    result = autotune_velocity_step(driver, motor=1, apply_result=True)
    print(result.suggested.to_dict(), result.applied)
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from roboclaw_mcp.analysis.estimators import (
    FrfFit,
    StepEstimate,
    estimate_step_response,
    fit_frequency_response,
)
from roboclaw_mcp.analysis.experiments import (
    run_frequency_response,
    run_step_response,
)
from roboclaw_mcp.drivers.motors.types import PWM_MAX, VelocityPid, check_motor, to_fixed
from roboclaw_mcp.errors import EstimationError, LogicalError, RoboclawError, TransportError
from roboclaw_mcp.observability import LogContext, get_logger

if TYPE_CHECKING:
    from roboclaw_mcp.devices.controller import MotorDriver

__all__ = [
    "AutotuneResult",
    "ImcGains",
    "autotune_velocity_frf",
    "autotune_velocity_step",
    "synthesize_imc_gains",
]

logger = get_logger(__name__)

LAMBDA_SCALE_MIN = 0.05
LAMBDA_SCALE_MAX = 5.0
DEFAULT_LAMBDA_SCALE = 0.5
MIN_PLANT_GAIN = 1e-9


@dataclass(frozen=True)
class ImcGains:
    """PI gains from IMC synthesis.

    Attributes:
        kc: Proportional gain.
        ti: Integral time in seconds.
        kd: Derivative gain (always 0).
        k_eff: Plant gain normalised by full duty and QPPS.
        lambda_s: Closed-loop time constant used.
        p: ``kc`` in 16.16 fixed point.
        i: ``kc / ti`` in 16.16 fixed point.
        d: ``kd`` in 16.16 fixed point.
    """

    kc: float
    ti: float
    kd: float
    k_eff: float
    lambda_s: float
    p: int
    i: int
    d: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "kc": self.kc,
            "ti": self.ti,
            "kd": self.kd,
            "k_eff": self.k_eff,
            "lambda_s": self.lambda_s,
            "p": self.p,
            "i": self.i,
            "d": self.d,
        }


@dataclass
class AutotuneResult:
    """Outcome of one autotune run.

    Attributes:
        method: "step" or "frf".
        motor: Motor index.
        estimate: Plant estimate (StepEstimate or FrfFit).
        gains: Synthesised IMC gains.
        previous: Velocity PID stored before tuning.
        suggested: Velocity PID built from ``gains`` with QPPS preserved.
        applied: True if ``suggested`` was written to the controller.
        apply_error: Why the write failed, if it was attempted and failed.
        backend: Backend the experiment ran on.
        fallback_reason: Set when the experiment fell back to simulation.
        sample_count: Samples recorded by the experiment.
    """

    method: str
    motor: int
    estimate: StepEstimate | FrfFit
    gains: ImcGains
    previous: VelocityPid
    suggested: VelocityPid
    applied: bool = False
    apply_error: str | None = None
    backend: str = ""
    fallback_reason: str | None = None
    sample_count: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method,
            "motor": self.motor,
            "estimate": self.estimate.to_dict(),
            "gains": self.gains.to_dict(),
            "previous": self.previous.to_dict(),
            "suggested": self.suggested.to_dict(),
            "applied": self.applied,
            "apply_error": self.apply_error,
            "backend": self.backend,
            "fallback_reason": self.fallback_reason,
            "sample_count": self.sample_count,
            **self.extra,
        }


def synthesize_imc_gains(
    k_plant: float,
    tau_s: float,
    qpps: int,
    lambda_scale: float = DEFAULT_LAMBDA_SCALE,
) -> ImcGains:
    """IMC PI gains for a first-order plant.

    Args:
        k_plant: Plant gain in counts/s per PWM count.
        tau_s: Plant time constant in seconds.
        qpps: Stored QPPS of the velocity PID.
        lambda_scale: Closed-loop speed as a multiple of ``tau_s``,
            clamped to [0.05, 5.0].

    Returns:
        ImcGains.

    Raises:
        EstimationError: ``|k_plant| < 1e-9`` or the resulting lambda is
            not positive.
        LogicalError: ``qpps`` is not positive.

    Example:
        >>> gains = synthesize_imc_gains(100 / 32767, 0.1, 100, 0.5)
        >>> round(gains.kc, 6), gains.ti
        (2.0, 0.1)
    """
    if not math.isfinite(k_plant) or abs(k_plant) < MIN_PLANT_GAIN:
        raise EstimationError(f"Estimated plant gain too small: {k_plant}")
    if qpps <= 0:
        raise LogicalError(f"QPPS must be positive for gain synthesis, got {qpps}")

    k_eff = k_plant * PWM_MAX / qpps
    scale = min(max(lambda_scale, LAMBDA_SCALE_MIN), LAMBDA_SCALE_MAX)
    lambda_s = scale * tau_s
    if not lambda_s > 0:
        raise EstimationError(f"Closed-loop time constant must be positive, got {lambda_s}")

    kc = tau_s / (k_eff * lambda_s)
    ti = tau_s
    return ImcGains(
        kc=kc,
        ti=ti,
        kd=0.0,
        k_eff=k_eff,
        lambda_s=lambda_s,
        p=to_fixed(kc),
        i=to_fixed(kc / ti),
        d=0,
    )


def _prepare(
    driver: MotorDriver, motor: int, allow_simulation_fallback: bool
) -> tuple[MotorDriver, VelocityPid, str | None]:
    """Read the stored velocity PID, falling back to the twin if allowed."""
    active = driver.pinned()
    try:
        return active, active.read_velocity_pid(motor), None
    except TransportError as e:
        fallback = driver.simulation_fallback() if allow_simulation_fallback else None
        if fallback is None or active.is_simulated:
            raise
        logger.warning(
            "Hardware unavailable, autotuning against simulation",
            motor=motor,
            error=str(e),
        )
        return fallback, fallback.read_velocity_pid(motor), str(e)


def _finish(
    driver: MotorDriver,
    result: AutotuneResult,
    apply_result: bool,
) -> AutotuneResult:
    if not apply_result:
        return result
    try:
        driver.write_velocity_pid(result.motor, result.suggested)
        result.applied = True
        logger.info("Autotuned velocity PID applied", motor=result.motor)
    except RoboclawError as e:
        result.apply_error = str(e)
        logger.warning(
            "Failed to apply autotuned velocity PID", motor=result.motor, error=str(e)
        )
    return result


def autotune_velocity_step(
    driver: MotorDriver,
    motor: int,
    pwm_step: int = 16000,
    duration_ms: float = 2000.0,
    sample_interval_ms: float = 10.0,
    apply_delay_ms: float = 200.0,
    lambda_scale: float = DEFAULT_LAMBDA_SCALE,
    apply_result: bool = False,
    allow_simulation_fallback: bool = False,
) -> AutotuneResult:
    """Tune the velocity PID from a PWM step response.

    Args:
        driver: Motor driver.
        motor: Motor index, 1 or 2.
        pwm_step: Step amplitude in PWM counts.
        duration_ms: Recording time.
        sample_interval_ms: Spacing of speed reads.
        apply_delay_ms: Time of the step.
        lambda_scale: Closed-loop time constant as a multiple of tau.
        apply_result: Write the suggested PID back when True.
        allow_simulation_fallback: Use the twin if hardware cannot be driven.

    Returns:
        AutotuneResult. A failed write is reported in ``apply_error``
        rather than raised.

    Raises:
        LogicalError: Bad arguments or stored QPPS not positive.
        EstimationError: The response could not be identified.
        TransportError, ProtocolError: From the backend.
    """
    check_motor(motor)
    with LogContext(autotune="step", motor=motor):
        active, previous, reason = _prepare(driver, motor, allow_simulation_fallback)
        experiment = run_step_response(
            active,
            motor,
            pwm_step,
            duration_ms=duration_ms,
            sample_interval_ms=sample_interval_ms,
            apply_delay_ms=apply_delay_ms,
        )
        estimate = estimate_step_response(experiment.samples)
        gains = synthesize_imc_gains(estimate.k, estimate.tau_s, previous.qpps, lambda_scale)
        logger.info(
            "Step autotune estimate",
            k=estimate.k,
            tau_s=estimate.tau_s,
            r2=estimate.r2,
            kc=gains.kc,
        )
        result = AutotuneResult(
            method="step",
            motor=motor,
            estimate=estimate,
            gains=gains,
            previous=previous,
            suggested=VelocityPid(p=gains.p, i=gains.i, d=gains.d, qpps=previous.qpps),
            backend=experiment.backend,
            fallback_reason=reason,
            sample_count=len(experiment.samples),
        )
        return _finish(active, result, apply_result)


def autotune_velocity_frf(
    driver: MotorDriver,
    motor: int,
    start_hz: float = 0.2,
    end_hz: float = 10.0,
    points: int = 10,
    amplitude_cmd: int = 8000,
    cycles: int = 3,
    sample_interval_ms: float = 10.0,
    tau_min: float = 0.001,
    tau_max: float = 10.0,
    tau_points: int = 200,
    lambda_scale: float = DEFAULT_LAMBDA_SCALE,
    apply_result: bool = False,
    allow_simulation_fallback: bool = False,
) -> AutotuneResult:
    """Tune the velocity PID from a frequency sweep.

    The plant gain is the magnitude of the fitted complex gain, signed by
    its real part.

    Raises:
        LogicalError: Bad arguments or stored QPPS not positive.
        EstimationError: The sweep or fit could not produce a model.
        TransportError, ProtocolError: From the backend.
    """
    check_motor(motor)
    with LogContext(autotune="frf", motor=motor):
        active, previous, reason = _prepare(driver, motor, allow_simulation_fallback)
        experiment = run_frequency_response(
            active,
            motor,
            start_hz=start_hz,
            end_hz=end_hz,
            points=points,
            amplitude_cmd=amplitude_cmd,
            cycles=cycles,
            sample_interval_ms=sample_interval_ms,
        )
        fit = fit_frequency_response(
            [p.freq_hz for p in experiment.points],
            [p.gain for p in experiment.points],
            [p.phase_deg for p in experiment.points],
            tau_min=tau_min,
            tau_max=tau_max,
            tau_points=tau_points,
        )
        k_plant = math.copysign(fit.k_mag, fit.k_re)
        gains = synthesize_imc_gains(k_plant, fit.tau_s, previous.qpps, lambda_scale)
        logger.info(
            "FRF autotune estimate",
            k=k_plant,
            tau_s=fit.tau_s,
            residual_rms=fit.residual_rms,
            kc=gains.kc,
        )
        result = AutotuneResult(
            method="frf",
            motor=motor,
            estimate=fit,
            gains=gains,
            previous=previous,
            suggested=VelocityPid(p=gains.p, i=gains.i, d=gains.d, qpps=previous.qpps),
            backend=experiment.backend,
            fallback_reason=reason,
            sample_count=len(experiment.samples),
            extra={"points": [p.to_dict() for p in experiment.points]},
        )
        return _finish(active, result, apply_result)
