"""First-order plant estimators.

Two ways of identifying ``G(s) = K / (1 + s*tau)``:

- ``estimate_step_response``: log-linear regression of the decaying error
  after a command step, with a 63.2% rise-time fallback.
- ``fit_frequency_response``: grid search over tau with the complex gain
  solved in closed form at each grid point.

Both are pure functions over plain sequences and raise ``EstimationError``
when the data cannot support an estimate.

Example:
    estimate = estimate_step_response(samples)
    print(f"K={estimate.k:.4f} tau={estimate.tau_s:.3f}s r2={estimate.r2}")
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from roboclaw_mcp.analysis.sampler import ExperimentSample
from roboclaw_mcp.errors import EstimationError

__all__ = [
    "FrfFit",
    "StepEstimate",
    "estimate_step_response",
    "fit_frequency_response",
]

MIN_STEP_SAMPLES = 5
STEP_THRESHOLD = 0.5
MIN_COMMAND_CHANGE = 1e-6
MIN_DEVIATION = 1e-6
MIN_REGRESSION_POINTS = 3
DEGENERATE_VARIANCE = 1e-12
RISE_FRACTION = 0.632
RISE_TOLERANCE = 1e-3
TAIL_FRACTION = 0.8


@dataclass
class StepEstimate:
    """First-order model identified from a step response.

    Attributes:
        k: Steady-state gain, velocity change per command unit.
        tau_s: Time constant in seconds.
        y0: Velocity before the step.
        y_inf: Final velocity (mean of the last 20% of samples).
        step_time_s: Time of the step from the start of the record.
        r2: Coefficient of determination of the log-linear fit, None when
            the 63.2% rise-time fallback was used.
    """

    k: float
    tau_s: float
    y0: float
    y_inf: float
    step_time_s: float
    r2: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "k": self.k,
            "tau_s": self.tau_s,
            "y0": self.y0,
            "y_inf": self.y_inf,
            "step_time_s": self.step_time_s,
            "r2": self.r2,
        }


@dataclass
class FrfFit:
    """First-order model fitted to frequency response points.

    Attributes:
        k_re: Real part of the complex gain.
        k_im: Imaginary part of the complex gain.
        k_mag: Magnitude of the complex gain.
        tau_s: Best time constant on the grid.
        residual_rms: Root mean square of the complex residual.
        fitted_mag: Model magnitude at each input frequency.
        fitted_phase: Model phase in degrees at each input frequency.
    """

    k_re: float
    k_im: float
    k_mag: float
    tau_s: float
    residual_rms: float
    fitted_mag: list[float] = field(default_factory=list)
    fitted_phase: list[float] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "k_re": self.k_re,
            "k_im": self.k_im,
            "k_mag": self.k_mag,
            "tau_s": self.tau_s,
            "residual_rms": self.residual_rms,
            "fitted_mag": list(self.fitted_mag),
            "fitted_phase": list(self.fitted_phase),
        }


# =============================================================================
# Step response
# =============================================================================


def estimate_step_response(samples: Sequence[ExperimentSample]) -> StepEstimate:
    """Identify K and tau from a command step.

    The step is the first sample whose command differs from the initial
    command by more than 0.5. The baseline is the mean velocity before it
    (the first velocity if the step is at index 0); the final value and the
    final command are means over samples from ``floor(0.8 n)`` onward.

    With ``e(t) = y(t) - y_inf`` for samples at and after the step, a first
    order response gives ``ln|e| = c - t/tau``; tau comes from an ordinary
    least squares fit of that line. Points with ``|e| < 1e-6`` are dropped.
    If fewer than 3 remain, tau is the time to reach 63.2% of the change.

    Args:
        samples: Time-ordered samples containing one command step.

    Returns:
        StepEstimate.

    Raises:
        EstimationError: Fewer than 5 samples, no step, command change
            below 1e-6, zero-variance regression, or the 63.2% level is
            never reached in the fallback.

    Example:
        >>> estimate = estimate_step_response(samples)
        >>> estimate.tau_s
        0.1
    """
    if len(samples) < MIN_STEP_SAMPLES:
        raise EstimationError(
            f"Need at least {MIN_STEP_SAMPLES} samples to estimate, got {len(samples)}"
        )

    t_ms = np.array([s.t_ms for s in samples], dtype=float)
    vel = np.array([s.vel for s in samples], dtype=float)
    cmd = np.array([s.cmd for s in samples], dtype=float)

    moved = np.flatnonzero(np.abs(cmd - cmd[0]) > STEP_THRESHOLD)
    if moved.size == 0:
        raise EstimationError("Could not locate a command step in the samples")
    step_idx = int(moved[0])
    t0_ms = float(t_ms[step_idx])

    y0 = float(vel[:step_idx].mean()) if step_idx > 0 else float(vel[0])
    tail_start = int(math.floor(len(samples) * TAIL_FRACTION))
    y_inf = float(vel[tail_start:].mean())
    cmd_final = float(cmd[tail_start:].mean())

    delta_cmd = cmd_final - float(cmd[0])
    if abs(delta_cmd) < MIN_COMMAND_CHANGE:
        raise EstimationError("Command change too small to estimate")
    k = (y_inf - y0) / delta_cmd

    t_after = (t_ms[step_idx:] - t0_ms) / 1000.0
    deviation = vel[step_idx:] - y_inf
    usable = np.abs(deviation) >= MIN_DEVIATION

    if np.count_nonzero(usable) < MIN_REGRESSION_POINTS:
        tau = _rise_time(t_after, vel[step_idx:], y0, y_inf)
        return StepEstimate(
            k=k, tau_s=tau, y0=y0, y_inf=y_inf, step_time_s=t0_ms / 1000.0, r2=None
        )

    t_fit = t_after[usable]
    ln_e = np.log(np.abs(deviation[usable]))
    t_centered = t_fit - t_fit.mean()
    ln_centered = ln_e - ln_e.mean()

    denominator = float(np.dot(t_centered, t_centered))
    if abs(denominator) < DEGENERATE_VARIANCE:
        raise EstimationError("Regression failed: sample times have zero variance")
    slope = float(np.dot(t_centered, ln_centered)) / denominator
    if slope == 0.0:
        raise EstimationError("Regression failed: error does not decay")
    tau = -1.0 / slope

    residual = ln_centered - slope * t_centered
    ss_res = float(np.dot(residual, residual))
    ss_tot = float(np.dot(ln_centered, ln_centered))
    r2 = 1.0 if abs(ss_tot) < DEGENERATE_VARIANCE else 1.0 - ss_res / ss_tot

    return StepEstimate(
        k=k, tau_s=tau, y0=y0, y_inf=y_inf, step_time_s=t0_ms / 1000.0, r2=r2
    )


def _rise_time(t_s: np.ndarray, vel: np.ndarray, y0: float, y_inf: float) -> float:
    """Time of the first sample reaching 63.2% of the change."""
    target = y0 + RISE_FRACTION * (y_inf - y0)
    rising = y_inf > y0
    falling = y_inf < y0
    for t, v in zip(t_s, vel, strict=True):
        if (
            abs(v - target) <= RISE_TOLERANCE
            or (rising and v >= target)
            or (falling and v <= target)
        ):
            return float(t)
    raise EstimationError("Insufficient data to estimate tau")


# =============================================================================
# Frequency response
# =============================================================================


def fit_frequency_response(
    freqs_hz: Sequence[float],
    gains: Sequence[float],
    phases_deg: Sequence[float],
    tau_min: float = 0.001,
    tau_max: float = 10.0,
    tau_points: int = 200,
) -> FrfFit:
    """Fit ``K / (1 + j*w*tau)`` to measured gain and phase.

    For each tau on a log-spaced grid the basis ``B = 1/(1 + j*w*tau)`` is
    fixed, so the least squares complex gain is
    ``K = sum(H * conj(B)) / sum(|B|^2)``. The tau with the smallest finite
    mean square residual wins.

    Args:
        freqs_hz: Measurement frequencies in Hz.
        gains: Measured magnitude at each frequency.
        phases_deg: Measured phase in degrees at each frequency.
        tau_min: Smallest tau on the grid, seconds.
        tau_max: Largest tau on the grid, seconds.
        tau_points: Grid size; at least 3 points are used.

    Returns:
        FrfFit with the fitted model evaluated at ``freqs_hz``.

    Raises:
        EstimationError: Arrays empty or of different lengths, non-positive
            tau bounds, or no grid point produced a finite residual.
    """
    n = len(freqs_hz)
    if n == 0 or n != len(gains) or n != len(phases_deg):
        raise EstimationError("Input arrays must be same non-zero length")
    if not (tau_min > 0 and tau_max > 0):
        raise EstimationError("tau_min and tau_max must be positive")

    omega = 2.0 * np.pi * np.asarray(freqs_hz, dtype=float)
    measured = np.asarray(gains, dtype=float) * np.exp(
        1j * np.deg2rad(np.asarray(phases_deg, dtype=float))
    )

    best_tau = float(tau_min)
    best_k = 0j
    best_err = math.inf
    for tau in np.geomspace(tau_min, tau_max, max(int(tau_points), 3)):
        basis = 1.0 / (1.0 + 1j * omega * tau)
        energy = float(np.sum(np.abs(basis) ** 2))
        if energy == 0.0:
            continue
        k = complex(np.sum(measured * np.conj(basis)) / energy)
        err = float(np.mean(np.abs(k * basis - measured) ** 2))
        if math.isfinite(err) and err < best_err:
            best_err, best_tau, best_k = err, float(tau), k

    if not math.isfinite(best_err):
        raise EstimationError("No finite residual on the tau grid")

    model = best_k / (1.0 + 1j * omega * best_tau)
    return FrfFit(
        k_re=best_k.real,
        k_im=best_k.imag,
        k_mag=abs(best_k),
        tau_s=best_tau,
        residual_rms=math.sqrt(best_err),
        fitted_mag=np.abs(model).tolist(),
        fitted_phase=np.rad2deg(np.angle(model)).tolist(),
    )
