"""System identification and autotuning.

Modules:
    sampler: Fixed-interval sampling loop
    estimators: Step and frequency response first-order estimators
    experiments: Step and sinusoidal-sweep experiments via the driver
    autotune: IMC gain synthesis and the autotune pipelines
"""

from roboclaw_mcp.analysis.estimators import (
    FrfFit,
    StepEstimate,
    estimate_step_response,
    fit_frequency_response,
)
from roboclaw_mcp.analysis.sampler import ExperimentSample, Sampler

__all__ = [
    "ExperimentSample",
    "FrfFit",
    "Sampler",
    "StepEstimate",
    "estimate_step_response",
    "fit_frequency_response",
]
