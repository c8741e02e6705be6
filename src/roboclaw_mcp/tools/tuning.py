"""MCP tools for identification experiments and velocity PID autotuning."""

from __future__ import annotations

from typing import Any

from mcp.types import Tool

from roboclaw_mcp.analysis.autotune import autotune_velocity_frf, autotune_velocity_step
from roboclaw_mcp.analysis.estimators import estimate_step_response, fit_frequency_response
from roboclaw_mcp.analysis.experiments import run_frequency_response, run_step_response
from roboclaw_mcp.devices import MotorDriver
from roboclaw_mcp.drivers.config import MotorRuntime
from roboclaw_mcp.tools.motors import Handler
from roboclaw_mcp.tools.requests import (
    AutotuneFrfRequest,
    AutotuneStepRequest,
    EstimateStepRequest,
    FitFrfRequest,
    FrequencyResponseRequest,
    QppsRequest,
    StepResponseRequest,
)

_MOTOR = {"type": "integer", "enum": [1, 2], "description": "Motor channel (1 or 2)"}
_FALLBACK = {
    "type": "boolean",
    "description": "Run on the digital twin if the hardware cannot be driven",
    "default": False,
}
_STEP_PROPERTIES: dict[str, Any] = {
    "motor_index": _MOTOR,
    "pwm_step": {"type": "integer", "description": "Step duty, -32767..32767"},
    "duration_ms": {"type": "number", "default": 2000},
    "sample_interval_ms": {"type": "number", "default": 10},
    "apply_delay_ms": {
        "type": "number",
        "description": "Time of the step from the start of recording",
        "default": 200,
    },
    "allow_simulation_fallback": _FALLBACK,
}
_SWEEP_PROPERTIES: dict[str, Any] = {
    "motor_index": _MOTOR,
    "start_hz": {"type": "number", "default": 0.2},
    "end_hz": {"type": "number", "default": 10.0},
    "points": {"type": "integer", "description": "Log-spaced frequencies", "default": 10},
    "amplitude_cmd": {"type": "integer", "description": "Sine amplitude in PWM", "default": 8000},
    "cycles": {"type": "integer", "description": "Periods per frequency", "default": 3},
    "sample_interval_ms": {"type": "number", "default": 10},
    "allow_simulation_fallback": _FALLBACK,
}
_TAU_GRID_PROPERTIES: dict[str, Any] = {
    "tau_min": {"type": "number", "default": 0.001},
    "tau_max": {"type": "number", "default": 10.0},
    "tau_points": {"type": "integer", "default": 200},
}
_TUNING_PROPERTIES: dict[str, Any] = {
    "lambda_scale": {
        "type": "number",
        "description": "Closed-loop time constant as a multiple of tau (0.05..5)",
        "default": 0.5,
    },
    "apply_result": {
        "type": "boolean",
        "description": "Write the suggested PID to the controller",
        "default": False,
    },
}

TOOLS = [
    Tool(
        name="measure_qpps",
        description="Drive at full duty and measure encoder counts per second (QPPS)",
        inputSchema={
            "type": "object",
            "properties": {
                "motor_index": _MOTOR,
                "duration_ms": {"type": "number", "minimum": 200, "default": 1000},
                "interval_ms": {"type": "number", "default": 100},
            },
            "required": ["motor_index"],
        },
    ),
    Tool(
        name="run_step_response",
        description="Record the speed response to a PWM step",
        inputSchema={
            "type": "object",
            "properties": _STEP_PROPERTIES,
            "required": ["motor_index", "pwm_step"],
        },
    ),
    Tool(
        name="run_frequency_response",
        description="Measure gain and phase with a sinusoidal PWM sweep",
        inputSchema={
            "type": "object",
            "properties": {
                **_SWEEP_PROPERTIES,
                "include_samples": {"type": "boolean", "default": False},
            },
            "required": ["motor_index"],
        },
    ),
    Tool(
        name="estimate_step_response",
        description="Fit K and tau of a first-order model to step samples",
        inputSchema={
            "type": "object",
            "properties": {
                "samples": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "t_ms": {"type": "number"},
                            "vel": {"type": "number"},
                            "cmd": {"type": "number"},
                        },
                    },
                },
            },
            "required": ["samples"],
        },
    ),
    Tool(
        name="fit_frequency_response",
        description="Fit K / (1 + j*w*tau) to measured gain and phase",
        inputSchema={
            "type": "object",
            "properties": {
                "freqs_hz": {"type": "array", "items": {"type": "number"}},
                "gains": {"type": "array", "items": {"type": "number"}},
                "phases_deg": {"type": "array", "items": {"type": "number"}},
                **_TAU_GRID_PROPERTIES,
            },
            "required": ["freqs_hz", "gains", "phases_deg"],
        },
    ),
    Tool(
        name="autotune_velocity_step",
        description="Tune the velocity PID by IMC from a step response",
        inputSchema={
            "type": "object",
            "properties": {**_STEP_PROPERTIES, **_TUNING_PROPERTIES},
            "required": ["motor_index"],
        },
    ),
    Tool(
        name="autotune_velocity_frf",
        description="Tune the velocity PID by IMC from a frequency sweep",
        inputSchema={
            "type": "object",
            "properties": {
                **_SWEEP_PROPERTIES,
                **_TAU_GRID_PROPERTIES,
                **_TUNING_PROPERTIES,
            },
            "required": ["motor_index"],
        },
    ),
]


def _measure_qpps(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    request = QppsRequest.from_arguments(arguments)
    result = MotorDriver.from_runtime(runtime).measure_qpps(
        request.motor, request.duration_ms, request.interval_ms
    )
    return {"motor_index": request.motor, **result.to_dict()}


def _run_step_response(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    request = StepResponseRequest.from_arguments(arguments)
    result = run_step_response(
        MotorDriver.from_runtime(runtime),
        request.motor,
        request.pwm_step,
        duration_ms=request.duration_ms,
        sample_interval_ms=request.sample_interval_ms,
        apply_delay_ms=request.apply_delay_ms,
        allow_simulation_fallback=request.allow_simulation_fallback,
    )
    return result.to_dict()


def _run_frequency_response(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    request = FrequencyResponseRequest.from_arguments(arguments)
    result = run_frequency_response(
        MotorDriver.from_runtime(runtime),
        request.motor,
        start_hz=request.start_hz,
        end_hz=request.end_hz,
        points=request.points,
        amplitude_cmd=request.amplitude_cmd,
        cycles=request.cycles,
        sample_interval_ms=request.sample_interval_ms,
        allow_simulation_fallback=request.allow_simulation_fallback,
    )
    return result.to_dict(include_samples=arguments.get("include_samples") is True)


def _estimate_step_response(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    request = EstimateStepRequest.from_arguments(arguments)
    return {"estimate": estimate_step_response(request.samples).to_dict()}


def _fit_frequency_response(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    request = FitFrfRequest.from_arguments(arguments)
    fit = fit_frequency_response(
        request.freqs_hz,
        request.gains,
        request.phases_deg,
        tau_min=request.tau_min,
        tau_max=request.tau_max,
        tau_points=request.tau_points,
    )
    return {"fit": fit.to_dict()}


def _autotune_velocity_step(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    request = AutotuneStepRequest.from_arguments(arguments)
    result = autotune_velocity_step(
        MotorDriver.from_runtime(runtime),
        request.motor,
        pwm_step=request.pwm_step,
        duration_ms=request.duration_ms,
        sample_interval_ms=request.sample_interval_ms,
        apply_delay_ms=request.apply_delay_ms,
        lambda_scale=request.lambda_scale,
        apply_result=request.apply_result,
        allow_simulation_fallback=request.allow_simulation_fallback,
    )
    return result.to_dict()


def _autotune_velocity_frf(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    request = AutotuneFrfRequest.from_arguments(arguments)
    result = autotune_velocity_frf(
        MotorDriver.from_runtime(runtime),
        request.motor,
        start_hz=request.start_hz,
        end_hz=request.end_hz,
        points=request.points,
        amplitude_cmd=request.amplitude_cmd,
        cycles=request.cycles,
        sample_interval_ms=request.sample_interval_ms,
        tau_min=request.tau_min,
        tau_max=request.tau_max,
        tau_points=request.tau_points,
        lambda_scale=request.lambda_scale,
        apply_result=request.apply_result,
        allow_simulation_fallback=request.allow_simulation_fallback,
    )
    return result.to_dict()


HANDLERS: dict[str, Handler] = {
    "measure_qpps": _measure_qpps,
    "run_step_response": _run_step_response,
    "run_frequency_response": _run_frequency_response,
    "estimate_step_response": _estimate_step_response,
    "fit_frequency_response": _fit_frequency_response,
    "autotune_velocity_step": _autotune_velocity_step,
    "autotune_velocity_frf": _autotune_velocity_frf,
}
