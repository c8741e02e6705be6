"""Typed tool requests.

MCP clients send loosely typed JSON with either snake_case or camelCase
keys (``motor_index``, ``motorIndex``, ``motor``). Each request class
resolves those aliases once, validates types and ranges, and exposes plain
attributes to the tool handlers.

Example:
    request = SimParamsRequest.from_arguments({"motorIndex": 1, "tauMs": 80, "maxVel": 120})
    request.tau_s   # 0.08
"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from roboclaw_mcp.analysis.sampler import ExperimentSample
from roboclaw_mcp.drivers.motors.types import PositionPid, VelocityPid, check_motor, to_fixed
from roboclaw_mcp.errors import LogicalError

__all__ = [
    "AutotuneFrfRequest",
    "AutotuneStepRequest",
    "ConfigureBaudRequest",
    "ConfigurePortRequest",
    "DrivePwmRequest",
    "DriveRequest",
    "EstimateStepRequest",
    "FitFrfRequest",
    "FrequencyResponseRequest",
    "MotorRequest",
    "PositionPidRequest",
    "QppsRequest",
    "SimParamsRequest",
    "SimulationModeRequest",
    "StepResponseRequest",
    "VelocityPidRequest",
]

T = TypeVar("T")

_MISSING: Any = object()

MOTOR_KEYS = ("motor_index", "motorIndex", "motor")
FALLBACK_KEYS = ("allow_simulation_fallback", "allowSimulationFallback", "allow_fallback")
INTERVAL_KEYS = ("sample_interval_ms", "sampleIntervalMs", "interval_ms", "intervalMs")
LAMBDA_KEYS = ("lambda_scale", "lambdaScale", "lambda")
APPLY_KEYS = ("apply_result", "applyResult", "apply")


# =============================================================================
# Field coercion
# =============================================================================


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise LogicalError(f"{name} must be an integer, got a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    raise LogicalError(f"{name} must be an integer, got {value!r}")


def _as_float(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise LogicalError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise LogicalError(f"{name} must be finite, got {value!r}")
    return float(value)


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    raise LogicalError(f"{name} must be a boolean, got {value!r}")


def _as_str(value: Any, name: str) -> str:
    if isinstance(value, str) and value:
        return value
    raise LogicalError(f"{name} must be a non-empty string, got {value!r}")


def _as_float_list(value: Any, name: str) -> list[float]:
    if not isinstance(value, Sequence) or isinstance(value, str | bytes):
        raise LogicalError(f"{name} must be a list of numbers")
    return [_as_float(v, name) for v in value]


def _lookup(arguments: Mapping[str, Any], keys: Sequence[str]) -> tuple[str, Any]:
    for key in keys:
        if key in arguments and arguments[key] is not None:
            return key, arguments[key]
    return keys[0], _MISSING


def _get(
    arguments: Mapping[str, Any],
    keys: Sequence[str],
    convert: Callable[[Any, str], T],
    default: T = _MISSING,
) -> T:
    """Resolve the first present alias and convert it.

    Raises:
        LogicalError: No alias present and no default, or conversion failed.
    """
    key, value = _lookup(arguments, keys)
    if value is _MISSING:
        if default is _MISSING:
            raise LogicalError(f"Missing {keys[0]}: provide {'/'.join(keys)}")
        return default
    return convert(value, key)


def _motor(arguments: Mapping[str, Any]) -> int:
    return check_motor(_get(arguments, MOTOR_KEYS, _as_int))


def _positive(value: float, name: str) -> float:
    if value <= 0:
        raise LogicalError(f"{name} must be positive, got {value}")
    return value


def _gain(arguments: Mapping[str, Any], raw_keys: Sequence[str], float_key: str) -> int:
    """PID gain from a raw 16.16 field or a float ``kp``-style field."""
    if float_key in arguments and arguments[float_key] is not None:
        return to_fixed(_as_float(arguments[float_key], float_key))
    return _get(arguments, raw_keys, _as_int, 0)


# =============================================================================
# Requests
# =============================================================================


@dataclass(frozen=True)
class MotorRequest:
    motor: int

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> MotorRequest:
        return cls(motor=_motor(arguments))


@dataclass(frozen=True)
class DriveRequest:
    """Open-loop drive; speed 0..127, 64 = stop."""

    motor: int
    speed: int

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> DriveRequest:
        speed = _get(arguments, ("speed", "value"), _as_int)
        if not 0 <= speed <= 127:
            raise LogicalError(f"speed must be in [0, 127], got {speed}")
        return cls(motor=_motor(arguments), speed=speed)


@dataclass(frozen=True)
class DrivePwmRequest:
    motor: int
    pwm: int

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> DrivePwmRequest:
        pwm = _get(arguments, ("pwm", "duty", "value"), _as_int)
        if not -32767 <= pwm <= 32767:
            raise LogicalError(f"pwm must be in [-32767, 32767], got {pwm}")
        return cls(motor=_motor(arguments), pwm=pwm)


@dataclass(frozen=True)
class SimParamsRequest:
    """Plant parameters; ``tauMs`` is in milliseconds, the others seconds."""

    motor: int
    tau_s: float
    gain: float

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> SimParamsRequest:
        key, value = _lookup(arguments, ("tau", "tau_s", "tauMs", "tau_ms"))
        if value is _MISSING:
            raise LogicalError("Missing tau: provide tau/tau_s/tauMs")
        tau_s = _as_float(value, key)
        if key in ("tauMs", "tau_ms"):
            tau_s /= 1000.0
        gain = _get(arguments, ("gain", "max_vel", "maxVel"), _as_float)
        return cls(motor=_motor(arguments), tau_s=_positive(tau_s, "tau"), gain=gain)


@dataclass(frozen=True)
class ConfigurePortRequest:
    port: str
    baud_rate: int | None = None

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> ConfigurePortRequest:
        port = _get(arguments, ("port", "port_name", "portName"), _as_str)
        baud = _get(arguments, ("baud_rate", "baudRate", "baud"), _as_int, None)
        if baud is not None and baud <= 0:
            raise LogicalError(f"baud_rate must be positive, got {baud}")
        return cls(port=port, baud_rate=baud)


@dataclass(frozen=True)
class ConfigureBaudRequest:
    baud_rate: int

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> ConfigureBaudRequest:
        baud = _get(arguments, ("baud_rate", "baudRate", "baud"), _as_int)
        if baud <= 0:
            raise LogicalError(f"baud_rate must be positive, got {baud}")
        return cls(baud_rate=baud)


@dataclass(frozen=True)
class SimulationModeRequest:
    enabled: bool

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> SimulationModeRequest:
        return cls(enabled=_get(arguments, ("enabled", "enable", "simulation"), _as_bool))


@dataclass(frozen=True)
class VelocityPidRequest:
    """Velocity PID write.

    Gains come either as raw 16.16 integers (``p``, ``i``, ``d``) or as
    floats (``kp``, ``ki``, ``kd``); the float form wins when both exist.
    """

    motor: int
    pid: VelocityPid

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> VelocityPidRequest:
        qpps = _get(arguments, ("qpps",), _as_int)
        if qpps < 0:
            raise LogicalError(f"qpps must be non-negative, got {qpps}")
        pid = VelocityPid(
            p=_gain(arguments, ("p",), "kp"),
            i=_gain(arguments, ("i",), "ki"),
            d=_gain(arguments, ("d",), "kd"),
            qpps=qpps,
        )
        return cls(motor=_motor(arguments), pid=pid)


@dataclass(frozen=True)
class PositionPidRequest:
    motor: int
    pid: PositionPid

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> PositionPidRequest:
        pid = PositionPid(
            p=_gain(arguments, ("p",), "kp"),
            i=_gain(arguments, ("i",), "ki"),
            d=_gain(arguments, ("d",), "kd"),
            max_i=_get(arguments, ("max_i", "maxI"), _as_int, 0),
            deadzone=_get(arguments, ("deadzone", "deadZone"), _as_int, 0),
            min=_get(arguments, ("min", "min_pos", "minPos"), _as_int, 0),
            max=_get(arguments, ("max", "max_pos", "maxPos"), _as_int, 0),
        )
        if pid.max_i < 0 or pid.deadzone < 0:
            raise LogicalError("max_i and deadzone must be non-negative")
        return cls(motor=_motor(arguments), pid=pid)


@dataclass(frozen=True)
class QppsRequest:
    motor: int
    duration_ms: float = 1000.0
    interval_ms: float = 100.0

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> QppsRequest:
        return cls(
            motor=_motor(arguments),
            duration_ms=_get(arguments, ("duration_ms", "durationMs"), _as_float, 1000.0),
            interval_ms=_positive(
                _get(arguments, INTERVAL_KEYS, _as_float, 100.0), "interval_ms"
            ),
        )


@dataclass(frozen=True)
class StepResponseRequest:
    motor: int
    pwm_step: int
    duration_ms: float = 2000.0
    sample_interval_ms: float = 10.0
    apply_delay_ms: float = 200.0
    allow_simulation_fallback: bool = False

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> StepResponseRequest:
        return cls(**_step_fields(arguments))


@dataclass(frozen=True)
class AutotuneStepRequest(StepResponseRequest):
    lambda_scale: float = 0.5
    apply_result: bool = False

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> AutotuneStepRequest:
        return cls(**_step_fields(arguments, default_step=16000), **_tuning_fields(arguments))


@dataclass(frozen=True)
class FrequencyResponseRequest:
    motor: int
    start_hz: float = 0.2
    end_hz: float = 10.0
    points: int = 10
    amplitude_cmd: int = 8000
    cycles: int = 3
    sample_interval_ms: float = 10.0
    allow_simulation_fallback: bool = False

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> FrequencyResponseRequest:
        return cls(**_sweep_fields(arguments))


@dataclass(frozen=True)
class AutotuneFrfRequest(FrequencyResponseRequest):
    tau_min: float = 0.001
    tau_max: float = 10.0
    tau_points: int = 200
    lambda_scale: float = 0.5
    apply_result: bool = False

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> AutotuneFrfRequest:
        return cls(
            **_sweep_fields(arguments),
            **_tau_grid_fields(arguments),
            **_tuning_fields(arguments),
        )


@dataclass(frozen=True)
class EstimateStepRequest:
    samples: tuple[ExperimentSample, ...]

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> EstimateStepRequest:
        raw = arguments.get("samples")
        if not isinstance(raw, Sequence) or isinstance(raw, str | bytes):
            raise LogicalError("samples must be a list of {t_ms, vel, cmd} objects")
        samples = []
        for item in raw:
            if not isinstance(item, Mapping):
                raise LogicalError("samples must be a list of {t_ms, vel, cmd} objects")
            samples.append(
                ExperimentSample(
                    t_ms=_get(item, ("t_ms", "tMs", "t"), _as_float),
                    vel=_get(item, ("vel", "velocity", "speed"), _as_float),
                    cmd=_get(item, ("cmd", "command"), _as_float),
                )
            )
        return cls(samples=tuple(samples))


@dataclass(frozen=True)
class FitFrfRequest:
    freqs_hz: tuple[float, ...]
    gains: tuple[float, ...]
    phases_deg: tuple[float, ...]
    tau_min: float = 0.001
    tau_max: float = 10.0
    tau_points: int = 200

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> FitFrfRequest:
        return cls(
            freqs_hz=tuple(_get(arguments, ("freqs_hz", "freqsHz", "freqs"), _as_float_list)),
            gains=tuple(_get(arguments, ("gains", "mags"), _as_float_list)),
            phases_deg=tuple(
                _get(arguments, ("phases_deg", "phasesDeg", "phases"), _as_float_list)
            ),
            **_tau_grid_fields(arguments),
        )


# =============================================================================
# Shared field groups
# =============================================================================


def _step_fields(arguments: Mapping[str, Any], default_step: Any = _MISSING) -> dict[str, Any]:
    return {
        "motor": _motor(arguments),
        "pwm_step": _get(arguments, ("pwm_step", "pwmStep", "step"), _as_int, default_step),
        "duration_ms": _positive(
            _get(arguments, ("duration_ms", "durationMs"), _as_float, 2000.0), "duration_ms"
        ),
        "sample_interval_ms": _positive(
            _get(arguments, INTERVAL_KEYS, _as_float, 10.0), "sample_interval_ms"
        ),
        "apply_delay_ms": _get(
            arguments, ("apply_delay_ms", "applyDelayMs"), _as_float, 200.0
        ),
        "allow_simulation_fallback": _get(arguments, FALLBACK_KEYS, _as_bool, False),
    }


def _sweep_fields(arguments: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "motor": _motor(arguments),
        "start_hz": _positive(
            _get(arguments, ("start_hz", "startHz"), _as_float, 0.2), "start_hz"
        ),
        "end_hz": _positive(_get(arguments, ("end_hz", "endHz"), _as_float, 10.0), "end_hz"),
        "points": _get(arguments, ("points", "num_points", "numPoints"), _as_int, 10),
        "amplitude_cmd": _get(
            arguments, ("amplitude_cmd", "amplitudeCmd", "amplitude"), _as_int, 8000
        ),
        "cycles": _get(arguments, ("cycles",), _as_int, 3),
        "sample_interval_ms": _positive(
            _get(arguments, INTERVAL_KEYS, _as_float, 10.0), "sample_interval_ms"
        ),
        "allow_simulation_fallback": _get(arguments, FALLBACK_KEYS, _as_bool, False),
    }


def _tau_grid_fields(arguments: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "tau_min": _get(arguments, ("tau_min", "tauMin"), _as_float, 0.001),
        "tau_max": _get(arguments, ("tau_max", "tauMax"), _as_float, 10.0),
        "tau_points": _get(arguments, ("tau_points", "tauPoints"), _as_int, 200),
    }


def _tuning_fields(arguments: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "lambda_scale": _get(arguments, LAMBDA_KEYS, _as_float, 0.5),
        "apply_result": _get(arguments, APPLY_KEYS, _as_bool, False),
    }
