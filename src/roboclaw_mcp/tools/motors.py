"""MCP tools for controller setup and direct motor access.

Handlers are plain synchronous functions taking the runtime and the raw
arguments and returning a JSON-ready dict; ``roboclaw_mcp.tools`` runs them
off the event loop and wraps the result.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict
from typing import Any

from mcp.types import Tool

from roboclaw_mcp.devices import MotorDriver
from roboclaw_mcp.drivers.config import SIMULATED_PORT, MotorRuntime
from roboclaw_mcp.tools.requests import (
    ConfigureBaudRequest,
    ConfigurePortRequest,
    DrivePwmRequest,
    DriveRequest,
    MotorRequest,
    PositionPidRequest,
    SimParamsRequest,
    SimulationModeRequest,
    VelocityPidRequest,
)

Handler = Callable[[MotorRuntime, dict[str, Any]], dict[str, Any]]

_MOTOR = {
    "type": "integer",
    "enum": [1, 2],
    "description": "Motor channel (1 or 2); motorIndex and motor are accepted too",
}
_GAIN = {
    "type": "integer",
    "description": "Raw 16.16 fixed-point gain",
}
_FLOAT_GAIN = {
    "type": "number",
    "description": "Gain as a float; overrides the raw field",
}


def _schema(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


TOOLS = [
    Tool(
        name="list_ports",
        description=(
            f"List serial ports that may host a RoboClaw, plus {SIMULATED_PORT} "
            "for the digital twin"
        ),
        inputSchema=_schema({}, []),
    ),
    Tool(
        name="get_status",
        description="Show backend mode, port, baud rate and connection state",
        inputSchema=_schema({}, []),
    ),
    Tool(
        name="configure_port",
        description=(
            "Open a serial port for the controller. Passing "
            f"{SIMULATED_PORT} selects the digital twin instead"
        ),
        inputSchema=_schema(
            {
                "port": {"type": "string", "description": "Device path or SIMULATED"},
                "baud_rate": {
                    "type": "integer",
                    "description": "Line speed; keeps the current rate when omitted",
                },
            },
            ["port"],
        ),
    ),
    Tool(
        name="configure_baud",
        description="Reopen the current port at a new baud rate",
        inputSchema=_schema(
            {"baud_rate": {"type": "integer", "description": "Line speed"}},
            ["baud_rate"],
        ),
    ),
    Tool(
        name="set_simulation_mode",
        description="Switch between hardware and the digital twin",
        inputSchema=_schema(
            {"enabled": {"type": "boolean", "description": "True selects the twin"}},
            ["enabled"],
        ),
    ),
    Tool(
        name="set_sim_params",
        description="Set the twin's first-order plant for one motor",
        inputSchema=_schema(
            {
                "motor_index": _MOTOR,
                "tau": {"type": "number", "description": "Time constant in seconds"},
                "tauMs": {"type": "number", "description": "Time constant in ms"},
                "gain": {
                    "type": "number",
                    "description": "Steady-state counts/s at full command (maxVel)",
                },
            },
            ["motor_index", "gain"],
        ),
    ),
    Tool(
        name="drive",
        description="Open-loop drive, 0 = full reverse, 64 = stop, 127 = full forward",
        inputSchema=_schema(
            {
                "motor_index": _MOTOR,
                "speed": {"type": "integer", "minimum": 0, "maximum": 127},
            },
            ["motor_index", "speed"],
        ),
    ),
    Tool(
        name="drive_pwm",
        description="Signed duty drive, -32767..32767",
        inputSchema=_schema(
            {
                "motor_index": _MOTOR,
                "pwm": {"type": "integer", "minimum": -32767, "maximum": 32767},
            },
            ["motor_index", "pwm"],
        ),
    ),
    Tool(
        name="read_speed",
        description="Read encoder speed in counts per second",
        inputSchema=_schema({"motor_index": _MOTOR}, ["motor_index"]),
    ),
    Tool(
        name="read_currents",
        description="Read both motor currents in 10 mA units",
        inputSchema=_schema({}, []),
    ),
    Tool(
        name="read_pwm",
        description="Read the applied duty of both motors",
        inputSchema=_schema({}, []),
    ),
    Tool(
        name="reset_encoder",
        description="Zero both encoder counters",
        inputSchema=_schema({}, []),
    ),
    Tool(
        name="read_velocity_pid",
        description="Read the stored velocity PID and QPPS",
        inputSchema=_schema({"motor_index": _MOTOR}, ["motor_index"]),
    ),
    Tool(
        name="set_velocity_pid",
        description="Write velocity PID gains and QPPS",
        inputSchema=_schema(
            {
                "motor_index": _MOTOR,
                "p": _GAIN,
                "i": _GAIN,
                "d": _GAIN,
                "kp": _FLOAT_GAIN,
                "ki": _FLOAT_GAIN,
                "kd": _FLOAT_GAIN,
                "qpps": {"type": "integer", "description": "Encoder speed at full duty"},
            },
            ["motor_index", "qpps"],
        ),
    ),
    Tool(
        name="read_position_pid",
        description="Read the stored position PID",
        inputSchema=_schema({"motor_index": _MOTOR}, ["motor_index"]),
    ),
    Tool(
        name="set_position_pid",
        description="Write position PID gains and limits",
        inputSchema=_schema(
            {
                "motor_index": _MOTOR,
                "p": _GAIN,
                "i": _GAIN,
                "d": _GAIN,
                "kp": _FLOAT_GAIN,
                "ki": _FLOAT_GAIN,
                "kd": _FLOAT_GAIN,
                "max_i": {"type": "integer", "description": "Integral windup limit"},
                "deadzone": {"type": "integer"},
                "min": {"type": "integer", "description": "Minimum position"},
                "max": {"type": "integer", "description": "Maximum position"},
            },
            ["motor_index"],
        ),
    ),
    Tool(
        name="read_all_status",
        description="Read the controller's full status block",
        inputSchema=_schema({}, []),
    ),
    Tool(
        name="read_exchange_stats",
        description="Serial exchange latency and error counts per command",
        inputSchema=_schema(
            {"reset": {"type": "boolean", "description": "Clear after reading"}},
            [],
        ),
    ),
]


# =============================================================================
# Handlers
# =============================================================================


def _list_ports(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    return {"ports": runtime.list_ports()}


def _get_status(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    return {"status": runtime.status()}


def _configure_port(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    request = ConfigurePortRequest.from_arguments(arguments)
    runtime.configure(request.port, request.baud_rate)
    return {"status": runtime.status()}


def _configure_baud(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    request = ConfigureBaudRequest.from_arguments(arguments)
    runtime.configure_baud(request.baud_rate)
    return {"status": runtime.status()}


def _set_simulation_mode(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    request = SimulationModeRequest.from_arguments(arguments)
    runtime.set_simulation_mode(request.enabled)
    return {"mode": runtime.selector.mode.value}


def _set_sim_params(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    request = SimParamsRequest.from_arguments(arguments)
    runtime.simulation.set_plant_params(request.motor, request.tau_s, request.gain)
    return {"motor_index": request.motor, **runtime.simulation.plant_params(request.motor)}


def _drive(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    request = DriveRequest.from_arguments(arguments)
    driver = MotorDriver.from_runtime(runtime)
    driver.drive(request.motor, request.speed)
    return {"motor_index": request.motor, "speed": request.speed, "backend": driver.backend_name}


def _drive_pwm(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    request = DrivePwmRequest.from_arguments(arguments)
    driver = MotorDriver.from_runtime(runtime)
    driver.drive_pwm(request.motor, request.pwm)
    return {"motor_index": request.motor, "pwm": request.pwm, "backend": driver.backend_name}


def _read_speed(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    request = MotorRequest.from_arguments(arguments)
    driver = MotorDriver.from_runtime(runtime)
    return {
        "motor_index": request.motor,
        "speed": driver.read_speed(request.motor),
        "backend": driver.backend_name,
    }


def _read_currents(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    return {"currents": asdict(MotorDriver.from_runtime(runtime).read_currents())}


def _read_pwm(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    return {"pwm": asdict(MotorDriver.from_runtime(runtime).read_pwm())}


def _reset_encoder(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    MotorDriver.from_runtime(runtime).reset_encoder()
    return {}


def _read_velocity_pid(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    request = MotorRequest.from_arguments(arguments)
    pid = MotorDriver.from_runtime(runtime).read_velocity_pid(request.motor)
    return {"motor_index": request.motor, "pid": pid.to_dict()}


def _set_velocity_pid(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    request = VelocityPidRequest.from_arguments(arguments)
    MotorDriver.from_runtime(runtime).write_velocity_pid(request.motor, request.pid)
    return {"motor_index": request.motor, "pid": request.pid.to_dict()}


def _read_position_pid(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    request = MotorRequest.from_arguments(arguments)
    pid = MotorDriver.from_runtime(runtime).read_position_pid(request.motor)
    return {"motor_index": request.motor, "pid": pid.to_dict()}


def _set_position_pid(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    request = PositionPidRequest.from_arguments(arguments)
    MotorDriver.from_runtime(runtime).write_position_pid(request.motor, request.pid)
    return {"motor_index": request.motor, "pid": request.pid.to_dict()}


def _read_all_status(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    driver = MotorDriver.from_runtime(runtime)
    return {"status": driver.read_all_status().to_dict(), "backend": driver.backend_name}


def _read_exchange_stats(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
    data = runtime.stats.to_dict()
    if arguments.get("reset") is True:
        runtime.stats.reset()
    return {"stats": data}


HANDLERS: dict[str, Handler] = {
    "list_ports": _list_ports,
    "get_status": _get_status,
    "configure_port": _configure_port,
    "configure_baud": _configure_baud,
    "set_simulation_mode": _set_simulation_mode,
    "set_sim_params": _set_sim_params,
    "drive": _drive,
    "drive_pwm": _drive_pwm,
    "read_speed": _read_speed,
    "read_currents": _read_currents,
    "read_pwm": _read_pwm,
    "reset_encoder": _reset_encoder,
    "read_velocity_pid": _read_velocity_pid,
    "set_velocity_pid": _set_velocity_pid,
    "read_position_pid": _read_position_pid,
    "set_position_pid": _set_position_pid,
    "read_all_status": _read_all_status,
    "read_exchange_stats": _read_exchange_stats,
}
