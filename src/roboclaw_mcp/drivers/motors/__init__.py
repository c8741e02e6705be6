"""Motor controller backends.

Backends:
    HardwareBackend: Packet serial controller over a ControllerContext
    SimulatedBackend: Digital twin over a SimulationContext

Both implement the MotorBackend protocol defined in types.
"""

from roboclaw_mcp.drivers.motors.serial_controller import HardwareBackend
from roboclaw_mcp.drivers.motors.twin import (
    MotorSimState,
    SimulatedBackend,
    SimulationContext,
    SimulationState,
)
from roboclaw_mcp.drivers.motors.types import (
    ControllerStatus,
    MotorBackend,
    MotorCurrents,
    PositionPid,
    PwmReadback,
    VelocityPid,
    from_fixed,
    to_fixed,
)

__all__ = [
    "ControllerStatus",
    "HardwareBackend",
    "MotorBackend",
    "MotorCurrents",
    "MotorSimState",
    "PositionPid",
    "PwmReadback",
    "SimulatedBackend",
    "SimulationContext",
    "SimulationState",
    "VelocityPid",
    "from_fixed",
    "to_fixed",
]
