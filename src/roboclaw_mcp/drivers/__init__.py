"""Hardware drivers and the digital twin.

Modules:
    protocol: CRC16 and packet framing
    serial: SerialPort protocol and pyserial helpers
    transport: ControllerContext, one exchange per call
    motors: Hardware and simulated backends
    config: DriverConfig, backend selection and the MotorRuntime
"""

from roboclaw_mcp.drivers.config import (
    SIMULATED_PORT,
    BackendMode,
    BackendSelector,
    DriverConfig,
    MotorRuntime,
    configure_runtime,
    get_runtime,
)
from roboclaw_mcp.drivers.protocol import calc_crc, parse_response, with_crc
from roboclaw_mcp.drivers.transport import ControllerContext, send_and_read

__all__ = [
    "SIMULATED_PORT",
    "BackendMode",
    "BackendSelector",
    "ControllerContext",
    "DriverConfig",
    "MotorRuntime",
    "calc_crc",
    "configure_runtime",
    "get_runtime",
    "parse_response",
    "send_and_read",
    "with_crc",
]
