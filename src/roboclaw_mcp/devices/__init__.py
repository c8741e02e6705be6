"""Device layer for roboclaw-mcp.

MotorDriver hides which backend (hardware or digital twin) is active and
adds composite operations such as QPPS measurement.
"""

from roboclaw_mcp.devices.controller import MotorDriver, QppsMeasurement

__all__ = [
    "MotorDriver",
    "QppsMeasurement",
]
