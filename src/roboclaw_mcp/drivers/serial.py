"""Serial channel abstractions over pyserial.

The controller transport only needs a handful of ``serial.Serial`` methods.
They are captured in the ``SerialPort`` protocol so tests can inject a
mock port that answers with queued replies.

Protocols:
    SerialPort: Subset of ``serial.Serial`` used by the transport
    PortEnumerator: Subset of ``serial.tools.list_ports`` used for discovery

Functions:
    open_serial_port: Default opener, ``serial.Serial(port, baud, timeout=0.1)``
    list_serial_ports: Device paths of all serial ports on the system

Example:
    class MockSerialPort:
        is_open = True

        def __init__(self):
            self.written = []
            self._replies = []

        def queue_response(self, data: bytes):
            self._replies.append(data)

        def write(self, data):
            self.written.append(bytes(data))
            return len(data)

        def read(self, size=1):
            return self._replies.pop(0) if self._replies else b""

        def reset_input_buffer(self):
            pass

        def close(self):
            self.is_open = False

    handle = ControllerContext._create_with_serial(MockSerialPort())
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

import serial
from serial.tools import list_ports

__all__ = [
    "DEFAULT_READ_TIMEOUT_S",
    "PortEnumerator",
    "SerialPort",
    "list_serial_ports",
    "open_serial_port",
]

#: Read timeout applied to every opened channel.
DEFAULT_READ_TIMEOUT_S = 0.1


@runtime_checkable
class SerialPort(Protocol):  # pragma: no cover
    """Protocol for a byte-oriented serial channel.

    Matches the subset of ``serial.Serial`` used by the packet transport.
    ``read`` must honour the timeout configured when the port was opened
    and return fewer bytes (possibly none) when it expires.
    """

    @property
    def is_open(self) -> bool:
        """True while the port is open and usable."""
        ...

    def write(self, data: bytes) -> int | None:
        """Transmit bytes.

        Args:
            data: Complete request packet.

        Returns:
            Number of bytes written, or None when the driver cannot tell.

        Raises:
            serial.SerialException: On I/O failure.
        """
        ...

    def read(self, size: int = 1) -> bytes:
        """Read up to ``size`` bytes, blocking at most the port timeout.

        Args:
            size: Maximum bytes to return.

        Returns:
            Bytes received; empty if the timeout expired first.

        Raises:
            serial.SerialException: On I/O failure.
        """
        ...

    def reset_input_buffer(self) -> None:
        """Discard any bytes waiting in the receive buffer."""
        ...

    def close(self) -> None:
        """Close the port. Safe to call more than once."""
        ...


@runtime_checkable
class PortEnumerator(Protocol):  # pragma: no cover
    """Protocol for discovering serial ports.

    Example:
        class MockComPort:
            device = "/dev/ttyACM0"

        class MockPortEnumerator:
            def comports(self):
                return [MockComPort()]
    """

    def comports(self) -> list[Any]:
        """Return port info objects exposing a ``device`` attribute."""
        ...


def open_serial_port(port: str, baud_rate: int) -> SerialPort:
    """Open a pyserial port with the transport's read timeout.

    Args:
        port: Device path, e.g. "/dev/ttyACM0" or "COM3".
        baud_rate: Line speed in baud.

    Returns:
        Open ``serial.Serial`` instance.

    Raises:
        serial.SerialException: If the device cannot be opened.
        ValueError: If the baud rate is rejected by pyserial.
    """
    return serial.Serial(port, baudrate=baud_rate, timeout=DEFAULT_READ_TIMEOUT_S)


def list_serial_ports(enumerator: PortEnumerator | None = None) -> list[str]:
    """List serial device paths on this system.

    Args:
        enumerator: Optional replacement for ``serial.tools.list_ports``.

    Returns:
        Sorted device paths such as ["/dev/ttyACM0", "/dev/ttyUSB0"].

    Example:
        >>> from roboclaw_mcp.drivers.serial import list_serial_ports
        >>> for device in list_serial_ports():
        ...     print(device)
    """
    source = enumerator if enumerator is not None else list_ports
    return sorted(str(info.device) for info in source.comports())
