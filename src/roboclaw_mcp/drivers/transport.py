"""Serial transport and the shared controller handle.

``send_and_read`` performs one request/response exchange on an open channel:
write the whole request, then a single read of up to ``READ_BUFFER_SIZE``
bytes bounded by the channel's 100 ms timeout.

``ControllerContext`` owns the one ``ControllerHandle`` of the process and
serializes every exchange behind its lock. Reconfiguration closes the old
channel before opening the new one.

Example:
    context = ControllerContext()
    context.configure("/dev/ttyACM0", baud_rate=115200)
    reply = context.exchange(with_crc(bytes([0x80, 18])))

Testing:
    context = ControllerContext._create_with_serial(MockSerialPort())
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass

from roboclaw_mcp.drivers.serial import SerialPort, open_serial_port
from roboclaw_mcp.errors import LogicalError, TransportError, TransportTimeoutError
from roboclaw_mcp.observability import get_logger
from roboclaw_mcp.utils.locks import DEFAULT_LOCK_TIMEOUT_S, hold

__all__ = [
    "DEFAULT_ADDRESS",
    "DEFAULT_BAUD_RATE",
    "READ_BUFFER_SIZE",
    "ControllerContext",
    "ControllerHandle",
    "SerialOpener",
    "send_and_read",
]

logger = get_logger(__name__)

DEFAULT_ADDRESS = 0x80
DEFAULT_BAUD_RATE = 115200
READ_BUFFER_SIZE = 1024

SerialOpener = Callable[[str, int], SerialPort]


@dataclass
class ControllerHandle:
    """Connection parameters plus the open channel, if any.

    Attributes:
        address: Packet serial address byte.
        baud_rate: Line speed used when (re)opening the port.
        port: Device path of the current or last requested port.
        channel: Open serial channel, None when disconnected.
    """

    address: int = DEFAULT_ADDRESS
    baud_rate: int = DEFAULT_BAUD_RATE
    port: str | None = None
    channel: SerialPort | None = None

    @property
    def is_connected(self) -> bool:
        """True if a channel is present and open."""
        return self.channel is not None and bool(self.channel.is_open)


def send_and_read(request: bytes, channel: SerialPort | None) -> bytes:
    """Write a request and perform one bounded read.

    Args:
        request: Complete request packet (CRC already appended if needed).
        channel: Open serial channel.

    Returns:
        Raw reply bytes, at most ``READ_BUFFER_SIZE``.

    Raises:
        TransportError: Channel absent or closed, write failed or was short,
            or the read raised.
        TransportTimeoutError: The read returned no bytes.
    """
    if channel is None or not channel.is_open:
        raise TransportError("Serial port not configured")

    try:
        channel.reset_input_buffer()
        written = channel.write(request)
    except Exception as e:
        raise TransportError(f"Failed to write to serial port: {e}") from e
    if written is not None and written != len(request):
        raise TransportError(f"Short write: {written} of {len(request)} bytes")

    try:
        response = channel.read(READ_BUFFER_SIZE)
    except Exception as e:
        raise TransportError(f"Failed to read from serial port: {e}") from e
    if not response:
        raise TransportTimeoutError("No response from controller")

    logger.debug("Exchange", request=request, response=response)
    return bytes(response)


class ControllerContext:
    """Process-wide controller handle behind an exclusive lock.

    Thread-safe: each ``exchange`` holds the lock for exactly one
    send/read; reconfiguration holds it while swapping channels.
    """

    def __init__(
        self,
        address: int = DEFAULT_ADDRESS,
        baud_rate: int = DEFAULT_BAUD_RATE,
        opener: SerialOpener | None = None,
        lock_timeout_s: float = DEFAULT_LOCK_TIMEOUT_S,
    ) -> None:
        """Create a disconnected context.

        Args:
            address: Packet serial address byte (default 0x80).
            baud_rate: Default line speed (default 115200).
            opener: Callable ``(port, baud) -> SerialPort``; defaults to
                pyserial with a 100 ms read timeout.
            lock_timeout_s: Seconds to wait for the handle lock.
        """
        self._handle = ControllerHandle(address=address, baud_rate=baud_rate)
        self._opener: SerialOpener = opener or open_serial_port
        self._lock = threading.Lock()
        self._lock_timeout_s = lock_timeout_s

    @classmethod
    def _create_with_serial(
        cls,
        serial_port: SerialPort,
        port_name: str = "/dev/mock",
        address: int = DEFAULT_ADDRESS,
        lock_timeout_s: float = DEFAULT_LOCK_TIMEOUT_S,
    ) -> ControllerContext:
        """Create a context already holding an injected channel (for testing).

        Args:
            serial_port: Mock or real port implementing SerialPort.
            port_name: Port name recorded in the handle.
            address: Packet serial address byte.
            lock_timeout_s: Seconds to wait for the handle lock.

        Returns:
            Connected ControllerContext whose opener returns ``serial_port``.
        """
        instance = cls(
            address=address,
            opener=lambda port, baud: serial_port,
            lock_timeout_s=lock_timeout_s,
        )
        instance._handle.port = port_name
        instance._handle.channel = serial_port
        return instance

    @property
    def address(self) -> int:
        """Packet serial address byte."""
        return self._handle.address

    @property
    def port(self) -> str | None:
        """Current or last requested port."""
        return self._handle.port

    @property
    def baud_rate(self) -> int:
        """Current line speed."""
        return self._handle.baud_rate

    @property
    def is_connected(self) -> bool:
        """True if an open channel is present."""
        return self._handle.is_connected

    def exchange(self, request: bytes) -> bytes:
        """Send one request and return the raw reply.

        Args:
            request: Complete request packet.

        Returns:
            Raw reply bytes.

        Raises:
            TransportError: Channel absent or I/O failure.
            TransportTimeoutError: No reply within the read timeout.
            ConcurrencyError: Handle lock not acquired in time.
        """
        with hold(self._lock, self._lock_timeout_s, "controller"):
            return send_and_read(request, self._handle.channel)

    def configure(self, port: str, baud_rate: int | None = None) -> None:
        """Open ``port``, replacing any existing channel.

        Args:
            port: Device path to open.
            baud_rate: Line speed; keeps the current rate when None.

        Raises:
            LogicalError: Empty port name or non-positive baud rate.
            TransportError: The port could not be opened. The handle is
                left disconnected.
            ConcurrencyError: Handle lock not acquired in time.
        """
        if not port:
            raise LogicalError("Port name must not be empty")
        if baud_rate is not None and baud_rate <= 0:
            raise LogicalError(f"Baud rate must be positive, got {baud_rate}")

        with hold(self._lock, self._lock_timeout_s, "controller"):
            self._close_channel()
            if baud_rate is not None:
                self._handle.baud_rate = baud_rate
            self._handle.port = port
            self._open_channel()

        logger.info("Port configured", port=port, baud=self._handle.baud_rate)

    def configure_baud(self, baud_rate: int) -> None:
        """Reopen the current port at a new baud rate.

        Raises:
            LogicalError: No port configured yet, or non-positive baud rate.
            TransportError: The port could not be reopened.
            ConcurrencyError: Handle lock not acquired in time.
        """
        if baud_rate <= 0:
            raise LogicalError(f"Baud rate must be positive, got {baud_rate}")

        with hold(self._lock, self._lock_timeout_s, "controller"):
            if not self._handle.port:
                raise LogicalError("No port configured")
            self._close_channel()
            self._handle.baud_rate = baud_rate
            self._open_channel()

        logger.info("Baud rate configured", port=self._handle.port, baud=baud_rate)

    def disconnect(self) -> None:
        """Close and drop the channel, keeping the port name."""
        with hold(self._lock, self._lock_timeout_s, "controller"):
            self._close_channel()

    def _open_channel(self) -> None:
        """Open the handle's port (lock must be held)."""
        assert self._handle.port is not None
        try:
            self._handle.channel = self._opener(
                self._handle.port, self._handle.baud_rate
            )
        except Exception as e:
            self._handle.channel = None
            raise TransportError(
                f"Failed to open serial port {self._handle.port}: {e}"
            ) from e

    def _close_channel(self) -> None:
        """Close the current channel if any (lock must be held)."""
        channel = self._handle.channel
        self._handle.channel = None
        if channel is None:
            return
        try:
            channel.close()
        except Exception as e:
            logger.warning("Error closing serial port", port=self._handle.port, error=str(e))
