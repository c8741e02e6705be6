"""Error taxonomy for roboclaw-mcp.

Every failure in the driver, simulation and tuning layers is raised as one
of the classes below. The MCP tool layer catches ``RoboclawError`` and turns
it into a ``{"success": false}`` payload; nothing in the core swallows them.

Hierarchy:
    RoboclawError
    ├── TransportError          channel absent, write failed, read failed
    │   └── TransportTimeoutError   read returned zero bytes within timeout
    ├── ProtocolError           response too short or malformed
    │   └── CrcMismatchError        trailing CRC does not match
    ├── LogicalError            bad motor index, out-of-range parameter
    ├── EstimationError         not enough data, no step, degenerate fit
    └── ConcurrencyError        lock could not be acquired

Example:
    from roboclaw_mcp.errors import RoboclawError, TransportError

    try:
        speed = driver.read_speed(1)
    except TransportError:
        logger.warning("Controller not responding")
    except RoboclawError as e:
        logger.error("Read failed", error=str(e))
"""

from __future__ import annotations

__all__ = [
    "RoboclawError",
    "TransportError",
    "TransportTimeoutError",
    "ProtocolError",
    "CrcMismatchError",
    "LogicalError",
    "EstimationError",
    "ConcurrencyError",
]


class RoboclawError(Exception):
    """Base class for all roboclaw-mcp errors."""


class TransportError(RoboclawError):
    """Serial channel is absent, closed, or an I/O call failed."""


class TransportTimeoutError(TransportError):
    """Read completed without error but returned no bytes before timeout."""


class ProtocolError(RoboclawError):
    """Response bytes do not form a valid reply for the command."""


class CrcMismatchError(ProtocolError):
    """Received CRC16 differs from the CRC computed over the reply.

    Attributes:
        expected: CRC computed over address, command and payload.
        received: CRC carried in the last two bytes of the reply.
    """

    def __init__(self, expected: int, received: int) -> None:
        """Create a CRC mismatch error.

        Args:
            expected: CRC computed locally.
            received: CRC read from the wire.
        """
        super().__init__(
            f"CRC mismatch: expected 0x{expected:04X}, received 0x{received:04X}"
        )
        self.expected = expected
        self.received = received


class LogicalError(RoboclawError, ValueError):
    """Caller supplied an invalid argument or the runtime is misconfigured."""


class EstimationError(RoboclawError):
    """An estimator or gain synthesis step cannot produce a result."""


class ConcurrencyError(RoboclawError):
    """A shared-state lock could not be acquired within its timeout."""
