"""Packet serial motor controller backend.

Implements ``MotorBackend`` over a ``ControllerContext``. Each operation
builds ``[address, command, fields...]``, appends the CRC16 (the velocity
and position PID reads are sent without one), performs exactly one
exchange under the handle lock and validates the reply.

Commands:
    6 / 7     Drive open loop, byte 0..127 centred on 64
    32 / 33   Drive signed duty, i16
    18 / 19   Read speed, u32 magnitude + direction byte
    48        Read PWM readback, 2 x i16
    49        Read currents, 2 x u16
    20        Reset encoders
    28 / 29   Write velocity PID, D P I QPPS
    55 / 56   Read velocity PID (no request CRC)
    61 / 62   Write position PID, D P I MaxI Deadzone Min Max
    63 / 64   Read position PID (no request CRC)
    73        Read all status, 56 bytes

Write commands are acknowledged with 0xFF. A bare single-byte ACK is
accepted; a longer ACK reply must carry a valid CRC.

Example:
    context = ControllerContext()
    context.configure("/dev/ttyACM0")
    backend = HardwareBackend(context)
    backend.drive_pwm(1, 16000)
    print(backend.read_speed(1))

Testing:
    mock = MockSerialPort()
    mock.queue_response(b"\\xff")
    backend = HardwareBackend._create_with_serial(mock)
    backend.drive(1, 100)
"""

from __future__ import annotations

import struct
import time

from roboclaw_mcp.drivers.motors.types import (
    PWM_MAX,
    ControllerStatus,
    MotorCurrents,
    PositionPid,
    PwmReadback,
    VelocityPid,
    check_motor,
)
from roboclaw_mcp.drivers.protocol import ACK, Command, parse_response, with_crc
from roboclaw_mcp.drivers.serial import SerialPort
from roboclaw_mcp.drivers.transport import ControllerContext
from roboclaw_mcp.errors import (
    CrcMismatchError,
    LogicalError,
    ProtocolError,
    RoboclawError,
    TransportTimeoutError,
)
from roboclaw_mcp.observability import ExchangeStats, get_logger

__all__ = ["HardwareBackend", "STATUS_FORMAT"]

logger = get_logger(__name__)

#: Read All Status reply layout, big-endian.
STATUS_FORMAT = ">IIHHHHhhHHIIiiiiHHHH"

_VELOCITY_PID_FORMAT = ">iiii"
_POSITION_PID_FORMAT = ">iiiiiii"
_SPEED_FORMAT = ">IB"
_PAIR_U16_FORMAT = ">HH"
_PAIR_I16_FORMAT = ">hh"

_CRCLESS_COMMANDS = frozenset(
    {
        Command.M1_READ_VELOCITY_PID,
        Command.M2_READ_VELOCITY_PID,
        Command.M1_READ_POSITION_PID,
        Command.M2_READ_POSITION_PID,
    }
)


def _error_type(exc: Exception) -> str:
    if isinstance(exc, TransportTimeoutError):
        return "timeout"
    if isinstance(exc, CrcMismatchError):
        return "crc"
    if isinstance(exc, ProtocolError):
        return "protocol"
    if isinstance(exc, RoboclawError):
        return type(exc).__name__
    return "unexpected"


def _pack(fmt: str, *values: int) -> bytes:
    try:
        return struct.pack(fmt, *values)
    except struct.error as e:
        raise LogicalError(f"PID field out of range: {e}") from e


class HardwareBackend:
    """Motor backend talking to a real controller over packet serial.

    Thread-safe: every exchange goes through ``ControllerContext.exchange``.
    """

    name = "hardware"

    def __init__(
        self,
        context: ControllerContext,
        stats: ExchangeStats | None = None,
    ) -> None:
        """Create a backend bound to a controller context.

        Args:
            context: Shared controller handle.
            stats: Optional exchange statistics collector.
        """
        self._context = context
        self._stats = stats

    @classmethod
    def _create_with_serial(
        cls,
        serial_port: SerialPort,
        stats: ExchangeStats | None = None,
    ) -> HardwareBackend:
        """Create a backend over an injected serial port (for testing)."""
        return cls(ControllerContext._create_with_serial(serial_port), stats=stats)

    @property
    def context(self) -> ControllerContext:
        """Underlying controller context."""
        return self._context

    # =========================================================================
    # Exchange helpers
    # =========================================================================

    def _transact(self, command: int, fields: bytes = b"") -> bytes:
        """Frame and send one command, returning the raw reply."""
        packet = bytes([self._context.address, command]) + fields
        request = packet if command in _CRCLESS_COMMANDS else with_crc(packet)
        return self._context.exchange(request)

    def _query(self, command: int, fmt: str) -> tuple[int, ...]:
        """Send a read command and unpack its validated payload."""
        start = time.perf_counter()
        try:
            reply = self._transact(command)
            payload = self._validated(reply, command)
            size = struct.calcsize(fmt)
            if len(payload) < size:
                raise ProtocolError(
                    f"Reply to command {command} has {len(payload)} bytes, "
                    f"expected {size}"
                )
        except RoboclawError as e:
            self._record(command, start, e)
            raise
        self._record(command, start, None)
        return struct.unpack(fmt, payload[:size])

    def _command(self, command: int, fields: bytes = b"") -> None:
        """Send a write command and require an ACK."""
        start = time.perf_counter()
        try:
            reply = self._transact(command, fields)
            if reply != bytes([ACK]):
                if len(reply) < 3 or self._validated(reply, command)[:1] != bytes([ACK]):
                    raise ProtocolError(
                        f"Command {command} not acknowledged: {reply.hex()}"
                    )
        except RoboclawError as e:
            self._record(command, start, e)
            raise
        self._record(command, start, None)

    def _validated(self, reply: bytes, command: int) -> bytes:
        try:
            return parse_response(reply, self._context.address, command)
        except CrcMismatchError as e:
            logger.warning(
                "CRC mismatch",
                command=command,
                expected=f"0x{e.expected:04X}",
                received=f"0x{e.received:04X}",
                response=reply,
            )
            raise

    def _record(self, command: int, start: float, exc: Exception | None) -> None:
        if self._stats is None:
            return
        self._stats.record_exchange(
            command=command,
            duration_ms=(time.perf_counter() - start) * 1000.0,
            success=exc is None,
            error_type=None if exc is None else _error_type(exc),
        )

    # =========================================================================
    # Drive
    # =========================================================================

    def drive(self, motor: int, speed: int) -> None:
        """Open-loop drive, byte clamped to [0, 127] (64 = stop)."""
        command = Command.M1_DRIVE if check_motor(motor) == 1 else Command.M2_DRIVE
        value = max(0, min(127, int(speed)))
        self._command(command, bytes([value]))

    def drive_pwm(self, motor: int, pwm: int) -> None:
        """Signed duty drive, clamped to [-32767, 32767]."""
        command = Command.M1_DUTY if check_motor(motor) == 1 else Command.M2_DUTY
        value = max(-PWM_MAX, min(PWM_MAX, int(pwm)))
        self._command(command, struct.pack(">h", value))

    # =========================================================================
    # Readings
    # =========================================================================

    def read_speed(self, motor: int) -> int:
        """Signed speed in counts/s.

        Raises:
            ProtocolError: Direction byte is neither 0 nor 1.
        """
        command = (
            Command.M1_READ_SPEED if check_motor(motor) == 1 else Command.M2_READ_SPEED
        )
        magnitude, direction = self._query(command, _SPEED_FORMAT)
        if direction == 0:
            return magnitude
        if direction == 1:
            return -magnitude
        raise ProtocolError(f"Invalid speed direction byte: {direction}")

    def read_currents(self) -> MotorCurrents:
        """Motor currents in 10 mA units, as (m1, m2) unsigned words."""
        m1, m2 = self._query(Command.READ_CURRENTS, _PAIR_U16_FORMAT)
        return MotorCurrents(m1=m1, m2=m2)

    def read_pwm(self) -> PwmReadback:
        """Applied duty for both motors, signed, full scale 32767."""
        m1, m2 = self._query(Command.READ_PWMS, _PAIR_I16_FORMAT)
        return PwmReadback(m1=m1, m2=m2)

    def read_all_status(self) -> ControllerStatus:
        """Decode the 56-byte Read All Status reply."""
        return ControllerStatus(*self._query(Command.READ_ALL_STATUS, STATUS_FORMAT))

    def reset_encoder(self) -> None:
        """Zero both encoder counters.

        Raises:
            ProtocolError: The controller did not acknowledge.
            TransportError: The exchange failed.
        """
        self._command(Command.RESET_ENCODERS)
        logger.info("Encoders reset")

    # =========================================================================
    # PID parameters
    # =========================================================================

    def read_velocity_pid(self, motor: int) -> VelocityPid:
        """Read the velocity PID of one motor.

        The request goes out without a CRC; the reply CRC is still checked.

        Args:
            motor: Motor index, 1 or 2.

        Returns:
            VelocityPid with raw 16.16 gains and QPPS, all signed 32-bit.

        Raises:
            LogicalError: Bad motor index.
            CrcMismatchError: Reply CRC does not match.
            TransportError: The exchange failed.
        """
        command = (
            Command.M1_READ_VELOCITY_PID
            if check_motor(motor) == 1
            else Command.M2_READ_VELOCITY_PID
        )
        d, p, i, qpps = self._query(command, _VELOCITY_PID_FORMAT)
        return VelocityPid(p=p, i=i, d=d, qpps=qpps)

    def write_velocity_pid(self, motor: int, pid: VelocityPid) -> None:
        """Write the velocity PID of one motor.

        Args:
            motor: Motor index, 1 or 2.
            pid: Gains and QPPS, sent as D, P, I, QPPS.

        Raises:
            LogicalError: Bad motor index or a field outside int32.
            ProtocolError: The controller did not acknowledge.
        """
        command = (
            Command.M1_SET_VELOCITY_PID
            if check_motor(motor) == 1
            else Command.M2_SET_VELOCITY_PID
        )
        fields = _pack(_VELOCITY_PID_FORMAT, pid.d, pid.p, pid.i, pid.qpps)
        self._command(command, fields)
        logger.info("Velocity PID written", motor=motor, p=pid.p, i=pid.i, d=pid.d)

    def read_position_pid(self, motor: int) -> PositionPid:
        """Read the position PID of one motor (request sent without a CRC).

        Returns:
            PositionPid decoded from seven signed 32-bit fields.
        """
        command = (
            Command.M1_READ_POSITION_PID
            if check_motor(motor) == 1
            else Command.M2_READ_POSITION_PID
        )
        d, p, i, max_i, deadzone, low, high = self._query(command, _POSITION_PID_FORMAT)
        return PositionPid(
            p=p, i=i, d=d, max_i=max_i, deadzone=deadzone, min=low, max=high
        )

    def write_position_pid(self, motor: int, pid: PositionPid) -> None:
        """Write the position PID, fields in D, P, I, MaxI, Deadzone, Min, Max order.

        Raises:
            LogicalError: Bad motor index or a field outside int32.
            ProtocolError: The controller did not acknowledge.
        """
        command = (
            Command.M1_SET_POSITION_PID
            if check_motor(motor) == 1
            else Command.M2_SET_POSITION_PID
        )
        fields = _pack(
            _POSITION_PID_FORMAT,
            pid.d,
            pid.p,
            pid.i,
            pid.max_i,
            pid.deadzone,
            pid.min,
            pid.max,
        )
        self._command(command, fields)
        logger.info("Position PID written", motor=motor, p=pid.p, i=pid.i, d=pid.d)
