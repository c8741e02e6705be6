"""Packet serial framing for RoboClaw-style controllers.

Request layout::

    [address, command, payload..., crc_hi, crc_lo]

Reply layout::

    [payload..., crc_hi, crc_lo]

The reply CRC covers the address and command of the request followed by the
reply payload. CRC16 is CCITT/XMODEM: seed 0, polynomial 0x1021, MSB first.

Command codes used by the driver are collected in ``Command``.
"""

from __future__ import annotations

from enum import IntEnum

from roboclaw_mcp.errors import CrcMismatchError, ProtocolError

__all__ = [
    "ACK",
    "Command",
    "calc_crc",
    "parse_response",
    "with_crc",
]

#: Single-byte acknowledgement returned by write commands.
ACK = 0xFF

_CRC_POLY = 0x1021


class Command(IntEnum):
    """Packet serial command codes."""

    M1_DRIVE = 6
    M2_DRIVE = 7
    M1_READ_SPEED = 18
    M2_READ_SPEED = 19
    RESET_ENCODERS = 20
    M1_SET_VELOCITY_PID = 28
    M2_SET_VELOCITY_PID = 29
    M1_DUTY = 32
    M2_DUTY = 33
    READ_PWMS = 48
    READ_CURRENTS = 49
    M1_READ_VELOCITY_PID = 55
    M2_READ_VELOCITY_PID = 56
    M1_SET_POSITION_PID = 61
    M2_SET_POSITION_PID = 62
    M1_READ_POSITION_PID = 63
    M2_READ_POSITION_PID = 64
    READ_ALL_STATUS = 73


def calc_crc(data: bytes) -> int:
    """Compute CRC16-CCITT (XMODEM) over ``data``.

    Args:
        data: Bytes to checksum.

    Returns:
        16-bit CRC.

    Example:
        >>> calc_crc(b"")
        0
        >>> hex(calc_crc(b"123456789"))
        '0x31c3'
    """
    crc = 0
    for byte in data:
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ _CRC_POLY) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return crc


def with_crc(packet: bytes) -> bytes:
    """Return ``packet`` with its CRC16 appended big-endian."""
    return bytes(packet) + calc_crc(packet).to_bytes(2, "big")


def parse_response(resp: bytes, address: int, command: int) -> bytes:
    """Validate a reply and strip its CRC.

    Args:
        resp: Raw bytes read from the channel.
        address: Controller address the request was sent to.
        command: Command code of the request.

    Returns:
        Reply payload without the trailing CRC.

    Raises:
        ProtocolError: Fewer than 3 bytes received.
        CrcMismatchError: Trailing CRC differs from the computed one.

    Example:
        >>> payload = bytes([0x00, 0x10])
        >>> crc = calc_crc(bytes([0x80, 18]) + payload)
        >>> parse_response(payload + crc.to_bytes(2, "big"), 0x80, 18)
        b'\\x00\\x10'
    """
    if len(resp) < 3:
        raise ProtocolError(
            f"Response to command {command} too short: {len(resp)} bytes"
        )
    payload = bytes(resp[:-2])
    received = int.from_bytes(resp[-2:], "big")
    expected = calc_crc(bytes([address & 0xFF, command & 0xFF]) + payload)
    if received != expected:
        raise CrcMismatchError(expected, received)
    return payload
