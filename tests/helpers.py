"""Test doubles shared across the roboclaw-mcp test suite.

Provides:
- ManualClock: deterministic Clock whose sleep advances monotonic time
- MockSerialPort: SerialPort answering with queued replies
- crc_reply: builds a reply with a valid trailing CRC
- FakeComPort / FakePortEnumerator: stand-ins for pyserial port discovery
- assert_implements_protocol: runtime Protocol check with a useful message

Example:
    from tests.helpers import MockSerialPort, crc_reply

    port = MockSerialPort()
    port.queue_response(crc_reply(bytes([0, 0, 0, 42, 0]), command=18))
"""

from __future__ import annotations

import struct
from typing import Any

from roboclaw_mcp.drivers.protocol import calc_crc

ADDRESS = 0x80


class ManualClock:
    """Clock driven by the test; ``sleep`` advances time instantly."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MockSerialPort:
    """Mock serial port implementing the SerialPort protocol.

    Replies are handed out in order, one per ``read``. Queue an exception
    instead of bytes to make that read raise. ``reset_input_buffer`` only
    counts calls so queued replies survive it.
    """

    def __init__(self) -> None:
        self.is_open = True
        self.written: list[bytes] = []
        self.read_sizes: list[int] = []
        self.reset_count = 0
        self.write_error: Exception | None = None
        self.short_write = False
        self._replies: list[bytes | Exception] = []

    def queue_response(self, data: bytes | Exception) -> None:
        self._replies.append(data)

    @property
    def pending(self) -> int:
        return len(self._replies)

    def write(self, data: bytes) -> int:
        if self.write_error is not None:
            raise self.write_error
        self.written.append(bytes(data))
        return len(data) - 1 if self.short_write else len(data)

    def read(self, size: int = 1) -> bytes:
        self.read_sizes.append(size)
        if not self._replies:
            return b""
        item = self._replies.pop(0)
        if isinstance(item, Exception):
            raise item
        return item[:size]

    def reset_input_buffer(self) -> None:
        self.reset_count += 1

    def close(self) -> None:
        self.is_open = False


def crc_reply(payload: bytes, command: int, address: int = ADDRESS) -> bytes:
    """Reply bytes for ``command`` with a correct trailing CRC."""
    crc = calc_crc(bytes([address, command]) + payload)
    return payload + crc.to_bytes(2, "big")


def status_payload(**overrides: int) -> bytes:
    """56-byte Read All Status payload, zero except for ``overrides``."""
    fields: dict[str, Any] = {
        "tick": 0,
        "error": 0,
        "temp1": 0,
        "temp2": 0,
        "main_battery": 0,
        "logic_battery": 0,
        "m1_pwm": 0,
        "m2_pwm": 0,
        "m1_current": 0,
        "m2_current": 0,
        "m1_encoder": 0,
        "m2_encoder": 0,
        "m1_speed": 0,
        "m2_speed": 0,
        "m1_instant_speed": 0,
        "m2_instant_speed": 0,
        "m1_speed_error": 0,
        "m2_speed_error": 0,
        "m1_position_error": 0,
        "m2_position_error": 0,
    }
    fields.update(overrides)
    return struct.pack(">IIHHHHhhHHIIiiiiHHHH", *fields.values())


class FakeComPort:
    def __init__(self, device: str) -> None:
        self.device = device


class FakePortEnumerator:
    def __init__(self, *devices: str) -> None:
        self._ports = [FakeComPort(d) for d in devices]

    def comports(self) -> list[FakeComPort]:
        return list(self._ports)


def assert_implements_protocol(instance: object, protocol: type) -> None:
    """Assert ``instance`` satisfies a runtime-checkable Protocol.

    Raises:
        AssertionError: Listing the public members the instance lacks.
    """
    if isinstance(instance, protocol):
        return
    wanted = {name for name in dir(protocol) if not name.startswith("_")}
    missing = sorted(wanted - set(dir(instance)))
    raise AssertionError(
        f"{type(instance).__name__} does not implement {protocol.__name__}; "
        f"missing: {missing}"
    )
