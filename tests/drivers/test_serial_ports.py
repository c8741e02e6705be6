"""Tests for serial port discovery and the SerialPort protocol."""

from __future__ import annotations

from roboclaw_mcp.drivers.serial import (
    DEFAULT_READ_TIMEOUT_S,
    PortEnumerator,
    SerialPort,
    list_serial_ports,
    open_serial_port,
)
from tests.helpers import FakePortEnumerator, MockSerialPort, assert_implements_protocol


class TestListSerialPorts:
    def test_returns_sorted_device_paths(self) -> None:
        enumerator = FakePortEnumerator("/dev/ttyUSB0", "/dev/ttyACM1", "/dev/ttyACM0")
        assert list_serial_ports(enumerator) == [
            "/dev/ttyACM0",
            "/dev/ttyACM1",
            "/dev/ttyUSB0",
        ]

    def test_no_ports(self) -> None:
        assert list_serial_ports(FakePortEnumerator()) == []

    def test_default_enumerator_is_pyserial(self, monkeypatch) -> None:
        """Without an enumerator the pyserial list_ports module is asked."""
        from roboclaw_mcp.drivers import serial as serial_module

        monkeypatch.setattr(
            serial_module.list_ports, "comports", lambda: FakePortEnumerator("COM3").comports()
        )
        assert list_serial_ports() == ["COM3"]


class TestOpenSerialPort:
    def test_uses_read_timeout(self, monkeypatch) -> None:
        calls: list[tuple] = []

        def fake_serial(port, baudrate, timeout):
            calls.append((port, baudrate, timeout))
            return MockSerialPort()

        from roboclaw_mcp.drivers import serial as serial_module

        monkeypatch.setattr(serial_module.serial, "Serial", fake_serial)
        port = open_serial_port("/dev/ttyACM0", 115200)

        assert calls == [("/dev/ttyACM0", 115200, DEFAULT_READ_TIMEOUT_S)]
        assert port.is_open


class TestProtocols:
    def test_mock_port_satisfies_serial_port(self) -> None:
        assert_implements_protocol(MockSerialPort(), SerialPort)

    def test_fake_enumerator_satisfies_port_enumerator(self) -> None:
        assert_implements_protocol(FakePortEnumerator(), PortEnumerator)
