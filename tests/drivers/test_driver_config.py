"""Tests for backend selection and the process-wide MotorRuntime."""

from __future__ import annotations

import pytest
import serial

from roboclaw_mcp.drivers import config as driver_config
from roboclaw_mcp.drivers.config import (
    SIMULATED_PORT,
    BackendMode,
    BackendSelector,
    DriverConfig,
    MotorRuntime,
    configure_runtime,
    get_runtime,
)
from roboclaw_mcp.drivers.motors import HardwareBackend, SimulatedBackend
from roboclaw_mcp.errors import TransportError
from tests.helpers import FakePortEnumerator, ManualClock, MockSerialPort


class TestDriverConfig:
    def test_defaults(self) -> None:
        config = DriverConfig()
        assert config.mode is BackendMode.HARDWARE
        assert config.port == "/dev/ttyACM0"
        assert config.baud_rate == 115200
        assert config.address == 0x80

    def test_port_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ROBOCLAW_PORT", "/dev/ttyUSB3")
        assert DriverConfig().port == "/dev/ttyUSB3"


class TestBackendSelector:
    def test_toggle(self) -> None:
        selector = BackendSelector()
        assert selector.mode is BackendMode.HARDWARE
        selector.set_simulated(True)
        assert selector.simulated
        assert selector.mode is BackendMode.SIMULATED
        selector.set_simulated(False)
        assert not selector.simulated

    def test_initial_simulated(self) -> None:
        assert BackendSelector(simulated=True).simulated


class TestMotorRuntime:
    """Backend selection, configuration and status reporting."""

    def test_hardware_mode_opens_configured_port(
        self, hw_runtime: MotorRuntime, mock_port: MockSerialPort
    ) -> None:
        assert isinstance(hw_runtime.backend(), HardwareBackend)
        assert hw_runtime.controller.is_connected
        assert hw_runtime.status() == {
            "mode": "hardware",
            "port": "/dev/mock",
            "baud_rate": 115200,
            "address": 0x80,
            "connected": True,
        }

    def test_simulated_mode_never_opens_port(self) -> None:
        opened: list[str] = []
        runtime = MotorRuntime(
            DriverConfig(mode=BackendMode.SIMULATED),
            opener=lambda port, baud: opened.append(port) or MockSerialPort(),
        )
        assert isinstance(runtime.backend(), SimulatedBackend)
        assert opened == []

    def test_open_failure_at_startup_is_tolerated(self) -> None:
        """Verifies a missing controller does not prevent startup.

        Arrangement:
        1. Hardware mode with an opener that always raises.

        Assertion Strategy:
        The runtime is created in hardware mode without a channel, so a
        later configure_port can still fix it.
        """

        def opener(port: str, baud: int) -> MockSerialPort:
            raise serial.SerialException("no such device")

        runtime = MotorRuntime(DriverConfig(port="/dev/none"), opener=opener)
        assert runtime.selector.mode is BackendMode.HARDWARE
        assert not runtime.controller.is_connected

    def test_configure_simulated_port_switches_to_twin(
        self, hw_runtime: MotorRuntime, mock_port: MockSerialPort
    ) -> None:
        hw_runtime.configure(SIMULATED_PORT)
        assert hw_runtime.selector.simulated
        assert isinstance(hw_runtime.backend(), SimulatedBackend)
        assert not mock_port.is_open

    def test_configure_real_port_leaves_simulation(self, clock: ManualClock) -> None:
        runtime = MotorRuntime(
            DriverConfig(mode=BackendMode.SIMULATED),
            opener=lambda port, baud: MockSerialPort(),
            clock=clock,
        )
        runtime.configure("/dev/ttyACM2", 57600)
        assert runtime.status()["mode"] == "hardware"
        assert runtime.status()["port"] == "/dev/ttyACM2"
        assert runtime.status()["baud_rate"] == 57600

    def test_configure_failure_stays_in_hardware_mode(self, sim_runtime: MotorRuntime) -> None:
        def opener(port: str, baud: int) -> MockSerialPort:
            raise OSError("busy")

        sim_runtime.controller._opener = opener
        with pytest.raises(TransportError):
            sim_runtime.configure("/dev/ttyACM0")
        assert sim_runtime.selector.mode is BackendMode.HARDWARE
        assert not sim_runtime.controller.is_connected

    def test_set_simulation_mode_keeps_channel(
        self, hw_runtime: MotorRuntime, mock_port: MockSerialPort
    ) -> None:
        hw_runtime.set_simulation_mode(True)
        assert hw_runtime.selector.simulated
        assert mock_port.is_open
        hw_runtime.set_simulation_mode(False)
        assert isinstance(hw_runtime.backend(), HardwareBackend)

    def test_configure_baud_reopens_hardware_port(self, hw_runtime: MotorRuntime) -> None:
        hw_runtime.configure_baud(230400)
        assert hw_runtime.controller.baud_rate == 230400

    def test_list_ports_appends_simulated(self) -> None:
        runtime = MotorRuntime(
            DriverConfig(mode=BackendMode.SIMULATED),
            port_enumerator=FakePortEnumerator("/dev/ttyACM0"),
        )
        assert runtime.list_ports() == ["/dev/ttyACM0", SIMULATED_PORT]

    def test_hardware_backend_records_stats(
        self, hw_runtime: MotorRuntime, mock_port: MockSerialPort
    ) -> None:
        mock_port.queue_response(b"\xff")
        hw_runtime.backend().drive_pwm(1, 0)
        assert hw_runtime.stats.get_summary(32).succeeded == 1


class TestProcessRuntime:
    def test_get_runtime_creates_once(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(
            driver_config, "MotorRuntime", lambda: MotorRuntime(connect=False)
        )
        first = get_runtime()
        assert get_runtime() is first

    def test_configure_runtime_from_config(self) -> None:
        runtime = configure_runtime(DriverConfig(mode=BackendMode.SIMULATED))
        assert get_runtime() is runtime
        assert runtime.selector.simulated

    def test_configure_runtime_disconnects_previous(
        self, hw_runtime: MotorRuntime, mock_port: MockSerialPort, sim_runtime: MotorRuntime
    ) -> None:
        configure_runtime(hw_runtime)
        configure_runtime(sim_runtime)
        assert get_runtime() is sim_runtime
        assert not mock_port.is_open
