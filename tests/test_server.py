"""Tests for the MCP server entry point."""

from __future__ import annotations

import logging
from typing import Any

import pytest
from mcp.server import Server
from mcp.types import ListToolsRequest

from roboclaw_mcp import server
from roboclaw_mcp.drivers.config import BackendMode, MotorRuntime, get_runtime
from roboclaw_mcp.drivers.transport import DEFAULT_ADDRESS, DEFAULT_BAUD_RATE
from roboclaw_mcp.observability import get_logger
from roboclaw_mcp.observability.logging import ROOT_LOGGER_NAME, JSONFormatter
from tests.helpers import MockSerialPort


class TestParseArgs:
    def test_defaults(self) -> None:
        args = server.parse_args([])
        assert args.mode == "hardware"
        assert args.port is None
        assert args.baud_rate == DEFAULT_BAUD_RATE
        assert args.address == DEFAULT_ADDRESS
        assert args.log_level == "INFO"
        assert args.json_logs is False

    def test_hex_address(self) -> None:
        assert server.parse_args(["--address", "0x81"]).address == 0x81

    def test_decimal_address(self) -> None:
        assert server.parse_args(["--address", "130"]).address == 130

    def test_invalid_mode(self) -> None:
        with pytest.raises(SystemExit):
            server.parse_args(["--mode", "quantum"])


class TestBuildConfig:
    def test_port_override(self) -> None:
        config = server.build_config(
            server.parse_args(["--mode", "simulated", "--port", "/dev/ttyUSB1", "--baud", "38400"])
        )
        assert config.mode is BackendMode.SIMULATED
        assert config.port == "/dev/ttyUSB1"
        assert config.baud_rate == 38400

    def test_port_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ROBOCLAW_PORT", "/dev/ttyS5")
        assert server.build_config(server.parse_args([])).port == "/dev/ttyS5"


class TestCreateServer:
    def test_tools_registered(self, sim_runtime: MotorRuntime) -> None:
        created = server.create_server(sim_runtime)
        assert isinstance(created, Server)
        assert created.name == "roboclaw-mcp"
        assert ListToolsRequest in created.request_handlers


class TestShutdown:
    def test_stops_twin_motors(self, sim_runtime: MotorRuntime) -> None:
        backend = sim_runtime.backend()
        backend.drive_pwm(1, 12000)
        backend.drive_pwm(2, -12000)

        server._shutdown(sim_runtime)

        pwm = backend.read_pwm()
        assert (pwm.m1, pwm.m2) == (0, 0)

    def test_disconnects_after_failed_stop(
        self, hw_runtime: MotorRuntime, mock_port: MockSerialPort
    ) -> None:
        """Verifies the port is released even if the stop commands fail.

        Arrangement:
        1. Hardware runtime whose mock port never answers.

        Assertion Strategy:
        Both stop commands were attempted, no error escaped and the
        controller ends up disconnected.
        """
        server._shutdown(hw_runtime)

        assert len(mock_port.written) == 2
        assert not hw_runtime.controller.is_connected


class TestMain:
    def test_installs_runtime_and_serves(self, monkeypatch: pytest.MonkeyPatch) -> None:
        served: list[Any] = []

        def fake_run(coroutine: Any) -> None:
            served.append(coroutine)
            coroutine.close()

        monkeypatch.setattr(server.asyncio, "run", fake_run)
        server.main(["--mode", "simulated", "--log-level", "WARNING"])

        assert len(served) == 1
        assert get_runtime().selector.simulated

    def test_logging_flags_replace_default_setup(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """--log-level and --json-logs take effect after import-time setup.

        Arrangement:
            Importing the package already installed the default text
            handler at INFO through module-level ``get_logger`` calls.

        Assertion Strategy:
            After main runs, the package logger sits at DEBUG with a single
            handler using ``JSONFormatter``.
        """
        monkeypatch.setattr(server.asyncio, "run", lambda coroutine: coroutine.close())
        get_logger("roboclaw_mcp.tests")

        server.main(["--mode", "simulated", "--log-level", "DEBUG", "--json-logs"])

        package_logger = logging.getLogger(ROOT_LOGGER_NAME)
        assert package_logger.level == logging.DEBUG
        assert len(package_logger.handlers) == 1
        assert isinstance(package_logger.handlers[0].formatter, JSONFormatter)
