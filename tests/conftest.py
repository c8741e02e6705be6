"""Pytest configuration and fixtures for roboclaw-mcp tests.

No hardware is needed: hardware paths run against ``MockSerialPort`` and
the simulation runs on a ``ManualClock`` so integration is deterministic.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from roboclaw_mcp.devices import MotorDriver
from roboclaw_mcp.drivers import config as driver_config
from roboclaw_mcp.drivers.config import BackendMode, DriverConfig, MotorRuntime
from roboclaw_mcp.drivers.motors import HardwareBackend
from roboclaw_mcp.observability import ExchangeStats, reset_logging
from tests.helpers import ManualClock, MockSerialPort


@pytest.fixture(autouse=True)
def isolated_state(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Fresh process-wide runtime and logging for every test."""
    monkeypatch.delenv("ROBOCLAW_PORT", raising=False)
    monkeypatch.setattr(driver_config, "_runtime", None)
    yield
    reset_logging()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def mock_port() -> MockSerialPort:
    return MockSerialPort()


@pytest.fixture
def stats() -> ExchangeStats:
    return ExchangeStats()


@pytest.fixture
def hardware(mock_port: MockSerialPort, stats: ExchangeStats) -> HardwareBackend:
    """Hardware backend wired to the mock port."""
    return HardwareBackend._create_with_serial(mock_port, stats=stats)


@pytest.fixture
def sim_runtime(clock: ManualClock) -> MotorRuntime:
    """Runtime in simulated mode on the manual clock."""
    return MotorRuntime(
        DriverConfig(mode=BackendMode.SIMULATED), clock=clock, connect=False
    )


@pytest.fixture
def hw_runtime(mock_port: MockSerialPort, clock: ManualClock) -> MotorRuntime:
    """Runtime in hardware mode whose port opens to the mock."""
    return MotorRuntime(
        DriverConfig(mode=BackendMode.HARDWARE, port="/dev/mock"),
        opener=lambda port, baud: mock_port,
        clock=clock,
    )


@pytest.fixture
def offline_runtime(clock: ManualClock) -> MotorRuntime:
    """Runtime in hardware mode with no serial channel."""
    return MotorRuntime(
        DriverConfig(mode=BackendMode.HARDWARE, port="/dev/absent"),
        clock=clock,
        connect=False,
    )


@pytest.fixture
def sim_driver(sim_runtime: MotorRuntime) -> MotorDriver:
    return MotorDriver.from_runtime(sim_runtime)
