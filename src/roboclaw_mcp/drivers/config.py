"""Driver configuration and backend selection.

Supports switching between the real controller and the digital twin at
runtime. The switch is a single process-wide flag; every driver call asks
the runtime for the active backend first.

Example:
    runtime = MotorRuntime(DriverConfig(mode=BackendMode.SIMULATED))
    runtime.backend().drive_pwm(1, 16000)

    runtime.configure("/dev/ttyACM0")  # switches to hardware
    runtime.configure(SIMULATED_PORT)  # back to the twin
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from enum import Enum

from roboclaw_mcp.drivers.motors.serial_controller import HardwareBackend
from roboclaw_mcp.drivers.motors.twin import SimulatedBackend, SimulationContext
from roboclaw_mcp.drivers.motors.types import MotorBackend
from roboclaw_mcp.drivers.serial import PortEnumerator, list_serial_ports
from roboclaw_mcp.drivers.transport import (
    DEFAULT_ADDRESS,
    DEFAULT_BAUD_RATE,
    ControllerContext,
    SerialOpener,
)
from roboclaw_mcp.errors import TransportError
from roboclaw_mcp.observability import ExchangeStats, get_logger
from roboclaw_mcp.utils.clock import Clock
from roboclaw_mcp.utils.locks import DEFAULT_LOCK_TIMEOUT_S

__all__ = [
    "SIMULATED_PORT",
    "BackendMode",
    "BackendSelector",
    "DriverConfig",
    "MotorRuntime",
    "configure_runtime",
    "get_runtime",
]

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

#: Port name that selects the digital twin instead of a serial device.
SIMULATED_PORT = "SIMULATED"

#: Environment variable overriding the default serial port.
PORT_ENV_VAR = "ROBOCLAW_PORT"

DEFAULT_PORT = "/dev/ttyACM0"


class BackendMode(Enum):
    """Backend selection."""

    HARDWARE = "hardware"  # Real controller over serial
    SIMULATED = "simulated"  # Digital twin


def _default_port() -> str:
    """Serial port from ``ROBOCLAW_PORT``, else /dev/ttyACM0."""
    return os.environ.get(PORT_ENV_VAR) or DEFAULT_PORT


@dataclass
class DriverConfig:
    """Configuration for backend selection and serial settings.

    Attributes:
        mode: HARDWARE for the real controller, SIMULATED for the twin.
        port: Serial device opened in hardware mode.
        baud_rate: Serial line speed.
        address: Packet serial address of the controller.
        lock_timeout_s: Seconds to wait for the controller/simulation locks.
    """

    mode: BackendMode = BackendMode.HARDWARE
    port: str = field(default_factory=_default_port)
    baud_rate: int = DEFAULT_BAUD_RATE
    address: int = DEFAULT_ADDRESS
    lock_timeout_s: float = DEFAULT_LOCK_TIMEOUT_S


class BackendSelector:
    """Process-wide hardware/simulated flag.

    Backed by ``threading.Event`` so readers never take a lock.
    """

    def __init__(self, simulated: bool = False) -> None:
        self._simulated = threading.Event()
        if simulated:
            self._simulated.set()

    @property
    def simulated(self) -> bool:
        """True when the digital twin is active."""
        return self._simulated.is_set()

    @property
    def mode(self) -> BackendMode:
        return BackendMode.SIMULATED if self.simulated else BackendMode.HARDWARE

    def set_simulated(self, enabled: bool) -> None:
        if enabled:
            self._simulated.set()
        else:
            self._simulated.clear()


class MotorRuntime:
    """Owns the backend flag, the controller context and the simulation.

    Both contexts are created once and mutated in place for the life of the
    process. ``backend()`` returns the variant selected by the flag.
    """

    def __init__(
        self,
        config: DriverConfig | None = None,
        opener: SerialOpener | None = None,
        clock: Clock | None = None,
        port_enumerator: PortEnumerator | None = None,
        connect: bool = True,
    ) -> None:
        """Create the runtime.

        In hardware mode the configured port is opened immediately when
        ``connect`` is True. An open failure is logged and the runtime stays
        usable with no channel, so ``configure`` can fix it later.

        Args:
            config: Driver settings; defaults to ``DriverConfig()``.
            opener: Serial opener passed to the controller context.
            clock: Time source for the simulation.
            port_enumerator: Replacement for pyserial port discovery.
            connect: Open the port now in hardware mode.
        """
        self._config = config or DriverConfig()
        self._selector = BackendSelector(
            simulated=self._config.mode is BackendMode.SIMULATED
            or self._config.port == SIMULATED_PORT
        )
        self._stats = ExchangeStats()
        self._controller = ControllerContext(
            address=self._config.address,
            baud_rate=self._config.baud_rate,
            opener=opener,
            lock_timeout_s=self._config.lock_timeout_s,
        )
        self._simulation = SimulationContext(
            clock=clock, lock_timeout_s=self._config.lock_timeout_s
        )
        self._hardware = HardwareBackend(self._controller, stats=self._stats)
        self._simulated = SimulatedBackend(self._simulation)
        self._port_enumerator = port_enumerator

        if connect and not self._selector.simulated:
            try:
                self._controller.configure(self._config.port, self._config.baud_rate)
            except TransportError as e:
                logger.warning(
                    "Controller not available at startup",
                    port=self._config.port,
                    error=str(e),
                )

    @property
    def config(self) -> DriverConfig:
        return self._config

    @property
    def selector(self) -> BackendSelector:
        return self._selector

    @property
    def controller(self) -> ControllerContext:
        return self._controller

    @property
    def simulation(self) -> SimulationContext:
        return self._simulation

    @property
    def stats(self) -> ExchangeStats:
        return self._stats

    @property
    def hardware_backend(self) -> HardwareBackend:
        return self._hardware

    @property
    def simulated_backend(self) -> SimulatedBackend:
        return self._simulated

    def backend(self) -> MotorBackend:
        """Backend selected by the current flag."""
        if self._selector.simulated:
            return self._simulated
        return self._hardware

    def configure(self, port: str, baud_rate: int | None = None) -> None:
        """Select a port, or the twin via ``SIMULATED_PORT``.

        Args:
            port: Serial device path, or "SIMULATED".
            baud_rate: Line speed; keeps the current rate when None.

        Raises:
            TransportError: Hardware port could not be opened. The runtime
                is left in hardware mode without a channel.
            LogicalError: Empty port or bad baud rate.
        """
        if port == SIMULATED_PORT:
            self._controller.disconnect()
            self._selector.set_simulated(True)
            logger.info("Simulation mode selected")
            return

        self._selector.set_simulated(False)
        self._controller.configure(port, baud_rate)

    def configure_baud(self, baud_rate: int) -> None:
        """Reopen the hardware port at a new baud rate."""
        self._controller.configure_baud(baud_rate)

    def set_simulation_mode(self, enabled: bool) -> None:
        """Switch backends without touching the serial channel."""
        self._selector.set_simulated(enabled)
        logger.info("Backend mode changed", mode=self._selector.mode.value)

    def list_ports(self) -> list[str]:
        """Available serial ports followed by the simulation sentinel."""
        return [*list_serial_ports(self._port_enumerator), SIMULATED_PORT]

    def status(self) -> dict[str, object]:
        """Summary of the current mode and connection."""
        return {
            "mode": self._selector.mode.value,
            "port": self._controller.port,
            "baud_rate": self._controller.baud_rate,
            "address": self._controller.address,
            "connected": self._controller.is_connected,
        }


# =============================================================================
# Process-wide runtime
# =============================================================================

_runtime: MotorRuntime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> MotorRuntime:
    """Return the process-wide runtime, creating a default one on first use."""
    global _runtime
    with _runtime_lock:
        if _runtime is None:
            _runtime = MotorRuntime()
        return _runtime


def configure_runtime(runtime: MotorRuntime | DriverConfig) -> MotorRuntime:
    """Replace the process-wide runtime.

    Args:
        runtime: A ready runtime, or a config to build one from.

    Returns:
        The installed runtime.
    """
    global _runtime
    if isinstance(runtime, DriverConfig):
        runtime = MotorRuntime(runtime)
    with _runtime_lock:
        previous = _runtime
        _runtime = runtime
    if previous is not None and previous is not runtime:
        previous.controller.disconnect()
    return runtime
