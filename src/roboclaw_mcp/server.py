"""MCP server entry point for RoboClaw motor control and tuning."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence

from mcp.server import Server
from mcp.server.stdio import stdio_server

from roboclaw_mcp import tools
from roboclaw_mcp.drivers.config import (
    BackendMode,
    DriverConfig,
    MotorRuntime,
    configure_runtime,
)
from roboclaw_mcp.drivers.transport import DEFAULT_ADDRESS, DEFAULT_BAUD_RATE
from roboclaw_mcp.errors import RoboclawError
from roboclaw_mcp.observability import configure_logging, get_logger

logger = get_logger(__name__)

SERVER_NAME = "roboclaw-mcp"


def create_server(runtime: MotorRuntime | None = None) -> Server:
    """Create the MCP server with every tool registered.

    Args:
        runtime: Runtime the tools act on. When None, tools resolve the
            process-wide runtime on every call.

    Returns:
        Configured Server, not yet running.

    Example:
        >>> server = create_server(MotorRuntime(DriverConfig(mode=BackendMode.SIMULATED)))
    """
    server = Server(SERVER_NAME)
    tools.register(server, runtime)
    return server


async def run_server(runtime: MotorRuntime) -> None:
    """Serve over stdio until the client disconnects.

    The motors are left stopped and the serial port closed on the way out.
    """
    server = create_server(runtime)
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    finally:
        _shutdown(runtime)


def _shutdown(runtime: MotorRuntime) -> None:
    backend = runtime.backend()
    for motor in (1, 2):
        try:
            backend.drive_pwm(motor, 0)
        except RoboclawError as e:
            logger.warning("Could not stop motor on shutdown", motor=motor, error=str(e))
    runtime.controller.disconnect()
    logger.info("Controller released")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse server command line arguments.

    Returns:
        Namespace with mode, port, baud_rate, address, log_level and
        json_logs.
    """
    parser = argparse.ArgumentParser(
        description="RoboClaw MCP Server - motor control, identification and PID autotuning"
    )
    parser.add_argument(
        "--mode",
        type=str,
        choices=[m.value for m in BackendMode],
        default=BackendMode.HARDWARE.value,
        help="Backend: 'hardware' for the serial controller, 'simulated' for the twin",
    )
    parser.add_argument(
        "--port",
        type=str,
        default=None,
        help="Serial port (default: $ROBOCLAW_PORT or /dev/ttyACM0)",
    )
    parser.add_argument(
        "--baud",
        dest="baud_rate",
        type=int,
        default=DEFAULT_BAUD_RATE,
        help=f"Baud rate (default: {DEFAULT_BAUD_RATE})",
    )
    parser.add_argument(
        "--address",
        type=lambda s: int(s, 0),
        default=DEFAULT_ADDRESS,
        help=f"Packet serial address (default: {DEFAULT_ADDRESS:#x})",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit JSON log lines on stderr",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> DriverConfig:
    """DriverConfig from parsed arguments."""
    config = DriverConfig(
        mode=BackendMode(args.mode),
        baud_rate=args.baud_rate,
        address=args.address,
    )
    if args.port:
        config.port = args.port
    return config


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point: configure logging and the runtime, then serve on stdio."""
    args = parse_args(argv)
    configure_logging(level=args.log_level, json_format=args.json_logs, force=True)

    runtime = configure_runtime(build_config(args))
    logger.info("Starting MCP server", **runtime.status())
    asyncio.run(run_server(runtime))


if __name__ == "__main__":  # pragma: no cover
    main()
