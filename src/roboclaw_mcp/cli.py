"""CLI entry point for roboclaw-mcp.

Provides the ``roboclaw-mcp`` console script with subcommands:

- ``install``: Generate ``.vscode/mcp.json`` for a project
- ``ports``: Print serial ports that may host a controller
- ``autotune``: Run one velocity PID autotune and print the result as JSON
- ``server``: Run the MCP server (default if no subcommand)

Usage::

    roboclaw-mcp install
    roboclaw-mcp ports
    roboclaw-mcp autotune --motor 1 --mode simulated
    roboclaw-mcp server --mode simulated
    roboclaw-mcp            # same as "server"
"""

from __future__ import annotations

import argparse
import json
import logging
import re
import sys
from collections.abc import Sequence
from functools import lru_cache
from pathlib import Path

SERVER_NAME = "roboclaw-mcp"
MODULE_NAME = "roboclaw_mcp.server"
VSCODE_DIR = ".vscode"
CONFIG_FILE = "mcp.json"


@lru_cache(maxsize=1)
def _get_logger() -> logging.Logger:
    """Message-only logger for CLI feedback, configured once."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    return logging.getLogger(__name__)


def _log(message: str) -> None:
    _get_logger().info(message)


_JSON_STRING = r'"(?:\\.|[^"\\\n])*"'
_LINE_COMMENT = re.compile(rf"({_JSON_STRING})|//[^\n]*")
_TRAILING_COMMA = re.compile(rf"({_JSON_STRING})|,(\s*[}}\]])")


def _strip_jsonc_comments(text: str) -> str:
    """Strip ``//`` line comments and the trailing commas they leave behind.

    String literals are matched first so a ``//`` inside a value such as a
    URL is kept. Block comments are not handled.

    Example:
        >>> _strip_jsonc_comments('{"url": "http://host"} // comment')
        '{"url": "http://host"} '
    """
    text = _LINE_COMMENT.sub(lambda m: m.group(1) or "", text)
    return _TRAILING_COMMA.sub(lambda m: m.group(1) or m.group(2), text)


def _server_args() -> list[str]:
    return ["-m", MODULE_NAME, "--mode", "simulated"]


def _generate_mcp_template(python_path: str) -> str:
    """JSONC mcp.json listing every server option, optional ones commented."""
    template = """\
{
  "servers": {
    "roboclaw-mcp": {
      "command": "{{PYTHON_PATH}}",
      "args": [
        "-m",
        "roboclaw_mcp.server",
        // "hardware" drives the controller on --port,
        // "simulated" uses the digital twin
        "--mode", "simulated"
        // Serial settings for hardware mode
        // "--port", "/dev/ttyACM0",
        // "--baud", "115200",
        // "--address", "0x80",
        // Logging (goes to stderr)
        // "--log-level", "INFO",
        // "--json-logs"
      ]
    }
  }
}
"""
    return template.replace("{{PYTHON_PATH}}", python_path)


def run_install(cwd: str | None = None) -> None:
    """Create or update ``.vscode/mcp.json`` with a roboclaw-mcp entry.

    A missing config gets the full commented template. An existing one is
    backed up to ``mcp.json.bak`` and the server entry merged in, unless
    it is already present.

    Args:
        cwd: Project root; defaults to the current directory.
    """
    working_dir = Path(cwd) if cwd else Path.cwd()
    vscode_dir = working_dir / VSCODE_DIR
    config_path = vscode_dir / CONFIG_FILE
    python_path = sys.executable

    if not config_path.exists():
        vscode_dir.mkdir(parents=True, exist_ok=True)
        config_path.write_text(_generate_mcp_template(python_path))
        _log(f"Created {config_path}")
        return

    existing_text = config_path.read_text()
    backup_path = config_path.with_suffix(".json.bak")
    backup_path.write_text(existing_text)
    _log(f"Backed up to {backup_path.name}")

    try:
        config: dict[str, object] = json.loads(_strip_jsonc_comments(existing_text))
    except json.JSONDecodeError:
        _log("Could not parse existing config, writing fresh")
        config_path.write_text(_generate_mcp_template(python_path))
        return

    servers: dict[str, object] = config.setdefault("servers", {})  # type: ignore[assignment]
    if SERVER_NAME in servers:
        _log(f"{SERVER_NAME} already configured in {CONFIG_FILE}")
        return

    servers[SERVER_NAME] = {"command": python_path, "args": _server_args()}
    config_path.write_text(json.dumps(config, indent=2) + "\n")
    _log(f"Added {SERVER_NAME} to {CONFIG_FILE}")


def run_ports() -> None:
    """Print available serial ports, one per line."""
    from roboclaw_mcp.drivers.serial import list_serial_ports

    ports = list_serial_ports()
    if not ports:
        _log("No serial ports found")
    for port in ports:
        print(port)


def run_autotune(args: argparse.Namespace) -> int:
    """Run one autotune against a fresh runtime and print the result.

    Returns:
        0 on success, 1 if the autotune raised a RoboclawError.
    """
    from roboclaw_mcp.analysis.autotune import autotune_velocity_frf, autotune_velocity_step
    from roboclaw_mcp.devices import MotorDriver
    from roboclaw_mcp.drivers.config import BackendMode, DriverConfig, MotorRuntime
    from roboclaw_mcp.errors import RoboclawError
    from roboclaw_mcp.observability import configure_logging

    configure_logging(level=args.log_level, force=True)
    config = DriverConfig(mode=BackendMode(args.mode))
    if args.port:
        config.port = args.port
    if args.baud_rate:
        config.baud_rate = args.baud_rate
    runtime = MotorRuntime(config)
    driver = MotorDriver.from_runtime(runtime)

    try:
        if args.method == "frf":
            result = autotune_velocity_frf(
                driver,
                args.motor,
                lambda_scale=args.lambda_scale,
                apply_result=args.apply,
                allow_simulation_fallback=args.allow_fallback,
            )
        else:
            result = autotune_velocity_step(
                driver,
                args.motor,
                pwm_step=args.pwm_step,
                lambda_scale=args.lambda_scale,
                apply_result=args.apply,
                allow_simulation_fallback=args.allow_fallback,
            )
    except RoboclawError as e:
        _log(f"Autotune failed: {e}")
        return 1
    finally:
        runtime.controller.disconnect()

    print(json.dumps(result.to_dict(), indent=2))
    return 0


def _add_autotune_parser(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("autotune", help="Autotune a velocity PID")
    parser.add_argument("--motor", type=int, choices=[1, 2], default=1)
    parser.add_argument("--method", choices=["step", "frf"], default="step")
    parser.add_argument(
        "--mode", choices=["hardware", "simulated"], default="hardware"
    )
    parser.add_argument("--port", type=str, default=None)
    parser.add_argument("--baud", dest="baud_rate", type=int, default=None)
    parser.add_argument("--pwm-step", type=int, default=16000)
    parser.add_argument("--lambda-scale", type=float, default=0.5)
    parser.add_argument(
        "--apply", action="store_true", help="Write the suggested PID to the controller"
    )
    parser.add_argument(
        "--allow-fallback",
        action="store_true",
        help="Run on the digital twin if the hardware cannot be driven",
    )
    parser.add_argument("--log-level", default="WARNING")


def main(argv: Sequence[str] | None = None) -> int:
    """Dispatch CLI subcommands.

    ``server`` or no subcommand delegates to ``server.main()`` with the
    remaining arguments, which has its own parser.

    Returns:
        Exit code.
    """
    args_in = list(sys.argv[1:] if argv is None else argv)

    parser = argparse.ArgumentParser(
        prog=SERVER_NAME,
        description="RoboClaw MCP - motor control, identification and PID autotuning",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    subparsers.add_parser("install", help="Create .vscode/mcp.json configuration")
    subparsers.add_parser("ports", help="List serial ports")
    _add_autotune_parser(subparsers)
    subparsers.add_parser(
        "server",
        help="Run MCP server (default if no subcommand)",
        add_help=False,
    )

    # Server flags are not known here, so only parse our own subcommands.
    if args_in and args_in[0] in ("install", "ports", "autotune", "-h", "--help"):
        args = parser.parse_args(args_in)
        if args.command == "install":
            run_install()
        elif args.command == "autotune":
            return run_autotune(args)
        else:
            run_ports()
        return 0

    if args_in and args_in[0] == "server":
        args_in = args_in[1:]

    from roboclaw_mcp.server import main as server_main

    server_main(args_in)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
