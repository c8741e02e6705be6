"""MCP tool surface.

Modules:
    requests: Argument parsing with snake_case/camelCase aliases
    motors: Setup, drive, readback and PID tools
    tuning: Experiments, estimators and autotune tools

Every tool answers with one JSON ``TextContent``. Success carries
``"success": true`` plus the result fields; failures carry
``"success": false``, ``error`` and ``error_type``.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from roboclaw_mcp.drivers.config import MotorRuntime, get_runtime
from roboclaw_mcp.errors import RoboclawError
from roboclaw_mcp.observability import LogContext, get_logger
from roboclaw_mcp.tools import motors, tuning
from roboclaw_mcp.tools.motors import Handler

__all__ = ["HANDLERS", "TOOLS", "dispatch", "register"]

logger = get_logger(__name__)

TOOLS: list[Tool] = [*motors.TOOLS, *tuning.TOOLS]
HANDLERS: dict[str, Handler] = {**motors.HANDLERS, **tuning.HANDLERS}


def _respond(payload: dict[str, Any]) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2))]


async def dispatch(
    name: str,
    arguments: dict[str, Any] | None,
    runtime: MotorRuntime | None = None,
) -> list[TextContent]:
    """Run one tool and encode its outcome.

    The handler runs in a worker thread since serial exchanges and sampling
    loops block.

    Args:
        name: Tool name from ``TOOLS``.
        arguments: Raw tool arguments.
        runtime: Runtime to act on; the process-wide one when None.

    Returns:
        Single-element list with the JSON response.

    Example:
        >>> result = await dispatch("read_speed", {"motor_index": 1})
        >>> json.loads(result[0].text)["speed"]
    """
    handler = HANDLERS.get(name)
    if handler is None:
        return _respond(
            {"success": False, "error": f"Unknown tool: {name}", "error_type": "UnknownTool"}
        )

    active = runtime or get_runtime()
    with LogContext(tool=name):
        try:
            result = await asyncio.to_thread(handler, active, dict(arguments or {}))
        except RoboclawError as e:
            logger.warning("Tool failed", error=str(e), error_type=type(e).__name__)
            return _respond(
                {"success": False, "error": str(e), "error_type": type(e).__name__}
            )
        except Exception as e:
            logger.exception("Unexpected tool error")
            return _respond(
                {"success": False, "error": str(e), "error_type": type(e).__name__}
            )
    return _respond({"success": True, **result})


def register(server: Server, runtime: MotorRuntime | None = None) -> None:
    """Attach the tool list and call handlers to ``server``.

    Args:
        server: MCP server that is not running yet.
        runtime: Runtime the tools act on; resolved per call when None so
            ``configure_runtime`` replacements are honoured.
    """

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return TOOLS

    # Aliased argument names are resolved by the request types, not the schema.
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        return await dispatch(name, arguments, runtime)
