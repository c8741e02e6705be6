"""Shared utilities for roboclaw-mcp.

Modules:
    clock: Injectable monotonic clock used by the simulator and sampler.
    locks: Timeout-bounded acquisition of the shared-context locks.
"""

from roboclaw_mcp.utils.clock import Clock, SystemClock
from roboclaw_mcp.utils.locks import DEFAULT_LOCK_TIMEOUT_S, hold

__all__ = [
    "DEFAULT_LOCK_TIMEOUT_S",
    "Clock",
    "SystemClock",
    "hold",
]
