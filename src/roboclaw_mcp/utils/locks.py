"""Bounded lock acquisition for the two shared contexts."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from roboclaw_mcp.errors import ConcurrencyError

__all__ = ["DEFAULT_LOCK_TIMEOUT_S", "hold"]

DEFAULT_LOCK_TIMEOUT_S = 5.0


@contextmanager
def hold(lock: threading.Lock, timeout_s: float, name: str) -> Iterator[None]:
    """Acquire ``lock`` for the duration of the block.

    Args:
        lock: Lock guarding a shared context.
        timeout_s: Seconds to wait before giving up.
        name: Context name used in the error message.

    Raises:
        ConcurrencyError: If the lock is not acquired within ``timeout_s``.

    Example:
        with hold(self._lock, 5.0, "controller"):
            self._channel.write(packet)
    """
    if not lock.acquire(timeout=timeout_s):
        raise ConcurrencyError(f"Timed out after {timeout_s}s waiting for {name} lock")
    try:
        yield
    finally:
        lock.release()
