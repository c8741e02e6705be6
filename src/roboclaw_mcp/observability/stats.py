"""Serial exchange statistics.

Tracks the outcome and duration of every request/response exchange with
the controller, keyed by command code:
- Success/failure counts and success rate
- Duration statistics (min, max, avg, p95) over a rolling window
- Failure counts by error type (timeout, crc, transport, ...)

Thread-safe; the hardware backend records from worker threads while the
tool layer reads summaries.

Example:
    stats = ExchangeStats()
    stats.record_exchange(command=18, duration_ms=2.1, success=True)
    stats.record_exchange(command=18, duration_ms=100.4, success=False,
                          error_type="timeout")

    summary = stats.get_summary(18)
    print(f"Success rate: {summary.success_rate:.1%}")
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

__all__ = [
    "DEFAULT_STATS_WINDOW_SIZE",
    "ExchangeStats",
    "ExchangeSummary",
]

#: Exchange records retained per command for duration statistics.
DEFAULT_STATS_WINDOW_SIZE: int = 500


def _utc_now() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(UTC)


@dataclass
class ExchangeSummary:
    """Summary statistics for one command code.

    Attributes:
        command: Protocol command code.
        total: Total exchanges attempted.
        succeeded: Exchanges that produced a valid reply.
        failed: Exchanges that raised.
        success_rate: succeeded / total (0.0 with no exchanges).
        min_duration_ms: Fastest successful exchange in the window.
        max_duration_ms: Slowest successful exchange in the window.
        avg_duration_ms: Mean successful duration in the window.
        p95_duration_ms: 95th percentile successful duration.
        error_counts: Failures by error type.
        last_exchange_time: UTC time of the latest exchange.
    """

    command: int
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    success_rate: float = 0.0
    min_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    avg_duration_ms: float = 0.0
    p95_duration_ms: float = 0.0
    error_counts: dict[str, int] = field(default_factory=dict)
    last_exchange_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {
            "command": self.command,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "min_duration_ms": self.min_duration_ms,
            "max_duration_ms": self.max_duration_ms,
            "avg_duration_ms": self.avg_duration_ms,
            "p95_duration_ms": self.p95_duration_ms,
            "error_counts": self.error_counts.copy(),
            "last_exchange_time": (
                self.last_exchange_time.isoformat() if self.last_exchange_time else None
            ),
        }


@dataclass
class _ExchangeRecord:
    timestamp: float  # monotonic time
    duration_ms: float
    success: bool


class _CommandCollector:
    """Rolling statistics for a single command code."""

    def __init__(self, command: int, window_size: int) -> None:
        self.command = command
        self._records: deque[_ExchangeRecord] = deque(maxlen=window_size)
        self._error_counts: dict[str, int] = {}
        self._total = 0
        self._succeeded = 0
        self._last_time: datetime | None = None

    def record(self, duration_ms: float, success: bool, error_type: str | None) -> None:
        self._records.append(_ExchangeRecord(time.monotonic(), duration_ms, success))
        self._total += 1
        if success:
            self._succeeded += 1
        elif error_type:
            self._error_counts[error_type] = self._error_counts.get(error_type, 0) + 1
        self._last_time = _utc_now()

    def summary(self) -> ExchangeSummary:
        durations = sorted(r.duration_ms for r in self._records if r.success)
        summary = ExchangeSummary(
            command=self.command,
            total=self._total,
            succeeded=self._succeeded,
            failed=self._total - self._succeeded,
            success_rate=self._succeeded / self._total if self._total else 0.0,
            error_counts=self._error_counts.copy(),
            last_exchange_time=self._last_time,
        )
        if durations:
            summary.min_duration_ms = durations[0]
            summary.max_duration_ms = durations[-1]
            summary.avg_duration_ms = sum(durations) / len(durations)
            summary.p95_duration_ms = _percentile(durations, 95)
        return summary


class ExchangeStats:
    """Thread-safe exchange statistics across all command codes.

    Collectors are created lazily on the first exchange of each command.
    """

    def __init__(self, window_size: int = DEFAULT_STATS_WINDOW_SIZE) -> None:
        """Create an empty statistics store.

        Args:
            window_size: Records retained per command for duration stats.
        """
        self._window_size = window_size
        self._collectors: dict[int, _CommandCollector] = {}
        self._lock = threading.Lock()

    def record_exchange(
        self,
        command: int,
        duration_ms: float,
        success: bool,
        error_type: str | None = None,
    ) -> None:
        """Record one request/response exchange.

        Args:
            command: Protocol command code.
            duration_ms: Wall time of the exchange.
            success: True if a valid reply was decoded.
            error_type: Failure category ('timeout', 'crc', 'transport',
                'protocol'); ignored on success.
        """
        with self._lock:
            collector = self._collectors.get(command)
            if collector is None:
                collector = _CommandCollector(command, self._window_size)
                self._collectors[command] = collector
            collector.record(duration_ms, success, error_type)

    def get_summary(self, command: int) -> ExchangeSummary:
        """Return statistics for one command (empty summary if never seen)."""
        with self._lock:
            collector = self._collectors.get(command)
            if collector is None:
                return ExchangeSummary(command=command)
            return collector.summary()

    def get_all_summaries(self) -> dict[int, ExchangeSummary]:
        """Return statistics for every command seen so far."""
        with self._lock:
            return {cmd: c.summary() for cmd, c in sorted(self._collectors.items())}

    def reset(self) -> None:
        """Discard all recorded exchanges."""
        with self._lock:
            self._collectors.clear()

    def to_dict(self) -> dict[str, Any]:
        """Export all summaries as a JSON-serializable dict."""
        return {
            "commands": {
                str(cmd): summary.to_dict()
                for cmd, summary in self.get_all_summaries().items()
            },
            "timestamp": _utc_now().isoformat(),
        }


def _percentile(sorted_data: list[float], p: float) -> float:
    """Percentile of pre-sorted data with linear interpolation.

    Args:
        sorted_data: Values sorted ascending. Empty returns 0.0.
        p: Percentile in [0, 100].

    Returns:
        Interpolated percentile value.

    Raises:
        ValueError: If p is outside [0, 100].

    Example:
        >>> _percentile([100.0, 150.0, 200.0], 95)
        195.0
    """
    if not 0 <= p <= 100:
        raise ValueError(f"Percentile must be between 0 and 100, got {p}")
    if not sorted_data:
        return 0.0

    k = (len(sorted_data) - 1) * (p / 100)
    floor_idx = int(k)
    ceil_idx = min(floor_idx + 1, len(sorted_data) - 1)
    if floor_idx == ceil_idx:
        return sorted_data[floor_idx]

    fraction = k - floor_idx
    return sorted_data[floor_idx] * (1 - fraction) + sorted_data[ceil_idx] * fraction
