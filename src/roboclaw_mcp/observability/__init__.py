"""Observability module for roboclaw-mcp.

Provides structured logging and serial exchange statistics.

Example:
    from roboclaw_mcp.observability import get_logger, LogContext

    logger = get_logger(__name__)
    logger.info("Controller configured", port="/dev/ttyACM0")

    with LogContext(experiment="step", motor=1):
        logger.info("Sampling", interval_ms=10)

Statistics Example:
    from roboclaw_mcp.observability import ExchangeStats

    stats = ExchangeStats()
    backend = HardwareBackend(context, stats=stats)
    ...
    print(stats.get_summary(18).success_rate)
"""

from roboclaw_mcp.observability.logging import (
    LogContext,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)
from roboclaw_mcp.observability.stats import (
    ExchangeStats,
    ExchangeSummary,
)

__all__ = [
    # Logging
    "LogContext",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
    # Statistics
    "ExchangeStats",
    "ExchangeSummary",
]
