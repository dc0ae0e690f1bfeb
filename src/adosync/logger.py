"""Logging configuration for adosync with custom verbosity levels."""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

# Define custom levels between standard logging levels
CHANGES_LEVEL = 25  # Between INFO (20) and WARNING (30) - for verbosity level 1
CHECKS_LEVEL = 15  # Between DEBUG (10) and INFO (20) - for verbosity level 2

logging.addLevelName(CHANGES_LEVEL, "CHANGES")
logging.addLevelName(CHECKS_LEVEL, "CHECKS")

# Verbosity level constants for external use
VERBOSITY_SILENT = 0  # Only errors
VERBOSITY_CHANGES = 1  # Show updates, warnings and summaries
VERBOSITY_CHECKS = 2  # Show per-item decisions
VERBOSITY_DEBUG = 3  # Full debug output, including request URLs


class AdoSyncLogger(logging.Logger):
    """Custom logger with semantic verbosity methods.

    Provides methods that correspond to verbosity levels:
    - changes(): verbosity level 1 - work item updates and run summaries
    - checks(): verbosity level 2 - per-item extraction and aggregation details
    - debug(): verbosity level 3 - HTTP level details
    """

    def changes(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log changes (verbosity level 1)."""
        if self.isEnabledFor(CHANGES_LEVEL):
            self._log(CHANGES_LEVEL, msg, args, **kwargs)

    def checks(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log checks (verbosity level 2)."""
        if self.isEnabledFor(CHECKS_LEVEL):
            self._log(CHECKS_LEVEL, msg, args, **kwargs)


def get_logger() -> AdoSyncLogger:
    """Get the adosync logger instance (singleton).

    Returns the same logger instance on every call. Use setup_logger()
    to configure it before first use.
    """
    logging.setLoggerClass(AdoSyncLogger)
    logger = logging.getLogger("adosync")
    assert isinstance(logger, AdoSyncLogger)
    return logger


def setup_logger(verbosity: int, stream: TextIO | None = None) -> None:
    """Configure the adosync logger with verbosity level.

    Can be called multiple times to reconfigure the logger.

    Args:
        verbosity: 0=silent (errors only), 1=changes, 2=checks, 3=debug
        stream: Optional output stream (defaults to sys.stderr, useful for testing)
    """
    logger = get_logger()

    logger.handlers.clear()

    level_map = {
        VERBOSITY_SILENT: logging.ERROR,
        VERBOSITY_CHANGES: CHANGES_LEVEL,
        VERBOSITY_CHECKS: CHECKS_LEVEL,
        VERBOSITY_DEBUG: logging.DEBUG,
    }
    logger.setLevel(level_map.get(verbosity, logging.ERROR))

    output_stream = stream if stream is not None else sys.stderr

    handler = logging.StreamHandler(output_stream)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.propagate = False


def reset_logger() -> None:
    """Reset the logger to clean state.

    Useful for testing to ensure clean state between tests.
    """
    logger = get_logger()
    logger.handlers.clear()
    logger.setLevel(logging.ERROR)
    logger.propagate = True


def is_silent() -> bool:
    """Check if logger is in silent mode (verbosity == 0)."""
    return get_logger().level >= logging.ERROR


def changes_enabled() -> bool:
    """Check if changes-level logging is enabled (verbosity >= 1)."""
    return get_logger().isEnabledFor(CHANGES_LEVEL)
