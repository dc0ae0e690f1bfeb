"""Global application context and state management."""

from __future__ import annotations

import threading
from pathlib import Path


class _Context:
    """Application context for managing global state."""

    def __init__(self) -> None:
        self.config_path: Path | None = None
        self.cancel_event = threading.Event()


# Singleton instance
_context = _Context()


def get_config_path() -> Path | None:
    """Get the global config path."""
    return _context.config_path


def set_config_path(path: Path | None) -> None:
    """Set the global config path."""
    _context.config_path = path


def get_cancel_event() -> threading.Event:
    """Get the process-wide cancellation signal shared by all jobs."""
    return _context.cancel_event


def reset_cancel_event() -> None:
    """Replace the cancellation signal with a fresh, unset one."""
    _context.cancel_event = threading.Event()
