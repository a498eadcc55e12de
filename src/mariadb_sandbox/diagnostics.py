"""Diagnostics sinks for non-fatal cleanup failures.

Dropping a database or terminating the server happens after the test verdict
is known, so failures there are reported to a sink instead of raised. The
default sink logs; tests inject a ``CollectingSink`` to assert on them.

Example:
    >>> from mariadb_sandbox.diagnostics import CollectingSink
    >>> sink = CollectingSink()
    >>> manager = IsolationManager.start(diagnostics=sink)
    >>> ...
    >>> assert not sink.errors
"""

from __future__ import annotations

import threading
from typing import Protocol

import structlog

from mariadb_sandbox.errors import CleanupError

logger = structlog.get_logger(__name__)


class CleanupSink(Protocol):
    """Receiver of cleanup failures."""

    def __call__(self, error: CleanupError) -> None: ...


def log_cleanup_error(error: CleanupError) -> None:
    """Default sink: log the failure as a warning."""
    logger.warning(
        "cleanup.failed",
        resource=error.resource,
        name=error.name,
        error_type=type(error.cause).__name__ if error.cause is not None else None,
        error=str(error.cause) if error.cause is not None else error.message,
    )


class CollectingSink:
    """Sink that keeps every reported error, optionally forwarding them.

    Safe to share between managers running on different threads.

    Attributes:
        errors: Reported errors in arrival order.
    """

    def __init__(self, forward: CleanupSink | None = None) -> None:
        self.errors: list[CleanupError] = []
        self._forward = forward
        self._lock = threading.Lock()

    def __call__(self, error: CleanupError) -> None:
        with self._lock:
            self.errors.append(error)
        if self._forward is not None:
            self._forward(error)


__all__ = [
    "CleanupSink",
    "CollectingSink",
    "log_cleanup_error",
]
