"""Cancellable deadlines for blocking lifecycle calls.

Every blocking operation in mariadb-sandbox accepts an optional ``Deadline``.
Operations narrow the caller's deadline with their own policy timeout via
``Deadline.bounded`` and pass the remaining time to the driver as socket
timeouts.

Example:
    >>> from mariadb_sandbox.deadline import Deadline
    >>> parent = Deadline.after(120.0)
    >>> child = Deadline.bounded(parent, 60.0)
    >>> child.remaining() <= 60.0
    True
    >>> parent.cancel()
    >>> child.cancelled
    True
"""

from __future__ import annotations

import threading
import time

from mariadb_sandbox.errors import OperationTimeoutError


class Deadline:
    """A point in time after which a blocking call must give up.

    A deadline may also be cancelled explicitly. Child deadlines created with
    ``bounded`` share the parent's cancellation signal.

    Attributes:
        expires_at: ``time.monotonic()`` value at expiry, or None for no limit.
        timeout: The timeout the deadline was created with, for messages.
    """

    __slots__ = ("_cancel_event", "expires_at", "timeout")

    def __init__(
        self,
        expires_at: float | None,
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.expires_at = expires_at
        self.timeout = timeout
        self._cancel_event = cancel_event if cancel_event is not None else threading.Event()

    @classmethod
    def after(cls, seconds: float) -> Deadline:
        """Create a deadline ``seconds`` from now."""
        return cls(time.monotonic() + seconds, timeout=seconds)

    @classmethod
    def never(cls) -> Deadline:
        """Create a deadline that only ends through cancellation."""
        return cls(None)

    @classmethod
    def bounded(cls, parent: Deadline | None, seconds: float) -> Deadline:
        """Create the earlier of ``parent`` and ``seconds`` from now.

        Args:
            parent: Caller-supplied deadline, or None.
            seconds: Policy timeout of the operation.

        Returns:
            A deadline sharing the parent's cancellation signal.
        """
        if parent is None:
            return cls.after(seconds)

        own_expiry = time.monotonic() + seconds
        if parent.expires_at is not None and parent.expires_at <= own_expiry:
            return cls(parent.expires_at, timeout=parent.timeout, cancel_event=parent._cancel_event)
        return cls(own_expiry, timeout=seconds, cancel_event=parent._cancel_event)

    def remaining(self) -> float | None:
        """Get seconds left, 0.0 once expired, or None for no limit."""
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        """Whether the deadline has passed or was cancelled."""
        if self.cancelled:
            return True
        return self.expires_at is not None and time.monotonic() >= self.expires_at

    @property
    def cancelled(self) -> bool:
        """Whether ``cancel()`` was called on this deadline or its parent."""
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Cancel the deadline and every deadline bounded from it."""
        self._cancel_event.set()

    def check(self, operation: str) -> None:
        """Raise if the deadline has expired or was cancelled.

        Args:
            operation: Operation name for the error message.

        Raises:
            OperationTimeoutError: If the deadline is over.
        """
        if self.cancelled:
            raise OperationTimeoutError(operation, self.timeout, cancelled=True)
        if self.expired:
            raise OperationTimeoutError(operation, self.timeout)

    def __repr__(self) -> str:
        remaining = self.remaining()
        left = "unbounded" if remaining is None else f"{remaining:.1f}s left"
        state = ", cancelled" if self.cancelled else ""
        return f"Deadline({left}{state})"


__all__ = ["Deadline"]
