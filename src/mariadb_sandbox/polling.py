"""Bounded polling for a booting server.

Example:
    from mariadb_sandbox.deadline import Deadline
    from mariadb_sandbox.polling import wait_for_condition

    wait_for_condition(
        server_accepts_connections,
        Deadline.after(300.0),
        interval=1.0,
        description="MariaDB readiness",
    )
"""

from __future__ import annotations

import time
from collections.abc import Callable

from mariadb_sandbox.deadline import Deadline
from mariadb_sandbox.errors import OperationTimeoutError


class PollingTimeoutError(OperationTimeoutError):
    """Raised when a polled condition is still false at the deadline.

    Attributes:
        description: What was being waited for.
        last_error: Last exception raised by the condition, if any.
    """

    def __init__(
        self,
        description: str,
        deadline: Deadline,
        last_error: Exception | None = None,
    ) -> None:
        self.description = description
        self.last_error = last_error
        super().__init__(description, deadline.timeout, cancelled=deadline.cancelled)
        if last_error is not None:
            self.message = f"{self.message} (last error: {last_error})"
            self.args = (self.message,)


def wait_for_condition(
    condition: Callable[[], bool],
    deadline: Deadline,
    *,
    interval: float = 0.5,
    description: str = "condition",
    raise_on_timeout: bool = True,
) -> bool:
    """Call ``condition`` every ``interval`` seconds until it returns True.

    An exception from ``condition`` means "not yet"; the last one is
    attached to the timeout error. The condition is always tried at least
    once, even on an expired deadline.

    Args:
        condition: Readiness check.
        deadline: Stop polling once this expires or is cancelled.
        interval: Seconds between attempts.
        description: What is being waited for, for the error message.
        raise_on_timeout: Return False instead of raising at the deadline.

    Returns:
        True once the condition holds; False at the deadline when not raising.

    Raises:
        PollingTimeoutError: At the deadline, if raise_on_timeout is True.
    """
    last_error: Exception | None = None

    while True:
        try:
            if condition():
                return True
        except Exception as e:  # noqa: BLE001
            last_error = e

        if deadline.expired:
            if raise_on_timeout:
                raise PollingTimeoutError(description, deadline, last_error)
            return False

        remaining = deadline.remaining()
        time.sleep(interval if remaining is None else min(interval, remaining))


__all__ = [
    "PollingTimeoutError",
    "wait_for_condition",
]
