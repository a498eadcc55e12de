"""Custom exceptions for mariadb-sandbox.

Exception Hierarchy:
    IsolationError (base)
    ├── StartupError (server could not be launched or resolved)
    │   └── StartupTimeoutError
    ├── ProvisioningError (create or grant failed)
    │   └── ProvisioningTimeoutError
    ├── DatabaseConnectionError (authentication or network failure)
    ├── CleanupError (drop or terminate failed; reported, never raised to tests)
    ├── StateError (operation called in the wrong namespace state)
    └── OperationTimeoutError (deadline expired or cancelled)

Example:
    >>> from mariadb_sandbox.errors import ProvisioningError
    >>> raise ProvisioningError("ns1", step="grant", created=True)
    ProvisioningError: Failed to provision database 'ns1' at step 'grant'
"""

from __future__ import annotations


class IsolationError(Exception):
    """Base exception for all mariadb-sandbox errors.

    Attributes:
        message: Human-readable error message.
    """

    def __init__(self, message: str) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message.
        """
        self.message = message
        super().__init__(message)


class OperationTimeoutError(IsolationError, TimeoutError):
    """Raised when a blocking call exceeds its deadline or is cancelled.

    Attributes:
        operation: The operation that timed out.
        timeout: The timeout in seconds, if known.
        cancelled: True if the deadline was cancelled rather than expired.
    """

    def __init__(
        self,
        operation: str,
        timeout: float | None = None,
        *,
        cancelled: bool = False,
    ) -> None:
        self.operation = operation
        self.timeout = timeout
        self.cancelled = cancelled
        if cancelled:
            message = f"{operation} was cancelled"
        elif timeout is not None:
            message = f"{operation} timed out after {timeout:.1f}s"
        else:
            message = f"{operation} exceeded its deadline"
        super().__init__(message)


class StartupError(IsolationError):
    """Raised when the database server fails to launch.

    Fatal to the whole campaign: no test can proceed without a server.

    Attributes:
        image: The server image that was being launched.
        cause: The underlying exception, if any.
    """

    def __init__(
        self,
        reason: str,
        *,
        image: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        self.reason = reason
        self.image = image
        self.cause = cause
        message = "Database server startup failed"
        if image:
            message = f"{message} ({image})"
        message = f"{message}: {reason}"
        if cause is not None:
            message = f"{message} - {cause}"
        super().__init__(message)


class StartupTimeoutError(StartupError, OperationTimeoutError):
    """Raised when the server is not ready within the startup timeout."""

    def __init__(self, timeout: float | None, *, image: str | None = None) -> None:
        self.reason = "startup timed out"
        self.image = image
        self.cause = None
        self.operation = "start"
        self.timeout = timeout
        self.cancelled = False
        message = "Database server startup failed"
        if image:
            message = f"{message} ({image})"
        if timeout is not None:
            message = f"{message}: not ready after {timeout:.1f}s"
        else:
            message = f"{message}: deadline exceeded"
        IsolationError.__init__(self, message)


class ProvisioningError(IsolationError):
    """Raised when a database namespace cannot be fully provisioned.

    Fatal to the test that requested the namespace. When ``created`` is
    True the CREATE DATABASE statement succeeded before the failure, so the
    database exists on the server and must still be dropped.

    Attributes:
        namespace: Name of the database being provisioned.
        step: Step that failed ("connect", "begin", "create", "grant" or "commit").
        created: Whether the database exists despite the failure.
        cause: The underlying exception, if any.
    """

    def __init__(
        self,
        namespace: str,
        *,
        step: str,
        created: bool = False,
        cause: Exception | None = None,
    ) -> None:
        self.namespace = namespace
        self.step = step
        self.created = created
        self.cause = cause
        message = f"Failed to provision database '{namespace}' at step '{step}'"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class ProvisioningTimeoutError(ProvisioningError, OperationTimeoutError):
    """Raised when provisioning exceeds its deadline."""

    def __init__(
        self,
        namespace: str,
        *,
        step: str,
        created: bool = False,
        timeout: float | None = None,
        cancelled: bool = False,
    ) -> None:
        self.namespace = namespace
        self.step = step
        self.created = created
        self.cause = None
        self.operation = "create_database"
        self.timeout = timeout
        self.cancelled = cancelled
        message = f"Failed to provision database '{namespace}' at step '{step}': deadline exceeded"
        IsolationError.__init__(self, message)


class DatabaseConnectionError(IsolationError):
    """Raised when a client connection cannot be established.

    Attributes:
        address: "host:port" of the server.
        user: User the connection authenticated as.
        database: Default database requested, or None for admin connections.
        code: Driver error code (e.g. 1045 access denied), if available.
    """

    def __init__(
        self,
        address: str,
        *,
        user: str,
        database: str | None = None,
        code: int | None = None,
        cause: Exception | None = None,
    ) -> None:
        self.address = address
        self.user = user
        self.database = database
        self.code = code
        self.cause = cause
        target = f"{address}/{database}" if database else address
        message = f"Failed to connect to {target} as '{user}'"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class CleanupError(IsolationError):
    """Raised when a namespace drop or server termination fails.

    Cleanup errors are delivered to a diagnostics sink and never escalated:
    the test verdict is already decided by the time cleanup runs.

    Attributes:
        resource: Kind of resource ("database", "connection" or "server").
        name: Identifier of the resource.
        cause: The underlying exception, if any.
    """

    def __init__(
        self,
        resource: str,
        name: str,
        *,
        cause: Exception | None = None,
    ) -> None:
        self.resource = resource
        self.name = name
        self.cause = cause
        message = f"Failed to clean up {resource} '{name}'"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class StateError(IsolationError):
    """Raised when an operation is called outside its valid state.

    Attributes:
        operation: The rejected operation.
        state: Name of the state the manager was in.
    """

    def __init__(self, operation: str, state: str, detail: str = "") -> None:
        self.operation = operation
        self.state = state
        message = f"Cannot {operation} in state '{state}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


__all__ = [
    "CleanupError",
    "DatabaseConnectionError",
    "IsolationError",
    "OperationTimeoutError",
    "ProvisioningError",
    "ProvisioningTimeoutError",
    "StartupError",
    "StartupTimeoutError",
    "StateError",
]
