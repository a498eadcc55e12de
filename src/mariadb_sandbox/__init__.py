"""Disposable, isolated MariaDB databases for concurrent test suites.

One MariaDB server is started per test campaign; every test receives its own
uniquely named database, a connection scoped to it, and a guaranteed cleanup
path.

Example:
    >>> from mariadb_sandbox import IsolationManager
    >>> campaign = IsolationManager.start()
    >>> manager = campaign.spawn()
    >>> namespace = manager.create_database()
    >>> conn = manager.connect()
    >>> manager.remove_database()
    >>> campaign.stop()

Public API:
    - IsolationManager: start/stop the server, create/remove/connect databases
    - IsolationSettings, ServerConfig, Namespace: configuration models
    - Deadline: cancellable deadline accepted by every blocking call
    - ConnectionFactory, NamespaceProvisioner: lower-level building blocks
    - CollectingSink: diagnostics sink for asserting on cleanup failures
"""

from __future__ import annotations

from mariadb_sandbox.config import IsolationSettings, Namespace, ServerConfig
from mariadb_sandbox.connection import ConnectionFactory, DsnParameters, build_dsn, parse_dsn
from mariadb_sandbox.deadline import Deadline
from mariadb_sandbox.diagnostics import CleanupSink, CollectingSink, log_cleanup_error
from mariadb_sandbox.errors import (
    CleanupError,
    DatabaseConnectionError,
    IsolationError,
    OperationTimeoutError,
    ProvisioningError,
    ProvisioningTimeoutError,
    StartupError,
    StartupTimeoutError,
    StateError,
)
from mariadb_sandbox.launcher import (
    CredentialObserver,
    ServerHandle,
    ServerLauncher,
    TestcontainersLauncher,
)
from mariadb_sandbox.manager import IsolatedDatabase, IsolationManager, NamespaceState
from mariadb_sandbox.namespaces import generate_unique_namespace, validate_namespace
from mariadb_sandbox.provisioner import NamespaceProvisioner

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Manager
    "IsolatedDatabase",
    "IsolationManager",
    "NamespaceState",
    # Configuration
    "IsolationSettings",
    "Namespace",
    "ServerConfig",
    # Building blocks
    "ConnectionFactory",
    "CredentialObserver",
    "Deadline",
    "DsnParameters",
    "NamespaceProvisioner",
    "ServerHandle",
    "ServerLauncher",
    "TestcontainersLauncher",
    "build_dsn",
    "generate_unique_namespace",
    "parse_dsn",
    "validate_namespace",
    # Diagnostics
    "CleanupSink",
    "CollectingSink",
    "log_cleanup_error",
    # Errors
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
