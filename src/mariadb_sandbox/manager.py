"""Isolation manager: one shared server, one private database per test.

The manager returned by ``IsolationManager.start`` owns the server for the
whole campaign. Every concurrently running test uses its own manager, obtained
with ``spawn()``, so each one tracks exactly one database at a time:

    EMPTY --create_database--> PROVISIONED --remove_database--> EMPTY
    EMPTY --create_database (grant failed)--> FAILED --remove_database--> EMPTY

Operations called outside their state raise ``StateError``.

Example:
    >>> campaign = IsolationManager.start()
    >>> manager = campaign.spawn()
    >>> with manager.isolated_database() as db:
    ...     with db.connection.cursor() as cursor:
    ...         cursor.execute("CREATE TABLE t (id INT)")
    >>> campaign.stop()
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Generator
from concurrent.futures import Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

import pymysql
import structlog

from mariadb_sandbox.config import MARIADB_PORT, IsolationSettings, Namespace, ServerConfig
from mariadb_sandbox.connection import ConnectionFactory
from mariadb_sandbox.deadline import Deadline
from mariadb_sandbox.diagnostics import CleanupSink, log_cleanup_error
from mariadb_sandbox.errors import (
    CleanupError,
    IsolationError,
    OperationTimeoutError,
    ProvisioningError,
    StartupError,
    StartupTimeoutError,
    StateError,
)
from mariadb_sandbox.launcher import CredentialObserver, TestcontainersLauncher
from mariadb_sandbox.namespaces import generate_unique_namespace
from mariadb_sandbox.provisioner import NamespaceProvisioner
from mariadb_sandbox.tracing import get_tracer, sandbox_span

if TYPE_CHECKING:
    from pymysql.connections import Connection

    from mariadb_sandbox.launcher import ServerHandle, ServerLauncher

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Worker threads poll at this interval so cancellation is noticed promptly
_CANCEL_POLL_INTERVAL = 0.5


class NamespaceState(enum.Enum):
    """State of a manager's namespace slot."""

    EMPTY = "empty"
    PROVISIONED = "provisioned"
    FAILED = "failed"


@dataclass(frozen=True)
class IsolatedDatabase:
    """A provisioned database and an open connection to it.

    Attributes:
        namespace: The private database.
        connection: Connection as the campaign user, database selected.
        dsn: Connection string for clients other than the one provided.
    """

    namespace: Namespace
    connection: Connection
    dsn: str

    @property
    def name(self) -> str:
        return self.namespace.name


class IsolationManager:
    """Hand out private databases on a shared server.

    Use ``start`` (launch and own a server), ``attach`` (use a running
    server) or ``spawn`` (another manager on the same server) rather than
    the constructor.
    """

    def __init__(
        self,
        server: ServerConfig,
        *,
        settings: IsolationSettings | None = None,
        handle: ServerHandle | None = None,
        factory: ConnectionFactory | None = None,
        provisioner: NamespaceProvisioner | None = None,
        diagnostics: CleanupSink | None = None,
    ) -> None:
        self._server = server
        self._settings = settings if settings is not None else IsolationSettings()
        self._handle = handle
        self._factory = factory if factory is not None else ConnectionFactory()
        self._provisioner = (
            provisioner
            if provisioner is not None
            else NamespaceProvisioner(
                self._factory,
                charset=self._settings.charset,
                collation=self._settings.collation,
            )
        )
        self._diagnostics = diagnostics if diagnostics is not None else log_cleanup_error
        self._tracer = get_tracer()

        self._state = NamespaceState.EMPTY
        self._namespace: Namespace | None = None
        self._connections: list[Connection] = []
        self._stopped = False

    # -- Campaign lifecycle -------------------------------------------------

    @classmethod
    def start(
        cls,
        settings: IsolationSettings | None = None,
        *,
        launcher: ServerLauncher | None = None,
        deadline: Deadline | None = None,
        diagnostics: CleanupSink | None = None,
        factory: ConnectionFactory | None = None,
        **launcher_options: Any,
    ) -> IsolationManager:
        """Launch the shared server and return the manager that owns it.

        Called once per campaign. The launcher's generated credentials are
        captured by a pre-create hook registered before launch and read once
        launch has returned.

        Args:
            settings: Campaign settings. Defaults to environment-driven ones.
            launcher: Server launcher. Defaults to TestcontainersLauncher.
            deadline: Optional caller deadline, narrowed by startup_timeout.
            diagnostics: Sink for cleanup failures.
            factory: Connection factory shared by every spawned manager.
            **launcher_options: Forwarded to ``launcher.launch``.

        Returns:
            The owning IsolationManager with an EMPTY namespace slot.

        Raises:
            StartupTimeoutError: If the server is not ready in time.
            StartupError: If launching or address resolution fails.
        """
        settings = settings if settings is not None else IsolationSettings()
        if launcher is None:
            launcher = TestcontainersLauncher(readiness_interval=settings.readiness_interval)
        bounded = Deadline.bounded(deadline, settings.startup_timeout)
        tracer = get_tracer()

        with sandbox_span(tracer, "start", extra_attributes={"sandbox.image": settings.image}):
            observer = CredentialObserver()

            logger.info("start.launching", image=settings.image, timeout=bounded.remaining())

            def launch() -> ServerHandle:
                return launcher.launch(
                    settings.image,
                    pre_create_hooks=[observer],
                    deadline=bounded,
                    **launcher_options,
                )

            try:
                handle = _run_bounded(
                    launch,
                    bounded,
                    "start",
                    on_late_result=lambda late: _terminate_late(late, settings.shutdown_timeout),
                )
            except OperationTimeoutError as e:
                logger.error("start.timeout", image=settings.image, timeout=bounded.timeout)
                raise StartupTimeoutError(bounded.timeout, image=settings.image) from e
            except StartupError:
                raise
            except Exception as e:
                logger.error("start.failed", image=settings.image, error=str(e))
                raise StartupError("launcher failed", image=settings.image, cause=e) from e

            try:
                server = observer.server_config(handle.host(), handle.mapped_port(MARIADB_PORT))
            except Exception as e:
                _terminate_late(handle, settings.shutdown_timeout)
                if isinstance(e, StartupError):
                    raise
                logger.error("start.resolve_failed", image=settings.image, error=str(e))
                raise StartupError(
                    "could not resolve server address", image=settings.image, cause=e
                ) from e

        logger.info("start.success", image=settings.image, endpoint=server.endpoint)
        return cls(
            server,
            settings=settings,
            handle=handle,
            factory=factory,
            diagnostics=diagnostics,
        )

    @classmethod
    def attach(
        cls,
        server: ServerConfig,
        settings: IsolationSettings | None = None,
        *,
        factory: ConnectionFactory | None = None,
        diagnostics: CleanupSink | None = None,
    ) -> IsolationManager:
        """Create a manager for a server that is already running.

        The manager does not own the server and cannot stop it.
        """
        logger.debug("attach", endpoint=server.endpoint)
        return cls(server, settings=settings, factory=factory, diagnostics=diagnostics)

    def spawn(self) -> IsolationManager:
        """Create another manager on the same server with an EMPTY slot.

        Use one spawned manager per concurrently running test.
        """
        return IsolationManager(
            self._server,
            settings=self._settings,
            factory=self._factory,
            provisioner=self._provisioner,
            diagnostics=self._diagnostics,
        )

    def stop(self, deadline: Deadline | None = None) -> None:
        """Terminate the shared server.

        Failures and timeouts are reported to the diagnostics sink, not
        raised: no test result depends on the server any more. Calling stop
        again is a no-op.

        Raises:
            StateError: If this manager does not own the server.
        """
        if self._handle is None:
            raise StateError(
                "stop", "attached", "only the manager returned by start() owns the server"
            )
        if self._stopped:
            logger.debug("stop.already_stopped", endpoint=self._server.endpoint)
            return

        self._stopped = True
        bounded = Deadline.bounded(deadline, self._settings.shutdown_timeout)
        handle = self._handle

        logger.info("stop.starting", endpoint=self._server.endpoint)
        with sandbox_span(
            self._tracer, "stop", address=self._server.address, port=self._server.port
        ) as span:
            try:
                _run_bounded(lambda: handle.terminate(bounded), bounded, "stop")
            except Exception as e:  # noqa: BLE001
                span.set_attribute("sandbox.cleanup_failed", True)
                self._report(CleanupError("server", self._server.endpoint, cause=e))
                return

        logger.info("stop.success", endpoint=self._server.endpoint)

    # -- Per-test namespace lifecycle -----------------------------------------

    def create_database(self, deadline: Deadline | None = None) -> Namespace:
        """Create a fresh private database and record it.

        Args:
            deadline: Optional caller deadline, narrowed by provision_timeout.

        Returns:
            The new namespace.

        Raises:
            StateError: If a namespace is already recorded.
            ProvisioningError: If the database could not be fully provisioned.
            ProvisioningTimeoutError: If provisioning exceeded its deadline.
        """
        if self._state is not NamespaceState.EMPTY:
            raise StateError(
                "create_database",
                self._state.value,
                f"remove database '{self._namespace}' first",
            )

        namespace = Namespace(name=generate_unique_namespace(self._settings.namespace_prefix))
        bounded = Deadline.bounded(deadline, self._settings.provision_timeout)

        with sandbox_span(
            self._tracer,
            "create_database",
            address=self._server.address,
            port=self._server.port,
            namespace=namespace.name,
        ):
            try:
                self._provisioner.create_namespace(self._server, namespace.name, bounded)
            except ProvisioningError as e:
                if e.created:
                    # Database exists without a usable grant; keep it for removal
                    self._namespace = namespace
                    self._state = NamespaceState.FAILED
                raise

        self._namespace = namespace
        self._state = NamespaceState.PROVISIONED
        logger.info("create_database.success", namespace=namespace.name)
        return namespace

    def remove_database(self, deadline: Deadline | None = None) -> None:
        """Drop the recorded database, if any.

        Scoped connections handed out by ``connect`` are closed first. The
        slot returns to EMPTY whatever the outcome; failures are reported to
        the diagnostics sink and never raised.

        Args:
            deadline: Optional caller deadline, narrowed by removal_timeout.
        """
        if self._state is NamespaceState.EMPTY or self._namespace is None:
            logger.debug("remove_database.nothing_to_remove")
            return

        namespace = self._namespace
        bounded = Deadline.bounded(deadline, self._settings.removal_timeout)

        self._close_connections(namespace)
        self._namespace = None
        self._state = NamespaceState.EMPTY

        with sandbox_span(
            self._tracer,
            "remove_database",
            address=self._server.address,
            port=self._server.port,
            namespace=namespace.name,
        ) as span:
            try:
                self._provisioner.drop_namespace(self._server, namespace.name, bounded)
            except CleanupError as e:
                span.set_attribute("sandbox.cleanup_failed", True)
                self._report(e)
                return

        logger.info("remove_database.success", namespace=namespace.name)

    def connect(self, deadline: Deadline | None = None) -> Connection:
        """Open a connection scoped to the recorded database.

        Raises:
            StateError: If no database is provisioned.
            DatabaseConnectionError: If the connection cannot be established.
            OperationTimeoutError: If the deadline expires first.
        """
        if self._state is not NamespaceState.PROVISIONED or self._namespace is None:
            raise StateError("connect", self._state.value, "call create_database first")

        bounded = Deadline.bounded(deadline, self._settings.connect_timeout)
        with sandbox_span(
            self._tracer,
            "connect",
            address=self._server.address,
            port=self._server.port,
            namespace=self._namespace.name,
        ):
            conn = self._factory.scoped_connection(self._server, self._namespace, bounded)

        self._connections.append(conn)
        return conn

    @contextmanager
    def isolated_database(
        self,
        deadline: Deadline | None = None,
    ) -> Generator[IsolatedDatabase, None, None]:
        """Provision a database and connection for the duration of a block.

        The database is removed on every exit path, including when
        connecting fails.

        Yields:
            IsolatedDatabase with the namespace, connection and DSN.
        """
        try:
            namespace = self.create_database(deadline)
        except ProvisioningError as e:
            if e.created:
                self.remove_database(deadline)
            raise
        try:
            conn = self.connect(deadline)
            yield IsolatedDatabase(
                namespace=namespace,
                connection=conn,
                dsn=self._factory.scoped_dsn(self._server, namespace),
            )
        finally:
            self.remove_database(deadline)

    # -- Introspection ------------------------------------------------------

    @property
    def server(self) -> ServerConfig:
        return self._server

    @property
    def settings(self) -> IsolationSettings:
        return self._settings

    @property
    def namespace(self) -> Namespace | None:
        return self._namespace

    @property
    def state(self) -> NamespaceState:
        return self._state

    @property
    def owns_server(self) -> bool:
        return self._handle is not None

    @property
    def handle(self) -> ServerHandle | None:
        return self._handle

    def scoped_dsn(self) -> str:
        """Get the connection string for the recorded database."""
        if self._state is not NamespaceState.PROVISIONED or self._namespace is None:
            raise StateError("build a connection string", self._state.value)
        return self._factory.scoped_dsn(self._server, self._namespace)

    def __repr__(self) -> str:
        return (
            f"IsolationManager(endpoint={self._server.endpoint!r}, "
            f"state={self._state.value}, namespace={self._namespace}, "
            f"owns_server={self.owns_server})"
        )

    # -- Internals ------------------------------------------------------------

    def _close_connections(self, namespace: Namespace) -> None:
        # Open transactions would hold metadata locks and block DROP DATABASE
        connections, self._connections = self._connections, []
        for conn in connections:
            if not conn.open:
                continue
            try:
                conn.close()
            except (pymysql.MySQLError, OSError) as e:
                self._report(CleanupError("connection", namespace.name, cause=e))

    def _report(self, error: CleanupError) -> None:
        try:
            self._diagnostics(error)
        except Exception as e:  # noqa: BLE001
            logger.error(
                "diagnostics.sink_failed",
                resource=error.resource,
                name=error.name,
                error=str(e),
            )


def _run_bounded(
    func: Callable[[], T],
    deadline: Deadline,
    operation: str,
    *,
    on_late_result: Callable[[T], None] | None = None,
) -> T:
    """Run ``func`` on a worker thread, giving up when the deadline ends.

    A call that outlives the deadline keeps running in the background; if it
    eventually succeeds its result is passed to ``on_late_result`` so the
    resource it produced can be released. A result that arrives after the
    deadline was cancelled counts as late.

    Raises:
        OperationTimeoutError: If the deadline expires or is cancelled first.
        Exception: Whatever ``func`` raises.
    """
    deadline.check(operation)
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="mariadb-sandbox")
    future: Future[T] = executor.submit(func)
    try:
        while True:
            remaining = deadline.remaining()
            if remaining is None or remaining > _CANCEL_POLL_INTERVAL:
                remaining = _CANCEL_POLL_INTERVAL
            done, _ = wait([future], timeout=remaining)
            if done and not deadline.cancelled:
                return future.result()
            if deadline.expired:
                break
    finally:
        executor.shutdown(wait=False)

    if on_late_result is not None:
        future.add_done_callback(lambda f: _deliver_late(f, on_late_result, operation))
    raise OperationTimeoutError(operation, deadline.timeout, cancelled=deadline.cancelled)


def _deliver_late(future: Future[T], callback: Callable[[T], None], operation: str) -> None:
    if future.cancelled() or future.exception() is not None:
        return
    try:
        callback(future.result())
    except Exception as e:  # noqa: BLE001
        logger.warning(f"{operation}.late_result_cleanup_failed", error=str(e))


def _terminate_late(handle: ServerHandle, timeout: float) -> None:
    try:
        handle.terminate(Deadline.after(timeout))
    except Exception as e:  # noqa: BLE001
        logger.warning("start.discard_failed", error=str(e))


__all__ = [
    "IsolatedDatabase",
    "IsolationManager",
    "NamespaceState",
]
