"""Server launcher backed by testcontainers.

The launcher starts one MariaDB container per campaign. The credentials it
generates are handed to the container through environment variables and are
not exposed on the running container object, so callers observe them with a
pre-create hook: a callable invoked with the final container environment
right before the container is created.

Classes:
    ServerHandle: Protocol for a running server
    ServerLauncher: Protocol for anything that can start a server
    CredentialObserver: Pre-create hook capturing generated credentials
    TestcontainersLauncher: Default launcher running a MariaDB container

Example:
    >>> observer = CredentialObserver()
    >>> handle = TestcontainersLauncher().launch(
    ...     "mariadb:11.4", pre_create_hooks=[observer], deadline=Deadline.after(300)
    ... )
    >>> server = observer.server_config(handle.host(), handle.mapped_port(3306))
"""

from __future__ import annotations

import secrets
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol

import pymysql
import structlog
from pydantic import SecretStr
from testcontainers.mysql import MySqlContainer

from mariadb_sandbox.config import ADMIN_USERNAME, MARIADB_PORT, ServerConfig
from mariadb_sandbox.errors import StartupError
from mariadb_sandbox.polling import wait_for_condition

if TYPE_CHECKING:
    from mariadb_sandbox.connection import ConnectFunc
    from mariadb_sandbox.deadline import Deadline

logger = structlog.get_logger(__name__)

PreCreateHook = Callable[[Mapping[str, str]], None]

# Environment variables read by the MariaDB image, preferred name first
_ROOT_PASSWORD_VARS = ("MARIADB_ROOT_PASSWORD", "MYSQL_ROOT_PASSWORD")
_USER_VARS = ("MARIADB_USER", "MYSQL_USER")
_PASSWORD_VARS = ("MARIADB_PASSWORD", "MYSQL_PASSWORD")

CAMPAIGN_USERNAME = "sandbox"


class ServerHandle(Protocol):
    """A running database server."""

    def host(self) -> str: ...

    def mapped_port(self, port: int) -> int: ...

    def terminate(self, deadline: Deadline) -> None: ...


class ServerLauncher(Protocol):
    """Something that can start a database server."""

    def launch(
        self,
        image: str,
        *,
        pre_create_hooks: Sequence[PreCreateHook],
        deadline: Deadline,
        **options: Any,
    ) -> ServerHandle: ...


class CredentialObserver:
    """Pre-create hook that records the credentials a launcher generated.

    The observer is the result slot for the credentials: it is written by the
    launcher while the server is being created and read once launching has
    returned.
    """

    def __init__(self) -> None:
        self._env: dict[str, str] | None = None

    def __call__(self, env: Mapping[str, str]) -> None:
        self._env = dict(env)

    @property
    def observed(self) -> bool:
        return self._env is not None

    def server_config(self, address: str, port: int) -> ServerConfig:
        """Build the server configuration from the observed credentials.

        Args:
            address: Externally reachable host of the server.
            port: Externally mapped port.

        Raises:
            StartupError: If no environment was observed or it lacks the
                root password or campaign user.
        """
        if self._env is None:
            raise StartupError("launcher never invoked the pre-create hook")

        root_password = _first(self._env, _ROOT_PASSWORD_VARS)
        username = _first(self._env, _USER_VARS)
        password = _first(self._env, _PASSWORD_VARS)

        if root_password is None:
            raise StartupError("server environment has no root password")
        if not username or password is None:
            raise StartupError("server environment has no non-administrative user")

        return ServerConfig(
            address=address,
            port=port,
            admin_username=ADMIN_USERNAME,
            admin_password=SecretStr(root_password),
            username=username,
            password=SecretStr(password),
        )


def _first(env: Mapping[str, str], names: Sequence[str]) -> str | None:
    for name in names:
        if name in env:
            return env[name]
    return None


class _ObservedMariaDbContainer(MySqlContainer):
    """MySqlContainer that runs pre-create hooks and polls for readiness."""

    def __init__(
        self,
        image: str,
        *,
        pre_create_hooks: Sequence[PreCreateHook],
        deadline: Deadline,
        readiness_interval: float,
        connect: ConnectFunc,
        **kwargs: Any,
    ) -> None:
        super().__init__(image, **kwargs)
        self._pre_create_hooks = list(pre_create_hooks)
        self._deadline = deadline
        self._readiness_interval = readiness_interval
        self._driver_connect = connect

    def _configure(self) -> None:
        super()._configure()
        for hook in self._pre_create_hooks:
            hook(dict(self.env))

    def _connect(self) -> None:
        wait_for_condition(
            self._accepts_connections,
            self._deadline,
            interval=self._readiness_interval,
            description=f"{self.image} readiness",
        )

    def _accepts_connections(self) -> bool:
        conn = self._driver_connect(
            host=self.get_container_host_ip(),
            port=int(self.get_exposed_port(MARIADB_PORT)),
            user=ADMIN_USERNAME,
            password=self.root_password,
            connect_timeout=5,
        )
        try:
            conn.ping(reconnect=False)
        finally:
            conn.close()
        return True


class ContainerServerHandle:
    """ServerHandle for a container started by TestcontainersLauncher."""

    def __init__(self, container: MySqlContainer) -> None:
        self._container = container

    @property
    def container(self) -> MySqlContainer:
        return self._container

    def host(self) -> str:
        return self._container.get_container_host_ip()

    def mapped_port(self, port: int) -> int:
        return int(self._container.get_exposed_port(port))

    def terminate(self, deadline: Deadline) -> None:
        deadline.check("terminate")
        self._container.stop()


class TestcontainersLauncher:
    """Launch MariaDB in a throwaway container.

    Credentials are generated per launch. Extra ``options`` passed to
    ``launch`` are forwarded to the container constructor.

    Args:
        readiness_interval: Seconds between readiness probes.
        connect: Driver connect callable used by the readiness probe.
    """

    __test__ = False

    def __init__(
        self,
        *,
        readiness_interval: float = 1.0,
        connect: ConnectFunc | None = None,
    ) -> None:
        self._readiness_interval = readiness_interval
        self._connect = connect if connect is not None else pymysql.connect

    def launch(
        self,
        image: str,
        *,
        pre_create_hooks: Sequence[PreCreateHook],
        deadline: Deadline,
        **options: Any,
    ) -> ContainerServerHandle:
        """Start a container and wait until it accepts connections.

        Raises:
            PollingTimeoutError: If the server is not ready before the deadline.
            Exception: Whatever the container runtime raises.
        """
        container = _ObservedMariaDbContainer(
            image,
            pre_create_hooks=pre_create_hooks,
            deadline=deadline,
            readiness_interval=self._readiness_interval,
            connect=self._connect,
            username=CAMPAIGN_USERNAME,
            password=secrets.token_hex(16),
            root_password=secrets.token_hex(16),
            **options,
        )

        logger.info("launch.starting", image=image)
        try:
            container.start()
        except BaseException:
            _discard(container, image)
            raise

        logger.info("launch.ready", image=image)
        return ContainerServerHandle(container)


def _discard(container: MySqlContainer, image: str) -> None:
    try:
        container.stop()
    except Exception as e:  # noqa: BLE001
        logger.warning("launch.discard_failed", image=image, error=str(e))


__all__ = [
    "CAMPAIGN_USERNAME",
    "ContainerServerHandle",
    "CredentialObserver",
    "PreCreateHook",
    "ServerHandle",
    "ServerLauncher",
    "TestcontainersLauncher",
]
