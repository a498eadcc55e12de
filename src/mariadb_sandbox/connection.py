"""Connection strings and client connections for the shared server.

Connection strings use the portable DSN format understood by standard MySQL
clients:

    user:password@tcp(host:port)/[database]?parseTime=true&multiStatements=true

The database part is empty for administrative connections and set to the
namespace for scoped ones. ``ConnectionFactory`` turns such a DSN into a
PyMySQL connection: ``parseTime`` keeps conversion of temporal columns to
``datetime`` values and ``multiStatements`` sets the multi-statement client
flag.

Example:
    >>> factory = ConnectionFactory()
    >>> with factory.admin_connection_context(server) as conn:
    ...     with conn.cursor() as cursor:
    ...         cursor.execute("SELECT 1")
"""

from __future__ import annotations

import re
from collections.abc import Callable, Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl, quote, unquote, urlencode

import pymysql
import structlog
from pymysql.constants import CLIENT, FIELD_TYPE
from pymysql.converters import conversions

from mariadb_sandbox.errors import DatabaseConnectionError, OperationTimeoutError

if TYPE_CHECKING:
    from pymysql.connections import Connection

    from mariadb_sandbox.config import Namespace, ServerConfig
    from mariadb_sandbox.deadline import Deadline

logger = structlog.get_logger(__name__)

ConnectFunc = Callable[..., "Connection"]

DEFAULT_PARAMS: dict[str, str] = {
    "parseTime": "true",
    "multiStatements": "true",
}

_DSN_PATTERN = re.compile(
    r"^(?P<user>[^:@]*)(?::(?P<password>.*))?@tcp\((?P<host>[^()]+):(?P<port>\d+)\)"
    r"/(?P<database>[^?]*)(?:\?(?P<params>.*))?$"
)

_TEMPORAL_TYPES = frozenset(
    {
        FIELD_TYPE.DATE,
        FIELD_TYPE.DATETIME,
        FIELD_TYPE.TIMESTAMP,
        FIELD_TYPE.TIME,
        FIELD_TYPE.NEWDATE,
    }
)

# Temporal columns come back as plain strings when parseTime=false
_RAW_TIME_CONVERSIONS = {k: v for k, v in conversions.items() if k not in _TEMPORAL_TYPES}


@dataclass(frozen=True)
class DsnParameters:
    """Parsed form of a connection string."""

    user: str
    password: str = field(repr=False)
    host: str
    port: int
    database: str | None = None
    parse_time: bool = True
    multi_statements: bool = True

    @property
    def endpoint(self) -> str:
        return f"{self.host}:{self.port}"


def build_dsn(
    user: str,
    password: str,
    host: str,
    port: int,
    database: str | None = None,
    params: dict[str, str] | None = None,
) -> str:
    """Build a connection string.

    Args:
        user: User to authenticate as.
        password: The user's password.
        host: Server host.
        port: Server port.
        database: Default database, or None for server-global scope.
        params: Query parameters; defaults to parseTime and multiStatements.

    Returns:
        Connection string in ``user:password@tcp(host:port)/db?params`` form.
    """
    query = urlencode(params if params is not None else DEFAULT_PARAMS)
    return f"{user}:{password}@tcp({host}:{port})/{quote(database or '', safe='-_')}?{query}"


def parse_dsn(dsn: str) -> DsnParameters:
    """Parse a connection string.

    The password may itself contain ``:`` or ``@``; the last ``@tcp(``
    separates credentials from the address.

    Raises:
        ValueError: If the string is not in the expected format.

    Example:
        >>> params = parse_dsn("app:s3cr@t@tcp(localhost:3306)/n1?parseTime=true")
        >>> params.password, params.database
        ('s3cr@t', 'n1')
    """
    match = _DSN_PATTERN.match(dsn)
    if match is None:
        msg = "Connection string must look like user:password@tcp(host:port)/database?params"
        raise ValueError(msg)

    params = dict(parse_qsl(match.group("params") or "", keep_blank_values=True))

    return DsnParameters(
        user=match.group("user"),
        password=match.group("password") or "",
        host=match.group("host"),
        port=int(match.group("port")),
        database=unquote(match.group("database")) or None,
        parse_time=_flag(params.get("parseTime", "false")),
        multi_statements=_flag(params.get("multiStatements", "false")),
    )


def _flag(value: str) -> bool:
    return value.lower() in {"1", "true"}


def _driver_error_code(error: Exception) -> int | None:
    """Get the server error code (e.g. 1045) from a driver error."""
    if isinstance(error, pymysql.MySQLError) and error.args and isinstance(error.args[0], int):
        return error.args[0]
    return None


class ConnectionFactory:
    """Build administrative and scoped connections to a server.

    Args:
        connect: Driver connect callable. Defaults to ``pymysql.connect``.
        charset: Client character set.
    """

    def __init__(
        self,
        connect: ConnectFunc | None = None,
        *,
        charset: str = "utf8mb4",
    ) -> None:
        self._connect = connect if connect is not None else pymysql.connect
        self._charset = charset

    def admin_dsn(self, server: ServerConfig) -> str:
        """Get the connection string for the administrative user."""
        return build_dsn(
            server.admin_username,
            server.admin_password.get_secret_value(),
            server.address,
            server.port,
        )

    def scoped_dsn(self, server: ServerConfig, namespace: Namespace | str) -> str:
        """Get the connection string for the campaign user bound to ``namespace``."""
        return build_dsn(
            server.username,
            server.password.get_secret_value(),
            server.address,
            server.port,
            database=str(namespace),
        )

    def admin_connection(
        self,
        server: ServerConfig,
        deadline: Deadline | None = None,
    ) -> Connection:
        """Open a connection as the administrative user, in server-global scope.

        Reads and writes on the connection are bounded by the deadline, since
        administrative connections only live for one unit of work.

        Raises:
            DatabaseConnectionError: If authentication or the network fails.
            OperationTimeoutError: If the deadline is over.
        """
        return self.open(
            self.admin_dsn(server),
            deadline,
            operation="admin_connection",
            bound_io=True,
        )

    @contextmanager
    def admin_connection_context(
        self,
        server: ServerConfig,
        deadline: Deadline | None = None,
    ) -> Generator[Connection, None, None]:
        """Context manager for an administrative connection.

        The connection is closed on every exit path. A failure to close is
        logged and does not mask the original outcome.
        """
        conn = self.admin_connection(server, deadline)
        try:
            yield conn
        finally:
            try:
                conn.close()
            except (pymysql.MySQLError, OSError) as e:
                logger.debug(
                    "admin_connection.close_failed",
                    endpoint=server.endpoint,
                    error=str(e),
                )

    def scoped_connection(
        self,
        server: ServerConfig,
        namespace: Namespace | str,
        deadline: Deadline | None = None,
    ) -> Connection:
        """Open a connection as the campaign user with ``namespace`` selected.

        Only the connection attempt is bounded by the deadline; the returned
        connection is left without read/write timeouts for the test to use.

        Raises:
            DatabaseConnectionError: If authentication fails, or the database
                does not exist or was not granted.
            OperationTimeoutError: If the deadline is over.
        """
        return self.open(self.scoped_dsn(server, namespace), deadline, operation="connect")

    def open(
        self,
        dsn: str,
        deadline: Deadline | None = None,
        *,
        operation: str = "connect",
        bound_io: bool = False,
    ) -> Connection:
        """Open a connection described by a connection string.

        Args:
            dsn: Connection string.
            deadline: Optional deadline bounding the attempt.
            operation: Operation name for errors and logs.
            bound_io: Also bound reads and writes by the deadline.

        Returns:
            An open driver connection.
        """
        params = parse_dsn(dsn)
        if deadline is not None:
            deadline.check(operation)

        kwargs = self._driver_kwargs(params, deadline, bound_io=bound_io)

        try:
            conn = self._connect(**kwargs)
        except (pymysql.MySQLError, OSError) as e:
            if deadline is not None and deadline.expired:
                raise OperationTimeoutError(
                    operation, deadline.timeout, cancelled=deadline.cancelled
                ) from e
            code = _driver_error_code(e)
            logger.debug(
                f"{operation}.failed",
                endpoint=params.endpoint,
                user=params.user,
                database=params.database,
                code=code,
            )
            raise DatabaseConnectionError(
                params.endpoint,
                user=params.user,
                database=params.database,
                code=code,
                cause=e,
            ) from e

        logger.debug(
            f"{operation}.opened",
            endpoint=params.endpoint,
            user=params.user,
            database=params.database,
        )
        return conn

    def _driver_kwargs(
        self,
        params: DsnParameters,
        deadline: Deadline | None,
        *,
        bound_io: bool,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "host": params.host,
            "port": params.port,
            "user": params.user,
            "password": params.password,
            "database": params.database,
            "charset": self._charset,
            "autocommit": False,
        }

        if params.multi_statements:
            kwargs["client_flag"] = CLIENT.MULTI_STATEMENTS
        if not params.parse_time:
            kwargs["conv"] = _RAW_TIME_CONVERSIONS

        remaining = deadline.remaining() if deadline is not None else None
        if remaining is not None:
            # The driver rejects zero timeouts
            timeout = max(remaining, 0.001)
            kwargs["connect_timeout"] = timeout
            if bound_io:
                kwargs["read_timeout"] = timeout
                kwargs["write_timeout"] = timeout

        return kwargs


__all__ = [
    "ConnectionFactory",
    "DEFAULT_PARAMS",
    "DsnParameters",
    "build_dsn",
    "parse_dsn",
]
