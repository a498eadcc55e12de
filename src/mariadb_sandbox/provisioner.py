"""Create, grant and drop per-test databases on the shared server.

All statements run over short-lived administrative connections that are
closed on every exit path, so a long campaign with many tests does not
exhaust the server's connection slots.

Example:
    >>> provisioner = NamespaceProvisioner(ConnectionFactory())
    >>> provisioner.create_namespace(server, "3f2b9c0a-5d7e-4b6f-8a1c-2d3e4f5a6b7c")
    >>> provisioner.drop_namespace(server, "3f2b9c0a-5d7e-4b6f-8a1c-2d3e4f5a6b7c")
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pymysql
import structlog

from mariadb_sandbox.errors import (
    CleanupError,
    DatabaseConnectionError,
    IsolationError,
    OperationTimeoutError,
    ProvisioningError,
    ProvisioningTimeoutError,
)
from mariadb_sandbox.namespaces import quote_identifier, quote_string

if TYPE_CHECKING:
    from pymysql.connections import Connection

    from mariadb_sandbox.config import ServerConfig
    from mariadb_sandbox.connection import ConnectionFactory
    from mariadb_sandbox.deadline import Deadline

logger = structlog.get_logger(__name__)


class NamespaceProvisioner:
    """Create and drop uniquely named databases.

    Args:
        factory: Factory for administrative connections.
        charset: Character set of created databases.
        collation: Collation of created databases.
        grant_host: Host pattern the campaign user is granted access from.
    """

    def __init__(
        self,
        factory: ConnectionFactory,
        *,
        charset: str = "utf8mb4",
        collation: str = "utf8mb4_unicode_ci",
        grant_host: str = "%",
    ) -> None:
        self._factory = factory
        self._charset = charset
        self._collation = collation
        self._grant_host = grant_host

    def create_statement(self, name: str) -> str:
        return (
            f"CREATE DATABASE {quote_identifier(name)} "
            f"CHARACTER SET {self._charset} COLLATE {self._collation}"
        )

    def grant_statement(self, name: str, user: str) -> str:
        return (
            f"GRANT ALL PRIVILEGES ON {quote_identifier(name)}.* "
            f"TO {quote_string(user)}@{quote_string(self._grant_host)}"
        )

    def drop_statement(self, name: str) -> str:
        return f"DROP DATABASE {quote_identifier(name)}"

    def create_namespace(
        self,
        server: ServerConfig,
        name: str,
        deadline: Deadline | None = None,
    ) -> None:
        """Create database ``name`` and grant the campaign user access to it.

        The create and grant statements run in one unit of work. MariaDB
        commits DDL implicitly, so when the grant fails the database is left
        behind; the raised error then has ``created=True`` and the caller is
        responsible for dropping it.

        Args:
            server: Server to provision on.
            name: Database name; the caller guarantees it is unused.
            deadline: Optional deadline bounding the whole operation.

        Raises:
            ProvisioningError: If connecting, creating, granting or committing
                fails.
            ProvisioningTimeoutError: If the deadline expires first.
        """
        step = "connect"
        created = False

        logger.debug("create_namespace.starting", endpoint=server.endpoint, namespace=name)

        try:
            with self._factory.admin_connection_context(server, deadline) as conn:
                step = "begin"
                conn.begin()
                try:
                    with conn.cursor() as cursor:
                        step = "create"
                        self._check(deadline, "create_namespace")
                        cursor.execute(self.create_statement(name))
                        created = True
                        step = "grant"
                        self._check(deadline, "create_namespace")
                        cursor.execute(self.grant_statement(name, server.username))
                    step = "commit"
                    self._check(deadline, "create_namespace")
                    conn.commit()
                except BaseException:
                    self._rollback(conn, name)
                    raise
        except OperationTimeoutError as e:
            logger.error(
                "create_namespace.timeout", namespace=name, step=step, created=created
            )
            raise ProvisioningTimeoutError(
                name, step=step, created=created, timeout=e.timeout, cancelled=e.cancelled
            ) from e
        except DatabaseConnectionError as e:
            logger.error("create_namespace.connect_failed", namespace=name, code=e.code)
            raise ProvisioningError(name, step="connect", cause=e) from e
        except (pymysql.MySQLError, OSError) as e:
            if deadline is not None and deadline.expired:
                logger.error(
                    "create_namespace.timeout", namespace=name, step=step, created=created
                )
                raise ProvisioningTimeoutError(
                    name,
                    step=step,
                    created=created,
                    timeout=deadline.timeout,
                    cancelled=deadline.cancelled,
                ) from e
            logger.error(
                "create_namespace.failed",
                namespace=name,
                step=step,
                created=created,
                error=str(e),
            )
            raise ProvisioningError(name, step=step, created=created, cause=e) from e

        logger.info("create_namespace.success", endpoint=server.endpoint, namespace=name)

    def drop_namespace(
        self,
        server: ServerConfig,
        name: str,
        deadline: Deadline | None = None,
    ) -> None:
        """Drop database ``name``.

        Args:
            server: Server the database lives on.
            name: Database name.
            deadline: Optional deadline bounding the whole operation.

        Raises:
            CleanupError: If the database could not be dropped.
        """
        logger.debug("drop_namespace.starting", endpoint=server.endpoint, namespace=name)

        try:
            with self._factory.admin_connection_context(server, deadline) as conn:
                with conn.cursor() as cursor:
                    self._check(deadline, "drop_namespace")
                    cursor.execute(self.drop_statement(name))
        except (IsolationError, pymysql.MySQLError, OSError) as e:
            raise CleanupError("database", name, cause=e) from e

        logger.info("drop_namespace.success", endpoint=server.endpoint, namespace=name)

    @staticmethod
    def _check(deadline: Deadline | None, operation: str) -> None:
        # Checked between statements; a running statement is not interrupted
        if deadline is not None:
            deadline.check(operation)

    def _rollback(self, conn: Connection, name: str) -> None:
        try:
            conn.rollback()
        except (pymysql.MySQLError, OSError) as e:
            # Connection may already be gone; closing releases it regardless
            logger.debug("create_namespace.rollback_failed", namespace=name, error=str(e))


__all__ = ["NamespaceProvisioner"]
