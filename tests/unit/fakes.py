"""In-memory fakes for the SQL driver and the server launcher.

``FakeDriver`` stands in for ``pymysql.connect`` and records every
connection and statement. ``FakeLauncher`` stands in for the container
launcher and feeds a fixed environment to the pre-create hooks.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

import pymysql

if TYPE_CHECKING:
    from mariadb_sandbox.deadline import Deadline

ROOT_PASSWORD = "root-secret"
USER_PASSWORD = "user-secret"


class FakeCursor:
    """Cursor that records statements on its connection."""

    def __init__(self, conn: FakeConnection) -> None:
        self._conn = conn

    def execute(self, statement: str) -> int:
        if not self._conn.open:
            raise pymysql.err.InterfaceError(0, "")
        for prefix, error in self._conn.failures.items():
            if statement.startswith(prefix):
                raise error() if callable(error) else error
        self._conn.executed.append(statement)
        for prefix, callback in self._conn.after_statement.items():
            if statement.startswith(prefix):
                callback()
        return 0

    def __enter__(self) -> FakeCursor:
        return self

    def __exit__(self, *exc: object) -> None:
        return None


class FakeConnection:
    """In-memory stand-in for a PyMySQL connection."""

    def __init__(
        self,
        kwargs: dict[str, Any],
        failures: Mapping[str, Any] | None = None,
        after_statement: Mapping[str, Callable[[], None]] | None = None,
    ) -> None:
        self.kwargs = kwargs
        self.failures = dict(failures or {})
        self.after_statement = dict(after_statement or {})
        self.executed: list[str] = []
        self.open = True
        self.began = False
        self.committed = False
        self.rolled_back = False
        self.close_error: Exception | None = None

    @property
    def user(self) -> str:
        return self.kwargs["user"]

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def begin(self) -> None:
        self.began = True

    def commit(self) -> None:
        if "COMMIT" in self.failures:
            raise self.failures["COMMIT"]
        self.committed = True

    def rollback(self) -> None:
        self.rolled_back = True

    def ping(self, reconnect: bool = True) -> None:  # noqa: ARG002
        return None

    def close(self) -> None:
        if not self.open:
            raise pymysql.err.Error("Already closed")
        self.open = False
        if self.close_error is not None:
            raise self.close_error


class FakeDriver:
    """Callable replacing ``pymysql.connect``.

    Attributes:
        connections: Every connection handed out, in order.
        connect_errors: Errors raised on connect, keyed by user name.
        failures: Statement-prefix failures applied to new connections; a
            value is an exception or a callable returning one.
        after_statement: Callbacks run once a statement with the given
            prefix has succeeded.
    """

    def __init__(self) -> None:
        self.connections: list[FakeConnection] = []
        self.connect_errors: dict[str, Exception] = {}
        self.failures: dict[str, Any] = {}
        self.after_statement: dict[str, Callable[[], None]] = {}
        self._lock = threading.Lock()

    def __call__(self, **kwargs: Any) -> FakeConnection:
        error = self.connect_errors.get(kwargs["user"])
        if error is not None:
            raise error
        conn = FakeConnection(kwargs, self.failures, self.after_statement)
        with self._lock:
            self.connections.append(conn)
        return conn

    def admin_connections(self) -> list[FakeConnection]:
        return [c for c in self.connections if c.user == "root"]

    def scoped_connections(self) -> list[FakeConnection]:
        return [c for c in self.connections if c.user != "root"]

    def open_admin_connections(self) -> int:
        return sum(1 for c in self.admin_connections() if c.open)

    def executed(self) -> list[str]:
        return [s for c in self.connections for s in c.executed]


class FakeHandle:
    """ServerHandle with a fixed address."""

    def __init__(self, host: str = "127.0.0.1", port: int = 33060) -> None:
        self._host = host
        self._port = port
        self.terminations = 0
        self.terminate_error: Exception | None = None
        self.terminate_delay = 0.0
        self.requested_ports: list[int] = []

    def host(self) -> str:
        return self._host

    def mapped_port(self, port: int) -> int:
        self.requested_ports.append(port)
        return self._port

    def terminate(self, deadline: Deadline) -> None:  # noqa: ARG002
        if self.terminate_delay:
            time.sleep(self.terminate_delay)
        self.terminations += 1
        if self.terminate_error is not None:
            raise self.terminate_error


class FakeLauncher:
    """ServerLauncher that calls hooks with a fixed environment."""

    def __init__(
        self,
        env: Mapping[str, str] | None = None,
        *,
        handle: FakeHandle | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
        invoke_hooks: bool = True,
    ) -> None:
        self.env = dict(
            env
            if env is not None
            else {
                "MYSQL_ROOT_PASSWORD": ROOT_PASSWORD,
                "MYSQL_USER": "sandbox",
                "MYSQL_PASSWORD": USER_PASSWORD,
                "MYSQL_DATABASE": "test",
            }
        )
        self.handle = handle if handle is not None else FakeHandle()
        self.error = error
        self.delay = delay
        self.invoke_hooks = invoke_hooks
        self.calls: list[dict[str, Any]] = []

    def launch(
        self,
        image: str,
        *,
        pre_create_hooks: Sequence[Any],
        deadline: Deadline,
        **options: Any,
    ) -> FakeHandle:
        self.calls.append({"image": image, "deadline": deadline, "options": options})
        if self.invoke_hooks:
            for hook in pre_create_hooks:
                hook(self.env)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.handle
