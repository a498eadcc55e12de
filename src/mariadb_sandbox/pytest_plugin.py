"""Pytest fixtures for isolated MariaDB databases.

Registered through the ``pytest11`` entry point, so installing the package
makes the fixtures available to any test suite.

Fixtures:
    mariadb_campaign: Session-wide manager owning the shared server
    isolated_database: Fresh database and connection for one test

Example:
    def test_insert(isolated_database) -> None:
        with isolated_database.connection.cursor() as cursor:
            cursor.execute("CREATE TABLE t (id INT)")
            cursor.execute("INSERT INTO t VALUES (1)")
"""

from __future__ import annotations

from collections.abc import Generator

import pytest

from mariadb_sandbox.config import IsolationSettings
from mariadb_sandbox.manager import IsolatedDatabase, IsolationManager
from mariadb_sandbox.telemetry import configure_logging


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register command line options."""
    group = parser.getgroup("mariadb-sandbox")
    group.addoption(
        "--sandbox-log-level",
        action="store",
        default=None,
        help="Configure structlog console output at this level for mariadb-sandbox",
    )


def pytest_configure(config: pytest.Config) -> None:
    """Configure logging if requested."""
    log_level = config.getoption("--sandbox-log-level", default=None)
    if log_level:
        configure_logging(log_level=log_level, json_output=False)


@pytest.fixture(scope="session")
def mariadb_settings() -> IsolationSettings:
    """Campaign settings; override to customise image or timeouts."""
    return IsolationSettings()


@pytest.fixture(scope="session")
def mariadb_campaign(
    mariadb_settings: IsolationSettings,
) -> Generator[IsolationManager, None, None]:
    """Start the shared server once per session and stop it afterwards."""
    manager = IsolationManager.start(mariadb_settings)
    try:
        yield manager
    finally:
        manager.stop()


@pytest.fixture
def isolated_database(
    mariadb_campaign: IsolationManager,
) -> Generator[IsolatedDatabase, None, None]:
    """Provide a private database and connection, dropped after the test."""
    manager = mariadb_campaign.spawn()
    with manager.isolated_database() as database:
        yield database


__all__ = [
    "isolated_database",
    "mariadb_campaign",
    "mariadb_settings",
]
