"""Integration test configuration.

Integration tests run against a real MariaDB container started once for the
session by the plugin's ``mariadb_campaign`` fixture. They are skipped when
no Docker daemon is reachable.
"""

from __future__ import annotations

from collections.abc import Generator

import docker
import pytest
from docker.errors import DockerException

from mariadb_sandbox.config import IsolationSettings
from mariadb_sandbox.diagnostics import CollectingSink
from mariadb_sandbox.manager import IsolationManager


def _docker_available() -> bool:
    try:
        client = docker.from_env()
    except DockerException:
        return False
    try:
        return bool(client.ping())
    except DockerException:
        return False
    finally:
        client.close()


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    integration = [item for item in items if item.get_closest_marker("integration")]
    if not integration or _docker_available():
        return
    skip = pytest.mark.skip(reason="Docker daemon not available")
    for item in integration:
        item.add_marker(skip)


@pytest.fixture(scope="session")
def cleanup_sink() -> CollectingSink:
    """Sink shared by every manager in the session."""
    return CollectingSink()


@pytest.fixture(scope="session")
def mariadb_campaign(
    mariadb_settings: IsolationSettings,
    cleanup_sink: CollectingSink,
) -> Generator[IsolationManager, None, None]:
    """Shared server for the session, reporting cleanup failures to ``cleanup_sink``."""
    manager = IsolationManager.start(mariadb_settings, diagnostics=cleanup_sink)
    try:
        yield manager
    finally:
        manager.stop()


@pytest.fixture
def manager(mariadb_campaign: IsolationManager) -> Generator[IsolationManager, None, None]:
    """Manager for one test; its database is removed afterwards."""
    spawned = mariadb_campaign.spawn()
    try:
        yield spawned
    finally:
        spawned.remove_database()
