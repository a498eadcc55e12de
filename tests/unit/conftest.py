"""Pytest configuration for mariadb-sandbox unit tests.

Unit tests never touch a real server: the SQL driver and the launcher are
replaced by the fakes in ``tests.unit.fakes``.
"""

from __future__ import annotations

import os

import pytest
from pydantic import SecretStr

from mariadb_sandbox.config import IsolationSettings, ServerConfig
from mariadb_sandbox.connection import ConnectionFactory
from mariadb_sandbox.diagnostics import CollectingSink
from tests.unit.fakes import ROOT_PASSWORD, USER_PASSWORD, FakeDriver, FakeLauncher


@pytest.fixture
def server_config() -> ServerConfig:
    """ServerConfig for a server at 127.0.0.1:33060."""
    return ServerConfig(
        address="127.0.0.1",
        port=33060,
        admin_password=SecretStr(ROOT_PASSWORD),
        username="sandbox",
        password=SecretStr(USER_PASSWORD),
    )


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def factory(fake_driver: FakeDriver) -> ConnectionFactory:
    return ConnectionFactory(fake_driver)


@pytest.fixture
def fake_launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def sink() -> CollectingSink:
    return CollectingSink()


@pytest.fixture
def settings() -> IsolationSettings:
    """Settings with short timeouts, independent of the environment."""
    return IsolationSettings(
        startup_timeout=5.0,
        provision_timeout=5.0,
        removal_timeout=5.0,
        connect_timeout=5.0,
        shutdown_timeout=5.0,
    )


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove MARIADB_SANDBOX_* variables for settings tests."""
    for key in list(os.environ):
        if key.startswith("MARIADB_SANDBOX_"):
            monkeypatch.delenv(key)
