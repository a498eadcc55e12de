"""Root-level test configuration for mariadb-sandbox.

Unit tests (tests/unit) run against in-memory fakes of the SQL driver and
the server launcher. Integration tests (tests/integration) start a real
MariaDB container and need a Docker daemon.
"""

from __future__ import annotations

import pytest


def pytest_configure(config: pytest.Config) -> None:
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: Integration tests requiring a Docker daemon",
    )
