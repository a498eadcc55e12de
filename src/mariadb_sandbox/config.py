"""Configuration models for mariadb-sandbox.

Models:
    IsolationSettings: Campaign-wide policy (image, timeouts, charset), read
        from ``MARIADB_SANDBOX_*`` environment variables.
    ServerConfig: Address and credentials of one running server, captured
        once at startup and shared read-only by every manager.
    Namespace: One isolated logical database.

Example:
    >>> from mariadb_sandbox.config import IsolationSettings
    >>> settings = IsolationSettings(provision_timeout=30.0)
    >>> settings.image
    'mariadb:11.4'
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mariadb_sandbox.namespaces import validate_namespace

# MariaDB listens on 3306 inside the container
MARIADB_PORT = 3306

# Administrative account provisioned by the MariaDB image
ADMIN_USERNAME = "root"


class IsolationSettings(BaseSettings):
    """Settings for one test campaign.

    Environment Variables:
        MARIADB_SANDBOX_IMAGE: Server image (default "mariadb:11.4").
        MARIADB_SANDBOX_CHARSET: Character set for created databases.
        MARIADB_SANDBOX_COLLATION: Collation for created databases.
        MARIADB_SANDBOX_NAMESPACE_PREFIX: Optional prefix for database names.
        MARIADB_SANDBOX_STARTUP_TIMEOUT: Seconds to wait for the server.
        MARIADB_SANDBOX_PROVISION_TIMEOUT: Seconds per create_database call.
        MARIADB_SANDBOX_REMOVAL_TIMEOUT: Seconds per remove_database call.
        MARIADB_SANDBOX_CONNECT_TIMEOUT: Seconds per scoped connect call.
        MARIADB_SANDBOX_SHUTDOWN_TIMEOUT: Seconds to wait for termination.
        MARIADB_SANDBOX_READINESS_INTERVAL: Seconds between readiness probes.
    """

    model_config = SettingsConfigDict(
        env_prefix="MARIADB_SANDBOX_",
        frozen=True,
        extra="ignore",
    )

    image: str = Field(
        default="mariadb:11.4",
        min_length=1,
        description="Container image for the shared server",
    )
    charset: str = Field(
        default="utf8mb4",
        pattern=r"^[A-Za-z0-9_]+$",
        description="Character set for created databases",
    )
    collation: str = Field(
        default="utf8mb4_unicode_ci",
        pattern=r"^[A-Za-z0-9_]+$",
        description="Collation for created databases",
    )
    namespace_prefix: str = Field(
        default="",
        max_length=24,
        description="Optional prefix prepended to generated database names",
    )
    startup_timeout: float = Field(
        default=300.0,
        gt=0,
        description="Seconds to wait for the server to accept connections",
    )
    provision_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Seconds allowed for one create_database call",
    )
    removal_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Seconds allowed for one remove_database call",
    )
    connect_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds allowed for one scoped connect call",
    )
    shutdown_timeout: float = Field(
        default=20.0,
        gt=0,
        description="Seconds to wait for server termination",
    )
    readiness_interval: float = Field(
        default=1.0,
        ge=0.1,
        description="Seconds between readiness probes during startup",
    )


class ServerConfig(BaseModel):
    """Address and credentials of a running server.

    Immutable once captured. The administrative account is used only for
    provisioning; ``username``/``password`` belong to the campaign's
    non-administrative user that receives per-database grants.

    Attributes:
        address: Externally reachable host.
        port: Externally mapped port.
        admin_username: Administrative user (normally "root").
        admin_password: Administrative password.
        username: Campaign user granted access to each namespace.
        password: Campaign user's password.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    address: str = Field(..., min_length=1)
    port: int = Field(..., ge=1, le=65535)
    admin_username: str = Field(default=ADMIN_USERNAME, min_length=1)
    admin_password: SecretStr
    username: str = Field(..., min_length=1)
    password: SecretStr

    @property
    def endpoint(self) -> str:
        """Get "host:port" for logging and error messages."""
        return f"{self.address}:{self.port}"


class Namespace(BaseModel):
    """An isolated logical database on the shared server."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not validate_namespace(value):
            msg = f"'{value}' is not a valid database name"
            raise ValueError(msg)
        return value

    def __str__(self) -> str:
        return self.name


__all__ = [
    "ADMIN_USERNAME",
    "IsolationSettings",
    "MARIADB_PORT",
    "Namespace",
    "ServerConfig",
]
