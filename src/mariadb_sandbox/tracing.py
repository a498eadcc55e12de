"""OpenTelemetry tracing helpers for mariadb-sandbox.

Lifecycle operations (start, stop, create_database, remove_database,
connect) each run inside a span so slow or failing provisioning shows up in
test-run traces.

Security:
    - Spans MUST NOT include passwords or DSNs with credentials
    - Only include server address, port and database name

Example:
    >>> from mariadb_sandbox.tracing import get_tracer, sandbox_span
    >>> tracer = get_tracer()
    >>> with sandbox_span(tracer, "create_database", namespace="n1") as span:
    ...     span.set_attribute("sandbox.step", "grant")
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

if TYPE_CHECKING:
    from collections.abc import Iterator

TRACER_NAME = "mariadb_sandbox"

# Attribute names follow the OpenTelemetry database semantic conventions
ATTR_DB_SYSTEM = "db.system"
ATTR_DB_NAMESPACE = "db.namespace"
ATTR_SERVER_ADDRESS = "server.address"
ATTR_SERVER_PORT = "server.port"
ATTR_OPERATION = "sandbox.operation"

DB_SYSTEM = "mariadb"


def get_tracer() -> trace.Tracer:
    """Get the tracer for sandbox operations (no-op without a provider)."""
    return trace.get_tracer(TRACER_NAME)


@contextmanager
def sandbox_span(
    tracer: trace.Tracer,
    operation: str,
    *,
    address: str | None = None,
    port: int | None = None,
    namespace: str | None = None,
    extra_attributes: dict[str, Any] | None = None,
) -> Iterator[trace.Span]:
    """Context manager for creating sandbox operation spans.

    Args:
        tracer: OpenTelemetry tracer instance.
        operation: Operation name (e.g., "create_database").
        address: Server host.
        port: Server port.
        namespace: Database name the operation targets.
        extra_attributes: Additional span attributes.

    Yields:
        The active span for adding custom attributes.
    """
    attributes: dict[str, Any] = {
        ATTR_OPERATION: operation,
        ATTR_DB_SYSTEM: DB_SYSTEM,
    }

    if address is not None:
        attributes[ATTR_SERVER_ADDRESS] = address
    if port is not None:
        attributes[ATTR_SERVER_PORT] = port
    if namespace is not None:
        attributes[ATTR_DB_NAMESPACE] = namespace
    if extra_attributes:
        attributes.update(extra_attributes)

    with tracer.start_as_current_span(
        f"sandbox.{operation}",
        attributes=attributes,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
            span.set_status(Status(StatusCode.OK))
        except Exception as e:
            # Exception type only; driver messages can echo credentials
            error_type = type(e).__name__
            span.set_status(Status(StatusCode.ERROR, error_type))
            span.add_event(
                "exception",
                attributes={"exception.type": error_type, "exception.message": error_type},
            )
            raise


__all__ = [
    "ATTR_DB_NAMESPACE",
    "ATTR_DB_SYSTEM",
    "ATTR_OPERATION",
    "ATTR_SERVER_ADDRESS",
    "ATTR_SERVER_PORT",
    "TRACER_NAME",
    "get_tracer",
    "sandbox_span",
]
