"""Database name utilities for isolated test namespaces.

Each test gets its own database, named from a random UUID so that names
never collide between concurrently running tests or between repeated
campaigns against the same server.

Functions:
    generate_unique_namespace: Create a unique database name
    validate_namespace: Check if a name is a valid unquoted-safe identifier
    quote_identifier: Backtick-quote an identifier for SQL statements

Example:
    from mariadb_sandbox.namespaces import generate_unique_namespace

    name = generate_unique_namespace("orders")
    # Returns: "orders_3f2b9c0a5d7e4b6f8a1c2d3e4f5a6b7c"
"""

from __future__ import annotations

import re
import uuid

# MariaDB identifier constraints
MAX_NAMESPACE_LENGTH = 64
NAMESPACE_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


class InvalidNamespaceError(ValueError):
    """Raised when a database name is not usable as a namespace."""

    def __init__(self, namespace: str, reason: str) -> None:
        self.namespace = namespace
        self.reason = reason
        super().__init__(f"Invalid namespace '{namespace}': {reason}")


def generate_unique_namespace(prefix: str = "") -> str:
    """Generate a unique database name.

    Without a prefix the name is a canonical UUID4 string. With a prefix
    the name is ``<prefix>_<uuid4 hex>``; the prefix is lowercased, stripped
    of characters outside ``[a-z0-9_]`` and truncated so the result fits the
    64 character identifier limit.

    Args:
        prefix: Optional human-readable prefix (e.g., a test module name).

    Returns:
        Unique database name.

    Raises:
        InvalidNamespaceError: If the generated name is not a valid identifier.

    Example:
        >>> a = generate_unique_namespace()
        >>> b = generate_unique_namespace()
        >>> a != b
        True
        >>> len(generate_unique_namespace("x" * 100)) <= 64
        True
    """
    if not prefix:
        namespace = str(uuid.uuid4())
    else:
        suffix = uuid.uuid4().hex
        normalized_prefix = re.sub(r"[^a-z0-9_]", "", prefix.lower().replace("-", "_"))
        normalized_prefix = normalized_prefix.strip("_")

        max_prefix_length = MAX_NAMESPACE_LENGTH - len(suffix) - 1
        normalized_prefix = normalized_prefix[:max_prefix_length].rstrip("_")

        namespace = f"{normalized_prefix}_{suffix}" if normalized_prefix else str(uuid.UUID(suffix))

    if not validate_namespace(namespace):
        raise InvalidNamespaceError(namespace, "Generated name is not a valid identifier")

    return namespace


def validate_namespace(namespace: str) -> bool:
    """Check if a name is a valid namespace.

    Valid names are 1-64 characters from ``[A-Za-z0-9_-]``.

    Example:
        >>> validate_namespace("0b8f7c2e-1d3a-4e5f-9a8b-7c6d5e4f3a2b")
        True
        >>> validate_namespace("bad name")
        False
        >>> validate_namespace("a" * 65)
        False
    """
    if not namespace:
        return False

    if len(namespace) > MAX_NAMESPACE_LENGTH:
        return False

    return NAMESPACE_PATTERN.fullmatch(namespace) is not None


def quote_identifier(identifier: str) -> str:
    """Backtick-quote an identifier, doubling embedded backticks.

    Example:
        >>> quote_identifier("a-b")
        '`a-b`'
        >>> quote_identifier("we`ird")
        '`we``ird`'
    """
    return "`" + identifier.replace("`", "``") + "`"


def quote_string(value: str) -> str:
    """Single-quote a string literal for account names and host patterns."""
    return "'" + value.replace("\\", "\\\\").replace("'", "''") + "'"


# Module exports
__all__ = [
    "InvalidNamespaceError",
    "MAX_NAMESPACE_LENGTH",
    "generate_unique_namespace",
    "quote_identifier",
    "quote_string",
    "validate_namespace",
]
