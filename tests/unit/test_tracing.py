"""Unit tests for sandbox tracing spans."""

from __future__ import annotations

from unittest.mock import patch

import pymysql
import pytest
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from mariadb_sandbox.config import IsolationSettings, ServerConfig
from mariadb_sandbox.connection import ConnectionFactory
from mariadb_sandbox.diagnostics import CollectingSink
from mariadb_sandbox.errors import ProvisioningError
from mariadb_sandbox.manager import IsolationManager
from mariadb_sandbox.tracing import (
    ATTR_DB_NAMESPACE,
    ATTR_DB_SYSTEM,
    ATTR_OPERATION,
    ATTR_SERVER_ADDRESS,
    ATTR_SERVER_PORT,
    TRACER_NAME,
    get_tracer,
    sandbox_span,
)
from tests.unit.fakes import FakeDriver


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def tracer_with_exporter(span_exporter: InMemorySpanExporter) -> trace.Tracer:
    """Tracer backed by an in-memory exporter."""
    provider = TracerProvider(resource=Resource.create({}))
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return provider.get_tracer("test.mariadb_sandbox")


class TestSandboxSpan:
    """Tests for sandbox_span()."""

    def test_name_and_attributes(
        self, tracer_with_exporter: trace.Tracer, span_exporter: InMemorySpanExporter
    ) -> None:
        with sandbox_span(
            tracer_with_exporter,
            "create_database",
            address="127.0.0.1",
            port=33060,
            namespace="n1",
            extra_attributes={"sandbox.image": "mariadb:11.4"},
        ):
            pass

        [span] = span_exporter.get_finished_spans()
        assert span.name == "sandbox.create_database"
        attrs = span.attributes
        assert attrs is not None
        assert attrs[ATTR_OPERATION] == "create_database"
        assert attrs[ATTR_DB_SYSTEM] == "mariadb"
        assert attrs[ATTR_SERVER_ADDRESS] == "127.0.0.1"
        assert attrs[ATTR_SERVER_PORT] == 33060
        assert attrs[ATTR_DB_NAMESPACE] == "n1"
        assert attrs["sandbox.image"] == "mariadb:11.4"
        assert span.status.status_code == StatusCode.OK

    def test_omits_unset_attributes(
        self, tracer_with_exporter: trace.Tracer, span_exporter: InMemorySpanExporter
    ) -> None:
        with sandbox_span(tracer_with_exporter, "stop"):
            pass

        attrs = span_exporter.get_finished_spans()[0].attributes
        assert attrs is not None
        assert ATTR_DB_NAMESPACE not in attrs
        assert ATTR_SERVER_ADDRESS not in attrs

    def test_error_records_type_only(
        self, tracer_with_exporter: trace.Tracer, span_exporter: InMemorySpanExporter
    ) -> None:
        with pytest.raises(ValueError), sandbox_span(tracer_with_exporter, "connect"):
            raise ValueError("Access denied for user 'sandbox' using password s3cret")

        [span] = span_exporter.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR
        assert span.status.description == "ValueError"
        [event] = span.events
        assert event.name == "exception"
        assert event.attributes is not None
        assert event.attributes["exception.message"] == "ValueError"
        assert "exception.stacktrace" not in event.attributes
        assert all("s3cret" not in str(value) for value in event.attributes.values())

    def test_get_tracer(self) -> None:
        assert get_tracer() is not None
        assert TRACER_NAME == "mariadb_sandbox"


class TestManagerSpans:
    """Tests for spans emitted by IsolationManager."""

    def test_lifecycle_spans(
        self,
        tracer_with_exporter: trace.Tracer,
        span_exporter: InMemorySpanExporter,
        server_config: ServerConfig,
        settings: IsolationSettings,
        factory: ConnectionFactory,
    ) -> None:
        with patch("mariadb_sandbox.manager.get_tracer", return_value=tracer_with_exporter):
            manager = IsolationManager.attach(server_config, settings, factory=factory)
        namespace = manager.create_database()
        manager.connect()
        manager.remove_database()

        spans = span_exporter.get_finished_spans()
        assert [s.name for s in spans] == [
            "sandbox.create_database",
            "sandbox.connect",
            "sandbox.remove_database",
        ]
        for span in spans:
            assert span.attributes is not None
            assert span.attributes[ATTR_DB_NAMESPACE] == namespace.name
            assert span.attributes[ATTR_SERVER_PORT] == 33060

    def test_failed_provisioning_marks_span(
        self,
        tracer_with_exporter: trace.Tracer,
        span_exporter: InMemorySpanExporter,
        server_config: ServerConfig,
        settings: IsolationSettings,
        factory: ConnectionFactory,
        fake_driver: FakeDriver,
    ) -> None:
        fake_driver.failures["GRANT"] = pymysql.err.OperationalError(1133, "no such user")
        with patch("mariadb_sandbox.manager.get_tracer", return_value=tracer_with_exporter):
            manager = IsolationManager.attach(server_config, settings, factory=factory)

        with pytest.raises(ProvisioningError):
            manager.create_database()

        [span] = span_exporter.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR
        assert span.status.description == "ProvisioningError"
        [event] = span.events
        assert "no such user" not in str(dict(event.attributes or {}))

    def test_cleanup_failure_flagged_on_span(
        self,
        tracer_with_exporter: trace.Tracer,
        span_exporter: InMemorySpanExporter,
        server_config: ServerConfig,
        settings: IsolationSettings,
        factory: ConnectionFactory,
        fake_driver: FakeDriver,
        sink: CollectingSink,
    ) -> None:
        with patch("mariadb_sandbox.manager.get_tracer", return_value=tracer_with_exporter):
            manager = IsolationManager.attach(
                server_config, settings, factory=factory, diagnostics=sink
            )
        manager.create_database()
        fake_driver.failures["DROP"] = pymysql.err.OperationalError(1010, "Error dropping database")

        manager.remove_database()

        span = span_exporter.get_finished_spans()[-1]
        assert span.name == "sandbox.remove_database"
        assert span.attributes is not None
        assert span.attributes["sandbox.cleanup_failed"] is True
        assert span.status.status_code == StatusCode.OK
