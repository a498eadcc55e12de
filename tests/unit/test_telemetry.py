"""Unit tests for structlog configuration and trace correlation."""

from __future__ import annotations

from collections.abc import Generator

import pytest
import structlog
from opentelemetry.sdk.trace import TracerProvider

from mariadb_sandbox.telemetry import add_trace_context, configure_logging


@pytest.fixture
def reset_structlog() -> Generator[None, None, None]:
    yield
    structlog.reset_defaults()


class TestAddTraceContext:
    """Tests for the add_trace_context processor."""

    def test_adds_ids_inside_span(self) -> None:
        tracer = TracerProvider().get_tracer("test")

        with tracer.start_as_current_span("op") as span:
            event = add_trace_context(None, "info", {"event": "x"})
            ctx = span.get_span_context()

        assert event["trace_id"] == format(ctx.trace_id, "032x")
        assert event["span_id"] == format(ctx.span_id, "016x")

    def test_no_ids_without_span(self) -> None:
        event = add_trace_context(None, "info", {"event": "x"})
        assert "trace_id" not in event
        assert "span_id" not in event


@pytest.mark.usefixtures("reset_structlog")
class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_json_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging("DEBUG", json_output=True)

        structlog.get_logger("test").info("create_namespace.success", namespace="n1")

        out = capsys.readouterr().out
        assert '"event": "create_namespace.success"' in out
        assert '"namespace": "n1"' in out
        assert '"level": "info"' in out

    def test_filters_below_level(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging("WARNING")

        structlog.get_logger("test").info("hidden")
        structlog.get_logger("test").warning("shown")

        out = capsys.readouterr().out
        assert "hidden" not in out
        assert "shown" in out

    def test_rejects_unknown_level(self) -> None:
        with pytest.raises(ValueError, match="Unknown log level"):
            configure_logging("CHATTY")
