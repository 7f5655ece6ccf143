"""Tests for structured logging and trace context propagation."""

import json
import logging

import pytest

from flowgraph.graph.node import Node
from flowgraph.graph.workflow import Workflow
from flowgraph.observability.logging import (
    HumanReadableFormatter,
    StructuredFormatter,
    clear_trace_context,
    configure_logging,
    get_trace_context,
    scoped_trace_context,
    set_trace_context,
    strip_ansi_codes,
)


@pytest.fixture(autouse=True)
def clean_context():
    clear_trace_context()
    yield
    clear_trace_context()


@pytest.fixture
def restore_root_logger(monkeypatch, tmp_path):
    monkeypatch.setenv("FLOWGRAPH_CONFIG", str(tmp_path / "missing.json"))
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def make_record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("flowgraph.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestTraceContext:
    def test_scoped_context_restores(self):
        set_trace_context(workflow="wf")
        with scoped_trace_context(node_id="a"):
            assert get_trace_context() == {"workflow": "wf", "node_id": "a"}
        assert get_trace_context() == {"workflow": "wf"}

    def test_get_returns_copy(self):
        set_trace_context(workflow="wf")
        get_trace_context()["workflow"] = "changed"
        assert get_trace_context()["workflow"] == "wf"

    @pytest.mark.asyncio
    async def test_nodes_see_run_context(self):
        seen = {}

        class Capture(Node):
            async def execute(self, input, ctx):
                seen.update(get_trace_context())

        workflow = Workflow("traced", [Capture("capture")], [], "capture")
        result = await workflow.run()

        assert seen["workflow"] == "traced"
        assert seen["execution_id"] == result.execution_id
        assert seen["node_id"] == "capture"
        assert get_trace_context() == {}


class TestFormatters:
    def test_structured_formatter(self):
        with scoped_trace_context(workflow="wf", execution_id="exec-1"):
            line = StructuredFormatter().format(
                make_record("\033[32m✓ done\033[0m", event="node_complete", latency_ms=12)
            )
        entry = json.loads(line)

        assert entry["message"] == "✓ done"
        assert entry["level"] == "info"
        assert entry["workflow"] == "wf"
        assert entry["execution_id"] == "exec-1"
        assert entry["event"] == "node_complete"
        assert entry["latency_ms"] == 12
        assert "attempt" not in entry

    def test_human_formatter_prefix(self):
        with scoped_trace_context(workflow="wf", execution_id="0123456789abcdef", node_id="n"):
            line = HumanReadableFormatter().format(make_record("hello", event="x"))
        assert "[wf:wf | exec:89abcdef | node:n]" in line
        assert line.endswith("hello [x]")

    def test_strip_ansi(self):
        assert strip_ansi_codes("\x1b[31mred\x1b[0m") == "red"


class TestConfigureLogging:
    def test_json_format(self, restore_root_logger, monkeypatch):
        monkeypatch.setenv("NO_COLOR", "")
        monkeypatch.setenv("FORCE_COLOR", "")
        configure_logging(level="debug", format="json")

        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1
        assert isinstance(restore_root_logger.handlers[0].formatter, StructuredFormatter)

    def test_auto_picks_json_in_production(self, restore_root_logger, monkeypatch):
        monkeypatch.delenv("LOG_FORMAT", raising=False)
        monkeypatch.setenv("ENV", "production")
        monkeypatch.setenv("NO_COLOR", "")
        monkeypatch.setenv("FORCE_COLOR", "")
        configure_logging()
        assert isinstance(restore_root_logger.handlers[0].formatter, StructuredFormatter)

    def test_auto_defaults_to_human(self, restore_root_logger, monkeypatch):
        monkeypatch.delenv("LOG_FORMAT", raising=False)
        monkeypatch.delenv("ENV", raising=False)
        configure_logging(level="WARNING")
        assert isinstance(restore_root_logger.handlers[0].formatter, HumanReadableFormatter)
        assert restore_root_logger.level == logging.WARNING

    def test_defaults_come_from_configuration(self, restore_root_logger, monkeypatch, tmp_path):
        path = tmp_path / "configuration.json"
        path.write_text(
            json.dumps({"executor": {"log_level": "ERROR", "log_format": "json"}}), encoding="utf-8"
        )
        monkeypatch.setenv("FLOWGRAPH_CONFIG", str(path))
        monkeypatch.setenv("NO_COLOR", "")
        monkeypatch.setenv("FORCE_COLOR", "")
        configure_logging()

        assert restore_root_logger.level == logging.ERROR
        assert isinstance(restore_root_logger.handlers[0].formatter, StructuredFormatter)
