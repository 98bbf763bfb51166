"""Structured logging tests."""

import io
import json
import logging

import pytest

from facetcut.dispatch import DispatchTableReader
from facetcut.observability import (
    FacetLayer,
    FacetLogger,
    LogEvent,
    configure_logging,
    get_correlation_id,
    set_correlation_id,
    timed_operation,
)
from facetcut.planner import ReconciliationPlanner

from conftest import OWNERSHIP_SIGNATURES, addr, make_facet


@pytest.fixture
def stream():
    buf = io.StringIO()
    root = configure_logging("debug", "json", buf)
    yield buf
    for h in list(root.handlers):
        root.removeHandler(h)


def _events(buf):
    return [json.loads(line) for line in buf.getvalue().splitlines()]


class TestStructuredLogging:

    def test_json_line_carries_layer_and_context(self, stream):
        set_correlation_id("run-test")
        FacetLogger("planner", FacetLayer.PLANNER).info("cut planned", actions=2)

        (event,) = _events(stream)
        assert event["message"] == "cut planned"
        assert event["layer"] == "planner"
        assert event["logger"] == "facetcut.planner.planner"
        assert event["correlation_id"] == "run-test"
        assert event["context"] == {"actions": 2}

    def test_error_code(self, stream):
        FacetLogger("executor", FacetLayer.CUT).error("diamond cut reverted", error_code="EXECUTION_REVERTED")
        assert _events(stream)[0]["error_code"] == "EXECUTION_REVERTED"

    def test_configure_replaces_handler(self, stream):
        configure_logging("info", "json", stream)
        FacetLogger("ledger", FacetLayer.LEDGER).info("once")
        assert len(_events(stream)) == 1

    def test_text_format(self):
        buf = io.StringIO()
        root = configure_logging("info", "text", buf)
        try:
            FacetLogger("ledger", FacetLayer.LEDGER).info("address recorded", module="TokenFacet")
        finally:
            for h in list(root.handlers):
                root.removeHandler(h)
        assert buf.getvalue().strip() == "info     ledger    address recorded module=TokenFacet"

    def test_empty_fields_dropped(self):
        event = LogEvent(timestamp="t", level="info", logger="x", message="m")
        assert set(event.to_dict()) == {"timestamp", "level", "logger", "message"}


class TestCorrelation:

    def test_correlation_id_generated_once(self):
        set_correlation_id("")
        cid = get_correlation_id()
        assert cid.startswith("run-")
        assert get_correlation_id() == cid


class TestTimedOperation:

    def test_success_logged(self, stream):
        logger = FacetLogger("driver", FacetLayer.DRIVER)

        @timed_operation(logger, "sample")
        def work():
            return 42

        assert work() == 42
        (event,) = _events(stream)
        assert event["operation"] == "sample"
        assert event["message"] == "Operation sample completed"
        assert event["duration_ms"] >= 0

    def test_failure_logged_and_reraised(self, stream):
        logger = FacetLogger("driver", FacetLayer.DRIVER)

        @timed_operation(logger, "sample")
        def work():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            work()
        (event,) = _events(stream)
        assert event["level"] == "warning"
        assert event["message"] == "Operation sample failed"

    def test_debug_suppressed_at_info(self):
        buf = io.StringIO()
        root = configure_logging("info", "json", buf)
        try:
            logging.getLogger("facetcut.cut.x").debug("hidden")
        finally:
            for h in list(root.handlers):
                root.removeHandler(h)
        assert buf.getvalue() == ""


class TestLevelInheritance:

    def test_component_debug_lines_follow_configured_level(self, stream, diamond):
        ReconciliationPlanner(DispatchTableReader(diamond)).plan(
            [make_facet("F1", OWNERSHIP_SIGNATURES, addr(1))]
        )
        messages = [e["message"] for e in _events(stream)]
        assert "facet reconciled" in messages
        assert "cut planned" in messages

    def test_errors_suppressed_at_critical(self):
        buf = io.StringIO()
        root = configure_logging("critical", "json", buf)
        try:
            FacetLogger("cli", FacetLayer.CLI).error("command failed", error_code="X")
        finally:
            for h in list(root.handlers):
                root.removeHandler(h)
        assert buf.getvalue() == ""
