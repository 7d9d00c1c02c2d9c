"""
Tests for the logging processors and the tracing helper.
"""

import pytest

from accountdash.observability.logging import add_app_context, shorten_session_id
from accountdash.observability.tracing import trace_operation


class TestLogProcessors:
    def test_session_id_is_shortened(self):
        event = shorten_session_id(None, "info", {"session_id": "abcdefghijklmnopqrstuvwx"})

        assert event["session_id"] == "abcdefgh..."

    @pytest.mark.parametrize("value", [None, "short", 42])
    def test_other_values_pass_through(self, value):
        assert shorten_session_id(None, "info", {"session_id": value})["session_id"] == value

    def test_events_without_session_are_untouched(self):
        assert shorten_session_id(None, "info", {"event": "x"}) == {"event": "x"}

    def test_app_context(self):
        event = add_app_context(None, "info", {"event": "x"})

        assert event["service"]
        assert "version" in event


class TestTraceOperation:
    def test_yields_span(self):
        with trace_operation("reconcile_cycle", kind="license", cycle=1, skipped=None) as span:
            span.set_attribute("converged", True)

    def test_exception_propagates(self):
        with pytest.raises(RuntimeError, match="backend down"):
            with trace_operation("reconcile_cycle", kind="domain"):
                raise RuntimeError("backend down")
