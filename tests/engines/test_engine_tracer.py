"""
Tests for the @traced_engine decorator and input fingerprints.
"""

from approval_engines.router import determine_required_levels
from approval_engines.tracer import compute_input_fingerprint, traced_engine
from approval_kernel.domain.workflow import DocumentType
from tests.conftest import make_definition


class TestFingerprint:

    def test_key_and_set_order_do_not_matter(self):
        first = compute_input_fingerprint(
            ("context",), {"context": {"amount": 5, "tags": {"b", "a"}}},
        )
        second = compute_input_fingerprint(
            ("context",), {"context": {"tags": {"a", "b"}, "amount": 5}},
        )
        assert first == second
        assert len(first) == 16

    def test_values_change_the_fingerprint(self):
        assert compute_input_fingerprint(("context",), {"context": {"amount": 5}}) != (
            compute_input_fingerprint(("context",), {"context": {"amount": 6}})
        )

    def test_missing_argument_is_null(self):
        assert compute_input_fingerprint(("context",), {}) == (
            compute_input_fingerprint(("context",), {"context": None})
        )


class TestTracedEngine:

    def test_emits_trace_and_returns_result(self, captured_logs):
        @traced_engine("doubler", "2.1", fingerprint_fields=("value",))
        def double(value):
            return value * 2

        assert double(value=21) == 42

        (trace,) = [r for r in captured_logs() if r["message"] == "WORKFLOW_ENGINE_TRACE"]
        assert trace["engine_name"] == "doubler"
        assert trace["engine_version"] == "2.1"
        assert trace["input_fingerprint"] == compute_input_fingerprint(("value",), {"value": 21})
        assert trace["duration_ms"] >= 0
        assert trace["level"] == "DEBUG"

    def test_positional_arguments_are_fingerprinted(self, captured_logs):
        @traced_engine("doubler", "2.1", fingerprint_fields=("value",))
        def double(value):
            return value * 2

        double(21)
        (trace,) = [r for r in captured_logs() if r["message"] == "WORKFLOW_ENGINE_TRACE"]
        assert trace["input_fingerprint"] == compute_input_fingerprint(("value",), {"value": 21})

    def test_router_is_traced(self, captured_logs):
        definition = make_definition(DocumentType.PURCHASE_ORDER)
        determine_required_levels(definition, {"amount": 20000})

        traces = [r for r in captured_logs() if r.get("engine_name") == "approval_router"]
        assert len(traces) == 1
        assert traces[0]["input_fingerprint"] == compute_input_fingerprint(
            ("context",), {"context": {"amount": 20000}},
        )
