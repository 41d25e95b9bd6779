"""
Module: approval_engines
Responsibility:
    Package entrypoint that re-exports the pure calculation engines: rule
    evaluation, approval-level routing and the instance state machine.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types and kernel exceptions.
    MUST NOT import approval_services.

Invariants enforced:
    - Purity: engines never read a clock; the caller passes ``now``.
    - Determinism: identical inputs always produce identical outputs.
"""

from approval_engines.router import (
    ROUTING_STRATEGIES,
    ApprovalRouter,
    FirstMatchRoutingStrategy,
    RoutingStrategy,
    UnionRoutingStrategy,
    determine_required_levels,
    get_routing_strategy,
)
from approval_engines.rules import (
    RuleEvaluator,
    evaluate,
    evaluate_condition,
    evaluate_conditions,
    resolve_field,
)
from approval_engines.state_machine import (
    apply_approval,
    apply_cancellation,
    apply_decision,
    apply_rejection,
    complete_level,
    ensure_pending,
    invariant_violations,
    level_satisfied,
    parse_decision,
    start_instance,
)
from approval_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    # Rules
    "RuleEvaluator",
    "evaluate",
    "evaluate_condition",
    "evaluate_conditions",
    "resolve_field",
    # Routing
    "ROUTING_STRATEGIES",
    "ApprovalRouter",
    "FirstMatchRoutingStrategy",
    "RoutingStrategy",
    "UnionRoutingStrategy",
    "determine_required_levels",
    "get_routing_strategy",
    # State machine
    "apply_approval",
    "apply_cancellation",
    "apply_decision",
    "apply_rejection",
    "complete_level",
    "ensure_pending",
    "invariant_violations",
    "level_satisfied",
    "parse_decision",
    "start_instance",
    # Tracing
    "compute_input_fingerprint",
    "traced_engine",
]
