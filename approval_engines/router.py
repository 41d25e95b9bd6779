"""
approval_engines.router -- Pure approval-level routing.

Responsibility:
    Compute the ordered set of approval levels a new instance must pass,
    from a workflow definition and the document context.  Runs once, at
    initiation; the result is frozen on the instance.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Union routing (the default): mandatory levels plus the targets of
      every matching rule; all levels when nothing is mandatory and no
      rule matched.  Output is sorted ascending.
    - First-match routing is a separate strategy that must be selected
      explicitly (``routing_strategy: first_match``): the targets of the
      first matching rule, else all levels.  The two are never mixed.
    - Determinism: identical inputs always produce identical outputs.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from approval_engines.rules import evaluate
from approval_engines.tracer import traced_engine
from approval_kernel.domain.workflow import WorkflowDefinition


class RoutingStrategy(Protocol):
    """Maps (definition, context) to sorted required level numbers."""

    name: str

    def required_levels(
        self, definition: WorkflowDefinition, context: Mapping[str, Any],
    ) -> tuple[int, ...]:
        ...


class UnionRoutingStrategy:
    """mandatory ∪ targets of every matching rule."""

    name = "union"

    def required_levels(
        self, definition: WorkflowDefinition, context: Mapping[str, Any],
    ) -> tuple[int, ...]:
        levels: set[int] = set(definition.mandatory_levels())
        matched_any = False
        for rule in definition.routing_rules:
            if evaluate(rule, context):
                matched_any = True
                levels.update(rule.target_levels)

        if not matched_any and not levels:
            levels.update(definition.level_numbers())

        return tuple(sorted(levels))


class FirstMatchRoutingStrategy:
    """Targets of the first matching rule in definition order, else all levels."""

    name = "first_match"

    def required_levels(
        self, definition: WorkflowDefinition, context: Mapping[str, Any],
    ) -> tuple[int, ...]:
        for rule in definition.routing_rules:
            if evaluate(rule, context) and rule.target_levels:
                return tuple(sorted(rule.target_levels))
        return definition.level_numbers()


ROUTING_STRATEGIES: dict[str, type] = {
    UnionRoutingStrategy.name: UnionRoutingStrategy,
    FirstMatchRoutingStrategy.name: FirstMatchRoutingStrategy,
}


def get_routing_strategy(name: str) -> RoutingStrategy:
    """Instantiate a strategy by its configuration name.

    Raises:
        ValueError: Unknown strategy name.
    """
    try:
        return ROUTING_STRATEGIES[name]()
    except KeyError:
        raise ValueError(
            f"Unknown routing strategy {name!r}; expected one of "
            f"{sorted(ROUTING_STRATEGIES)}"
        ) from None


@traced_engine("approval_router", "1.0", fingerprint_fields=("context",))
def determine_required_levels(
    definition: WorkflowDefinition,
    context: Mapping[str, Any],
    strategy: RoutingStrategy | None = None,
) -> tuple[int, ...]:
    """Sorted level numbers a new instance of ``definition`` must pass.

    Uses union routing unless another strategy is passed.
    """
    return (strategy or UnionRoutingStrategy()).required_levels(definition, context or {})


class ApprovalRouter:
    """Router bound to one strategy, injected into WorkflowEngine."""

    def __init__(self, strategy: RoutingStrategy | None = None):
        self.strategy = strategy or UnionRoutingStrategy()

    def determine_required_levels(
        self, definition: WorkflowDefinition, context: Mapping[str, Any],
    ) -> tuple[int, ...]:
        return determine_required_levels(definition, context, self.strategy)
