"""
Workflow definition types (``approval_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for approval workflow definitions: the reusable,
per-document-type template made of numbered approval levels and the
routing rules that activate optional levels for a given document.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Level numbers are unique and form the contiguous sequence 1..n.
* Every routing rule targets at least one level and only existing levels.
* Operator tokens form a closed vocabulary (``RuleOperator``).
* ``validate_definition`` reports every violation at once;
  ``ensure_valid_definition`` raises ``InvalidDefinitionError``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from approval_kernel.exceptions import InvalidDefinitionError

RoleRef = str
"""Role identifier as understood by the RoleDirectory."""


# =========================================================================
# Vocabulary (stable wire/storage tokens)
# =========================================================================


class DocumentType(str, Enum):
    """Document types that can be routed through an approval workflow."""

    SUPPLIER = "supplier"
    MATERIAL_QUOTATION = "material_quotation"
    PURCHASE_ORDER = "purchase_order"
    PRE_PAYMENT = "pre_payment"

    @classmethod
    def parse(cls, value: DocumentType | str) -> DocumentType:
        """Accept enum members or case-insensitive tokens."""
        if isinstance(value, DocumentType):
            return value
        return cls(str(value).strip().lower())


class ApprovalMode(str, Enum):
    """How many approvers satisfy a level."""

    ANY = "any"
    ALL = "all"

    @classmethod
    def parse(cls, value: ApprovalMode | str | None) -> ApprovalMode:
        """Missing mode means ANY."""
        if value is None or value == "":
            return cls.ANY
        if isinstance(value, ApprovalMode):
            return value
        return cls(str(value).strip().lower())


class RuleOperator(str, Enum):
    """Closed set of routing-rule comparison operators."""

    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"
    NE = "ne"
    IN = "in"
    NOT_IN = "not_in"

    @property
    def is_membership(self) -> bool:
        return self in (RuleOperator.IN, RuleOperator.NOT_IN)

    @classmethod
    def parse(cls, token: RuleOperator | str) -> RuleOperator | None:
        """Resolve a token (including legacy ``$gte``-style aliases).

        Returns None for unknown tokens; the caller decides whether that
        is a validation error or a non-match.
        """
        if isinstance(token, RuleOperator):
            return token
        normalized = str(token).strip().lower()
        return _OPERATOR_ALIASES.get(normalized)


_OPERATOR_ALIASES: dict[str, RuleOperator] = {
    **{op.value: op for op in RuleOperator},
    "$gt": RuleOperator.GT,
    "$gte": RuleOperator.GTE,
    "$lt": RuleOperator.LT,
    "$lte": RuleOperator.LTE,
    "$eq": RuleOperator.EQ,
    "$ne": RuleOperator.NE,
    "$in": RuleOperator.IN,
    "$nin": RuleOperator.NOT_IN,
    "nin": RuleOperator.NOT_IN,
}


class DefinitionLifecycle(str, Enum):
    """Lifecycle derived from the persisted ``is_active``/``removed`` flags."""

    DRAFT = "draft"
    ACTIVE = "active"
    RETIRED = "retired"


# =========================================================================
# Levels and rules
# =========================================================================


@dataclass(frozen=True)
class LevelDefinition:
    """One numbered approval gate of a workflow definition."""

    number: int
    name: str = ""
    approver_roles: frozenset[RoleRef] = frozenset()
    approval_mode: ApprovalMode = ApprovalMode.ANY
    mandatory: bool = True

    @property
    def display_name(self) -> str:
        return self.name or f"Level {self.number}"


def _freeze_value(value: Any) -> Any:
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(value)
    return value


@dataclass(frozen=True)
class RuleCondition:
    """A single ``field <operator> value`` test over the document context.

    ``operator`` keeps the raw token when it is not a known operator so
    that evaluation can fail closed instead of raising.
    """

    field: str
    operator: RuleOperator | str
    value: Any

    def to_dict(self) -> dict[str, Any]:
        op = self.operator.value if isinstance(self.operator, RuleOperator) else self.operator
        value = list(self.value) if isinstance(self.value, tuple) else self.value
        return {"field": self.field, "operator": op, "value": value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RuleCondition:
        token = data["operator"]
        return cls(
            field=data["field"],
            operator=RuleOperator.parse(token) or token,
            value=_freeze_value(data.get("value")),
        )


@dataclass(frozen=True)
class RoutingRule:
    """Activates ``target_levels`` when all of its conditions hold.

    The first condition is the rule's primary ``condition_field`` /
    ``operator`` / ``comparison_value``; further conditions come from the
    object-of-operators form and are conjunctive.
    """

    conditions: tuple[RuleCondition, ...]
    target_levels: frozenset[int]
    description: str = ""

    @property
    def condition_field(self) -> str | None:
        return self.conditions[0].field if self.conditions else None

    @property
    def operator(self) -> RuleOperator | str | None:
        return self.conditions[0].operator if self.conditions else None

    @property
    def comparison_value(self) -> Any:
        return self.conditions[0].value if self.conditions else None

    @classmethod
    def simple(
        cls,
        condition_field: str,
        operator: RuleOperator | str,
        comparison_value: Any,
        target_levels: Sequence[int] | frozenset[int],
        description: str = "",
    ) -> RoutingRule:
        """Single-condition rule in the stored ``{field, operator, value}`` shape."""
        op = RuleOperator.parse(operator) or operator
        return cls(
            conditions=(RuleCondition(condition_field, op, _freeze_value(comparison_value)),),
            target_levels=frozenset(target_levels),
            description=description,
        )

    @classmethod
    def from_condition_map(
        cls,
        conditions: Mapping[str, Any],
        target_levels: Sequence[int] | frozenset[int],
        description: str = "",
    ) -> RoutingRule:
        """Build a rule from ``{field: value}`` or ``{field: {op: value, ...}}``.

        A bare value means equality.  Every operator under a field becomes
        its own conjunctive condition.
        """
        parsed: list[RuleCondition] = []
        for field_name, spec in conditions.items():
            if isinstance(spec, Mapping):
                for token, value in spec.items():
                    op = RuleOperator.parse(token) or token
                    parsed.append(RuleCondition(field_name, op, _freeze_value(value)))
            else:
                parsed.append(RuleCondition(field_name, RuleOperator.EQ, _freeze_value(spec)))
        return cls(
            conditions=tuple(parsed),
            target_levels=frozenset(target_levels),
            description=description,
        )


# =========================================================================
# Definition
# =========================================================================


@dataclass(frozen=True)
class WorkflowDefinition:
    """The reusable approval template for one document type.

    Contract: frozen.  Instances reference a definition by id and read
    level configuration from it; instance processing never mutates it.
    """

    name: str
    document_type: DocumentType
    levels: tuple[LevelDefinition, ...] = ()
    routing_rules: tuple[RoutingRule, ...] = ()
    definition_id: UUID = field(default_factory=uuid4)
    is_active: bool = True
    is_default: bool = False
    removed: bool = False
    allow_recall: bool = True
    display_name: str | None = None
    description: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def total_levels(self) -> int:
        return len(self.levels)

    @property
    def lifecycle(self) -> DefinitionLifecycle:
        if self.removed:
            return DefinitionLifecycle.RETIRED
        if self.is_active:
            return DefinitionLifecycle.ACTIVE
        return DefinitionLifecycle.DRAFT

    @property
    def is_selectable(self) -> bool:
        """Eligible to back new instances."""
        return self.is_active and not self.removed

    def level_numbers(self) -> tuple[int, ...]:
        return tuple(sorted(level.number for level in self.levels))

    def mandatory_levels(self) -> frozenset[int]:
        return frozenset(level.number for level in self.levels if level.mandatory)

    def level_config(self, number: int) -> LevelDefinition | None:
        for level in self.levels:
            if level.number == number:
                return level
        return None


def validate_definition(definition: WorkflowDefinition) -> tuple[str, ...]:
    """Return every structural violation of ``definition`` (empty if valid)."""
    errors: list[str] = []

    if not definition.name or not definition.name.strip():
        errors.append("name is required")

    numbers = [level.number for level in definition.levels]
    if any(n < 1 for n in numbers):
        errors.append("level numbers must be >= 1")
    if len(set(numbers)) != len(numbers):
        errors.append("level numbers must be unique")
    elif numbers and sorted(numbers) != list(range(1, len(numbers) + 1)):
        errors.append("Level numbers must be sequential starting from 1")

    for level in definition.levels:
        if not level.approver_roles:
            errors.append(f"level {level.number} has no approver roles")

    existing = set(numbers)
    for index, rule in enumerate(definition.routing_rules):
        label = f"routing rule {index + 1}"
        if not rule.conditions:
            errors.append(f"{label} has no conditions")
        for condition in rule.conditions:
            if not condition.field:
                errors.append(f"{label} has a condition without a field")
            if not isinstance(condition.operator, RuleOperator):
                errors.append(f"{label} uses unknown operator {condition.operator!r}")
            elif condition.operator.is_membership and not isinstance(condition.value, tuple):
                errors.append(
                    f"{label} operator {condition.operator.value} requires a list value"
                )
        if not rule.target_levels:
            errors.append(f"{label} has no target levels")
        missing = sorted(set(rule.target_levels) - existing)
        if missing:
            errors.append(f"{label} targets undefined levels {missing}")

    return tuple(errors)


def ensure_valid_definition(definition: WorkflowDefinition) -> WorkflowDefinition:
    """Raise ``InvalidDefinitionError`` unless ``definition`` is well formed."""
    errors = validate_definition(definition)
    if errors:
        raise InvalidDefinitionError(definition.name, errors)
    return definition
