"""
Pure domain layer.

This module contains the workflow value objects and collaborator
contracts with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.instance import (
    DECISION_ACTIONS,
    INSTANCE_TRANSITIONS,
    TERMINAL_STATUSES,
    ApprovalAction,
    ApprovalHistoryEntry,
    WorkflowInstance,
    WorkflowStatus,
    can_transition,
)
from approval_kernel.domain.providers import (
    AuditRecord,
    AuditSink,
    DefinitionRepository,
    InstanceRepository,
    PrincipalId,
    RoleDirectory,
)
from approval_kernel.domain.workflow import (
    ApprovalMode,
    DefinitionLifecycle,
    DocumentType,
    LevelDefinition,
    RoleRef,
    RoutingRule,
    RuleCondition,
    RuleOperator,
    WorkflowDefinition,
    ensure_valid_definition,
    validate_definition,
)

__all__ = [
    # Clock
    "Clock",
    "DeterministicClock",
    "SystemClock",
    # Definitions
    "ApprovalMode",
    "DefinitionLifecycle",
    "DocumentType",
    "LevelDefinition",
    "RoleRef",
    "RoutingRule",
    "RuleCondition",
    "RuleOperator",
    "WorkflowDefinition",
    "ensure_valid_definition",
    "validate_definition",
    # Instances
    "DECISION_ACTIONS",
    "INSTANCE_TRANSITIONS",
    "TERMINAL_STATUSES",
    "ApprovalAction",
    "ApprovalHistoryEntry",
    "WorkflowInstance",
    "WorkflowStatus",
    "can_transition",
    # Collaborators
    "AuditRecord",
    "AuditSink",
    "DefinitionRepository",
    "InstanceRepository",
    "PrincipalId",
    "RoleDirectory",
]
