"""
Workflow instance types (``approval_kernel.domain.instance``).

Responsibility
--------------
Pure value objects for one approval process bound to one document: the
instance lifecycle state machine, the append-only approval history entry,
and the computed progress accessors derived from required/completed
levels.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* ``INSTANCE_TRANSITIONS`` defines the only valid status transitions.
  Terminal states have no outgoing edges.
* ``required_levels`` is sorted and fixed at initiation.
* ``completed_levels`` is a subset of ``required_levels``.
* While pending, ``current_level == min(required - completed)``.
* ``approval_history`` only ever grows; entries are frozen.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from approval_kernel.domain.workflow import DocumentType


# =========================================================================
# Instance Status Lifecycle
# =========================================================================


class WorkflowStatus(str, Enum):
    """Workflow instance lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


INSTANCE_TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.PENDING: frozenset({
        WorkflowStatus.APPROVED,
        WorkflowStatus.REJECTED,
        WorkflowStatus.CANCELLED,
    }),
    WorkflowStatus.APPROVED: frozenset(),
    WorkflowStatus.REJECTED: frozenset(),
    WorkflowStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.APPROVED,
    WorkflowStatus.REJECTED,
    WorkflowStatus.CANCELLED,
})


def can_transition(current: WorkflowStatus, target: WorkflowStatus) -> bool:
    """Return True iff ``current -> target`` is a declared edge."""
    return target in INSTANCE_TRANSITIONS.get(current, frozenset())


class ApprovalAction(str, Enum):
    """Actions recorded in the approval history."""

    APPROVE = "approve"
    REJECT = "reject"
    RECALL = "recall"


DECISION_ACTIONS: frozenset[ApprovalAction] = frozenset({
    ApprovalAction.APPROVE,
    ApprovalAction.REJECT,
})


# =========================================================================
# History
# =========================================================================


@dataclass(frozen=True)
class ApprovalHistoryEntry:
    """One recorded action on one level of an instance.  Append-only."""

    level: int
    actor_id: str
    action: ApprovalAction
    timestamp: datetime
    level_name: str = ""
    comments: str = ""
    metadata: dict[str, Any] | None = None
    entry_id: UUID = field(default_factory=uuid4)


# =========================================================================
# Instance
# =========================================================================


def _round_half_up(value: Decimal, places: str) -> Decimal:
    return value.quantize(Decimal(places), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class WorkflowInstance:
    """One approval process bound to one document.

    Contract:
        Frozen.  State changes produce a new instance via
        ``dataclasses.replace`` in ``approval_engines.state_machine``.
        ``version`` is the optimistic concurrency token; 0 means the
        instance has not been persisted yet.
    """

    definition_id: UUID
    document_type: DocumentType
    document_id: str
    submitted_by: str
    submitted_at: datetime
    required_levels: tuple[int, ...]
    status: WorkflowStatus = WorkflowStatus.PENDING
    current_level: int = 0
    completed_levels: tuple[int, ...] = ()
    approval_history: tuple[ApprovalHistoryEntry, ...] = ()
    completed_at: datetime | None = None
    document_number: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    instance_id: UUID = field(default_factory=uuid4)
    version: int = 0

    # -- lifecycle ---------------------------------------------------------

    @property
    def is_pending(self) -> bool:
        return self.status == WorkflowStatus.PENDING

    @property
    def is_complete(self) -> bool:
        """True once the instance reached any terminal status."""
        return self.status in TERMINAL_STATUSES

    # -- progress ----------------------------------------------------------

    @property
    def remaining_levels(self) -> tuple[int, ...]:
        completed = set(self.completed_levels)
        return tuple(level for level in self.required_levels if level not in completed)

    @property
    def next_level(self) -> int | None:
        if self.is_complete:
            return None
        remaining = self.remaining_levels
        return remaining[0] if remaining else None

    @property
    def progress_percentage(self) -> int:
        if not self.required_levels:
            return 0
        ratio = Decimal(len(self.completed_levels)) * 100 / Decimal(len(self.required_levels))
        return int(_round_half_up(ratio, "1"))

    @property
    def duration_hours(self) -> Decimal | None:
        """Hours from submission to completion, 2dp; None while running."""
        if self.completed_at is None:
            return None
        seconds = Decimal(str((self.completed_at - self.submitted_at).total_seconds()))
        return _round_half_up(seconds / Decimal(3600), "0.01")

    def is_level_completed(self, level: int) -> bool:
        return level in self.completed_levels

    def entries_at_level(self, level: int) -> tuple[ApprovalHistoryEntry, ...]:
        return tuple(e for e in self.approval_history if e.level == level)

    def has_acted(self, actor_id: str, level: int) -> bool:
        """True if ``actor_id`` has any history entry at ``level``."""
        return any(e.actor_id == actor_id for e in self.entries_at_level(level))

    def approvers_at_level(self, level: int) -> frozenset[str]:
        return frozenset(
            e.actor_id
            for e in self.entries_at_level(level)
            if e.action == ApprovalAction.APPROVE
        )

    def summary(self) -> dict[str, Any]:
        """Progress snapshot for callers that display workflow state."""
        return {
            "status": self.status.value,
            "current_level": self.current_level,
            "total_levels": len(self.required_levels),
            "completed_levels": len(self.completed_levels),
            "progress_percentage": self.progress_percentage,
            "submitted_at": self.submitted_at,
            "completed_at": self.completed_at,
            "duration_hours": self.duration_hours,
            "approval_count": len(self.approval_history),
        }
