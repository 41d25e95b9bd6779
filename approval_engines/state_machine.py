"""
approval_engines.state_machine -- Pure workflow instance transitions.

Responsibility:
    Turn one decision (approve, reject) or a cancellation into the next
    frozen ``WorkflowInstance``: append the history entry, advance the
    current level when a level is satisfied, and move to a terminal
    status when the process ends.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The caller passes the
    current time and the resolved approver set; nothing here reads a
    clock or a directory.

Invariants enforced:
    - Only edges declared in ``INSTANCE_TRANSITIONS`` are taken; any
      mutation of a terminal instance raises WorkflowAlreadyTerminalError.
    - ``completed_levels`` stays a subset of ``required_levels``.
    - While pending, ``current_level == min(required - completed)``; once
      approved it points one past the highest required level.
    - A history entry is appended for every accepted action, never edited.
      ``complete_level`` closes a level without adding one.
    - ANY levels are satisfied by one approval; ALL levels when every
      resolved approver has approved at that level.

Failure modes:
    - InvalidActionError: decision token outside {approve, reject}.
    - WorkflowAlreadyTerminalError: instance not pending.
    - AlreadyActedError: actor already has an entry at the current level.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from approval_kernel.domain.instance import (
    DECISION_ACTIONS,
    ApprovalAction,
    ApprovalHistoryEntry,
    WorkflowInstance,
    WorkflowStatus,
    can_transition,
)
from approval_kernel.domain.workflow import (
    ApprovalMode,
    DocumentType,
    LevelDefinition,
)
from approval_kernel.exceptions import (
    AlreadyActedError,
    InvalidActionError,
    WorkflowAlreadyTerminalError,
)


def parse_decision(action: ApprovalAction | str) -> ApprovalAction:
    """Normalize a decision token (case-insensitive).

    Raises:
        InvalidActionError: Anything other than approve or reject.
    """
    if isinstance(action, ApprovalAction):
        parsed = action
    else:
        try:
            parsed = ApprovalAction(str(action).strip().lower())
        except ValueError:
            raise InvalidActionError(str(action)) from None
    if parsed not in DECISION_ACTIONS:
        raise InvalidActionError(parsed.value)
    return parsed


def ensure_pending(instance: WorkflowInstance) -> None:
    if not instance.is_pending:
        raise WorkflowAlreadyTerminalError(str(instance.instance_id), instance.status.value)


def start_instance(
    *,
    definition_id,
    document_type: DocumentType,
    document_id: str,
    submitted_by: str,
    submitted_at: datetime,
    required_levels: tuple[int, ...],
    context: dict | None = None,
    document_number: str | None = None,
) -> WorkflowInstance:
    """A new pending instance positioned at its lowest required level."""
    levels = tuple(sorted(set(required_levels)))
    return WorkflowInstance(
        definition_id=definition_id,
        document_type=document_type,
        document_id=document_id,
        document_number=document_number,
        submitted_by=submitted_by,
        submitted_at=submitted_at,
        required_levels=levels,
        current_level=levels[0] if levels else 0,
        context=dict(context or {}),
    )


def level_satisfied(
    instance: WorkflowInstance,
    level: LevelDefinition,
    resolved_approvers: frozenset[str],
) -> bool:
    """Whether the approvals recorded at ``level`` complete it."""
    approved_by = instance.approvers_at_level(level.number)
    if level.approval_mode == ApprovalMode.ALL:
        return bool(resolved_approvers) and resolved_approvers <= approved_by
    return bool(approved_by)


def _transition(
    instance: WorkflowInstance, target: WorkflowStatus, **changes,
) -> WorkflowInstance:
    if not can_transition(instance.status, target):
        raise WorkflowAlreadyTerminalError(str(instance.instance_id), instance.status.value)
    return replace(instance, status=target, **changes)


def _entry(
    instance: WorkflowInstance,
    level: LevelDefinition | None,
    actor_id: str,
    action: ApprovalAction,
    comments: str,
    now: datetime,
) -> ApprovalHistoryEntry:
    return ApprovalHistoryEntry(
        level=instance.current_level,
        level_name=level.display_name if level is not None else f"Level {instance.current_level}",
        actor_id=actor_id,
        action=action,
        comments=comments or "",
        timestamp=now,
    )


def apply_approval(
    instance: WorkflowInstance,
    level: LevelDefinition,
    actor_id: str,
    comments: str,
    now: datetime,
    resolved_approvers: frozenset[str] = frozenset(),
) -> WorkflowInstance:
    """Record an approval at the current level and advance if satisfied."""
    ensure_pending(instance)
    if instance.has_acted(actor_id, instance.current_level):
        raise AlreadyActedError(actor_id, str(instance.instance_id), instance.current_level)

    entry = _entry(instance, level, actor_id, ApprovalAction.APPROVE, comments, now)
    updated = replace(instance, approval_history=instance.approval_history + (entry,))

    if not level_satisfied(updated, level, resolved_approvers):
        return updated
    return complete_level(updated, level, now)


def complete_level(
    instance: WorkflowInstance,
    level: LevelDefinition,
    now: datetime,
) -> WorkflowInstance:
    """Mark ``level`` done and move to the next required level.

    Approves the instance when no required level remains.  Appends no
    history; the approvals that satisfied the level are already recorded.
    """
    ensure_pending(instance)
    completed = set(instance.completed_levels) | {level.number}
    completed_levels = tuple(n for n in instance.required_levels if n in completed)
    remaining = [n for n in instance.required_levels if n not in completed]

    if remaining:
        return replace(instance, completed_levels=completed_levels, current_level=remaining[0])

    return _transition(
        instance,
        WorkflowStatus.APPROVED,
        completed_levels=completed_levels,
        current_level=max(instance.required_levels) + 1,
        completed_at=now,
    )


def apply_rejection(
    instance: WorkflowInstance,
    level: LevelDefinition,
    actor_id: str,
    comments: str,
    now: datetime,
) -> WorkflowInstance:
    """Record a rejection; the instance ends immediately."""
    ensure_pending(instance)
    if instance.has_acted(actor_id, instance.current_level):
        raise AlreadyActedError(actor_id, str(instance.instance_id), instance.current_level)

    entry = _entry(instance, level, actor_id, ApprovalAction.REJECT, comments, now)
    return _transition(
        instance,
        WorkflowStatus.REJECTED,
        approval_history=instance.approval_history + (entry,),
        completed_at=now,
    )


def apply_decision(
    instance: WorkflowInstance,
    decision: ApprovalAction,
    level: LevelDefinition,
    actor_id: str,
    comments: str,
    now: datetime,
    resolved_approvers: frozenset[str] = frozenset(),
) -> WorkflowInstance:
    if decision == ApprovalAction.REJECT:
        return apply_rejection(instance, level, actor_id, comments, now)
    return apply_approval(instance, level, actor_id, comments, now, resolved_approvers)


def apply_cancellation(
    instance: WorkflowInstance,
    actor_id: str,
    reason: str,
    now: datetime,
    level: LevelDefinition | None = None,
) -> WorkflowInstance:
    """Recall the instance: append a ``recall`` entry and cancel it."""
    ensure_pending(instance)
    entry = _entry(
        instance, level, actor_id, ApprovalAction.RECALL, f"Cancelled: {reason}", now,
    )
    return _transition(
        instance,
        WorkflowStatus.CANCELLED,
        approval_history=instance.approval_history + (entry,),
        completed_at=now,
    )


def invariant_violations(instance: WorkflowInstance) -> tuple[str, ...]:
    """Structural problems of ``instance`` (empty when consistent)."""
    problems: list[str] = []
    if list(instance.required_levels) != sorted(set(instance.required_levels)):
        problems.append("required_levels must be sorted and unique")
    if not set(instance.completed_levels) <= set(instance.required_levels):
        problems.append("completed_levels must be a subset of required_levels")
    if instance.is_pending:
        remaining = instance.remaining_levels
        expected = remaining[0] if remaining else None
        if instance.current_level != expected:
            problems.append(
                f"current_level {instance.current_level} != first remaining {expected}"
            )
        if instance.completed_at is not None:
            problems.append("pending instance has completed_at")
    elif instance.completed_at is None:
        problems.append("terminal instance lacks completed_at")
    return tuple(problems)
