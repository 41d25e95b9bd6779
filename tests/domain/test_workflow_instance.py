"""
Tests for workflow instance types (``approval_kernel.domain.instance``).

Invariants tested:
- INSTANCE_TRANSITIONS defines the only valid status transitions;
  terminal states have no outgoing edges.
- Computed accessors (progress, remaining levels, duration, summary) are
  derived from persisted fields only.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from approval_kernel.domain.instance import (
    INSTANCE_TRANSITIONS,
    TERMINAL_STATUSES,
    ApprovalAction,
    ApprovalHistoryEntry,
    WorkflowInstance,
    WorkflowStatus,
    can_transition,
)
from approval_kernel.domain.workflow import DocumentType

SUBMITTED = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _instance(**kwargs) -> WorkflowInstance:
    defaults = dict(
        definition_id=uuid4(),
        document_type=DocumentType.PURCHASE_ORDER,
        document_id="PO-100",
        submitted_by="u.buyer",
        submitted_at=SUBMITTED,
        required_levels=(1, 2, 3),
        current_level=1,
    )
    defaults.update(kwargs)
    return WorkflowInstance(**defaults)


def _entry(level: int, actor: str, action=ApprovalAction.APPROVE) -> ApprovalHistoryEntry:
    return ApprovalHistoryEntry(level=level, actor_id=actor, action=action, timestamp=SUBMITTED)


class TestTransitions:

    def test_pending_reaches_every_terminal_state(self):
        assert INSTANCE_TRANSITIONS[WorkflowStatus.PENDING] == TERMINAL_STATUSES

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES))
    def test_terminal_states_have_no_outgoing_edges(self, terminal):
        assert INSTANCE_TRANSITIONS[terminal] == frozenset()
        for target in WorkflowStatus:
            assert not can_transition(terminal, target)

    def test_every_status_has_an_entry(self):
        assert set(INSTANCE_TRANSITIONS) == set(WorkflowStatus)

    def test_pending_to_pending_is_not_a_transition(self):
        assert not can_transition(WorkflowStatus.PENDING, WorkflowStatus.PENDING)

    def test_status_tokens(self):
        assert WorkflowStatus.CANCELLED == "cancelled"
        assert {a.value for a in ApprovalAction} == {"approve", "reject", "recall"}


class TestProgress:

    def test_fresh_instance(self):
        instance = _instance()
        assert instance.is_pending
        assert not instance.is_complete
        assert instance.remaining_levels == (1, 2, 3)
        assert instance.next_level == 1
        assert instance.progress_percentage == 0
        assert instance.duration_hours is None

    def test_progress_rounds_half_up(self):
        # 2 of 3 levels = 66.67%
        instance = _instance(completed_levels=(1, 2), current_level=3)
        assert instance.progress_percentage == 67
        assert instance.remaining_levels == (3,)

    def test_progress_without_required_levels(self):
        assert _instance(required_levels=()).progress_percentage == 0

    def test_terminal_instance_has_no_next_level(self):
        instance = _instance(status=WorkflowStatus.REJECTED, completed_at=SUBMITTED)
        assert instance.is_complete
        assert instance.next_level is None

    def test_duration_hours_two_decimals(self):
        completed = SUBMITTED + timedelta(hours=5, minutes=20)
        instance = _instance(status=WorkflowStatus.APPROVED, completed_at=completed)
        assert instance.duration_hours == Decimal("5.33")


class TestHistoryQueries:

    def test_has_acted_is_level_scoped(self):
        instance = _instance(approval_history=(_entry(1, "u.pm"),))
        assert instance.has_acted("u.pm", 1)
        assert not instance.has_acted("u.pm", 2)
        assert not instance.has_acted("u.gm", 1)

    def test_approvers_at_level_ignores_other_actions(self):
        instance = _instance(
            approval_history=(
                _entry(1, "u.pm"),
                _entry(1, "u.pm2", ApprovalAction.REJECT),
                _entry(2, "u.gm"),
            )
        )
        assert instance.approvers_at_level(1) == frozenset({"u.pm"})
        assert len(instance.entries_at_level(1)) == 2

    def test_is_level_completed(self):
        instance = _instance(completed_levels=(1,), current_level=2)
        assert instance.is_level_completed(1)
        assert not instance.is_level_completed(2)


class TestSummary:

    def test_summary_fields(self):
        completed = SUBMITTED + timedelta(hours=2)
        instance = _instance(
            required_levels=(1, 2),
            completed_levels=(1, 2),
            current_level=3,
            status=WorkflowStatus.APPROVED,
            completed_at=completed,
            approval_history=(_entry(1, "u.pm"), _entry(2, "u.gm")),
        )
        assert instance.summary() == {
            "status": "approved",
            "current_level": 3,
            "total_levels": 2,
            "completed_levels": 2,
            "progress_percentage": 100,
            "submitted_at": SUBMITTED,
            "completed_at": completed,
            "duration_hours": Decimal("2.00"),
            "approval_count": 2,
        }

    def test_instance_is_frozen(self):
        instance = _instance()
        with pytest.raises(AttributeError):
            instance.status = WorkflowStatus.APPROVED
