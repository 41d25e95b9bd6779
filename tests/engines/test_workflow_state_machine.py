"""
Tests for pure instance transitions (``approval_engines.state_machine``).

Invariants tested:
- completed_levels stays a subset of required_levels.
- While pending, current_level is the first uncompleted required level;
  once approved it points one past the highest required level.
- ANY levels complete on one approval, ALL levels when every resolved
  approver approved.
- No transition out of a terminal status; no second action per actor
  and level.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st

from approval_engines.state_machine import (
    apply_approval,
    apply_cancellation,
    apply_decision,
    apply_rejection,
    complete_level,
    invariant_violations,
    level_satisfied,
    parse_decision,
    start_instance,
)
from approval_kernel.domain.instance import ApprovalAction, WorkflowStatus
from approval_kernel.domain.workflow import ApprovalMode, DocumentType, LevelDefinition
from approval_kernel.exceptions import (
    AlreadyActedError,
    InvalidActionError,
    WorkflowAlreadyTerminalError,
)

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
LATER = NOW + timedelta(hours=3)


def _level(number: int, mode: ApprovalMode = ApprovalMode.ANY) -> LevelDefinition:
    return LevelDefinition(number, f"Level name {number}", frozenset({"role"}), approval_mode=mode)


def _start(required=(1, 2)):
    return start_instance(
        definition_id=uuid4(),
        document_type=DocumentType.PURCHASE_ORDER,
        document_id="PO-1",
        submitted_by="u.buyer",
        submitted_at=NOW,
        required_levels=required,
        context={"amount": 50000},
    )


class TestParseDecision:

    @pytest.mark.parametrize("token", ["approve", "APPROVE", " Approve "])
    def test_case_insensitive(self, token):
        assert parse_decision(token) is ApprovalAction.APPROVE

    def test_reject(self):
        assert parse_decision("reject") is ApprovalAction.REJECT

    @pytest.mark.parametrize("token", ["recall", "escalate", "", ApprovalAction.RECALL])
    def test_invalid(self, token):
        with pytest.raises(InvalidActionError) as exc_info:
            parse_decision(token)
        assert exc_info.value.code == "INVALID_ACTION"


class TestStart:

    def test_positioned_at_lowest_level(self):
        instance = start_instance(
            definition_id=uuid4(),
            document_type=DocumentType.PRE_PAYMENT,
            document_id="PP-1",
            submitted_by="u.buyer",
            submitted_at=NOW,
            required_levels=(3, 1, 3),
        )
        assert instance.required_levels == (1, 3)
        assert instance.current_level == 1
        assert instance.status is WorkflowStatus.PENDING
        assert invariant_violations(instance) == ()


class TestApproval:

    def test_any_level_advances_on_one_approval(self):
        instance = apply_approval(_start(), _level(1), "u.pm", "ok", LATER)
        assert instance.current_level == 2
        assert instance.completed_levels == (1,)
        assert instance.status is WorkflowStatus.PENDING
        entry = instance.approval_history[-1]
        assert (entry.level, entry.level_name, entry.actor_id, entry.comments) == (
            1, "Level name 1", "u.pm", "ok",
        )

    def test_last_level_approves_instance(self):
        instance = apply_approval(_start(), _level(1), "u.pm", "", NOW)
        instance = apply_approval(instance, _level(2), "u.gm", "", LATER)
        assert instance.status is WorkflowStatus.APPROVED
        assert instance.completed_levels == (1, 2)
        assert instance.current_level == 3
        assert instance.completed_at == LATER
        assert invariant_violations(instance) == ()

    def test_all_level_waits_for_every_resolved_approver(self):
        level = _level(1, ApprovalMode.ALL)
        approvers = frozenset({"u.pm", "u.pm2"})
        instance = apply_approval(_start(), level, "u.pm", "", NOW, approvers)
        assert instance.current_level == 1
        assert instance.completed_levels == ()
        instance = apply_approval(instance, level, "u.pm2", "", NOW, approvers)
        assert instance.current_level == 2

    def test_all_level_with_no_resolved_approvers_never_completes(self):
        level = _level(1, ApprovalMode.ALL)
        assert not level_satisfied(_start(), level, frozenset())

    def test_complete_level_adds_no_history(self):
        level = _level(1, ApprovalMode.ALL)
        instance = apply_approval(_start(), level, "u.pm", "", NOW, frozenset({"u.pm", "u.pm2"}))
        assert level_satisfied(instance, level, frozenset({"u.pm"}))

        advanced = complete_level(instance, level, LATER)
        assert advanced.current_level == 2
        assert advanced.completed_levels == (1,)
        assert advanced.approval_history == instance.approval_history

        approved = complete_level(_start(required=(1,)), level, LATER)
        assert approved.status is WorkflowStatus.APPROVED
        assert approved.completed_at == LATER
        with pytest.raises(WorkflowAlreadyTerminalError):
            complete_level(approved, level, LATER)

    def test_same_actor_twice_at_a_level(self):
        level = _level(1, ApprovalMode.ALL)
        approvers = frozenset({"u.pm", "u.pm2"})
        instance = apply_approval(_start(), level, "u.pm", "", NOW, approvers)
        with pytest.raises(AlreadyActedError):
            apply_approval(instance, level, "u.pm", "", NOW, approvers)

    def test_decision_dispatch(self):
        approved = apply_decision(_start(), ApprovalAction.APPROVE, _level(1), "u.pm", "", NOW)
        rejected = apply_decision(_start(), ApprovalAction.REJECT, _level(1), "u.pm", "", NOW)
        assert approved.current_level == 2
        assert rejected.status is WorkflowStatus.REJECTED


class TestRejectionAndCancellation:

    def test_rejection_is_immediate(self):
        instance = apply_rejection(_start(), _level(1), "u.pm", "price too high", LATER)
        assert instance.status is WorkflowStatus.REJECTED
        assert instance.required_levels == (1, 2)
        assert instance.completed_at == LATER
        assert instance.approval_history[-1].action is ApprovalAction.REJECT

    def test_cancellation_records_recall(self):
        instance = apply_cancellation(_start(), "u.buyer", "duplicate order", LATER, _level(1))
        assert instance.status is WorkflowStatus.CANCELLED
        entry = instance.approval_history[-1]
        assert entry.action is ApprovalAction.RECALL
        assert entry.comments == "Cancelled: duplicate order"
        assert entry.level == 1

    def test_cancellation_without_level_config(self):
        instance = apply_cancellation(_start(), "u.buyer", "", LATER)
        assert instance.approval_history[-1].level_name == "Level 1"

    @pytest.mark.parametrize(
        "terminate",
        [
            lambda i: apply_rejection(i, _level(1), "u.pm", "", NOW),
            lambda i: apply_cancellation(i, "u.buyer", "", NOW),
        ],
    )
    def test_terminal_instances_reject_every_mutation(self, terminate):
        instance = terminate(_start())
        with pytest.raises(WorkflowAlreadyTerminalError):
            apply_approval(instance, _level(1), "u.gm", "", NOW)
        with pytest.raises(WorkflowAlreadyTerminalError):
            apply_rejection(instance, _level(1), "u.gm", "", NOW)
        with pytest.raises(WorkflowAlreadyTerminalError):
            apply_cancellation(instance, "u.buyer", "", NOW)


class TestProperties:

    @given(
        required=st.sets(st.integers(min_value=1, max_value=8), min_size=1, max_size=8),
        decisions=st.lists(st.sampled_from(["approve", "reject"]), max_size=12),
    )
    def test_invariants_hold_along_any_decision_sequence(self, required, decisions):
        instance = _start(tuple(required))
        for index, token in enumerate(decisions):
            if not instance.is_pending:
                with pytest.raises(WorkflowAlreadyTerminalError):
                    apply_decision(
                        instance, parse_decision(token), _level(instance.current_level),
                        f"u.{index}", "", NOW,
                    )
                continue
            instance = apply_decision(
                instance, parse_decision(token), _level(instance.current_level),
                f"u.{index}", "", NOW,
            )
            assert invariant_violations(instance) == ()
            assert set(instance.completed_levels) <= set(instance.required_levels)
            assert instance.required_levels == tuple(sorted(required))

        assert len(instance.approval_history) <= len(decisions)
