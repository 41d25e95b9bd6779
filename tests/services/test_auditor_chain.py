"""
Tests for the hash-chained audit trail (AuditorService).

Verifies:
- Each recorded AuditRecord becomes one AuditEvent linked to its predecessor
- validate_chain detects tampering with stored rows
- AuditEvent rows cannot be modified or deleted through the ORM
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import text

from approval_kernel.domain.providers import AuditRecord
from approval_kernel.exceptions import AuditChainBrokenError, ImmutabilityViolationError
from approval_kernel.models.audit_event import AuditAction, AuditEvent
from approval_kernel.services.auditor_service import AuditorService


@pytest.fixture
def auditor(session, deterministic_clock):
    return AuditorService(session, deterministic_clock)


def _record(instance_id, action: AuditAction, **metadata) -> AuditRecord:
    return AuditRecord(
        actor_id="u.procurement_manager",
        action=action.value,
        entity_id=instance_id,
        metadata=metadata,
    )


class TestRecording:

    def test_events_form_a_chain(self, auditor):
        instance_id = uuid4()
        auditor.record(_record(instance_id, AuditAction.WORKFLOW_INITIATED, required_levels=[1, 2]))
        auditor.record(_record(instance_id, AuditAction.WORKFLOW_APPROVED, level=1))

        newest, genesis = auditor.get_recent_events()
        assert genesis.is_genesis
        assert newest.prev_hash == genesis.hash
        assert newest.seq == genesis.seq + 1
        assert auditor.count() == 2
        assert auditor.validate_chain() is True

    def test_trace_is_per_entity_and_ordered(self, auditor, deterministic_clock):
        first, second = uuid4(), uuid4()
        auditor.record(_record(first, AuditAction.WORKFLOW_INITIATED))
        auditor.record(_record(second, AuditAction.WORKFLOW_INITIATED))
        deterministic_clock.advance(30)
        auditor.record(_record(first, AuditAction.WORKFLOW_REJECTED, comments="too costly"))

        trace = auditor.get_trace("WorkflowInstance", first)

        assert trace.actions == ("workflow_initiated", "workflow_rejected")
        assert trace.entries[1].payload == {"comments": "too costly"}
        assert trace.entries[1].occurred_at == deterministic_clock.now()
        assert auditor.get_trace("WorkflowInstance", uuid4()).is_empty

    def test_payload_is_stored_canonically(self, auditor):
        instance_id = uuid4()
        auditor.record(_record(instance_id, AuditAction.WORKFLOW_INITIATED, amount=Decimal("10.50")))

        (entry,) = auditor.get_trace("WorkflowInstance", instance_id).entries
        assert entry.payload == {"amount": "10.5"}
        assert auditor.validate_chain()


class TestTamperDetection:

    def test_modified_action_breaks_the_chain(self, auditor, session):
        instance_id = uuid4()
        auditor.record(_record(instance_id, AuditAction.WORKFLOW_INITIATED))
        auditor.record(_record(instance_id, AuditAction.WORKFLOW_REJECTED))

        session.execute(
            text("UPDATE audit_events SET action = 'workflow_approved' WHERE seq = 2")
        )
        session.expire_all()

        with pytest.raises(AuditChainBrokenError) as exc_info:
            auditor.validate_chain()
        assert exc_info.value.code == "AUDIT_CHAIN_BROKEN"

    def test_broken_link_is_detected(self, auditor, session):
        instance_id = uuid4()
        auditor.record(_record(instance_id, AuditAction.WORKFLOW_INITIATED))
        auditor.record(_record(instance_id, AuditAction.WORKFLOW_APPROVED))

        session.execute(text("UPDATE audit_events SET prev_hash = NULL WHERE seq = 2"))
        session.expire_all()

        with pytest.raises(AuditChainBrokenError):
            auditor.validate_chain()


class TestImmutability:

    def test_audit_event_cannot_be_modified(self, auditor, session):
        auditor.record(_record(uuid4(), AuditAction.WORKFLOW_INITIATED))
        (event,) = session.query(AuditEvent).all()
        event.actor_id = "u.someone_else"

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert "AuditEvent" in str(exc_info.value)
        session.rollback()

    def test_audit_event_cannot_be_deleted(self, auditor, session):
        auditor.record(_record(uuid4(), AuditAction.WORKFLOW_INITIATED))
        (event,) = session.query(AuditEvent).all()
        session.delete(event)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()
