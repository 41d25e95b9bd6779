"""SQLAlchemy ORM models for the approval kernel."""

from approval_kernel.models.audit_event import AuditAction, AuditEvent
from approval_kernel.models.workflow_definition import (
    WorkflowDefinitionModel,
    WorkflowLevelModel,
    WorkflowRoutingRuleModel,
)
from approval_kernel.models.workflow_instance import (
    ApprovalHistoryModel,
    WorkflowInstanceModel,
)

__all__ = [
    "ApprovalHistoryModel",
    "AuditAction",
    "AuditEvent",
    "WorkflowDefinitionModel",
    "WorkflowInstanceModel",
    "WorkflowLevelModel",
    "WorkflowRoutingRuleModel",
]
