"""
approval_services -- Package init and public API.

Responsibility:
    Stateful orchestration of the approval workflow: the WorkflowEngine,
    its collaborator adapters, and the DI wiring that builds them from
    the active configuration.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        approval_services/ -> approval_engines/  (allowed)
        approval_services/ -> approval_kernel/   (allowed)
        approval_services/ -> approval_config/   (allowed)
        approval_engines/  -> approval_services/ (FORBIDDEN)
        approval_kernel/   -> approval_services/ (FORBIDDEN)
"""

from approval_services.audit_sinks import CompositeAuditSink, LoggingAuditSink
from approval_services.bootstrap import (
    WorkflowServices,
    build_workflow_engine,
    install_configured_definitions,
)
from approval_services.role_directory import StaticRoleDirectory
from approval_services.workflow_engine import WorkflowEngine

__all__ = [
    "CompositeAuditSink",
    "LoggingAuditSink",
    "StaticRoleDirectory",
    "WorkflowEngine",
    "WorkflowServices",
    "build_workflow_engine",
    "install_configured_definitions",
]
