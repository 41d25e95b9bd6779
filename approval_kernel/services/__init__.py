"""Kernel services (flush-only; the caller owns the transaction)."""

from approval_kernel.services.auditor_service import (
    AuditorService,
    AuditTrace,
    AuditTraceEntry,
)
from approval_kernel.services.base import BaseService
from approval_kernel.services.definition_service import DefinitionService
from approval_kernel.services.instance_repository import InstanceRepositoryService

__all__ = [
    "AuditTrace",
    "AuditTraceEntry",
    "AuditorService",
    "BaseService",
    "DefinitionService",
    "InstanceRepositoryService",
]
