"""
Collaborator contracts (``approval_kernel.domain.providers``).

Responsibility
--------------
Narrow, pluggable interfaces through which the workflow engine reaches
its neighbours: the role directory, the audit sink, and the two
repositories.  The engine receives implementations via constructor
injection and never looks them up globally.

Architecture position
---------------------
**Kernel domain layer** -- protocols and one frozen record.  ZERO I/O.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from approval_kernel.domain.instance import WorkflowInstance, WorkflowStatus
from approval_kernel.domain.workflow import DocumentType, RoleRef, WorkflowDefinition

PrincipalId = str


class RoleDirectory(Protocol):
    """Resolves roles to the principals allowed to act for them.

    Implementations must exclude disabled and removed principals.
    """

    def resolve_approvers(self, role_refs: Iterable[RoleRef]) -> frozenset[PrincipalId]:
        """Return every active principal holding any of ``role_refs``."""
        ...

    def is_member(self, principal_id: PrincipalId, role_refs: Iterable[RoleRef]) -> bool:
        """Check if ``principal_id`` is an active holder of any of ``role_refs``."""
        ...


@dataclass(frozen=True)
class AuditRecord:
    """Notification emitted for every state transition."""

    actor_id: str
    action: str
    entity_id: UUID
    entity_type: str = "WorkflowInstance"
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditSink(Protocol):
    """Best-effort receiver of audit records.

    The engine catches and logs anything ``record`` raises.
    """

    def record(self, event: AuditRecord) -> None:
        ...


class DefinitionRepository(Protocol):
    """Read access to workflow definitions."""

    def find_by_id(self, definition_id: UUID) -> WorkflowDefinition | None:
        ...

    def find_active_by_document_type(
        self, document_type: DocumentType,
    ) -> WorkflowDefinition | None:
        """Active, non-removed definition; default preferred, then oldest."""
        ...


class InstanceRepository(Protocol):
    """Persistence for workflow instances with optimistic updates."""

    def find_by_id(self, instance_id: UUID) -> WorkflowInstance | None:
        ...

    def find_active_by_document(
        self, document_type: DocumentType, document_id: str,
    ) -> WorkflowInstance | None:
        """The pending instance for a document, if any."""
        ...

    def find_latest_by_document(
        self, document_type: DocumentType, document_id: str,
    ) -> WorkflowInstance | None:
        ...

    def add(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Insert a new instance; returns it with its first version."""
        ...

    def save(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Persist ``instance`` iff the stored version equals ``instance.version``.

        Returns the instance carrying the new version.  Raises
        ``ConcurrencyConflictError`` when another writer got there first.
        """
        ...

    def list_pending(
        self,
        document_type: DocumentType | None = None,
    ) -> Sequence[WorkflowInstance]:
        """All pending instances, newest submission first."""
        ...

    def list_by_status(
        self,
        status: WorkflowStatus,
        document_type: DocumentType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[WorkflowInstance]:
        ...

    def list_by_document_type(
        self,
        document_type: DocumentType,
        status: WorkflowStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[WorkflowInstance]:
        ...

    def list_instances(
        self,
        status: WorkflowStatus | None = None,
        document_type: DocumentType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[WorkflowInstance]:
        """Instances filtered by status and/or type, newest submission first."""
        ...

    def list_completed_since(
        self, since: datetime, limit: int = 50,
    ) -> Sequence[WorkflowInstance]:
        """Approved or rejected instances completed at or after ``since``."""
        ...

    def statistics(
        self,
        document_type: DocumentType | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Any:
        """Per-status counts and average durations."""
        ...
