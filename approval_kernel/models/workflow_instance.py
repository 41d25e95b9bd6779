"""
Module: approval_kernel.models.workflow_instance
Responsibility: ORM persistence for workflow instances and their
    append-only approval history.
Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions only.

Invariants enforced:
    - At most one pending instance per (document_type, document_id):
      partial unique index on status = 'pending'.
    - Optimistic concurrency: ``version`` is the mapper's version_id_col.
      Every UPDATE carries ``WHERE version = <expected>``; a lost race
      surfaces as StaleDataError (mapped to ConcurrencyConflictError by
      InstanceRepositoryService).
    - An actor decides a level at most once: partial unique index on
      (instance_id, level, actor_id) for non-recall history rows.
    - History rows are append-only (ORM listeners below).

Failure modes:
    - IntegrityError on a second pending instance or a duplicate decision.
    - StaleDataError on a concurrent update.
    - ImmutabilityViolationError on history UPDATE/DELETE.

Audit relevance:
    The approval history is the per-document decision record; the
    instance row carries only derived progress state.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.instance import ApprovalHistoryEntry, WorkflowInstance


class WorkflowInstanceModel(Base):
    """Persistent workflow instance.

    Contract:
        ``required_levels`` is written once at initiation.  ``version`` is
        assigned by InstanceRepositoryService (``version_id_generator`` is
        off) so that appending history alone still bumps the row version.
    """

    __tablename__ = "workflow_instances"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'cancelled')",
            name="ck_workflow_instances_status",
        ),
        Index(
            "ix_workflow_instances_pending_document",
            "document_type", "document_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index(
            "ix_workflow_instances_document",
            "document_type", "document_id", "submitted_at",
        ),
        Index(
            "ix_workflow_instances_status_submitted",
            "status", "submitted_at",
        ),
        Index(
            "ix_workflow_instances_completed",
            "status", "completed_at",
        ),
    )

    definition_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_definitions.id"),
        nullable=False,
    )
    document_type: Mapped[str] = mapped_column(String(50), nullable=False)
    document_id: Mapped[str] = mapped_column(String(100), nullable=False)
    document_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    current_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    required_levels: Mapped[list] = mapped_column(JSON, nullable=False)
    completed_levels: Mapped[list] = mapped_column(JSON, nullable=False)
    submitted_by: Mapped[str] = mapped_column(String(100), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    context: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    history: Mapped[list["ApprovalHistoryModel"]] = relationship(
        "ApprovalHistoryModel",
        back_populates="instance",
        cascade="save-update, merge",
        order_by="ApprovalHistoryModel.sequence",
        lazy="selectin",
    )

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }

    def __repr__(self) -> str:
        return (
            f"<WorkflowInstance {self.id} {self.document_type}/{self.document_id} "
            f"status={self.status} level={self.current_level} v{self.version}>"
        )

    def to_dto(self) -> WorkflowInstance:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.instance import WorkflowInstance as InstanceDTO
        from approval_kernel.domain.instance import WorkflowStatus
        from approval_kernel.domain.workflow import DocumentType

        return InstanceDTO(
            instance_id=self.id,
            definition_id=self.definition_id,
            document_type=DocumentType(self.document_type),
            document_id=self.document_id,
            document_number=self.document_number,
            status=WorkflowStatus(self.status),
            current_level=self.current_level,
            required_levels=tuple(self.required_levels),
            completed_levels=tuple(self.completed_levels),
            approval_history=tuple(entry.to_dto() for entry in self.history),
            submitted_by=self.submitted_by,
            submitted_at=self.submitted_at,
            completed_at=self.completed_at,
            context=dict(self.context or {}),
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: WorkflowInstance, context: dict[str, Any]) -> WorkflowInstanceModel:
        """Create ORM model from domain DTO (history rows are added separately)."""
        return cls(
            id=dto.instance_id,
            definition_id=dto.definition_id,
            document_type=dto.document_type.value,
            document_id=dto.document_id,
            document_number=dto.document_number,
            status=dto.status.value,
            current_level=dto.current_level,
            required_levels=list(dto.required_levels),
            completed_levels=list(dto.completed_levels),
            submitted_by=dto.submitted_by,
            submitted_at=dto.submitted_at,
            completed_at=dto.completed_at,
            context=context,
            version=1,
        )


class ApprovalHistoryModel(Base):
    """One approval history entry.  Append-only.

    Contract:
        Rows are immutable once created -- no UPDATE, no DELETE.
    """

    __tablename__ = "workflow_approval_history"

    __table_args__ = (
        UniqueConstraint(
            "instance_id", "sequence",
            name="uq_workflow_approval_history_sequence",
        ),
        Index(
            "ix_workflow_approval_history_decision_unique",
            "instance_id", "level", "actor_id",
            unique=True,
            postgresql_where=text("action <> 'recall'"),
            sqlite_where=text("action <> 'recall'"),
        ),
        Index("ix_workflow_approval_history_actor", "actor_id"),
        CheckConstraint(
            "action IN ('approve', 'reject', 'recall')",
            name="ck_workflow_approval_history_action",
        ),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_instances.id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    level_name: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    comments: Mapped[str] = mapped_column(Text, default="", nullable=False)
    acted_at: Mapped[datetime] = mapped_column(nullable=False)
    details: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    instance: Mapped["WorkflowInstanceModel"] = relationship(
        "WorkflowInstanceModel",
        back_populates="history",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalHistory {self.instance_id}#{self.sequence} "
            f"level={self.level} {self.actor_id} {self.action}>"
        )

    def to_dto(self) -> ApprovalHistoryEntry:
        from approval_kernel.domain.instance import ApprovalAction, ApprovalHistoryEntry

        return ApprovalHistoryEntry(
            entry_id=self.id,
            level=self.level,
            level_name=self.level_name,
            actor_id=self.actor_id,
            action=ApprovalAction(self.action),
            comments=self.comments,
            timestamp=self.acted_at,
            metadata=self.details,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalHistoryEntry, sequence: int) -> ApprovalHistoryModel:
        return cls(
            id=dto.entry_id,
            sequence=sequence,
            level=dto.level,
            level_name=dto.level_name,
            actor_id=dto.actor_id,
            action=dto.action.value,
            comments=dto.comments,
            acted_at=dto.timestamp,
            details=dto.metadata,
        )


# =============================================================================
# ORM-Level Immutability for History (Append-Only)
# =============================================================================


@event.listens_for(ApprovalHistoryModel, "before_update")
def prevent_history_update(mapper, connection, target):
    """Prevent updates to approval history rows."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalHistory",
        entity_id=str(target.id),
        reason="Approval history entries are immutable -- cannot modify",
    )


@event.listens_for(ApprovalHistoryModel, "before_delete")
def prevent_history_delete(mapper, connection, target):
    """Prevent deletion of approval history rows."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalHistory",
        entity_id=str(target.id),
        reason="Approval history entries are immutable -- cannot delete",
    )
