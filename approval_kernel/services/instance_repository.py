"""
InstanceRepositoryService -- persistence of workflow instances.

Responsibility:
    Implements the ``InstanceRepository`` contract over SQLAlchemy: inserts
    new instances, applies state changes with an optimistic version check,
    and delegates every read to ``InstanceSelector``.

Architecture position:
    Kernel > Services -- imperative shell.  Called by WorkflowEngine.

Invariants enforced:
    - Single writer per instance: ``save`` succeeds only if the stored
      version equals the version the caller read.  The UPDATE itself is
      guarded by ``WHERE version = :expected`` (mapper version_id_col).
    - ``required_levels`` never changes after insert.
    - Approval history is append-only: the persisted history must be a
      prefix of the history being saved.
    - At most one pending instance per document (partial unique index);
      a lost insert race surfaces as DuplicateInstanceError.

Failure modes:
    - ConcurrencyConflictError: stale version or concurrent UPDATE.
    - DuplicateInstanceError: a pending instance already exists.
    - ImmutabilityViolationError: rewritten history or required levels.
    - InstanceNotFoundError: ``save`` for an unknown instance.
"""

import json
from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from approval_kernel.domain.instance import WorkflowInstance, WorkflowStatus
from approval_kernel.domain.workflow import DocumentType
from approval_kernel.exceptions import (
    ConcurrencyConflictError,
    DuplicateInstanceError,
    ImmutabilityViolationError,
    InstanceNotFoundError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.workflow_instance import (
    ApprovalHistoryModel,
    WorkflowInstanceModel,
)
from approval_kernel.selectors.instance_selector import InstanceSelector, WorkflowStatistics
from approval_kernel.services.base import BaseService
from approval_kernel.utils.hashing import canonicalize_json

logger = get_logger("services.instance_repository")


def _storable_context(context: dict[str, Any]) -> dict[str, Any]:
    # Decimal and datetime values become strings in the JSON column.
    return json.loads(canonicalize_json(context or {}))


class InstanceRepositoryService(BaseService[WorkflowInstanceModel]):
    """SQLAlchemy-backed ``InstanceRepository``."""

    def __init__(self, session: Session):
        super().__init__(session)
        self._selector = InstanceSelector(session)

    # Reads

    def find_by_id(self, instance_id: UUID) -> WorkflowInstance | None:
        return self._selector.find_by_id(instance_id)

    def find_active_by_document(
        self, document_type: DocumentType, document_id: str,
    ) -> WorkflowInstance | None:
        return self._selector.find_active_by_document(document_type, document_id)

    def find_latest_by_document(
        self, document_type: DocumentType, document_id: str,
    ) -> WorkflowInstance | None:
        return self._selector.find_latest_by_document(document_type, document_id)

    def list_pending(
        self, document_type: DocumentType | None = None,
    ) -> Sequence[WorkflowInstance]:
        return self._selector.list_pending(document_type)

    def list_by_status(
        self,
        status: WorkflowStatus,
        document_type: DocumentType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[WorkflowInstance]:
        return self._selector.list_by_status(status, document_type, limit, offset)

    def list_by_document_type(
        self,
        document_type: DocumentType,
        status: WorkflowStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[WorkflowInstance]:
        return self._selector.list_by_document_type(document_type, status, limit, offset)

    def list_instances(
        self,
        status: WorkflowStatus | None = None,
        document_type: DocumentType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[WorkflowInstance]:
        return self._selector.list_instances(status, document_type, limit, offset)

    def list_completed_since(
        self, since: datetime, limit: int = 50,
    ) -> Sequence[WorkflowInstance]:
        return self._selector.list_completed_since(since, limit)

    def statistics(
        self,
        document_type: DocumentType | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> WorkflowStatistics:
        return self._selector.statistics(document_type, start, end)

    # Writes

    def add(self, instance: WorkflowInstance) -> WorkflowInstance:
        """
        Insert a new instance with its initial history.

        Postconditions:
            - The row is flushed with version 1.

        Raises:
            DuplicateInstanceError: A pending instance for the same
                document already exists (including one inserted by a
                concurrent transaction).
        """
        model = WorkflowInstanceModel.from_dto(instance, _storable_context(instance.context))
        model.history = [
            ApprovalHistoryModel.from_dto(entry, sequence)
            for sequence, entry in enumerate(instance.approval_history, start=1)
        ]

        try:
            with self.session.begin_nested():
                self.session.add(model)
                self.session.flush()
        except IntegrityError as exc:
            existing = self.find_active_by_document(instance.document_type, instance.document_id)
            if existing is None:
                raise
            logger.warning(
                "instance_insert_conflict",
                extra={
                    "document_type": instance.document_type.value,
                    "document_id": instance.document_id,
                    "existing_instance_id": str(existing.instance_id),
                },
            )
            raise DuplicateInstanceError(
                instance.document_type.value,
                instance.document_id,
                str(existing.instance_id),
            ) from exc

        logger.debug(
            "instance_inserted",
            extra={"instance_id": str(model.id), "version": model.version},
        )
        return model.to_dto()

    def save(self, instance: WorkflowInstance) -> WorkflowInstance:
        """
        Persist a state change of an existing instance.

        Preconditions:
            - ``instance.version`` is the version the caller loaded.

        Postconditions:
            - The stored row carries ``instance.version + 1`` and every
              history entry not yet persisted is appended.

        Raises:
            InstanceNotFoundError: No such instance.
            ConcurrencyConflictError: Another writer saved first.
            ImmutabilityViolationError: History or required levels rewritten.
        """
        model = self.session.get(
            WorkflowInstanceModel, instance.instance_id, populate_existing=True,
        )
        if model is None:
            raise InstanceNotFoundError(str(instance.instance_id))

        if model.version != instance.version:
            logger.warning(
                "instance_version_conflict",
                extra={
                    "instance_id": str(instance.instance_id),
                    "expected_version": instance.version,
                    "stored_version": model.version,
                },
            )
            raise ConcurrencyConflictError(
                "WorkflowInstance", str(instance.instance_id), instance.version,
            )

        if tuple(model.required_levels) != tuple(instance.required_levels):
            raise ImmutabilityViolationError(
                "WorkflowInstance",
                str(instance.instance_id),
                "required levels are fixed at initiation",
            )

        persisted_ids = [entry.id for entry in model.history]
        incoming_ids = [entry.entry_id for entry in instance.approval_history]
        if incoming_ids[: len(persisted_ids)] != persisted_ids:
            raise ImmutabilityViolationError(
                "WorkflowInstance",
                str(instance.instance_id),
                "approval history is append-only",
            )

        new_entries = instance.approval_history[len(persisted_ids):]

        try:
            with self.session.begin_nested():
                model.status = instance.status.value
                model.current_level = instance.current_level
                model.completed_levels = list(instance.completed_levels)
                model.completed_at = instance.completed_at
                model.version = instance.version + 1
                for offset, entry in enumerate(new_entries, start=1):
                    model.history.append(
                        ApprovalHistoryModel.from_dto(entry, len(persisted_ids) + offset)
                    )
                self.session.flush()
        except (StaleDataError, IntegrityError) as exc:
            logger.warning(
                "instance_update_conflict",
                extra={
                    "instance_id": str(instance.instance_id),
                    "expected_version": instance.version,
                    "error": type(exc).__name__,
                },
            )
            raise ConcurrencyConflictError(
                "WorkflowInstance", str(instance.instance_id), instance.version,
            ) from exc

        logger.debug(
            "instance_saved",
            extra={
                "instance_id": str(model.id),
                "version": model.version,
                "appended_entries": len(new_entries),
            },
        )
        return model.to_dto()
