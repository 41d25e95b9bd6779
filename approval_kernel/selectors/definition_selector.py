"""
DefinitionSelector -- read access to workflow definitions.

Implements the ``DefinitionRepository`` contract used by WorkflowEngine.
Selection of the definition that backs a new instance is deterministic:
among active, non-removed definitions of the document type the default
one wins, then the oldest, then the lowest id.
"""

from uuid import UUID

from sqlalchemy import select

from approval_kernel.domain.workflow import DocumentType, WorkflowDefinition
from approval_kernel.models.workflow_definition import WorkflowDefinitionModel
from approval_kernel.selectors.base import BaseSelector


class DefinitionSelector(BaseSelector[WorkflowDefinitionModel]):
    """Read-only queries over workflow definitions."""

    def find_by_id(self, definition_id: UUID) -> WorkflowDefinition | None:
        model = self.session.get(WorkflowDefinitionModel, definition_id)
        return model.to_dto() if model is not None else None

    def find_active_by_document_type(
        self, document_type: DocumentType,
    ) -> WorkflowDefinition | None:
        stmt = (
            select(WorkflowDefinitionModel)
            .where(
                WorkflowDefinitionModel.document_type == DocumentType.parse(document_type).value,
                WorkflowDefinitionModel.is_active.is_(True),
                WorkflowDefinitionModel.removed.is_(False),
            )
            .order_by(
                WorkflowDefinitionModel.is_default.desc(),
                WorkflowDefinitionModel.created_at,
                WorkflowDefinitionModel.id,
            )
            .limit(1)
        )
        model = self.session.execute(stmt).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def find_active_default(
        self, document_type: DocumentType,
    ) -> WorkflowDefinition | None:
        """The active, non-removed default definition for the type, if any."""
        stmt = select(WorkflowDefinitionModel).where(
            WorkflowDefinitionModel.document_type == DocumentType.parse(document_type).value,
            WorkflowDefinitionModel.is_default.is_(True),
            WorkflowDefinitionModel.is_active.is_(True),
            WorkflowDefinitionModel.removed.is_(False),
        )
        model = self.session.execute(stmt).scalars().first()
        return model.to_dto() if model is not None else None

    def find_by_name(
        self, document_type: DocumentType, name: str,
    ) -> WorkflowDefinition | None:
        """Non-removed definition with this name for the document type."""
        stmt = select(WorkflowDefinitionModel).where(
            WorkflowDefinitionModel.document_type == DocumentType.parse(document_type).value,
            WorkflowDefinitionModel.name == name,
            WorkflowDefinitionModel.removed.is_(False),
        )
        model = self.session.execute(stmt).scalars().first()
        return model.to_dto() if model is not None else None

    def list_definitions(
        self,
        document_type: DocumentType | None = None,
        include_removed: bool = False,
    ) -> list[WorkflowDefinition]:
        stmt = select(WorkflowDefinitionModel)
        if document_type is not None:
            stmt = stmt.where(
                WorkflowDefinitionModel.document_type == DocumentType.parse(document_type).value,
            )
        if not include_removed:
            stmt = stmt.where(WorkflowDefinitionModel.removed.is_(False))
        stmt = stmt.order_by(
            WorkflowDefinitionModel.document_type,
            WorkflowDefinitionModel.created_at,
            WorkflowDefinitionModel.id,
        )
        return [model.to_dto() for model in self.session.execute(stmt).scalars()]
