"""
DefinitionService -- administration of workflow definitions.

Responsibility:
    Create, edit, soft-delete and seed workflow definitions.  Every write
    is validated with ``ensure_valid_definition`` and checked against the
    one-default-per-document-type rule inside the caller's transaction.

Architecture position:
    Kernel > Services -- imperative shell.  Used by administrative callers
    and by ``approval_services.bootstrap`` to install configured
    definitions.  Never touches workflow instances: their required levels
    stay frozen whatever happens here.

Invariants enforced:
    - Level numbers are contiguous from 1; rules target existing levels.
    - At most one active, default, non-removed definition per type.
    - Removal is a soft delete (removed=True, is_active=False).

Failure modes:
    - InvalidDefinitionError: structural violations (all of them listed).
    - DuplicateDefaultDefinitionError: a second active default.
    - DefinitionNotFoundError: unknown or already removed definition.

Audit relevance:
    Emits definition_created / definition_updated / definition_removed.
    Audit failures are logged and never abort the write.
"""

from collections.abc import Iterable, Sequence
from dataclasses import replace
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.providers import AuditRecord, AuditSink
from approval_kernel.domain.workflow import (
    DocumentType,
    LevelDefinition,
    RoutingRule,
    WorkflowDefinition,
    ensure_valid_definition,
)
from approval_kernel.exceptions import (
    DefinitionNotFoundError,
    DuplicateDefaultDefinitionError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.audit_event import AuditAction
from approval_kernel.models.workflow_definition import (
    WorkflowDefinitionModel,
    WorkflowLevelModel,
    WorkflowRoutingRuleModel,
)
from approval_kernel.selectors.definition_selector import DefinitionSelector
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.services.base import BaseService

logger = get_logger("services.definition")

_ENTITY_TYPE = "WorkflowDefinition"


class DefinitionService(BaseService[WorkflowDefinitionModel]):
    """Write side of workflow definition management."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._audit = audit_sink if audit_sink is not None else AuditorService(session, self._clock)
        self._selector = DefinitionSelector(session)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_definition(self, definition_id: UUID) -> WorkflowDefinition:
        definition = self._selector.find_by_id(definition_id)
        if definition is None:
            raise DefinitionNotFoundError(str(definition_id))
        return definition

    def list_definitions(
        self,
        document_type: DocumentType | None = None,
        include_removed: bool = False,
    ) -> list[WorkflowDefinition]:
        return self._selector.list_definitions(document_type, include_removed)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_definition(
        self, definition: WorkflowDefinition, actor_id: str,
    ) -> WorkflowDefinition:
        """
        Validate and insert a new definition.

        Raises:
            InvalidDefinitionError, DuplicateDefaultDefinitionError.
        """
        ensure_valid_definition(definition)
        self._check_default_unique(definition)

        now = self._clock.now()
        if definition.created_by is None:
            definition = replace(definition, created_by=actor_id)
        model = WorkflowDefinitionModel.from_dto(definition, created_at=now)
        self.session.add(model)
        self.session.flush()

        created = model.to_dto()
        logger.info(
            "definition_created",
            extra={
                "definition_id": str(created.definition_id),
                "document_type": created.document_type.value,
                "definition_name": created.name,
                "level_count": created.total_levels,
                "is_default": created.is_default,
            },
        )
        self._emit(AuditAction.DEFINITION_CREATED, created, actor_id)
        return created

    def update_definition(
        self,
        definition_id: UUID,
        actor_id: str,
        *,
        name: str | None = None,
        display_name: str | None = None,
        description: str | None = None,
        levels: Sequence[LevelDefinition] | None = None,
        routing_rules: Sequence[RoutingRule] | None = None,
        is_active: bool | None = None,
        is_default: bool | None = None,
        allow_recall: bool | None = None,
    ) -> WorkflowDefinition:
        """
        Replace the given attributes of a definition.

        Omitted (None) arguments keep their current value.  The result is
        revalidated and the default rule rechecked before anything is
        written.
        """
        model = self._load_live(definition_id)
        current = model.to_dto()

        changes: dict[str, Any] = {
            key: value
            for key, value in {
                "name": name,
                "display_name": display_name,
                "description": description,
                "is_active": is_active,
                "is_default": is_default,
                "allow_recall": allow_recall,
            }.items()
            if value is not None
        }
        if levels is not None:
            changes["levels"] = tuple(levels)
        if routing_rules is not None:
            changes["routing_rules"] = tuple(routing_rules)

        updated = ensure_valid_definition(replace(current, **changes))
        self._check_default_unique(updated)

        model.name = updated.name
        model.display_name = updated.display_name
        model.description = updated.description
        model.is_active = updated.is_active
        model.is_default = updated.is_default
        model.allow_recall = updated.allow_recall
        model.updated_at = self._clock.now()

        if levels is not None:
            # Old rows go first: (definition_id, level_number) is unique.
            model.levels.clear()
            self.session.flush()
            model.levels.extend(WorkflowLevelModel.from_dto(level) for level in updated.levels)
        if routing_rules is not None:
            model.routing_rules.clear()
            self.session.flush()
            model.routing_rules.extend(
                WorkflowRoutingRuleModel.from_dto(rule, position)
                for position, rule in enumerate(updated.routing_rules)
            )
        self.session.flush()

        result = model.to_dto()
        logger.info(
            "definition_updated",
            extra={
                "definition_id": str(definition_id),
                "changed_fields": sorted(changes),
            },
        )
        self._emit(
            AuditAction.DEFINITION_UPDATED, result, actor_id,
            changed_fields=sorted(changes),
        )
        return result

    def remove_definition(self, definition_id: UUID, actor_id: str) -> WorkflowDefinition:
        """Soft delete: the definition stops backing new instances."""
        model = self._load_live(definition_id)
        model.removed = True
        model.is_active = False
        model.updated_at = self._clock.now()
        self.session.flush()

        removed = model.to_dto()
        logger.info(
            "definition_removed",
            extra={
                "definition_id": str(definition_id),
                "document_type": removed.document_type.value,
            },
        )
        self._emit(AuditAction.DEFINITION_REMOVED, removed, actor_id)
        return removed

    def install_definitions(
        self,
        definitions: Iterable[WorkflowDefinition],
        actor_id: str = "system",
    ) -> tuple[WorkflowDefinition, ...]:
        """
        Seed definitions, skipping any whose (document_type, name) exists.

        Idempotent: running it twice installs nothing the second time.
        Returns the stored definition for every input, new or existing.
        """
        installed: list[WorkflowDefinition] = []
        created_count = 0
        for definition in definitions:
            existing = self._selector.find_by_name(definition.document_type, definition.name)
            if existing is not None:
                installed.append(existing)
                continue
            if self.session.get(WorkflowDefinitionModel, definition.definition_id) is not None:
                # The configured id belongs to a removed definition.
                definition = replace(definition, definition_id=uuid4())
            installed.append(self.create_definition(definition, actor_id))
            created_count += 1

        logger.info(
            "definitions_installed",
            extra={"created_count": created_count, "total": len(installed)},
        )
        return tuple(installed)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_live(self, definition_id: UUID) -> WorkflowDefinitionModel:
        model = self.session.get(WorkflowDefinitionModel, definition_id)
        if model is None or model.removed:
            raise DefinitionNotFoundError(str(definition_id))
        return model

    def _check_default_unique(self, definition: WorkflowDefinition) -> None:
        if not (definition.is_default and definition.is_selectable):
            return
        existing = self._selector.find_active_default(definition.document_type)
        if existing is not None and existing.definition_id != definition.definition_id:
            raise DuplicateDefaultDefinitionError(
                definition.document_type.value, str(existing.definition_id),
            )

    def _emit(
        self,
        action: AuditAction,
        definition: WorkflowDefinition,
        actor_id: str,
        **extra: Any,
    ) -> None:
        record = AuditRecord(
            actor_id=actor_id,
            action=action.value,
            entity_type=_ENTITY_TYPE,
            entity_id=definition.definition_id,
            metadata={
                "document_type": definition.document_type.value,
                "name": definition.name,
                "lifecycle": definition.lifecycle.value,
                "levels": list(definition.level_numbers()),
                **extra,
            },
        )
        try:
            self._audit.record(record)
        except Exception:
            logger.error(
                "audit_emission_failed",
                extra={"action": action.value, "definition_id": str(definition.definition_id)},
                exc_info=True,
            )
