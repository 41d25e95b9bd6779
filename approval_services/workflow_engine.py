"""
approval_services.workflow_engine -- Multi-level document approval workflow.

Responsibility:
    Drives approval workflow instances for procurement documents:
    initiation (definition lookup and level routing), approve/reject
    decisions level by level, cancellation, and the read-side queries
    used by approver inboxes and dashboards.  The transition arithmetic
    lives in the pure ``approval_engines.state_machine``; this class adds
    lookups, authorization, persistence and audit.

Architecture position:
    Services -- stateful orchestration over engines + kernel.  Every
    collaborator is injected (see ``approval_services.bootstrap``).

Invariants enforced:
    - At most one pending instance per (document_type, document_id).
    - ``required_levels`` are computed once, at initiation.
    - Only members of the current level's approver roles may decide, and
      each of them at most once per level.
    - No mutation of an approved, rejected or cancelled instance.
    - Every accepted transition is persisted with an optimistic version
      check; a lost race raises ConcurrencyConflictError.
    - An all-mode level whose remaining approvers have left the role
      directory is completed on the next touch, so it cannot stall.

Failure modes:
    - NoActiveDefinitionError, NoLevelsDeterminedError, DuplicateInstanceError
      on initiation.
    - InvalidActionError, InstanceNotFoundError, WorkflowAlreadyTerminalError,
      InvalidLevelError, NotAuthorizedError, AlreadyActedError on decisions.
    - RecallNotAllowedError on cancellation.
    - ConcurrencyConflictError from the repository on any write.

Audit relevance:
    Emits workflow_initiated, workflow_approved (every approval),
    workflow_rejected and workflow_cancelled.  Audit failures are logged
    as ``audit_emission_failed`` and never undo the transition.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from approval_engines.router import ApprovalRouter, RoutingStrategy, get_routing_strategy
from approval_engines.state_machine import (
    apply_cancellation,
    apply_decision,
    complete_level,
    ensure_pending,
    level_satisfied,
    parse_decision,
    start_instance,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.instance import ApprovalAction, WorkflowInstance, WorkflowStatus
from approval_kernel.domain.providers import (
    AuditRecord,
    AuditSink,
    DefinitionRepository,
    InstanceRepository,
    PrincipalId,
    RoleDirectory,
)
from approval_kernel.domain.workflow import (
    ApprovalMode,
    DocumentType,
    LevelDefinition,
    WorkflowDefinition,
)
from approval_kernel.exceptions import (
    AlreadyActedError,
    DuplicateInstanceError,
    InstanceNotFoundError,
    InvalidLevelError,
    NoActiveDefinitionError,
    NoLevelsDeterminedError,
    NotAuthorizedError,
    RecallNotAllowedError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.audit_event import AuditAction

logger = get_logger("services.workflow_engine")


class WorkflowEngine:
    """Approval workflow state machine over injected collaborators.

    Contract:
        Flushes through the repositories inside the caller's transaction;
        never commits or rolls back.

    Non-goals:
        - Notifications, escalation and delegation.
        - Updating the approved document itself (callers react to the
          returned instance status).
    """

    def __init__(
        self,
        definitions: DefinitionRepository,
        instances: InstanceRepository,
        role_directory: RoleDirectory,
        audit_sink: AuditSink,
        clock: Clock | None = None,
        router: ApprovalRouter | None = None,
        routing_strategy: RoutingStrategy | str | None = None,
        default_page_size: int = 50,
        recent_completion_days: int = 7,
    ) -> None:
        self._definitions = definitions
        self._instances = instances
        self._roles = role_directory
        self._audit = audit_sink
        self._clock = clock or SystemClock()
        if router is None:
            if isinstance(routing_strategy, str):
                routing_strategy = get_routing_strategy(routing_strategy)
            router = ApprovalRouter(routing_strategy)
        self._router = router
        self._page_size = default_page_size
        self._recent_days = recent_completion_days

    @property
    def routing_strategy(self) -> str:
        return self._router.strategy.name

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def initiate(
        self,
        document_type: DocumentType | str,
        document_id: str,
        initiated_by: str,
        context: Mapping[str, Any] | None = None,
        document_number: str | None = None,
    ) -> WorkflowInstance:
        """
        Start the approval workflow for a submitted document.

        Postconditions:
            - A pending instance exists positioned at its lowest required level.

        Raises:
            NoActiveDefinitionError: No active definition for the type.
            NoLevelsDeterminedError: Routing produced no levels.
            DuplicateInstanceError: The document already has a pending instance.
        """
        document_type = DocumentType.parse(document_type)
        document_id = str(document_id)
        context = dict(context or {})

        with LogContext.bind(actor_id=initiated_by, document_id=document_id):
            definition = self._definitions.find_active_by_document_type(document_type)
            if definition is None:
                raise NoActiveDefinitionError(document_type.value)

            required_levels = self._router.determine_required_levels(definition, context)
            if not required_levels:
                raise NoLevelsDeterminedError(
                    str(definition.definition_id), document_type.value,
                )

            existing = self._instances.find_active_by_document(document_type, document_id)
            if existing is not None:
                raise DuplicateInstanceError(
                    document_type.value, document_id, str(existing.instance_id),
                )

            instance = start_instance(
                definition_id=definition.definition_id,
                document_type=document_type,
                document_id=document_id,
                document_number=document_number,
                submitted_by=initiated_by,
                submitted_at=self._clock.now(),
                required_levels=required_levels,
                context=context,
            )
            stored = self._instances.add(instance)

            logger.info(
                "workflow_initiated",
                extra={
                    "instance_id": str(stored.instance_id),
                    "definition_id": str(definition.definition_id),
                    "document_type": document_type.value,
                    "required_levels": list(stored.required_levels),
                    "routing_strategy": self.routing_strategy,
                },
            )
            self._emit(
                AuditAction.WORKFLOW_INITIATED,
                stored,
                initiated_by,
                definition_id=str(definition.definition_id),
                definition_name=definition.name,
                document_id=document_id,
                document_type=document_type.value,
                required_levels=list(stored.required_levels),
            )
            return stored

    def process_approval(
        self,
        instance_id: UUID,
        actor_id: str,
        action: ApprovalAction | str,
        comments: str = "",
    ) -> WorkflowInstance:
        """
        Record an approve or reject decision at the current level.

        Raises:
            InvalidActionError: ``action`` is not approve/reject.
            InstanceNotFoundError: Unknown instance.
            WorkflowAlreadyTerminalError: Instance is not pending.
            InvalidLevelError: Current level has no configuration.
            NotAuthorizedError: Actor holds none of the level's roles.
            AlreadyActedError: Actor already acted at this level.
        """
        decision = parse_decision(action)

        with LogContext.bind(actor_id=actor_id, instance_id=str(instance_id)):
            instance = self._load(instance_id)
            ensure_pending(instance)

            instance, settled = self._settle_levels(instance)
            if not instance.is_pending:
                stored = self._instances.save(instance)
                logger.info(
                    "approval_level_settled",
                    extra={
                        "settled_levels": list(settled),
                        "status": stored.status.value,
                        "completed_levels": list(stored.completed_levels),
                    },
                )
                self._emit(
                    AuditAction.WORKFLOW_APPROVED,
                    stored,
                    actor_id,
                    level=settled[-1],
                    settled_levels=list(settled),
                    status=stored.status.value,
                    completed_levels=list(stored.completed_levels),
                )
                return stored

            level = self._current_level_config(instance)
            if not self._roles.is_member(actor_id, level.approver_roles):
                logger.warning(
                    "approval_not_authorized",
                    extra={"approval_level": level.number, "approver_roles": sorted(level.approver_roles)},
                )
                raise NotAuthorizedError(actor_id, str(instance.instance_id), level.number)
            if instance.has_acted(actor_id, level.number):
                raise AlreadyActedError(actor_id, str(instance.instance_id), level.number)

            resolved = frozenset()
            if level.approval_mode == ApprovalMode.ALL:
                resolved = self._roles.resolve_approvers(level.approver_roles)

            updated = apply_decision(
                instance, decision, level, actor_id, comments, self._clock.now(), resolved,
            )
            stored = self._instances.save(updated)

            logger.info(
                "approval_recorded",
                extra={
                    "action": decision.value,
                    "approval_level": level.number,
                    "status": stored.status.value,
                    "current_level": stored.current_level,
                    "completed_levels": list(stored.completed_levels),
                    "settled_levels": list(settled),
                },
            )
            audit_action = (
                AuditAction.WORKFLOW_REJECTED
                if decision == ApprovalAction.REJECT
                else AuditAction.WORKFLOW_APPROVED
            )
            self._emit(
                audit_action,
                stored,
                actor_id,
                level=level.number,
                level_name=level.display_name,
                comments=comments or "",
                status=stored.status.value,
                completed_levels=list(stored.completed_levels),
                settled_levels=list(settled),
            )
            return stored

    def cancel(
        self,
        instance_id: UUID,
        actor_id: str,
        reason: str = "",
    ) -> WorkflowInstance:
        """
        Recall a pending instance.

        Raises:
            InstanceNotFoundError: Unknown instance.
            WorkflowAlreadyTerminalError: Instance is not pending.
            RecallNotAllowedError: The bound definition forbids recall.
        """
        with LogContext.bind(actor_id=actor_id, instance_id=str(instance_id)):
            instance = self._load(instance_id)
            ensure_pending(instance)

            definition = self._definitions.find_by_id(instance.definition_id)
            if definition is not None and not definition.allow_recall:
                raise RecallNotAllowedError(
                    str(instance.instance_id), str(definition.definition_id),
                )
            level = definition.level_config(instance.current_level) if definition else None

            updated = apply_cancellation(instance, actor_id, reason, self._clock.now(), level)
            stored = self._instances.save(updated)

            logger.info(
                "workflow_cancelled",
                extra={"approval_level": stored.current_level, "reason": reason},
            )
            self._emit(
                AuditAction.WORKFLOW_CANCELLED,
                stored,
                actor_id,
                level=stored.current_level,
                reason=reason,
                status=stored.status.value,
            )
            return stored

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_instance(self, instance_id: UUID) -> WorkflowInstance:
        return self._load(instance_id)

    def get_instance_for_document(
        self, document_type: DocumentType | str, document_id: str,
    ) -> WorkflowInstance | None:
        """Latest instance for a document, pending or not."""
        return self._instances.find_latest_by_document(
            DocumentType.parse(document_type), str(document_id),
        )

    def list_instances(
        self,
        status: WorkflowStatus | str | None = None,
        document_type: DocumentType | str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> Sequence[WorkflowInstance]:
        return self._instances.list_instances(
            WorkflowStatus(status) if status is not None else None,
            DocumentType.parse(document_type) if document_type is not None else None,
            limit if limit is not None else self._page_size,
            offset,
        )

    def pending_approvals_for(
        self,
        actor_id: str,
        document_type: DocumentType | str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[WorkflowInstance]:
        """
        Pending instances whose current level ``actor_id`` may act on.

        Instances where the actor already acted at the current level are
        left out.  Paging applies after filtering, newest submission first.
        """
        doc_type = DocumentType.parse(document_type) if document_type is not None else None
        limit = limit if limit is not None else self._page_size
        definitions: dict[UUID, WorkflowDefinition | None] = {}

        actionable: list[WorkflowInstance] = []
        for instance in self._instances.list_pending(doc_type):
            if instance.definition_id not in definitions:
                definitions[instance.definition_id] = self._definitions.find_by_id(
                    instance.definition_id,
                )
            definition = definitions[instance.definition_id]
            settled_view, _ = self._settle_levels(instance, definition)
            if not settled_view.is_pending:
                continue
            level = (
                definition.level_config(settled_view.current_level) if definition else None
            )
            if level is None or settled_view.has_acted(actor_id, level.number):
                continue
            if self._roles.is_member(actor_id, level.approver_roles):
                actionable.append(instance)

        return actionable[offset:offset + limit]

    def pending_approvers(self, instance_id: UUID) -> frozenset[PrincipalId]:
        """Principals who may still act on the current level (empty once terminal)."""
        instance = self._load(instance_id)
        definition = self._definitions.find_by_id(instance.definition_id)
        instance, _ = self._settle_levels(instance, definition)
        if not instance.is_pending:
            return frozenset()
        level = definition.level_config(instance.current_level) if definition else None
        if level is None:
            return frozenset()
        acted = {entry.actor_id for entry in instance.entries_at_level(level.number)}
        return self._roles.resolve_approvers(level.approver_roles) - acted

    def recent_completions(
        self, days: int | None = None, limit: int | None = None,
    ) -> Sequence[WorkflowInstance]:
        """Approved or rejected instances completed within the last ``days``."""
        window = days if days is not None else self._recent_days
        since: datetime = self._clock.now() - timedelta(days=window)
        return self._instances.list_completed_since(
            since, limit if limit is not None else self._page_size,
        )

    def statistics(
        self,
        document_type: DocumentType | str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ):
        return self._instances.statistics(
            DocumentType.parse(document_type) if document_type is not None else None,
            start,
            end,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, instance_id: UUID) -> WorkflowInstance:
        instance = self._instances.find_by_id(instance_id)
        if instance is None:
            raise InstanceNotFoundError(str(instance_id))
        return instance

    def _settle_levels(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition | None = None,
    ) -> tuple[WorkflowInstance, tuple[int, ...]]:
        """
        Complete all-mode levels already covered by the current approver set.

        An all-mode level stays open while any resolved approver is missing.
        If that approver is later removed from the role directory, the
        recorded approvals may already cover everyone left.  Returns the
        advanced instance (unsaved) and the level numbers completed here.
        """
        if definition is None:
            definition = self._definitions.find_by_id(instance.definition_id)
        settled: list[int] = []
        while definition is not None and instance.is_pending:
            level = definition.level_config(instance.current_level)
            if level is None or level.approval_mode != ApprovalMode.ALL:
                break
            resolved = self._roles.resolve_approvers(level.approver_roles)
            if not level_satisfied(instance, level, resolved):
                break
            settled.append(level.number)
            instance = complete_level(instance, level, self._clock.now())
        return instance, tuple(settled)

    def _current_level_config(self, instance: WorkflowInstance) -> LevelDefinition:
        definition = self._definitions.find_by_id(instance.definition_id)
        level = definition.level_config(instance.current_level) if definition else None
        if level is None:
            raise InvalidLevelError(str(instance.instance_id), instance.current_level)
        return level

    def _emit(
        self,
        action: AuditAction,
        instance: WorkflowInstance,
        actor_id: str,
        **metadata: Any,
    ) -> None:
        record = AuditRecord(
            actor_id=actor_id,
            action=action.value,
            entity_id=instance.instance_id,
            metadata=metadata,
        )
        try:
            self._audit.record(record)
        except Exception:
            logger.error(
                "audit_emission_failed",
                extra={"action": action.value, "instance_id": str(instance.instance_id)},
                exc_info=True,
            )
