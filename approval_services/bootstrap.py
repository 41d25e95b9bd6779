"""
approval_services.bootstrap -- Central DI wiring for the approval workflow.

Responsibility:
    Creates every kernel service exactly once for one session and wires
    them into a ``WorkflowEngine``.  No service constructs its
    collaborators itself; this module is the single place where the
    dependency graph is visible.

Architecture position:
    Services -- top of the service layer.

Invariants enforced:
    - Single-instance lifecycle: one AuditorService, one selector and one
      repository per ``WorkflowServices``.
    - The routing strategy, paging defaults and role bindings all come
      from the same ``WorkflowConfigPack``.

Failure modes:
    - ValueError if the pack names an unknown routing strategy (only
      possible for hand-built packs; ``get_active_config`` validates it).

Usage:
    from approval_services.bootstrap import WorkflowServices

    with session_scope() as session:
        services = WorkflowServices(session, get_active_config())
        services.install_configured_definitions()
        services.engine.initiate("purchase_order", "PO-1", "u.buyer", {"amount": 1000})
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from approval_config import get_active_config
from approval_config.schema import WorkflowConfigPack
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.providers import AuditSink, RoleDirectory
from approval_kernel.domain.workflow import WorkflowDefinition
from approval_kernel.selectors.definition_selector import DefinitionSelector
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.services.definition_service import DefinitionService
from approval_kernel.services.instance_repository import InstanceRepositoryService
from approval_services.role_directory import StaticRoleDirectory
from approval_services.workflow_engine import WorkflowEngine


class WorkflowServices:
    """Per-session container of wired approval services.

    Contract:
        Receives a Session and a WorkflowConfigPack; optional Clock,
        AuditSink and RoleDirectory replace the defaults (hash-chained
        AuditorService and a StaticRoleDirectory built from the pack).

    Non-goals:
        - Does NOT manage transaction boundaries (caller's responsibility).
    """

    def __init__(
        self,
        session: Session,
        config: WorkflowConfigPack,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
        role_directory: RoleDirectory | None = None,
    ) -> None:
        self.session = session
        self.config = config
        self.clock = clock or SystemClock()

        self.auditor = AuditorService(session, self.clock)
        self.audit_sink = audit_sink if audit_sink is not None else self.auditor
        self.role_directory = (
            role_directory if role_directory is not None
            else StaticRoleDirectory.from_config(config)
        )

        self.definitions = DefinitionSelector(session)
        self.instances = InstanceRepositoryService(session)
        self.definition_service = DefinitionService(session, self.clock, self.audit_sink)

        self.engine = WorkflowEngine(
            definitions=self.definitions,
            instances=self.instances,
            role_directory=self.role_directory,
            audit_sink=self.audit_sink,
            clock=self.clock,
            routing_strategy=config.settings.routing_strategy,
            default_page_size=config.settings.default_page_size,
            recent_completion_days=config.settings.recent_completion_days,
        )

    def install_configured_definitions(
        self, actor_id: str = "system",
    ) -> tuple[WorkflowDefinition, ...]:
        """Seed the pack's definitions (idempotent)."""
        return self.definition_service.install_definitions(self.config.definitions, actor_id)


def build_workflow_engine(
    session: Session,
    config: WorkflowConfigPack | None = None,
    clock: Clock | None = None,
    audit_sink: AuditSink | None = None,
) -> WorkflowEngine:
    """Engine wired from ``config`` (the active configuration by default)."""
    return WorkflowServices(
        session, config or get_active_config(), clock, audit_sink,
    ).engine


def install_configured_definitions(
    session: Session,
    config: WorkflowConfigPack | None = None,
    actor_id: str = "system",
    clock: Clock | None = None,
) -> tuple[WorkflowDefinition, ...]:
    """Install the definitions of ``config`` into the session's database."""
    services = WorkflowServices(session, config or get_active_config(), clock)
    return services.install_configured_definitions(actor_id)
