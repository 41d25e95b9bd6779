"""
Module: approval_kernel.models.workflow_definition
Responsibility: ORM persistence for workflow definitions, their levels and
    their routing rules.
Architecture position: Kernel > Models.  May import from db/base.py only
    (domain types are imported lazily for DTO conversion).

Invariants enforced:
    - Level numbers are unique per definition (UNIQUE(definition_id, level_number)).
    - At most one active, default, non-removed definition per document type
      (partial unique index; DefinitionService checks first and raises
      DuplicateDefaultDefinitionError, the index is the storage backstop).
    - Definitions are never hard-deleted: removal sets removed=True.

Failure modes:
    - IntegrityError on a duplicate level number or a second default.

Audit relevance:
    Definition writes are audited (definition_created/updated/removed) by
    DefinitionService.  Instances keep their own frozen required_levels,
    so definition edits never rewrite history.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import (
        LevelDefinition,
        RoutingRule,
        WorkflowDefinition,
    )


class WorkflowDefinitionModel(Base):
    """Persistent workflow definition.

    Contract:
        ``removed`` and ``is_active`` are the stored lifecycle flags; the
        domain derives draft/active/retired from them.
    """

    __tablename__ = "workflow_definitions"

    __table_args__ = (
        CheckConstraint(
            "document_type IN ('supplier', 'material_quotation', "
            "'purchase_order', 'pre_payment')",
            name="ck_workflow_definitions_document_type",
        ),
        Index(
            "ix_workflow_definitions_type_active",
            "document_type", "is_active", "removed",
        ),
        Index(
            "ix_workflow_definitions_default_unique",
            "document_type",
            unique=True,
            postgresql_where=text("is_default AND is_active AND NOT removed"),
            sqlite_where=text("is_default = 1 AND is_active = 1 AND removed = 0"),
        ),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    document_type: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    removed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    allow_recall: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    levels: Mapped[list["WorkflowLevelModel"]] = relationship(
        "WorkflowLevelModel",
        back_populates="definition",
        cascade="all, delete-orphan",
        order_by="WorkflowLevelModel.level_number",
        lazy="selectin",
    )

    routing_rules: Mapped[list["WorkflowRoutingRuleModel"]] = relationship(
        "WorkflowRoutingRuleModel",
        back_populates="definition",
        cascade="all, delete-orphan",
        order_by="WorkflowRoutingRuleModel.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowDefinition {self.id} {self.document_type}/{self.name} "
            f"active={self.is_active} removed={self.removed}>"
        )

    def to_dto(self) -> WorkflowDefinition:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import DocumentType
        from approval_kernel.domain.workflow import WorkflowDefinition as DefinitionDTO

        return DefinitionDTO(
            definition_id=self.id,
            name=self.name,
            document_type=DocumentType(self.document_type),
            levels=tuple(level.to_dto() for level in self.levels),
            routing_rules=tuple(rule.to_dto() for rule in self.routing_rules),
            is_active=self.is_active,
            is_default=self.is_default,
            removed=self.removed,
            allow_recall=self.allow_recall,
            display_name=self.display_name,
            description=self.description,
            created_by=self.created_by,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_dto(cls, dto: WorkflowDefinition, created_at: datetime) -> WorkflowDefinitionModel:
        """Create ORM model (with child rows) from domain DTO."""
        model = cls(
            id=dto.definition_id,
            name=dto.name,
            display_name=dto.display_name,
            description=dto.description,
            document_type=dto.document_type.value,
            is_active=dto.is_active,
            is_default=dto.is_default,
            removed=dto.removed,
            allow_recall=dto.allow_recall,
            created_by=dto.created_by,
            created_at=dto.created_at or created_at,
            updated_at=dto.updated_at,
        )
        model.levels = [WorkflowLevelModel.from_dto(level) for level in dto.levels]
        model.routing_rules = [
            WorkflowRoutingRuleModel.from_dto(rule, position)
            for position, rule in enumerate(dto.routing_rules)
        ]
        return model


class WorkflowLevelModel(Base):
    """One approval level of a definition."""

    __tablename__ = "workflow_levels"

    __table_args__ = (
        UniqueConstraint(
            "definition_id", "level_number",
            name="uq_workflow_levels_number",
        ),
        CheckConstraint("level_number >= 1", name="ck_workflow_levels_positive"),
        CheckConstraint(
            "approval_mode IN ('any', 'all')",
            name="ck_workflow_levels_mode",
        ),
    )

    definition_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_definitions.id"),
        nullable=False,
    )
    level_number: Mapped[int] = mapped_column(Integer, nullable=False)
    level_name: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    approver_roles: Mapped[list] = mapped_column(JSON, nullable=False)
    approval_mode: Mapped[str] = mapped_column(String(10), default="any", nullable=False)
    is_mandatory: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    definition: Mapped["WorkflowDefinitionModel"] = relationship(
        "WorkflowDefinitionModel",
        back_populates="levels",
    )

    def to_dto(self) -> LevelDefinition:
        from approval_kernel.domain.workflow import ApprovalMode, LevelDefinition

        return LevelDefinition(
            number=self.level_number,
            name=self.level_name,
            approver_roles=frozenset(self.approver_roles or ()),
            approval_mode=ApprovalMode(self.approval_mode),
            mandatory=self.is_mandatory,
        )

    @classmethod
    def from_dto(cls, dto: LevelDefinition) -> WorkflowLevelModel:
        return cls(
            level_number=dto.number,
            level_name=dto.name,
            approver_roles=sorted(dto.approver_roles),
            approval_mode=dto.approval_mode.value,
            is_mandatory=dto.mandatory,
        )


class WorkflowRoutingRuleModel(Base):
    """One routing rule of a definition.

    Conditions are stored as a JSON list of ``{field, operator, value}``
    objects; the first one is the rule's primary condition.
    """

    __tablename__ = "workflow_routing_rules"

    __table_args__ = (
        UniqueConstraint(
            "definition_id", "position",
            name="uq_workflow_routing_rules_position",
        ),
    )

    definition_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_definitions.id"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    conditions: Mapped[list] = mapped_column(JSON, nullable=False)
    target_levels: Mapped[list] = mapped_column(JSON, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)

    definition: Mapped["WorkflowDefinitionModel"] = relationship(
        "WorkflowDefinitionModel",
        back_populates="routing_rules",
    )

    def to_dto(self) -> RoutingRule:
        from approval_kernel.domain.workflow import RoutingRule, RuleCondition

        return RoutingRule(
            conditions=tuple(RuleCondition.from_dict(c) for c in self.conditions),
            target_levels=frozenset(self.target_levels),
            description=self.description,
        )

    @classmethod
    def from_dto(cls, dto: RoutingRule, position: int) -> WorkflowRoutingRuleModel:
        return cls(
            position=position,
            conditions=[c.to_dict() for c in dto.conditions],
            target_levels=sorted(dto.target_levels),
            description=dto.description,
        )
