"""
Workflow configuration schema.

Defines the human-authored, reviewable source artifact for approval
workflow configuration.  YAML fragments are parsed into these types by
the loader, checked by the validator, and frozen into a
``WorkflowConfigPack`` by ``get_active_config()``.

Key distinction:
  WorkflowConfigurationSet = source artifact (human-authored, versioned)
  WorkflowConfigPack       = runtime artifact (validated, frozen)
"""

from __future__ import annotations

from dataclasses import dataclass, field

from approval_kernel.domain.workflow import DocumentType, WorkflowDefinition

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowSettings:
    """Engine-wide knobs read from ``settings.yaml``."""

    routing_strategy: str = "union"
    default_page_size: int = 50
    recent_completion_days: int = 7


# ---------------------------------------------------------------------------
# Role bindings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoleBinding:
    """Principals that hold a role."""

    role: str
    principals: tuple[str, ...] = ()
    description: str = ""


# ---------------------------------------------------------------------------
# Configuration set
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowConfigurationSet:
    """Everything one ``sets/<name>/`` directory declares."""

    set_name: str
    settings: WorkflowSettings = field(default_factory=WorkflowSettings)
    role_bindings: tuple[RoleBinding, ...] = ()
    disabled_principals: frozenset[str] = frozenset()
    definitions: tuple[WorkflowDefinition, ...] = ()
    checksum: str = ""


@dataclass(frozen=True)
class WorkflowConfigPack:
    """The validated runtime configuration artifact.

    Contract:
        Only ``get_active_config()`` produces packs.  The checksum is the
        SHA-256 of the canonical source fragments, so identical YAML
        always yields an identical checksum.
    """

    set_name: str
    settings: WorkflowSettings
    role_bindings: tuple[RoleBinding, ...]
    disabled_principals: frozenset[str]
    definitions: tuple[WorkflowDefinition, ...]
    checksum: str

    def principals_for(self, role: str) -> tuple[str, ...]:
        for binding in self.role_bindings:
            if binding.role == role:
                return binding.principals
        return ()

    def definitions_for(self, document_type: DocumentType) -> tuple[WorkflowDefinition, ...]:
        return tuple(d for d in self.definitions if d.document_type == document_type)
