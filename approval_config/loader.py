"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads the YAML fragments of one configuration set and parses them into
typed ``approval_config.schema`` dataclasses and kernel
``WorkflowDefinition`` value objects.  This is internal tooling: the
single public entry point for runtime config is
``approval_config.get_active_config()``.

Layout of a configuration set::

    sets/<name>/
    +-- settings.yaml          # routing strategy, paging, windows
    +-- roles.yaml             # role -> principals, disabled principals
    +-- workflows/
        +-- supplier.yaml      # one definition per file
        +-- ...

Failure modes
-------------
* Missing set directory or ``settings.yaml``  -> ``FileNotFoundError``.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys in a fragment  -> ``KeyError`` propagates.
* Unknown document type or approval mode  -> ``ValueError``.

Audit relevance
---------------
``compute_checksum`` hashes the raw fragments, so an auditor can tie the
running configuration to a version-controlled baseline.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
from uuid import NAMESPACE_URL, UUID, uuid5

import yaml

from approval_config.schema import RoleBinding, WorkflowConfigurationSet, WorkflowSettings
from approval_kernel.domain.workflow import (
    ApprovalMode,
    DocumentType,
    LevelDefinition,
    RoutingRule,
    WorkflowDefinition,
)
from approval_kernel.utils.hashing import hash_payload

_DEFINITION_NAMESPACE = uuid5(NAMESPACE_URL, "approval-workflow-definitions")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def definition_id_for(document_type: DocumentType, name: str) -> UUID:
    """Stable id for a configured definition, so reloads match stored rows."""
    return uuid5(_DEFINITION_NAMESPACE, f"{document_type.value}:{name}")


def parse_settings(data: dict[str, Any]) -> WorkflowSettings:
    defaults = WorkflowSettings()
    return WorkflowSettings(
        routing_strategy=str(data.get("routing_strategy", defaults.routing_strategy)),
        default_page_size=int(data.get("default_page_size", defaults.default_page_size)),
        recent_completion_days=int(
            data.get("recent_completion_days", defaults.recent_completion_days)
        ),
    )


def parse_role_bindings(data: dict[str, Any]) -> tuple[RoleBinding, ...]:
    """Parse ``roles:`` as either ``{role: [principals]}`` or ``{role: {principals, description}}``."""
    bindings: list[RoleBinding] = []
    for role, spec in (data.get("roles") or {}).items():
        if isinstance(spec, dict):
            principals = spec.get("principals") or []
            description = spec.get("description", "")
        else:
            principals = spec or []
            description = ""
        bindings.append(
            RoleBinding(
                role=str(role),
                principals=tuple(str(p) for p in principals),
                description=description,
            )
        )
    return tuple(bindings)


def parse_level(data: dict[str, Any]) -> LevelDefinition:
    """Parse a LevelDefinition; ``number`` and ``approver_roles`` are required."""
    return LevelDefinition(
        number=int(data["number"]),
        name=data.get("name", ""),
        approver_roles=frozenset(str(r) for r in data["approver_roles"]),
        approval_mode=ApprovalMode.parse(data.get("approval_mode")),
        mandatory=bool(data.get("mandatory", True)),
    )


def parse_rule(data: dict[str, Any]) -> RoutingRule:
    """
    Parse a RoutingRule.

    Accepts the single-condition shape (``field``/``operator``/``value``)
    and the condition-map shape (``conditions: {amount: {gte: 1, lt: 5}}``).
    """
    targets = [int(n) for n in data.get("target_levels") or []]
    description = data.get("description", "")
    if "conditions" in data:
        return RoutingRule.from_condition_map(data["conditions"] or {}, targets, description)
    return RoutingRule.simple(
        data["field"], data["operator"], data.get("value"), targets, description,
    )


def parse_workflow(data: dict[str, Any]) -> WorkflowDefinition:
    """Parse one ``workflows/*.yaml`` fragment into a WorkflowDefinition."""
    document_type = DocumentType.parse(data["document_type"])
    name = data["name"]
    return WorkflowDefinition(
        definition_id=definition_id_for(document_type, name),
        name=name,
        document_type=document_type,
        display_name=data.get("display_name"),
        description=data.get("description"),
        levels=tuple(parse_level(level) for level in data.get("levels") or []),
        routing_rules=tuple(parse_rule(rule) for rule in data.get("routing_rules") or []),
        is_active=bool(data.get("is_active", True)),
        is_default=bool(data.get("is_default", False)),
        allow_recall=bool(data.get("allow_recall", True)),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data`` (deterministic)."""
    return hash_payload(data)


def load_configuration_set(fragment_dir: Path) -> WorkflowConfigurationSet:
    """
    Compose the fragments of ``fragment_dir`` into one configuration set.

    Preconditions:
        - ``fragment_dir / "settings.yaml"`` exists.
    Postconditions:
        - Workflows are loaded in file-name order.
        - ``checksum`` covers every fragment that was read.
    Raises:
        FileNotFoundError: if the directory or ``settings.yaml`` is missing.
    """
    if not fragment_dir.is_dir():
        raise FileNotFoundError(f"Configuration set not found: {fragment_dir}")

    settings_path = fragment_dir / "settings.yaml"
    if not settings_path.exists():
        raise FileNotFoundError(f"settings.yaml not found in {fragment_dir}")
    settings_data = load_yaml_file(settings_path)

    roles_path = fragment_dir / "roles.yaml"
    roles_data = load_yaml_file(roles_path) if roles_path.exists() else {}

    workflow_data: list[dict[str, Any]] = []
    workflows_dir = fragment_dir / "workflows"
    if workflows_dir.is_dir():
        for workflow_file in sorted(workflows_dir.glob("*.yaml")):
            workflow_data.append(load_yaml_file(workflow_file))

    checksum = compute_checksum(
        {"settings": settings_data, "roles": roles_data, "workflows": workflow_data}
    )

    return WorkflowConfigurationSet(
        set_name=str(settings_data.get("set_name", fragment_dir.name)),
        settings=parse_settings(settings_data),
        role_bindings=parse_role_bindings(roles_data),
        disabled_principals=frozenset(
            str(p) for p in roles_data.get("disabled_principals") or []
        ),
        definitions=tuple(parse_workflow(data) for data in workflow_data),
        checksum=checksum,
    )
