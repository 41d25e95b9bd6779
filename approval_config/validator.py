"""
Configuration Validator (``approval_config.validator``).

Responsibility
--------------
Validates a ``WorkflowConfigurationSet`` before it is frozen into a
``WorkflowConfigPack``, so that a bad fragment is reported at load time
rather than on the first document submitted.

Invariants enforced
-------------------
* Settings are usable: known routing strategy, positive page size and
  completion window.
* Every workflow definition passes ``validate_definition``.
* Definition names are unique per document type, and at most one
  active default exists per document type.
* Role coverage -- every approver role referenced by a level should have
  at least one enabled principal (warning).

Failure modes
-------------
* Validation errors (``ConfigValidationResult.errors``)  -> the set MUST
  NOT be used.
* Validation warnings  -> the set may be used but should be reviewed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from approval_config.schema import WorkflowConfigurationSet
from approval_engines.router import ROUTING_STRATEGIES
from approval_kernel.domain.workflow import validate_definition


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` is ``True`` only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: WorkflowConfigurationSet) -> ConfigValidationResult:
    """Validate a configuration set, collecting every problem."""
    result = ConfigValidationResult()

    _validate_settings(config, result)
    _validate_definitions(config, result)
    _validate_definition_uniqueness(config, result)
    _validate_role_coverage(config, result)

    return result


def _validate_settings(
    config: WorkflowConfigurationSet, result: ConfigValidationResult
) -> None:
    settings = config.settings
    if settings.routing_strategy not in ROUTING_STRATEGIES:
        result.add_error(
            f"Unknown routing_strategy '{settings.routing_strategy}' "
            f"(expected one of {sorted(ROUTING_STRATEGIES)})"
        )
    if settings.default_page_size < 1:
        result.add_error("default_page_size must be positive")
    if settings.recent_completion_days < 1:
        result.add_error("recent_completion_days must be positive")


def _validate_definitions(
    config: WorkflowConfigurationSet, result: ConfigValidationResult
) -> None:
    for definition in config.definitions:
        for err in validate_definition(definition):
            result.add_error(
                f"Workflow '{definition.name}' ({definition.document_type.value}): {err}"
            )


def _validate_definition_uniqueness(
    config: WorkflowConfigurationSet, result: ConfigValidationResult
) -> None:
    names: set[tuple[str, str]] = set()
    defaults: dict[str, str] = {}
    for definition in config.definitions:
        doc_type = definition.document_type.value
        key = (doc_type, definition.name)
        if key in names:
            result.add_error(
                f"Duplicate workflow: '{definition.name}' appears more than once "
                f"for {doc_type}"
            )
        names.add(key)

        if definition.is_default and definition.is_selectable:
            if doc_type in defaults:
                result.add_error(
                    f"Multiple default workflows for {doc_type}: "
                    f"'{defaults[doc_type]}' and '{definition.name}'"
                )
            else:
                defaults[doc_type] = definition.name


def _validate_role_coverage(
    config: WorkflowConfigurationSet, result: ConfigValidationResult
) -> None:
    enabled = {
        binding.role
        for binding in config.role_bindings
        if any(p not in config.disabled_principals for p in binding.principals)
    }
    for definition in config.definitions:
        for level in definition.levels:
            for role in sorted(level.approver_roles - enabled):
                result.add_warning(
                    f"Workflow '{definition.name}' level {level.number}: "
                    f"role '{role}' has no enabled principals"
                )
