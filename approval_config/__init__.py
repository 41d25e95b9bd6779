"""
approval_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a ``WorkflowConfigPack``: the
    routing strategy and paging settings, the role bindings used by the
    static role directory, and the workflow definitions to install.

Architecture position:
    Configuration -- YAML-driven, validated at load time.  Sits above
    ``approval_kernel`` and ``approval_engines``; the kernel never imports
    from this package.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Load-time validation: a set with any validation error is refused
      and every error is reported at once.
    - Deterministic checksum: the same YAML fragments always produce the
      same ``WorkflowConfigPack.checksum``.

Failure modes:
    - ``FileNotFoundError`` -- no such configuration set.
    - ``ConfigurationError`` -- validation failed; ``errors`` lists all problems.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``workflow_config_loaded`` trace entry carrying the set name, checksum,
    routing strategy, and definition and role-binding counts.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from approval_config.loader import load_configuration_set
from approval_config.schema import (
    RoleBinding,
    WorkflowConfigPack,
    WorkflowConfigurationSet,
    WorkflowSettings,
)
from approval_config.validator import ConfigValidationResult, validate_configuration
from approval_kernel.exceptions import WorkflowKernelError

_logger = logging.getLogger("approval_kernel.config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


class ConfigurationError(WorkflowKernelError):
    """A configuration set failed validation.

    Carries every error found, not only the first.
    """

    code: str = "CONFIGURATION_INVALID"

    def __init__(self, set_name: str, errors: Sequence[str]):
        self.set_name = set_name
        self.errors = tuple(errors)
        super().__init__(
            f"Configuration set '{set_name}' is invalid:\n"
            + "\n".join(f"  - {e}" for e in self.errors)
        )


def get_active_config(
    config_dir: Path | None = None,
    set_name: str = "default",
) -> WorkflowConfigPack:
    """The ONLY public configuration entrypoint.

    Guarantees:
        - The returned pack has passed validation.
        - A ``workflow_config_loaded`` log entry is emitted on every
          successful call.

    Non-goals:
        - Packs are not cached; callers hold the returned pack.

    Args:
        config_dir: Override path to the configuration sets directory.
            Defaults to approval_config/sets/.
        set_name: Name of the set subdirectory.

    Raises:
        FileNotFoundError: If the set does not exist.
        ConfigurationError: If validation fails.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    config_set = load_configuration_set(sets_dir / set_name)

    validation = validate_configuration(config_set)
    if not validation.is_valid:
        raise ConfigurationError(config_set.set_name, validation.errors)
    for warning in validation.warnings:
        _logger.warning("workflow_config_warning", extra={"warning": warning})

    pack = WorkflowConfigPack(
        set_name=config_set.set_name,
        settings=config_set.settings,
        role_bindings=config_set.role_bindings,
        disabled_principals=config_set.disabled_principals,
        definitions=config_set.definitions,
        checksum=config_set.checksum,
    )

    _logger.info(
        "workflow_config_loaded",
        extra={
            "trace_type": "WORKFLOW_CONFIG_TRACE",
            "config_set": pack.set_name,
            "checksum": pack.checksum,
            "routing_strategy": pack.settings.routing_strategy,
            "definition_count": len(pack.definitions),
            "role_binding_count": len(pack.role_bindings),
        },
    )
    return pack


__all__ = [
    "ConfigValidationResult",
    "ConfigurationError",
    "RoleBinding",
    "WorkflowConfigPack",
    "WorkflowConfigurationSet",
    "WorkflowSettings",
    "get_active_config",
]
