"""
approval_services.role_directory -- Static role-to-principal directory.

Responsibility:
    ``RoleDirectory`` implementation backed by the role bindings of the
    active ``WorkflowConfigPack``.  Disabled principals never resolve and
    are never members.

Architecture position:
    Services -- adapter between configuration and the engine.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from approval_config.schema import WorkflowConfigPack
from approval_kernel.domain.providers import PrincipalId
from approval_kernel.domain.workflow import RoleRef
from approval_kernel.logging_config import get_logger

logger = get_logger("services.role_directory")


class StaticRoleDirectory:
    """In-memory role bindings with a disabled-principal set."""

    def __init__(
        self,
        bindings: Mapping[RoleRef, Iterable[PrincipalId]] | None = None,
        disabled: Iterable[PrincipalId] = (),
    ) -> None:
        self._bindings: dict[RoleRef, set[PrincipalId]] = {
            role: set(principals) for role, principals in (bindings or {}).items()
        }
        self._disabled: set[PrincipalId] = set(disabled)

    @classmethod
    def from_config(cls, config: WorkflowConfigPack) -> StaticRoleDirectory:
        return cls(
            {binding.role: binding.principals for binding in config.role_bindings},
            disabled=config.disabled_principals,
        )

    # RoleDirectory

    def resolve_approvers(self, role_refs: Iterable[RoleRef]) -> frozenset[PrincipalId]:
        principals: set[PrincipalId] = set()
        for role in role_refs:
            principals |= self._bindings.get(role, set())
        return frozenset(principals - self._disabled)

    def is_member(self, principal_id: PrincipalId, role_refs: Iterable[RoleRef]) -> bool:
        if principal_id in self._disabled:
            return False
        return any(principal_id in self._bindings.get(role, ()) for role in role_refs)

    # Administration

    def assign(self, principal_id: PrincipalId, role: RoleRef) -> None:
        self._bindings.setdefault(role, set()).add(principal_id)

    def revoke(self, principal_id: PrincipalId, role: RoleRef) -> None:
        self._bindings.get(role, set()).discard(principal_id)

    def disable(self, principal_id: PrincipalId) -> None:
        """Exclude a principal from every role until re-enabled."""
        self._disabled.add(principal_id)
        logger.info("principal_disabled", extra={"principal_id": principal_id})

    def enable(self, principal_id: PrincipalId) -> None:
        self._disabled.discard(principal_id)

    def roles_of(self, principal_id: PrincipalId) -> frozenset[RoleRef]:
        if principal_id in self._disabled:
            return frozenset()
        return frozenset(
            role for role, principals in self._bindings.items() if principal_id in principals
        )
