"""
Permission naming and in-memory providers.

Capabilities are named ``<workflow_id>.<operation>.<scope>``, e.g.
``editorial.revert.own``.  ``permission_catalogue`` lists every name the
engine may consult for a workflow so an administration layer can offer
them; granting them is out of scope here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping
from uuid import UUID

from workflow_kernel.domain.access import Actor, Operation, Scope
from workflow_kernel.domain.transition import EntityRef
from workflow_kernel.domain.workflow import WorkflowDefinition

# Operations that AccessControl decides without consulting capabilities.
_UNGATED_OPERATIONS = frozenset({Operation.VIEW_STATE_LABEL, Operation.DELETE})

_TITLES: dict[Operation, str] = {
    Operation.VIEW: "View transitions",
    Operation.VIEW_HISTORY: "Access workflow history",
    Operation.EDIT_COMMENT: "Edit transition comments",
    Operation.REVERT: "Revert transitions",
    Operation.SCHEDULE_CREATE: "Schedule transitions",
    Operation.FORCE: "Force transitions outside the configured graph",
}


def permission_name(operation: Operation, workflow_id: str, scope: Scope) -> str:
    return f"{workflow_id}.{operation.value}.{scope.value}"


@dataclass(frozen=True)
class PermissionInfo:
    name: str
    title: str


def permission_catalogue(definition: WorkflowDefinition) -> tuple[PermissionInfo, ...]:
    """Every capability name consulted for ``definition``."""
    result: list[PermissionInfo] = []
    for operation in Operation:
        if operation in _UNGATED_OPERATIONS:
            continue
        for scope in Scope:
            result.append(PermissionInfo(
                name=permission_name(operation, definition.workflow_id, scope),
                title=(
                    f"{definition.label}: {_TITLES[operation]} "
                    f"({'any' if scope == Scope.ANY else 'own'})"
                ),
            ))
    return tuple(result)


class StaticPermissionProvider:
    """Default PermissionProvider backed by dicts.

    Grants may be attached to roles, to individual actors, or both.
    Can be replaced with a database-backed or directory-backed
    implementation.
    """

    def __init__(
        self,
        role_permissions: Mapping[str, Iterable[str]] | None = None,
        actor_permissions: Mapping[UUID, Iterable[str]] | None = None,
        actor_roles: Mapping[UUID, Iterable[str]] | None = None,
        super_users: Iterable[UUID] = (),
    ) -> None:
        self._role_permissions = {
            role: frozenset(perms) for role, perms in (role_permissions or {}).items()
        }
        self._actor_permissions = {
            actor_id: frozenset(perms)
            for actor_id, perms in (actor_permissions or {}).items()
        }
        self._actor_roles = {
            actor_id: frozenset(roles) for actor_id, roles in (actor_roles or {}).items()
        }
        self._super_users = frozenset(super_users)

    def has_capability(
        self,
        actor: Actor,
        operation: Operation,
        workflow_id: str,
        scope: Scope,
    ) -> bool:
        name = permission_name(operation, workflow_id, scope)
        if name in self._actor_permissions.get(actor.actor_id, frozenset()):
            return True
        roles = actor.roles | self._actor_roles.get(actor.actor_id, frozenset())
        return any(name in self._role_permissions.get(role, frozenset()) for role in roles)

    def is_super_user(self, actor: Actor) -> bool:
        return actor.actor_id in self._super_users

    def resolve_actor(self, actor_id: UUID) -> Actor:
        return Actor(actor_id=actor_id, roles=self._actor_roles.get(actor_id, frozenset()))


class StaticOwnershipResolver:
    """Default OwnershipResolver keyed by (entity_type, entity_id)."""

    def __init__(self, owners: Mapping[tuple[str, str], UUID] | None = None) -> None:
        self._owners: dict[tuple[str, str], UUID] = dict(owners or {})

    def set_owner(self, entity_type: str, entity_id: str, owner_id: UUID) -> None:
        self._owners[(entity_type, entity_id)] = owner_id

    def is_owner(self, actor: Actor, entity_ref: EntityRef) -> bool:
        return self._owners.get((entity_ref.entity_type, entity_ref.entity_id)) == actor.actor_id
