"""
Boundary contracts the engine consumes.

Implemented by the integrating system (per host entity type) and injected
into the services.  Defaults backed by this package live in
``workflow_kernel.domain.permissions`` and
``workflow_kernel.services.entity_state_store``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable
from uuid import UUID

if TYPE_CHECKING:
    from workflow_kernel.domain.access import Actor, Operation, Scope
    from workflow_kernel.domain.transition import (
        EntityRef,
        Transition,
        TransitionNotification,
    )


@runtime_checkable
class EntityAccessor(Protocol):
    """Reads and writes the tracked current-state attribute."""

    def get_current_state_id(self, entity_ref: EntityRef) -> str | None:
        """Stored state, or None when the field has never been set."""
        ...

    def set_current_state_id(
        self,
        entity_ref: EntityRef,
        state_id: str,
        expected_state_id: str | None,
        *,
        workflow_id: str,
    ) -> bool:
        """Compare-and-set.  False when the stored value is not ``expected_state_id``.

        ``expected_state_id=None`` means the field has never been written.
        """
        ...

    def is_new(self, entity_ref: EntityRef) -> bool:
        ...


@runtime_checkable
class PermissionProvider(Protocol):
    def has_capability(
        self,
        actor: Actor,
        operation: Operation,
        workflow_id: str,
        scope: Scope,
    ) -> bool:
        ...

    def is_super_user(self, actor: Actor) -> bool:
        ...

    def resolve_actor(self, actor_id: UUID) -> Actor:
        """Actor with current roles, used to re-validate scheduled transitions."""
        ...


@runtime_checkable
class OwnershipResolver(Protocol):
    def is_owner(self, actor: Actor, entity_ref: EntityRef) -> bool:
        ...


@runtime_checkable
class RevertVetoHook(Protocol):
    def veto_revert(self, transition: Transition, actor: Actor) -> bool:
        """True blocks the revert."""
        ...


@runtime_checkable
class NotificationSink(Protocol):
    def notify(self, notification: TransitionNotification) -> None:
        ...
