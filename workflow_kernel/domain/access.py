"""
workflow_kernel.domain.access -- Access decisions for workflow operations.

Responsibility:
    Map (operation, workflow id, actor, ownership) to allow/deny.  The
    actual capability lookups are delegated to an injected
    PermissionProvider; this module only encodes the rule order.

Architecture position:
    Kernel > Domain.  No I/O of its own: every fact about the actor comes
    from the PermissionProvider and the caller-supplied ``is_owner`` flag.
    There is no ambient "current user".

Invariants:
    - ``view_state_label`` is always allowed and ``delete`` always denied;
      transitions are never hard-deleted, not even by a super-user.
    - Rules run in order and the first match wins: super-user, "any"
      capability, "own" capability with ``is_owner``, deny.
    - A revert that passes the rules is still denied when the transition
      has no state change, when the state it would restore is inactive, or
      when any veto hook vetoes it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Iterable
from uuid import UUID

if TYPE_CHECKING:
    from workflow_kernel.domain.protocols import PermissionProvider, RevertVetoHook
    from workflow_kernel.domain.transition import Transition
    from workflow_kernel.domain.workflow import WorkflowDefinition


class Operation(str, Enum):
    VIEW = "view"
    VIEW_HISTORY = "view_history"
    EDIT_COMMENT = "edit_comment"
    REVERT = "revert"
    SCHEDULE_CREATE = "schedule_create"
    DELETE = "delete"
    VIEW_STATE_LABEL = "view_state_label"
    FORCE = "force"


class Scope(str, Enum):
    ANY = "any"
    OWN = "own"


@dataclass(frozen=True)
class Actor:
    """Who is acting.  Roles feed the configured transition graph."""

    actor_id: UUID
    roles: frozenset[str] = frozenset()


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str = ""

    @classmethod
    def allow(cls, reason: str = "") -> AccessDecision:
        return cls(allowed=True, reason=reason)

    @classmethod
    def deny(cls, reason: str) -> AccessDecision:
        return cls(allowed=False, reason=reason)

    def __bool__(self) -> bool:
        return self.allowed


class AccessControl:
    """Rule evaluation over an injected PermissionProvider.

    Contract:
        ``decide`` and ``decide_revert`` have no side effects; callers
        enforce the result.
    """

    def __init__(
        self,
        permissions: PermissionProvider,
        veto_hooks: Iterable[RevertVetoHook] = (),
    ):
        self._permissions = permissions
        self._veto_hooks = tuple(veto_hooks)

    @property
    def permissions(self) -> PermissionProvider:
        return self._permissions

    def is_super_user(self, actor: Actor) -> bool:
        return self._permissions.is_super_user(actor)

    def decide(
        self,
        operation: Operation,
        workflow_id: str,
        actor: Actor,
        is_owner: bool = False,
    ) -> AccessDecision:
        if operation == Operation.VIEW_STATE_LABEL:
            return AccessDecision.allow("state labels are public")
        if operation == Operation.DELETE:
            return AccessDecision.deny("transitions are never deleted")

        if self._permissions.is_super_user(actor):
            return AccessDecision.allow("super-user")
        if self._permissions.has_capability(actor, operation, workflow_id, Scope.ANY):
            return AccessDecision.allow(f"{operation.value} any")
        if is_owner and self._permissions.has_capability(
            actor, operation, workflow_id, Scope.OWN
        ):
            return AccessDecision.allow(f"{operation.value} own")
        return AccessDecision.deny(f"missing {operation.value} capability")

    def decide_revert(
        self,
        transition: Transition,
        actor: Actor,
        is_owner: bool,
        definition: WorkflowDefinition | None = None,
    ) -> AccessDecision:
        """Revert decision for one executed transition.

        A veto downgrades an allow with reason ``"vetoed"``.
        """
        if not transition.has_state_change:
            return AccessDecision.deny("transition has no state change")
        if definition is not None and not definition.is_active_state(
            transition.from_state_id
        ):
            return AccessDecision.deny("state to restore is inactive")

        decision = self.decide(Operation.REVERT, transition.workflow_id, actor, is_owner)
        if not decision:
            return decision

        for hook in self._veto_hooks:
            if hook.veto_revert(transition, actor):
                return AccessDecision.deny("vetoed")
        return decision
