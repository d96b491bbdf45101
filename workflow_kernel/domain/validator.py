"""
TransitionValidator -- legality of a requested target state.

Responsibility:
    Computes the legal target states for an actor in a given state, decides
    whether a requested transition is legal (including the force path), and
    answers the two offering questions: must a choice be shown, and may the
    actor schedule.

Architecture position:
    Kernel > Domain.  Pure: depends on WorkflowDefinition and AccessControl
    only.  Used at request time by WorkflowService and again at execution
    time by TransitionExecutor.

Invariants enforced:
    - Inactive target states are legal only through the force path.
    - Unknown target states are never legal, forced or not.
    - ``must_offer_choice`` never blocks programmatic execution; it only
      governs whether callers present a chooser.
"""

from __future__ import annotations

from dataclasses import dataclass

from workflow_kernel.domain.access import AccessControl, Actor, Operation
from workflow_kernel.domain.workflow import WorkflowDefinition

UNREACHABLE_REASON = "target not reachable from current state"
UNKNOWN_TARGET_REASON = "unknown target state"


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.ok


class TransitionValidator:
    """Checks requested transitions against the definition and access rules."""

    def __init__(self, access: AccessControl):
        self._access = access

    @property
    def access(self) -> AccessControl:
        return self._access

    def allowed_targets(
        self,
        definition: WorkflowDefinition,
        current_state_id: str,
        actor: Actor,
        is_owner: bool = False,
    ) -> frozenset[str]:
        return definition.allowed_targets(
            current_state_id,
            actor.roles,
            is_super_user=self._access.is_super_user(actor),
            is_owner=is_owner,
        )

    def validate(
        self,
        definition: WorkflowDefinition,
        current_state_id: str,
        actor: Actor,
        requested_to_state_id: str,
        forced: bool = False,
        is_owner: bool = False,
    ) -> ValidationResult:
        if not definition.has_state(requested_to_state_id):
            return ValidationResult(ok=False, reason=UNKNOWN_TARGET_REASON)

        targets = self.allowed_targets(definition, current_state_id, actor, is_owner)
        if requested_to_state_id in targets:
            return ValidationResult(ok=True)

        if forced and self._access.decide(
            Operation.FORCE, definition.workflow_id, actor, is_owner
        ):
            return ValidationResult(ok=True, reason="forced")

        return ValidationResult(ok=False, reason=UNREACHABLE_REASON)

    def must_offer_choice(
        self,
        definition: WorkflowDefinition,
        current_state_id: str,
        actor: Actor,
        is_owner: bool = False,
    ) -> bool:
        return len(self.allowed_targets(definition, current_state_id, actor, is_owner)) > 1

    def can_schedule(
        self,
        definition: WorkflowDefinition,
        actor: Actor,
        entity_is_new: bool,
        current_state_id: str,
        is_owner: bool = False,
    ) -> bool:
        if not definition.settings.schedule_enabled:
            return False
        if entity_is_new:
            return False
        if not self._access.decide(
            Operation.SCHEDULE_CREATE, definition.workflow_id, actor, is_owner
        ):
            return False
        return self.must_offer_choice(definition, current_state_id, actor, is_owner)
