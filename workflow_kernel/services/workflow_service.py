"""
WorkflowService -- the public entry point for state-tracked entities.

Responsibility:
    Turns caller requests into transitions: executes immediate ones through
    TransitionExecutor, enqueues future ones through SchedulingService, and
    exposes reverts, comment edits, cancellation, history and the options
    a caller may offer an actor.  Also handles deactivating a state and the
    deletion of an entity.

Architecture position:
    Kernel > Services -- imperative shell over the pure domain.  One
    instance per session; the caller owns the transaction boundary.

Invariants enforced:
    - A request is validated against the state the caller saw; execution
      re-checks it against the stored state.
    - Only entities that already exist may have transitions scheduled.
    - A state is only deactivated after every field in it has been moved
      to its replacement, and the registry only sees the deactivation once
      the caller's transaction commits.

Failure modes:
    - WorkflowNotFoundError / UnknownStateError: bad workflow or state id.
    - TransitionRejectedError: target not allowed for the actor.
    - SchedulingNotAllowedError / EntityIsNewError /
      InvalidScheduleTimeError: scheduling preconditions.
    - AccessDeniedError: history, cancellation or deactivation denied.
    - Everything TransitionExecutor and SchedulingService raise.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from workflow_kernel.domain.access import AccessControl, Actor, Operation
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.protocols import NotificationSink, OwnershipResolver
from workflow_kernel.domain.registry import WorkflowRegistry
from workflow_kernel.domain.transition import (
    EntityRef,
    HistoryEntry,
    Transition,
    TransitionOptions,
    TransitionRequest,
)
from workflow_kernel.domain.validator import TransitionValidator
from workflow_kernel.domain.workflow import WorkflowDefinition
from workflow_kernel.exceptions import (
    AccessDeniedError,
    EntityIsNewError,
    InvalidWorkflowDefinitionError,
    SchedulingNotAllowedError,
    TransitionRejectedError,
    UnknownStateError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.services.entity_state_store import SqlEntityStateStore
from workflow_kernel.services.scheduling_service import SchedulingService
from workflow_kernel.services.transition_executor import TransitionExecutor

logger = get_logger("services.workflow")

DEACTIVATED_STATE_COMMENT = "Previous state deleted"
NO_NEXT_STATE_REASON = "no next state available"


class WorkflowService:
    """
    Facade over execution, scheduling and history for one session.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT run due transitions (TransitionScheduler does).
    """

    def __init__(
        self,
        session: Session,
        registry: WorkflowRegistry,
        access: AccessControl,
        ownership: OwnershipResolver | None = None,
        notifier: NotificationSink | None = None,
        clock: Clock | None = None,
        state_store: SqlEntityStateStore | None = None,
    ):
        self._session = session
        self._registry = registry
        self._access = access
        self._ownership = ownership
        self._clock = clock or SystemClock()
        self._store = state_store or SqlEntityStateStore(session, self._clock)
        self._validator = TransitionValidator(access)
        self._scheduling = SchedulingService(session, self._clock)
        self._executor = TransitionExecutor(
            session,
            registry,
            self._store,
            access,
            ownership=ownership,
            notifier=notifier,
            clock=self._clock,
        )

    @property
    def executor(self) -> TransitionExecutor:
        return self._executor

    @property
    def scheduling(self) -> SchedulingService:
        return self._scheduling

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def request_transition(self, request: TransitionRequest) -> Transition:
        """
        Execute or schedule a requested transition.

        A request without a timestamp, or with one not after now, executes
        immediately.  A future timestamp enqueues it.
        """
        definition = self._registry.get(request.workflow_id)
        if not definition.has_state(request.to_state_id):
            raise UnknownStateError(request.workflow_id, request.to_state_id)

        ref = request.entity_ref
        now = self._clock.now()
        timestamp = request.timestamp or now
        from_state_id = request.expected_from_state_id or self._current_or_creation(
            definition, ref,
        )

        transition = Transition.create(
            workflow_id=request.workflow_id,
            entity_ref=ref,
            from_state_id=from_state_id,
            to_state_id=request.to_state_id,
            owner_id=request.actor.actor_id,
            timestamp=timestamp,
            comment=request.comment,
            forced=request.forced,
            scheduled=timestamp > now,
        )

        with LogContext.bind(
            actor_id=str(request.actor.actor_id),
            workflow_id=request.workflow_id,
            entity_ref=str(ref),
        ):
            if transition.scheduled:
                return self._schedule(definition, transition, request.actor)
            self._executor.execute(transition, actor=request.actor)
            return self._scheduling.get(transition.transition_id)

    def apply_given_state(
        self,
        workflow_id: str,
        entity_ref: EntityRef,
        actor: Actor,
        to_state_id: str,
        comment: str = "",
        forced: bool = False,
    ) -> Transition:
        return self.request_transition(TransitionRequest(
            workflow_id=workflow_id,
            entity_ref=entity_ref,
            to_state_id=to_state_id,
            actor=actor,
            comment=comment,
            forced=forced,
        ))

    def advance_to_next_state(
        self,
        workflow_id: str,
        entity_ref: EntityRef,
        actor: Actor,
        comment: str = "",
    ) -> Transition:
        """Move to the first allowed state after the current one in weight order."""
        definition = self._registry.get(workflow_id)
        current = self._current_or_creation(definition, entity_ref)
        targets = self._validator.allowed_targets(
            definition, current, actor, self._is_owner(actor, entity_ref),
        )

        ordered = [s.state_id for s in definition.ordered_states()]
        position = ordered.index(current) if current in ordered else -1
        following = [
            state_id for state_id in ordered[position + 1:]
            if state_id in targets and state_id != current
        ]
        if not following:
            raise TransitionRejectedError(workflow_id, current, current, NO_NEXT_STATE_REASON)

        return self.apply_given_state(
            workflow_id, entity_ref, actor, following[0], comment=comment,
        )

    def revert(self, transition_id: UUID, actor: Actor, comment: str | None = None) -> Transition:
        return self._executor.revert(transition_id, actor, comment)

    def edit_comment(self, transition_id: UUID, actor: Actor, comment: str) -> Transition:
        return self._executor.edit_comment(transition_id, actor, comment)

    def cancel_scheduled(self, transition_id: UUID, actor: Actor) -> Transition:
        """Cancel a pending transition.  Needs schedule access; owner is the scheduler."""
        transition = self._scheduling.get(transition_id)
        decision = self._access.decide(
            Operation.SCHEDULE_CREATE,
            transition.workflow_id,
            actor,
            is_owner=actor.actor_id == transition.owner_id,
        )
        if not decision:
            raise AccessDeniedError(
                Operation.SCHEDULE_CREATE.value,
                transition.workflow_id,
                str(actor.actor_id),
                decision.reason,
            )
        return self._scheduling.cancel(transition_id)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def current_state(self, workflow_id: str, entity_ref: EntityRef) -> str:
        """Stored state of the field, or the creation state when untracked."""
        return self._current_or_creation(self._registry.get(workflow_id), entity_ref)

    def history(
        self,
        workflow_id: str,
        entity_ref: EntityRef,
        actor: Actor,
        limit: int | None = None,
    ) -> list[HistoryEntry]:
        decision = self._access.decide(
            Operation.VIEW_HISTORY,
            workflow_id,
            actor,
            is_owner=self._is_owner(actor, entity_ref),
        )
        if not decision:
            raise AccessDeniedError(
                Operation.VIEW_HISTORY.value, workflow_id, str(actor.actor_id), decision.reason,
            )
        return self._executor.ledger.list_for(entity_ref, limit)

    def options_for(
        self,
        workflow_id: str,
        entity_ref: EntityRef,
        actor: Actor,
    ) -> TransitionOptions:
        """What a form for this field may offer ``actor`` right now."""
        definition = self._registry.get(workflow_id)
        current = self._current_or_creation(definition, entity_ref)
        is_owner = self._is_owner(actor, entity_ref)
        targets = self._validator.allowed_targets(definition, current, actor, is_owner)

        return TransitionOptions(
            current_state_id=current,
            targets=tuple(s.state_id for s in definition.ordered_states() if s.state_id in targets),
            must_offer_choice=len(targets) > 1,
            can_schedule=self._validator.can_schedule(
                definition,
                actor,
                self._store.is_new(entity_ref),
                current,
                is_owner,
            ),
        )

    # -------------------------------------------------------------------------
    # Lifecycle of entities and states
    # -------------------------------------------------------------------------

    def register_entity(
        self,
        workflow_id: str,
        entity_ref: EntityRef,
        state_id: str | None = None,
    ) -> str:
        """Start tracking a newly saved entity.  Returns its state."""
        definition = self._registry.get(workflow_id)
        state_id = state_id or definition.creation_state_id
        if not definition.has_state(state_id):
            raise UnknownStateError(workflow_id, state_id)
        if self._store.register(entity_ref, workflow_id, state_id):
            logger.info(
                "entity_registered",
                extra={"entity_ref": str(entity_ref), "state_id": state_id},
            )
        return self._current_or_creation(definition, entity_ref)

    def entity_deleted(self, entity_type: str, entity_id: str) -> list[UUID]:
        """Cancel pending transitions of a deleted entity and stop tracking it."""
        cancelled = self._scheduling.cancel_all_for_entity(entity_type, entity_id)
        forgotten = self._store.forget(entity_type, entity_id)
        logger.info(
            "entity_deleted",
            extra={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "cancelled": len(cancelled),
                "fields_forgotten": forgotten,
            },
        )
        return cancelled

    def deactivate_state(
        self,
        workflow_id: str,
        state_id: str,
        replacement_state_id: str,
        actor: Actor,
    ) -> list[Transition]:
        """
        Move every field in ``state_id`` to ``replacement_state_id`` and
        register the definition with ``state_id`` inactive.

        Only super-users may deactivate states.  Returns the forced
        transitions that re-parented the fields.

        The registry keeps the old definition until the caller commits the
        session; a rollback leaves ``state_id`` active.
        """
        definition = self._registry.get(workflow_id)
        for candidate in (state_id, replacement_state_id):
            if not definition.has_state(candidate):
                raise UnknownStateError(workflow_id, candidate)

        errors = []
        if state_id == replacement_state_id:
            errors.append(f"replacement for state '{state_id}' must be a different state")
        if definition.get_state(state_id).is_creation_state:
            errors.append(f"creation state '{state_id}' cannot be deactivated")
        if not definition.is_active_state(replacement_state_id):
            errors.append(f"replacement state '{replacement_state_id}' is inactive")
        if errors:
            raise InvalidWorkflowDefinitionError(workflow_id, errors)

        if not self._access.is_super_user(actor):
            raise AccessDeniedError(
                "deactivate_state", workflow_id, str(actor.actor_id), "super-user required",
            )

        moved: list[Transition] = []
        for ref in self._store.refs_in_state(workflow_id, state_id):
            transition = Transition.create(
                workflow_id=workflow_id,
                entity_ref=ref,
                from_state_id=state_id,
                to_state_id=replacement_state_id,
                owner_id=actor.actor_id,
                timestamp=self._clock.now(),
                comment=DEACTIVATED_STATE_COMMENT,
                forced=True,
            )
            self._executor.execute(transition, actor=actor)
            moved.append(self._scheduling.get(transition.transition_id))

        self._register_on_commit(definition.deactivate(state_id))
        logger.info(
            "workflow_state_deactivated",
            extra={
                "workflow_id": workflow_id,
                "state_id": state_id,
                "replacement_state_id": replacement_state_id,
                "fields_moved": len(moved),
            },
        )
        return moved

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _register_on_commit(self, definition: WorkflowDefinition) -> None:
        """Register ``definition`` once the current root transaction commits."""
        root = self._session.get_transaction()
        pending = {"definition": definition}

        def _after_commit(session: Session) -> None:
            # Savepoint commits also dispatch after_commit.
            if session.in_nested_transaction() or "definition" not in pending:
                return
            self._registry.register(pending.pop("definition"))
            logger.info(
                "workflow_definition_registered",
                extra={"workflow_id": definition.workflow_id},
            )

        def _after_transaction_end(session: Session, transaction: SessionTransaction) -> None:
            if transaction is root and pending.pop("definition", None) is not None:
                logger.info(
                    "workflow_definition_discarded",
                    extra={"workflow_id": definition.workflow_id},
                )

        event.listen(self._session, "after_commit", _after_commit)
        event.listen(self._session, "after_transaction_end", _after_transaction_end)

    def _schedule(
        self,
        definition: WorkflowDefinition,
        transition: Transition,
        actor: Actor,
    ) -> Transition:
        ref = transition.entity_ref
        if not definition.settings.schedule_enabled:
            raise SchedulingNotAllowedError(
                definition.workflow_id, str(actor.actor_id), "scheduling is disabled",
            )
        if self._store.is_new(ref):
            raise EntityIsNewError(ref.entity_type, ref.entity_id)

        is_owner = self._is_owner(actor, ref)
        result = self._validator.validate(
            definition,
            transition.from_state_id,
            actor,
            transition.to_state_id,
            forced=transition.forced,
            is_owner=is_owner,
        )
        if not result:
            raise TransitionRejectedError(
                definition.workflow_id,
                transition.from_state_id,
                transition.to_state_id,
                result.reason,
            )

        if not self._validator.can_schedule(
            definition, actor, False, transition.from_state_id, is_owner,
        ):
            raise SchedulingNotAllowedError(
                definition.workflow_id,
                str(actor.actor_id),
                "actor may not schedule transitions from this state",
            )
        return self._scheduling.enqueue(transition)

    def _current_or_creation(self, definition: WorkflowDefinition, entity_ref: EntityRef) -> str:
        stored = self._store.get_current_state_id(entity_ref)
        return stored if stored is not None else definition.creation_state_id

    def _is_owner(self, actor: Actor, entity_ref: EntityRef) -> bool:
        if self._ownership is None:
            return False
        return self._ownership.is_owner(actor, entity_ref)
