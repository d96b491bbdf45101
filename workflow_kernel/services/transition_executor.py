"""
TransitionExecutor -- applies transitions to tracked fields.

Responsibility:
    Re-validates a transition against the entity's *current* stored state,
    writes the new state with a compare-and-set, marks the transition
    executed, appends the history entry and emits a notification.  Also
    builds and applies reverts and edits comments of executed transitions.

Architecture position:
    Kernel > Services -- imperative shell.  Consumes TransitionValidator,
    AccessControl, an EntityAccessor, HistoryLedger and a NotificationSink.
    Called by WorkflowService for immediate transitions and by
    TransitionScheduler for due scheduled ones.

Invariants enforced:
    - Staleness: a non-forced transition whose from-state no longer matches
      the stored state is rejected and left unexecuted; it is never retried
      here.  A forced transition proceeds from the observed state.
    - Serialization: the state write is a compare-and-set keyed by the
      observed state, so of two racing transitions only one succeeds.
    - Ordering: a transition older than the newest history entry of its
      field is rejected; history is never rewritten.
    - A scheduled transition is recorded at the execution instant, which is
      never earlier than its scheduled timestamp.
    - Atomicity: all writes happen in the caller's transaction (flush only).

Failure modes:
    - StalenessConflictError: stale from-state or lost compare-and-set.
    - OutOfOrderTransitionError: transition dated before the latest history
      entry of its field.
    - TransitionRejectedError: target no longer legal for the owner.
    - AccessDeniedError / VetoedRevertError: revert or comment edit denied.
    - NotMostRecentTransitionError: revert of an older entry.
    - TransitionNotFoundError / TransitionNotExecutedError /
      TransitionAlreadyExecutedError / TransitionNotPendingError.

Audit relevance:
    With ``log_transitions`` enabled on the workflow every executed
    transition is logged at INFO with its full state change.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from workflow_kernel.domain.access import AccessControl, Actor, Operation
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.protocols import (
    EntityAccessor,
    NotificationSink,
    OwnershipResolver,
)
from workflow_kernel.domain.registry import WorkflowRegistry
from workflow_kernel.domain.transition import (
    HistoryEntry,
    Transition,
    TransitionNotification,
    TransitionPhase,
    TransitionStatus,
    can_change_status,
)
from workflow_kernel.domain.validator import TransitionValidator
from workflow_kernel.exceptions import (
    AccessDeniedError,
    NotMostRecentTransitionError,
    OutOfOrderTransitionError,
    StalenessConflictError,
    TransitionAlreadyExecutedError,
    TransitionNotExecutedError,
    TransitionNotFoundError,
    TransitionNotPendingError,
    TransitionRejectedError,
    VetoedRevertError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.models.transition import TransitionModel
from workflow_kernel.services.history_ledger import HistoryLedger
from workflow_kernel.services.notifications import NullNotificationSink
from workflow_kernel.services.sequence_service import SequenceService

logger = get_logger("services.transition_executor")

REVERT_COMMENT = "reverted"


def scheduled_comment(owner_id: UUID) -> str:
    return f"Scheduled by user {owner_id}."


class TransitionExecutor:
    """
    Applies transitions within the caller's transaction.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT decide whether a request is immediate or scheduled;
          that is WorkflowService's job.
    """

    def __init__(
        self,
        session: Session,
        registry: WorkflowRegistry,
        accessor: EntityAccessor,
        access: AccessControl,
        ownership: OwnershipResolver | None = None,
        notifier: NotificationSink | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._registry = registry
        self._accessor = accessor
        self._access = access
        self._validator = TransitionValidator(access)
        self._ownership = ownership
        self._notifier = notifier or NullNotificationSink()
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)
        self._ledger = HistoryLedger(session, self._sequences)

    @property
    def ledger(self) -> HistoryLedger:
        return self._ledger

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def execute(
        self,
        transition: Transition,
        actor: Actor | None = None,
        as_of: datetime | None = None,
    ) -> HistoryEntry:
        """
        Re-validate and apply ``transition``.

        Validation runs as ``actor`` when given (the requesting actor of an
        immediate transition), otherwise as the owner resolved through the
        permission provider (a scheduled transition at tick time).

        ``as_of`` is the execution instant; a scheduler tick passes its own
        ``now`` so the recorded times follow the tick, not the wall clock.
        Defaults to the injected clock.

        Postconditions on success:
            - Stored state of the field is ``transition.to_state_id``.
            - Transition row is ``executed`` (inserted for immediate
              transitions, updated for scheduled ones).
            - Exactly one new history entry exists for the transition.
        """
        with LogContext.bind(
            transition_id=str(transition.transition_id),
            workflow_id=transition.workflow_id,
            entity_ref=str(transition.entity_ref),
        ):
            _, entry = self._apply(transition, validate=True, actor=actor, as_of=as_of)
            return entry

    def revert(
        self,
        transition_id: UUID,
        actor: Actor,
        comment: str | None = None,
    ) -> Transition:
        """
        Revert the most recent executed transition of a field.

        Builds a forced transition to -> from, owned by ``actor``, and
        applies it immediately.  Returns the new transition.
        """
        original = self._load_model(transition_id, for_update=True).to_dto()
        if not original.executed:
            raise TransitionNotExecutedError(str(transition_id), original.status.value)

        definition = self._registry.get(original.workflow_id)

        latest = self._ledger.latest_for(original.entity_ref)
        if latest is None or latest.transition_id != original.transition_id:
            raise NotMostRecentTransitionError(
                str(transition_id),
                str(latest.transition_id) if latest is not None else None,
            )

        is_owner = actor.actor_id == original.owner_id
        decision = self._access.decide_revert(original, actor, is_owner, definition)
        if not decision:
            logger.warning(
                "revert_denied",
                extra={
                    "transition_id": str(transition_id),
                    "actor_id": str(actor.actor_id),
                    "reason": decision.reason,
                },
            )
            if decision.reason == "vetoed":
                raise VetoedRevertError(
                    str(transition_id), original.workflow_id, str(actor.actor_id),
                )
            raise AccessDeniedError(
                Operation.REVERT.value,
                original.workflow_id,
                str(actor.actor_id),
                decision.reason,
            )

        reverting = Transition.create(
            workflow_id=original.workflow_id,
            entity_ref=original.entity_ref,
            from_state_id=original.to_state_id,
            to_state_id=original.from_state_id,
            owner_id=actor.actor_id,
            timestamp=self._clock.now(),
            comment=comment or REVERT_COMMENT,
            forced=True,
            reverts_transition_id=original.transition_id,
        )

        with LogContext.bind(
            transition_id=str(reverting.transition_id),
            workflow_id=reverting.workflow_id,
            entity_ref=str(reverting.entity_ref),
            actor_id=str(actor.actor_id),
        ):
            executed, _ = self._apply(reverting, validate=False)

        logger.info(
            "transition_reverted",
            extra={
                "reverted_transition_id": str(original.transition_id),
                "transition_id": str(executed.transition_id),
                "entity_ref": str(executed.entity_ref),
                "restored_state_id": executed.to_state_id,
            },
        )
        return executed

    def edit_comment(self, transition_id: UUID, actor: Actor, comment: str) -> Transition:
        """Change only the comment of an executed transition and its history entry."""
        model = self._load_model(transition_id, for_update=True)
        if model.status != TransitionStatus.EXECUTED.value:
            raise TransitionNotExecutedError(str(transition_id), model.status)

        decision = self._access.decide(
            Operation.EDIT_COMMENT,
            model.workflow_id,
            actor,
            is_owner=actor.actor_id == model.owner_id,
        )
        if not decision:
            raise AccessDeniedError(
                Operation.EDIT_COMMENT.value,
                model.workflow_id,
                str(actor.actor_id),
                decision.reason,
            )

        model.comment = comment
        self._session.flush()
        self._ledger.update_comment(transition_id, comment)

        logger.info(
            "transition_comment_edited",
            extra={"transition_id": str(transition_id), "actor_id": str(actor.actor_id)},
        )
        return model.to_dto()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _load_model(self, transition_id: UUID, for_update: bool = False) -> TransitionModel:
        stmt = select(TransitionModel).where(TransitionModel.transition_id == transition_id)
        if for_update:
            stmt = stmt.with_for_update()
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise TransitionNotFoundError(str(transition_id))
        return model

    def _find_model(self, transition_id: UUID) -> TransitionModel | None:
        return self._session.execute(
            select(TransitionModel).where(TransitionModel.transition_id == transition_id)
        ).scalar_one_or_none()

    def _apply(
        self,
        transition: Transition,
        validate: bool,
        actor: Actor | None = None,
        as_of: datetime | None = None,
    ) -> tuple[Transition, HistoryEntry]:
        definition = self._registry.get(transition.workflow_id)
        ref = transition.entity_ref

        model = self._find_model(transition.transition_id)
        if model is not None:
            if model.status == TransitionStatus.EXECUTED.value:
                raise TransitionAlreadyExecutedError(str(transition.transition_id))
            if not can_change_status(TransitionStatus(model.status), TransitionStatus.EXECUTED):
                raise TransitionNotPendingError(str(transition.transition_id), model.status)

        stored = self._accessor.get_current_state_id(ref)
        observed = stored if stored is not None else definition.creation_state_id

        if observed != transition.from_state_id:
            if not transition.forced:
                logger.warning(
                    "transition_stale",
                    extra={
                        "transition_id": str(transition.transition_id),
                        "expected_state_id": transition.from_state_id,
                        "actual_state_id": observed,
                    },
                )
                raise StalenessConflictError(
                    ref.entity_type,
                    ref.entity_id,
                    ref.field_name,
                    expected_state_id=transition.from_state_id,
                    actual_state_id=observed,
                )
            logger.info(
                "stale_transition_forced",
                extra={
                    "transition_id": str(transition.transition_id),
                    "expected_state_id": transition.from_state_id,
                    "actual_state_id": observed,
                },
            )
            transition = replace(transition, from_state_id=observed)

        if validate:
            owner = actor or self._access.permissions.resolve_actor(transition.owner_id)
            is_owner = (
                self._ownership.is_owner(owner, ref) if self._ownership is not None else False
            )
            result = self._validator.validate(
                definition,
                observed,
                owner,
                transition.to_state_id,
                forced=transition.forced,
                is_owner=is_owner,
            )
            if not result:
                logger.warning(
                    "transition_rejected",
                    extra={
                        "transition_id": str(transition.transition_id),
                        "from_state_id": observed,
                        "to_state_id": transition.to_state_id,
                        "reason": result.reason,
                    },
                )
                raise TransitionRejectedError(
                    transition.workflow_id, observed, transition.to_state_id, result.reason,
                )

        now = as_of or self._clock.now()
        recorded_at = self._recorded_at(transition, now)

        latest = self._ledger.latest_timestamp(ref)
        if latest is not None and recorded_at < latest:
            raise OutOfOrderTransitionError(
                ref.entity_type,
                ref.entity_id,
                ref.field_name,
                state_id=observed,
                transition_timestamp=recorded_at.isoformat(),
                latest_timestamp=latest.isoformat(),
            )

        if not self._accessor.set_current_state_id(
            ref, transition.to_state_id, stored, workflow_id=transition.workflow_id,
        ):
            actual = self._accessor.get_current_state_id(ref)
            logger.warning(
                "transition_lost_race",
                extra={
                    "transition_id": str(transition.transition_id),
                    "expected_state_id": observed,
                    "actual_state_id": actual,
                },
            )
            raise StalenessConflictError(
                ref.entity_type,
                ref.entity_id,
                ref.field_name,
                expected_state_id=observed,
                actual_state_id=actual,
                reason="concurrent transition changed the state first",
            )

        comment = transition.comment
        if transition.scheduled and not comment:
            comment = scheduled_comment(transition.owner_id)

        executed = replace(
            transition,
            comment=comment,
            status=TransitionStatus.EXECUTED,
            executed_at=now,
        )

        if model is None:
            model = TransitionModel.from_dto(
                executed,
                sequence=self._sequences.next_value(SequenceService.TRANSITION),
                created_at=transition.created_at or now,
            )
            self._session.add(model)
        else:
            model.from_state_id = executed.from_state_id
            model.comment = executed.comment
            model.status = TransitionStatus.EXECUTED.value
            model.executed_at = now
        self._session.flush()

        executed = model.to_dto()
        entry = self._ledger.append(executed, recorded_at)

        if definition.settings.log_transitions:
            logger.info(
                "transition_executed",
                extra={
                    "transition_id": str(executed.transition_id),
                    "workflow_id": executed.workflow_id,
                    "entity_ref": str(ref),
                    "from_state_id": executed.from_state_id,
                    "to_state_id": executed.to_state_id,
                    "owner_id": str(executed.owner_id),
                    "forced": executed.forced,
                    "scheduled": executed.scheduled,
                },
            )

        phase = (
            TransitionPhase.REVERTED
            if executed.reverts_transition_id is not None
            else TransitionPhase.EXECUTED
        )
        self._notify(executed, phase, now)
        return executed, entry

    @staticmethod
    def _recorded_at(transition: Transition, now: datetime) -> datetime:
        if transition.scheduled:
            return max(transition.timestamp, now)
        return transition.timestamp

    def _notify(self, transition: Transition, phase: TransitionPhase, now: datetime) -> None:
        try:
            self._notifier.notify(
                TransitionNotification(transition=transition, phase=phase, occurred_at=now)
            )
        except Exception:
            logger.exception(
                "notification_failed",
                extra={"transition_id": str(transition.transition_id), "phase": phase.value},
            )
