"""
SchedulingService -- session-scoped persistence of scheduled transitions.

Responsibility:
    Stores future transitions, cancels them, and claims due ones for
    execution.  Every status change of a waiting transition is a
    compare-and-set on its status, so a tick's claim and a cancellation can
    never both win.

Architecture position:
    Kernel > Services.  Used inside a caller-owned session by
    WorkflowService and by TransitionScheduler, which wraps each call in
    its own unit of work.

Invariants enforced:
    - Only transitions with ``timestamp > now`` are enqueued.
    - Due order is ascending (timestamp, sequence); sequence is creation
      order, so equal timestamps run first-in first-out and one field's
      transitions are never reordered.
    - Every status change is a compare-and-set update allowed by
      ``can_change_status``; once claimed, cancellation is rejected.
    - A claim older than the claim timeout belongs to a scheduler that died
      mid-tick; ``release_expired_claims`` returns it to pending.

Failure modes:
    - InvalidScheduleTimeError, TransitionNotFoundError,
      TransitionAlreadyExecutedError, TransitionInFlightError,
      TransitionNotPendingError.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.transition import (
    EntityRef,
    Transition,
    TransitionStatus,
    can_change_status,
)
from workflow_kernel.exceptions import (
    InvalidScheduleTimeError,
    TransitionAlreadyExecutedError,
    TransitionInFlightError,
    TransitionNotFoundError,
    TransitionNotPendingError,
)
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.transition import TransitionModel
from workflow_kernel.services.sequence_service import SequenceService

logger = get_logger("services.scheduling")


class SchedulingService:
    """
    Enqueue, cancel and claim scheduled transitions.

    Non-goals:
        - Does NOT execute transitions (TransitionExecutor does).
        - Does NOT call ``session.commit()``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    def enqueue(self, transition: Transition) -> Transition:
        now = self._clock.now()
        if transition.timestamp <= now:
            raise InvalidScheduleTimeError(transition.timestamp.isoformat(), now.isoformat())

        pending = replace(transition, scheduled=True, status=TransitionStatus.PENDING)
        model = TransitionModel.from_dto(
            pending,
            sequence=self._sequences.next_value(SequenceService.TRANSITION),
            created_at=now,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "transition_scheduled",
            extra={
                "transition_id": str(model.transition_id),
                "workflow_id": model.workflow_id,
                "entity_ref": str(transition.entity_ref),
                "from_state_id": model.from_state_id,
                "to_state_id": model.to_state_id,
                "due_at": model.timestamp.isoformat(),
                "sequence": model.sequence,
            },
        )
        return model.to_dto()

    def get(self, transition_id: UUID) -> Transition:
        return self._load(transition_id).to_dto()

    def cancel(self, transition_id: UUID) -> Transition:
        """Cancel a pending transition.  Rejected once claimed or executed."""
        if not self._compare_and_set(
            transition_id,
            TransitionStatus.PENDING,
            TransitionStatus.CANCELLED,
        ):
            model = self._load(transition_id)
            if model.status == TransitionStatus.EXECUTED.value:
                raise TransitionAlreadyExecutedError(str(transition_id))
            if model.status == TransitionStatus.CLAIMED.value:
                raise TransitionInFlightError(str(transition_id))
            raise TransitionNotPendingError(str(transition_id), model.status)

        logger.info("transition_cancelled", extra={"transition_id": str(transition_id)})
        return self._load(transition_id).to_dto()

    def cancel_all_for(self, entity_ref: EntityRef) -> list[UUID]:
        """Cancel every pending transition of one field.  Claimed ones are left alone."""
        return self._cancel_where(
            TransitionModel.entity_type == entity_ref.entity_type,
            TransitionModel.entity_id == entity_ref.entity_id,
            TransitionModel.field_name == entity_ref.field_name,
        )

    def cancel_all_for_entity(self, entity_type: str, entity_id: str) -> list[UUID]:
        """Cancel every pending transition of every field of an entity."""
        return self._cancel_where(
            TransitionModel.entity_type == entity_type,
            TransitionModel.entity_id == entity_id,
        )

    def pending_for(self, entity_ref: EntityRef) -> list[Transition]:
        models = self._session.execute(
            select(TransitionModel)
            .where(
                TransitionModel.entity_type == entity_ref.entity_type,
                TransitionModel.entity_id == entity_ref.entity_id,
                TransitionModel.field_name == entity_ref.field_name,
                TransitionModel.status == TransitionStatus.PENDING.value,
            )
            .order_by(TransitionModel.timestamp, TransitionModel.sequence)
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def claim_due(self, as_of: datetime, limit: int | None = None) -> list[Transition]:
        """Claim pending transitions due at ``as_of``, in execution order."""
        stmt = (
            select(TransitionModel.transition_id)
            .where(
                TransitionModel.status == TransitionStatus.PENDING.value,
                TransitionModel.timestamp <= as_of,
            )
            .order_by(TransitionModel.timestamp, TransitionModel.sequence)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        due_ids = list(self._session.execute(stmt).scalars().all())

        claimed: list[Transition] = []
        now = self._clock.now()
        for transition_id in due_ids:
            if self._compare_and_set(
                transition_id,
                TransitionStatus.PENDING,
                TransitionStatus.CLAIMED,
                claimed_at=now,
            ):
                claimed.append(self._load(transition_id).to_dto())

        if claimed:
            logger.info(
                "transitions_claimed",
                extra={"as_of": as_of.isoformat(), "count": len(claimed)},
            )
        return claimed

    def release_expired_claims(self, claimed_before: datetime) -> list[UUID]:
        """Return claims taken before ``claimed_before`` to pending.

        A claimed row that its scheduler finished is already executed or
        failed, so only abandoned claims match.
        """
        stale_ids = self._session.execute(
            select(TransitionModel.transition_id)
            .where(
                TransitionModel.status == TransitionStatus.CLAIMED.value,
                TransitionModel.claimed_at < claimed_before,
            )
            .order_by(TransitionModel.timestamp, TransitionModel.sequence)
        ).scalars().all()

        released = [
            transition_id
            for transition_id in stale_ids
            if self._compare_and_set(
                transition_id,
                TransitionStatus.CLAIMED,
                TransitionStatus.PENDING,
                claimed_at=None,
            )
        ]
        if released:
            logger.warning(
                "expired_claims_released",
                extra={
                    "claimed_before": claimed_before.isoformat(),
                    "transition_ids": [str(t) for t in released],
                },
            )
        return released

    def mark_failed(self, transition_id: UUID, failure_code: str, failure_reason: str) -> bool:
        """Record the outcome of a claimed transition that did not execute."""
        return self._compare_and_set(
            transition_id,
            TransitionStatus.CLAIMED,
            TransitionStatus.FAILED,
            failure_code=failure_code,
            failure_reason=failure_reason,
        )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _load(self, transition_id: UUID) -> TransitionModel:
        model = self._session.execute(
            select(TransitionModel)
            .where(TransitionModel.transition_id == transition_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise TransitionNotFoundError(str(transition_id))
        return model

    def _compare_and_set(
        self,
        transition_id: UUID,
        expected: TransitionStatus,
        target: TransitionStatus,
        **values,
    ) -> bool:
        if not can_change_status(expected, target):
            raise ValueError(f"illegal status change {expected.value} -> {target.value}")
        result = self._session.execute(
            update(TransitionModel)
            .where(
                TransitionModel.transition_id == transition_id,
                TransitionModel.status == expected.value,
            )
            .values(status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _cancel_where(self, *criteria) -> list[UUID]:
        pending_ids = self._session.execute(
            select(TransitionModel.transition_id)
            .where(*criteria, TransitionModel.status == TransitionStatus.PENDING.value)
            .order_by(TransitionModel.timestamp, TransitionModel.sequence)
        ).scalars().all()

        cancelled = [
            transition_id
            for transition_id in pending_ids
            if self._compare_and_set(
                transition_id, TransitionStatus.PENDING, TransitionStatus.CANCELLED,
            )
        ]
        if cancelled:
            logger.info(
                "transitions_cancelled",
                extra={"count": len(cancelled), "transition_ids": [str(t) for t in cancelled]},
            )
        return cancelled
