"""
HistoryLedger -- append-only ordered record of executed transitions.

Responsibility:
    Appends one history row per executed transition and answers ordered
    reads per tracked field: newest-first listing, the newest entry, and
    the current state derived from history.

Architecture position:
    Kernel > Services.  Written only by TransitionExecutor; read by the
    executor (ordering guard, revert) and by WorkflowService.

Invariants enforced:
    - Append-only: entries are never deleted and only their comment may be
      edited (db/immutability.py enforces this at flush time).
    - Order is (timestamp, sequence); sequence is the append order and
      breaks timestamp ties.
    - ``current_state_of`` is the to-state of the newest entry, or the
      workflow's creation state when the field has no history.

Failure modes:
    - TransitionNotExecutedError when appending a transition that has not
      been marked executed.
    - ImmutabilityViolationError on any attempt to modify state fields.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from workflow_kernel.domain.transition import EntityRef, HistoryEntry, Transition
from workflow_kernel.domain.workflow import WorkflowDefinition
from workflow_kernel.exceptions import TransitionNotExecutedError
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.history import HistoryEntryModel
from workflow_kernel.services.sequence_service import SequenceService

logger = get_logger("services.history_ledger")


def _field_filter(entity_ref: EntityRef):
    return (
        HistoryEntryModel.entity_type == entity_ref.entity_type,
        HistoryEntryModel.entity_id == entity_ref.entity_id,
        HistoryEntryModel.field_name == entity_ref.field_name,
    )


class HistoryLedger:
    """
    Append and read history entries within the caller's transaction.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT label states for display; see TransitionSelector.
    """

    def __init__(self, session: Session, sequence_service: SequenceService | None = None):
        self._session = session
        self._sequences = sequence_service or SequenceService(session)

    def append(self, transition: Transition, timestamp: datetime) -> HistoryEntry:
        """Record an executed transition at ``timestamp``."""
        if not transition.executed:
            raise TransitionNotExecutedError(
                str(transition.transition_id), transition.status.value,
            )

        model = HistoryEntryModel(
            entry_id=uuid4(),
            transition_id=transition.transition_id,
            workflow_id=transition.workflow_id,
            entity_type=transition.entity_ref.entity_type,
            entity_id=transition.entity_ref.entity_id,
            field_name=transition.entity_ref.field_name,
            timestamp=timestamp,
            from_state_id=transition.from_state_id,
            to_state_id=transition.to_state_id,
            owner_id=transition.owner_id,
            comment=transition.comment,
            sequence=self._sequences.next_value(SequenceService.HISTORY_ENTRY),
        )
        self._session.add(model)
        self._session.flush()

        logger.debug(
            "history_entry_appended",
            extra={
                "transition_id": str(transition.transition_id),
                "entity_ref": str(transition.entity_ref),
                "from_state_id": transition.from_state_id,
                "to_state_id": transition.to_state_id,
                "sequence": model.sequence,
            },
        )
        return model.to_dto()

    def list_for(self, entity_ref: EntityRef, limit: int | None = None) -> list[HistoryEntry]:
        """Entries for one field, newest first.  Each call returns a fresh list."""
        stmt = (
            select(HistoryEntryModel)
            .where(*_field_filter(entity_ref))
            .order_by(
                HistoryEntryModel.timestamp.desc(),
                HistoryEntryModel.sequence.desc(),
            )
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [m.to_dto() for m in self._session.execute(stmt).scalars().all()]

    def latest_for(self, entity_ref: EntityRef) -> HistoryEntry | None:
        entries = self.list_for(entity_ref, limit=1)
        return entries[0] if entries else None

    def latest_timestamp(self, entity_ref: EntityRef) -> datetime | None:
        latest = self.latest_for(entity_ref)
        return latest.timestamp if latest is not None else None

    def current_state_of(self, entity_ref: EntityRef, definition: WorkflowDefinition) -> str:
        latest = self.latest_for(entity_ref)
        if latest is None:
            return definition.creation_state_id
        return latest.to_state_id

    def get_by_transition(self, transition_id: UUID) -> HistoryEntry | None:
        model = self._session.execute(
            select(HistoryEntryModel).where(HistoryEntryModel.transition_id == transition_id)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def update_comment(self, transition_id: UUID, comment: str) -> HistoryEntry | None:
        """Edit the comment of the entry for ``transition_id``, if any."""
        model = self._session.execute(
            select(HistoryEntryModel).where(HistoryEntryModel.transition_id == transition_id)
        ).scalar_one_or_none()
        if model is None:
            return None
        model.comment = comment
        self._session.flush()
        return model.to_dto()
