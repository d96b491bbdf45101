"""
Module: workflow_kernel.selectors.transition_selector
Responsibility: Read-only queries over transitions and history: single
    lookups, pending transitions of a field, time-range loads and history
    rows labelled for display.
Architecture position: Kernel > Selectors.  May import from models/ and
    domain/ value types.  Selectors NEVER create, modify, or delete data.

Invariants enforced:
    - Read-only: no add/delete/flush/commit.
    - DTO return convention: frozen dataclasses, never ORM instances.

Display rules:
    Labels are a read-time concern.  A deactivated state keeps its label
    with an " (inactive)" suffix; a state id no longer in the definition is
    shown as the raw id.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from workflow_kernel.domain.transition import (
    EntityRef,
    HistoryEntry,
    Transition,
    TransitionStatus,
)
from workflow_kernel.domain.workflow import WorkflowDefinition
from workflow_kernel.exceptions import TransitionNotFoundError
from workflow_kernel.models.history import HistoryEntryModel
from workflow_kernel.models.transition import TransitionModel

INACTIVE_SUFFIX = " (inactive)"


@dataclass(frozen=True)
class HistoryRow:
    entry: HistoryEntry
    from_label: str
    to_label: str


def state_label(definition: WorkflowDefinition, state_id: str) -> str:
    state = definition.get_state(state_id)
    if state is None:
        return state_id
    if not state.is_active:
        return f"{state.label}{INACTIVE_SUFFIX}"
    return state.label


class TransitionSelector:
    """Read-only access to transition and history rows."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, transition_id: UUID) -> Transition:
        model = self.session.execute(
            select(TransitionModel).where(TransitionModel.transition_id == transition_id)
        ).scalar_one_or_none()
        if model is None:
            raise TransitionNotFoundError(str(transition_id))
        return model.to_dto()

    def pending_for(self, entity_ref: EntityRef) -> list[Transition]:
        models = self.session.execute(
            select(TransitionModel)
            .where(
                TransitionModel.entity_type == entity_ref.entity_type,
                TransitionModel.entity_id == entity_ref.entity_id,
                TransitionModel.field_name == entity_ref.field_name,
                TransitionModel.status == TransitionStatus.PENDING.value,
            )
            .order_by(TransitionModel.timestamp, TransitionModel.sequence)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def failed(self, limit: int = 100) -> list[Transition]:
        """Scheduled transitions left for manual handling, oldest first."""
        models = self.session.execute(
            select(TransitionModel)
            .where(TransitionModel.status == TransitionStatus.FAILED.value)
            .order_by(TransitionModel.timestamp, TransitionModel.sequence)
            .limit(limit)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def load_between(
        self,
        start: datetime,
        end: datetime,
        from_state_id: str | None = None,
        to_state_id: str | None = None,
        status: TransitionStatus | None = None,
    ) -> list[Transition]:
        """Transitions with ``start <= timestamp <= end``, ascending."""
        stmt = select(TransitionModel).where(
            TransitionModel.timestamp >= start,
            TransitionModel.timestamp <= end,
        )
        if from_state_id is not None:
            stmt = stmt.where(TransitionModel.from_state_id == from_state_id)
        if to_state_id is not None:
            stmt = stmt.where(TransitionModel.to_state_id == to_state_id)
        if status is not None:
            stmt = stmt.where(TransitionModel.status == status.value)
        stmt = stmt.order_by(TransitionModel.timestamp, TransitionModel.sequence)
        return [m.to_dto() for m in self.session.execute(stmt).scalars().all()]

    def labelled_history(
        self,
        entity_ref: EntityRef,
        definition: WorkflowDefinition,
        limit: int | None = None,
    ) -> list[HistoryRow]:
        """History of one field, newest first, with display labels."""
        stmt = (
            select(HistoryEntryModel)
            .where(
                HistoryEntryModel.entity_type == entity_ref.entity_type,
                HistoryEntryModel.entity_id == entity_ref.entity_id,
                HistoryEntryModel.field_name == entity_ref.field_name,
            )
            .order_by(HistoryEntryModel.timestamp.desc(), HistoryEntryModel.sequence.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        rows = []
        for model in self.session.execute(stmt).scalars().all():
            entry = model.to_dto()
            rows.append(HistoryRow(
                entry=entry,
                from_label=state_label(definition, entry.from_state_id),
                to_label=state_label(definition, entry.to_state_id),
            ))
        return rows
