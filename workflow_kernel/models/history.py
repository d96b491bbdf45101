"""
Module: workflow_kernel.models.history
Responsibility: ORM persistence for the append-only transition history.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One history row per executed transition (UNIQUE transition_id).
    - Rows are never deleted and only ``comment`` may change
      (db/immutability.py).
    - Covering index for per-field ordered reads.

Audit relevance:
    The history table is the record of every state change a tracked field
    went through, including reverts and forced administrative moves.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from workflow_kernel.domain.transition import HistoryEntry


class HistoryEntryModel(Base):
    __tablename__ = "workflow_history"

    __table_args__ = (
        Index(
            "idx_workflow_history_field",
            "entity_type", "entity_id", "field_name", "timestamp", "sequence",
        ),
    )

    entry_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    transition_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    workflow_id: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    field_name: Mapped[str] = mapped_column(String(100), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    from_state_id: Mapped[str] = mapped_column(String(100), nullable=False)
    to_state_id: Mapped[str] = mapped_column(String(100), nullable=False)
    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    sequence: Mapped[int] = mapped_column(nullable=False)

    def to_dto(self) -> HistoryEntry:
        from workflow_kernel.domain.transition import EntityRef, HistoryEntry as HistoryDTO

        return HistoryDTO(
            entry_id=self.entry_id,
            transition_id=self.transition_id,
            workflow_id=self.workflow_id,
            entity_ref=EntityRef(
                entity_type=self.entity_type,
                entity_id=self.entity_id,
                field_name=self.field_name,
            ),
            timestamp=self.timestamp,
            from_state_id=self.from_state_id,
            to_state_id=self.to_state_id,
            owner_id=self.owner_id,
            comment=self.comment,
            sequence=self.sequence,
        )
