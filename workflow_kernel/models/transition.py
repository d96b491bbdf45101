"""
Module: workflow_kernel.models.transition
Responsibility: ORM persistence for transitions, immediate and scheduled.

Architecture position: Kernel > Models.  May import from db/base.py only
    (DTO imports are deferred into to_dto/from_dto).

Invariants enforced:
    - Status values limited by a check constraint; the legal status graph
      lives in domain/transition.py and is enforced by the services.
    - Due-set index on (status, timestamp, sequence) serves the scheduler's
      ascending claim query.
    - Executed rows are immutable except for ``comment``
      (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate transition_id.
    - ImmutabilityViolationError on UPDATE of state fields or DELETE of an
      executed transition.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from workflow_kernel.domain.transition import Transition


class TransitionModel(Base):
    """A transition row; scheduled rows wait here until claimed by a tick."""

    __tablename__ = "workflow_transitions"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'claimed', 'executed', 'cancelled', 'failed')",
            name="ck_workflow_transition_status",
        ),
        Index("idx_workflow_transition_due", "status", "timestamp", "sequence"),
        Index(
            "idx_workflow_transition_entity",
            "entity_type", "entity_id", "field_name", "status",
        ),
    )

    transition_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    workflow_id: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    field_name: Mapped[str] = mapped_column(String(100), nullable=False)
    from_state_id: Mapped[str] = mapped_column(String(100), nullable=False)
    to_state_id: Mapped[str] = mapped_column(String(100), nullable=False)
    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    forced: Mapped[bool] = mapped_column(nullable=False, default=False)
    scheduled: Mapped[bool] = mapped_column(nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    sequence: Mapped[int] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    claimed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    failure_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reverts_transition_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def to_dto(self) -> Transition:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.domain.transition import (
            EntityRef,
            Transition as TransitionDTO,
            TransitionStatus,
        )

        return TransitionDTO(
            transition_id=self.transition_id,
            workflow_id=self.workflow_id,
            entity_ref=EntityRef(
                entity_type=self.entity_type,
                entity_id=self.entity_id,
                field_name=self.field_name,
            ),
            from_state_id=self.from_state_id,
            to_state_id=self.to_state_id,
            owner_id=self.owner_id,
            timestamp=self.timestamp,
            comment=self.comment,
            forced=self.forced,
            scheduled=self.scheduled,
            status=TransitionStatus(self.status),
            sequence=self.sequence,
            created_at=self.created_at,
            executed_at=self.executed_at,
            failure_code=self.failure_code,
            failure_reason=self.failure_reason,
            reverts_transition_id=self.reverts_transition_id,
        )

    @classmethod
    def from_dto(
        cls,
        dto: Transition,
        sequence: int,
        created_at: datetime,
    ) -> TransitionModel:
        """Create ORM model from domain DTO."""
        return cls(
            transition_id=dto.transition_id,
            workflow_id=dto.workflow_id,
            entity_type=dto.entity_ref.entity_type,
            entity_id=dto.entity_ref.entity_id,
            field_name=dto.entity_ref.field_name,
            from_state_id=dto.from_state_id,
            to_state_id=dto.to_state_id,
            owner_id=dto.owner_id,
            timestamp=dto.timestamp,
            comment=dto.comment,
            forced=dto.forced,
            scheduled=dto.scheduled,
            status=dto.status.value,
            sequence=sequence,
            created_at=created_at,
            executed_at=dto.executed_at,
            reverts_transition_id=dto.reverts_transition_id,
        )

    def __repr__(self) -> str:
        return (
            f"<TransitionModel {self.transition_id} {self.entity_type}:{self.entity_id}"
            f".{self.field_name} {self.from_state_id}->{self.to_state_id} [{self.status}]>"
        )
