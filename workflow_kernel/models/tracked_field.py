"""
Module: workflow_kernel.models.tracked_field
Responsibility: Durable current-state attribute of a tracked entity field.

Architecture position: Kernel > Models.  Written only through
    SqlEntityStateStore's compare-and-set.

Invariants enforced:
    - One row per (entity_type, entity_id, field_name).
    - ``current_state_id`` equals the to-state of the newest executed
      transition for the field; ``version`` increments on every write.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base


class TrackedFieldModel(Base):
    __tablename__ = "workflow_tracked_fields"

    __table_args__ = (
        UniqueConstraint(
            "entity_type", "entity_id", "field_name",
            name="uq_workflow_tracked_field",
        ),
        Index("idx_workflow_tracked_field_state", "workflow_id", "current_state_id"),
    )

    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    field_name: Mapped[str] = mapped_column(String(100), nullable=False)
    workflow_id: Mapped[str] = mapped_column(String(100), nullable=False)
    current_state_id: Mapped[str] = mapped_column(String(100), nullable=False)
    version: Mapped[int] = mapped_column(nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
