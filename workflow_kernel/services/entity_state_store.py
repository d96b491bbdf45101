"""
SqlEntityStateStore -- default EntityAccessor backed by TrackedFieldModel.

Responsibility:
    Stores the current state of each tracked entity field and performs the
    compare-and-set that serializes concurrent transitions on one field.

Architecture position:
    Kernel > Services.  Integrating systems that keep the state on their
    own entity tables implement the EntityAccessor protocol instead.

Invariants enforced:
    - Writes are compare-and-set: ``UPDATE ... WHERE current_state_id =
      :expected``.  Exactly one of two racing writers with the same expected
      state matches a row.
    - A field with no row is in its workflow's creation state; the first
      write inserts the row inside a savepoint and a concurrent first write
      fails on the unique constraint without poisoning the transaction.

Failure modes:
    - ``set_current_state_id`` returns False on a lost race; the session
      stays usable, so the caller can read the winning state.
"""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.transition import EntityRef
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.tracked_field import TrackedFieldModel

logger = get_logger("services.entity_state_store")


def _field_filter(entity_ref: EntityRef):
    return (
        TrackedFieldModel.entity_type == entity_ref.entity_type,
        TrackedFieldModel.entity_id == entity_ref.entity_id,
        TrackedFieldModel.field_name == entity_ref.field_name,
    )


class SqlEntityStateStore:
    """Tracked-field storage with compare-and-set writes."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def get_current_state_id(self, entity_ref: EntityRef) -> str | None:
        return self._session.execute(
            select(TrackedFieldModel.current_state_id).where(*_field_filter(entity_ref))
        ).scalar_one_or_none()

    def set_current_state_id(
        self,
        entity_ref: EntityRef,
        state_id: str,
        expected_state_id: str | None,
        *,
        workflow_id: str,
    ) -> bool:
        now = self._clock.now()

        if expected_state_id is None:
            # A concurrent first write fails on the unique constraint; the
            # savepoint keeps the outer transaction usable on PostgreSQL.
            savepoint = self._session.begin_nested()
            try:
                self._session.execute(
                    insert(TrackedFieldModel).values(
                        id=uuid4(),
                        entity_type=entity_ref.entity_type,
                        entity_id=entity_ref.entity_id,
                        field_name=entity_ref.field_name,
                        workflow_id=workflow_id,
                        current_state_id=state_id,
                        version=1,
                        updated_at=now,
                    )
                )
                savepoint.commit()
            except IntegrityError:
                savepoint.rollback()
                logger.warning(
                    "tracked_field_insert_conflict",
                    extra={"entity_ref": str(entity_ref), "state_id": state_id},
                )
                return False
            return True

        result = self._session.execute(
            update(TrackedFieldModel)
            .where(
                *_field_filter(entity_ref),
                TrackedFieldModel.current_state_id == expected_state_id,
            )
            .values(
                current_state_id=state_id,
                version=TrackedFieldModel.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(
                "tracked_field_cas_failed",
                extra={
                    "entity_ref": str(entity_ref),
                    "expected_state_id": expected_state_id,
                    "state_id": state_id,
                },
            )
            return False
        return True

    def is_new(self, entity_ref: EntityRef) -> bool:
        return self.get_current_state_id(entity_ref) is None

    def register(self, entity_ref: EntityRef, workflow_id: str, state_id: str) -> bool:
        """Record a saved entity in ``state_id``.  Returns False if already tracked."""
        if not self.is_new(entity_ref):
            return False
        return self.set_current_state_id(
            entity_ref, state_id, None, workflow_id=workflow_id,
        )

    def refs_in_state(self, workflow_id: str, state_id: str) -> list[EntityRef]:
        rows = self._session.execute(
            select(
                TrackedFieldModel.entity_type,
                TrackedFieldModel.entity_id,
                TrackedFieldModel.field_name,
            )
            .where(
                TrackedFieldModel.workflow_id == workflow_id,
                TrackedFieldModel.current_state_id == state_id,
            )
            .order_by(TrackedFieldModel.entity_type, TrackedFieldModel.entity_id)
        ).all()
        return [EntityRef(entity_type=t, entity_id=i, field_name=f) for t, i, f in rows]

    def count_in_state(self, workflow_id: str, state_id: str) -> int:
        return self._session.execute(
            select(func.count())
            .select_from(TrackedFieldModel)
            .where(
                TrackedFieldModel.workflow_id == workflow_id,
                TrackedFieldModel.current_state_id == state_id,
            )
        ).scalar_one()

    def forget(self, entity_type: str, entity_id: str) -> int:
        """Drop tracking rows of a deleted entity.  History is kept."""
        result = self._session.execute(
            delete(TrackedFieldModel)
            .where(
                TrackedFieldModel.entity_type == entity_type,
                TrackedFieldModel.entity_id == entity_id,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
