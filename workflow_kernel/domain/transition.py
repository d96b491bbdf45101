"""
Transition domain types (``workflow_kernel.domain.transition``).

Responsibility
--------------
Frozen DTOs for transitions, history entries, transition requests,
notifications and scheduler tick reports, plus the transition status
state machine.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  ORM models
convert to and from these types via ``to_dto()`` / ``from_dto()``.

Invariants enforced
-------------------
* ``TRANSITION_STATUS_TRANSITIONS`` is the only legal status graph:
  pending -> claimed -> executed | failed, pending -> cancelled,
  pending -> executed for immediate transitions, and claimed -> pending
  when a claim abandoned by a dead scheduler expires.  Every status write
  checks it through ``can_change_status``.
* ``executed``, ``cancelled`` and ``failed`` are terminal.  An executed
  transition is reversed by a *new* transition, never by mutation.
* All timestamps are timezone-aware UTC instants.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from workflow_kernel.domain.access import Actor


class TransitionStatus(str, Enum):
    """Lifecycle status of a transition row."""

    PENDING = "pending"
    CLAIMED = "claimed"
    EXECUTED = "executed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TRANSITION_STATUS_TRANSITIONS: dict[TransitionStatus, frozenset[TransitionStatus]] = {
    TransitionStatus.PENDING: frozenset({
        TransitionStatus.CLAIMED,
        TransitionStatus.CANCELLED,
        TransitionStatus.EXECUTED,
    }),
    TransitionStatus.CLAIMED: frozenset({
        TransitionStatus.EXECUTED,
        TransitionStatus.FAILED,
        TransitionStatus.PENDING,
    }),
    TransitionStatus.EXECUTED: frozenset(),
    TransitionStatus.CANCELLED: frozenset(),
    TransitionStatus.FAILED: frozenset(),
}


def can_change_status(current: TransitionStatus, target: TransitionStatus) -> bool:
    return target in TRANSITION_STATUS_TRANSITIONS[current]


class TransitionPhase(str, Enum):
    """Phase reported to notification sinks."""

    EXECUTED = "executed"
    REVERTED = "reverted"


@dataclass(frozen=True)
class EntityRef:
    """The tracked attribute: entity type, entity id and field name."""

    entity_type: str
    entity_id: str
    field_name: str

    def __str__(self) -> str:
        return f"{self.entity_type}:{self.entity_id}.{self.field_name}"


@dataclass(frozen=True)
class Transition:
    """A move of one tracked field from one state to another.

    ``timestamp`` is the effective moment; in the future for scheduled
    transitions.  ``sequence`` is assigned on persistence and breaks ties
    between equal timestamps in creation order.
    """

    transition_id: UUID
    workflow_id: str
    entity_ref: EntityRef
    from_state_id: str
    to_state_id: str
    owner_id: UUID
    timestamp: datetime
    comment: str = ""
    forced: bool = False
    scheduled: bool = False
    status: TransitionStatus = TransitionStatus.PENDING
    sequence: int | None = None
    created_at: datetime | None = None
    executed_at: datetime | None = None
    failure_code: str | None = None
    failure_reason: str | None = None
    reverts_transition_id: UUID | None = None

    @classmethod
    def create(
        cls,
        *,
        workflow_id: str,
        entity_ref: EntityRef,
        from_state_id: str,
        to_state_id: str,
        owner_id: UUID,
        timestamp: datetime,
        comment: str = "",
        forced: bool = False,
        scheduled: bool = False,
        reverts_transition_id: UUID | None = None,
    ) -> Transition:
        return cls(
            transition_id=uuid4(),
            workflow_id=workflow_id,
            entity_ref=entity_ref,
            from_state_id=from_state_id,
            to_state_id=to_state_id,
            owner_id=owner_id,
            timestamp=timestamp,
            comment=comment,
            forced=forced,
            scheduled=scheduled,
            reverts_transition_id=reverts_transition_id,
        )

    @property
    def executed(self) -> bool:
        return self.status == TransitionStatus.EXECUTED

    @property
    def has_state_change(self) -> bool:
        return self.from_state_id != self.to_state_id

    @property
    def is_pending(self) -> bool:
        return self.status == TransitionStatus.PENDING

    def with_comment(self, comment: str) -> Transition:
        return replace(self, comment=comment)


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable ledger row for one executed transition."""

    entry_id: UUID
    transition_id: UUID
    workflow_id: str
    entity_ref: EntityRef
    timestamp: datetime
    from_state_id: str
    to_state_id: str
    owner_id: UUID
    comment: str = ""
    sequence: int = 0

    @property
    def has_state_change(self) -> bool:
        return self.from_state_id != self.to_state_id


@dataclass(frozen=True)
class TransitionRequest:
    """What a caller asks the engine to do.

    ``timestamp`` defaults to now (immediate).  ``expected_from_state_id``
    captures the state the caller saw; when omitted the stored state at
    request time is used.
    """

    workflow_id: str
    entity_ref: EntityRef
    to_state_id: str
    actor: Actor
    timestamp: datetime | None = None
    comment: str = ""
    forced: bool = False
    expected_from_state_id: str | None = None


@dataclass(frozen=True)
class TransitionNotification:
    """Output event handed to notification sinks."""

    transition: Transition
    phase: TransitionPhase
    occurred_at: datetime


@dataclass(frozen=True)
class TransitionOptions:
    """What an actor may do with a tracked field right now."""

    current_state_id: str
    targets: tuple[str, ...]
    must_offer_choice: bool
    can_schedule: bool


class TickOutcome(str, Enum):
    EXECUTED = "executed"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass(frozen=True)
class TickItemResult:
    transition_id: UUID
    outcome: TickOutcome
    error_code: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class TickReport:
    """Result of one scheduler tick, in execution order."""

    as_of: datetime
    items: tuple[TickItemResult, ...] = field(default_factory=tuple)

    @property
    def executed(self) -> tuple[UUID, ...]:
        return tuple(
            i.transition_id for i in self.items if i.outcome == TickOutcome.EXECUTED
        )

    @property
    def rejected(self) -> tuple[TickItemResult, ...]:
        return tuple(i for i in self.items if i.outcome == TickOutcome.REJECTED)

    @property
    def failed(self) -> tuple[TickItemResult, ...]:
        return tuple(i for i in self.items if i.outcome == TickOutcome.FAILED)

    @property
    def executed_count(self) -> int:
        return len(self.executed)
