"""
Workflow definition types (``workflow_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects describing one workflow: its states, the configured
transition graph with per-edge role lists, and per-workflow settings.
``WorkflowDefinition.allowed_targets`` is the single place that turns the
graph plus an actor's roles into the set of legal target states.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Inactive states are never returned by ``allowed_targets``.
* The creation state is never offered as a "stay in place" target.
* Structural checks (one creation state, unique ids, edges between known
  states) live in ``workflow_config.validator`` and run on load.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

# Role granted to every actor.
ANY_ROLE = "*"

# Role granted to the owner of the tracked entity.
AUTHOR_ROLE = "workflow_author"


@dataclass(frozen=True)
class State:
    """A named point in an entity's lifecycle.

    Inactive states stay resolvable so historical transitions keep their
    labels, but they are never offered as targets.
    """
    state_id: str
    label: str
    weight: int = 0
    is_active: bool = True
    is_creation_state: bool = False


@dataclass(frozen=True)
class ConfigTransition:
    """A configured edge of the transition graph.

    ``roles`` lists the roles that may take the edge.  ``ANY_ROLE`` opens it
    to every actor; ``AUTHOR_ROLE`` opens it to the entity owner.
    """
    from_state: str
    to_state: str
    roles: frozenset[str] = frozenset()

    def is_allowed_for(self, roles: frozenset[str], is_owner: bool = False) -> bool:
        effective = set(roles) | {ANY_ROLE}
        if is_owner:
            effective.add(AUTHOR_ROLE)
        return bool(self.roles & effective)


@dataclass(frozen=True)
class WorkflowSettings:
    """Per-workflow options.

    ``schedule_timezone`` is a presentation hint for callers that render a
    timezone picker; the engine always stores UTC instants.
    """
    schedule_enabled: bool = True
    schedule_timezone: bool = True
    log_transitions: bool = True


@dataclass(frozen=True)
class WorkflowDefinition:
    """A workflow: states, transition graph and settings.

    Contract: frozen and shared across threads.  Read-only at execution time.
    """
    workflow_id: str
    label: str
    states: tuple[State, ...]
    transitions: tuple[ConfigTransition, ...] = ()
    settings: WorkflowSettings = field(default_factory=WorkflowSettings)

    @property
    def creation_state(self) -> State:
        for state in self.states:
            if state.is_creation_state:
                return state
        raise LookupError(f"workflow {self.workflow_id} has no creation state")

    @property
    def creation_state_id(self) -> str:
        return self.creation_state.state_id

    def get_state(self, state_id: str) -> State | None:
        for state in self.states:
            if state.state_id == state_id:
                return state
        return None

    def has_state(self, state_id: str) -> bool:
        return self.get_state(state_id) is not None

    def is_active_state(self, state_id: str) -> bool:
        state = self.get_state(state_id)
        return state is not None and state.is_active

    def active_states(self) -> tuple[State, ...]:
        return tuple(s for s in self.ordered_states() if s.is_active)

    def ordered_states(self) -> tuple[State, ...]:
        """States sorted by weight, keeping configuration order for ties."""
        return tuple(sorted(self.states, key=lambda s: s.weight))

    def edges_from(self, state_id: str) -> tuple[ConfigTransition, ...]:
        return tuple(t for t in self.transitions if t.from_state == state_id)

    @property
    def uses_author_role(self) -> bool:
        """True when some edge is opened to the entity owner."""
        return any(AUTHOR_ROLE in t.roles for t in self.transitions)

    def allowed_targets(
        self,
        state_id: str,
        roles: frozenset[str] = frozenset(),
        *,
        is_super_user: bool = False,
        is_owner: bool = False,
    ) -> frozenset[str]:
        """Target states an actor may move to from ``state_id``.

        Staying in the current state is always allowed unless that state is
        the creation state or has been deactivated.
        """
        targets: set[str] = set()
        current = self.get_state(state_id)
        if current is not None and current.is_active and not current.is_creation_state:
            targets.add(state_id)

        for edge in self.edges_from(state_id):
            # A self-edge never overrides the stay-in-place rule above.
            if edge.to_state == state_id:
                continue
            if not self.is_active_state(edge.to_state):
                continue
            if is_super_user or edge.is_allowed_for(roles, is_owner):
                targets.add(edge.to_state)
        return frozenset(targets)

    def deactivate(self, state_id: str) -> WorkflowDefinition:
        """Return a copy with ``state_id`` marked inactive."""
        states = tuple(
            replace(s, is_active=False) if s.state_id == state_id else s
            for s in self.states
        )
        return replace(self, states=states)
