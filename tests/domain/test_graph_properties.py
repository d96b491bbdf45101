"""
Property-based tests for allowed-target computation.

Random workflows and role sets; the invariants must hold for all of them:
- inactive states are never offered
- the creation state is never offered as "stay in place"
- every offered target is the current state or the end of a configured edge
- a super-user is offered a superset of what any other actor is offered
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from workflow_kernel.domain.workflow import (
    ANY_ROLE,
    AUTHOR_ROLE,
    ConfigTransition,
    State,
    WorkflowDefinition,
)

ROLES = ["editor", "author", "reviewer", ANY_ROLE, AUTHOR_ROLE]


@st.composite
def workflows(draw):
    count = draw(st.integers(min_value=2, max_value=6))
    ids = [f"s{i}" for i in range(count)]
    states = tuple(
        State(
            state_id=state_id,
            label=state_id.upper(),
            weight=draw(st.integers(min_value=-5, max_value=5)),
            is_active=True if i == 0 else draw(st.booleans()),
            is_creation_state=(i == 0),
        )
        for i, state_id in enumerate(ids)
    )
    edges = draw(st.lists(
        st.tuples(
            st.sampled_from(ids),
            st.sampled_from(ids),
            st.frozensets(st.sampled_from(ROLES), max_size=3),
        ),
        max_size=12,
    ))
    return WorkflowDefinition(
        workflow_id="generated",
        label="Generated",
        states=states,
        transitions=tuple(ConfigTransition(f, t, roles) for f, t, roles in edges),
    )


actor_roles = st.frozensets(st.sampled_from(["editor", "author", "reviewer"]), max_size=3)


class TestAllowedTargetProperties:
    @given(wf=workflows(), roles=actor_roles, is_owner=st.booleans(), data=st.data())
    @settings(max_examples=200)
    def test_invariants(self, wf, roles, is_owner, data):
        current = data.draw(st.sampled_from([s.state_id for s in wf.states]))

        targets = wf.allowed_targets(current, roles, is_owner=is_owner)
        everything = wf.allowed_targets(current, is_super_user=True)
        edge_ends = {e.to_state for e in wf.edges_from(current)}

        assert all(wf.is_active_state(t) for t in targets)
        if current == wf.creation_state_id:
            assert current not in targets
        assert targets <= edge_ends | {current}
        assert targets <= everything
