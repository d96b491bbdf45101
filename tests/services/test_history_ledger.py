"""
Tests for HistoryLedger: append rules, ordering and derived current state.
"""

from dataclasses import replace
from datetime import timedelta
from uuid import uuid4

import pytest

from workflow_kernel.domain.transition import EntityRef, Transition, TransitionStatus
from workflow_kernel.exceptions import TransitionNotExecutedError
from workflow_kernel.services.history_ledger import HistoryLedger


@pytest.fixture
def ledger(db_session):
    return HistoryLedger(db_session)


def _transition(ref, from_state, to_state, when, status=TransitionStatus.EXECUTED):
    transition = Transition.create(
        workflow_id="editorial",
        entity_ref=ref,
        from_state_id=from_state,
        to_state_id=to_state,
        owner_id=uuid4(),
        timestamp=when,
    )
    return replace(transition, status=status)


# =============================================================================
# append()
# =============================================================================


class TestAppend:
    def test_unexecuted_transition_rejected(self, ledger, article, clock):
        pending = _transition(article, "draft", "review", clock.now(), TransitionStatus.PENDING)
        with pytest.raises(TransitionNotExecutedError):
            ledger.append(pending, clock.now())

    def test_entry_mirrors_transition(self, ledger, article, clock):
        transition = _transition(article, "draft", "review", clock.now())
        entry = ledger.append(transition, clock.now())

        assert entry.transition_id == transition.transition_id
        assert entry.entity_ref == article
        assert (entry.from_state_id, entry.to_state_id) == ("draft", "review")
        assert entry.timestamp == clock.now()
        assert entry.sequence > 0

    def test_sequences_increase(self, ledger, article, clock):
        first = ledger.append(_transition(article, "draft", "review", clock.now()), clock.now())
        second = ledger.append(_transition(article, "review", "draft", clock.now()), clock.now())
        assert second.sequence > first.sequence


# =============================================================================
# Ordering and derivation
# =============================================================================


class TestReadSide:
    def test_list_newest_first_with_sequence_tiebreak(self, ledger, article, clock):
        t0 = clock.now()
        a = ledger.append(_transition(article, "draft", "review", t0), t0)
        b = ledger.append(_transition(article, "review", "published", t0), t0)
        c = ledger.append(
            _transition(article, "published", "review", t0 + timedelta(minutes=1)),
            t0 + timedelta(minutes=1),
        )

        assert [e.entry_id for e in ledger.list_for(article)] == [c.entry_id, b.entry_id, a.entry_id]
        assert [e.entry_id for e in ledger.list_for(article, limit=1)] == [c.entry_id]
        assert ledger.latest_for(article).entry_id == c.entry_id
        assert ledger.latest_timestamp(article) == t0 + timedelta(minutes=1)

    def test_list_is_restartable(self, ledger, article, clock):
        ledger.append(_transition(article, "draft", "review", clock.now()), clock.now())
        first = ledger.list_for(article)
        first.clear()
        assert len(ledger.list_for(article)) == 1

    def test_fields_are_independent(self, ledger, article, clock):
        other = EntityRef(article.entity_type, article.entity_id, "legal_status")
        ledger.append(_transition(article, "draft", "review", clock.now()), clock.now())
        assert ledger.list_for(other) == []
        assert ledger.latest_for(other) is None

    def test_current_state_defaults_to_creation_state(self, ledger, article, definition):
        assert ledger.current_state_of(article, definition) == "draft"

    def test_current_state_is_latest_target(self, ledger, article, definition, clock):
        ledger.append(_transition(article, "draft", "review", clock.now()), clock.now())
        ledger.append(_transition(article, "review", "published", clock.now()), clock.now())
        assert ledger.current_state_of(article, definition) == "published"

    def test_update_comment(self, ledger, article, clock):
        transition = _transition(article, "draft", "review", clock.now())
        ledger.append(transition, clock.now())

        updated = ledger.update_comment(transition.transition_id, "typo fixed")

        assert updated.comment == "typo fixed"
        assert ledger.get_by_transition(transition.transition_id).comment == "typo fixed"

    def test_update_comment_unknown_transition(self, ledger):
        assert ledger.update_comment(uuid4(), "x") is None
