"""
Tests for SequenceService counters.
"""

from workflow_kernel.services.sequence_service import SequenceService


def test_initialized_counters_start_at_zero(db_session):
    sequences = SequenceService(db_session)
    assert sequences.current_value(SequenceService.TRANSITION) == 0
    assert sequences.current_value(SequenceService.HISTORY_ENTRY) == 0


def test_values_strictly_increase(db_session):
    sequences = SequenceService(db_session)
    values = [sequences.next_value(SequenceService.TRANSITION) for _ in range(3)]
    assert values == [1, 2, 3]
    assert sequences.current_value(SequenceService.TRANSITION) == 3


def test_unknown_sequence_created_on_first_use(db_session):
    sequences = SequenceService(db_session)
    assert sequences.current_value("custom") is None
    assert sequences.next_value("custom") == 1
    assert sequences.next_value("custom") == 2
