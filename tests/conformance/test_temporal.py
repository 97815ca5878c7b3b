"""
Temporal Conformance Tests

INVARIANT: Pool time only moves forward and the event log follows it.

    ∀ log entries e1, e2:
        seq(e1) < seq(e2) ⟹ timestamp(e1) ≤ timestamp(e2)

This ensures:
- Interest accrues over non-negative intervals only
- Events carry the pool time at which they were applied
"""

import pytest
from datetime import timedelta
from hypothesis import given, settings

from nftpool import WAD

from tests.helpers import make_pool, T0, PRICE, RATE
from tests.conformance.strategies import operation_sequences, apply_operation


class TestTemporalProperties:

    @given(operation_sequences())
    @settings(max_examples=40, deadline=None)
    def test_log_ordered_by_sequence_and_time(self, sequence):
        pool = make_pool(interest_rate=RATE)
        for operation in sequence:
            apply_operation(pool, operation)

        log = pool.event_log
        assert [e.sequence for e in log] == list(range(len(log)))
        for earlier, later in zip(log, log[1:]):
            assert earlier.timestamp <= later.timestamp
        assert all(e.timestamp <= pool.current_time for e in log)

    @given(operation_sequences())
    @settings(max_examples=40, deadline=None)
    def test_interest_never_ahead_of_pool_time(self, sequence):
        pool = make_pool(interest_rate=RATE)
        for operation in sequence:
            apply_operation(pool, operation)
            assert pool.interest_state.last_update <= pool.current_time


class TestTemporalExamples:

    def test_time_cannot_move_backwards(self):
        pool = make_pool()
        pool.advance_time(T0 + timedelta(days=1))
        with pytest.raises(ValueError):
            pool.advance_time(T0)
        assert pool.current_time == T0 + timedelta(days=1)

    def test_events_carry_application_time(self):
        pool = make_pool()
        pool.add_quote_token("lender", WAD, PRICE)
        later = T0 + timedelta(hours=6)
        pool.advance_time(later)
        entry = pool.add_quote_token("lender", WAD, PRICE)
        assert pool.event_log[1].timestamp == T0
        assert entry.timestamp == later

    def test_accrual_commits_only_on_applied_operation(self):
        pool = make_pool(interest_rate=RATE)
        pool.advance_time(T0 + timedelta(days=1))
        assert pool.interest_state.last_update == T0
        pool.add_quote_token("lender", WAD, PRICE)
        assert pool.interest_state.last_update == T0 + timedelta(days=1)
