"""Integration tests for the run coordinator.

Tests verify:
- Preconditions turn into no-op results
- Reruns to the same target are idempotent
- Incremental runs match a single run over the whole range
- Budget truncation follows the user iteration order
"""

import pytest
import sys
import os
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from builders import USER_A, USER_B, USER_C, event, flat_snapshots, make_config, make_streams
from lprewards.distribution.runner import RunCoordinator, SkipReason
from lprewards.engine import decimal_math as dm
from lprewards.engine.decimal_math import ZERO
from lprewards.engine.errors import UpstreamUnavailable
from lprewards.engine.pools import Stream
from lprewards.engine.state import RunProgress, UserRewardState

FULL_BLOCK = Decimal("665.3333333333")


@pytest.fixture
def three_users():
    return make_streams({Stream.UNISWAP_XE: [
        event(10, USER_A, 100), event(20, USER_B, 200), event(30, USER_C, 300),
    ]})


def run(streams, target, progress=None, user_states=None, overrides=None):
    coordinator = RunCoordinator(make_config(overrides))
    progress = progress or RunProgress.initial(0, formula_update_block=0)
    return coordinator.run(target, streams, flat_snapshots(), progress, user_states)


class TestPreconditions:
    """Tests for runs that must not happen."""

    def test_disabled(self, three_users):
        """A disabled game does nothing."""
        progress = RunProgress(start_block=0, last_processed_block=0, run_enabled=False)
        result = run(three_users, 50, progress)
        assert result.skipped == SkipReason.RUN_DISABLED
        assert result.progress is progress
        assert result.deltas == {}

    def test_budget_exhausted(self, three_users):
        """A fully paid game does nothing."""
        progress = RunProgress(start_block=0, last_processed_block=0, cumulative_reward_paid=Decimal("4000000"))
        assert run(three_users, 50, progress).skipped == SkipReason.BUDGET_EXHAUSTED

    def test_no_new_blocks(self, three_users):
        """A target at or below the last processed block does nothing."""
        progress = RunProgress(start_block=0, last_processed_block=50)
        assert run(three_users, 50, progress).skipped == SkipReason.NO_NEW_BLOCKS
        assert run(three_users, 40, progress).skipped == SkipReason.NO_NEW_BLOCKS

    def test_before_game_start(self, three_users):
        """A target at or below the start block does nothing."""
        progress = RunProgress(start_block=100, last_processed_block=0)
        result = run(three_users, 100, progress, overrides={"game.start_block": 100})
        assert result.skipped == SkipReason.BEFORE_GAME_START
        assert not result.ran

    def test_missing_stream_raises(self, three_users):
        """Missing inputs abort the run before anything is computed."""
        del three_users[Stream.UNISWAP_VE]
        with pytest.raises(UpstreamUnavailable):
            run(three_users, 50)


class TestRun:
    """Tests for a completed run."""

    def test_single_user_total(self):
        """A sole depositor from block 10 earns 40 full blocks by block 50."""
        streams = make_streams({Stream.UNISWAP_XE: [event(10, USER_A, 100)]})
        result = run(streams, 50)
        assert result.ran
        assert result.deltas == {USER_A: FULL_BLOCK * 40}
        assert result.progress.last_processed_block == 50
        assert result.progress.cumulative_reward_paid == Decimal("26613.333333332")
        assert result.user_states[USER_A].last_processed_block == 50
        assert result.warnings == []

    def test_paid_matches_deltas(self, three_users):
        """The progress increment equals the sum of the deltas."""
        result = run(three_users, 60)
        assert result.total_granted == result.progress.cumulative_reward_paid
        assert all(delta > ZERO for delta in result.deltas.values())

    def test_rerun_is_idempotent(self, three_users):
        """Running again to the same target grants nothing."""
        first = run(three_users, 60)
        second = run(three_users, 60, first.progress, first.user_states)
        assert second.skipped == SkipReason.NO_NEW_BLOCKS
        assert second.progress == first.progress

    def test_incremental_matches_whole(self, three_users):
        """(0, 60] then (60, 80] equals (0, 80] per user."""
        first = run(three_users, 60)
        second = run(three_users, 80, first.progress, first.user_states)
        whole = run(three_users, 80)
        for user in (USER_A, USER_B, USER_C):
            assert second.user_states[user].cumulative_reward == whole.user_states[user].cumulative_reward
        assert second.progress.cumulative_reward_paid == whole.progress.cumulative_reward_paid

    def test_user_marker_ahead_of_progress(self, three_users):
        """A user already paid past the range is not paid again."""
        states = {USER_A: UserRewardState(address=USER_A, last_processed_block=60)}
        result = run(three_users, 60, user_states=states)
        assert result.deltas[USER_A] == ZERO
        assert result.user_states[USER_A].last_processed_block == 60

    def test_checksummed_depositor_paid(self):
        """A depositor whose events carry a checksummed address is paid in full."""
        mixed = USER_A.upper().replace("0X", "0x")
        streams = make_streams({Stream.UNISWAP_XE: [event(10, mixed, 100)]})
        result = run(streams, 50)
        assert result.deltas == {USER_A: FULL_BLOCK * 40}

    def test_checksummed_state_key_resumes(self):
        """Prior state keyed by a checksummed address is not paid twice."""
        streams = make_streams({Stream.UNISWAP_XE: [event(10, USER_A, 100)]})
        mixed = USER_A.upper().replace("0X", "0x")
        states = {mixed: UserRewardState(address=mixed, last_processed_block=50)}
        progress = RunProgress(start_block=0, last_processed_block=50, formula_update_block=0)
        result = run(streams, 60, progress, states)
        assert result.deltas == {USER_A: FULL_BLOCK * 10}
        assert result.user_states[USER_A].address == USER_A
        assert result.user_states[USER_A].last_processed_block == 60

    def test_old_formula_when_no_cutover(self):
        """Without a cutover rewards follow the decaying schedule."""
        streams = make_streams({Stream.UNISWAP_XE: [event(10, USER_A, 100)]})
        progress = RunProgress.initial(0)
        result = run(streams, 50, progress)
        assert ZERO < result.deltas[USER_A] < FULL_BLOCK * 40


class TestBudgetTruncation:
    """Tests for the user who exhausts the budget and those after."""

    def test_truncation_in_iteration_order(self, three_users):
        """A is paid in full, B gets the remainder, C gets zero."""
        unbounded = run(three_users, 60)
        full_a = unbounded.deltas[USER_A]
        full_b = unbounded.deltas[USER_B]
        budget = dm.add(full_a, dm.safe_div(full_b, Decimal(2)))

        result = run(three_users, 60, overrides={"game.max_budget": str(budget)})
        assert result.deltas[USER_A] == full_a
        assert result.deltas[USER_B] == dm.sub(budget, full_a)
        assert result.deltas[USER_C] == ZERO
        assert result.progress.cumulative_reward_paid == budget
        assert result.user_states[USER_C].last_processed_block == 60

    def test_next_run_skipped(self, three_users):
        """Once exhausted, the next run is a no-op."""
        unbounded = run(three_users, 60)
        budget = unbounded.deltas[USER_A]
        first = run(three_users, 60, overrides={"game.max_budget": str(budget)})
        second = run(three_users, 80, first.progress, first.user_states, overrides={"game.max_budget": str(budget)})
        assert second.skipped == SkipReason.BUDGET_EXHAUSTED


class TestUserOrder:
    """Tests for the deterministic user iteration order."""

    def test_streams_in_canonical_order(self):
        """Users are taken stream by stream, first appearance wins."""
        streams = make_streams({
            Stream.UNISWAP_XE: [event(1, USER_A, 1), event(2, USER_B, 1), event(3, USER_A, 1)],
            Stream.MOONISWAP_VE: [event(1, USER_C, 1), event(2, USER_B, 1)],
        })
        assert RunCoordinator.users_in_order(streams, 10) == [USER_B, USER_A, USER_C]

    def test_events_after_target_ignored(self):
        """Users appearing after the target are not visited."""
        streams = make_streams({Stream.UNISWAP_XV: [event(5, USER_A, 1), event(50, USER_B, 1)]})
        assert RunCoordinator.users_in_order(streams, 10) == [USER_A]


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
