"""Tests for configuration and run sanity checks."""

import pytest
import sys
import os
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from builders import USER_A, USER_B, make_config
from lprewards.config.loader import load_config
from lprewards.engine.state import RunProgress
from lprewards.validation import SanityChecker, validate_run_history


def progress(last, paid="0"):
    return RunProgress(start_block=0, last_processed_block=last, cumulative_reward_paid=Decimal(paid))


class TestConfigChecks:
    """Tests for implausible configuration values."""

    def test_defaults_are_clean(self):
        """The packaged defaults raise no findings."""
        assert SanityChecker(load_config()).check_config_inputs() == []

    def test_floor_above_cap(self):
        """Inverted rates are an error."""
        config = make_config({"tiers.floor_rate": "3000000"})
        warnings = SanityChecker(config).check_config_inputs()
        assert any(w.severity == "error" and "Floor rate" in w.message for w in warnings)

    def test_tier_jump(self):
        """A divisor that breaks continuity is reported."""
        config = make_config({"tiers.band_divisor": "10"})
        categories = [w.message for w in SanityChecker(config).check_config_inputs()]
        assert any("jumps at the low threshold" in m for m in categories)
        assert any("jumps at the high threshold" in m for m in categories)

    def test_cutover_after_game_end(self):
        """A cutover that never happens is a warning."""
        config = make_config({"game.formula_update_block": 5000})
        warnings = SanityChecker(config).check_config_inputs()
        assert any("after the game end" in w.message for w in warnings)

    def test_shared_pair_address(self):
        """The same pair on both protocols is an error."""
        config = load_config()
        config = make_config({"protocols.mooniswap.XE": config.protocols.uniswap.XE})
        warnings = SanityChecker(config).check_config_inputs()
        assert any(w.category == "input" and w.severity == "error" for w in warnings)


class TestRunChecks:
    """Tests for finished-run checks."""

    def test_clean_run(self):
        """Consistent progress and deltas raise nothing."""
        checker = SanityChecker(make_config())
        deltas = {USER_A: Decimal("1.5"), USER_B: Decimal("2.5")}
        assert checker.check_run_result(progress(0), progress(50, "4"), deltas) == []

    def test_mismatched_increment(self):
        """Deltas must add up to the progress increment."""
        checker = SanityChecker(make_config())
        warnings = checker.check_run_result(progress(0), progress(50, "5"), {USER_A: Decimal(4)})
        assert [w.category for w in warnings] == ["budget"]

    def test_overrun_and_negative(self):
        """Overpayment and negative deltas are errors."""
        checker = SanityChecker(make_config({"game.max_budget": "10"}))
        deltas = {USER_A: Decimal(12), USER_B: Decimal(-1)}
        warnings = checker.check_run_result(progress(0), progress(50, "11"), deltas)
        messages = [w.message for w in warnings]
        assert any("exceeds the budget" in m for m in messages)
        assert any("negative reward" in m for m in messages)

    def test_marker_not_advanced(self):
        """Progress must move forward."""
        checker = SanityChecker(make_config())
        warnings = checker.check_run_result(progress(50), progress(50), {})
        assert [w.category for w in warnings] == ["progress"]


class TestRunHistory:
    """Tests for validating a sequence of runs."""

    def test_chained_runs(self):
        """Runs that start where the previous ended are clean."""
        runs = [
            (progress(0), progress(50, "3"), {USER_A: Decimal(3)}),
            (progress(50, "3"), progress(80, "5"), {USER_A: Decimal(2)}),
        ]
        assert validate_run_history(make_config(), runs) == []

    def test_broken_chain(self):
        """A run starting from stale progress is reported."""
        runs = [
            (progress(0), progress(50, "3"), {USER_A: Decimal(3)}),
            (progress(0), progress(80, "2"), {USER_A: Decimal(2)}),
        ]
        warnings = validate_run_history(make_config(), runs)
        assert any("previous run" in w.message for w in warnings)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
