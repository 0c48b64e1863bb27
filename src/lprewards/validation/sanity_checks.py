"""Sanity checks for reward configuration and run results."""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Mapping, Optional, Sequence, Tuple

from ..config.schema import Config
from ..engine import decimal_math as dm
from ..engine.decimal_math import ZERO
from ..engine.state import RunProgress


@dataclass
class ValidationWarning:
    """A validation warning with severity and message."""
    severity: str  # "warning" or "error"
    category: str  # e.g., "input", "budget", "progress"
    message: str
    details: Optional[str] = None


class SanityChecker:
    """Run sanity checks on configuration and run results."""

    def __init__(self, config: Config):
        """Initialize with configuration."""
        self.config = config

    def check_config_inputs(self) -> List[ValidationWarning]:
        """
        Check configuration inputs for implausible values.

        Returns:
            List of validation warnings
        """
        warnings = []
        tiers = self.config.tiers

        # Tier continuity at both band edges
        for edge, threshold, rate in (
            ("low", tiers.low_threshold, tiers.floor_rate),
            ("high", tiers.high_threshold, tiers.cap_rate),
        ):
            band_value = dm.safe_div(threshold, tiers.band_divisor)
            if band_value != rate:
                warnings.append(ValidationWarning(
                    severity="warning",
                    category="input",
                    message=f"Liquidity tier jumps at the {edge} threshold",
                    details=f"{threshold} / {tiers.band_divisor} = {band_value}, rate = {rate}"
                ))

        if tiers.floor_rate > tiers.cap_rate:
            warnings.append(ValidationWarning(
                severity="error",
                category="input",
                message="Floor rate exceeds cap rate",
                details=f"Floor: {tiers.floor_rate}, Cap: {tiers.cap_rate}"
            ))

        # Full-rate emission over the game should be coverable by the budget
        game = self.config.game
        if tiers.cap_rate > game.max_budget:
            warnings.append(ValidationWarning(
                severity="warning",
                category="budget",
                message="Cap rate exceeds the total budget",
                details=f"Cap: {tiers.cap_rate}, Budget: {game.max_budget}"
            ))

        cutover = game.formula_update_block
        if cutover is not None and cutover > game.end_block:
            warnings.append(ValidationWarning(
                severity="warning",
                category="input",
                message="Formula cutover falls after the game end",
                details=f"Cutover: {cutover}, game end: {game.end_block}"
            ))

        # Same pair address on both protocols is almost certainly a typo
        uniswap = self.config.protocols.uniswap.model_dump()
        mooniswap = self.config.protocols.mooniswap.model_dump()
        shared = sorted(set(uniswap.values()) & set(mooniswap.values()))
        if shared:
            warnings.append(ValidationWarning(
                severity="error",
                category="input",
                message="Pair address configured on both protocols",
                details=", ".join(shared)
            ))

        return warnings

    def check_run_result(
        self,
        prior: RunProgress,
        progress: RunProgress,
        deltas: Mapping[str, Decimal],
    ) -> List[ValidationWarning]:
        """
        Check a finished run for budget and progress violations.

        Args:
            prior: Progress before the run
            progress: Progress after the run
            deltas: Reward granted per user in the run

        Returns:
            List of validation warnings
        """
        warnings = []
        max_budget = self.config.game.max_budget

        if progress.cumulative_reward_paid > max_budget:
            warnings.append(ValidationWarning(
                severity="error",
                category="budget",
                message="Cumulative reward exceeds the budget",
                details=f"Paid: {progress.cumulative_reward_paid}, Budget: {max_budget}"
            ))

        negative = [address for address, amount in deltas.items() if amount < ZERO]
        if negative:
            warnings.append(ValidationWarning(
                severity="error",
                category="budget",
                message=f"{len(negative)} users received a negative reward",
                details=", ".join(negative[:5])
            ))

        granted = dm.add(*deltas.values())
        increment = dm.sub(progress.cumulative_reward_paid, prior.cumulative_reward_paid)
        if granted != increment:
            warnings.append(ValidationWarning(
                severity="error",
                category="budget",
                message="Granted rewards do not match the progress increment",
                details=f"Granted: {granted}, Increment: {increment}"
            ))

        if progress.last_processed_block <= prior.last_processed_block:
            warnings.append(ValidationWarning(
                severity="error",
                category="progress",
                message="Progress marker did not advance",
                details=f"Before: {prior.last_processed_block}, After: {progress.last_processed_block}"
            ))

        return warnings


def validate_run_history(
    config: Config,
    runs: Sequence[Tuple[RunProgress, RunProgress, Mapping[str, Decimal]]],
) -> List[ValidationWarning]:
    """
    Validate a sequence of runs.

    Args:
        config: Reward configuration
        runs: (prior progress, new progress, deltas) per run, in order

    Returns:
        List of all validation warnings
    """
    checker = SanityChecker(config)
    warnings = []

    warnings.extend(checker.check_config_inputs())

    for prior, progress, deltas in runs:
        warnings.extend(checker.check_run_result(prior, progress, deltas))

    # Consecutive runs must chain
    for (_, previous, _), (prior, _, _) in zip(runs, runs[1:]):
        if prior != previous:
            warnings.append(ValidationWarning(
                severity="error",
                category="progress",
                message="Run did not start from the previous run's progress",
                details=f"Expected block {previous.last_processed_block}, got {prior.last_processed_block}"
            ))

    total = dm.add(*(amount for _, _, deltas in runs for amount in deltas.values()))
    if total > config.game.max_budget:
        warnings.append(ValidationWarning(
            severity="error",
            category="budget",
            message="Rewards granted across runs exceed the budget",
            details=f"Granted: {total}, Budget: {config.game.max_budget}"
        ))

    return warnings
