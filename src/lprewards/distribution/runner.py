"""Run coordinator - advance the reward game to a new target block.

Key Features:
- Users are visited in a fixed order: the union of the six streams' users,
  stream by stream (uniswap XE, XV, VE then mooniswap XE, XV, VE)
- Each user's three pool rewards are summed and clamped by the budget
- Users after budget exhaustion are still advanced, with zero reward
- Precondition failures are a no-op result, never an exception
"""

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Mapping, Optional

from ..config.schema import Config
from ..engine import decimal_math as dm
from ..engine.budget import BudgetTracker
from ..engine.decimal_math import ZERO
from ..engine.events import EventSeries, SnapshotSeries
from ..engine.pools import STREAM_ORDER, Stream
from ..engine.rewards import RewardAccumulator, RunContext
from ..engine.state import RunProgress, UserRewardState
from ..validation.sanity_checks import SanityChecker, ValidationWarning

logger = logging.getLogger(__name__)


class SkipReason(Enum):
    """Why a run did nothing."""
    RUN_DISABLED = "run_disabled"
    BUDGET_EXHAUSTED = "budget_exhausted"
    NO_NEW_BLOCKS = "no_new_blocks"
    BEFORE_GAME_START = "before_game_start"


@dataclass
class RunResult:
    """Outcome of one run."""
    progress: RunProgress
    deltas: Dict[str, Decimal] = field(default_factory=dict)
    user_states: Dict[str, UserRewardState] = field(default_factory=dict)
    skipped: Optional[SkipReason] = None
    warnings: List[ValidationWarning] = field(default_factory=list)

    @property
    def ran(self) -> bool:
        return self.skipped is None

    @property
    def total_granted(self) -> Decimal:
        return dm.add(*self.deltas.values())


class RunCoordinator:
    """Single entry point the scheduler calls to advance rewards."""

    def __init__(self, config: Config):
        """
        Initialize the coordinator.

        Args:
            config: Reward configuration
        """
        self.config = config
        self.checker = SanityChecker(config)

    def check_preconditions(self, target_block: int, progress: RunProgress) -> Optional[SkipReason]:
        """Return the reason a run must not happen, or None if it may."""
        if not progress.run_enabled:
            return SkipReason.RUN_DISABLED
        if progress.budget_exhausted(self.config.game.max_budget):
            return SkipReason.BUDGET_EXHAUSTED
        if target_block <= progress.last_processed_block:
            return SkipReason.NO_NEW_BLOCKS
        if target_block <= progress.start_block:
            return SkipReason.BEFORE_GAME_START
        return None

    @staticmethod
    def users_in_order(streams: Mapping[Stream, EventSeries], target_block: int) -> List[str]:
        """
        Deterministic user iteration order for a run.

        Each stream contributes its users in first-seen-in-reverse order; the
        streams are joined in canonical order keeping each user's first
        appearance.
        """
        ordered: Dict[str, None] = {}
        for stream in STREAM_ORDER:
            for user_id in streams[stream].unique_users_up_to(target_block):
                if user_id not in ordered:
                    ordered[user_id] = None
        return list(ordered)

    def _formula_update_block(self, progress: RunProgress) -> Optional[int]:
        if progress.formula_update_block is not None:
            return progress.formula_update_block
        return self.config.game.formula_update_block

    def run(
        self,
        target_block: int,
        streams: Mapping[Stream, EventSeries],
        snapshots: SnapshotSeries,
        progress: RunProgress,
        user_states: Optional[Mapping[str, UserRewardState]] = None,
    ) -> RunResult:
        """
        Compute reward deltas for all users up to ``target_block``.

        Args:
            target_block: Safe chain height to advance to (inclusive)
            streams: Event series for all six (protocol, pool) streams
            snapshots: Total-liquidity snapshots
            progress: Progress before this run
            user_states: Prior per-user states; unknown users start at zero

        Returns:
            RunResult with deltas, advanced user states and new progress, or
            a skipped result with unchanged progress

        Raises:
            UpstreamUnavailable: If a stream or the snapshot series is missing
        """
        skip = self.check_preconditions(target_block, progress)
        if skip is not None:
            logger.info("Reward run skipped at target block %d: %s", target_block, skip.value)
            return RunResult(progress=progress, skipped=skip)

        context = RunContext.build(
            self.config,
            streams,
            snapshots,
            game_start_block=progress.start_block,
            formula_update_block=self._formula_update_block(progress),
        )
        accumulator = RewardAccumulator(context)
        budget = BudgetTracker(self.config.game.max_budget, progress.cumulative_reward_paid)
        user_states = {address.lower(): state for address, state in (user_states or {}).items()}

        users = self.users_in_order(streams, target_block)
        logger.info(
            "Begin of reward calculation: blocks (%d, %d], %d users",
            progress.last_processed_block, target_block, len(users),
        )

        deltas: Dict[str, Decimal] = {}
        new_states: Dict[str, UserRewardState] = {}
        for address in users:
            state = user_states.get(address) or UserRewardState(address=address)
            if budget.exhausted:
                granted = ZERO
            else:
                rewards = accumulator.accumulate_all_pools(address, state.last_processed_block, target_block)
                granted = budget.grant(dm.add(*rewards.values()))
            deltas[address] = granted
            new_states[address] = state.advanced(max(state.last_processed_block, target_block), granted)

        new_progress = replace(
            progress,
            last_processed_block=target_block,
            cumulative_reward_paid=budget.paid,
        )
        warnings = self.checker.check_run_result(progress, new_progress, deltas)
        for warning in warnings:
            logger.warning("%s: %s (%s)", warning.category, warning.message, warning.details)

        logger.info(
            "End of reward calculation: granted %s, paid %s of %s",
            budget.granted_this_run, budget.paid, self.config.game.max_budget,
        )
        return RunResult(
            progress=new_progress,
            deltas=deltas,
            user_states=new_states,
            warnings=warnings,
        )
