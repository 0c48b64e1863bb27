"""Progress markers owned by the caller and advanced by each run.

RunProgress Semantics:
- start_block: game start block
- last_processed_block: high-water mark of the previous successful run
- formula_update_block: cutover block of the decay formula (None = never)
- cumulative_reward_paid: total granted so far, never above the budget
- run_enabled: operator switch; a disabled run is a no-op

UserRewardState.last_processed_block is the block up to which this user has
been paid; a run only accounts for (last_processed_block, target_block].
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from . import decimal_math as dm
from .decimal_math import ZERO


@dataclass(frozen=True)
class RunProgress:
    """Global progress of the reward game."""
    start_block: int
    last_processed_block: int
    formula_update_block: Optional[int] = None
    cumulative_reward_paid: Decimal = ZERO
    run_enabled: bool = True

    def budget_exhausted(self, max_budget: Decimal) -> bool:
        return self.cumulative_reward_paid >= max_budget

    @classmethod
    def initial(cls, start_block: int, formula_update_block: Optional[int] = None) -> "RunProgress":
        """Progress of a game that has not run yet."""
        return cls(
            start_block=start_block,
            last_processed_block=start_block,
            formula_update_block=formula_update_block,
        )


@dataclass(frozen=True)
class UserRewardState:
    """Per-user payout marker."""
    address: str
    last_processed_block: int = 0
    cumulative_reward: Decimal = ZERO

    def __post_init__(self):
        object.__setattr__(self, "address", self.address.lower())

    def advanced(self, block: int, reward: Decimal) -> "UserRewardState":
        """State after being paid ``reward`` for blocks up to ``block``."""
        return UserRewardState(
            address=self.address,
            last_processed_block=block,
            cumulative_reward=dm.add(self.cumulative_reward, reward),
        )
