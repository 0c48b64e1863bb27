"""Vesting-weighted reward formula.

Key Concepts:
- Liquidity tier: L(liq) = floor below low threshold, cap above high threshold, liq / 12 in between
- Decay schedule: p(t, liq) = 2 * (L(liq) / 3) * (T - t - 1) / T^2
- Vesting coefficient: Vi(ti, t) = (1 + ti / t)^6
- Per-block reward: Rm = p(t, liq) * (Vi * user_tokens / sum_u(Vu * tokens_u))

Before the formula cutover block, p() is evaluated at t = game time; from the
cutover block on it is evaluated at t = 1. The choice is made per block.
"""

from decimal import Decimal
from typing import Optional

from ..config.schema import Config
from . import decimal_math as dm
from .pools import POOL_ORDER


class VestingFormula:
    """Pure reward formula for one block of one pool."""

    def __init__(
        self,
        duration_blocks: int,
        low_threshold: Decimal,
        high_threshold: Decimal,
        floor_rate: Decimal,
        cap_rate: Decimal,
        band_divisor: Decimal = Decimal(12),
        vesting_exponent: int = 6,
        scale: int = dm.SCALE,
    ):
        """
        Initialize the formula.

        Args:
            duration_blocks: Total game duration T in blocks
            low_threshold: Liquidity below which the floor rate applies
            high_threshold: Liquidity above which the cap rate applies
            floor_rate: Reward rate below the low threshold
            cap_rate: Reward rate above the high threshold
            band_divisor: Divisor applied to liquidity between the thresholds
            vesting_exponent: Exponent of the vesting coefficient
            scale: Fractional digits kept by division and power
        """
        self.duration_blocks = Decimal(duration_blocks)
        self.low_threshold = low_threshold
        self.high_threshold = high_threshold
        self.floor_rate = floor_rate
        self.cap_rate = cap_rate
        self.band_divisor = band_divisor
        self.vesting_exponent = vesting_exponent
        self.scale = scale
        self.pool_count = Decimal(len(POOL_ORDER))

    @classmethod
    def from_config(cls, config: Config) -> "VestingFormula":
        """Build the formula from validated configuration."""
        return cls(
            duration_blocks=config.game.duration_blocks,
            low_threshold=config.tiers.low_threshold,
            high_threshold=config.tiers.high_threshold,
            floor_rate=config.tiers.floor_rate,
            cap_rate=config.tiers.cap_rate,
            band_divisor=config.tiers.band_divisor,
            vesting_exponent=config.precision.vesting_exponent,
            scale=config.precision.scale,
        )

    def liquidity_tier(self, liquidity: Decimal) -> Decimal:
        """
        Total reward rate across the three pools for a given total liquidity.

        Args:
            liquidity: Total USD liquidity across all pools

        Returns:
            Floor rate, cap rate, or liquidity / band_divisor inside the band
        """
        if liquidity < self.low_threshold:
            return self.floor_rate
        if liquidity > self.high_threshold:
            return self.cap_rate
        return dm.safe_div(liquidity, self.band_divisor, self.scale)

    def decay(self, t: Decimal, liquidity: Decimal) -> Decimal:
        """
        Reward at time t for one pool.

        Formula: p(t) = 2 * (L / 3) * (T - t - 1) / T^2

        Args:
            t: Game time in blocks (or 1 after the cutover)
            liquidity: Total USD liquidity across all pools

        Returns:
            Pool reward for one block; negative when t >= T - 1
        """
        rate = dm.safe_div(self.liquidity_tier(liquidity), self.pool_count, self.scale)
        remaining = dm.sub(dm.sub(self.duration_blocks, t), dm.ONE)
        numerator = dm.mul(dm.mul(Decimal(2), rate), remaining)
        return dm.safe_div(numerator, dm.mul(self.duration_blocks, self.duration_blocks), self.scale)

    def vesting_coefficient(self, user_time: Decimal, game_time: Decimal) -> Decimal:
        """
        Vesting coefficient rewarding long continuous participation.

        Formula: Vi = (1 + ti / t)^6, with ti capped at t

        Args:
            user_time: Blocks of continuous liquidity provision by the user
            game_time: Blocks elapsed since the game started

        Returns:
            1 at user_time = 0, growing to 2^6 at user_time = game_time
        """
        user_time = dm.dmin(user_time, game_time)
        ratio = dm.safe_div(user_time, game_time, self.scale)
        return dm.power(dm.add(dm.ONE, ratio), self.vesting_exponent, self.scale)

    @staticmethod
    def uses_updated_formula(block: int, formula_update_block: Optional[int]) -> bool:
        """Whether ``block`` falls at or after the formula cutover."""
        return formula_update_block is not None and formula_update_block <= block

    def block_reward(
        self,
        user_time: Decimal,
        game_time: Decimal,
        liquidity: Decimal,
        user_tokens: Decimal,
        total_weighted_tokens: Decimal,
        updated_formula: bool,
    ) -> Decimal:
        """
        Reward of one user for one block of one pool.

        Formula: Rm = p(t) * (Vi(ti, t) * tokens / sum_u(Vu * tokens_u))

        Args:
            user_time: User's vesting clock in blocks
            game_time: Blocks since game start
            liquidity: Total USD liquidity in force at the block
            user_tokens: User's USD-equivalent token amount in the pool
            total_weighted_tokens: Vesting-weighted token sum over all depositors
            updated_formula: Evaluate p() at t = 1 instead of game time

        Returns:
            Non-negative block reward
        """
        t = dm.ONE if updated_formula else game_time
        weighted = dm.mul(self.vesting_coefficient(user_time, game_time), user_tokens)
        share = dm.safe_div(weighted, total_weighted_tokens, self.scale)
        return dm.floor_zero(dm.mul(self.decay(t, liquidity), share))
