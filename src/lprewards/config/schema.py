"""Pydantic schema for configuration validation."""

import hashlib
import json
import re
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")


class Game(BaseModel):
    """Reward game window and budget."""
    start_block: int = Field(ge=0, description="Block the game starts at")
    duration_blocks: int = Field(gt=1, description="Total game duration T in blocks")
    formula_update_block: Optional[int] = Field(
        default=None, ge=0,
        description="Block from which the post-cutover decay formula applies (None = never)"
    )
    max_budget: Decimal = Field(gt=0, description="Total reward tokens distributed over the game")
    block_offset: int = Field(ge=0, default=5, description="Confirmation offset subtracted from chain height")

    @property
    def end_block(self) -> int:
        """Last block covered by the game."""
        return self.start_block + self.duration_blocks


class Tiers(BaseModel):
    """Liquidity tier schedule for the total reward rate."""
    low_threshold: Decimal = Field(gt=0, description="Total liquidity (USD) below which the floor rate applies")
    high_threshold: Decimal = Field(gt=0, description="Total liquidity (USD) above which the cap rate applies")
    floor_rate: Decimal = Field(gt=0, description="Reward rate below the low threshold")
    cap_rate: Decimal = Field(gt=0, description="Reward rate above the high threshold")
    band_divisor: Decimal = Field(gt=0, description="Divisor applied to liquidity inside the band")

    @field_validator('high_threshold')
    @classmethod
    def validate_high_threshold(cls, v, info):
        """Ensure low < high threshold."""
        if 'low_threshold' in info.data and v <= info.data['low_threshold']:
            raise ValueError("high_threshold must be greater than low_threshold")
        return v


class Precision(BaseModel):
    """Decimal rounding policy."""
    scale: int = Field(ge=0, le=30, default=10, description="Fractional digits kept by division and power")
    denominator_places: int = Field(ge=0, le=30, default=8, description="Rounding of each weighted-token term")
    vesting_exponent: int = Field(gt=0, default=6, description="Exponent of the vesting coefficient")


class PairAddresses(BaseModel):
    """Pair contract addresses for the three markets of one protocol."""
    XE: str
    XV: str
    VE: str

    @field_validator('XE', 'XV', 'VE', mode='before')
    @classmethod
    def normalize(cls, v):
        """Lower-case and check address shape."""
        v = str(v).lower()
        if not _ADDRESS_RE.match(v):
            raise ValueError(f"Invalid pair address: {v}")
        return v


class Protocols(BaseModel):
    """Pair addresses per protocol."""
    uniswap: PairAddresses
    mooniswap: PairAddresses


class TokenOrder(BaseModel):
    """Canonical token order: token0 is the non-quote asset."""
    quote_symbols: List[str] = Field(default_factory=lambda: ["ETH", "WETH"])
    swapped_pairs: List[Tuple[str, str]] = Field(default_factory=lambda: [("VAL", "XOR")])

    def needs_swap(self, token0: str, token1: str) -> bool:
        """Whether a pair reported as (token0, token1) must be swapped."""
        if token0 in self.quote_symbols:
            return True
        return (token0, token1) in self.swapped_pairs


class Config(BaseModel):
    """Complete configuration for the reward engine."""
    game: Game
    tiers: Tiers
    precision: Precision = Field(default_factory=Precision)
    protocols: Protocols
    token_order: TokenOrder = Field(default_factory=TokenOrder)

    @model_validator(mode='after')
    def validate_cutover(self):
        """The formula cutover cannot precede the game start."""
        cutover = self.game.formula_update_block
        if cutover is not None and cutover < self.game.start_block:
            raise ValueError(
                f"formula_update_block {cutover} precedes start_block {self.game.start_block}"
            )
        return self

    def compute_hash(self) -> str:
        """Compute config hash for reproducibility."""
        config_dict = self.model_dump(mode="json")
        config_str = json.dumps(config_dict, sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Create config from dictionary."""
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return self.model_dump()
