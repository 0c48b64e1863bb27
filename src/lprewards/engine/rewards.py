"""Block-by-block reward accumulation for one (user, pool) pair.

Key Concepts:
- A pool is one trading pair; its events come from two protocol streams
- user_tokens = balance / total_supply * reserve_usd / 2, summed over protocols
- user_time (vesting clock) = blocks since the user's position last reached zero
- The denominator sum_u(Vu * tokens_u) depends only on pool state at a block,
  so it is memoized per block and shared by every user of the run
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, List, Mapping, Optional

from ..config.schema import Config
from . import decimal_math as dm
from .decimal_math import ZERO
from .errors import DataGap, UpstreamUnavailable
from .events import EventSeries, LiquidityPositionEvent, SnapshotSeries, require, unique_in_reverse_scan
from .formula import VestingFormula
from .pools import POOL_ORDER, PROTOCOL_ORDER, STREAM_ORDER, Pool, Protocol, Stream

logger = logging.getLogger(__name__)

LatestEvents = Dict[Protocol, Optional[LiquidityPositionEvent]]


class PoolEvents:
    """Both protocol streams of one pool, with a run-scoped per-user index."""

    def __init__(self, pool: Pool, streams: Mapping[Protocol, EventSeries]):
        self.pool = pool
        self.streams = {protocol: streams[protocol] for protocol in PROTOCOL_ORDER}
        self._users: Dict[str, "PoolEvents"] = {}

    def for_user(self, user_id: str) -> "PoolEvents":
        """The user's own events in this pool."""
        user_events = self._users.get(user_id)
        if user_events is None:
            user_events = PoolEvents(
                self.pool,
                {protocol: series.for_user(user_id) for protocol, series in self.streams.items()},
            )
            self._users[user_id] = user_events
        return user_events

    def latest(self, block: int) -> LatestEvents:
        """Most recent event of each protocol at or before ``block``."""
        return {protocol: series.latest_at_or_before(block) for protocol, series in self.streams.items()}

    def first_block(self) -> Optional[int]:
        blocks = [s.first_block for s in self.streams.values() if s.first_block is not None]
        return min(blocks) if blocks else None

    def unique_users_up_to(self, block: int) -> List[str]:
        """
        Depositors seen at or before ``block``, deduplicated across protocols.

        Each protocol is deduplicated on its own, the results are concatenated
        in protocol order and deduplicated again with the same rule, so a user
        present on both protocols takes their position from the later one.
        """
        combined: List[str] = []
        for series in self.streams.values():
            combined.extend(series.unique_users_up_to(block))
        return unique_in_reverse_scan(combined)


class DenominatorCache:
    """Block-keyed memo of one pool's vesting-weighted token sum.

    Lives for one run over one pool and is never persisted.
    """

    def __init__(self):
        self._values: Dict[int, Decimal] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, block: int) -> bool:
        return block in self._values

    def get(self, block: int) -> Optional[Decimal]:
        return self._values.get(block)

    def store(self, block: int, value: Decimal) -> None:
        """Store a value; the first value stored for a block is kept."""
        self._values.setdefault(block, value)

    def get_or_compute(self, block: int, compute: Callable[[], Decimal]) -> Decimal:
        """Return the cached value for ``block``, computing and storing it on a miss."""
        value = self._values.get(block)
        if value is not None:
            self.hits += 1
            return value
        self.misses += 1
        value = compute()
        self.store(block, value)
        return value


@dataclass
class RunContext:
    """Everything one run needs, including its private denominator caches.

    A fresh context is built per run; contexts are never shared between runs.
    """
    game_start_block: int
    formula_update_block: Optional[int]
    pools: Dict[Pool, PoolEvents]
    snapshots: SnapshotSeries
    formula: VestingFormula
    denominator_places: int = 8
    caches: Dict[Pool, DenominatorCache] = field(
        default_factory=lambda: {pool: DenominatorCache() for pool in POOL_ORDER}
    )

    @classmethod
    def build(
        cls,
        config: Config,
        streams: Mapping[Stream, EventSeries],
        snapshots: SnapshotSeries,
        game_start_block: Optional[int] = None,
        formula_update_block: Optional[int] = None,
    ) -> "RunContext":
        """
        Build a run context from the six event streams.

        Raises:
            UpstreamUnavailable: If a stream or the snapshot series is missing
        """
        missing = [stream.name for stream in STREAM_ORDER if streams.get(stream) is None]
        if missing:
            raise UpstreamUnavailable(f"Missing event streams: {', '.join(missing)}")
        if snapshots is None:
            raise UpstreamUnavailable("Missing liquidity snapshot series")

        pools = {
            pool: PoolEvents(pool, {protocol: streams[Stream.of(protocol, pool)] for protocol in PROTOCOL_ORDER})
            for pool in POOL_ORDER
        }
        return cls(
            game_start_block=config.game.start_block if game_start_block is None else game_start_block,
            formula_update_block=formula_update_block,
            pools=pools,
            snapshots=snapshots,
            formula=VestingFormula.from_config(config),
            denominator_places=config.precision.denominator_places,
        )


class RewardAccumulator:
    """Drive the per-block reward loop for (user, pool) pairs of one run."""

    def __init__(self, context: RunContext):
        """
        Initialize the accumulator.

        Args:
            context: Run context holding inputs and denominator caches
        """
        self.context = context
        self.formula = context.formula

    @staticmethod
    def user_game_time(user_events: PoolEvents, game_time: int, block: int) -> int:
        """
        Continuous participation time of a user at ``block``.

        For each protocol, find where the user's trailing non-zero position
        began (a protocol without events, or whose latest event is a
        withdrawal, counts as ``block``). The earliest of these is the start
        of the vesting clock. Capped at ``game_time``.
        """
        earliest = block
        for series in user_events.streams.values():
            start = series.vesting_start(block)
            if start is not None and start < earliest:
                earliest = start
        return min(block - earliest, game_time)

    def user_tokens(self, pool_latest: LatestEvents, user_latest: LatestEvents) -> Decimal:
        """
        USD-equivalent token amount of a user in one pool.

        Formula: tokens = balance / total_supply * reserve_usd / 2, per protocol

        A protocol where either the pool or the user has no event, or where a
        needed field is malformed, contributes zero.
        """
        total = ZERO
        for protocol in PROTOCOL_ORDER:
            pool_event = pool_latest.get(protocol)
            user_event = user_latest.get(protocol)
            if pool_event is None or user_event is None:
                continue
            try:
                balance = require(user_event.lp_balance, "lp_balance")
                supply = require(pool_event.lp_total_supply, "lp_total_supply")
                reserve = require(pool_event.reserve_usd, "reserve_usd")
            except DataGap as exc:
                logger.debug("Zero tokens on %s for %s: %s", protocol.value, user_event.user_id, exc)
                continue
            share = dm.safe_div(balance, supply, self.formula.scale)
            total = dm.add(total, dm.safe_div(dm.mul(share, reserve), Decimal(2), self.formula.scale))
        return total

    def total_weighted_tokens(self, pool: Pool, pool_latest: LatestEvents, game_time: int, block: int) -> Decimal:
        """
        Vesting-weighted token sum over all depositors of ``pool`` at ``block``.

        Each term Vi * tokens is rounded to ``denominator_places``. Depositors
        with no vesting time or no tokens contribute nothing.
        """
        pool_events = self.context.pools[pool]
        game = Decimal(game_time)
        total = ZERO
        for user_id in pool_events.unique_users_up_to(block):
            user_events = pool_events.for_user(user_id)
            user_time = self.user_game_time(user_events, game_time, block)
            if user_time <= 0:
                continue
            tokens = self.user_tokens(pool_latest, user_events.latest(block))
            if tokens == ZERO:
                continue
            weighted = dm.mul(self.formula.vesting_coefficient(Decimal(user_time), game), tokens)
            total = dm.add(total, dm.quantize(weighted, self.context.denominator_places))
        return total

    def block_reward(self, user_id: str, pool: Pool, block: int) -> Decimal:
        """
        Reward of one user in one pool for a single block.

        Returns zero when the block is before the game, the pool or user has no
        event yet, the user's vesting clock is zero, or the user holds nothing.

        Raises:
            DataGap: If no usable liquidity snapshot is in force at the block
        """
        context = self.context
        pool_events = context.pools[pool]

        pool_latest = pool_events.latest(block)
        if all(event is None for event in pool_latest.values()):
            return ZERO

        game_time = block - context.game_start_block
        if game_time <= 0:
            return ZERO

        user_events = pool_events.for_user(user_id)
        user_latest = user_events.latest(block)
        if all(event is None for event in user_latest.values()):
            return ZERO

        user_time = self.user_game_time(user_events, game_time, block)
        if user_time <= 0:
            return ZERO

        tokens = self.user_tokens(pool_latest, user_latest)
        if tokens == ZERO:
            return ZERO

        denominator = context.caches[pool].get_or_compute(
            block, lambda: self.total_weighted_tokens(pool, pool_latest, game_time, block)
        )

        liquidity = context.snapshots.liquidity_at(block)
        return self.formula.block_reward(
            user_time=Decimal(user_time),
            game_time=Decimal(game_time),
            liquidity=liquidity,
            user_tokens=tokens,
            total_weighted_tokens=denominator,
            updated_formula=VestingFormula.uses_updated_formula(block, context.formula_update_block),
        )

    def accumulate(self, user_id: str, pool: Pool, from_block: int, to_block: int) -> Decimal:
        """
        Incremental reward of a user in one pool over (from_block, to_block].

        Blocks before the game start and before the user's first event are
        skipped. A data gap at any block contributes zero for that block only.

        Args:
            user_id: Normalized user address
            pool: Pool to accumulate over
            from_block: Last block already paid (exclusive)
            to_block: Target block (inclusive)

        Returns:
            Sum of non-negative block rewards
        """
        user_events = self.context.pools[pool].for_user(user_id)
        first_block = user_events.first_block()
        if first_block is None:
            return ZERO

        start = max(from_block + 1, self.context.game_start_block + 1, first_block)
        total = ZERO
        for block in range(start, to_block + 1):
            try:
                reward = self.block_reward(user_id, pool, block)
            except DataGap as exc:
                logger.debug("No reward for %s in %s at block %d: %s", user_id, pool.value, block, exc)
                continue
            total = dm.add(total, reward)
        return total

    def accumulate_all_pools(self, user_id: str, from_block: int, to_block: int) -> Dict[Pool, Decimal]:
        """Incremental reward of a user in each of the three pools."""
        return {pool: self.accumulate(user_id, pool, from_block, to_block) for pool in POOL_ORDER}
