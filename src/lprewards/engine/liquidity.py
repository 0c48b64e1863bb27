"""Liquidity views derived from event series.

- LiquidityShare: a user's token0/token1 holdings in one pair across both
  protocols and their share of the pair's combined token0 reserve
- build_liquidity_snapshot: total USD liquidity across all six pools at a
  block, the input of the liquidity tier lookup
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping

from . import decimal_math as dm
from .decimal_math import ZERO
from .errors import DataGap
from .events import EventSeries, LiquiditySnapshot, normalize_address, require
from .pools import PROTOCOL_ORDER, STREAM_ORDER, Stream
from .rewards import PoolEvents

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LiquidityShare:
    """A user's position in one pair, summed over protocols."""
    token0: Decimal
    token1: Decimal
    percent: Decimal

    @classmethod
    def empty(cls) -> "LiquidityShare":
        return cls(token0=ZERO, token1=ZERO, percent=ZERO)


def user_liquidity_share(pool_events: PoolEvents, address: str, block: int) -> LiquidityShare:
    """
    Compute a user's liquidity in one pair at ``block``.

    Formula (per protocol p): share_p = balance_p / total_supply_p
        token0 = sum_p(share_p * reserve0_p), token1 = sum_p(share_p * reserve1_p)
        percent = token0 / sum_p(reserve0_p)

    Args:
        pool_events: Both protocol streams of the pair
        address: User address (validated and lower-cased)
        block: Block to evaluate at

    Returns:
        LiquidityShare; all zeros when the user holds nothing on either protocol

    Raises:
        ValueError: If the address is malformed
    """
    user_id = normalize_address(address)
    pool_latest = pool_events.latest(block)
    user_latest = pool_events.for_user(user_id).latest(block)

    balances = {}
    for protocol in PROTOCOL_ORDER:
        event = user_latest[protocol]
        balances[protocol] = event.lp_balance if event is not None and event.lp_balance is not None else ZERO
    if all(balance == ZERO for balance in balances.values()):
        return LiquidityShare.empty()

    token0 = ZERO
    token1 = ZERO
    pair_reserve0 = ZERO
    for protocol in PROTOCOL_ORDER:
        pool_event = pool_latest[protocol]
        if pool_event is None:
            continue
        try:
            reserve0 = require(pool_event.reserve0, "reserve0")
            reserve1 = require(pool_event.reserve1, "reserve1")
            supply = require(pool_event.lp_total_supply, "lp_total_supply")
        except DataGap as exc:
            logger.debug("Skipping %s in %s liquidity share: %s", protocol.value, pool_events.pool.value, exc)
            continue
        pair_reserve0 = dm.add(pair_reserve0, reserve0)
        share = dm.safe_div(balances[protocol], supply)
        token0 = dm.add(token0, dm.mul(share, reserve0))
        token1 = dm.add(token1, dm.mul(share, reserve1))

    return LiquidityShare(token0=token0, token1=token1, percent=dm.safe_div(token0, pair_reserve0))


def build_liquidity_snapshot(block: int, streams: Mapping[Stream, EventSeries]) -> LiquiditySnapshot:
    """
    Sum the USD reserves of all six pools at ``block``.

    A pool with no event yet contributes zero.

    Raises:
        DataGap: If a pool's latest event has a malformed reserve
    """
    total = ZERO
    for stream in STREAM_ORDER:
        series = streams.get(stream)
        event = series.latest_at_or_before(block) if series is not None else None
        if event is None:
            continue
        total = dm.add(total, require(event.reserve_usd, f"{stream.name}.reserve_usd"))
    return LiquiditySnapshot(block=block, total_liquidity_usd=total)
