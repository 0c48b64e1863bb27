"""Unit tests for liquidity shares and total-liquidity snapshots."""

import pytest
import sys
import os
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from builders import USER_A, USER_B, event, make_streams
from lprewards.engine.errors import DataGap
from lprewards.engine.events import EventSeries
from lprewards.engine.liquidity import LiquidityShare, build_liquidity_snapshot, user_liquidity_share
from lprewards.engine.pools import Pool, Protocol, Stream
from lprewards.engine.rewards import PoolEvents


def pool_events(uniswap=(), mooniswap=()):
    return PoolEvents(Pool.XE, {
        Protocol.UNISWAP: EventSeries(uniswap),
        Protocol.MOONISWAP: EventSeries(mooniswap),
    })


class TestUserLiquidityShare:
    """Tests for a user's token holdings in one pair."""

    def test_single_protocol(self):
        """10% of the LP supply holds 10% of each reserve."""
        share = user_liquidity_share(pool_events(uniswap=[event(10, USER_A, 100)]), USER_A, 20)
        assert share.token0 == Decimal(50)
        assert share.token1 == Decimal(25)
        assert share.percent == Decimal("0.1")

    def test_both_protocols(self):
        """Holdings add up; percent is against the combined token0 reserve."""
        events = pool_events(
            uniswap=[event(10, USER_A, 100)],
            mooniswap=[event(12, USER_A, 200, reserve0="1000", reserve1="400")],
        )
        share = user_liquidity_share(events, USER_A, 20)
        assert share.token0 == Decimal(250)
        assert share.token1 == Decimal(105)
        assert share.percent == Decimal("0.1666666667")

    def test_uses_pool_state_at_block(self):
        """Reserves come from the pool's latest event, not the user's."""
        events = pool_events(uniswap=[
            event(10, USER_A, 100), event(15, USER_B, 100, supply="2000", reserve0="1000"),
        ])
        share = user_liquidity_share(events, USER_A, 20)
        assert share.token0 == Decimal(50)

    def test_no_position_is_empty(self):
        """A user without balance gets all zeros."""
        events = pool_events(uniswap=[event(10, USER_A, 100), event(12, USER_A, 0)])
        assert user_liquidity_share(events, USER_A, 20) == LiquidityShare.empty()
        assert user_liquidity_share(events, USER_B, 20) == LiquidityShare.empty()

    def test_address_case_insensitive(self):
        """Mixed-case addresses find the same position."""
        events = pool_events(uniswap=[event(10, USER_A, 100)])
        assert user_liquidity_share(events, USER_A.upper().replace("0X", "0x"), 20).token0 == Decimal(50)

    def test_bad_address_rejected(self):
        """Malformed addresses raise ValueError."""
        with pytest.raises(ValueError):
            user_liquidity_share(pool_events(), "not-an-address", 20)


class TestLiquiditySnapshot:
    """Tests for total liquidity across the six pools."""

    def test_sums_latest_reserves(self):
        """Each pool contributes its latest reserve."""
        streams = make_streams({
            Stream.UNISWAP_XE: [event(10, USER_A, 1, reserve_usd="1000000")],
            Stream.MOONISWAP_VE: [event(5, USER_B, 1, reserve_usd="250000")],
        })
        assert build_liquidity_snapshot(20, streams).total_liquidity_usd == Decimal(1250000)
        assert build_liquidity_snapshot(7, streams).total_liquidity_usd == Decimal(250000)

    def test_empty_is_zero(self):
        """No events means zero liquidity."""
        snapshot = build_liquidity_snapshot(20, make_streams())
        assert snapshot.block == 20
        assert snapshot.total_liquidity_usd == Decimal(0)

    def test_malformed_reserve_is_data_gap(self):
        """A malformed reserve cannot be summed."""
        streams = make_streams({Stream.UNISWAP_XV: [event(10, USER_A, 1, reserve_usd=None)]})
        with pytest.raises(DataGap):
            build_liquidity_snapshot(20, streams)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
