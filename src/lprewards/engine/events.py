"""Liquidity position events, per-stream event series and liquidity snapshots.

Series are immutable and sorted ascending by block, so every "most recent
at or before block N" lookup is a binary search.
"""

import logging
import re
from bisect import bisect_right
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from ..config.schema import TokenOrder
from .decimal_math import ZERO, to_decimal
from .errors import DataGap

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")


def normalize_address(address: str) -> str:
    """
    Lower-case an address and check its shape.

    Raises:
        ValueError: If the address is not ``0x`` followed by 40 hex digits
    """
    normalized = str(address).strip().lower()
    if not _ADDRESS_RE.match(normalized):
        raise ValueError(f"Invalid address: {address}")
    return normalized


def require(value: Optional[Decimal], name: str) -> Decimal:
    """Return a parsed field value or raise DataGap if it was missing or malformed."""
    if value is None:
        raise DataGap(f"Missing or malformed field: {name}")
    return value


@dataclass(frozen=True)
class LiquidityPositionEvent:
    """One user's observed position in one pool at one block.

    Numeric fields are None when the source value was missing or malformed;
    ``require`` turns such a field into a DataGap at the point it is needed.
    A balance of exactly zero marks a full withdrawal.
    """
    block: int
    user_id: str
    lp_balance: Optional[Decimal]
    lp_total_supply: Optional[Decimal]
    reserve_usd: Optional[Decimal]
    reserve0: Optional[Decimal] = None
    reserve1: Optional[Decimal] = None
    token0_price_usd: Optional[Decimal] = None
    token1_price_usd: Optional[Decimal] = None

    def __post_init__(self):
        # Series index users by lower-cased id
        object.__setattr__(self, "user_id", str(self.user_id).lower())

    @property
    def is_withdrawal(self) -> bool:
        """True when the balance is exactly zero."""
        return self.lp_balance is not None and self.lp_balance == ZERO


def unique_in_reverse_scan(user_ids: Iterable[str]) -> List[str]:
    """
    Deduplicate keeping each id at the position of its last occurrence.

    Scans from the end keeping the first occurrence of each id, then restores
    chronological order.
    """
    seen = set()
    result = []
    for user_id in reversed(list(user_ids)):
        if user_id in seen:
            continue
        seen.add(user_id)
        result.append(user_id)
    result.reverse()
    return result


def _parse_optional(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return to_decimal(value)
    except ValueError:
        return None


def _symbol(record: Mapping[str, Any], token: str) -> str:
    pair = record.get("pair") or {}
    return str((pair.get(token) or {}).get("symbol", ""))


def parse_event(record: Mapping[str, Any], token_order: Optional[TokenOrder] = None) -> LiquidityPositionEvent:
    """
    Build an event from a subgraph-shaped liquidity position snapshot record.

    User ids are lower-cased. When ``token_order`` says the pair is reported
    with the quote asset first, reserves and token prices are swapped so that
    token0 is always the non-quote asset.

    Raises:
        DataGap: If the record has no usable block or user id
    """
    try:
        block = int(record["block"])
    except (KeyError, TypeError, ValueError):
        raise DataGap(f"Event without a valid block: {record!r}") from None

    user = record.get("user")
    user_id = user.get("id") if isinstance(user, Mapping) else user
    if not user_id:
        raise DataGap(f"Event without a user id at block {block}")

    reserve0 = _parse_optional(record.get("reserve0"))
    reserve1 = _parse_optional(record.get("reserve1"))
    price0 = _parse_optional(record.get("token0PriceUSD"))
    price1 = _parse_optional(record.get("token1PriceUSD"))

    order = token_order or TokenOrder()
    if order.needs_swap(_symbol(record, "token0"), _symbol(record, "token1")):
        reserve0, reserve1 = reserve1, reserve0
        price0, price1 = price1, price0

    return LiquidityPositionEvent(
        block=block,
        user_id=str(user_id).lower(),
        lp_balance=_parse_optional(record.get("liquidityTokenBalance")),
        lp_total_supply=_parse_optional(record.get("liquidityTokenTotalSupply")),
        reserve_usd=_parse_optional(record.get("reserveUSD")),
        reserve0=reserve0,
        reserve1=reserve1,
        token0_price_usd=price0,
        token1_price_usd=price1,
    )


def parse_events(records: Iterable[Mapping[str, Any]], token_order: Optional[TokenOrder] = None) -> "EventSeries":
    """Parse raw records into a series, dropping records without block or user."""
    events = []
    for record in records:
        try:
            events.append(parse_event(record, token_order))
        except DataGap as exc:
            logger.debug("Dropping unusable event record: %s", exc)
    return EventSeries(events)


class _BlockSeries:
    """Shared binary-search lookup over items sorted by ``block``."""

    def __init__(self, items: Sequence[Any]):
        self._items = tuple(items)
        self._blocks = [item.block for item in self._items]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._items)

    def __getitem__(self, index):
        return self._items[index]

    def __bool__(self) -> bool:
        return bool(self._items)

    def _count_up_to(self, block: int) -> int:
        return bisect_right(self._blocks, block)

    def latest_at_or_before(self, block: int):
        """Most recent item at or before ``block``, or None."""
        index = self._count_up_to(block) - 1
        return self._items[index] if index >= 0 else None

    @property
    def first_block(self) -> Optional[int]:
        return self._blocks[0] if self._blocks else None


class EventSeries(_BlockSeries):
    """Ordered liquidity position events of one (protocol, pool) stream.

    Events are unique per (user, block); when the input repeats a pair, the
    last one supplied wins.
    """

    def __init__(self, events: Iterable[LiquidityPositionEvent] = ()):
        unique: Dict[tuple, LiquidityPositionEvent] = {}
        for event in events:
            key = (event.user_id, event.block)
            if key in unique:
                logger.debug("Duplicate event for %s at block %d, keeping the last", *key)
                del unique[key]
            unique[key] = event
        # sorted() is stable, so same-block events keep their supplied order
        super().__init__(sorted(unique.values(), key=lambda e: e.block))
        self._by_user: Optional[Dict[str, List[LiquidityPositionEvent]]] = None
        self._run_starts: Optional[List[Optional[int]]] = None

    @classmethod
    def _from_sorted(cls, events: Sequence[LiquidityPositionEvent]) -> "EventSeries":
        series = cls.__new__(cls)
        _BlockSeries.__init__(series, events)
        series._by_user = None
        series._run_starts = None
        return series

    def up_to(self, block: int) -> "EventSeries":
        """Events at or before ``block``."""
        return EventSeries._from_sorted(self._items[:self._count_up_to(block)])

    def for_user(self, user_id: str) -> "EventSeries":
        """Events of one user, order preserved."""
        if self._by_user is None:
            by_user: Dict[str, List[LiquidityPositionEvent]] = {}
            for event in self._items:
                by_user.setdefault(event.user_id, []).append(event)
            self._by_user = by_user
        return EventSeries._from_sorted(self._by_user.get(user_id.lower(), ()))

    def unique_users_up_to(self, block: int) -> List[str]:
        """
        Users with an event at or before ``block``, in first-seen-in-reverse order.

        Events are scanned from the most recent backwards keeping the first
        occurrence of each user; the result is then put back in chronological
        order. Each user therefore sits at the position of their latest event.
        This order fixes the aggregation order and who absorbs a budget
        truncation, so it must not change.
        """
        return unique_in_reverse_scan(e.user_id for e in self._items[:self._count_up_to(block)])

    def vesting_start(self, block: int) -> Optional[int]:
        """
        Block where the current continuous non-zero position began.

        Meant for a single user's series. Looks at the events at or before
        ``block`` and returns the block of the earliest event of the trailing
        run with no zero balance. Returns None when there is no event or the
        latest event is a withdrawal.
        """
        if self._run_starts is None:
            starts: List[Optional[int]] = []
            current: Optional[int] = None
            for event in self._items:
                if event.is_withdrawal:
                    current = None
                elif current is None:
                    current = event.block
                starts.append(current)
            self._run_starts = starts
        index = self._count_up_to(block) - 1
        return self._run_starts[index] if index >= 0 else None


@dataclass(frozen=True)
class LiquiditySnapshot:
    """Total USD liquidity across all six pools at one sampled block."""
    block: int
    total_liquidity_usd: Optional[Decimal]


class SnapshotSeries(_BlockSeries):
    """Liquidity snapshots ascending by block."""

    def __init__(self, snapshots: Iterable[LiquiditySnapshot] = ()):
        super().__init__(sorted(snapshots, key=lambda s: s.block))

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "SnapshotSeries":
        """Build from ``{"block", "liquidityUSD"}`` records, dropping records without a valid block."""
        snapshots = []
        for record in records:
            try:
                block = int(record["block"])
            except (KeyError, TypeError, ValueError):
                logger.debug("Dropping snapshot record without a valid block: %r", record)
                continue
            snapshots.append(
                LiquiditySnapshot(block=block, total_liquidity_usd=_parse_optional(record.get("liquidityUSD")))
            )
        return cls(snapshots)

    def liquidity_at(self, block: int) -> Decimal:
        """
        Total liquidity in force at ``block`` (strict most-recent-at-or-before).

        Raises:
            DataGap: If no snapshot precedes the block or its value is malformed
        """
        snapshot = self.latest_at_or_before(block)
        if snapshot is None:
            raise DataGap(f"No liquidity snapshot at or before block {block}")
        return require(snapshot.total_liquidity_usd, "total_liquidity_usd")
