"""Closed enumeration of the reward game's protocols, pairs and event streams."""

from enum import Enum
from typing import Tuple


class Protocol(Enum):
    """Decentralized exchange protocols taking part in the game."""
    UNISWAP = "uniswap"
    MOONISWAP = "mooniswap"


class Pool(Enum):
    """Trading pairs rewarded by the game (one pool per protocol each)."""
    XE = "XE"  # XOR/ETH
    XV = "XV"  # XOR/VAL
    VE = "VE"  # VAL/ETH


class Stream(Enum):
    """One event stream: a (protocol, pool) combination.

    Definition order is the canonical stream order used to build the user
    iteration order of a run.
    """
    UNISWAP_XE = (Protocol.UNISWAP, Pool.XE)
    UNISWAP_XV = (Protocol.UNISWAP, Pool.XV)
    UNISWAP_VE = (Protocol.UNISWAP, Pool.VE)
    MOONISWAP_XE = (Protocol.MOONISWAP, Pool.XE)
    MOONISWAP_XV = (Protocol.MOONISWAP, Pool.XV)
    MOONISWAP_VE = (Protocol.MOONISWAP, Pool.VE)

    @property
    def protocol(self) -> Protocol:
        return self.value[0]

    @property
    def pool(self) -> Pool:
        return self.value[1]

    @classmethod
    def of(cls, protocol: Protocol, pool: Pool) -> "Stream":
        """Stream for a (protocol, pool) pair."""
        return cls((protocol, pool))


STREAM_ORDER: Tuple[Stream, ...] = tuple(Stream)
PROTOCOL_ORDER: Tuple[Protocol, ...] = tuple(Protocol)
POOL_ORDER: Tuple[Pool, ...] = tuple(Pool)
