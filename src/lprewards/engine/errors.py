"""Error taxonomy for the reward engine.

Only UpstreamUnavailable ever leaves the engine. DataGap and NonFiniteResult
are raised at lookup and arithmetic points and recovered as a zero
contribution by the code that drives the block loop.
"""


class RewardEngineError(Exception):
    """Base class for reward engine errors."""


class DataGap(RewardEngineError):
    """An event or snapshot needed at a lookup point is missing or malformed."""


class NonFiniteResult(RewardEngineError, ArithmeticError):
    """An arithmetic operation produced a non-finite value (e.g. division by zero)."""


class UpstreamUnavailable(RewardEngineError, ValueError):
    """Run inputs were not fully materialized by the collaborator."""
