"""Run coordination and scheduling."""

from .runner import RunCoordinator, RunResult, SkipReason
from .scheduler import RunInputs, RunScheduler, safe_target_block

__all__ = [
    "RunCoordinator",
    "RunInputs",
    "RunResult",
    "RunScheduler",
    "SkipReason",
    "safe_target_block",
]
