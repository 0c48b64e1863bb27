"""At-most-one-run-in-flight guard for periodic reward triggers.

Triggers that arrive while a run is in flight are dropped, not queued; the
next trigger simply covers a larger block range. Shutdown waits for the
in-flight run instead of interrupting it, since progress is only advanced
once a run completes.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from ..config.schema import Game
from ..engine.errors import UpstreamUnavailable
from ..engine.events import EventSeries, SnapshotSeries
from ..engine.pools import Stream
from ..engine.state import RunProgress, UserRewardState
from .runner import RunCoordinator, RunResult

logger = logging.getLogger(__name__)


def safe_target_block(chain_height: int, game: Game) -> int:
    """
    Target block for a run given the latest chain height.

    Subtracts the confirmation offset and never goes past the game end.
    """
    return min(chain_height - game.block_offset, game.end_block)


@dataclass
class RunInputs:
    """Fully materialized inputs of one run."""
    target_block: int
    streams: Mapping[Stream, EventSeries]
    snapshots: SnapshotSeries
    progress: RunProgress
    user_states: Mapping[str, UserRewardState]


class RunScheduler:
    """Serialize reward runs behind a non-blocking busy flag."""

    def __init__(
        self,
        coordinator: RunCoordinator,
        provide_inputs: Callable[[], RunInputs],
        apply_result: Callable[[RunResult], None],
    ):
        """
        Initialize the scheduler.

        Args:
            coordinator: Run coordinator to invoke
            provide_inputs: Loads run inputs; raises UpstreamUnavailable on failure
            apply_result: Persists a completed run's states and progress
        """
        self.coordinator = coordinator
        self.provide_inputs = provide_inputs
        self.apply_result = apply_result
        self._busy = threading.Lock()
        self._stopping = threading.Event()

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    def trigger(self) -> Optional[RunResult]:
        """
        Run once unless a run is already in flight or shutdown has begun.

        Returns:
            The run result, or None when the trigger was dropped or the
            inputs were unavailable
        """
        if self._stopping.is_set():
            logger.info("Reward trigger ignored: shutting down")
            return None
        if not self._busy.acquire(blocking=False):
            logger.info("Reward trigger dropped: a run is in flight")
            return None
        try:
            if self._stopping.is_set():
                return None
            try:
                inputs = self.provide_inputs()
                result = self.coordinator.run(
                    inputs.target_block,
                    inputs.streams,
                    inputs.snapshots,
                    inputs.progress,
                    inputs.user_states,
                )
            except UpstreamUnavailable as exc:
                logger.warning("Reward run postponed, inputs unavailable: %s", exc)
                return None
            if result.ran:
                self.apply_result(result)
            return result
        finally:
            self._busy.release()

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Refuse new triggers and wait for the in-flight run to finish.

        Args:
            timeout: Seconds to wait, or None to wait indefinitely

        Returns:
            True if no run is in flight on return
        """
        self._stopping.set()
        logger.info("Going to stop reward scheduler")
        acquired = self._busy.acquire(timeout=-1 if timeout is None else timeout)
        if acquired:
            self._busy.release()
            logger.info("Reward scheduler stopped")
        return acquired
