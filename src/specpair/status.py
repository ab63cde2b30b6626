"""
Lifecycle and Status Control for the Speculative Decoding Engine

Holds the engine's mutable state in one place: current status, the resident
model pair, the cooperative abort flag and the single-flight busy flag.
Status changes are validated against a small state machine and fanned out
to the progress callback and any registered listeners.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, FrozenSet, Iterator, List, Optional

from .errors import EngineBusyError, StatusTransitionError
from .types import EngineStatus, ModelPair, ProgressEvent, SpeculativeStats

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[EngineStatus, float, SpeculativeStats], None]
Listener = Callable[[ProgressEvent], None]

# unload() may force IDLE from any state, so IDLE is handled separately
ALLOWED_TRANSITIONS: Dict[EngineStatus, FrozenSet[EngineStatus]] = {
    EngineStatus.IDLE: frozenset({EngineStatus.LOADING_MODEL}),
    EngineStatus.LOADING_MODEL: frozenset(
        {EngineStatus.LOADING_MODEL, EngineStatus.READY, EngineStatus.ERROR}
    ),
    EngineStatus.READY: frozenset(
        {EngineStatus.LOADING_MODEL, EngineStatus.GENERATING, EngineStatus.ERROR}
    ),
    EngineStatus.GENERATING: frozenset(
        {EngineStatus.GENERATING, EngineStatus.READY, EngineStatus.ERROR}
    ),
    EngineStatus.ERROR: frozenset(
        {EngineStatus.LOADING_MODEL, EngineStatus.GENERATING, EngineStatus.ERROR}
    ),
}


class StatusController:
    """State machine and notification hub for one engine instance."""

    def __init__(self) -> None:
        self.logger = logging.getLogger(__name__)
        self._status = EngineStatus.IDLE
        self._loaded_pair: Optional[ModelPair] = None
        self._abort = threading.Event()
        self._busy = threading.Lock()
        self._progress_callback: Optional[ProgressCallback] = None
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> EngineStatus:
        return self._status

    @property
    def loaded_pair(self) -> Optional[ModelPair]:
        return self._loaded_pair

    @loaded_pair.setter
    def loaded_pair(self, pair: Optional[ModelPair]) -> None:
        self._loaded_pair = pair

    def transition(
        self,
        status: EngineStatus,
        load_progress: float = 0.0,
        stats: Optional[SpeculativeStats] = None,
    ) -> None:
        """
        Move to a new status and notify observers.

        Args:
            status: Target status
            load_progress: Model load progress in [0, 1]
            stats: Statistics snapshot to publish (empty stats if None)

        Raises:
            StatusTransitionError: If the state machine forbids the move
        """
        if status != EngineStatus.IDLE and status not in ALLOWED_TRANSITIONS[self._status]:
            raise StatusTransitionError(
                f"Illegal status transition: {self._status.value} -> {status.value}"
            )
        if status != self._status:
            self.logger.debug(f"Status {self._status.value} -> {status.value}")
        self._status = status
        self._publish(load_progress, stats)

    def report(
        self, load_progress: float = 0.0, stats: Optional[SpeculativeStats] = None
    ) -> None:
        """Publish progress or statistics without changing status."""
        self._publish(load_progress, stats)

    # ------------------------------------------------------------------
    # Cancellation and single-flight
    # ------------------------------------------------------------------

    def request_abort(self) -> None:
        self._abort.set()

    def clear_abort(self) -> None:
        self._abort.clear()

    @property
    def abort_requested(self) -> bool:
        return self._abort.is_set()

    @contextmanager
    def exclusive(self, operation: str) -> Iterator[None]:
        """
        Hold the busy flag for the duration of a load or generate call.

        Raises:
            EngineBusyError: If another call already holds it
        """
        if not self._busy.acquire(blocking=False):
            raise EngineBusyError(
                f"Cannot start {operation}: engine is busy ({self._status.value})"
            )
        try:
            yield
        finally:
            self._busy.release()

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def set_progress_callback(self, callback: Optional[ProgressCallback]) -> None:
        self._progress_callback = callback

    def add_listener(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish(self, load_progress: float, stats: Optional[SpeculativeStats]) -> None:
        load_progress = min(1.0, max(0.0, load_progress))
        snapshot = stats.copy() if stats is not None else SpeculativeStats()
        if self._progress_callback is not None:
            self._progress_callback(self._status, load_progress, snapshot)
        if self._listeners:
            event = ProgressEvent(
                status=self._status, load_progress=load_progress, stats=snapshot
            )
            for listener in list(self._listeners):
                listener(event)
