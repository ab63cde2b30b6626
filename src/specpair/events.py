"""
Event Channel for Engine Status Updates

A bounded queue listener that decouples status/statistics notifications from
whatever thread or UI consumes them.
"""

import logging
import queue
from typing import List, Optional

from .types import ProgressEvent

logger = logging.getLogger(__name__)


class QueueListener:
    """Listener that buffers ProgressEvents in a bounded queue."""

    def __init__(self, maxsize: int = 256):
        """
        Initialize the listener.

        Args:
            maxsize: Queue capacity; the oldest event is dropped when full
        """
        if maxsize < 1:
            raise ValueError(f"maxsize must be >= 1, got {maxsize}")
        self.maxsize = maxsize
        self.dropped = 0
        self._queue: "queue.Queue[ProgressEvent]" = queue.Queue(maxsize=maxsize)

    def __call__(self, event: ProgressEvent) -> None:
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def get(self, timeout: Optional[float] = None) -> Optional[ProgressEvent]:
        """Block for the next event; None on timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[ProgressEvent]:
        """Return every buffered event without blocking."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                break
        if self.dropped:
            logger.debug(f"Event queue dropped {self.dropped} events (maxsize={self.maxsize})")
        return events

    def __len__(self) -> int:
        return self._queue.qsize()
