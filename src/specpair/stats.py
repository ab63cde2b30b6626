"""
Statistics Tracking for Speculative Decoding

Pure recomputation of derived metrics from raw counters, and a small tracker
that owns the counters and the wall clock for one generation call.
"""

import time
from dataclasses import replace
from typing import Callable, Optional

from .types import Round, SpeculativeStats


def recompute(stats: SpeculativeStats, elapsed_ms: float) -> SpeculativeStats:
    """
    Recompute derived metrics from raw counters.

    Args:
        stats: Statistics holding the raw counters
        elapsed_ms: Wall-clock time since generation started

    Returns:
        New SpeculativeStats with elapsed_ms, tokens_per_second,
        avg_acceptance_length and estimated_speedup refreshed
    """
    tokens_per_second = (
        stats.total_tokens / elapsed_ms * 1000 if elapsed_ms > 0 else 0.0
    )
    avg_acceptance_length = (
        stats.accepted_tokens / stats.draft_rounds if stats.draft_rounds > 0 else 0.0
    )
    return replace(
        stats,
        elapsed_ms=elapsed_ms,
        tokens_per_second=tokens_per_second,
        avg_acceptance_length=avg_acceptance_length,
        # Worst case is one token per round, same as plain decoding
        estimated_speedup=max(1.0, avg_acceptance_length),
    )


class StatsTracker:
    """Owns the statistics of one generation call."""

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        """
        Initialize the tracker and start its clock.

        Args:
            clock: Monotonic clock in seconds (default: time.perf_counter)
        """
        self._clock = clock or time.perf_counter
        self._start = self._clock()
        self._stats = SpeculativeStats()

    @property
    def stats(self) -> SpeculativeStats:
        return self._stats

    def elapsed_ms(self) -> float:
        return (self._clock() - self._start) * 1000

    def start_round(self) -> None:
        self._stats.draft_rounds += 1

    def record_round(self, round_: Round) -> None:
        """Fold one round's accept/reject counts into the counters."""
        self._stats.accepted_tokens += round_.matched
        if round_.bonus_token is not None:
            self._stats.accepted_tokens += 1
        self._stats.rejected_tokens += round_.rejected

    def record_materialized(self, total_tokens: int) -> SpeculativeStats:
        """Record the materialized token count and refresh derived metrics."""
        self._stats.total_tokens = total_tokens
        return self.refresh()

    def refresh(self) -> SpeculativeStats:
        """Refresh derived metrics against the clock and return a snapshot."""
        self._stats = recompute(self._stats, self.elapsed_ms())
        return self._stats.copy()
