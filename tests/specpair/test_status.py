"""
Tests for the status state machine, observer fan-out and event queue.
"""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
PROJECT_ROOT = Path(__file__).parent.parent.parent
SRC_DIR = PROJECT_ROOT / "src"
sys.path.insert(0, str(SRC_DIR))

from specpair import (  # noqa: E402
    EngineBusyError,
    EngineStatus,
    ModelPair,
    ProgressEvent,
    QueueListener,
    SpeculativeStats,
    StatusController,
    StatusTransitionError,
)


class TestStatusController:
    """Test lifecycle transitions and notifications."""

    @pytest.fixture
    def controller(self):
        return StatusController()

    def test_initial_state(self, controller):
        """Controller starts idle with nothing loaded."""
        assert controller.status == EngineStatus.IDLE
        assert controller.loaded_pair is None
        assert not controller.abort_requested
        assert not controller.busy

    def test_normal_lifecycle(self, controller):
        """idle -> loading -> ready -> generating -> ready is allowed."""
        for status in (
            EngineStatus.LOADING_MODEL,
            EngineStatus.READY,
            EngineStatus.GENERATING,
            EngineStatus.READY,
        ):
            controller.transition(status)
        assert controller.status == EngineStatus.READY

    def test_illegal_transition(self, controller):
        """Generating straight from idle is rejected."""
        with pytest.raises(StatusTransitionError):
            controller.transition(EngineStatus.GENERATING)
        assert controller.status == EngineStatus.IDLE

    def test_idle_reachable_from_anywhere(self, controller):
        """Unloading may return to idle from any status."""
        controller.transition(EngineStatus.LOADING_MODEL)
        controller.transition(EngineStatus.ERROR)
        controller.transition(EngineStatus.IDLE)
        assert controller.status == EngineStatus.IDLE

    def test_callback_receives_status_and_progress(self, controller):
        """The progress callback sees status, clamped progress and stats."""
        received = []
        controller.set_progress_callback(
            lambda status, progress, stats: received.append((status, progress, stats))
        )
        controller.transition(EngineStatus.LOADING_MODEL, 0.25)
        controller.report(1.7)

        assert received[0][0] == EngineStatus.LOADING_MODEL
        assert received[0][1] == 0.25
        assert received[1][1] == 1.0
        assert isinstance(received[1][2], SpeculativeStats)

    def test_stats_are_snapshots(self, controller):
        """Listeners get copies, not the live statistics object."""
        events = []
        controller.add_listener(events.append)
        stats = SpeculativeStats(total_tokens=3)
        controller.report(0.0, stats)
        stats.total_tokens = 99

        assert events[0].stats.total_tokens == 3

    def test_listener_add_remove(self, controller):
        """Listeners are registered once and can be removed."""
        events = []
        controller.add_listener(events.append)
        controller.add_listener(events.append)
        controller.report()
        controller.remove_listener(events.append)
        controller.report()

        assert len(events) == 1
        assert isinstance(events[0], ProgressEvent)

    def test_abort_flag(self, controller):
        """Abort can be requested and cleared."""
        controller.request_abort()
        assert controller.abort_requested
        controller.clear_abort()
        assert not controller.abort_requested

    def test_exclusive_rejects_reentry(self, controller):
        """A second exclusive section raises while the first is held."""
        with controller.exclusive("generate"):
            assert controller.busy
            with pytest.raises(EngineBusyError):
                with controller.exclusive("load_models"):
                    pass
        assert not controller.busy

    def test_exclusive_released_on_error(self, controller):
        """The busy flag is released when the guarded call raises."""
        with pytest.raises(RuntimeError):
            with controller.exclusive("generate"):
                raise RuntimeError("boom")
        assert not controller.busy

    def test_loaded_pair_setter(self, controller):
        pair = ModelPair("a", "b")
        controller.loaded_pair = pair
        assert controller.loaded_pair == pair


class TestQueueListener:
    """Test the bounded event queue."""

    @staticmethod
    def event(total):
        return ProgressEvent(
            status=EngineStatus.GENERATING,
            load_progress=0.0,
            stats=SpeculativeStats(total_tokens=total),
        )

    def test_buffers_events(self):
        listener = QueueListener(maxsize=4)
        listener(self.event(1))
        listener(self.event(2))

        assert len(listener) == 2
        assert [e.stats.total_tokens for e in listener.drain()] == [1, 2]
        assert len(listener) == 0

    def test_drops_oldest_when_full(self):
        """A full queue keeps the newest events."""
        listener = QueueListener(maxsize=2)
        for total in (1, 2, 3):
            listener(self.event(total))

        assert listener.dropped == 1
        assert [e.stats.total_tokens for e in listener.drain()] == [2, 3]

    def test_get_timeout(self):
        """get returns None when nothing arrives in time."""
        listener = QueueListener()
        assert listener.get(timeout=0.01) is None
        listener(self.event(5))
        assert listener.get(timeout=0.01).stats.total_tokens == 5

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            QueueListener(maxsize=0)

    def test_attached_to_controller(self):
        """A QueueListener works as a controller listener."""
        controller = StatusController()
        listener = QueueListener()
        controller.add_listener(listener)
        controller.transition(EngineStatus.LOADING_MODEL, 0.5)

        event = listener.get(timeout=0.01)
        assert event.status == EngineStatus.LOADING_MODEL
        assert event.load_progress == 0.5
