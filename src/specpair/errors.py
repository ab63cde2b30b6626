"""
Exception Types for the Speculative Decoding Engine

Backend failures are never wrapped: whatever the backend raises reaches the
caller unchanged. The types below cover caller misuse and lifecycle errors.
"""


class SpecPairError(RuntimeError):
    """Base class for engine-originated errors."""


class NotLoadedError(SpecPairError):
    """Raised when generation or a reset is requested before a pair is resident."""

    def __init__(self, message: str = "Models not loaded - call load_models() first"):
        super().__init__(message)


class EngineBusyError(SpecPairError):
    """Raised when a second load or generate call enters a busy engine."""


class StatusTransitionError(SpecPairError):
    """Raised on a lifecycle transition the status state machine does not allow."""


class BackendNotPrimedError(SpecPairError):
    """Raised by bundled backends when sampling a model that was never primed."""
