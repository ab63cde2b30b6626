"""
Inference Backends

Adapters implementing InferenceBackend: a deterministic fake for tests and a
Hugging Face transformers backend for real models.
"""

from typing import Any

from ..interfaces import InferenceBackend
from .fake import FakeBackend

BACKENDS = ["fake", "hf"]


def create_backend(implementation: str, **kwargs: Any) -> InferenceBackend:
    """
    Create a backend by implementation name.

    Args:
        implementation: "fake" or "hf"
        **kwargs: Backend-specific parameters

    Returns:
        InferenceBackend instance

    Raises:
        ValueError: If implementation is not recognized
    """
    if implementation == "fake":
        return FakeBackend(**kwargs)
    elif implementation == "hf":
        # transformers is slow to import; only pay for it when asked
        from .hf import HFBackend

        return HFBackend(**kwargs)
    else:
        raise ValueError(
            f"Unknown implementation: {implementation}. Available: {BACKENDS}"
        )


__all__ = ["BACKENDS", "FakeBackend", "create_backend"]
