"""
Inference Backend Interface for Speculative Decoding

Defines the contract the engine consumes to drive a draft and a target model.
Enables dependency injection so the engine can run against real Hugging Face
models or a fake backend for testing.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Sequence, Set, Union

Message = Dict[str, str]
Conversation = Union[str, Sequence[Message]]
ProgressFn = Callable[[float], None]


def normalize_conversation(conversation: Conversation) -> List[Message]:
    """Turn a bare prompt string into a single-message conversation."""
    if isinstance(conversation, str):
        return [{"role": "user", "content": conversation}]
    return [dict(message) for message in conversation]


class InferenceBackend(ABC):
    """Abstract base class for token-generation backends."""

    @abstractmethod
    def load_model(self, model_id: str, progress_fn: Optional[ProgressFn] = None) -> None:
        """
        Load a single model, replacing whatever is resident.

        Args:
            model_id: Model identifier
            progress_fn: Receives load progress in [0, 1]
        """
        pass

    @abstractmethod
    def load_models(
        self, model_ids: Sequence[str], progress_fn: Optional[ProgressFn] = None
    ) -> None:
        """
        Load or keep several models resident at the same time.

        Args:
            model_ids: Model identifiers to hold resident
            progress_fn: Receives load progress in [0, 1]
        """
        pass

    @abstractmethod
    def sample_next_token(
        self, input_tokens: Sequence[int], fresh: bool, model_id: str
    ) -> int:
        """
        Sample the next token from one model.

        Args:
            input_tokens: Zero or one token to feed before sampling
            fresh: True to continue from whatever state the model already holds
            model_id: Which resident model to sample from

        Returns:
            Sampled token ID
        """
        pass

    @abstractmethod
    def prime_with_prompt(
        self,
        conversation: Sequence[Message],
        max_new_tokens: int,
        model_id: str,
        temperature: float = 0.7,
    ) -> str:
        """
        Run a short completion so the model's cache reflects the prompt.

        The returned completion text is informational only.
        """
        pass

    @abstractmethod
    def get_accumulated_text(self, model_id: str) -> str:
        """Return the full decoded text the model has produced since priming."""
        pass

    @abstractmethod
    def reset_conversation(self, model_id: str) -> None:
        """Drop the model's conversation state."""
        pass

    @abstractmethod
    def release_model(self) -> None:
        """Release every resident model."""
        pass

    def eos_token_ids(self, model_id: str) -> Set[int]:
        """
        EOS token IDs the model may emit.

        An empty set tells the engine to fall back to its defaults.
        """
        return set()

    def is_resident(self, model_id: str) -> bool:
        """
        Whether the model is currently loaded.

        Backends that do not track residency report True, so the loader relies
        on the pair it recorded after the last successful load.
        """
        return True
