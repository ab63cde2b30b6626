"""
Target-only Baseline Runner

Plain autoregressive decoding with the target model alone, one token at a
time through the same backend. Throughput is measured on the wall clock so it
can be compared directly with the speculative engine's tokens_per_second.
"""

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Iterable, Optional

from .interfaces import Conversation, InferenceBackend, normalize_conversation
from .types import DEFAULT_EOS_TOKEN_IDS


@dataclass
class BaselineResult:
    text: str
    total_tokens: int
    elapsed_ms: float
    tokens_per_second: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BaselineRunner:
    """Target-only decoding for speedup comparisons."""

    def __init__(
        self,
        backend: InferenceBackend,
        model_id: str,
        eos_token_ids: Optional[Iterable[int]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize the baseline runner.

        Args:
            backend: Backend with model_id resident
            model_id: Model to decode with (normally the target)
            eos_token_ids: EOS IDs; if None, the backend's IDs or the defaults
            clock: Clock in seconds (default: time.perf_counter)
        """
        self.logger = logging.getLogger(__name__)
        self.backend = backend
        self.model_id = model_id
        if eos_token_ids is not None:
            self.eos_token_ids = set(eos_token_ids)
        else:
            self.eos_token_ids = backend.eos_token_ids(model_id) or set(
                DEFAULT_EOS_TOKEN_IDS
            )
        self._clock = clock or time.perf_counter

    def run(
        self,
        conversation: Conversation,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> BaselineResult:
        """
        Generate with the target model alone.

        Args:
            conversation: Chat messages, or a bare prompt string
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature

        Returns:
            BaselineResult with wall-clock throughput
        """
        start = self._clock()
        messages = normalize_conversation(conversation)
        self.backend.prime_with_prompt(messages, 1, self.model_id, temperature)

        generated = 0
        last: Optional[int] = None
        while generated < max_tokens:
            inputs = [] if last is None else [last]
            token = self.backend.sample_next_token(inputs, last is None, self.model_id)
            if token in self.eos_token_ids:
                break
            generated += 1
            last = token

        text = self.backend.get_accumulated_text(self.model_id)
        elapsed_ms = (self._clock() - start) * 1000
        tokens_per_second = generated / elapsed_ms * 1000 if elapsed_ms > 0 else 0.0

        self.logger.info(
            f"Baseline completed: {generated} tokens in {elapsed_ms:.2f}ms "
            f"({tokens_per_second:.2f} tokens/sec)"
        )
        return BaselineResult(
            text=text,
            total_tokens=generated,
            elapsed_ms=elapsed_ms,
            tokens_per_second=tokens_per_second,
        )
