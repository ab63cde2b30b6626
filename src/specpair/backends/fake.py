"""
Fake Inference Backend for Testing

Provides FakeBackend that produces deterministic tokens without loading any
weights. Useful for testing the speculative decoding protocol: token streams
can be scripted per model, derived deterministically from the prompt, made to
disagree periodically, or made to fail on load.
"""

import logging
import zlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from ..errors import BackendNotPrimedError
from ..interfaces import InferenceBackend, Message, ProgressFn


@dataclass
class _FakeSlot:
    """Per-model conversation state."""

    context: Optional[int] = None
    pending: Optional[int] = None
    sampled: List[int] = field(default_factory=list)
    samples: int = 0


class FakeBackend(InferenceBackend):
    """Deterministic in-process backend for unit tests and smoke runs."""

    def __init__(
        self,
        vocab_size: int = 1000,
        eos_token_id: int = 1,
        scripts: Optional[Dict[str, Sequence[int]]] = None,
        disagree_every: Optional[Dict[str, int]] = None,
        eos_after: Optional[int] = None,
        load_steps: int = 4,
        fail_on_load: Optional[Set[str]] = None,
    ):
        """
        Initialize the fake backend.

        Args:
            vocab_size: Vocabulary size for derived tokens
            eos_token_id: Token ID reported as EOS
            scripts: Per-model token sequences returned in order; EOS once exhausted
            disagree_every: Per-model period n; every n-th sample is perturbed
            eos_after: Emit EOS once a model has sampled this many tokens
            load_steps: Progress reports per load call
            fail_on_load: Model IDs whose load raises RuntimeError
        """
        self.logger = logging.getLogger(__name__)
        self.vocab_size = vocab_size
        self.eos_token_id = eos_token_id
        self.scripts = {k: list(v) for k, v in (scripts or {}).items()}
        self.disagree_every = dict(disagree_every or {})
        self.eos_after = eos_after
        self.load_steps = max(1, load_steps)
        self.fail_on_load = set(fail_on_load or ())

        self.resident: List[str] = []
        self.calls: List[Tuple[str, Any]] = []
        self._slots: Dict[str, _FakeSlot] = {}
        self._special = {0, eos_token_id, 2, 3}

        self.logger.info(f"FakeBackend initialized (vocab_size={vocab_size})")

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_model(self, model_id: str, progress_fn: Optional[ProgressFn] = None) -> None:
        self.calls.append(("load_model", model_id))
        self._load([model_id], progress_fn)

    def load_models(
        self, model_ids: Sequence[str], progress_fn: Optional[ProgressFn] = None
    ) -> None:
        self.calls.append(("load_models", tuple(model_ids)))
        self._load(list(model_ids), progress_fn)

    def _load(self, model_ids: List[str], progress_fn: Optional[ProgressFn]) -> None:
        for model_id in model_ids:
            if model_id in self.fail_on_load:
                raise RuntimeError(f"Failed to load fake model: {model_id}")
        for step in range(self.load_steps + 1):
            if progress_fn is not None:
                progress_fn(step / self.load_steps)
        self.resident = list(model_ids)
        self._slots = {m: self._slots.get(m, _FakeSlot()) for m in model_ids}

    def is_resident(self, model_id: str) -> bool:
        return model_id in self.resident

    def release_model(self) -> None:
        self.calls.append(("release_model", None))
        self.resident = []
        self._slots = {}

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    def prime_with_prompt(
        self,
        conversation: Sequence[Message],
        max_new_tokens: int,
        model_id: str,
        temperature: float = 0.7,
    ) -> str:
        self.calls.append(("prime", model_id))
        prompt = "\n".join(f"{m['role']}: {m['content']}" for m in conversation)
        slot = _FakeSlot(context=zlib.crc32(prompt.encode("utf-8")) % self.vocab_size)
        self._slots[self._require(model_id)] = slot
        return self.decode([self._derive(slot.context)])

    def sample_next_token(
        self, input_tokens: Sequence[int], fresh: bool, model_id: str
    ) -> int:
        self.calls.append(("sample", (model_id, tuple(input_tokens), fresh)))
        slot = self._slots.get(self._require(model_id))
        if slot is None or slot.context is None:
            raise BackendNotPrimedError(f"Model {model_id} has not been primed")

        if input_tokens:
            slot.context = input_tokens[-1]
        elif fresh:
            if slot.pending is not None:
                slot.context = slot.pending
        else:
            raise ValueError("Continuation without an input token requires fresh=True")

        slot.samples += 1
        token = self._next_token(model_id, slot)
        slot.pending = token
        if token != self.eos_token_id:
            slot.sampled.append(token)
        return token

    def _next_token(self, model_id: str, slot: _FakeSlot) -> int:
        script = self.scripts.get(model_id)
        if script is not None:
            return script.pop(0) if script else self.eos_token_id
        if self.eos_after is not None and len(slot.sampled) >= self.eos_after:
            return self.eos_token_id
        token = self._derive(slot.context)
        period = self.disagree_every.get(model_id)
        if period and slot.samples % period == 0:
            token = self._avoid_special((token + 1) % self.vocab_size)
        return token

    def _derive(self, context: int) -> int:
        return self._avoid_special((context * 7919 + 17) % self.vocab_size)

    def _avoid_special(self, token: int) -> int:
        while token in self._special:
            token = (token + 4) % self.vocab_size
        return token

    def get_accumulated_text(self, model_id: str) -> str:
        slot = self._slots.get(self._require(model_id))
        return self.decode(slot.sampled) if slot else ""

    def reset_conversation(self, model_id: str) -> None:
        self.calls.append(("reset", model_id))
        self._slots[self._require(model_id)] = _FakeSlot()

    def eos_token_ids(self, model_id: str) -> Set[int]:
        return {self.eos_token_id}

    def decode(self, token_ids: Sequence[int]) -> str:
        """Decode token IDs to fake words."""
        return "".join(f" w{token}" for token in token_ids)

    def sample_calls(self, model_id: str) -> List[Tuple[Tuple[int, ...], bool]]:
        """(inputs, fresh) of every sample_next_token call for one model."""
        return [
            (args[1], args[2])
            for op, args in self.calls
            if op == "sample" and args[0] == model_id
        ]

    def _require(self, model_id: str) -> str:
        if model_id not in self.resident:
            raise KeyError(f"Model not resident: {model_id}")
        return model_id
