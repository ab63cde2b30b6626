"""
Hugging Face Inference Backend for Speculative Decoding

Provides HFBackend that holds several Hugging Face causal LMs resident at once
and exposes the per-token sampling primitive the engine needs. Each model's
KV cache, pending logits, pending token and sampled ids live in an explicit
slot keyed by model id, so "continue from here" never depends on state shared
between models.
"""

import gc
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

import torch
from transformers import AutoModelForCausalLM, AutoTokenizer

from ..errors import BackendNotPrimedError
from ..interfaces import InferenceBackend, Message, ProgressFn

ModelLoader = Callable[[str, str, torch.dtype], Tuple[Any, Any]]


@dataclass
class _ModelSlot:
    """Resident model plus its conversation state."""

    model_id: str
    model: Any
    tokenizer: Any
    past_key_values: Any = None
    pending_logits: Optional[torch.Tensor] = None
    # Sampled but not yet fed back through the model
    pending_token: Optional[int] = None
    sampled_ids: List[int] = field(default_factory=list)
    temperature: float = 0.7

    def reset(self) -> None:
        self.past_key_values = None
        self.pending_logits = None
        self.pending_token = None
        self.sampled_ids = []


def select_device(device: str = "auto") -> str:
    """Select the best available device."""
    if device == "auto":
        if torch.backends.mps.is_available():
            return "mps"
        elif torch.cuda.is_available():
            return "cuda"
        else:
            return "cpu"
    return device


def _load_pretrained(model_id: str, device: str, torch_dtype: torch.dtype):
    """Load a tokenizer and causal LM from the Hugging Face hub or cache."""
    tokenizer = AutoTokenizer.from_pretrained(model_id)
    if tokenizer.pad_token is None:
        tokenizer.pad_token = tokenizer.eos_token
    model = AutoModelForCausalLM.from_pretrained(
        model_id, torch_dtype=torch_dtype, low_cpu_mem_usage=True
    )
    return model, tokenizer


def sample_from_logits(logits: torch.Tensor, temperature: float) -> int:
    """
    Sample one token ID from next-token logits.

    Args:
        logits: Logits of shape [vocab] or [1, vocab]
        temperature: 0 or below means greedy

    Returns:
        Token ID
    """
    logits = logits.reshape(-1).float()
    if temperature <= 0:
        return int(torch.argmax(logits).item())
    probs = torch.softmax(logits / temperature, dim=-1)
    return int(torch.multinomial(probs, num_samples=1).item())


class HFBackend(InferenceBackend):
    """Backend that runs Hugging Face causal LMs token by token."""

    def __init__(
        self,
        device: str = "auto",
        torch_dtype: Optional[torch.dtype] = None,
        model_loader: Optional[ModelLoader] = None,
    ):
        """
        Initialize the backend.

        Args:
            device: Device to run on ("auto", "cpu", "mps", "cuda")
            torch_dtype: Model dtype (float16 on accelerators, float32 on CPU if None)
            model_loader: fn(model_id, device, dtype) -> (model, tokenizer);
                defaults to AutoModelForCausalLM/AutoTokenizer
        """
        self.logger = logging.getLogger(__name__)
        self.device = select_device(device)
        self.torch_dtype = torch_dtype or (
            torch.float16 if self.device in ("cuda", "mps") else torch.float32
        )
        self._model_loader = model_loader or _load_pretrained
        self._slots: Dict[str, _ModelSlot] = {}

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_model(self, model_id: str, progress_fn: Optional[ProgressFn] = None) -> None:
        self.load_models([model_id], progress_fn)

    def load_models(
        self, model_ids: Sequence[str], progress_fn: Optional[ProgressFn] = None
    ) -> None:
        wanted = list(dict.fromkeys(model_ids))
        for model_id in [m for m in self._slots if m not in wanted]:
            self.logger.info(f"Releasing HF model: {model_id}")
            del self._slots[model_id]
        self._empty_cache()

        if progress_fn is not None:
            progress_fn(0.0)
        for index, model_id in enumerate(wanted):
            if model_id not in self._slots:
                self._slots[model_id] = self._load_slot(model_id)
            if progress_fn is not None:
                progress_fn((index + 1) / len(wanted))

    def _load_slot(self, model_id: str) -> _ModelSlot:
        try:
            self.logger.info(f"Loading HF model: {model_id}")
            model, tokenizer = self._model_loader(model_id, self.device, self.torch_dtype)
            model = model.to(self.device)
            model.eval()
            self.logger.info(f"HF model loaded on device: {self.device}")
            return _ModelSlot(model_id=model_id, model=model, tokenizer=tokenizer)
        except Exception as e:
            self.logger.error(f"Failed to load HF model {model_id}: {e}")
            raise

    def is_resident(self, model_id: str) -> bool:
        return model_id in self._slots

    def release_model(self) -> None:
        self._slots.clear()
        self._empty_cache()

    def _empty_cache(self) -> None:
        gc.collect()
        if self.device == "mps" and torch.backends.mps.is_available():
            torch.mps.empty_cache()
        elif self.device == "cuda" and torch.cuda.is_available():
            torch.cuda.empty_cache()

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
        slot = self._slot(model_id)
        slot.reset()
        slot.temperature = temperature

        prompt_ids = self._encode_conversation(slot.tokenizer, conversation)
        logits = self._forward(slot, prompt_ids)
        slot.pending_logits = logits

        # Preview only; nothing sampled here is committed to the cache
        if max_new_tokens < 1:
            return ""
        preview = int(torch.argmax(logits.reshape(-1)).item())
        return slot.tokenizer.decode([preview], skip_special_tokens=True)

    def sample_next_token(
        self, input_tokens: Sequence[int], fresh: bool, model_id: str
    ) -> int:
        slot = self._slot(model_id)

        if input_tokens:
            feed = list(input_tokens)
        elif fresh:
            feed = [slot.pending_token] if slot.pending_token is not None else []
        else:
            raise ValueError("Continuation without an input token requires fresh=True")

        if feed:
            if slot.past_key_values is None:
                raise BackendNotPrimedError(f"Model {model_id} has not been primed")
            logits = self._forward(slot, feed)
        elif slot.pending_logits is not None:
            logits = slot.pending_logits
        else:
            raise BackendNotPrimedError(f"Model {model_id} has not been primed")

        token = sample_from_logits(logits, slot.temperature)
        slot.pending_logits = logits
        slot.pending_token = token
        if token not in self.eos_token_ids(model_id):
            slot.sampled_ids.append(token)
        return token

    def get_accumulated_text(self, model_id: str) -> str:
        slot = self._slot(model_id)
        return slot.tokenizer.decode(slot.sampled_ids, skip_special_tokens=True)

    def reset_conversation(self, model_id: str) -> None:
        self._slot(model_id).reset()

    def eos_token_ids(self, model_id: str) -> Set[int]:
        slot = self._slots.get(model_id)
        if slot is None:
            return set()
        eos = getattr(slot.tokenizer, "eos_token_id", None)
        if eos is None:
            return set()
        return set(eos) if isinstance(eos, (list, tuple, set)) else {int(eos)}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _slot(self, model_id: str) -> _ModelSlot:
        slot = self._slots.get(model_id)
        if slot is None:
            raise KeyError(f"Model not resident: {model_id}")
        return slot

    def _forward(self, slot: _ModelSlot, token_ids: Sequence[int]) -> torch.Tensor:
        """Feed tokens through the model, extending its cache; return last logits."""
        input_ids = torch.tensor([list(token_ids)], dtype=torch.long, device=self.device)
        with torch.no_grad():
            outputs = slot.model(
                input_ids=input_ids,
                past_key_values=slot.past_key_values,
                use_cache=True,
            )
        slot.past_key_values = outputs.past_key_values
        return outputs.logits[:, -1, :]

    @staticmethod
    def _encode_conversation(tokenizer: Any, conversation: Sequence[Message]) -> List[int]:
        messages = [dict(m) for m in conversation]
        if getattr(tokenizer, "chat_template", None):
            ids = tokenizer.apply_chat_template(
                messages, add_generation_prompt=True, tokenize=True
            )
            if isinstance(ids, dict) or hasattr(ids, "keys"):
                ids = ids["input_ids"]
            return list(ids)
        text = "\n".join(f"{m['role']}: {m['content']}" for m in messages)
        ids = list(tokenizer.encode(text + "\nassistant:"))
        if not ids:
            raise ValueError("Conversation encoded to zero tokens")
        return ids
