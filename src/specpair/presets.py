"""
Predefined draft/target model pairings.

Drafts come from the same family as their target so tokenizers agree.
"""

from dataclasses import dataclass
from typing import Dict

from .types import ModelPair

GIB = 1024**3


@dataclass(frozen=True)
class ModelPairPreset:
    label: str
    pair: ModelPair
    # Approximate memory needed to hold both models
    required_memory: int


MODEL_PAIRS: Dict[str, ModelPairPreset] = {
    "llama-1b-3b": ModelPairPreset(
        label="1B draft + 3B target",
        pair=ModelPair(
            draft_id="meta-llama/Llama-3.2-1B-Instruct",
            target_id="meta-llama/Llama-3.2-3B-Instruct",
        ),
        required_memory=3 * GIB,
    ),
    "llama-1b-8b": ModelPairPreset(
        label="1B draft + 8B target",
        pair=ModelPair(
            draft_id="meta-llama/Llama-3.2-1B-Instruct",
            target_id="meta-llama/Llama-3.1-8B-Instruct",
        ),
        required_memory=6 * GIB,
    ),
    "llama-3b-8b": ModelPairPreset(
        label="3B draft + 8B target",
        pair=ModelPair(
            draft_id="meta-llama/Llama-3.2-3B-Instruct",
            target_id="meta-llama/Llama-3.1-8B-Instruct",
        ),
        required_memory=7 * GIB,
    ),
    "gpt2-smoke": ModelPairPreset(
        label="distilgpt2 draft + gpt2 target",
        pair=ModelPair(draft_id="distilgpt2", target_id="gpt2"),
        required_memory=1 * GIB,
    ),
}


def get_preset(name: str) -> ModelPairPreset:
    """
    Look up a preset by name.

    Raises:
        KeyError: If the name is unknown
    """
    try:
        return MODEL_PAIRS[name]
    except KeyError:
        raise KeyError(
            f"Unknown model pair preset: {name}. Available: {sorted(MODEL_PAIRS)}"
        ) from None
