"""
Core Data Types for Speculative Decoding

Defines the value objects shared by the loader, the decoding loop and the
status controller: model pairs, generation configuration, per-round outcomes,
cumulative statistics and the engine lifecycle status.
"""

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

# Common EOS token IDs across Llama-family tokenizers
DEFAULT_EOS_TOKEN_IDS: FrozenSet[int] = frozenset(
    {
        0,  # <unk> - some tokenizers
        1,  # <s> - BOS sometimes reused
        2,  # </s> - standard EOS
        128001,  # <|end_of_text|> Llama 3
        128009,  # <|eot_id|> Llama 3
    }
)


class EngineStatus(str, Enum):
    """Lifecycle status of a speculative decoding engine."""

    IDLE = "idle"
    LOADING_MODEL = "loading-model"
    READY = "ready"
    GENERATING = "generating"
    ERROR = "error"


@dataclass(frozen=True)
class ModelPair:
    """
    Pairing of a small draft model with a larger target model.

    The draft model is assumed to be cheaper to run than the target model.
    This is documented, not enforced.
    """

    draft_id: str
    target_id: str

    def as_list(self) -> List[str]:
        """Return both identifiers in load order (draft first)."""
        return [self.draft_id, self.target_id]


@dataclass(frozen=True)
class SpeculativeConfig:
    """
    Configuration for one speculative generation call.

    Attributes:
        draft_length: Number of tokens the draft model proposes per round
        max_tokens: Maximum total tokens to generate
        temperature: Sampling temperature passed to the backend for both models
        acceptance_threshold: Reserved probability-ratio threshold. Acceptance
            is exact-match only, so this is carried but never consulted.
    """

    draft_length: int = 5
    max_tokens: int = 2048
    temperature: float = 0.7
    acceptance_threshold: float = 0.0

    def validate(self) -> "SpeculativeConfig":
        """Raise ValueError if any field is out of range, else return self."""
        if self.draft_length < 1:
            raise ValueError(f"draft_length must be >= 1, got {self.draft_length}")
        if self.max_tokens < 0:
            raise ValueError(f"max_tokens must be >= 0, got {self.max_tokens}")
        if self.temperature < 0:
            raise ValueError(f"temperature must be >= 0, got {self.temperature}")
        if not 0.0 <= self.acceptance_threshold <= 1.0:
            raise ValueError(
                "acceptance_threshold must be within [0, 1], "
                f"got {self.acceptance_threshold}"
            )
        return self

    def merged(self, **overrides: Any) -> "SpeculativeConfig":
        """Return a validated copy with the non-None overrides applied."""
        values = self.to_dict()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return type(self).from_dict(values)

    @classmethod
    def from_dict(cls, values: Optional[Dict[str, Any]]) -> "SpeculativeConfig":
        """
        Build a config from a (possibly partial) dictionary.

        Unknown keys are rejected so typos in YAML files surface early.
        """
        values = dict(values or {})
        known = set(cls.__dataclass_fields__)
        unknown = set(values) - known
        if unknown:
            raise ValueError(
                f"Unknown speculative config keys: {sorted(unknown)}. "
                f"Available: {sorted(known)}"
            )
        return cls(**values).validate()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Round:
    """
    Outcome of one draft -> verify -> accept cycle.

    Exists only within one iteration of the decoding loop.
    """

    draft_tokens: List[int] = field(default_factory=list)
    accepted_tokens: List[int] = field(default_factory=list)
    # Draft tokens confirmed by the target (excludes replacement and bonus)
    matched: int = 0
    # Draft tokens from the divergence point onwards
    rejected: int = 0
    diverged: bool = False
    draft_hit_eos: bool = False
    target_hit_eos: bool = False
    bonus_token: Optional[int] = None

    @property
    def fully_accepted(self) -> bool:
        return bool(self.draft_tokens) and not self.diverged


@dataclass
class SpeculativeStats:
    """
    Cumulative statistics for one generation call.

    Attributes:
        total_tokens: Tokens materialized into the output text
        accepted_tokens: Draft tokens confirmed by the target, plus bonus tokens
        rejected_tokens: Draft tokens discarded at or after a divergence
        draft_rounds: Number of rounds started
        avg_acceptance_length: accepted_tokens / draft_rounds
        tokens_per_second: Wall-clock throughput of materialized tokens
        estimated_speedup: max(1, avg_acceptance_length)
        elapsed_ms: Wall-clock time since the call started
    """

    total_tokens: int = 0
    accepted_tokens: int = 0
    rejected_tokens: int = 0
    draft_rounds: int = 0
    avg_acceptance_length: float = 0.0
    tokens_per_second: float = 0.0
    estimated_speedup: float = 1.0
    elapsed_ms: float = 0.0

    @property
    def acceptance_rate(self) -> float:
        """Fraction of verified draft tokens that were accepted."""
        verified = self.accepted_tokens + self.rejected_tokens
        return self.accepted_tokens / verified if verified > 0 else 0.0

    def copy(self) -> "SpeculativeStats":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["acceptance_rate"] = self.acceptance_rate
        return data


@dataclass(frozen=True)
class ProgressEvent:
    """Status notification delivered to progress callbacks and listeners."""

    status: EngineStatus
    load_progress: float
    stats: SpeculativeStats
