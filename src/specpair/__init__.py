"""
Speculative Decoding with a Draft/Target Model Pair

This package orchestrates speculative decoding: a small draft model proposes
candidate tokens and a larger target model verifies them, accepting exact
matches and correcting the first mismatch.

Key Components:
- engine: Public facade with the draft -> verify -> accept loop
- loader: Sequenced draft/target loading with unified progress
- status: Lifecycle state machine, abort flag and observer fan-out
- stats: Acceptance and throughput statistics
- backends: Fake and Hugging Face inference backends
- run_specpair: CLI entrypoint
"""

from .backends import BACKENDS, FakeBackend, create_backend
from .baseline import BaselineResult, BaselineRunner
from .config import DEFAULT_CONFIG, load_config, speculative_config
from .engine import GenerationResult, SpeculativeDecodingEngine
from .errors import (
    BackendNotPrimedError,
    EngineBusyError,
    NotLoadedError,
    SpecPairError,
    StatusTransitionError,
)
from .events import QueueListener
from .interfaces import InferenceBackend
from .loader import ModelPairLoader
from .presets import MODEL_PAIRS, ModelPairPreset, get_preset
from .stats import StatsTracker, recompute
from .status import StatusController
from .types import (
    DEFAULT_EOS_TOKEN_IDS,
    EngineStatus,
    ModelPair,
    ProgressEvent,
    Round,
    SpeculativeConfig,
    SpeculativeStats,
)

__version__ = "0.1.0"

__all__ = [
    "BACKENDS",
    "BackendNotPrimedError",
    "BaselineResult",
    "BaselineRunner",
    "DEFAULT_CONFIG",
    "DEFAULT_EOS_TOKEN_IDS",
    "EngineBusyError",
    "EngineStatus",
    "FakeBackend",
    "GenerationResult",
    "InferenceBackend",
    "MODEL_PAIRS",
    "ModelPair",
    "ModelPairLoader",
    "ModelPairPreset",
    "NotLoadedError",
    "ProgressEvent",
    "QueueListener",
    "Round",
    "SpecPairError",
    "SpeculativeConfig",
    "SpeculativeDecodingEngine",
    "SpeculativeStats",
    "StatsTracker",
    "StatusController",
    "StatusTransitionError",
    "create_backend",
    "get_preset",
    "load_config",
    "recompute",
    "speculative_config",
]
