"""
Speculative Decoding Engine

Runs a small draft model and a larger target model in tandem. Each round:
1. Draft model proposes up to K tokens, one at a time
2. Target model samples the token at each position, fed with the previous
   draft token; exact matches are accepted
3. At the first mismatch the target's own token replaces the draft token
4. If every draft token matched, one bonus token is sampled from the target
5. Repeat until max_tokens, abort, zero acceptance or a draft EOS;
   a target EOS is only discarded
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Set, Union

from .errors import NotLoadedError
from .interfaces import (
    Conversation,
    InferenceBackend,
    Message,
    normalize_conversation,
)
from .loader import ModelPairLoader
from .stats import StatsTracker
from .status import Listener, ProgressCallback, StatusController
from .types import (
    DEFAULT_EOS_TOKEN_IDS,
    EngineStatus,
    ModelPair,
    Round,
    SpeculativeConfig,
    SpeculativeStats,
)

logger = logging.getLogger(__name__)

TextCallback = Callable[[str, str], None]


class GenerationResult(NamedTuple):
    """Final text and statistics of one generate() call."""

    text: str
    stats: SpeculativeStats


class SpeculativeDecodingEngine:
    """Draft/target speculative decoding over an injected inference backend."""

    def __init__(
        self,
        backend: InferenceBackend,
        config: Optional[SpeculativeConfig] = None,
        eos_token_ids: Optional[Iterable[int]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize the engine.

        Args:
            backend: Backend that loads and samples the draft and target models
            config: Default generation config (per-call values override it)
            eos_token_ids: EOS IDs; if None, the backend's IDs or the defaults
            clock: Clock in seconds used for statistics (default: perf_counter)
        """
        self.logger = logging.getLogger(__name__)
        self.backend = backend
        self.config = (config or SpeculativeConfig()).validate()
        self._eos_override: Optional[Set[int]] = (
            set(eos_token_ids) if eos_token_ids is not None else None
        )
        self._clock = clock
        self._status = StatusController()
        self._loader = ModelPairLoader(backend, self._status)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def set_progress_callback(self, callback: Optional[ProgressCallback]) -> None:
        """Register fn(status, load_progress, stats), replacing any previous one."""
        self._status.set_progress_callback(callback)

    def add_listener(self, listener: Listener) -> None:
        self._status.add_listener(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._status.remove_listener(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load_models(self, pair: ModelPair) -> None:
        """
        Load the draft and target models; no-op if the pair is already resident.

        Raises:
            EngineBusyError: If a load or generation is in flight
        """
        with self._status.exclusive("load_models"):
            self._loader.load(pair)

    def abort(self) -> None:
        """Stop generation at the next round boundary."""
        self.logger.debug("Abort requested")
        self._status.request_abort()

    def get_status(self) -> EngineStatus:
        return self._status.status

    def is_ready(self) -> bool:
        return (
            self._status.status == EngineStatus.READY
            and self._status.loaded_pair is not None
        )

    def get_loaded_pair(self) -> Optional[ModelPair]:
        return self._status.loaded_pair

    def reset_conversation(self) -> None:
        """
        Drop conversation state on both models.

        Raises:
            NotLoadedError: If no model pair is resident
        """
        pair = self._require_pair()
        self.backend.reset_conversation(pair.draft_id)
        self.backend.reset_conversation(pair.target_id)

    def unload(self) -> None:
        """
        Release both models and return to IDLE.

        Raises:
            EngineBusyError: If a load or generation is in flight
        """
        with self._status.exclusive("unload"):
            self.backend.release_model()
            self._status.loaded_pair = None
            self._status.transition(EngineStatus.IDLE)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate(
        self,
        conversation: Conversation,
        config: Union[SpeculativeConfig, Dict[str, Any], None] = None,
        on_text: Optional[TextCallback] = None,
    ) -> GenerationResult:
        """
        Generate a reply to a conversation with speculative decoding.

        Args:
            conversation: Chat messages, or a bare prompt string
            config: Full config, or a dict of overrides for the engine default
            on_text: Called as on_text(new_text, full_text) after each round
                that produced text

        Returns:
            GenerationResult(text, stats)

        Raises:
            NotLoadedError: If no model pair is resident
            EngineBusyError: If a load or generation is in flight
        """
        cfg = self._resolve_config(config)
        with self._status.exclusive("generate"):
            pair = self._require_pair()
            self._status.clear_abort()
            try:
                # Observers run inside transition(); their failures also end in ERROR
                self._status.transition(EngineStatus.GENERATING)
                result = self._run(pair, normalize_conversation(conversation), cfg, on_text)
                self._status.transition(EngineStatus.READY, 0.0, result.stats)
            except Exception as e:
                self.logger.error(f"Speculative decoding failed: {e}")
                self._status.transition(EngineStatus.ERROR)
                raise
            return result

    def _run(
        self,
        pair: ModelPair,
        messages: List[Message],
        cfg: SpeculativeConfig,
        on_text: Optional[TextCallback],
    ) -> GenerationResult:
        tracker = StatsTracker(self._clock)
        eos_ids = self._eos_ids(pair)

        self.logger.info(
            f"Starting speculative decoding: draft={pair.draft_id}, "
            f"target={pair.target_id}, draft_length={cfg.draft_length}, "
            f"max_tokens={cfg.max_tokens}"
        )

        # Both caches must hold the same prompt before per-token sampling
        self.backend.prime_with_prompt(messages, 1, pair.draft_id, cfg.temperature)
        self.backend.prime_with_prompt(messages, 1, pair.target_id, cfg.temperature)

        full_text = ""
        generated = 0

        while generated < cfg.max_tokens and not self._status.abort_requested:
            tracker.start_round()
            budget = min(cfg.draft_length, cfg.max_tokens - generated)
            round_ = self._draft(pair, budget, eos_ids)

            if not round_.draft_tokens:
                self.logger.info("Draft model produced EOS immediately, stopping")
                break

            self._verify(pair, round_, eos_ids)
            if round_.fully_accepted and not round_.draft_hit_eos:
                if len(round_.accepted_tokens) < cfg.max_tokens - generated:
                    self._sample_bonus(pair, round_, eos_ids)
            tracker.record_round(round_)

            self.logger.debug(
                f"Round {tracker.stats.draft_rounds}: "
                f"drafted={len(round_.draft_tokens)}, matched={round_.matched}, "
                f"rejected={round_.rejected}, bonus={round_.bonus_token is not None}, "
                f"total={generated}/{cfg.max_tokens}"
            )

            if not round_.accepted_tokens:
                self.logger.info("No tokens accepted this round, stopping")
                break

            current = self.backend.get_accumulated_text(pair.target_id)
            new_text = current[len(full_text):]
            if new_text:
                full_text = current
                generated += len(round_.accepted_tokens)
                snapshot = tracker.record_materialized(generated)
                if on_text is not None:
                    on_text(new_text, full_text)
                self._status.report(0.0, snapshot)

            if round_.target_hit_eos:
                self.logger.debug("Target EOS discarded, continuing")

            if round_.draft_hit_eos:
                self.logger.info("Draft model generated EOS, stopping")
                break

        if self._status.abort_requested:
            self.logger.info(f"Generation aborted after {generated} tokens")

        stats = tracker.refresh()
        self.logger.info(
            f"Speculative decoding completed: {stats.total_tokens} tokens "
            f"in {stats.elapsed_ms:.2f}ms ({stats.tokens_per_second:.2f} tokens/sec, "
            f"acceptance_rate={stats.acceptance_rate:.3f}, "
            f"speedup~{stats.estimated_speedup:.2f}x)"
        )
        return GenerationResult(full_text, stats)

    def _draft(self, pair: ModelPair, budget: int, eos_ids: Set[int]) -> Round:
        """Sample up to `budget` tokens from the draft model, feeding each back in."""
        round_ = Round()
        for _ in range(budget):
            draft = round_.draft_tokens
            token = self.backend.sample_next_token(
                draft[-1:], not draft, pair.draft_id
            )
            if token in eos_ids:
                round_.draft_hit_eos = True
                break
            draft.append(token)
        return round_

    def _verify(self, pair: ModelPair, round_: Round, eos_ids: Set[int]) -> None:
        """Check each draft position against the target, fed with the previous draft token."""
        draft = round_.draft_tokens
        for i, proposed in enumerate(draft):
            inputs = [] if i == 0 else [draft[i - 1]]
            target_token = self.backend.sample_next_token(inputs, i == 0, pair.target_id)
            if target_token == proposed:
                round_.accepted_tokens.append(target_token)
                round_.matched += 1
                continue

            round_.diverged = True
            if target_token in eos_ids:
                round_.target_hit_eos = True
            else:
                round_.accepted_tokens.append(target_token)
            round_.rejected = len(draft) - i
            break

    def _sample_bonus(self, pair: ModelPair, round_: Round, eos_ids: Set[int]) -> None:
        """Sample one extra target token after a fully accepted round."""
        token = self.backend.sample_next_token(
            [round_.draft_tokens[-1]], False, pair.target_id
        )
        if token in eos_ids:
            round_.target_hit_eos = True
            return
        round_.bonus_token = token
        round_.accepted_tokens.append(token)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_pair(self) -> ModelPair:
        pair = self._status.loaded_pair
        if pair is None:
            raise NotLoadedError()
        return pair

    def _resolve_config(
        self, config: Union[SpeculativeConfig, Dict[str, Any], None]
    ) -> SpeculativeConfig:
        if config is None:
            return self.config
        if isinstance(config, SpeculativeConfig):
            return config.validate()
        return self.config.merged(**config)

    def _eos_ids(self, pair: ModelPair) -> Set[int]:
        if self._eos_override is not None:
            return self._eos_override
        declared = self.backend.eos_token_ids(pair.draft_id) | self.backend.eos_token_ids(
            pair.target_id
        )
        return declared or set(DEFAULT_EOS_TOKEN_IDS)
