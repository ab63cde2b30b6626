"""
Model Pair Loader

Loads the draft model, then reloads a combined set holding both the draft and
the target model so the backend can sample from either. Progress from the two
backend calls is mapped onto a single 0-1 scale: [0, 0.5) for the draft load
and [0.5, 1.0] for the combined load.
"""

import logging
import time

from .interfaces import InferenceBackend
from .status import StatusController
from .types import EngineStatus, ModelPair

logger = logging.getLogger(__name__)

DRAFT_SHARE = 0.5


class ModelPairLoader:
    """Sequences backend loads for a draft/target pair."""

    def __init__(self, backend: InferenceBackend, status: StatusController):
        self.logger = logging.getLogger(__name__)
        self.backend = backend
        self.status = status

    def is_loaded(self, pair: ModelPair) -> bool:
        """Whether exactly this pair is already resident."""
        return self.status.loaded_pair == pair and all(
            self.backend.is_resident(model_id) for model_id in pair.as_list()
        )

    def load(self, pair: ModelPair) -> bool:
        """
        Load both models of a pair.

        Args:
            pair: Draft/target model identifiers

        Returns:
            True if the backend was driven, False if the pair was already resident

        Raises:
            Exception: Whatever the backend raises; status is left at ERROR
        """
        if self.is_loaded(pair):
            self.logger.debug(f"Model pair already resident: {pair}")
            return False

        start_time = time.time()
        self.status.loaded_pair = None
        self.logger.info(
            f"Loading model pair: draft={pair.draft_id}, target={pair.target_id}"
        )

        try:
            self.status.transition(EngineStatus.LOADING_MODEL, 0.0)
            self.backend.load_model(pair.draft_id, self._scaled(0.0))
            self.backend.load_models(pair.as_list(), self._scaled(DRAFT_SHARE))
            self.status.loaded_pair = pair
            self.status.transition(EngineStatus.READY, 1.0)
        except Exception as e:
            self.logger.error(f"Failed to load model pair {pair}: {e}")
            self.status.loaded_pair = None
            self.status.transition(EngineStatus.ERROR)
            raise

        self.logger.info(
            f"Model pair loaded in {(time.time() - start_time) * 1000:.1f}ms"
        )
        return True

    def _scaled(self, base: float):
        def report(progress: float) -> None:
            scaled = base + min(1.0, max(0.0, progress)) * DRAFT_SHARE
            # The draft phase never reports completion of the whole pair
            if base == 0.0:
                scaled = min(scaled, DRAFT_SHARE - 1e-6)
            self.status.report(scaled)

        return report
