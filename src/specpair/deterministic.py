"""
Deterministic seeding and reproducibility utilities.

Provides helper functions to make draft proposals reproducible across runs
on CUDA, MPS, and CPU backends.
"""

import logging
import os
import random
from typing import Optional

import numpy as np
import torch

logger = logging.getLogger(__name__)

DEFAULT_SEED = 1234


def set_deterministic_mode(seed: Optional[int] = None) -> int:
    """
    Seed every random source used during sampling.

    Args:
        seed: Random seed (default: 1234 if None)

    Returns:
        The seed that was applied
    """
    if seed is None:
        seed = DEFAULT_SEED

    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)

    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)

    if torch.backends.cudnn.is_available():
        torch.backends.cudnn.deterministic = True
        torch.backends.cudnn.benchmark = False

    os.environ["PYTHONHASHSEED"] = str(seed)
    logger.info(f"Set random seed to {seed}")
    return seed


def ensure_deterministic(seed: Optional[int] = None) -> bool:
    """
    Apply deterministic mode if SPECPAIR_DETERMINISTIC is set.

    Returns:
        True if deterministic mode was applied
    """
    env_value = os.getenv("SPECPAIR_DETERMINISTIC", "0").lower()
    if env_value in ("1", "true", "yes"):
        set_deterministic_mode(seed)
        return True
    return False
