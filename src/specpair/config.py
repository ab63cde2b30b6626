"""
Configuration Loading

Merges an optional YAML file over in-code defaults and builds the
SpeculativeConfig used by the engine.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .types import SpeculativeConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "draft_model": "distilgpt2",
    "target_model": "gpt2",
    "implementation": "fake",
    "device": "auto",
    "seed": 1234,
    "deterministic": False,
    "eos_token_ids": None,
    "event_queue_size": 256,
    "speculative": {
        "draft_length": 5,
        "max_tokens": 2048,
        "temperature": 0.7,
        "acceptance_threshold": 0.0,
    },
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file or use defaults.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Configuration dictionary; the "speculative" section is merged key by key
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    if not config_path:
        return config

    path = Path(config_path)
    if not path.exists():
        logger.warning(f"Config file not found: {config_path}, using defaults")
        return config

    try:
        with open(path, "r") as f:
            user_config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load config from {config_path}: {e}")
        logger.info("Using default configuration")
        return config

    if not isinstance(user_config, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")

    speculative = user_config.pop("speculative", None) or {}
    config.update(user_config)
    config["speculative"].update(speculative)
    logger.info(f"Loaded configuration from {config_path}")
    return config


def speculative_config(config: Dict[str, Any]) -> SpeculativeConfig:
    """Build a validated SpeculativeConfig from a loaded configuration."""
    return SpeculativeConfig.from_dict(config.get("speculative"))
