"""
CLI Entrypoint for Speculative Decoding

Command-line interface for running draft/target speculative decoding with
JSON output. Supports configuration files, model-pair presets and a
target-only baseline for measured speedups.

Usage:
    specpair --prompt "Explain KV cache simply." --max-tokens 64 --verbose
    specpair --impl hf --pair gpt2-smoke --prompt "Hello" --compare-baseline
    python -m specpair.run_specpair --config configs/specpair.yaml --prompt "Test"
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

import psutil

from .backends import BACKENDS, create_backend
from .baseline import BaselineRunner
from .config import load_config, speculative_config
from .deterministic import ensure_deterministic, set_deterministic_mode
from .engine import SpeculativeDecodingEngine
from .events import QueueListener
from .presets import MODEL_PAIRS, get_preset
from .types import ModelPair


def setup_logging(verbose: bool = False) -> None:
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Speculative Decoding CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  specpair --prompt "Hello world" --max-tokens 32
  specpair --impl hf --pair gpt2-smoke --prompt "Hello world" --compare-baseline
  specpair --config configs/specpair.yaml --prompt "Test" --verbose
        """,
    )

    # Required arguments
    parser.add_argument("--prompt", type=str, required=True, help="Input prompt text")

    # Optional arguments
    parser.add_argument("--config", type=str, help="Path to YAML configuration file")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--impl",
        type=str,
        choices=BACKENDS,
        help="Backend implementation: fake for testing, hf for real models",
    )

    # Model parameters
    parser.add_argument(
        "--pair",
        type=str,
        choices=sorted(MODEL_PAIRS),
        help="Model pair preset (overrides config)",
    )
    parser.add_argument("--draft-model", type=str, help="Draft model (overrides pair)")
    parser.add_argument("--target-model", type=str, help="Target model (overrides pair)")
    parser.add_argument(
        "--device",
        type=str,
        choices=["auto", "cpu", "mps", "cuda"],
        help="Device to run on (hf backend only)",
    )

    # Generation parameters
    parser.add_argument(
        "--draft-length", type=int, help="Draft tokens per round (overrides config)"
    )
    parser.add_argument(
        "--max-tokens", type=int, help="Maximum tokens to generate (overrides config)"
    )
    parser.add_argument(
        "--temperature", type=float, help="Sampling temperature (overrides config)"
    )
    parser.add_argument(
        "--seed", type=int, help="Random seed for reproducibility (overrides config)"
    )
    parser.add_argument(
        "--stream",
        action="store_true",
        help="Echo incremental text to stderr while generating",
    )
    parser.add_argument(
        "--compare-baseline",
        action="store_true",
        help="Also run target-only decoding and report the measured speedup",
    )

    return parser.parse_args(argv)


def resolve_pair(args: argparse.Namespace, config: Dict[str, Any]) -> ModelPair:
    """Pick the model pair from CLI flags, preset, then config."""
    draft_id = config["draft_model"]
    target_id = config["target_model"]
    if args.pair:
        preset = get_preset(args.pair).pair
        draft_id, target_id = preset.draft_id, preset.target_id
    return ModelPair(
        draft_id=args.draft_model or draft_id,
        target_id=args.target_model or target_id,
    )


def status_history(events: QueueListener) -> List[str]:
    """Collapse buffered events into the sequence of distinct statuses."""
    history: List[str] = []
    for event in events.drain():
        if not history or history[-1] != event.status.value:
            history.append(event.status.value)
    return history


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entrypoint."""
    args = parse_args(argv)

    # Set up logging
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        config = load_config(args.config)
        if args.impl:
            config["implementation"] = args.impl
        if args.device:
            config["device"] = args.device
        if args.seed is not None:
            config["seed"] = args.seed

        if args.seed is not None or config.get("deterministic"):
            set_deterministic_mode(config["seed"])
        else:
            ensure_deterministic(config["seed"])

        cfg = speculative_config(config).merged(
            draft_length=args.draft_length,
            max_tokens=args.max_tokens,
            temperature=args.temperature,
        )
        pair = resolve_pair(args, config)

        implementation = config["implementation"]
        backend_kwargs: Dict[str, Any] = {}
        if implementation == "hf":
            backend_kwargs["device"] = config["device"]
        backend = create_backend(implementation, **backend_kwargs)

        logger.info(f"Initializing speculative decoding engine (impl={implementation})...")
        engine = SpeculativeDecodingEngine(
            backend, config=cfg, eos_token_ids=config.get("eos_token_ids")
        )
        events = QueueListener(config["event_queue_size"])
        engine.add_listener(events)
        engine.load_models(pair)

        on_text = None
        if args.stream:

            def on_text(new_text: str, full_text: str) -> None:
                sys.stderr.write(new_text)
                sys.stderr.flush()

        logger.info(f"Generating text for prompt: '{args.prompt[:50]}...'")
        text, stats = engine.generate(args.prompt, cfg, on_text)
        if args.stream:
            sys.stderr.write("\n")

        output: Dict[str, Any] = {
            "text": text,
            "stats": stats.to_dict(),
            "status": engine.get_status().value,
            "draft_model": pair.draft_id,
            "target_model": pair.target_id,
            "impl": implementation,
            "config": cfg.to_dict(),
            "mem_rss_mb": psutil.Process().memory_info().rss / 1024 / 1024,
            "status_history": status_history(events),
        }

        if args.compare_baseline:
            baseline = BaselineRunner(
                backend, pair.target_id, eos_token_ids=config.get("eos_token_ids")
            ).run(args.prompt, max_tokens=cfg.max_tokens, temperature=cfg.temperature)
            output["baseline"] = baseline.to_dict()
            output["measured_speedup"] = (
                stats.tokens_per_second / baseline.tokens_per_second
                if baseline.tokens_per_second > 0
                else None
            )

        engine.unload()

        # Print JSON result to stdout
        print(json.dumps(output, indent=None))
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 1
    except Exception as e:
        logger.error(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
