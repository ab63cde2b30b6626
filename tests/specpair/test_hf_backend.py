"""
Tests for the Hugging Face backend.

The integration tests build tiny randomly initialized GPT-2 models in memory,
so nothing is downloaded.
"""

import sys
from pathlib import Path

import pytest

torch = pytest.importorskip("torch")
transformers = pytest.importorskip("transformers")

# Add src to path for imports
PROJECT_ROOT = Path(__file__).parent.parent.parent
SRC_DIR = PROJECT_ROOT / "src"
sys.path.insert(0, str(SRC_DIR))

from specpair import (  # noqa: E402
    BaselineRunner,
    EngineStatus,
    ModelPair,
    SpeculativeConfig,
    SpeculativeDecodingEngine,
    create_backend,
)
from specpair.backends.hf import HFBackend, sample_from_logits, select_device  # noqa: E402

VOCAB_SIZE = 64


class ByteTokenizer:
    """Minimal tokenizer mapping bytes into a small vocabulary."""

    # Outside the vocabulary so runs are never cut short
    eos_token_id = VOCAB_SIZE
    chat_template = None

    def encode(self, text):
        return [b % VOCAB_SIZE for b in text.encode("utf-8")]

    def decode(self, token_ids, skip_special_tokens=False):
        return "".join(f" t{t}" for t in token_ids)


def tiny_loader(model_id, device, torch_dtype):
    """Build an identical tiny GPT-2 for every model id."""
    torch.manual_seed(0)
    config = transformers.GPT2Config(
        vocab_size=VOCAB_SIZE, n_positions=256, n_embd=32, n_layer=2, n_head=2
    )
    return transformers.GPT2LMHeadModel(config), ByteTokenizer()


class TestSampling:
    def test_greedy(self):
        logits = torch.tensor([[0.1, 2.0, -1.0]])
        assert sample_from_logits(logits, 0.0) == 1

    def test_temperature_sampling(self):
        logits = torch.tensor([float("-inf"), 0.0, float("-inf")])
        assert sample_from_logits(logits, 0.7) == 1

    def test_select_device(self):
        assert select_device("cpu") == "cpu"
        assert select_device("auto") in ("cpu", "cuda", "mps")


@pytest.mark.integration
class TestHFBackendIntegration:
    """End-to-end runs over tiny in-memory GPT-2 models."""

    @pytest.fixture
    def backend(self):
        return HFBackend(device="cpu", model_loader=tiny_loader)

    def test_create_backend(self):
        backend = create_backend("hf", device="cpu", model_loader=tiny_loader)
        assert isinstance(backend, HFBackend)

    def test_load_and_release(self, backend):
        progress = []
        backend.load_models(["draft", "target"], progress.append)

        assert progress[-1] == 1.0
        assert backend.is_resident("draft") and backend.is_resident("target")
        assert backend.eos_token_ids("target") == {VOCAB_SIZE}

        backend.load_model("draft")
        assert not backend.is_resident("target")
        backend.release_model()
        assert not backend.is_resident("draft")

    def test_sampling_semantics(self, backend):
        """Greedy sampling is reproducible and fresh continues from pending."""
        backend.load_models(["m"])
        messages = [{"role": "user", "content": "hello"}]

        backend.prime_with_prompt(messages, 1, "m", temperature=0.0)
        first = backend.sample_next_token([], True, "m")
        second = backend.sample_next_token([], True, "m")

        backend.prime_with_prompt(messages, 1, "m", temperature=0.0)
        assert backend.sample_next_token([], True, "m") == first
        assert backend.sample_next_token([first], False, "m") == second

        with pytest.raises(ValueError):
            backend.sample_next_token([], False, "m")

    def test_speculative_generation(self, backend):
        """The engine runs end to end and respects the token budget."""
        engine = SpeculativeDecodingEngine(
            backend, SpeculativeConfig(draft_length=3, max_tokens=12, temperature=0.0)
        )
        pair = ModelPair(draft_id="tiny-draft", target_id="tiny-target")
        engine.load_models(pair)

        text, stats = engine.generate("hello")

        assert engine.get_status() == EngineStatus.READY
        assert isinstance(text, str)
        assert stats.total_tokens <= 12
        assert stats.draft_rounds >= 1
        # Identical greedy models agree on the first round
        assert stats.accepted_tokens >= 1

        baseline = BaselineRunner(backend, pair.target_id).run(
            "hello", max_tokens=12, temperature=0.0
        )
        assert baseline.total_tokens <= 12
