"""
Tests for the fake inference backend.
"""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
PROJECT_ROOT = Path(__file__).parent.parent.parent
SRC_DIR = PROJECT_ROOT / "src"
sys.path.insert(0, str(SRC_DIR))

from specpair import BackendNotPrimedError, FakeBackend, create_backend  # noqa: E402

MESSAGES = [{"role": "user", "content": "Hello"}]


class TestFakeBackend:
    """Test deterministic sampling semantics."""

    @pytest.fixture
    def backend(self):
        backend = FakeBackend(vocab_size=100)
        backend.load_models(["m"])
        return backend

    def test_sample_requires_priming(self, backend):
        with pytest.raises(BackendNotPrimedError):
            backend.sample_next_token([], True, "m")

    def test_sample_requires_resident_model(self, backend):
        with pytest.raises(KeyError):
            backend.sample_next_token([], True, "other")

    def test_continuation_needs_input(self, backend):
        """fresh=False with no input token is a caller error."""
        backend.prime_with_prompt(MESSAGES, 1, "m")
        with pytest.raises(ValueError):
            backend.sample_next_token([], False, "m")

    def test_deterministic_per_prompt(self, backend):
        backend.prime_with_prompt(MESSAGES, 1, "m")
        first = [backend.sample_next_token([], True, "m") for _ in range(5)]
        backend.prime_with_prompt(MESSAGES, 1, "m")
        second = [backend.sample_next_token([], True, "m") for _ in range(5)]
        assert first == second

    def test_input_token_drives_next(self, backend):
        """The same input token yields the same next token."""
        backend.prime_with_prompt(MESSAGES, 1, "m")
        a = backend.sample_next_token([42], False, "m")
        b = backend.sample_next_token([42], False, "m")
        assert a == b

    def test_fresh_continues_from_pending(self, backend):
        """A fresh call with no input continues from the last sampled token."""
        backend.prime_with_prompt(MESSAGES, 1, "m")
        first = backend.sample_next_token([], True, "m")
        fresh = backend.sample_next_token([], True, "m")
        explicit = backend.sample_next_token([first], False, "m")
        assert fresh == explicit

    def test_tokens_avoid_special_ids(self, backend):
        backend.prime_with_prompt(MESSAGES, 1, "m")
        tokens = [backend.sample_next_token([t], False, "m") for t in range(100)]
        assert not set(tokens) & {0, 1, 2, 3}

    def test_scripts_then_eos(self):
        backend = FakeBackend(scripts={"m": [7, 8]})
        backend.load_models(["m"])
        backend.prime_with_prompt(MESSAGES, 1, "m")

        tokens = [backend.sample_next_token([], True, "m") for _ in range(3)]
        assert tokens == [7, 8, 1]
        # EOS is never part of the accumulated text
        assert backend.get_accumulated_text("m") == " w7 w8"

    def test_eos_after(self):
        backend = FakeBackend(eos_after=2)
        backend.load_models(["m"])
        backend.prime_with_prompt(MESSAGES, 1, "m")

        tokens = [backend.sample_next_token([], True, "m") for _ in range(3)]
        assert tokens[-1] == 1
        assert 1 not in tokens[:2]

    def test_disagree_every(self):
        """Perturbed models drift from unperturbed ones on every n-th sample."""
        backend = FakeBackend(disagree_every={"b": 2})
        backend.load_models(["a", "b"])
        for model_id in ("a", "b"):
            backend.prime_with_prompt(MESSAGES, 1, model_id)

        a = [backend.sample_next_token([t], False, "a") for t in (10, 20, 30, 40)]
        b = [backend.sample_next_token([t], False, "b") for t in (10, 20, 30, 40)]
        assert a[0] == b[0]
        assert a[1] != b[1]
        assert a[2] == b[2]

    def test_reset_clears_text(self, backend):
        backend.prime_with_prompt(MESSAGES, 1, "m")
        backend.sample_next_token([], True, "m")
        backend.reset_conversation("m")
        assert backend.get_accumulated_text("m") == ""
        with pytest.raises(BackendNotPrimedError):
            backend.sample_next_token([], True, "m")

    def test_load_progress(self):
        backend = FakeBackend(load_steps=2)
        progress = []
        backend.load_model("m", progress.append)
        assert progress == [0.0, 0.5, 1.0]
        assert backend.is_resident("m")

    def test_load_failure(self):
        backend = FakeBackend(fail_on_load={"bad"})
        with pytest.raises(RuntimeError):
            backend.load_models(["good", "bad"])
        assert backend.resident == []

    def test_release(self, backend):
        backend.release_model()
        assert not backend.is_resident("m")

    def test_eos_ids(self, backend):
        assert backend.eos_token_ids("m") == {1}


class TestCreateBackend:
    def test_fake(self):
        assert isinstance(create_backend("fake", vocab_size=10), FakeBackend)

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown implementation"):
            create_backend("onnx")
