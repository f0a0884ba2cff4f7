"""
Unit tests for model persistence and ensemble loading.
"""

import shutil
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import torch

from src.nmtdecode.exceptions import ConfigurationError
from src.nmtdecode.model.attention import LexicalTable
from src.nmtdecode.model.loading import (
    CLASSIFIER_MODEL_TYPES,
    load_ensemble,
    load_model,
    parse_models_in,
    save_model,
)
from src.nmtdecode.vocabulary import Vocabulary
from test_utils import make_model, make_vocabs


class TestParseModelsIn(unittest.TestCase):
    """Test the tag=path|tag=path syntax."""

    def test_parse(self):
        specs = parse_models_in("encatt=a.pt|nlm=b.pt")
        self.assertEqual(specs, [("encatt", "a.pt"), ("nlm", "b.pt")])

    def test_missing_tag(self):
        with self.assertRaises(ConfigurationError) as ctx:
            parse_models_in("a.pt")
        self.assertIn("Bad model type", str(ctx.exception))

    def test_wrong_family(self):
        with self.assertRaises(ConfigurationError):
            parse_models_in("encatt=a.pt", allowed_types=CLASSIFIER_MODEL_TYPES)

    def test_empty(self):
        with self.assertRaises(ConfigurationError):
            parse_models_in("")


class TestPersistence(unittest.TestCase):
    """Test saving and loading checkpoints."""

    def setUp(self):
        self.tmp_dir = Path(tempfile.mkdtemp())
        self.vocab_src, self.vocab_trg = make_vocabs()

    def tearDown(self):
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def _save(self, name, model_type, vocab_src, vocab_trg, **kwargs):
        path = self.tmp_dir / name
        model = make_model(model_type, vocab_src, vocab_trg, **kwargs)
        save_model(path, model_type, model, vocab_src, vocab_trg)
        return path, model

    def test_round_trip(self):
        lexicon = LexicalTable({3: [(4, 0.5)]})
        path, model = self._save("att.pt", "encatt", self.vocab_src, self.vocab_trg,
                                 lexicon=lexicon)

        loaded = load_model(path, "encatt")

        self.assertEqual(loaded.vocab_src, self.vocab_src)
        self.assertEqual(loaded.vocab_trg, self.vocab_trg)
        self.assertEqual(loaded.model.attention.lexicon.get(3), [(4, 0.5)])
        for key, value in model.state_dict().items():
            self.assertTrue(torch.equal(value, loaded.model.state_dict()[key]))

    def test_language_model_has_no_source_vocab(self):
        path, _ = self._save("lm.pt", "nlm", None, self.vocab_trg)
        loaded = load_model(path, "nlm")

        self.assertIsNone(loaded.vocab_src)

    def test_missing_file(self):
        with self.assertRaises(ConfigurationError):
            load_model(self.tmp_dir / "missing.pt", "encatt")

    def test_tag_mismatch(self):
        path, _ = self._save("dec.pt", "encdec", self.vocab_src, self.vocab_trg)
        with self.assertRaises(ConfigurationError):
            load_model(path, "encatt")

    def test_ensemble(self):
        a, _ = self._save("a.pt", "encatt", self.vocab_src, self.vocab_trg, seed=0)
        b, _ = self._save("b.pt", "encdec", self.vocab_src, self.vocab_trg, seed=1)
        lm, _ = self._save("lm.pt", "nlm", None, self.vocab_trg, seed=2)

        ensemble = load_ensemble(f"encatt={a}|encdec={b}|nlm={lm}")

        self.assertEqual(len(ensemble.models), 3)
        self.assertEqual(ensemble.vocab_src, self.vocab_src)
        self.assertTrue(ensemble.needs_source)

    def test_language_models_only(self):
        lm, _ = self._save("lm.pt", "nlm", None, self.vocab_trg)
        ensemble = load_ensemble(f"nlm={lm}")

        self.assertFalse(ensemble.needs_source)

    def test_mismatched_target_vocabularies(self):
        """Unequal target vocabularies fail at load time."""
        other_trg = Vocabulary(["the", "cat", "sleeps", "black", "dog", "runs"])
        a, _ = self._save("a.pt", "encatt", self.vocab_src, self.vocab_trg)
        b, _ = self._save("b.pt", "encatt", self.vocab_src, other_trg)

        with self.assertRaises(ConfigurationError) as ctx:
            load_ensemble(f"encatt={a}|encatt={b}")
        self.assertIn("Target vocabularies", str(ctx.exception))

    def test_mismatched_source_vocabularies(self):
        other_src = Vocabulary(["le", "chien"])
        a, _ = self._save("a.pt", "encdec", self.vocab_src, self.vocab_trg)
        b, _ = self._save("b.pt", "encdec", other_src, self.vocab_trg)

        with self.assertRaises(ConfigurationError) as ctx:
            load_ensemble(f"encdec={a}|encdec={b}")
        self.assertIn("Source vocabularies", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
