"""
Unit tests for ensemble combination.

Tests cover:
- Linear (sum) and log-linear (logsum) interpolation
- Single-model ensembles
- Construction-time validation
- Classifier ensembles
"""

import math
import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import torch
import torch.nn.functional as F

from src.nmtdecode.evaluation.metrics import LLStats
from src.nmtdecode.exceptions import ConfigurationError
from src.nmtdecode.inference.ensemble import EnsembleClassifier, EnsembleCombiner
from src.nmtdecode.inference.scorer import create_scorer
from src.nmtdecode.vocabulary import Vocabulary
from test_utils import make_model, make_vocabs


class TestEnsembleCombiner(unittest.TestCase):
    """Test the combination rules."""

    def setUp(self):
        torch.manual_seed(0)
        self.a = F.log_softmax(torch.randn(3, 6), dim=-1)
        self.b = F.log_softmax(torch.randn(3, 6), dim=-1)

    def test_single_model_is_noop(self):
        """Both rules leave a single model's distribution unchanged."""
        for op in ("sum", "logsum"):
            combined = EnsembleCombiner(op, [6]).combine([self.a])
            self.assertTrue(torch.allclose(combined, self.a))
            self.assertTrue(torch.equal(combined.argsort(dim=-1), self.a.argsort(dim=-1)))

    def test_sum_is_linear_mean(self):
        combined = EnsembleCombiner("sum", [6, 6]).combine([self.a, self.b])
        expected = torch.log((self.a.exp() + self.b.exp()) / 2)

        self.assertTrue(torch.allclose(combined, expected, atol=1e-6))

    def test_logsum_is_normalized_geometric_mean(self):
        combined = EnsembleCombiner("logsum", [6, 6]).combine([self.a, self.b])
        geometric = torch.sqrt(self.a.exp() * self.b.exp())
        expected = torch.log(geometric / geometric.sum(dim=-1, keepdim=True))

        self.assertTrue(torch.allclose(combined, expected, atol=1e-5))

    def test_outputs_are_distributions(self):
        for op in ("sum", "logsum"):
            combined = EnsembleCombiner(op, [6, 6]).combine([self.a, self.b])
            self.assertTrue(torch.allclose(combined.exp().sum(dim=-1), torch.ones(3), atol=1e-5))

    def test_identical_models(self):
        """An ensemble of identical models equals one model."""
        for op in ("sum", "logsum"):
            combined = EnsembleCombiner(op, [6, 6, 6]).combine([self.a, self.a, self.a])
            self.assertTrue(torch.allclose(combined, self.a, atol=1e-5))

    def test_no_models(self):
        with self.assertRaises(ConfigurationError):
            EnsembleCombiner("sum", [])

    def test_mismatched_vocabularies(self):
        with self.assertRaises(ConfigurationError):
            EnsembleCombiner("sum", [6, 7])

    def test_unknown_operation(self):
        with self.assertRaises(ConfigurationError):
            EnsembleCombiner("max", [6])


class TestEnsembleClassifier(unittest.TestCase):
    """Test classifier ensembles."""

    def setUp(self):
        self.vocab_src, _ = make_vocabs()
        self.labels = Vocabulary(["pos", "neg"])
        self.source = self.vocab_src.parse_words("le chat dort", add_end=False)
        self.scorers = [
            create_scorer("enccls", make_model("enccls", self.vocab_src, self.labels, seed=s))
            for s in (0, 1)
        ]

    def test_predict_is_argmax(self):
        classifier = EnsembleClassifier(self.scorers, "sum")
        log_probs = classifier.label_log_probs(self.source)

        self.assertEqual(classifier.predict(self.source), int(log_probs.argmax()))
        self.assertFalse(any(s.is_bound for s in self.scorers))

    def test_calc_eval(self):
        classifier = EnsembleClassifier(self.scorers, "logsum")
        label = classifier.predict(self.source)
        log_probs = classifier.label_log_probs(self.source)

        stats = classifier.calc_eval(self.source, label, LLStats(len(self.labels)))

        self.assertEqual(stats.words, 1)
        self.assertEqual(stats.correct, 1)
        self.assertAlmostEqual(stats.loss, -log_probs[label].item(), places=5)
        self.assertAlmostEqual(stats.calc_ppl(), math.exp(stats.loss), places=5)


if __name__ == "__main__":
    unittest.main()
