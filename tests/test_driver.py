"""
Unit tests for the batch driver.

Tests cover:
- Perplexity over paired streams
- n-best rescoring and batching
- Generation with unknown-word replacement
- Stream desynchronization and length-limit handling
- Classification
"""

import io
import math
import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.nmtdecode.exceptions import (
    ConfigurationError,
    StreamMismatchError,
    UnsupportedOperationError,
)
from src.nmtdecode.inference.beam_search import EnsembleDecoder
from src.nmtdecode.inference.driver import BatchDriver, ClassifierDriver
from src.nmtdecode.inference.ensemble import EnsembleClassifier
from src.nmtdecode.inference.mapping import load_mapping, map_words
from src.nmtdecode.inference.scorer import create_scorer
from src.nmtdecode.vocabulary import Vocabulary
from test_utils import (
    SRC_LINES,
    TRG_LINES,
    TableScorer,
    cleanup_test_files,
    create_temp_test_file,
    make_model,
    make_vocabs,
)


def parse_ll(lines):
    return [float(line.split()[0][3:]) for line in lines]


class TestMapping(unittest.TestCase):
    """Test the mapping table and unknown-word replacement."""

    def test_keeps_best_translation(self):
        path = create_temp_test_file("chat\tcat\t0.9\nchat\tkitty\t0.2\nchien\tdog\t0.5\n")
        try:
            mapping = load_mapping(path)
        finally:
            cleanup_test_files(path)

        self.assertEqual(mapping["chat"], ("cat", 0.9))
        self.assertEqual(mapping["chien"][0], "dog")

    def test_bad_column_count(self):
        path = create_temp_test_file("chat\tcat\n")
        try:
            with self.assertRaises(ConfigurationError):
                load_mapping(path)
        finally:
            cleanup_test_files(path)

    def test_missing_file(self):
        with self.assertRaises(ConfigurationError):
            load_mapping("does/not/exist.tsv")

    def test_replaces_aligned_unknown(self):
        trg_strs = ["the", "<unk>"]
        map_words(["le", "chat"], [2, 1, 0], [0, 1, 1], {"chat": ("cat", 0.9)}, trg_strs)
        self.assertEqual(trg_strs, ["the", "cat"])

    def test_copies_unmapped_source_word(self):
        trg_strs = ["<unk>", "sleeps"]
        map_words(["minou", "dort"], [1, 5, 0], [0, 1, 1], {}, trg_strs)
        self.assertEqual(trg_strs, ["minou", "sleeps"])

    def test_no_alignment_keeps_output(self):
        trg_strs = ["<unk>"]
        map_words(["chat"], [1, 0], [-1, -1], {"chat": ("cat", 0.9)}, trg_strs)
        self.assertEqual(trg_strs, ["<unk>"])


class TestGeneration(unittest.TestCase):
    """Test the gen operation."""

    def setUp(self):
        self.vocab_src = Vocabulary(["le"])
        self.vocab_trg = Vocabulary(["the"])
        # Emits "the <unk>" with the unknown aligned to source position 1
        table = {None: [0.0, 0.0, 1.0], 2: [0.0, 1.0, 0.0], 1: [1.0, 0.0, 0.0]}
        self.scorer = TableScorer(3, table, src_len=2, requires_source=True)

    def _driver(self, mapping=None, size_limit=10):
        decoder = EnsembleDecoder([self.scorer], beam_size=2, size_limit=size_limit)
        return BatchDriver(decoder, self.vocab_src, self.vocab_trg, mapping=mapping)

    def test_mapping_replaces_unknown(self):
        out = io.StringIO()
        self._driver(mapping={"chat": ("cat", 0.9)}).generate(["le chat\n"], out)

        self.assertEqual(out.getvalue(), "the cat\n")

    def test_unknown_copies_source_word(self):
        out = io.StringIO()
        self._driver().generate(["le chat\n"], out)

        self.assertEqual(out.getvalue(), "the chat\n")

    def test_one_line_per_source(self):
        out = io.StringIO()
        report = self._driver().generate(["le chat", "le chien", "chat le"], out)

        self.assertEqual(len(out.getvalue().splitlines()), 3)
        self.assertEqual(report.sentences, 3)

    def test_sentence_range(self):
        decoder = EnsembleDecoder([self.scorer], size_limit=10)
        driver = BatchDriver(decoder, self.vocab_src, self.vocab_trg, sent_range=(1, 2))
        out = io.StringIO()

        report = driver.generate(["le", "le chat", "le le"], out)

        self.assertEqual(report.sentences, 1)
        self.assertEqual(len(out.getvalue().splitlines()), 1)

    def test_length_limit_skips_sentence(self):
        out = io.StringIO()
        with self.assertLogs("src.nmtdecode.inference.driver", level="WARNING"):
            report = self._driver(size_limit=3).generate(["le chat le chat", "le chat"], out)

        self.assertEqual(out.getvalue().splitlines(), ["", "the chat"])
        self.assertEqual(report.skipped, 1)

    def test_language_model_needs_range(self):
        scorer = TableScorer(3, {None: [1.0, 0.0, 0.0]})
        decoder = EnsembleDecoder([scorer], size_limit=5)
        driver = BatchDriver(decoder, None, self.vocab_trg, needs_source=False)

        with self.assertRaises(ConfigurationError):
            driver.generate(None, io.StringIO())

        out = io.StringIO()
        BatchDriver(decoder, None, self.vocab_trg, needs_source=False,
                    sent_range=(0, 2)).generate(None, out)
        self.assertEqual(out.getvalue(), "\n\n")

    def test_sampling_not_supported(self):
        with self.assertRaises(UnsupportedOperationError):
            self._driver().sample(["le chat"], io.StringIO())


class TestPerplexity(unittest.TestCase):
    """Test the ppl operation."""

    def setUp(self):
        self.vocab_src, self.vocab_trg = make_vocabs()
        scorer = create_scorer("encatt", make_model("encatt", self.vocab_src, self.vocab_trg))
        self.decoder = EnsembleDecoder([scorer], size_limit=10)

    def _driver(self, **kwargs):
        return BatchDriver(self.decoder, self.vocab_src, self.vocab_trg, **kwargs)

    def test_report(self):
        out = io.StringIO()
        report = self._driver(verbose=1).perplexity(TRG_LINES, SRC_LINES, out)

        lines = out.getvalue().splitlines()
        self.assertEqual(len(lines), 3)
        self.assertTrue(all(line.startswith("ll=") and " unk=0" in line for line in lines))
        self.assertEqual(report.words, sum(len(t.split()) + 1 for t in TRG_LINES))
        self.assertEqual(report.unk, 0)

        # Corpus ppl is exp of the summed per-sentence losses over the words
        total_ll = sum(parse_ll(lines))
        self.assertAlmostEqual(report.ppl, math.exp(-total_ll / report.words), places=3)
        self.assertIn("ppl=", str(report))

    def test_source_ends_early(self):
        with self.assertRaises(StreamMismatchError):
            self._driver().perplexity(TRG_LINES, SRC_LINES[:2])

    def test_target_ends_early(self):
        with self.assertRaises(StreamMismatchError):
            self._driver().perplexity(TRG_LINES[:2], SRC_LINES)

    def test_missing_source(self):
        with self.assertRaises(ConfigurationError):
            self._driver().perplexity(TRG_LINES, None)

    def test_length_limit_skips_sentence(self):
        long_target = " ".join(["the"] * 12)
        with self.assertLogs("src.nmtdecode.inference.driver", level="WARNING"):
            report = self._driver().perplexity(TRG_LINES + [long_target], SRC_LINES + ["le"])

        self.assertEqual(report.skipped, 1)
        self.assertEqual(report.sentences, 3)


class TestNBest(unittest.TestCase):
    """Test the nbest operation."""

    NBEST = [
        "0 ||| the cat sleeps ||| -1.0",
        "0 ||| the cat ||| -2.0",
        "0 ||| the dog sleeps ||| -3.0",
        "2 ||| the dog ||| -1.5",
        "2 ||| the cat ||| -2.5",
    ]

    def setUp(self):
        self.vocab_src, self.vocab_trg = make_vocabs()
        scorer = create_scorer("encatt", make_model("encatt", self.vocab_src, self.vocab_trg))
        self.decoder = EnsembleDecoder([scorer], size_limit=10)

    def _rescore(self, lines, **kwargs):
        out = io.StringIO()
        driver = BatchDriver(self.decoder, self.vocab_src, self.vocab_trg, **kwargs)
        driver.rescore_nbest(lines, SRC_LINES, out)
        return out.getvalue().splitlines()

    def test_one_line_per_candidate(self):
        lines = self._rescore(self.NBEST)
        self.assertEqual(len(lines), len(self.NBEST))

    def test_batching_does_not_change_scores(self):
        one_by_one = parse_ll(self._rescore(self.NBEST, minibatch_size=1))
        batched = parse_ll(self._rescore(self.NBEST, minibatch_size=100))

        for a, b in zip(one_by_one, batched):
            self.assertAlmostEqual(a, b, places=4)

    def test_source_follows_ids(self):
        """Candidates of id 2 are scored against source line 2."""
        nbest = parse_ll(self._rescore(self.NBEST[3:4]))

        out = io.StringIO()
        driver = BatchDriver(self.decoder, self.vocab_src, self.vocab_trg)
        driver.rescore_nbest(["0 ||| the dog ||| 0"], SRC_LINES[2:], out)

        self.assertAlmostEqual(nbest[0], parse_ll(out.getvalue().splitlines())[0], places=4)

    def test_sentence_range(self):
        lines = self._rescore(self.NBEST, sent_range=(1, 3))
        self.assertEqual(len(lines), 2)

    def test_bad_line(self):
        with self.assertRaises(ConfigurationError):
            self._rescore(["the cat sleeps"])

    def test_decreasing_ids(self):
        with self.assertRaises(ConfigurationError):
            self._rescore(["1 ||| the cat", "0 ||| the dog"])

    def test_source_too_short(self):
        with self.assertRaises(StreamMismatchError):
            self._rescore(["7 ||| the cat"])


class TestClassifierDriver(unittest.TestCase):
    """Test the cls and clseval operations."""

    def setUp(self):
        self.vocab_src, _ = make_vocabs()
        self.labels = Vocabulary(["pos", "neg"])
        scorer = create_scorer("enccls", make_model("enccls", self.vocab_src, self.labels))
        self.classifier = EnsembleClassifier([scorer])

    def test_classify(self):
        out = io.StringIO()
        ClassifierDriver(self.classifier, self.vocab_src, self.labels).classify(SRC_LINES, out)

        predicted = out.getvalue().splitlines()
        self.assertEqual(len(predicted), len(SRC_LINES))
        self.assertTrue(all(p in self.labels for p in predicted))

    def test_evaluate_with_own_predictions(self):
        """Scoring the ensemble's own predictions gives accuracy 1."""
        out = io.StringIO()
        driver = ClassifierDriver(self.classifier, self.vocab_src, self.labels)
        driver.classify(SRC_LINES, out)

        report = driver.evaluate(out.getvalue().splitlines(), SRC_LINES)

        self.assertEqual(report.acc, 1.0)
        self.assertEqual(report.words, len(SRC_LINES))
        self.assertIn("acc=", str(report))

    def test_evaluate_stream_mismatch(self):
        driver = ClassifierDriver(self.classifier, self.vocab_src, self.labels)
        with self.assertRaises(StreamMismatchError):
            driver.evaluate(["pos", "neg", "pos", "neg"], SRC_LINES)


if __name__ == "__main__":
    unittest.main()
