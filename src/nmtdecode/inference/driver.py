"""
Batch Decoding Driver.

Reads source/target line streams and runs the requested operation:
- ppl: teacher-forced perplexity over paired streams
- nbest: rescoring of ``id ||| sentence ||| ...`` candidate lists
- gen: beam-search generation with unknown-word replacement
- cls / clseval: classification and its evaluation

Output lines are written in input order. Sentences longer than the size
limit are skipped with a warning; a source stream that ends before its
target stream (or the other way round) aborts the run.
"""

import logging
import math
import time
from typing import Iterable, Iterator, List, Optional, TextIO, Tuple

from tqdm import tqdm

from ..evaluation.metrics import CorpusReport, LLStats
from ..exceptions import (
    ConfigurationError,
    LengthLimitExceeded,
    StreamMismatchError,
    UnsupportedOperationError,
)
from ..vocabulary import Sentence, Vocabulary
from .beam_search import EnsembleDecoder
from .ensemble import EnsembleClassifier
from .mapping import Mapping, map_words

logger = logging.getLogger(__name__)

NBEST_SEPARATOR = " ||| "


def _in_range(sent_id: int, sent_range: Optional[Tuple[int, int]]) -> bool:
    return sent_range is None or sent_range[0] <= sent_id < sent_range[1]


def _check_exhausted(lines: Optional[Iterator[str]]):
    if lines is not None and next(lines, None) is not None:
        raise StreamMismatchError("Source and target files don't match")


class BatchDriver:
    """Runs sequence operations over line streams.

    Args:
        decoder: Ensemble decoder.
        vocab_src: Source vocabulary (None for a language-model-only ensemble).
        vocab_trg: Target vocabulary.
        needs_source: Whether any ensemble member reads the source.
        minibatch_size: Word budget for batching n-best candidates.
        sent_range: Optional (start, end) range of sentence ids to process.
        verbose: 1 prints per-sentence likelihoods.
        mapping: Unknown-word mapping table for generation.
        show_progress: Show a tqdm progress bar.
    """

    def __init__(
        self,
        decoder: EnsembleDecoder,
        vocab_src: Optional[Vocabulary],
        vocab_trg: Vocabulary,
        needs_source: bool = True,
        minibatch_size: int = 1,
        sent_range: Optional[Tuple[int, int]] = None,
        verbose: int = 0,
        mapping: Optional[Mapping] = None,
        show_progress: bool = False
    ):
        if needs_source and vocab_src is None:
            raise ConfigurationError("Translation models need a source vocabulary")
        self.decoder = decoder
        self.vocab_src = vocab_src
        self.vocab_trg = vocab_trg
        self.needs_source = needs_source
        self.minibatch_size = minibatch_size
        self.sent_range = sent_range
        self.verbose = verbose
        self.mapping = mapping
        self.show_progress = show_progress

    def _source_lines(self, src_lines: Optional[Iterable[str]]) -> Optional[Iterator[str]]:
        if not self.needs_source:
            return None
        if src_lines is None:
            raise ConfigurationError("Translation models need a source file (--src-in)")
        return iter(src_lines)

    def _next_source(self, src_iter: Optional[Iterator[str]]) -> Optional[Sentence]:
        if src_iter is None:
            return None
        line = next(src_iter, None)
        if line is None:
            raise StreamMismatchError("Source and target files don't match")
        return self.vocab_src.parse_words(line, add_end=False)

    def _too_long(self, sent: Optional[Sentence]) -> bool:
        return sent is not None and len(sent) > self.decoder.size_limit

    def _write_ll(self, out: TextIO, stats: LLStats):
        out.write(f"ll={stats.calc_unk_lik()} unk={stats.unk}\n")

    def perplexity(
        self,
        trg_lines: Iterable[str],
        src_lines: Optional[Iterable[str]] = None,
        out: Optional[TextIO] = None
    ) -> CorpusReport:
        """Corpus perplexity of the target stream (``ppl``)."""
        src_iter = self._source_lines(src_lines)
        corpus_ll = LLStats(len(self.vocab_trg))
        sentences = skipped = 0
        start = time.perf_counter()

        for sent_id, line in enumerate(tqdm(trg_lines, desc="ppl", disable=not self.show_progress)):
            sent_trg = self.vocab_trg.parse_words(line, add_end=True)
            sent_src = self._next_source(src_iter)
            if not _in_range(sent_id, self.sent_range):
                continue

            sent_ll = LLStats(len(self.vocab_trg))
            try:
                self.decoder.calc_sent_ll(sent_src, sent_trg, sent_ll)
            except LengthLimitExceeded as e:
                logger.warning("Skipping sentence %d: %s", sent_id, e)
                skipped += 1
                continue

            if self.verbose >= 1 and out is not None:
                self._write_ll(out, sent_ll)
            corpus_ll += sent_ll
            sentences += 1

        _check_exhausted(src_iter)
        return CorpusReport.from_stats(
            corpus_ll, time.perf_counter() - start, sentences=sentences, skipped=skipped
        )

    def rescore_nbest(
        self,
        nbest_lines: Iterable[str],
        src_lines: Optional[Iterable[str]],
        out: TextIO
    ) -> CorpusReport:
        """Score every candidate of an n-best list (``nbest``).

        Candidates sharing a source id are scored together while their word
        count stays within ``minibatch_size``. One ``ll=... unk=...`` line
        is written per candidate in range.
        """
        src_iter = self._source_lines(src_lines)
        src_line_id = -1
        sent_src: Optional[Sentence] = None

        group: List[Sentence] = []
        group_words = 0
        last_id = -1
        do_sent = False
        totals = LLStats(len(self.vocab_trg))
        sentences = skipped = 0
        start = time.perf_counter()

        for line in tqdm(nbest_lines, desc="nbest", disable=not self.show_progress):
            columns = line.rstrip("\n").split(NBEST_SEPARATOR)
            if len(columns) < 2:
                raise ConfigurationError(f"Bad line in n-best:\n{line}")
            try:
                my_id = int(columns[0])
            except ValueError:
                raise ConfigurationError(f"Bad line in n-best:\n{line}")
            if my_id < last_id:
                raise ConfigurationError(
                    f"n-best ids must not decrease ({my_id} after {last_id})"
                )
            sent_trg = self.vocab_trg.parse_words(columns[1], add_end=True)

            if group and (my_id != last_id or group_words + len(sent_trg) > self.minibatch_size):
                skipped += self._score_group(last_id, sent_src, group, totals, out)
                group, group_words = [], 0

            if my_id != last_id:
                if src_iter is not None:
                    while src_line_id < my_id:
                        sent_src = self._next_source(src_iter)
                        src_line_id += 1
                if do_sent:
                    logger.debug("sent=%d, time=%.2f", last_id, time.perf_counter() - start)
                last_id = my_id
                do_sent = _in_range(my_id, self.sent_range)
                sentences += int(do_sent)

            if do_sent:
                group.append(sent_trg)
                group_words += len(sent_trg)

        if group:
            skipped += self._score_group(last_id, sent_src, group, totals, out)

        return CorpusReport.from_stats(
            totals, time.perf_counter() - start, sentences=sentences, skipped=skipped
        )

    def _score_group(
        self,
        sent_id: int,
        sent_src: Optional[Sentence],
        group: List[Sentence],
        totals: LLStats,
        out: TextIO
    ) -> int:
        """Score one group of candidates; returns the number skipped."""
        stats = [LLStats(len(self.vocab_trg)) for _ in group]
        if self._too_long(sent_src):
            logger.warning("Skipping sentence %d: %s", sent_id,
                           LengthLimitExceeded(len(sent_src), self.decoder.size_limit))
            keep = []
        else:
            keep = [i for i, sent in enumerate(group) if not self._too_long(sent)]
            for i in range(len(group)):
                if i not in keep:
                    logger.warning("Skipping candidate of sentence %d: %s", sent_id,
                                   LengthLimitExceeded(len(group[i]), self.decoder.size_limit))

        if len(keep) > 1:
            self.decoder.calc_sent_ll_batch(
                sent_src, [group[i] for i in keep], [stats[i] for i in keep]
            )
        elif keep:
            self.decoder.calc_sent_ll(sent_src, group[keep[0]], stats[keep[0]])

        for i, sent_ll in enumerate(stats):
            if i in keep:
                self._write_ll(out, sent_ll)
                totals += sent_ll
            else:
                out.write(f"ll={-math.inf} unk=0\n")
        return len(group) - len(keep)

    def generate(self, src_lines: Optional[Iterable[str]], out: TextIO) -> CorpusReport:
        """Generate one output line per source line (``gen``).

        A language-model-only ensemble has no source; it generates
        ``sent_range`` end sentences instead.
        """
        if self.needs_source:
            if src_lines is None:
                raise ConfigurationError("Translation models need a source file (--src-in)")
            items = enumerate(src_lines)
        else:
            if self.sent_range is None:
                raise ConfigurationError(
                    "Generating from language models needs --sent-range to bound the output"
                )
            items = ((i, None) for i in range(self.sent_range[1]))

        sentences = skipped = words = 0
        start = time.perf_counter()

        for sent_id, line in tqdm(items, desc="gen", disable=not self.show_progress):
            if self.sent_range is not None and sent_id >= self.sent_range[1]:
                break
            if not _in_range(sent_id, self.sent_range):
                continue

            if line is None:
                str_src, sent_src = [], None
            else:
                str_src = self.vocab_src.split_words(line)
                sent_src = self.vocab_src.parse_words(str_src, add_end=False)

            try:
                best = self.decoder.generate(sent_src)[0]
            except LengthLimitExceeded as e:
                logger.warning("Skipping sentence %d: %s", sent_id, e)
                out.write("\n")
                skipped += 1
                continue

            str_trg = self.vocab_trg.convert_words(best.tokens, include_end=False)
            map_words(str_src, best.tokens, best.align, self.mapping, str_trg,
                      unk_id=self.decoder.unk_id)
            out.write(self.vocab_trg.print_words(str_trg) + "\n")
            sentences += 1
            words += len(best.tokens)

        return CorpusReport(words=words, sentences=sentences, skipped=skipped,
                            elapsed=time.perf_counter() - start)

    def sample(self, *args, **kwargs):
        """Sampling (``samp``) is not supported."""
        raise UnsupportedOperationError("Sampling not implemented yet")


class ClassifierDriver:
    """Runs classifier operations over line streams.

    Args:
        classifier: Ensemble of classifier scorers.
        vocab_src: Source vocabulary.
        vocab_labels: Label vocabulary.
        verbose: 1 prints per-sentence results during evaluation.
        show_progress: Show a tqdm progress bar.
    """

    def __init__(
        self,
        classifier: EnsembleClassifier,
        vocab_src: Vocabulary,
        vocab_labels: Vocabulary,
        verbose: int = 0,
        show_progress: bool = False
    ):
        self.classifier = classifier
        self.vocab_src = vocab_src
        self.vocab_labels = vocab_labels
        self.verbose = verbose
        self.show_progress = show_progress

    def classify(self, src_lines: Iterable[str], out: TextIO) -> CorpusReport:
        """Write the predicted label of every source line (``cls``)."""
        sentences = 0
        start = time.perf_counter()
        for line in tqdm(src_lines, desc="cls", disable=not self.show_progress):
            sent_src = self.vocab_src.parse_words(line, add_end=False)
            label = self.classifier.predict(sent_src)
            out.write(self.vocab_labels.wsym(label) + "\n")
            sentences += 1
        return CorpusReport(words=sentences, sentences=sentences,
                            elapsed=time.perf_counter() - start)

    def evaluate(
        self,
        label_lines: Iterable[str],
        src_lines: Iterable[str],
        out: Optional[TextIO] = None
    ) -> CorpusReport:
        """Perplexity and accuracy of the reference labels (``clseval``)."""
        src_iter = iter(src_lines)
        corpus_ll = LLStats(len(self.vocab_labels))
        sentences = 0
        start = time.perf_counter()

        for line in tqdm(label_lines, desc="clseval", disable=not self.show_progress):
            label = self.vocab_labels.wid(line.strip())
            src_line = next(src_iter, None)
            if src_line is None:
                raise StreamMismatchError("Source and target files don't match")
            sent_src = self.vocab_src.parse_words(src_line, add_end=False)

            sent_ll = LLStats(len(self.vocab_labels))
            self.classifier.calc_eval(sent_src, label, sent_ll)
            if self.verbose >= 1 and out is not None:
                out.write(f"ll={sent_ll.calc_unk_lik()} correct={sent_ll.correct}\n")
            corpus_ll += sent_ll
            sentences += 1

        _check_exhausted(src_iter)
        return CorpusReport.from_stats(
            corpus_ll, time.perf_counter() - start, sentences=sentences, with_acc=True
        )
