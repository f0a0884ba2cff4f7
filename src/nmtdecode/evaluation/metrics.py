"""
Likelihood Statistics.

Implements:
- LLStats: per-sentence / corpus accumulator of negative log-likelihood,
  word, unknown-word and correct-prediction counts
- CorpusReport: the summary printed at the end of a run

Unknown words are not errors. ``calc_unk_lik`` reports the sentence
log-likelihood as if every unknown word had been predicted uniformly over
the vocabulary, which keeps scores comparable across vocabularies.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class LLStats:
    """Accumulated likelihood statistics.

    Attributes:
        vocab_size: Output vocabulary size.
        loss: Negative log-likelihood in nats.
        words: Number of scored tokens (the end marker included).
        unk: Number of scored unknown tokens.
        correct: Number of correct predictions (classification).
    """
    vocab_size: int
    loss: float = 0.0
    words: int = 0
    unk: int = 0
    correct: int = 0

    def __iadd__(self, other: "LLStats") -> "LLStats":
        self.loss += other.loss
        self.words += other.words
        self.unk += other.unk
        self.correct += other.correct
        return self

    def calc_ppl(self) -> float:
        """Perplexity, exp(loss / words). 1.0 when nothing was scored."""
        if self.words == 0:
            return 1.0
        return math.exp(self.loss / self.words)

    def calc_unk_lik(self) -> float:
        """Log-likelihood with a uniform penalty for each unknown word."""
        return -(self.loss + self.unk * math.log(self.vocab_size))

    def calc_acc(self) -> float:
        """Fraction of correct predictions. 0.0 when nothing was scored."""
        if self.words == 0:
            return 0.0
        return self.correct / self.words


@dataclass
class CorpusReport:
    """Container for corpus-level results."""
    ppl: Optional[float] = None
    unk: Optional[int] = None
    acc: Optional[float] = None
    words: int = 0
    sentences: int = 0
    skipped: int = 0
    elapsed: float = 0.0

    @property
    def words_per_second(self) -> float:
        return self.words / self.elapsed if self.elapsed > 0 else 0.0

    @classmethod
    def from_stats(cls, stats: LLStats, elapsed: float, sentences: int = 0,
                   skipped: int = 0, with_acc: bool = False) -> "CorpusReport":
        return cls(
            ppl=stats.calc_ppl(),
            unk=None if with_acc else stats.unk,
            acc=stats.calc_acc() if with_acc else None,
            words=stats.words,
            sentences=sentences,
            skipped=skipped,
            elapsed=elapsed,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'ppl': self.ppl,
            'unk': self.unk,
            'acc': self.acc,
            'words': self.words,
            'sentences': self.sentences,
            'skipped': self.skipped,
            'elapsed': self.elapsed,
        }

    def __str__(self) -> str:
        parts = []
        if self.ppl is not None:
            parts.append(f"ppl={self.ppl:.4f}")
        if self.unk is not None:
            parts.append(f"unk={self.unk}")
        if self.acc is not None:
            parts.append(f"acc={self.acc:.4f}")
        parts.append(f"time={self.elapsed:.2f} ({self.words_per_second:.1f} w/s)")
        return ", ".join(parts)
