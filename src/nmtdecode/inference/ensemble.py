"""
Ensemble Combination of Next-Token Distributions.

Two combination rules:

- ``sum``: linear interpolation. Average the probabilities and take the
  log again, computed as ``logsumexp - log(n)``.
- ``logsum``: log-linear interpolation. Average the log-probabilities and
  renormalize, i.e. the normalized geometric mean.

For a single model both rules return that model's distribution.
"""

import math
from typing import List, Sequence

import torch
import torch.nn.functional as F

from ..config import ENSEMBLE_OPS
from ..evaluation.metrics import LLStats
from ..exceptions import ConfigurationError
from ..vocabulary import Sentence
from .scorer import Scorer


class EnsembleCombiner:
    """Merges per-model log-probabilities into one ranking distribution.

    All checks happen at construction; ``combine`` does none per step.

    Args:
        operation: "sum" or "logsum".
        vocab_sizes: Output vocabulary size of every ensemble member.

    Raises:
        ConfigurationError: No models, unequal vocabulary sizes, or an
            unknown operation.
    """

    def __init__(self, operation: str, vocab_sizes: Sequence[int]):
        if operation not in ENSEMBLE_OPS:
            raise ConfigurationError(f"Bad ensemble operation: {operation}")
        if len(vocab_sizes) == 0:
            raise ConfigurationError("Ensemble needs at least one model")
        if len(set(vocab_sizes)) != 1:
            raise ConfigurationError(
                f"Vocabulary sizes of ensemble members are not equal: {list(vocab_sizes)}"
            )

        self.operation = operation
        self.num_models = len(vocab_sizes)
        self.vocab_size = vocab_sizes[0]
        self._log_n = math.log(self.num_models)

    def combine(self, log_probs: Sequence[torch.Tensor]) -> torch.Tensor:
        """Combine a list of (n, vocab) log-probability tensors into one."""
        if len(log_probs) == 1:
            return log_probs[0]

        stacked = torch.stack(list(log_probs))
        if self.operation == "sum":
            return torch.logsumexp(stacked, dim=0) - self._log_n
        return F.log_softmax(stacked.mean(dim=0), dim=-1)


class EnsembleClassifier:
    """Ensemble of classifier scorers.

    Args:
        scorers: ClassifierScorer instances, one per model.
        operation: Ensemble combination rule.
    """

    def __init__(self, scorers: List[Scorer], operation: str = "sum"):
        self.scorers = scorers
        self.combiner = EnsembleCombiner(operation, [s.vocab_size for s in scorers])

    @torch.no_grad()
    def label_log_probs(self, source: Sentence) -> torch.Tensor:
        """Combined label log-probabilities of shape (num_labels,)."""
        per_model = []
        for scorer in self.scorers:
            state = scorer.bind(source)
            try:
                per_model.append(scorer.score_step([[]], [state]).log_probs)
            finally:
                scorer.release()
        return self.combiner.combine(per_model)[0]

    def predict(self, source: Sentence) -> int:
        """Most probable label id; the lowest id wins on ties."""
        return int(torch.argmax(self.label_log_probs(source)).item())

    def calc_eval(self, source: Sentence, label: int, stats: LLStats) -> LLStats:
        """Add the loss and correctness of ``label`` for ``source`` to ``stats``."""
        log_probs = self.label_log_probs(source)
        stats.loss -= float(log_probs[label].item())
        stats.words += 1
        if int(torch.argmax(log_probs).item()) == label:
            stats.correct += 1
        return stats
