"""
Ensemble Beam Search Decoding.

Beam search over the combined distribution of an ensemble of scorers with:
- Beam-wide ranking of all candidate extensions
- Word penalty (per-token bonus or malus)
- Optional length normalization (Wu et al., 2016)
- Early stopping when no active hypothesis can beat a completed one
- Teacher-forced sentence likelihood, one target or a batch of targets

Beam width 1 is greedy search.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

import torch

from ..config import DecodeConfig, TIE_BREAK_POLICIES
from ..evaluation.metrics import LLStats
from ..exceptions import ConfigurationError, LengthLimitExceeded
from ..vocabulary import Sentence
from .ensemble import EnsembleCombiner
from .scorer import Scorer, ScorerState

NO_ALIGNMENT = -1

States = Tuple[ScorerState, ...]


@dataclass
class Hypothesis:
    """A single beam hypothesis.

    Attributes:
        tokens: Emitted token ids; a completed hypothesis ends with the end marker.
        score: Sum of combined log-probabilities plus word penalties.
        states: One state snapshot per scorer.
        align: Aligned source position per emitted token, or NO_ALIGNMENT.
        order: Completion order among the completed hypotheses of a sentence.
    """
    tokens: Tuple[int, ...]
    score: float
    states: States
    align: Tuple[int, ...] = ()
    order: int = -1

    def __len__(self):
        return len(self.tokens)


class Beam:
    """Score-descending collection capped at ``width``.

    Hypotheses with equal scores keep their insertion order.
    """

    def __init__(self, width: int):
        self.width = width
        self._hyps: List[Hypothesis] = []

    def add(self, hyp: Hypothesis) -> bool:
        """Insert ``hyp``; returns False if it falls outside the beam."""
        pos = len(self._hyps)
        while pos > 0 and self._hyps[pos - 1].score < hyp.score:
            pos -= 1
        if pos >= self.width:
            return False
        self._hyps.insert(pos, hyp)
        del self._hyps[self.width:]
        return True

    def __len__(self):
        return len(self._hyps)

    def __iter__(self) -> Iterator[Hypothesis]:
        return iter(self._hyps)


class EnsembleDecoder:
    """Beam search decoder over an ensemble of scorers.

    Args:
        scorers: One scorer per ensemble member.
        ensemble_op: Combination rule, "sum" or "logsum".
        beam_size: Number of candidates kept per step.
        size_limit: Maximum output length, end marker included.
        word_penalty: Added to the score of every emitted token.
        length_penalty: Length normalization factor (α); 0 disables it.
        end_id: End-of-sentence marker id.
        unk_id: Unknown-word id.
        tie_break: "earliest" or "latest" completed hypothesis on equal scores.
    """

    def __init__(
        self,
        scorers: Sequence[Scorer],
        ensemble_op: str = "sum",
        beam_size: int = 1,
        size_limit: int = 2000,
        word_penalty: float = 0.0,
        length_penalty: float = 0.0,
        end_id: int = 0,
        unk_id: int = 1,
        tie_break: str = "earliest"
    ):
        if beam_size < 1:
            raise ConfigurationError(f"beam_size must be >= 1, got {beam_size}")
        if size_limit < 1:
            raise ConfigurationError(f"size_limit must be >= 1, got {size_limit}")
        if length_penalty < 0:
            raise ConfigurationError(f"length_penalty must be >= 0, got {length_penalty}")
        if tie_break not in TIE_BREAK_POLICIES:
            raise ConfigurationError(f"tie_break must be one of {TIE_BREAK_POLICIES}")

        self.scorers = list(scorers)
        self.combiner = EnsembleCombiner(ensemble_op, [s.vocab_size for s in self.scorers])
        if not 0 <= end_id < self.combiner.vocab_size:
            raise ConfigurationError(f"end_id {end_id} is outside the vocabulary")

        self.beam_size = beam_size
        self.size_limit = size_limit
        self.word_penalty = word_penalty
        self.length_penalty = length_penalty
        self.end_id = end_id
        self.unk_id = unk_id
        self.tie_break = tie_break

    @classmethod
    def from_config(
        cls,
        scorers: Sequence[Scorer],
        config: DecodeConfig,
        end_id: int = 0,
        unk_id: int = 1
    ) -> "EnsembleDecoder":
        return cls(
            scorers,
            ensemble_op=config.ensemble_op,
            beam_size=config.beam_size,
            size_limit=config.size_limit,
            word_penalty=config.word_penalty,
            length_penalty=config.length_penalty,
            end_id=end_id,
            unk_id=unk_id,
            tie_break=config.tie_break,
        )

    @property
    def vocab_size(self) -> int:
        return self.combiner.vocab_size

    @property
    def can_stop_early(self) -> bool:
        # Scores only decrease as tokens are appended.
        return self.word_penalty <= 0 and self.length_penalty == 0

    def length_norm(self, length: int) -> float:
        """Compute length normalization factor.

        Formula from Wu et al., 2016:
            lp(Y) = (5 + |Y|)^α / (5 + 1)^α

        Args:
            length: Sequence length.

        Returns:
            Normalization factor.
        """
        return ((5 + length) ** self.length_penalty) / ((5 + 1) ** self.length_penalty)

    def final_score(self, hyp: Hypothesis) -> float:
        """Score used to select among completed hypotheses."""
        if self.length_penalty > 0:
            return hyp.score / self.length_norm(len(hyp))
        return hyp.score

    def check_length(self, sent: Optional[Sentence]):
        """Raise LengthLimitExceeded if ``sent`` is longer than the size limit."""
        if sent is not None and len(sent) > self.size_limit:
            raise LengthLimitExceeded(len(sent), self.size_limit)

    @contextmanager
    def _session(self, source: Optional[Sentence]) -> Iterator[States]:
        """Bind every scorer to ``source`` and release them afterwards."""
        try:
            yield tuple(
                scorer.bind(source if scorer.requires_source else None)
                for scorer in self.scorers
            )
        finally:
            for scorer in self.scorers:
                scorer.release()

    def _score(
        self,
        histories: Sequence[Sequence[int]],
        states: Sequence[States]
    ) -> Tuple[torch.Tensor, List[States], List[int]]:
        """One step for all rows: combined log-probs, successor states, alignments."""
        per_model = []
        new_states = []
        aligns = []
        for i, scorer in enumerate(self.scorers):
            out = scorer.score_step(histories, [row[i] for row in states])
            per_model.append(out.log_probs)
            new_states.append(out.states)
            if out.align is not None:
                aligns.append(out.align)

        log_probs = self.combiner.combine(per_model)
        rows = [tuple(model_states[r] for model_states in new_states) for r in range(len(histories))]

        if aligns:
            positions = torch.stack(aligns).mean(dim=0).argmax(dim=-1).tolist()
        else:
            positions = [NO_ALIGNMENT] * len(histories)
        return log_probs, rows, positions

    @torch.no_grad()
    def generate(self, source: Optional[Sentence] = None, n_best: int = 1) -> List[Hypothesis]:
        """Beam search decoding.

        Args:
            source: Source sentence (None for a language-model-only ensemble).
            n_best: Number of hypotheses to return.

        Returns:
            Up to ``n_best`` completed hypotheses, best first.

        Raises:
            LengthLimitExceeded: The source is longer than the size limit.
        """
        self.check_length(source)

        with self._session(source) as initial_states:
            active = [Hypothesis(tokens=(), score=0.0, states=initial_states)]
            completed: List[Hypothesis] = []

            for step in range(self.size_limit):
                log_probs, states, positions = self._score(
                    [h.tokens for h in active], [h.states for h in active]
                )
                scores = log_probs + self.word_penalty
                if step == self.size_limit - 1:
                    # Force-terminate at the size limit
                    forced = torch.full_like(scores, float('-inf'))
                    forced[:, self.end_id] = scores[:, self.end_id]
                    scores = forced

                prev = torch.tensor([h.score for h in active], dtype=scores.dtype,
                                    device=scores.device)
                totals = (scores + prev.unsqueeze(-1)).view(-1)
                sorted_totals, order = torch.sort(totals, descending=True, stable=True)

                beam = Beam(self.beam_size)
                vocab_size = scores.size(-1)
                for total, idx in zip(sorted_totals[:self.beam_size].tolist(),
                                      order[:self.beam_size].tolist()):
                    if total == float('-inf'):
                        break
                    row, token = divmod(idx, vocab_size)
                    parent = active[row]
                    beam.add(Hypothesis(
                        tokens=parent.tokens + (token,),
                        score=total,
                        states=states[row],
                        align=parent.align + (positions[row],),
                    ))

                survivors = []
                for hyp in beam:
                    if hyp.tokens[-1] == self.end_id:
                        hyp.order = len(completed)
                        completed.append(hyp)
                    else:
                        survivors.append(hyp)

                if not survivors:
                    if not completed:
                        # Every extension was impossible
                        for hyp in active:
                            hyp.order = len(completed)
                            completed.append(hyp)
                    break
                active = survivors

                if (self.can_stop_early and completed
                        and max(h.score for h in completed) >= active[0].score):
                    break

        return self._select(completed, n_best)

    def _select(self, completed: List[Hypothesis], n_best: int) -> List[Hypothesis]:
        if self.tie_break == "earliest":
            key = lambda h: (-self.final_score(h), h.order)
        else:
            key = lambda h: (-self.final_score(h), -h.order)
        return sorted(completed, key=key)[:n_best]

    @torch.no_grad()
    def calc_sent_ll(
        self,
        source: Optional[Sentence],
        target: Sentence,
        stats: LLStats
    ) -> LLStats:
        """Teacher-forced log-likelihood of ``target`` given ``source``.

        Args:
            source: Source sentence (None for a language-model-only ensemble).
            target: Target token ids, end marker included.
            stats: Accumulator updated in place.

        Returns:
            ``stats``.
        """
        return self.calc_sent_ll_batch(source, [target], [stats])[0]

    @torch.no_grad()
    def calc_sent_ll_batch(
        self,
        source: Optional[Sentence],
        targets: Sequence[Sentence],
        stats_list: Sequence[LLStats]
    ) -> Sequence[LLStats]:
        """Teacher-forced log-likelihood of several targets sharing one source.

        The targets are scored side by side; each row only sees its own
        history, so results equal scoring the targets one at a time.
        """
        if len(targets) != len(stats_list):
            raise ValueError("Need one LLStats per target")
        self.check_length(source)
        for target in targets:
            self.check_length(target)

        with self._session(source) as initial_states:
            states: List[States] = [initial_states] * len(targets)
            longest = max((len(t) for t in targets), default=0)

            for t in range(longest):
                rows = [r for r, target in enumerate(targets) if len(target) > t]
                log_probs, new_states, _ = self._score(
                    [targets[r][:t] for r in rows], [states[r] for r in rows]
                )
                for i, r in enumerate(rows):
                    token = targets[r][t]
                    stats = stats_list[r]
                    stats.loss -= float(log_probs[i, token].item())
                    stats.words += 1
                    if token == self.unk_id:
                        stats.unk += 1
                    states[r] = new_states[i]

        return stats_list
