"""
Uniform Scoring Interface over Model Families.

Every model family is wrapped in a Scorer with the same three operations:

- ``bind(source)``: start a decode session for one source sentence and
  return the initial per-hypothesis state
- ``score_step(histories, states)``: next-token log-probabilities for a
  batch of hypotheses, plus their successor states
- ``release()``: end the session

A scorer is Unbound until ``bind`` is called; scoring while Unbound
raises ``InvalidStateError``.

States are immutable snapshots. Successor states are rows of the tensors
computed for the whole batch, so hypotheses that share an ancestor share
its tensors and never see each other's later updates.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Type

import torch
import torch.nn as nn

from ..exceptions import ConfigurationError, InvalidStateError
from ..vocabulary import Sentence


@dataclass(frozen=True)
class ScorerState:
    """Per-hypothesis snapshot of one scorer's internal state.

    Attributes:
        h: Decoder hidden state.
        c: Decoder cell state.
        context: Context vector computed at the previous step (attention only).
        align_sum: Running alignment sum over source positions (attention only).
    """
    h: Optional[torch.Tensor] = None
    c: Optional[torch.Tensor] = None
    context: Optional[torch.Tensor] = None
    align_sum: Optional[torch.Tensor] = None


@dataclass
class StepOutput:
    """Result of one scoring step for n hypotheses."""
    log_probs: torch.Tensor          # (n, vocab_size)
    states: List[ScorerState]
    align: Optional[torch.Tensor] = None  # (n, src_len), attentional scorers only


def _stack(states: Sequence[ScorerState], field: str) -> torch.Tensor:
    return torch.stack([getattr(s, field) for s in states])


def _ngrams(
    histories: Sequence[Sequence[int]],
    context: int,
    start_id: int,
    device: torch.device
) -> torch.Tensor:
    """Last ``context`` tokens of each history, left-padded with ``start_id``."""
    rows = []
    for hist in histories:
        window = list(hist[-context:]) if hist else []
        rows.append([start_id] * (context - len(window)) + window)
    return torch.tensor(rows, dtype=torch.long, device=device)


class Scorer:
    """Base class holding the bind/score/release lifecycle.

    Subclasses implement ``_initialize``, ``_step`` and optionally ``_release``.

    Args:
        model: The wrapped model.
        start_id: Token used to pad n-gram windows at the sentence start.
    """

    model_type: str = ""
    requires_source: bool = True

    def __init__(self, model: nn.Module, start_id: int = 0):
        self.model = model
        self.start_id = start_id
        self._bound = False

    @property
    def vocab_size(self) -> int:
        raise NotImplementedError

    @property
    def is_bound(self) -> bool:
        return self._bound

    def bind(self, source: Optional[Sentence] = None) -> ScorerState:
        """Start a session for ``source`` and return the initial state."""
        if self._bound:
            raise InvalidStateError(f"{type(self).__name__} is already bound to a sentence")
        if self.requires_source and source is None:
            raise ConfigurationError(f"{type(self).__name__} needs a source sentence")
        state = self._initialize(source)
        self._bound = True
        return state

    def score_step(
        self,
        histories: Sequence[Sequence[int]],
        states: Sequence[ScorerState]
    ) -> StepOutput:
        """Score the next token for each (history, state) pair."""
        if not self._bound:
            raise InvalidStateError(
                f"{type(self).__name__} used while unbound; call bind() first"
            )
        return self._step(histories, states)

    def release(self) -> None:
        """End the current session. Safe to call when already unbound."""
        self._release()
        self._bound = False

    def _initialize(self, source: Optional[Sentence]) -> ScorerState:
        raise NotImplementedError

    def _step(
        self,
        histories: Sequence[Sequence[int]],
        states: Sequence[ScorerState]
    ) -> StepOutput:
        raise NotImplementedError

    def _release(self) -> None:
        pass


class LMScorer(Scorer):
    """Pure language model; ignores the source."""

    model_type = "nlm"
    requires_source = False

    @property
    def vocab_size(self) -> int:
        return self.model.vocab_size

    def _initialize(self, source):
        h, c = self.model.initial_state(1)
        return ScorerState(h=h[0], c=c[0])

    def _step(self, histories, states):
        lm = self.model
        ngrams = _ngrams(histories, lm.ngram_context, self.start_id, lm.device)
        h, c = lm.advance(ngrams, (_stack(states, "h"), _stack(states, "c")))
        log_probs = lm.log_probs(h)
        return StepOutput(
            log_probs=log_probs,
            states=[ScorerState(h=hi, c=ci) for hi, ci in zip(h.unbind(0), c.unbind(0))],
        )


class EncoderDecoderScorer(Scorer):
    """Encoder-decoder: encodes once at bind time and holds a fixed context."""

    model_type = "encdec"

    def __init__(self, model: nn.Module, start_id: int = 0):
        super().__init__(model, start_id)
        self._context: Optional[torch.Tensor] = None

    @property
    def vocab_size(self) -> int:
        return self.model.vocab_trg_size

    def _initialize(self, source):
        self._context = self.model.encode([source])
        h, c = self.model.initial_state(self._context)
        return ScorerState(h=h[0], c=c[0])

    def _step(self, histories, states):
        decoder = self.model.decoder
        context = self._context.expand(len(states), -1)
        ngrams = _ngrams(histories, decoder.ngram_context, self.start_id, decoder.device)
        h, c = decoder.advance(ngrams, (_stack(states, "h"), _stack(states, "c")), context)
        log_probs = decoder.log_probs(h, context)
        return StepOutput(
            log_probs=log_probs,
            states=[ScorerState(h=hi, c=ci) for hi, ci in zip(h.unbind(0), c.unbind(0))],
        )

    def _release(self):
        self._context = None


class AttentionalScorer(Scorer):
    """Attentional encoder-decoder: attends over the source at every step.

    The previous step's context is fed to the decoder; the new decoder
    state then drives the attention, whose alignment also produces the
    lexical prior when the model has one.
    """

    model_type = "encatt"

    def __init__(self, model: nn.Module, start_id: int = 0):
        super().__init__(model, start_id)
        self.attention = model.attention

    @property
    def vocab_size(self) -> int:
        return self.model.vocab_trg_size

    def _initialize(self, source):
        att_state = self.attention.initialize_sentence(source)
        h, c = self.model.initial_state(att_state.final)
        return ScorerState(
            h=h[0],
            c=c[0],
            context=self.attention.get_empty_context(1)[0],
            align_sum=att_state.align_sum[0],
        )

    def _step(self, histories, states):
        decoder = self.model.decoder
        ngrams = _ngrams(histories, decoder.ngram_context, self.start_id, decoder.device)

        h, c = decoder.advance(
            ngrams, (_stack(states, "h"), _stack(states, "c")), _stack(states, "context")
        )
        context, align, align_sum = self.attention.create_context(h, _stack(states, "align_sum"))
        prior = self.attention.calc_prior(align)
        log_probs = decoder.log_probs(h, context, prior)

        return StepOutput(
            log_probs=log_probs,
            states=[
                ScorerState(h=hi, c=ci, context=xi, align_sum=ai)
                for hi, ci, xi, ai in zip(h.unbind(0), c.unbind(0),
                                          context.unbind(0), align_sum.unbind(0))
            ],
            align=align,
        )

    def _release(self):
        self.attention.release()


class ClassifierScorer(Scorer):
    """Encoder-classifier: one label distribution per source sentence."""

    model_type = "enccls"

    def __init__(self, model: nn.Module, start_id: int = 0):
        super().__init__(model, start_id)
        self._log_probs: Optional[torch.Tensor] = None

    @property
    def vocab_size(self) -> int:
        return self.model.num_labels

    def _initialize(self, source):
        self._log_probs = self.model.log_probs([source])
        return ScorerState()

    def _step(self, histories, states):
        return StepOutput(
            log_probs=self._log_probs.expand(len(states), -1),
            states=list(states),
        )

    def _release(self):
        self._log_probs = None


SCORER_CLASSES: Dict[str, Type[Scorer]] = {
    "nlm": LMScorer,
    "encdec": EncoderDecoderScorer,
    "encatt": AttentionalScorer,
    "enccls": ClassifierScorer,
}


def create_scorer(model_type: str, model: nn.Module, start_id: int = 0) -> Scorer:
    """Wrap ``model`` in the scorer for its family tag."""
    if model_type not in SCORER_CLASSES:
        raise ConfigurationError(f"Bad model type '{model_type}'")
    return SCORER_CLASSES[model_type](model, start_id=start_id)


def scorers_from_ensemble(ensemble) -> List[Scorer]:
    """Create one scorer per member of a LoadedEnsemble."""
    start_id = ensemble.vocab_trg.start_id
    return [create_scorer(m.model_type, m.model, start_id=start_id) for m in ensemble.models]
