"""
Recurrent Neural Language Model.

Predicts the next word from the previous ``ngram_context`` words, a
recurrent state, and (for translation models) an external context vector.
Used on its own as an ``nlm`` model and as the decoder half of the
encoder-decoder and attentional models.
"""

import torch
import torch.nn as nn
from typing import Optional, Tuple

from .softmax import SoftmaxFull

LSTMState = Tuple[torch.Tensor, torch.Tensor]


class NeuralLM(nn.Module):
    """LSTM language model with n-gram input and optional external context.

    Each step:
        x_t = [emb(w_{t-k}); ...; emb(w_{t-1}); context_in]
        (h_t, c_t) = LSTMCell(x_t, (h_{t-1}, c_{t-1}))
        p(w_t) = softmax(W [h_t; context_out] + b + prior)

    Args:
        vocab_size: Target vocabulary size.
        ngram_context: Number of previous words fed each step.
        wordrep_size: Word embedding dimension.
        hidden_size: LSTM hidden dimension.
        context_size: External context dimension (0 for a pure LM).
        dropout: Dropout on the softmax input in training mode.
    """

    model_id = "nlm"

    def __init__(
        self,
        vocab_size: int,
        ngram_context: int = 1,
        wordrep_size: int = 128,
        hidden_size: int = 128,
        context_size: int = 0,
        dropout: float = 0.0
    ):
        super().__init__()

        self.vocab_size = vocab_size
        self.ngram_context = ngram_context
        self.wordrep_size = wordrep_size
        self.hidden_size = hidden_size
        self.context_size = context_size

        self.embedding = nn.Embedding(vocab_size, wordrep_size)
        self.rnn = nn.LSTMCell(ngram_context * wordrep_size + context_size, hidden_size)
        self.softmax = SoftmaxFull(hidden_size + context_size, vocab_size)
        self.dropout = nn.Dropout(dropout)

    @property
    def device(self) -> torch.device:
        return self.embedding.weight.device

    def initial_state(self, n: int) -> LSTMState:
        zeros = torch.zeros(n, self.hidden_size, device=self.device)
        return zeros, zeros.clone()

    def advance(
        self,
        ngrams: torch.Tensor,
        state: LSTMState,
        context_in: Optional[torch.Tensor] = None
    ) -> LSTMState:
        """Consume one n-gram window per row.

        Args:
            ngrams: Previous word ids of shape (n, ngram_context).
            state: Tuple (h, c), each of shape (n, hidden_size).
            context_in: External context of shape (n, context_size).

        Returns:
            New (h, c).
        """
        x = self.embedding(ngrams).view(ngrams.size(0), -1)
        if self.context_size:
            x = torch.cat([x, context_in], dim=-1)
        return self.rnn(x, state)

    def log_probs(
        self,
        hidden: torch.Tensor,
        context_out: Optional[torch.Tensor] = None,
        prior: Optional[torch.Tensor] = None,
        train: bool = False
    ) -> torch.Tensor:
        """Next-word log-probabilities of shape (n, vocab_size)."""
        if self.context_size:
            hidden = torch.cat([hidden, context_out], dim=-1)
        if train:
            hidden = self.dropout(hidden)
        return self.softmax.calc_log_prob(hidden, prior)

    def get_config(self):
        return {
            "vocab_size": self.vocab_size,
            "ngram_context": self.ngram_context,
            "wordrep_size": self.wordrep_size,
            "hidden_size": self.hidden_size,
            "context_size": self.context_size,
        }

    @classmethod
    def from_config(cls, config) -> "NeuralLM":
        return cls(**config)
