"""
Full Softmax Output Layer.

Projects a hidden vector onto the output vocabulary. An optional prior
(already in log space, e.g. a lexical translation prior) is added to the
scores before normalization, so a hand-built table can bias the learned
distribution without retraining.
"""

import torch
import torch.nn as nn
import torch.nn.functional as F
from typing import Optional


class SoftmaxFull(nn.Module):
    """Affine projection followed by a softmax over the whole vocabulary.

    Args:
        input_size: Size of the incoming hidden vector.
        vocab_size: Number of output symbols.
    """

    def __init__(self, input_size: int, vocab_size: int):
        super().__init__()
        self.input_size = input_size
        self.vocab_size = vocab_size
        self.projection = nn.Linear(input_size, vocab_size)

    def calc_score(
        self,
        hidden: torch.Tensor,
        prior: Optional[torch.Tensor] = None
    ) -> torch.Tensor:
        """Unnormalized scores of shape (batch, vocab_size)."""
        score = self.projection(hidden)
        if prior is not None:
            score = score + prior
        return score

    def calc_log_prob(
        self,
        hidden: torch.Tensor,
        prior: Optional[torch.Tensor] = None
    ) -> torch.Tensor:
        return F.log_softmax(self.calc_score(hidden, prior), dim=-1)
