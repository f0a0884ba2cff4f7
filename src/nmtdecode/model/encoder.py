"""
Recurrent Source Encoders.

Each encoder embeds the source words and runs an LSTM over them, either
left-to-right or right-to-left. Several encoders are combined by
concatenating their per-position outputs, which gives the usual
bidirectional encoding when one of each direction is used.
"""

import torch
import torch.nn as nn
from typing import List, Sequence, Tuple


class SourceEncoder(nn.Module):
    """Single-direction LSTM encoder.

    Args:
        vocab_size: Source vocabulary size.
        wordrep_size: Word embedding dimension.
        hidden_size: LSTM hidden dimension.
        reverse: Read the sentence right-to-left.
        dropout: Dropout on embeddings when encoding in training mode.
    """

    def __init__(
        self,
        vocab_size: int,
        wordrep_size: int,
        hidden_size: int,
        reverse: bool = False,
        dropout: float = 0.0
    ):
        super().__init__()
        self.vocab_size = vocab_size
        self.hidden_size = hidden_size
        self.reverse = reverse

        self.embedding = nn.Embedding(vocab_size, wordrep_size)
        self.rnn = nn.LSTM(wordrep_size, hidden_size, batch_first=True)
        self.dropout = nn.Dropout(dropout)

    def forward(self, sent: Sequence[int], train: bool = False) -> Tuple[torch.Tensor, torch.Tensor]:
        """Encode one sentence.

        Args:
            sent: Source token ids.
            train: Apply dropout.

        Returns:
            Tuple of (outputs, final).
            - outputs: Shape (src_len, hidden_size), in source order.
            - final: Shape (hidden_size,), the state after the last word read.
        """
        device = self.embedding.weight.device
        ids = torch.tensor(list(sent), dtype=torch.long, device=device)
        if self.reverse:
            ids = ids.flip(0)

        emb = self.embedding(ids).unsqueeze(0)
        if train:
            emb = self.dropout(emb)
        outputs, _ = self.rnn(emb)
        outputs = outputs.squeeze(0)

        final = outputs[-1]
        if self.reverse:
            outputs = outputs.flip(0)
        return outputs, final


def encode_sentences(
    encoders: Sequence[SourceEncoder],
    sents: Sequence[Sequence[int]],
    train: bool = False,
    empty_id: int = 0
) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    """Encode a batch of sentences with every encoder and concatenate.

    Sentences are encoded one at a time, so padding never leaks into the
    recurrent state; shorter sentences are zero-padded afterwards. An empty
    sentence is encoded as the single token ``empty_id``.

    Args:
        encoders: Encoders whose outputs are concatenated.
        sents: Batch of source sentences.
        train: Apply dropout.
        empty_id: Token standing in for an empty sentence.

    Returns:
        Tuple of (encodings, mask, final).
        - encodings: Shape (batch, max_len, sum of hidden sizes).
        - mask: Shape (batch, max_len), True at real positions.
        - final: Shape (batch, sum of hidden sizes).
    """
    sents = [list(s) if len(s) > 0 else [empty_id] for s in sents]
    max_len = max(len(s) for s in sents)
    hidden = sum(enc.hidden_size for enc in encoders)
    device = encoders[0].embedding.weight.device

    encodings = torch.zeros(len(sents), max_len, hidden, device=device)
    mask = torch.zeros(len(sents), max_len, dtype=torch.bool, device=device)
    finals: List[torch.Tensor] = []

    for i, sent in enumerate(sents):
        outputs, last = zip(*(enc(sent, train=train) for enc in encoders))
        encodings[i, :len(sent)] = torch.cat(outputs, dim=-1)
        mask[i, :len(sent)] = True
        finals.append(torch.cat(last, dim=-1))

    return encodings, mask, torch.stack(finals)


def build_encoders(
    vocab_size: int,
    wordrep_size: int,
    hidden_size: int,
    directions: Sequence[str],
    dropout: float = 0.0
) -> nn.ModuleList:
    """Create one encoder per direction code ("f" or "r")."""
    return nn.ModuleList([
        SourceEncoder(vocab_size, wordrep_size, hidden_size,
                      reverse=(direction == "r"), dropout=dropout)
        for direction in directions
    ])
