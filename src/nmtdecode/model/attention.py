"""
Attentional Context Computation.

Computes, for every decoding step, a soft alignment over the encoded source
sentence and the resulting context vector.

Key features:
- Three score functions: dot product, bilinear and MLP (additive)
- Optional coverage-style history: the running sum of past alignments
  enters the score function
- Numerically stable normalization with masking of padded positions
- Optional lexical prior derived from a word translation table
- Explicit lifecycle: the context is Unbound until ``initialize_sentence``
  binds it to one source sentence, and Unbound again after ``release``
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import torch
import torch.nn as nn

from ..exceptions import ConfigurationError, InvalidStateError
from ..vocabulary import Sentence, Vocabulary
from .encoder import encode_sentences


class LexicalTable:
    """Source word -> target word translation probabilities.

    Args:
        entries: Mapping from source id to a list of (target id, probability).
    """

    def __init__(self, entries: Optional[Dict[int, List[Tuple[int, float]]]] = None):
        self.entries: Dict[int, List[Tuple[int, float]]] = entries or {}

    def __len__(self) -> int:
        return sum(len(v) for v in self.entries.values())

    def get(self, src_id: int) -> List[Tuple[int, float]]:
        return self.entries.get(src_id, [])

    @classmethod
    def load(
        cls,
        path: Union[str, Path],
        vocab_src: Vocabulary,
        vocab_trg: Vocabulary
    ) -> "LexicalTable":
        """Read ``src<TAB>trg<TAB>prob`` rows.

        Words outside the vocabularies are dropped.
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Could not find lexicon file {path}")

        entries: Dict[int, List[Tuple[int, float]]] = {}
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.rstrip("\n")
                if not line:
                    continue
                cols = line.split("\t")
                if len(cols) != 3:
                    raise ConfigurationError(f"Invalid line in lexicon file: {line}")
                if cols[0] not in vocab_src or cols[1] not in vocab_trg:
                    continue
                entries.setdefault(vocab_src.wid(cols[0]), []).append(
                    (vocab_trg.wid(cols[1]), float(cols[2]))
                )
        return cls(entries)

    def to_list(self) -> List[List[float]]:
        return [
            [src, trg, prob]
            for src, pairs in sorted(self.entries.items())
            for trg, prob in pairs
        ]

    @classmethod
    def from_list(cls, rows: Optional[List[List[float]]]) -> Optional["LexicalTable"]:
        if not rows:
            return None
        entries: Dict[int, List[Tuple[int, float]]] = {}
        for src, trg, prob in rows:
            entries.setdefault(int(src), []).append((int(trg), float(prob)))
        return cls(entries)


@dataclass
class AttentionState:
    """Per-sentence attention data, fixed for the sentence's lifetime.

    Attributes:
        encodings: Encoded source of shape (batch, src_len, hidden).
        mask: Shape (batch, src_len), True at real source positions.
        final: Final encoder states of shape (batch, hidden).
        align_sum: Zeroed alignment-sum accumulator of shape (batch, src_len).
        hidden_part: Source half of the MLP score, (batch, src_len, mlp_size).
        lexicon: Translation probabilities, (batch, vocab_trg, src_len).
    """
    encodings: torch.Tensor
    mask: torch.Tensor
    final: torch.Tensor
    align_sum: torch.Tensor
    hidden_part: Optional[torch.Tensor] = None
    lexicon: Optional[torch.Tensor] = None

    @property
    def src_len(self) -> int:
        return self.encodings.size(1)

    @property
    def batch_size(self) -> int:
        return self.encodings.size(0)


def _as_batch(source: Union[Sentence, Sequence[Sentence]]) -> List[Sentence]:
    if len(source) == 0 or isinstance(source[0], int):
        return [list(source)]
    return [list(s) for s in source]


def _expand_rows(x: torch.Tensor, n: int) -> torch.Tensor:
    """Broadcast a batch-1 tensor to ``n`` rows."""
    if x.size(0) == n:
        return x
    if x.size(0) != 1:
        raise ValueError(f"Cannot broadcast batch of {x.size(0)} source sentences to {n} rows")
    return x.expand(n, *x.shape[1:])


class AttentionContext(nn.Module):
    """Soft-alignment context over an encoded source sentence.

    Score functions for source encoding ``h_j`` and decoder state ``s``:
        dot:   h_j . s
        bilin: h_j . (W s)
        mlp:   v . tanh(W_h h_j + W_s s)

    With ``attention_hist="sum"`` the running alignment sum ``c_j`` is added
    (as ``u c_j`` inside the tanh for mlp, or ``w c_j`` on the score otherwise).

    Args:
        encoders: Source encoders; their outputs are concatenated.
        attention_type: "dot", "bilin" or "mlp:<size>".
        attention_hist: "none" or "sum".
        state_size: Decoder state dimension.
        vocab_trg_size: Target vocabulary size (needed for the lexical prior).
        lexicon: Optional translation table for the prior.
        lex_alpha: Smoothing constant of the prior.
        dropout: Dropout on the context vector in training mode.
    """

    def __init__(
        self,
        encoders: nn.ModuleList,
        attention_type: str,
        attention_hist: str,
        state_size: int,
        vocab_trg_size: Optional[int] = None,
        lexicon: Optional[LexicalTable] = None,
        lex_alpha: float = 0.001,
        dropout: float = 0.0
    ):
        super().__init__()

        self.encoders = encoders
        self.attention_type = attention_type
        self.attention_hist = attention_hist
        self.state_size = state_size
        self.hidden_size = sum(enc.hidden_size for enc in encoders)
        self.vocab_trg_size = vocab_trg_size
        self.lexicon = lexicon
        self.lex_alpha = lex_alpha
        self.dropout = nn.Dropout(dropout)

        if lexicon is not None and vocab_trg_size is None:
            raise ConfigurationError("A lexical prior needs the target vocabulary size")

        if attention_type == "dot":
            if state_size != self.hidden_size:
                raise ConfigurationError(
                    f"Dot attention needs equal state ({state_size}) and context "
                    f"({self.hidden_size}) sizes"
                )
            self.mlp_size = 0
        elif attention_type == "bilin":
            self.w_bilin = nn.Linear(state_size, self.hidden_size, bias=False)
            self.mlp_size = 0
        elif attention_type.startswith("mlp:"):
            try:
                self.mlp_size = int(attention_type[4:])
            except ValueError:
                raise ConfigurationError(f"Bad attention type '{attention_type}'")
            self.w_ehid_h = nn.Linear(self.hidden_size, self.mlp_size, bias=False)
            self.w_ehid_state = nn.Linear(state_size, self.mlp_size)
            self.w_e_ehid = nn.Linear(self.mlp_size, 1, bias=False)
        else:
            raise ConfigurationError(
                f"Illegal attention type '{attention_type}' (expected dot, bilin or mlp:<size>)"
            )

        if attention_hist == "sum":
            self.w_align_sum = nn.Parameter(torch.empty(max(self.mlp_size, 1)))
            nn.init.normal_(self.w_align_sum, std=0.1)
        elif attention_hist != "none":
            raise ConfigurationError(f"Illegal attention history '{attention_hist}'")

        self._state: Optional[AttentionState] = None

    @property
    def context_size(self) -> int:
        return self.hidden_size

    @property
    def is_bound(self) -> bool:
        return self._state is not None

    @property
    def state(self) -> AttentionState:
        return self._require_state()

    def _require_state(self) -> AttentionState:
        if self._state is None:
            raise InvalidStateError(
                "AttentionContext is not bound to a sentence; call initialize_sentence first"
            )
        return self._state

    def initialize_sentence(
        self,
        source: Union[Sentence, Sequence[Sentence]],
        train: bool = False
    ) -> AttentionState:
        """Encode the source and bind the context to it.

        Args:
            source: One Sentence, or several encoded side by side as a batch.
            train: Training mode (enables dropout).

        Returns:
            The new AttentionState.
        """
        sents = _as_batch(source)
        encodings, mask, final = encode_sentences(self.encoders, sents, train=train)

        hidden_part = self.w_ehid_h(encodings) if self.mlp_size else None
        lexicon = self._build_lexicon(sents, encodings.size(1), encodings.device)

        self._state = AttentionState(
            encodings=encodings,
            mask=mask,
            final=final,
            align_sum=torch.zeros(mask.shape, device=encodings.device),
            hidden_part=hidden_part,
            lexicon=lexicon,
        )
        return self._state

    def release(self) -> None:
        """Unbind from the current sentence."""
        self._state = None

    def _build_lexicon(
        self,
        sents: List[Sentence],
        src_len: int,
        device: torch.device
    ) -> Optional[torch.Tensor]:
        if self.lexicon is None:
            return None
        lexicon = torch.zeros(len(sents), self.vocab_trg_size, src_len, device=device)
        for i, sent in enumerate(sents):
            for j, src_id in enumerate(sent):
                for trg_id, prob in self.lexicon.get(src_id):
                    lexicon[i, trg_id, j] = prob
        return lexicon

    @staticmethod
    def normalize(scores: torch.Tensor) -> torch.Tensor:
        """Softmax over the last dimension, subtracting the max first."""
        shifted = scores - scores.max(dim=-1, keepdim=True).values
        exp = torch.exp(shifted)
        return exp / exp.sum(dim=-1, keepdim=True)

    def create_context(
        self,
        state_in: torch.Tensor,
        align_sum_in: Optional[torch.Tensor] = None,
        train: bool = False
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """Attend over the bound source sentence.

        Args:
            state_in: Decoder states of shape (n, state_size).
            align_sum_in: Running alignment sums of shape (n, src_len).
                          Zeros are used when None.
            train: Training mode (enables dropout).

        Returns:
            Tuple of (context, align, align_sum_out).
            - context: Shape (n, context_size).
            - align: Shape (n, src_len), rows sum to 1.
            - align_sum_out: ``align_sum_in + align``.
        """
        st = self._require_state()
        n = state_in.size(0)

        encodings = _expand_rows(st.encodings, n)
        mask = _expand_rows(st.mask, n)
        if align_sum_in is None:
            align_sum_in = _expand_rows(st.align_sum, n)

        if self.attention_type == "dot":
            scores = torch.bmm(encodings, state_in.unsqueeze(-1)).squeeze(-1)
        elif self.attention_type == "bilin":
            scores = torch.bmm(encodings, self.w_bilin(state_in).unsqueeze(-1)).squeeze(-1)
        else:
            ehid = _expand_rows(st.hidden_part, n) + self.w_ehid_state(state_in).unsqueeze(1)
            if self.attention_hist == "sum":
                ehid = ehid + align_sum_in.unsqueeze(-1) * self.w_align_sum
            scores = self.w_e_ehid(torch.tanh(ehid)).squeeze(-1)

        if self.attention_hist == "sum" and not self.mlp_size:
            scores = scores + align_sum_in * self.w_align_sum

        scores = scores.masked_fill(~mask, float("-inf"))
        align = self.normalize(scores)

        context = torch.bmm(align.unsqueeze(1), encodings).squeeze(1)
        if train:
            context = self.dropout(context)

        return context, align, align_sum_in + align

    def calc_prior(self, align: torch.Tensor) -> Optional[torch.Tensor]:
        """Lexical prior ``log(lexicon @ align + alpha)`` of shape (n, vocab_trg).

        Returns None when no lexical table is configured.
        """
        st = self._require_state()
        if st.lexicon is None:
            return None
        lexicon = _expand_rows(st.lexicon, align.size(0))
        probs = torch.bmm(lexicon, align.unsqueeze(-1)).squeeze(-1)
        return torch.log(probs + self.lex_alpha)

    def get_empty_context(self, n: int = 1) -> torch.Tensor:
        """Zero context, used when no source sentence is available."""
        device = next(self.parameters()).device
        return torch.zeros(n, self.context_size, device=device)
