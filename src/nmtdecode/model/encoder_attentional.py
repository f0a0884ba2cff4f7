"""
Attentional Encoder-Decoder Model.

Couples an AttentionContext (which owns the source encoders) with a
NeuralLM decoder. The decoder is initialized from the final encoder
states; at each step the previous context is fed as input and a new
context is computed from the updated decoder state.
"""

from dataclasses import asdict
from typing import Any, Dict, Optional

import torch
import torch.nn as nn

from ..config import ModelConfig
from .attention import AttentionContext, LexicalTable
from .encoder import build_encoders
from .language_model import LSTMState, NeuralLM


class EncoderAttentional(nn.Module):
    """Encoder-decoder with soft attention and an optional lexical prior.

    Args:
        vocab_src_size: Source vocabulary size.
        vocab_trg_size: Target vocabulary size.
        config: Architecture settings.
        lexicon: Optional translation table used as a prior.
    """

    model_id = "encatt"

    def __init__(
        self,
        vocab_src_size: int,
        vocab_trg_size: int,
        config: ModelConfig,
        lexicon: Optional[LexicalTable] = None
    ):
        super().__init__()
        self.vocab_src_size = vocab_src_size
        self.vocab_trg_size = vocab_trg_size
        self.config = config

        encoders = build_encoders(
            vocab_src_size, config.wordrep_size, config.encoder_hidden_size,
            config.encoder_directions, config.dropout
        )
        self.attention = AttentionContext(
            encoders,
            attention_type=config.attention_type,
            attention_hist=config.attention_hist,
            state_size=config.decoder_hidden_size,
            vocab_trg_size=vocab_trg_size,
            lexicon=lexicon,
            lex_alpha=config.lex_alpha,
            dropout=config.dropout,
        )
        self.decoder = NeuralLM(
            vocab_trg_size,
            ngram_context=config.ngram_context,
            wordrep_size=config.wordrep_size,
            hidden_size=config.decoder_hidden_size,
            context_size=self.attention.context_size,
            dropout=config.dropout,
        )
        self.enc2dec = nn.Linear(self.attention.context_size, 2 * config.decoder_hidden_size)

    def initial_state(self, final: torch.Tensor) -> LSTMState:
        h, c = torch.tanh(self.enc2dec(final)).chunk(2, dim=-1)
        return h.contiguous(), c.contiguous()

    def get_config(self) -> Dict[str, Any]:
        lexicon = self.attention.lexicon
        return {
            "vocab_src_size": self.vocab_src_size,
            "vocab_trg_size": self.vocab_trg_size,
            "config": asdict(self.config),
            "lexicon": lexicon.to_list() if lexicon is not None else None,
        }

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "EncoderAttentional":
        return cls(
            config["vocab_src_size"],
            config["vocab_trg_size"],
            ModelConfig(**config["config"]),
            lexicon=LexicalTable.from_list(config.get("lexicon")),
        )
