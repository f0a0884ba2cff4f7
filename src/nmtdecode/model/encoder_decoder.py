"""
Encoder-Decoder Model (no attention).

The source sentence is encoded once; its final encoder state initializes
the decoder and is also fed to the decoder as a fixed context vector at
every step.
"""

from dataclasses import asdict
from typing import Any, Dict, Sequence

import torch
import torch.nn as nn

from ..config import ModelConfig
from .encoder import build_encoders, encode_sentences
from .language_model import LSTMState, NeuralLM


class EncoderDecoder(nn.Module):
    """Sequence-to-sequence model with a fixed source context.

    Args:
        vocab_src_size: Source vocabulary size.
        vocab_trg_size: Target vocabulary size.
        config: Architecture settings.
    """

    model_id = "encdec"

    def __init__(self, vocab_src_size: int, vocab_trg_size: int, config: ModelConfig):
        super().__init__()
        self.vocab_src_size = vocab_src_size
        self.vocab_trg_size = vocab_trg_size
        self.config = config

        self.encoders = build_encoders(
            vocab_src_size, config.wordrep_size, config.encoder_hidden_size,
            config.encoder_directions, config.dropout
        )
        self.decoder = NeuralLM(
            vocab_trg_size,
            ngram_context=config.ngram_context,
            wordrep_size=config.wordrep_size,
            hidden_size=config.decoder_hidden_size,
            context_size=config.context_size,
            dropout=config.dropout,
        )
        self.enc2dec = nn.Linear(config.context_size, 2 * config.decoder_hidden_size)

    def encode(self, sents: Sequence[Sequence[int]], train: bool = False) -> torch.Tensor:
        """Final encoder states of shape (batch, context_size)."""
        _, _, final = encode_sentences(self.encoders, sents, train=train)
        return final

    def initial_state(self, final: torch.Tensor) -> LSTMState:
        h, c = torch.tanh(self.enc2dec(final)).chunk(2, dim=-1)
        return h.contiguous(), c.contiguous()

    def get_config(self) -> Dict[str, Any]:
        return {
            "vocab_src_size": self.vocab_src_size,
            "vocab_trg_size": self.vocab_trg_size,
            "config": asdict(self.config),
        }

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "EncoderDecoder":
        return cls(config["vocab_src_size"], config["vocab_trg_size"],
                   ModelConfig(**config["config"]))
