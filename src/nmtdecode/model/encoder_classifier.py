"""
Encoder-Classifier Model.

Encodes a source sentence and predicts a single label from the final
encoder states through a stack of tanh layers.
"""

from dataclasses import asdict
from typing import Any, Dict, Sequence

import torch
import torch.nn as nn

from ..config import ModelConfig
from .encoder import build_encoders, encode_sentences
from .softmax import SoftmaxFull


class EncoderClassifier(nn.Module):
    """Sentence classifier.

    Args:
        vocab_src_size: Source vocabulary size.
        num_labels: Size of the label vocabulary.
        config: Architecture settings (uses the encoder and classifier fields).
    """

    model_id = "enccls"

    def __init__(self, vocab_src_size: int, num_labels: int, config: ModelConfig):
        super().__init__()
        self.vocab_src_size = vocab_src_size
        self.num_labels = num_labels
        self.config = config

        self.encoders = build_encoders(
            vocab_src_size, config.wordrep_size, config.encoder_hidden_size,
            config.encoder_directions, config.dropout
        )

        layers = []
        in_size = config.context_size
        for size in config.classifier_layers:
            layers.append(nn.Linear(in_size, size))
            in_size = size
        self.layers = nn.ModuleList(layers)
        self.softmax = SoftmaxFull(in_size, num_labels)
        self.dropout = nn.Dropout(config.dropout)

    def log_probs(self, sents: Sequence[Sequence[int]], train: bool = False) -> torch.Tensor:
        """Label log-probabilities of shape (batch, num_labels)."""
        _, _, hidden = encode_sentences(self.encoders, sents, train=train)
        for layer in self.layers:
            hidden = torch.tanh(layer(hidden))
            if train:
                hidden = self.dropout(hidden)
        return self.softmax.calc_log_prob(hidden)

    def get_config(self) -> Dict[str, Any]:
        return {
            "vocab_src_size": self.vocab_src_size,
            "vocab_trg_size": self.num_labels,
            "config": asdict(self.config),
        }

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "EncoderClassifier":
        return cls(config["vocab_src_size"], config["vocab_trg_size"],
                   ModelConfig(**config["config"]))
