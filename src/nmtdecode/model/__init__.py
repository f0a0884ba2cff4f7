"""Scoring Model Module."""

from .attention import AttentionContext, AttentionState, LexicalTable
from .encoder import SourceEncoder, encode_sentences
from .softmax import SoftmaxFull
from .language_model import NeuralLM
from .encoder_decoder import EncoderDecoder
from .encoder_attentional import EncoderAttentional
from .encoder_classifier import EncoderClassifier
from .loading import (
    create_model,
    save_model,
    load_model,
    load_ensemble,
    parse_models_in,
    LoadedEnsemble,
    LoadedModel,
)

__all__ = [
    "AttentionContext",
    "AttentionState",
    "LexicalTable",
    "SourceEncoder",
    "encode_sentences",
    "SoftmaxFull",
    "NeuralLM",
    "EncoderDecoder",
    "EncoderAttentional",
    "EncoderClassifier",
    "create_model",
    "save_model",
    "load_model",
    "load_ensemble",
    "parse_models_in",
    "LoadedEnsemble",
    "LoadedModel",
]
