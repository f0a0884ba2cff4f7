"""Ensemble Decoding Module."""

from .scorer import (
    Scorer,
    ScorerState,
    StepOutput,
    LMScorer,
    EncoderDecoderScorer,
    AttentionalScorer,
    ClassifierScorer,
    create_scorer,
    scorers_from_ensemble,
)
from .ensemble import EnsembleCombiner, EnsembleClassifier
from .beam_search import Beam, Hypothesis, EnsembleDecoder, NO_ALIGNMENT
from .mapping import load_mapping, map_words
from .driver import BatchDriver, ClassifierDriver

__all__ = [
    "Scorer",
    "ScorerState",
    "StepOutput",
    "LMScorer",
    "EncoderDecoderScorer",
    "AttentionalScorer",
    "ClassifierScorer",
    "create_scorer",
    "scorers_from_ensemble",
    "EnsembleCombiner",
    "EnsembleClassifier",
    "Beam",
    "Hypothesis",
    "EnsembleDecoder",
    "NO_ALIGNMENT",
    "load_mapping",
    "map_words",
    "BatchDriver",
    "ClassifierDriver",
]
