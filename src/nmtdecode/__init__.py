"""
Ensemble Decoder for Neural Sequence Models.

Decodes with ensembles of language models, encoder-decoders, attentional
encoder-decoders and encoder-classifiers.

Modules:
    - model: Scoring models, attention context and checkpoint loading
    - inference: Scorers, ensemble combination, beam search and batch driver
    - evaluation: Likelihood statistics and corpus reports
"""

from .config import RunConfig, DecodeConfig, ModelConfig
from .exceptions import (
    NMTDecodeError,
    ConfigurationError,
    UnsupportedOperationError,
    StreamMismatchError,
    InvalidStateError,
    LengthLimitExceeded,
)
from .vocabulary import Vocabulary

__version__ = "1.0.0"
__all__ = [
    "RunConfig",
    "DecodeConfig",
    "ModelConfig",
    "NMTDecodeError",
    "ConfigurationError",
    "UnsupportedOperationError",
    "StreamMismatchError",
    "InvalidStateError",
    "LengthLimitExceeded",
    "Vocabulary",
]
