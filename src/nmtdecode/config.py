"""
Decoder Configuration Module.

Defines model architecture settings and decoding/run settings.
Uses dataclasses for type safety and easy serialization.
"""

from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, List, Tuple
import json

from .exceptions import ConfigurationError


ENSEMBLE_OPS = ("sum", "logsum")
TIE_BREAK_POLICIES = ("earliest", "latest")
SEQUENCE_OPERATIONS = ("ppl", "nbest", "gen", "samp")
CLASSIFIER_OPERATIONS = ("cls", "clseval")
OPERATIONS = SEQUENCE_OPERATIONS + CLASSIFIER_OPERATIONS


@dataclass
class ModelConfig:
    """Architecture of one scoring model.

    Only the fields relevant to a model family are used: language models
    ignore the encoder settings, classifiers ignore ``ngram_context``.
    """

    # Word representations
    wordrep_size: int = 128
    ngram_context: int = 1      # Previous words fed to the decoder each step

    # Recurrent sizes
    encoder_hidden_size: int = 128
    decoder_hidden_size: int = 128

    # Encoders: "f" runs left-to-right, "r" right-to-left; outputs are concatenated
    encoder_directions: List[str] = field(default_factory=lambda: ["f", "r"])

    # Attention
    attention_type: str = "mlp:128"   # dot, bilin or mlp:<hidden size>
    attention_hist: str = "none"      # none or sum (coverage)
    lex_alpha: float = 0.001          # Smoothing inside log(lexicon * align + alpha)

    # Classifier
    classifier_layers: List[int] = field(default_factory=list)

    dropout: float = 0.0

    def __post_init__(self):
        """Validate configuration."""
        if self.ngram_context < 1:
            raise ConfigurationError(f"ngram_context must be >= 1, got {self.ngram_context}")
        bad = [d for d in self.encoder_directions if d not in ("f", "r")]
        if bad or not self.encoder_directions:
            raise ConfigurationError(
                f"encoder_directions must be a non-empty list of 'f'/'r', got {self.encoder_directions}"
            )
        if self.attention_hist not in ("none", "sum"):
            raise ConfigurationError(f"Unknown attention history '{self.attention_hist}'")

    @property
    def context_size(self) -> int:
        return self.encoder_hidden_size * len(self.encoder_directions)


@dataclass
class DecodeConfig:
    """Search and ensemble settings."""

    beam_size: int = 1
    size_limit: int = 2000          # Maximum output length / sentence length
    word_penalty: float = 0.0       # Positive favors longer outputs
    length_penalty: float = 0.0     # Wu et al. (2016) alpha; 0 disables normalization
    ensemble_op: str = "sum"
    minibatch_size: int = 1         # Max words per n-best scoring batch
    tie_break: str = "earliest"

    def __post_init__(self):
        """Validate configuration."""
        if self.beam_size < 1:
            raise ConfigurationError(f"beam_size must be >= 1, got {self.beam_size}")
        if self.size_limit < 1:
            raise ConfigurationError(f"size_limit must be >= 1, got {self.size_limit}")
        if self.ensemble_op not in ENSEMBLE_OPS:
            raise ConfigurationError(
                f"Unknown ensemble operation '{self.ensemble_op}' (expected one of {ENSEMBLE_OPS})"
            )
        if self.tie_break not in TIE_BREAK_POLICIES:
            raise ConfigurationError(
                f"Unknown tie-break policy '{self.tie_break}' (expected one of {TIE_BREAK_POLICIES})"
            )
        if self.length_penalty < 0:
            raise ConfigurationError("length_penalty must be non-negative")


@dataclass
class RunConfig:
    """Complete configuration of one decoder run."""

    operation: str = "ppl"
    models_in: str = ""
    src_in: Optional[str] = None
    trg_in: Optional[str] = None     # None reads targets / n-best lists from stdin
    map_in: Optional[str] = None
    sent_range: Optional[Tuple[int, int]] = None
    verbose: int = 0
    device: str = "cpu"
    seed: int = 42

    decode: DecodeConfig = field(default_factory=DecodeConfig)

    def __post_init__(self):
        if self.operation not in OPERATIONS:
            raise ConfigurationError(f"Illegal operation: {self.operation}")
        if self.sent_range is not None:
            start, end = self.sent_range
            if start < 0 or end < start:
                raise ConfigurationError(f"Invalid sentence range {self.sent_range}")
            self.sent_range = (start, end)

    @property
    def is_classifier(self) -> bool:
        return self.operation in CLASSIFIER_OPERATIONS

    def save(self, path: Path):
        """Save configuration to JSON file."""
        config_dict = asdict(self)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(config_dict, f, indent=2, ensure_ascii=False)

    @classmethod
    def load(cls, path: Path) -> "RunConfig":
        """Load configuration from JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            config_dict = json.load(f)

        decode = DecodeConfig(**config_dict.pop("decode", {}))
        sent_range = config_dict.pop("sent_range", None)
        return cls(
            decode=decode,
            sent_range=tuple(sent_range) if sent_range else None,
            **config_dict
        )


def get_default_config() -> RunConfig:
    """Greedy decoding with a single model, matching the command-line defaults."""
    return RunConfig()


def get_debug_model_config() -> ModelConfig:
    """Minimal architecture for debugging and testing."""
    return ModelConfig(
        wordrep_size=8,
        ngram_context=2,
        encoder_hidden_size=8,
        decoder_hidden_size=16,
        attention_type="mlp:8",
        classifier_layers=[8],
    )
