"""
Model Creation, Persistence and Ensemble Loading.

Model files are ``torch.save`` checkpoints holding the model family tag,
the architecture config, the weights and the vocabularies. Ensembles are
described by one string of ``tag=path`` items separated by ``|``, e.g.::

    encatt=models/a.pt|encatt=models/b.pt|nlm=models/lm.pt

All checks (tags, files, vocabulary agreement) happen here, before any
input is read.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import torch
import torch.nn as nn

from ..config import ModelConfig
from ..exceptions import ConfigurationError
from ..vocabulary import Vocabulary
from .attention import LexicalTable
from .encoder_attentional import EncoderAttentional
from .encoder_classifier import EncoderClassifier
from .encoder_decoder import EncoderDecoder
from .language_model import NeuralLM

logger = logging.getLogger(__name__)

MODEL_CLASSES = {
    "nlm": NeuralLM,
    "encdec": EncoderDecoder,
    "encatt": EncoderAttentional,
    "enccls": EncoderClassifier,
}
SEQUENCE_MODEL_TYPES = ("encdec", "encatt", "nlm")
CLASSIFIER_MODEL_TYPES = ("enccls",)


@dataclass
class LoadedModel:
    """One model of an ensemble with its vocabularies."""
    model_type: str
    model: nn.Module
    vocab_src: Optional[Vocabulary]
    vocab_trg: Vocabulary
    path: str = ""


@dataclass
class LoadedEnsemble:
    """All models of an ensemble; vocabularies are shared by construction."""
    models: List[LoadedModel]
    vocab_src: Optional[Vocabulary]
    vocab_trg: Vocabulary

    @property
    def needs_source(self) -> bool:
        return any(m.model_type != "nlm" for m in self.models)


def create_model(
    model_type: str,
    config: ModelConfig,
    vocab_src: Optional[Vocabulary],
    vocab_trg: Vocabulary,
    lexicon: Optional[LexicalTable] = None
) -> nn.Module:
    """Build an untrained model of the given family.

    Args:
        model_type: One of "nlm", "encdec", "encatt", "enccls".
        config: Architecture settings.
        vocab_src: Source vocabulary (ignored for "nlm").
        vocab_trg: Target (or label) vocabulary.
        lexicon: Lexical prior table ("encatt" only).

    Returns:
        Model in eval mode.
    """
    if model_type not in MODEL_CLASSES:
        raise ConfigurationError(f"Bad model type '{model_type}'")
    if model_type != "nlm" and vocab_src is None:
        raise ConfigurationError(f"Model type '{model_type}' needs a source vocabulary")

    if model_type == "nlm":
        model = NeuralLM(
            len(vocab_trg),
            ngram_context=config.ngram_context,
            wordrep_size=config.wordrep_size,
            hidden_size=config.decoder_hidden_size,
            dropout=config.dropout,
        )
    elif model_type == "encatt":
        model = EncoderAttentional(len(vocab_src), len(vocab_trg), config, lexicon=lexicon)
    else:
        model = MODEL_CLASSES[model_type](len(vocab_src), len(vocab_trg), config)

    model.eval()
    return model


def save_model(
    path: Union[str, Path],
    model_type: str,
    model: nn.Module,
    vocab_src: Optional[Vocabulary],
    vocab_trg: Vocabulary
):
    """Save a model with everything needed to decode with it."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    torch.save({
        "model_type": model_type,
        "config": model.get_config(),
        "model_state_dict": model.state_dict(),
        "vocab_src": vocab_src.to_list() if vocab_src is not None else None,
        "vocab_trg": vocab_trg.to_list(),
    }, path)


def load_model(
    path: Union[str, Path],
    model_type: str,
    device: Optional[torch.device] = None
) -> LoadedModel:
    """Load a model saved with :func:`save_model`.

    Raises:
        ConfigurationError: Missing file, unknown tag, or the file holds a
            different model family than ``model_type``.
    """
    if model_type not in MODEL_CLASSES:
        raise ConfigurationError(f"Bad model type '{model_type}' for {path}")
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Could not find model file {path}")

    device = device or torch.device("cpu")
    checkpoint = torch.load(path, map_location=device)

    stored_type = checkpoint.get("model_type")
    if stored_type != model_type:
        raise ConfigurationError(
            f"Model file {path} holds a '{stored_type}' model, but was given as '{model_type}'"
        )

    model = MODEL_CLASSES[model_type].from_config(checkpoint["config"])
    model.load_state_dict(checkpoint["model_state_dict"])
    model.to(device)
    model.eval()

    return LoadedModel(
        model_type=model_type,
        model=model,
        vocab_src=Vocabulary.from_list(checkpoint.get("vocab_src")),
        vocab_trg=Vocabulary.from_list(checkpoint["vocab_trg"]),
        path=str(path),
    )


def parse_models_in(
    models_in: str,
    allowed_types: Sequence[str] = SEQUENCE_MODEL_TYPES
) -> List[Tuple[str, str]]:
    """Split ``tag=path|tag=path`` into (tag, path) pairs."""
    allowed = "=, ".join(allowed_types) + "="
    if not models_in:
        raise ConfigurationError(f"No models given. Must specify {allowed} before model name.")

    specs = []
    for item in models_in.split("|"):
        model_type, sep, file = item.partition("=")
        if not sep or model_type not in allowed_types or not file:
            raise ConfigurationError(
                f"Bad model type. Must specify {allowed} before model name.\n{item}"
            )
        specs.append((model_type, file))
    return specs


def load_ensemble(
    models_in: str,
    allowed_types: Sequence[str] = SEQUENCE_MODEL_TYPES,
    device: Optional[torch.device] = None
) -> LoadedEnsemble:
    """Load every model of an ensemble and check that vocabularies agree.

    Raises:
        ConfigurationError: Bad tag, missing file, or unequal source/target
            vocabularies between members.
    """
    loaded: List[LoadedModel] = []
    vocab_src: Optional[Vocabulary] = None
    vocab_trg: Optional[Vocabulary] = None

    for model_type, file in parse_models_in(models_in, allowed_types):
        member = load_model(file, model_type, device=device)

        if vocab_trg is not None and member.vocab_trg != vocab_trg:
            raise ConfigurationError(
                f"Target vocabularies for ensemble members are not equal ({file})"
            )
        if vocab_src is not None and member.vocab_src is not None and member.vocab_src != vocab_src:
            raise ConfigurationError(
                f"Source vocabularies for ensemble members are not equal ({file})"
            )

        vocab_trg = member.vocab_trg
        if member.vocab_src is not None:
            vocab_src = member.vocab_src
        loaded.append(member)
        logger.info("Loaded %s model from %s", model_type, file)

    return LoadedEnsemble(models=loaded, vocab_src=vocab_src, vocab_trg=vocab_trg)
