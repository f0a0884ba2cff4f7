"""
Command Line Decoder.

Usage:
    nmtdecode --operation ppl --models-in encatt=model.pt --src-in test.src < test.trg
    nmtdecode --operation gen --models-in "encatt=a.pt|encatt=b.pt" --src-in test.src --beam 5
    nmtdecode --operation nbest --models-in encdec=model.pt --src-in test.src --trg-in test.nbest
    nmtdecode --operation gen --models-in nlm=lm.pt --sent-range 0,10
    nmtdecode --operation cls --models-in enccls=cls.pt --src-in test.src

Results are written to stdout; reports and diagnostics go to stderr.
"""

import argparse
import logging
import sys
from contextlib import ExitStack
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional, TextIO, Tuple

from .config import DecodeConfig, RunConfig, get_default_config
from .evaluation.metrics import CorpusReport
from .exceptions import ConfigurationError, NMTDecodeError, UnsupportedOperationError
from .inference import (
    BatchDriver,
    ClassifierDriver,
    EnsembleClassifier,
    EnsembleDecoder,
    load_mapping,
    scorers_from_ensemble,
)
from .logging_setup import setup_logging
from .model.loading import CLASSIFIER_MODEL_TYPES, SEQUENCE_MODEL_TYPES, load_ensemble
from .utils import get_device, set_seed

logger = logging.getLogger(__name__)

DECODE_ARGS = {
    "beam": "beam_size",
    "size_limit": "size_limit",
    "word_pen": "word_penalty",
    "length_penalty": "length_penalty",
    "ensemble_op": "ensemble_op",
    "minibatch_size": "minibatch_size",
    "tie_break": "tie_break",
}
RUN_ARGS = ("operation", "models_in", "src_in", "trg_in", "map_in", "verbose", "device", "seed")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Decode with an ensemble of sequence models")

    # Operation and models
    parser.add_argument("--operation", type=str, default=None,
                       help="ppl: measure perplexity, nbest: score n-best list, "
                            "gen: generate most likely sentence, samp: sample sentences, "
                            "cls: classify, clseval: evaluate classification")
    parser.add_argument("--models-in", type=str, default=None,
                       help="Models as tag=path separated by '|' (tags: encdec, encatt, nlm, enccls)")
    parser.add_argument("--config", type=str, default=None,
                       help="JSON run configuration; explicit flags override it")

    # Input
    parser.add_argument("--src-in", type=str, default=None,
                       help="Source sentences")
    parser.add_argument("--trg-in", type=str, default=None,
                       help="Target sentences, n-best list or labels (default: stdin)")
    parser.add_argument("--map-in", type=str, default=None,
                       help="Unknown-word mapping table (src<TAB>trg<TAB>score)")
    parser.add_argument("--sent-range", type=str, default=None,
                       help="Process sentences a (inclusive) to b (exclusive), as 'a,b'")

    # Decoding
    parser.add_argument("--beam", type=int, default=None,
                       help="Beam size (default: 1)")
    parser.add_argument("--size-limit", type=int, default=None,
                       help="Maximum sentence length (default: 2000)")
    parser.add_argument("--word-pen", type=float, default=None,
                       help="Per-word bonus; positive favors longer outputs (default: 0)")
    parser.add_argument("--length-penalty", type=float, default=None,
                       help="Length normalization alpha; 0 disables it (default: 0)")
    parser.add_argument("--ensemble-op", type=str, default=None,
                       help="Ensemble operation, sum or logsum (default: sum)")
    parser.add_argument("--minibatch-size", type=int, default=None,
                       help="Max words per n-best scoring batch (default: 1)")
    parser.add_argument("--tie-break", type=str, default=None,
                       help="Equal-score completed hypotheses: earliest or latest (default: earliest)")

    # Runtime
    parser.add_argument("--verbose", type=int, default=None,
                       help="1: per-sentence scores, 2: debug logging")
    parser.add_argument("--progress", action="store_true",
                       help="Show a progress bar")
    parser.add_argument("--device", type=str, default=None,
                       help="Device (cpu, cuda, auto)")
    parser.add_argument("--seed", type=int, default=None,
                       help="Random seed")

    return parser.parse_args(argv)


def parse_sent_range(value: str) -> Tuple[int, int]:
    """Parse 'a,b' into (a, b)."""
    parts = value.split(",")
    if len(parts) != 2:
        raise ConfigurationError(f"Bad sentence range '{value}', expected 'a,b'")
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        raise ConfigurationError(f"Bad sentence range '{value}', expected 'a,b'")


def build_config(args: argparse.Namespace) -> RunConfig:
    """Merge the optional JSON config with the explicit command-line flags."""
    if args.config and not Path(args.config).exists():
        raise ConfigurationError(f"Could not find config file {args.config}")
    base = RunConfig.load(Path(args.config)) if args.config else get_default_config()
    run = asdict(base)
    decode = run.pop("decode")

    for name in RUN_ARGS:
        value = getattr(args, name)
        if value is not None:
            run[name] = value
    for arg_name, field_name in DECODE_ARGS.items():
        value = getattr(args, arg_name)
        if value is not None:
            decode[field_name] = value
    if args.sent_range is not None:
        run["sent_range"] = parse_sent_range(args.sent_range)

    return RunConfig(decode=DecodeConfig(**decode), **run)


def _open_input(stack: ExitStack, path: Optional[str], name: str) -> TextIO:
    if not Path(path).exists():
        raise ConfigurationError(f"Could not find {name} file {path}")
    return stack.enter_context(open(path, "r", encoding="utf-8"))


def run(
    config: RunConfig,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
    show_progress: bool = False
) -> CorpusReport:
    """Load the ensemble and run one operation.

    Raises:
        NMTDecodeError: Any configuration or stream error.
    """
    stdin = stdin if stdin is not None else sys.stdin
    stdout = stdout if stdout is not None else sys.stdout

    if config.operation == "samp":
        raise UnsupportedOperationError("Sampling not implemented yet")

    device = get_device(config.device)
    allowed = CLASSIFIER_MODEL_TYPES if config.is_classifier else SEQUENCE_MODEL_TYPES
    ensemble = load_ensemble(config.models_in, allowed_types=allowed, device=device)
    scorers = scorers_from_ensemble(ensemble)

    with ExitStack() as stack:
        if ensemble.needs_source and config.src_in is None:
            raise ConfigurationError("Translation models need a source file (--src-in)")
        src_lines = _open_input(stack, config.src_in, "src_in") if ensemble.needs_source else None
        trg_lines = _open_input(stack, config.trg_in, "trg_in") if config.trg_in else stdin

        if config.is_classifier:
            driver = ClassifierDriver(
                EnsembleClassifier(scorers, config.decode.ensemble_op),
                ensemble.vocab_src,
                ensemble.vocab_trg,
                verbose=config.verbose,
                show_progress=show_progress,
            )
            if config.operation == "cls":
                report = driver.classify(src_lines, stdout)
            else:
                report = driver.evaluate(trg_lines, src_lines, stdout)
        else:
            decoder = EnsembleDecoder.from_config(
                scorers,
                config.decode,
                end_id=ensemble.vocab_trg.end_id,
                unk_id=ensemble.vocab_trg.unk_id,
            )
            mapping = load_mapping(config.map_in) if config.map_in else None
            driver = BatchDriver(
                decoder,
                ensemble.vocab_src,
                ensemble.vocab_trg,
                needs_source=ensemble.needs_source,
                minibatch_size=config.decode.minibatch_size,
                sent_range=config.sent_range,
                verbose=config.verbose,
                mapping=mapping,
                show_progress=show_progress,
            )
            if config.operation == "ppl":
                report = driver.perplexity(trg_lines, src_lines, stdout)
            elif config.operation == "nbest":
                report = driver.rescore_nbest(trg_lines, src_lines, stdout)
            else:
                report = driver.generate(src_lines, stdout)

    if report.skipped:
        logger.warning("Skipped %d sentences longer than the size limit", report.skipped)
    logger.info("%s", report)
    return report


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging("DEBUG" if (args.verbose or 0) >= 2 else "INFO")

    try:
        config = build_config(args)
        set_seed(config.seed)
        run(config, show_progress=args.progress)
    except NMTDecodeError as e:
        logger.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
