"""
Unknown-Word Replacement.

A mapping table is a tab-separated file of ``source<TAB>target<TAB>score``
rows. For each source word only the highest-scoring target is kept. After
generation, every unknown-word output is replaced by the mapped translation
of the source word it is aligned to, or by that source word itself when the
table has no entry for it.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ..exceptions import ConfigurationError
from .beam_search import NO_ALIGNMENT

logger = logging.getLogger(__name__)

Mapping = Dict[str, Tuple[str, float]]


def load_mapping(path: Union[str, Path]) -> Mapping:
    """Load a mapping table.

    Raises:
        ConfigurationError: Missing file, or a row without exactly 3 columns.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Could not find mapping file {path}")

    mapping: Mapping = {}
    with open(path, 'r', encoding='utf-8') as f:
        for line_no, line in enumerate(f, 1):
            line = line.rstrip('\n')
            if not line:
                continue
            columns = line.split('\t')
            if len(columns) != 3:
                raise ConfigurationError(f"Bad line in mapping file {path}:{line_no}\n{line}")
            src, trg, score = columns
            try:
                score = float(score)
            except ValueError:
                raise ConfigurationError(f"Bad score in mapping file {path}:{line_no}\n{line}")
            if src not in mapping or mapping[src][1] < score:
                mapping[src] = (trg, score)

    logger.info("Loaded %d mapping entries from %s", len(mapping), path)
    return mapping


def map_words(
    src_strs: Sequence[str],
    trg_sent: Sequence[int],
    align: Sequence[int],
    mapping: Optional[Mapping],
    trg_strs: List[str],
    unk_id: int = 1
) -> List[str]:
    """Replace unknown outputs in ``trg_strs`` in place.

    Args:
        src_strs: Source words.
        trg_sent: Generated target ids (may end with the end marker).
        align: Aligned source position per target id.
        mapping: Mapping table, or None to copy source words.
        trg_strs: Target words to edit, one per non-end target id.
        unk_id: Unknown-word id.

    Returns:
        ``trg_strs``.
    """
    if not align:
        return trg_strs
    if len(align) != len(trg_sent):
        raise ValueError(
            f"Alignment length {len(align)} does not match output length {len(trg_sent)}"
        )

    mapping = mapping or {}
    for i in range(len(trg_strs)):
        if trg_sent[i] != unk_id:
            continue
        pos = align[i]
        if pos == NO_ALIGNMENT or not 0 <= pos < len(src_strs):
            continue
        src_word = src_strs[pos]
        trg_strs[i] = mapping[src_word][0] if src_word in mapping else src_word
    return trg_strs
