"""
Word Vocabulary for the Decoder.

Maps whitespace-separated words to integer ids and back. Provides:
- Reserved start/end marker and unknown-word ids
- Parsing of text lines into Sentences with n-gram context padding
- Conversion of decoder output back to words
- Loading from plain-text symbol lists or SentencePiece models
"""

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

import sentencepiece as spm

# A Sentence is an ordered list of token ids
Sentence = List[int]


class Vocabulary:
    """Bidirectional word <-> id mapping.

    Special Token IDs:
        0: <s>    (sentence start/end marker, also used for context padding)
        1: <unk>  (unknown word)

    Args:
        symbols: Words in id order. Missing special tokens are prepended.
    """

    START_TOKEN = "<s>"
    UNK_TOKEN = "<unk>"

    def __init__(self, symbols: Optional[Iterable[str]] = None):
        self.id_to_word: List[str] = [self.START_TOKEN, self.UNK_TOKEN]
        self.word_to_id: Dict[str, int] = {self.START_TOKEN: 0, self.UNK_TOKEN: 1}
        for word in symbols or []:
            self.add(word)

    @property
    def start_id(self) -> int:
        return self.word_to_id[self.START_TOKEN]

    @property
    def end_id(self) -> int:
        # The start marker doubles as the end marker
        return self.start_id

    @property
    def unk_id(self) -> int:
        return self.word_to_id[self.UNK_TOKEN]

    def __len__(self) -> int:
        return len(self.id_to_word)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Vocabulary):
            return NotImplemented
        return self.id_to_word == other.id_to_word

    def __contains__(self, word: str) -> bool:
        return word in self.word_to_id

    def add(self, word: str) -> int:
        """Add a word if it is new and return its id."""
        if word not in self.word_to_id:
            self.word_to_id[word] = len(self.id_to_word)
            self.id_to_word.append(word)
        return self.word_to_id[word]

    def wid(self, word: str) -> int:
        """Return the id of ``word``, or the unknown id."""
        return self.word_to_id.get(word, self.unk_id)

    def wsym(self, wid: int) -> str:
        """Return the word for id ``wid``."""
        return self.id_to_word[wid]

    @staticmethod
    def split_words(line: str) -> List[str]:
        return line.strip().split()

    def parse_words(
        self,
        line: Union[str, Sequence[str]],
        pad: int = 0,
        add_end: bool = True
    ) -> Sentence:
        """Convert a line of text to a Sentence.

        Args:
            line: Raw text, or an already split list of words.
            pad: Number of start markers to prepend (n-gram context padding).
            add_end: Whether to append the end marker.

        Returns:
            List of token ids.
        """
        words = self.split_words(line) if isinstance(line, str) else line
        sent = [self.start_id] * pad
        sent.extend(self.wid(word) for word in words)
        if add_end:
            sent.append(self.end_id)
        return sent

    def convert_words(self, sent: Sequence[int], include_end: bool = False) -> List[str]:
        """Convert ids to words, dropping the end marker unless requested."""
        return [
            self.wsym(wid) for wid in sent
            if include_end or wid != self.end_id
        ]

    @staticmethod
    def print_words(words: Sequence[str]) -> str:
        return " ".join(words)

    def save(self, path: Union[str, Path]) -> None:
        """Write one symbol per line."""
        with open(path, "w", encoding="utf-8") as f:
            for word in self.id_to_word:
                f.write(word + "\n")

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Vocabulary":
        """Read a symbol list written by :meth:`save`."""
        with open(path, "r", encoding="utf-8") as f:
            return cls(line.rstrip("\n") for line in f if line.strip())

    @classmethod
    def build(cls, lines: Iterable[str], min_count: int = 1) -> "Vocabulary":
        """Build a vocabulary from a corpus, most frequent words first.

        Ties are broken by first occurrence so the result is deterministic.
        """
        counts: Dict[str, int] = {}
        for line in lines:
            for word in cls.split_words(line):
                counts[word] = counts.get(word, 0) + 1
        ordered = sorted(counts, key=lambda w: -counts[w])
        return cls(w for w in ordered if counts[w] >= min_count)

    @classmethod
    def from_sentencepiece(cls, model_path: Union[str, Path]) -> "Vocabulary":
        """Use the piece table of a trained SentencePiece model as the vocabulary.

        Pieces keep their SentencePiece order after the two reserved symbols;
        SentencePiece control pieces (``<unk>``, ``<s>``, ``</s>``, ``<pad>``)
        are folded into the reserved ids.
        """
        sp = spm.SentencePieceProcessor()
        sp.Load(str(model_path))
        vocab = cls()
        for i in range(sp.GetPieceSize()):
            if sp.IsControl(i) or sp.IsUnknown(i):
                continue
            vocab.add(sp.IdToPiece(i))
        return vocab

    def to_list(self) -> List[str]:
        return list(self.id_to_word)

    @classmethod
    def from_list(cls, symbols: Optional[List[str]]) -> Optional["Vocabulary"]:
        if symbols is None:
            return None
        return cls(symbols)
