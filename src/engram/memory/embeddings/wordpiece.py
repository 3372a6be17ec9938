"""
WordPiece tokenizer
===================

Minimal BERT-style tokenizer matching what the local ONNX model was trained
with closely enough for retrieval:

- lower-case, split on whitespace,
- ``[CLS]`` first and ``[SEP]`` last, at most ``max_length`` tokens overall,
- whole-word lookup, then greedy longest-prefix with ``##`` continuations,
- a character nothing matches becomes one ``[UNK]``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterator, List

CLS_TOKEN = "[CLS]"
SEP_TOKEN = "[SEP]"
UNK_TOKEN = "[UNK]"
CONTINUATION = "##"
MAX_LENGTH = 512
DEFAULT_UNK_ID = 100


def load_vocab(path: str | Path) -> Dict[str, int]:
    """Read a ``vocab.txt`` (one token per line, id = line number)."""
    vocab: Dict[str, int] = {}
    with open(path, encoding="utf-8") as handle:
        for idx, line in enumerate(handle):
            vocab[line.rstrip("\r\n")] = idx
    return vocab


class WordPieceTokenizer:
    """Greedy longest-match-first WordPiece over a fixed vocabulary."""

    def __init__(self, vocab: Dict[str, int], max_length: int = MAX_LENGTH):
        if CLS_TOKEN not in vocab or SEP_TOKEN not in vocab:
            raise ValueError("Vocabulary must contain [CLS] and [SEP]")
        if max_length < 2:
            raise ValueError("max_length must leave room for [CLS] and [SEP]")
        self.vocab = vocab
        self.max_length = max_length
        self.cls_id = vocab[CLS_TOKEN]
        self.sep_id = vocab[SEP_TOKEN]
        self.unk_id = vocab.get(UNK_TOKEN, DEFAULT_UNK_ID)

    @classmethod
    def from_file(cls, path: str | Path, max_length: int = MAX_LENGTH) -> "WordPieceTokenizer":
        return cls(load_vocab(path), max_length=max_length)

    def tokenize_word(self, word: str) -> Iterator[int]:
        """Yield token ids for one whitespace-delimited word."""
        whole = self.vocab.get(word)
        if whole is not None:
            yield whole
            return

        start = 0
        while start < len(word):
            end = len(word)
            match = None
            while start < end:
                piece = word[start:end]
                if start > 0:
                    piece = CONTINUATION + piece
                match = self.vocab.get(piece)
                if match is not None:
                    break
                end -= 1

            if match is None:
                yield self.unk_id
                start += 1
            else:
                yield match
                start = end

    def encode(self, text: str) -> List[int]:
        """Return ``[CLS] … [SEP]`` token ids, truncated to ``max_length``."""
        budget = self.max_length - 1  # reserve the [SEP] slot
        ids = [self.cls_id]
        for word in text.lower().split():
            for token_id in self.tokenize_word(word):
                if len(ids) >= budget:
                    break
                ids.append(token_id)
            if len(ids) >= budget:
                break
        ids.append(self.sep_id)
        return ids


__all__ = [
    "WordPieceTokenizer",
    "load_vocab",
    "CLS_TOKEN",
    "SEP_TOKEN",
    "UNK_TOKEN",
    "MAX_LENGTH",
]
