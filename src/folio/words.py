from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .blocks import TEXT_BLOCK_TYPES, Block, block_text
from .text import split_graphemes, split_words

PAUSE_NONE = "none"
PAUSE_SENTENCE_END = "sentence_end"
PAUSE_COMMA = "comma"

_CLOSERS = ")]}\"'”’»›"
_QUOTE_CLOSERS = "\"'”’»›"
_SENTENCE_END = tuple(".!?;:…。！？；：")
_COMMA_CLASS = tuple(",-–—、，")


@dataclass(frozen=True, slots=True)
class WordToken:
    text: str
    pause: str
    chapter_index: int
    block_index: int
    word_index: int


def pause_class(word: str) -> str:
    core = word.rstrip(_CLOSERS)
    if core.endswith(_SENTENCE_END):
        return PAUSE_SENTENCE_END
    if core.endswith(_COMMA_CLASS):
        return PAUSE_COMMA
    if word.rstrip(_QUOTE_CLOSERS).endswith(")"):
        return PAUSE_COMMA
    return PAUSE_NONE


def extract_words(blocks: Sequence[Block], chapter_index: int = 0) -> list[WordToken]:
    """Flatten the words of text-bearing blocks; code and images contribute nothing."""
    tokens: list[WordToken] = []
    for block_index, block in enumerate(blocks):
        if not isinstance(block, TEXT_BLOCK_TYPES):
            continue
        for word_index, word in enumerate(split_words(block_text(block))):
            tokens.append(WordToken(word, pause_class(word), chapter_index, block_index, word_index))
    return tokens


def orp_index(word: str) -> int:
    """
    Pivot grapheme for RSVP display.

    ``round(0.35 * L)`` with halves rounded up, computed in integers so that
    L=10 gives 4 rather than depending on float representation.
    """
    length = len(split_graphemes(word))
    if length <= 1:
        return 0
    return max(0, min((35 * length + 50) // 100, length - 1))


def split_at_orp(word: str) -> tuple[str, str, str]:
    graphemes = split_graphemes(word)
    if not graphemes:
        return "", "", ""
    pivot = orp_index(word)
    return "".join(graphemes[:pivot]), graphemes[pivot], "".join(graphemes[pivot + 1 :])


__all__ = [
    "PAUSE_COMMA",
    "PAUSE_NONE",
    "PAUSE_SENTENCE_END",
    "WordToken",
    "extract_words",
    "orp_index",
    "pause_class",
    "split_at_orp",
]
