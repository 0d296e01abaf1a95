from __future__ import annotations

import functools
import warnings
from dataclasses import dataclass, field
from typing import Sequence, assert_never

import pyphen

from .blocks import (
    STYLE_ITALIC,
    STYLE_NONE,
    Block,
    CodeBlock,
    Heading,
    ImagePlaceholder,
    InlineSpan,
    ListItem,
    Paragraph,
    Quote,
    block_kind,
)
from .text import break_points, display_width, grapheme_width, split_graphemes


MIN_COLUMN_WIDTH = 20
BLANK_KIND = "blank"
HYPHEN_MARK = "-"
TRUNCATION_MARK = "…"
QUOTE_RULE = "│ "
QUOTE_RULE_MIN_WIDTH = 16
LIST_INDENT = 2


@dataclass(frozen=True, slots=True)
class Cell:
    grapheme: str
    style: str = STYLE_NONE
    decor: bool = False
    target: str | None = None

    @property
    def width(self) -> int:
        return grapheme_width(self.grapheme)


@dataclass(frozen=True, slots=True)
class WrappedLine:
    """
    One rendered row of a chapter at a fixed column width.

    ``block_index`` points back at the Block the row came from. ``span_start``
    and ``span_end`` are the half-open range of that block's spans that
    contributed cells; ``word_start`` and ``word_end`` are the half-open range
    of block-local word ordinals whose first grapheme sits on this row. Blank
    separator rows use ``kind == "blank"`` and empty ranges.
    """

    cells: tuple[Cell, ...]
    block_index: int
    kind: str
    span_start: int = 0
    span_end: int = 0
    word_start: int = 0
    word_end: int = 0
    hyphenated: bool = False

    @property
    def text(self) -> str:
        return "".join(cell.grapheme for cell in self.cells)

    @property
    def content_text(self) -> str:
        return "".join(cell.grapheme for cell in self.cells if not cell.decor)

    @property
    def width(self) -> int:
        return sum(cell.width for cell in self.cells)

    @property
    def is_blank(self) -> bool:
        return self.kind == BLANK_KIND

    @property
    def has_words(self) -> bool:
        return self.word_end > self.word_start


@dataclass(slots=True)
class _Glyph:
    grapheme: str
    style: str
    target: str | None
    span_index: int


@dataclass(slots=True)
class _Word:
    glyphs: list[_Glyph]
    ordinal: int
    space: _Glyph | None = None
    hard_break: int = 0


@dataclass(slots=True)
class _LineBuilder:
    block_index: int
    kind: str
    avail: int
    first_prefix: list[Cell]
    rest_prefix: list[Cell]
    next_ordinal: int = 0
    span_cursor: int = 0
    lines: list[WrappedLine] = field(default_factory=list)
    cells: list[Cell] = field(default_factory=list)
    used: int = 0
    first_word: int | None = None
    last_word: int | None = None
    spans: list[int] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.cells

    @property
    def remaining(self) -> int:
        return self.avail - self.used

    def put(self, glyph: _Glyph) -> None:
        self.cells.append(Cell(glyph.grapheme, glyph.style, False, glyph.target))
        self.used += grapheme_width(glyph.grapheme)
        self.spans.append(glyph.span_index)
        self.span_cursor = glyph.span_index

    def put_space(self, glyph: _Glyph | None) -> None:
        if glyph is None:
            self.cells.append(Cell(" "))
        else:
            self.cells.append(Cell(" ", glyph.style, False, glyph.target))
        self.used += 1

    def mark_word(self, ordinal: int) -> None:
        if self.first_word is None:
            self.first_word = ordinal
        self.last_word = ordinal

    def emit(self, *, hyphenated: bool = False) -> None:
        prefix = self.rest_prefix if self.lines else self.first_prefix
        if self.spans:
            span_range = (min(self.spans), max(self.spans) + 1)
        else:
            span_range = (self.span_cursor, self.span_cursor)
        if self.first_word is None or self.last_word is None:
            word_range = (self.next_ordinal, self.next_ordinal)
        else:
            word_range = (self.first_word, self.last_word + 1)
            self.next_ordinal = self.last_word + 1
        self.lines.append(
            WrappedLine(
                tuple(prefix) + tuple(self.cells),
                self.block_index,
                self.kind,
                span_range[0],
                span_range[1],
                word_range[0],
                word_range[1],
                hyphenated,
            )
        )
        self.cells = []
        self.used = 0
        self.first_word = None
        self.last_word = None
        self.spans = []


@functools.lru_cache(maxsize=None)
def _hyphenator(language: str) -> pyphen.Pyphen | None:
    resolved = pyphen.language_fallback(language)
    if resolved is None:
        warnings.warn(
            f"No hyphenation patterns for {language!r}; words will be hard-split instead.",
            RuntimeWarning,
            stacklevel=3,
        )
        return None
    return pyphen.Pyphen(lang=resolved)


def _decor(text: str, style: str = STYLE_NONE) -> list[Cell]:
    return [Cell(g, style, True) for g in split_graphemes(text)]


def _words(spans: Sequence[InlineSpan]) -> list[_Word]:
    words: list[_Word] = []
    current: list[_Glyph] = []
    space: _Glyph | None = None
    hard_break = 0
    pending_space: _Glyph | None = None
    pending_break = 0

    def close() -> None:
        nonlocal current, space, hard_break
        if current:
            words.append(_Word(current, len(words), space, hard_break))
        current = []

    for span_index, span in enumerate(spans):
        for grapheme in split_graphemes(span.text):
            if grapheme.isspace():
                if current:
                    close()
                    pending_space = None
                    pending_break = 0
                glyph = _Glyph(grapheme, span.style, span.target, span_index)
                if "\n" in grapheme:
                    pending_break += 1
                elif pending_space is None:
                    pending_space = glyph
                continue
            if not current:
                space = pending_space
                hard_break = pending_break
                pending_space = None
                pending_break = 0
            current.append(_Glyph(grapheme, span.style, span.target, span_index))
    close()
    return words


def _units(word: _Word) -> list[list[_Glyph]]:
    graphemes = [glyph.grapheme for glyph in word.glyphs]
    units: list[list[_Glyph]] = []
    start = 0
    for point in break_points(graphemes):
        units.append(word.glyphs[start:point])
        start = point
    units.append(word.glyphs[start:])
    return units


def _glyph_width(glyphs: Sequence[_Glyph]) -> int:
    return sum(grapheme_width(glyph.grapheme) for glyph in glyphs)


def _hyphen_split(glyphs: list[_Glyph], room: int, language: str) -> int | None:
    """Return the latest grapheme index where ``glyphs`` can be hyphenated to fit ``room``."""
    dic = _hyphenator(language)
    if dic is None:
        return None
    text = "".join(glyph.grapheme for glyph in glyphs)
    lead = len(text) - len(text.lstrip("\"'([{“‘«"))
    core = text[lead:].rstrip(".,;:!?\"')]}”’»")
    if len(core) < 4:
        return None
    boundaries: dict[int, int] = {}
    offset = 0
    for idx, glyph in enumerate(glyphs):
        boundaries[offset] = idx
        offset += len(glyph.grapheme)
    best: int | None = None
    for position in dic.positions(core):
        char_pos = lead + position
        split = boundaries.get(char_pos)
        if split is None or split == 0 or split >= len(glyphs):
            continue
        if not glyphs[split - 1].grapheme[0].isalpha():
            continue
        if _glyph_width(glyphs[:split]) + len(HYPHEN_MARK) <= room:
            best = split if best is None else max(best, split)
    return best


def _hard_split(glyphs: list[_Glyph], room: int) -> int:
    used = 0
    for idx, glyph in enumerate(glyphs):
        used += grapheme_width(glyph.grapheme)
        if used > room:
            return max(idx, 1)
    return len(glyphs)


def _wrap_text(
    builder: _LineBuilder,
    spans: Sequence[InlineSpan],
    *,
    hyphenate: bool,
    language: str,
) -> None:
    for word in _words(spans):
        for _ in range(word.hard_break):
            builder.emit()
        units = _units(word)
        first = True
        while units:
            unit = units[0]
            gap = 1 if first and not builder.empty else 0
            unit_width = _glyph_width(unit)
            if gap + unit_width <= builder.remaining:
                if gap:
                    builder.put_space(word.space)
                if first:
                    builder.mark_word(word.ordinal)
                for glyph in unit:
                    builder.put(glyph)
                units.pop(0)
                first = False
                continue
            room = builder.remaining - gap
            split = _hyphen_split(unit, room, language) if hyphenate and room > len(HYPHEN_MARK) else None
            if split is not None:
                if gap:
                    builder.put_space(word.space)
                if first:
                    builder.mark_word(word.ordinal)
                for glyph in unit[:split]:
                    builder.put(glyph)
                builder.cells.append(Cell(HYPHEN_MARK, unit[split - 1].style, True))
                builder.used += len(HYPHEN_MARK)
                builder.emit(hyphenated=True)
                units[0] = unit[split:]
                first = False
                continue
            if not builder.empty:
                builder.emit()
                continue
            # Unit wider than an empty line: hyphenate above, else split at graphemes.
            split = _hard_split(unit, builder.remaining)
            if first:
                builder.mark_word(word.ordinal)
            for glyph in unit[:split]:
                builder.put(glyph)
            builder.emit()
            units[0] = unit[split:]
            if not units[0]:
                units.pop(0)
            first = False
    if not builder.empty or not builder.lines:
        builder.emit()


def _clip(text: str, width: int, style: str = STYLE_NONE) -> list[Cell]:
    cells: list[Cell] = []
    graphemes = split_graphemes(text)
    if display_width(text) <= width:
        return [Cell(g, style) for g in graphemes]
    used = 0
    limit = width - grapheme_width(TRUNCATION_MARK)
    for grapheme in graphemes:
        size = grapheme_width(grapheme)
        if used + size > limit:
            break
        cells.append(Cell(grapheme, style))
        used += size
    cells.append(Cell(TRUNCATION_MARK, style, True))
    return cells


def _list_prefixes(item: ListItem, width: int) -> tuple[list[Cell], list[Cell]]:
    marker = f"{item.marker} "
    marker_width = display_width(marker)
    max_indent = max(0, width // 2 - marker_width)
    indent = min(LIST_INDENT * item.depth, max_indent)
    first = _decor(" " * indent + marker)
    rest = _decor(" " * (indent + marker_width))
    return first, rest


def _wrap_block(
    block: Block,
    index: int,
    width: int,
    *,
    hyphenate: bool,
    language: str,
) -> list[WrappedLine]:
    kind = block_kind(block)
    if isinstance(block, (Paragraph, Heading)):
        builder = _LineBuilder(index, kind, width, [], [])
        _wrap_text(builder, block.spans, hyphenate=hyphenate, language=language)
        return builder.lines
    if isinstance(block, ListItem):
        first, rest = _list_prefixes(block, width)
        builder = _LineBuilder(index, kind, width - len(first), first, rest)
        _wrap_text(builder, block.spans, hyphenate=hyphenate, language=language)
        return builder.lines
    if isinstance(block, Quote):
        rule = _decor(QUOTE_RULE) if width >= QUOTE_RULE_MIN_WIDTH else []
        builder = _LineBuilder(index, kind, width - len(rule), rule, rule)
        _wrap_text(builder, block.spans, hyphenate=hyphenate, language=language)
        return builder.lines
    if isinstance(block, CodeBlock):
        return [
            WrappedLine(tuple(_clip(line.expandtabs(4), width)), index, kind)
            for line in block.lines
        ]
    if isinstance(block, ImagePlaceholder):
        label = f"[Image: {block.alt}]" if block.alt else "[Image]"
        return [WrappedLine(tuple(_clip(label, width, STYLE_ITALIC)), index, kind)]
    assert_never(block)


def wrap_blocks(
    blocks: Sequence[Block],
    width: int,
    *,
    hyphenate: bool = False,
    language: str = "en_US",
) -> tuple[WrappedLine, ...]:
    """Greedy-wrap ``blocks`` into rows no wider than ``width`` terminal cells."""
    if width < MIN_COLUMN_WIDTH:
        raise ValueError(f"Column width must be at least {MIN_COLUMN_WIDTH}, got {width}")
    lines: list[WrappedLine] = []
    for index, block in enumerate(blocks):
        block_lines = _wrap_block(block, index, width, hyphenate=hyphenate, language=language)
        lines.extend(block_lines)
        last = block_lines[-1] if block_lines else None
        end_span = last.span_end if last is not None else 0
        end_word = last.word_end if last is not None else 0
        lines.append(WrappedLine((), index, BLANK_KIND, end_span, end_span, end_word, end_word))
    return tuple(lines)


__all__ = [
    "BLANK_KIND",
    "Cell",
    "MIN_COLUMN_WIDTH",
    "WrappedLine",
    "wrap_blocks",
]
