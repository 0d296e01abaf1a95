from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Union

__all__ = [
    "STYLE_NONE",
    "STYLE_BOLD",
    "STYLE_ITALIC",
    "STYLE_LINK",
    "STYLE_UNDERLINE",
    "STYLES",
    "InlineSpan",
    "Paragraph",
    "Heading",
    "ListItem",
    "Quote",
    "CodeBlock",
    "ImagePlaceholder",
    "Block",
    "TEXT_BLOCK_TYPES",
    "block_spans",
    "block_text",
    "block_kind",
    "merge_spans",
]

STYLE_NONE = "none"
STYLE_BOLD = "bold"
STYLE_ITALIC = "italic"
STYLE_LINK = "link"
STYLE_UNDERLINE = "underline"
STYLES = (STYLE_NONE, STYLE_BOLD, STYLE_ITALIC, STYLE_LINK, STYLE_UNDERLINE)


@dataclass(frozen=True, slots=True)
class InlineSpan:
    """
    A run of visible text sharing one style marker.

    Link spans carry the href or fragment anchor they point at in ``target``;
    other styles leave it ``None``. Hard line breaks from ``<br>`` survive as
    ``"\\n"`` inside ``text``.
    """

    text: str
    style: str = STYLE_NONE
    target: str | None = None

    def __post_init__(self) -> None:
        if self.style not in STYLES:
            raise ValueError(f"Unknown inline style: {self.style!r}")


@dataclass(frozen=True, slots=True)
class Paragraph:
    spans: tuple[InlineSpan, ...]
    anchors: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Heading:
    level: int
    spans: tuple[InlineSpan, ...]
    anchors: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not 1 <= self.level <= 6:
            raise ValueError(f"Heading level must be within 1-6, got {self.level}")


@dataclass(frozen=True, slots=True)
class ListItem:
    depth: int
    ordinal: int | None
    spans: tuple[InlineSpan, ...]
    anchors: tuple[str, ...] = ()

    @property
    def marker(self) -> str:
        if self.ordinal is None:
            return "•"
        return f"{self.ordinal}."


@dataclass(frozen=True, slots=True)
class Quote:
    spans: tuple[InlineSpan, ...]
    anchors: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CodeBlock:
    language: str | None
    lines: tuple[str, ...]
    anchors: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ImagePlaceholder:
    alt: str
    anchors: tuple[str, ...] = ()


Block = Union[Paragraph, Heading, ListItem, Quote, CodeBlock, ImagePlaceholder]
TEXT_BLOCK_TYPES = (Paragraph, Heading, ListItem, Quote)


def block_spans(block: Block) -> tuple[InlineSpan, ...]:
    if isinstance(block, TEXT_BLOCK_TYPES):
        return block.spans
    return ()


def block_text(block: Block) -> str:
    return "".join(span.text for span in block_spans(block))


def block_kind(block: Block) -> str:
    if isinstance(block, Paragraph):
        return "paragraph"
    if isinstance(block, Heading):
        return "heading"
    if isinstance(block, ListItem):
        return "list_item"
    if isinstance(block, Quote):
        return "quote"
    if isinstance(block, CodeBlock):
        return "code"
    if isinstance(block, ImagePlaceholder):
        return "image"
    raise TypeError(f"Unknown block type: {type(block).__name__}")


def merge_spans(spans: Iterable[InlineSpan]) -> tuple[InlineSpan, ...]:
    """Drop empty spans and join neighbours that share style and target."""
    merged: list[InlineSpan] = []
    for span in spans:
        if not span.text:
            continue
        if merged and merged[-1].style == span.style and merged[-1].target == span.target:
            last = merged.pop()
            merged.append(InlineSpan(last.text + span.text, last.style, last.target))
            continue
        merged.append(span)
    return tuple(merged)
