from .blocks import (
    CodeBlock,
    Heading,
    ImagePlaceholder,
    InlineSpan,
    ListItem,
    Paragraph,
    Quote,
)
from .cache import LayoutCache
from .config import ConfigError, ReaderConfig, load_config
from .loader import ChapterRef, EpubLoader, HtmlFileLoader, LoadError, open_loader
from .normalize import NormalizeError, normalize_chapter, parse_blocks
from .paginate import Page, page_for_line, paginate
from .rsvp import RsvpFrame, RsvpPlayer
from .session import ModeTransition, Pane, ReadingSession
from .words import WordToken, extract_words, orp_index
from .wrap import WrappedLine, wrap_blocks

__all__ = [
    "InlineSpan",
    "Paragraph",
    "Heading",
    "ListItem",
    "Quote",
    "CodeBlock",
    "ImagePlaceholder",
    "NormalizeError",
    "parse_blocks",
    "normalize_chapter",
    "WrappedLine",
    "wrap_blocks",
    "LayoutCache",
    "Page",
    "paginate",
    "page_for_line",
    "WordToken",
    "extract_words",
    "orp_index",
    "RsvpPlayer",
    "RsvpFrame",
    "ReaderConfig",
    "ConfigError",
    "load_config",
    "ChapterRef",
    "EpubLoader",
    "HtmlFileLoader",
    "LoadError",
    "open_loader",
    "ReadingSession",
    "Pane",
    "ModeTransition",
]
